from __future__ import annotations

from typing import Dict, List


PROPOSAL_STATUS_ITEMS: List[Dict[str, str]] = [
    {"key": "PROPOSTA_PENDENTE", "label": "Pendente", "description": "Proposta enviada, aguardando o cliente."},
    {"key": "PROPOSTA_ACEITA", "label": "Aceita", "description": "Cliente confirmou a proposta pelo link."},
    {
        "key": "AGUARDANDO_APROVACAO_FINANCEIRA",
        "label": "Aguardando Financeiro",
        "description": "Faturamento solicitado, aguardando o time financeiro.",
    },
    {"key": "APROVADA_FATURAMENTO", "label": "Aprovada", "description": "Faturamento aprovado, pedido em criacao."},
    {"key": "REPROVADA_FINANCEIRO", "label": "Reprovada", "description": "Faturamento reprovado pelo financeiro."},
    {"key": "AGUARDANDO_PAGAMENTO", "label": "Aguardando Pagamento", "description": "Link de pagamento gerado."},
    {"key": "FATURADO", "label": "Faturado", "description": "Pedido faturado no ERP."},
    {"key": "PAGO", "label": "Pago", "description": "Pagamento confirmado."},
    {"key": "EXPIRADO", "label": "Expirado", "description": "Prazo do link ou do pagamento encerrado."},
    {"key": "CANCELADO", "label": "Cancelado", "description": "Proposta cancelada manualmente."},
]


MESSAGES: Dict[str, Dict[str, str]] = {
    "success": {
        "proposal_created": "Proposta criada com sucesso.",
        "proposal_updated": "Proposta atualizada. Envie o novo link ao cliente.",
        "proposal_accepted": "Proposta confirmada. Obrigado!",
        "proposal_sent_to_financial": "Proposta enviada para aprovacao financeira!",
        "proposal_invoiced": "Pedido enviado para faturamento no ERP!",
        "proposal_rejected": "Faturamento reprovado.",
        "proposal_deleted": "Proposta excluida com sucesso!",
        "payment_link_created": "Link de pagamento gerado com sucesso!",
        "proposal_paid": "Pagamento confirmado.",
        "proposal_expired": "Proposta expirada.",
        "proposal_cancelled": "Proposta cancelada.",
        "proposal_returned_to_pending": "Proposta voltou para pendente.",
        "birthdays_updated": "Datas de aniversario atualizadas.",
        "commission_approved": "Comissao aprovada.",
        "commission_batch_processed": "Aprovacao em lote concluida.",
        "onboarding_phase_completed": "Etapa concluida.",
        "onboarding_concluded": "Parabens! Voce completou o onboarding e ganhou desconto na proxima compra!",
        "onboarding_cycle_completed": "Ciclo de onboarding concluido.",
        "birthday_coupon_redeemed": "Cupom de aniversario resgatado.",
    },
    "error": {
        "action_invalid": "Acao invalida para esta operacao.",
        "action_not_allowed_for_status": "Esta acao nao e permitida para o status atual.",
        "birthday_coupon_unavailable": "Cupom de aniversario indisponivel hoje.",
        "birthday_required": "Informe a data de aniversario para concluir esta etapa.",
        "carrier_required": "Informe a transportadora do frete manual.",
        "church_not_found": "Igreja nao encontrada.",
        "client_name_required": "Informe o cliente da proposta.",
        "commission_already_approved": "Comissao deste pedido ja foi aprovada.",
        "commission_schedule_failed": "Pedido faturado, mas as parcelas de comissao nao foram criadas.",
        "discount_invalid": "Desconto deve estar entre 0 e 100.",
        "external_order_failed": "Nao foi possivel criar o pedido no ERP.",
        "items_required": "Adicione pelo menos um produto.",
        "items_without_sku": "Produto(s) sem SKU cadastrado. Corrija o cadastro antes de faturar.",
        "invoicing_term_invalid": "Prazo de faturamento invalido.",
        "invoicing_not_allowed": "Cliente nao habilitado para faturamento.",
        "onboarding_phase_invalid": "Etapa de onboarding invalida.",
        "order_not_found": "Pedido nao encontrado.",
        "order_not_payable": "Pedido ainda nao esta pago.",
        "order_without_seller": "Pedido sem vendedor atribuido.",
        "permission_denied": "Voce nao possui permissao para executar esta acao.",
        "postal_code_invalid": "CEP invalido.",
        "postal_code_required": "Cliente sem CEP cadastrado.",
        "price_invalid": "Preco invalido.",
        "proposal_invoiced_readonly": "Proposta faturada nao pode ser excluida.",
        "proposal_not_found": "Proposta nao encontrada.",
        "quantity_invalid": "Quantidade invalida.",
        "remote_unavailable": "Servico externo indisponivel. Tente novamente.",
        "shipping_cost_invalid": "Valor do frete invalido.",
        "shipping_method_unavailable": "Opcao de frete indisponivel.",
        "status_changed_concurrently": "A proposta foi alterada por outra pessoa. Atualize a tela.",
        "unexpected_error": "Nao foi possivel concluir a operacao. Tente novamente em instantes.",
        "validation_error": "Dados invalidos.",
    },
    "warning": {
        "shipping_quote_fallback": "Nao foi possivel consultar os Correios. Valores de frete estimados.",
    },
}


def proposal_status_label(status: str | None) -> str:
    for item in PROPOSAL_STATUS_ITEMS:
        if item["key"] == status:
            return item["label"]
    return str(status or "")


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def warning_message(key: str, default: str | None = None) -> str:
    return get_message("warning", key, default)
