from __future__ import annotations

from enum import Enum
from typing import Dict, List

from gestao_ebd.errors import InvalidTransitionError


class ProposalStatus(str, Enum):
    PENDENTE = "PROPOSTA_PENDENTE"
    ACEITA = "PROPOSTA_ACEITA"
    AGUARDANDO_APROVACAO_FINANCEIRA = "AGUARDANDO_APROVACAO_FINANCEIRA"
    APROVADA_FATURAMENTO = "APROVADA_FATURAMENTO"
    REPROVADA_FINANCEIRO = "REPROVADA_FINANCEIRO"
    AGUARDANDO_PAGAMENTO = "AGUARDANDO_PAGAMENTO"
    FATURADO = "FATURADO"
    PAGO = "PAGO"
    EXPIRADO = "EXPIRADO"
    CANCELADO = "CANCELADO"


class ProposalAction(str, Enum):
    EDIT = "edit"
    ACCEPT = "accept"
    REQUEST_FINANCIAL_APPROVAL = "request_financial_approval"
    GENERATE_PAYMENT = "generate_payment"
    APPROVE_INVOICING = "approve_invoicing"
    REJECT_INVOICING = "reject_invoicing"
    INVOICE = "invoice"
    CONFIRM_PAYMENT = "confirm_payment"
    RETURN_TO_PENDING = "return_to_pending"
    EXPIRE = "expire"
    CANCEL = "cancel"


ACTION_LABELS: Dict[str, str] = {
    "edit": "Editar proposta",
    "accept": "Confirmar proposta",
    "request_financial_approval": "Enviar para financeiro",
    "generate_payment": "Gerar pagamento",
    "approve_invoicing": "Aprovar faturamento",
    "reject_invoicing": "Reprovar faturamento",
    "invoice": "Faturar no ERP",
    "confirm_payment": "Confirmar pagamento",
    "return_to_pending": "Voltar para pendente",
    "expire": "Expirar",
    "cancel": "Cancelar",
}


_S = ProposalStatus
_A = ProposalAction

TRANSITIONS: Dict[ProposalStatus, Dict[ProposalAction, ProposalStatus]] = {
    _S.PENDENTE: {
        _A.EDIT: _S.PENDENTE,
        _A.ACCEPT: _S.ACEITA,
        _A.EXPIRE: _S.EXPIRADO,
        _A.CANCEL: _S.CANCELADO,
    },
    _S.ACEITA: {
        _A.REQUEST_FINANCIAL_APPROVAL: _S.AGUARDANDO_APROVACAO_FINANCEIRA,
        _A.GENERATE_PAYMENT: _S.AGUARDANDO_PAGAMENTO,
        _A.RETURN_TO_PENDING: _S.PENDENTE,
        _A.EXPIRE: _S.EXPIRADO,
        _A.CANCEL: _S.CANCELADO,
    },
    _S.AGUARDANDO_APROVACAO_FINANCEIRA: {
        _A.APPROVE_INVOICING: _S.APROVADA_FATURAMENTO,
        _A.REJECT_INVOICING: _S.REPROVADA_FINANCEIRO,
        _A.RETURN_TO_PENDING: _S.PENDENTE,
        _A.CANCEL: _S.CANCELADO,
    },
    _S.APROVADA_FATURAMENTO: {
        _A.INVOICE: _S.FATURADO,
        _A.CANCEL: _S.CANCELADO,
    },
    _S.AGUARDANDO_PAGAMENTO: {
        _A.CONFIRM_PAYMENT: _S.PAGO,
        _A.EXPIRE: _S.EXPIRADO,
        _A.CANCEL: _S.CANCELADO,
    },
    _S.FATURADO: {
        _A.CONFIRM_PAYMENT: _S.PAGO,
    },
    _S.REPROVADA_FINANCEIRO: {},
    _S.PAGO: {},
    _S.EXPIRADO: {},
    _S.CANCELADO: {},
}

PRIMARY_ACTIONS: Dict[ProposalStatus, ProposalAction] = {
    _S.PENDENTE: _A.EDIT,
    _S.ACEITA: _A.GENERATE_PAYMENT,
    _S.AGUARDANDO_APROVACAO_FINANCEIRA: _A.APPROVE_INVOICING,
    _S.APROVADA_FATURAMENTO: _A.INVOICE,
    _S.AGUARDANDO_PAGAMENTO: _A.CONFIRM_PAYMENT,
    _S.FATURADO: _A.CONFIRM_PAYMENT,
}

# Invoiced proposals have an external order and are never removed.
NON_DELETABLE_STATUSES = frozenset({_S.FATURADO, _S.PAGO})


def parse_status(value: str | ProposalStatus | None) -> ProposalStatus:
    if isinstance(value, ProposalStatus):
        return value
    try:
        return ProposalStatus(str(value or "").strip().upper())
    except ValueError:
        raise InvalidTransitionError(
            code="proposal_status_unknown",
            message_key="action_not_allowed_for_status",
            details=f"status desconhecido: {value}",
            payload={"status": value},
        ) from None


def parse_action(value: str | ProposalAction) -> ProposalAction:
    if isinstance(value, ProposalAction):
        return value
    try:
        return ProposalAction(str(value or "").strip().lower())
    except ValueError:
        raise InvalidTransitionError(
            code="action_invalid",
            message_key="action_invalid",
            http_status=400,
            details=f"acao desconhecida: {value}",
            payload={"action": value},
        ) from None


def transition(status: str | ProposalStatus, action: str | ProposalAction) -> ProposalStatus:
    current = parse_status(status)
    requested = parse_action(action)
    target = TRANSITIONS[current].get(requested)
    if target is None:
        raise InvalidTransitionError(
            details=f"{requested.value} nao permitido em {current.value}",
            payload={"status": current.value, "action": requested.value},
        )
    return target


def is_terminal(status: str | ProposalStatus) -> bool:
    return not TRANSITIONS[parse_status(status)]


def allowed_actions(status: str | ProposalStatus | None) -> List[str]:
    if not status:
        return []
    return [action.value for action in TRANSITIONS[parse_status(status)]]


def action_allowed(status: str | ProposalStatus | None, action: str) -> bool:
    if not status or not action:
        return False
    return action in set(allowed_actions(status))


def action_label(action: str, fallback: str | None = None) -> str:
    label = ACTION_LABELS.get(action)
    if label:
        return label
    if fallback is not None:
        return fallback
    return action


def flow_meta(status: str | ProposalStatus | None) -> Dict[str, object]:
    current = parse_status(status) if status else None
    primary = PRIMARY_ACTIONS.get(current) if current else None
    return {
        "status": current.value if current else None,
        "allowed_actions": allowed_actions(current),
        "primary_action": primary.value if primary else None,
        "primary_action_label": action_label(primary.value) if primary else None,
        "terminal": bool(current and is_terminal(current)),
        "deletable": bool(current and current not in NON_DELETABLE_STATUSES),
    }
