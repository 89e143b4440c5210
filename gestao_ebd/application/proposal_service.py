from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from gestao_ebd.application.commission_service import CommissionService
from gestao_ebd.application.shipping_service import ShippingResolver
from gestao_ebd.domain.commission import CommissionParcela, normalize_term
from gestao_ebd.domain.payment_status import is_payable
from gestao_ebd.domain.pricing import (
    LineItem,
    compute_subtotal,
    compute_totals,
    invoice_line_items,
    lines_total,
    parse_items,
    round_money,
    validate_discount,
)
from gestao_ebd.domain.proposal_status import (
    NON_DELETABLE_STATUSES,
    ProposalAction,
    ProposalStatus,
    flow_meta,
    parse_status,
    transition,
)
from gestao_ebd.domain.shipping import ShippingOption, ShippingQuote
from gestao_ebd.errors import (
    IntegrationError,
    InvalidTransitionError,
    NotFoundError,
    PreconditionError,
    ValidationError,
    classify_remote_failure,
    extract_remote_error_message,
)
from gestao_ebd.infrastructure.repositories.order_repository import OrderRepository
from gestao_ebd.infrastructure.repositories.party_repository import (
    CategoryDiscountRepository,
    ChurchRepository,
    SellerRepository,
)
from gestao_ebd.infrastructure.repositories.proposal_repository import ProposalRepository
from gestao_ebd.integrations.gateway import (
    PAYMENT_MODE_IMMEDIATE,
    PAYMENT_MODE_INVOICE,
    ExternalOrderRequest,
    ExternalOrderResult,
    RemoteProcedureError,
    RemoteProcedures,
)
from gestao_ebd.messages import error_message
from gestao_ebd.policies import require_capability


REPRESENTATIVE_SELLER = "representante"
DEFAULT_INVOICE_SHIPPING_METHOD = "COMBINAR"


@dataclass
class InvoiceOutcome:
    proposal: Dict[str, Any]
    order: Dict[str, Any] | None = None
    parcelas: List[CommissionParcela] = field(default_factory=list)
    warning: str | None = None


@dataclass
class ProposalDraft:
    fields: Dict[str, Any]
    totals: Dict[str, float]
    quote: ShippingQuote | None = None


class ProposalService:
    def __init__(
        self,
        *,
        proposals: ProposalRepository,
        orders: OrderRepository,
        churches: ChurchRepository,
        sellers: SellerRepository,
        category_discounts: CategoryDiscountRepository,
        shipping: ShippingResolver,
        commissions: CommissionService,
        remote: RemoteProcedures,
        public_base_url: str = "https://gestaoebd.com.br",
        token_factory: Callable[[], str] | None = None,
        now_fn: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.proposals = proposals
        self.orders = orders
        self.churches = churches
        self.sellers = sellers
        self.category_discounts = category_discounts
        self.shipping = shipping
        self.commissions = commissions
        self.remote = remote
        self.public_base_url = public_base_url.rstrip("/")
        self.token_factory = token_factory or (lambda: str(uuid.uuid4()))
        self.now_fn = now_fn or (lambda: datetime.now(timezone.utc))
        self.logger = logger or logging.getLogger("gestao_ebd")

    # Queries

    def get(self, db, proposal_id: int) -> Dict[str, Any]:
        proposal = self.proposals.get_by_id(db, proposal_id)
        if proposal is None:
            raise NotFoundError(
                code="proposal_not_found",
                message_key="proposal_not_found",
                payload={"proposal_id": proposal_id},
            )
        return proposal

    def get_by_token(self, db, token: str) -> Dict[str, Any]:
        proposal = self.proposals.get_by_token(db, str(token or "").strip()) if token else None
        if proposal is None:
            raise NotFoundError(code="proposal_not_found", message_key="proposal_not_found")
        return proposal

    def list(self, db, *, status: str | None = None, vendedor_id: int | None = None) -> List[Dict[str, Any]]:
        normalized = parse_status(status).value if status else None
        return self.proposals.list(db, status=normalized, vendedor_id=vendedor_id)

    def public_link(self, proposal: Dict[str, Any]) -> str:
        return f"{self.public_base_url}/proposta/{proposal['token']}"

    def describe(self, proposal: Dict[str, Any]) -> Dict[str, Any]:
        view = dict(proposal)
        view["link"] = self.public_link(proposal)
        view["valor_subtotal"] = compute_subtotal(self._line_items(proposal))
        view["flow"] = flow_meta(proposal["status"])
        return view

    # Seller operations

    def create(self, db, payload: Dict[str, Any], *, role: str | None = None) -> Dict[str, Any]:
        draft = self._build_draft(db, payload, current=None, role=role)
        token = self.token_factory()
        try:
            proposal = self.proposals.insert(db, token=token, status=ProposalStatus.PENDENTE.value, fields=draft.fields)
            db.commit()
        except Exception:
            db.rollback()
            raise
        self.logger.info(
            "proposal_created",
            extra={
                "proposal_id": proposal["id"],
                "vendedor_id": proposal.get("vendedor_id"),
                "valor_total": proposal["valor_total"],
            },
        )
        result = self.describe(proposal)
        result["shipping_quote"] = draft.quote.to_dict() if draft.quote else None
        return result

    def edit(self, db, proposal_id: int, payload: Dict[str, Any], *, role: str | None = None) -> Dict[str, Any]:
        current = self.get(db, proposal_id)
        transition(current["status"], ProposalAction.EDIT)
        draft = self._build_draft(db, payload, current=current, role=role)
        token = self.token_factory()
        try:
            changed = self.proposals.update_content(
                db,
                proposal_id,
                expected_status=ProposalStatus.PENDENTE.value,
                token=token,
                fields=draft.fields,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        if not changed:
            raise self._concurrent_change(proposal_id, ProposalAction.EDIT)
        self.logger.info("proposal_updated", extra={"proposal_id": proposal_id})
        result = self.describe(self.get(db, proposal_id))
        result["shipping_quote"] = draft.quote.to_dict() if draft.quote else None
        return result

    def quote_shipping(self, db, proposal_id: int) -> ShippingQuote:
        proposal = self.get(db, proposal_id)
        return self.shipping.resolve(
            self._postal_code(proposal.get("cliente_endereco")),
            proposal.get("itens") or [],
            float(proposal["valor_produtos"]),
            reference_id=proposal_id,
        )

    # Client acceptance through the public link

    def accept(
        self,
        db,
        token: str,
        *,
        shipping_method: str | None = None,
        invoicing_term: str | None = None,
    ) -> Dict[str, Any]:
        proposal = self.get_by_token(db, token)
        target = transition(proposal["status"], ProposalAction.ACCEPT)

        fields: Dict[str, Any] = {"confirmado_em": self._now_text()}
        if invoicing_term:
            if not proposal.get("pode_faturar"):
                raise ValidationError(code="invoicing_not_allowed", message_key="invoicing_not_allowed")
            fields["prazo_faturamento_selecionado"] = normalize_term(invoicing_term)

        method = str(shipping_method or "").strip().lower()
        if method and proposal.get("frete_tipo") != "manual" and method != proposal.get("metodo_frete"):
            option = self._pick_option(self.quote_shipping(db, proposal["id"]), method)
            fields["metodo_frete"] = option.type
            fields["valor_frete"] = option.cost
            fields["frete_prazo_estimado"] = self._lead_time_text(option)
            fields["valor_total"] = round_money(float(proposal["valor_produtos"]) + option.cost)

        self._set_status(db, proposal, target, ProposalAction.ACCEPT, fields)
        self.logger.info("proposal_accepted", extra={"proposal_id": proposal["id"]})
        return self.describe(self.get(db, proposal["id"]))

    # Operator operations

    def generate_payment(self, db, proposal_id: int) -> Dict[str, Any]:
        proposal = self.get(db, proposal_id)
        if proposal.get("pode_faturar") and proposal.get("prazo_faturamento_selecionado"):
            target = transition(proposal["status"], ProposalAction.REQUEST_FINANCIAL_APPROVAL)
            self._set_status(db, proposal, target, ProposalAction.REQUEST_FINANCIAL_APPROVAL)
            self.logger.info(
                "proposal_sent_to_financial",
                extra={"proposal_id": proposal_id, "term": proposal["prazo_faturamento_selecionado"]},
            )
            return self.describe(self.get(db, proposal_id))

        target = transition(proposal["status"], ProposalAction.GENERATE_PAYMENT)
        request = self._order_request(db, proposal, payment_mode=PAYMENT_MODE_IMMEDIATE, category_pricing=False)
        result = self._call_create_order(proposal_id, request)
        self._set_status(
            db,
            proposal,
            target,
            ProposalAction.GENERATE_PAYMENT,
            {
                "payment_url": result.payment_url,
                "external_order_id": result.external_order_id,
                "external_order_number": result.external_order_number,
            },
        )
        self.logger.info(
            "payment_link_created",
            extra={"proposal_id": proposal_id, "external_order_id": result.external_order_id},
        )
        return self.describe(self.get(db, proposal_id))

    def approve_invoicing(self, db, proposal_id: int, *, role: str | None = None) -> InvoiceOutcome:
        require_capability("approve_invoicing", role)
        proposal = self.get(db, proposal_id)
        target = transition(proposal["status"], ProposalAction.APPROVE_INVOICING)
        request = self._order_request(db, proposal, payment_mode=PAYMENT_MODE_INVOICE, category_pricing=True)
        self._set_status(db, proposal, target, ProposalAction.APPROVE_INVOICING)
        approved = self.get(db, proposal_id)
        return self._invoice(db, approved, request, revert_to=ProposalStatus.AGUARDANDO_APROVACAO_FINANCEIRA)

    def invoice(self, db, proposal_id: int, *, role: str | None = None) -> InvoiceOutcome:
        require_capability("approve_invoicing", role)
        proposal = self.get(db, proposal_id)
        transition(proposal["status"], ProposalAction.INVOICE)
        request = self._order_request(db, proposal, payment_mode=PAYMENT_MODE_INVOICE, category_pricing=True)
        placed = None
        if proposal.get("external_order_id"):
            # The ERP already holds this order; only the local write is retried.
            placed = ExternalOrderResult(
                success=True,
                external_order_id=proposal["external_order_id"],
                external_order_number=proposal.get("external_order_number"),
            )
            self.logger.info(
                "invoice_resumed",
                extra={"proposal_id": proposal_id, "external_order_id": placed.external_order_id},
            )
        return self._invoice(db, proposal, request, revert_to=None, placed=placed)

    def reject_invoicing(self, db, proposal_id: int, *, role: str | None = None) -> Dict[str, Any]:
        require_capability("reject_invoicing", role)
        return self._simple_transition(db, proposal_id, ProposalAction.REJECT_INVOICING, "proposal_rejected")

    def return_to_pending(self, db, proposal_id: int) -> Dict[str, Any]:
        return self._simple_transition(db, proposal_id, ProposalAction.RETURN_TO_PENDING, "proposal_returned_to_pending")

    def expire(self, db, proposal_id: int) -> Dict[str, Any]:
        return self._simple_transition(db, proposal_id, ProposalAction.EXPIRE, "proposal_expired")

    def cancel(self, db, proposal_id: int) -> Dict[str, Any]:
        return self._simple_transition(db, proposal_id, ProposalAction.CANCEL, "proposal_cancelled")

    def confirm_payment(self, db, proposal_id: int, *, status_pagamento: str = "paid") -> Dict[str, Any]:
        proposal = self.get(db, proposal_id)
        target = transition(proposal["status"], ProposalAction.CONFIRM_PAYMENT)
        if not is_payable(status_pagamento):
            raise PreconditionError(
                code="order_not_payable",
                message_key="order_not_payable",
                payload={"proposal_id": proposal_id, "status_pagamento": status_pagamento},
            )
        previous = parse_status(proposal["status"])
        try:
            changed = self.proposals.update_status(
                db,
                proposal_id,
                expected_status=previous.value,
                new_status=target.value,
            )
            if changed:
                order = self.orders.get_by_proposal(db, proposal_id)
                if order is None:
                    self.orders.insert(
                        db,
                        cliente_id=proposal.get("cliente_id"),
                        vendedor_id=proposal.get("vendedor_id"),
                        proposta_id=proposal_id,
                        order_number=proposal.get("external_order_number"),
                        valor_total=float(proposal["valor_total"]),
                        valor_frete=float(proposal["valor_frete"] or 0),
                        status_pagamento=status_pagamento,
                        order_date=self._now_text(),
                        origem="online",
                    )
                else:
                    self.orders.update_payment_status(db, order["id"], status_pagamento)
            db.commit()
        except Exception:
            db.rollback()
            raise
        if not changed:
            raise self._concurrent_change(proposal_id, ProposalAction.CONFIRM_PAYMENT)
        self.logger.info("proposal_paid", extra={"proposal_id": proposal_id, "previous_status": previous.value})
        return self.describe(self.get(db, proposal_id))

    def delete(self, db, proposal_id: int, *, role: str | None = None) -> None:
        require_capability("delete_proposal", role)
        proposal = self.get(db, proposal_id)
        if parse_status(proposal["status"]) in NON_DELETABLE_STATUSES:
            raise PreconditionError(
                code="proposal_invoiced_readonly",
                message_key="proposal_invoiced_readonly",
                http_status=409,
                payload={"proposal_id": proposal_id, "status": proposal["status"]},
            )
        try:
            deleted = self.proposals.delete(
                db,
                proposal_id,
                protected_statuses=tuple(status.value for status in NON_DELETABLE_STATUSES),
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        if not deleted:
            raise self._concurrent_change(proposal_id, ProposalAction.CANCEL)
        self.logger.info("proposal_deleted", extra={"proposal_id": proposal_id, "status": proposal["status"]})

    # Internals

    def _simple_transition(self, db, proposal_id: int, action: ProposalAction, event: str) -> Dict[str, Any]:
        proposal = self.get(db, proposal_id)
        target = transition(proposal["status"], action)
        self._set_status(db, proposal, target, action)
        self.logger.info(event, extra={"proposal_id": proposal_id, "previous_status": proposal["status"]})
        return self.describe(self.get(db, proposal_id))

    def _set_status(
        self,
        db,
        proposal: Dict[str, Any],
        target: ProposalStatus,
        action: ProposalAction,
        fields: Dict[str, Any] | None = None,
    ) -> None:
        try:
            changed = self.proposals.update_status(
                db,
                proposal["id"],
                expected_status=proposal["status"],
                new_status=target.value,
                fields=fields,
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        if not changed:
            raise self._concurrent_change(proposal["id"], action)

    def _concurrent_change(self, proposal_id: int, action: ProposalAction) -> InvalidTransitionError:
        self.logger.warning("proposal_status_conflict", extra={"proposal_id": proposal_id, "action": action.value})
        return InvalidTransitionError(
            code="status_changed_concurrently",
            message_key="status_changed_concurrently",
            payload={"proposal_id": proposal_id, "action": action.value},
        )

    def _invoice(
        self,
        db,
        proposal: Dict[str, Any],
        request: ExternalOrderRequest,
        *,
        revert_to: ProposalStatus | None,
        placed: ExternalOrderResult | None = None,
    ) -> InvoiceOutcome:
        proposal_id = proposal["id"]
        if placed is not None:
            return self._persist_invoice(db, proposal, request, placed)
        try:
            result = self._call_create_order(proposal_id, request)
        except IntegrationError:
            if revert_to is not None:
                # Compensating write: the approval never reaches the ERP.
                self.proposals.update_status(
                    db,
                    proposal_id,
                    expected_status=ProposalStatus.APROVADA_FATURAMENTO.value,
                    new_status=revert_to.value,
                )
                db.commit()
                self.logger.warning(
                    "invoicing_reverted",
                    extra={"proposal_id": proposal_id, "status": revert_to.value},
                )
            raise

        ids = {
            "external_order_id": result.external_order_id,
            "external_order_number": result.external_order_number,
        }
        try:
            # Recorded on its own so a failed local finish never places the order twice.
            self.proposals.update_status(
                db,
                proposal_id,
                expected_status=ProposalStatus.APROVADA_FATURAMENTO.value,
                new_status=ProposalStatus.APROVADA_FATURAMENTO.value,
                fields=ids,
            )
            db.commit()
        except Exception:
            db.rollback()
            self.logger.exception(
                "invoice_persist_failed",
                extra={**ids, "proposal_id": proposal_id, "hint": "pedido criado no ERP, nao reenviar"},
            )
            raise
        return self._persist_invoice(db, proposal, request, result)

    def _persist_invoice(
        self,
        db,
        proposal: Dict[str, Any],
        request: ExternalOrderRequest,
        result: ExternalOrderResult,
    ) -> InvoiceOutcome:
        proposal_id = proposal["id"]
        try:
            changed = self.proposals.update_status(
                db,
                proposal_id,
                expected_status=ProposalStatus.APROVADA_FATURAMENTO.value,
                new_status=ProposalStatus.FATURADO.value,
                fields={
                    "external_order_id": result.external_order_id,
                    "external_order_number": result.external_order_number,
                },
            )
            order = None
            if changed:
                order = self.orders.insert(
                    db,
                    cliente_id=proposal.get("cliente_id"),
                    vendedor_id=proposal.get("vendedor_id"),
                    proposta_id=proposal_id,
                    order_number=f"ERP-{result.external_order_number or result.external_order_id}",
                    valor_total=request.total_value,
                    valor_frete=request.shipping_cost,
                    status_pagamento="Faturado",
                    order_date=self._now_text(),
                    origem="faturado",
                    comissao_aprovada=True,
                )
            db.commit()
        except Exception:
            db.rollback()
            self.logger.exception(
                "invoice_persist_failed",
                extra={
                    "proposal_id": proposal_id,
                    "external_order_id": result.external_order_id,
                    "hint": "pedido criado no ERP, nao reenviar; repetir faturar conclui localmente",
                },
            )
            raise
        if not changed:
            raise self._concurrent_change(proposal_id, ProposalAction.INVOICE)

        self.logger.info(
            "proposal_invoiced",
            extra={
                "proposal_id": proposal_id,
                "external_order_id": result.external_order_id,
                "external_order_number": result.external_order_number,
            },
        )
        outcome = InvoiceOutcome(proposal=self.describe(self.get(db, proposal_id)), order=order)
        try:
            outcome.parcelas = self.commissions.schedule_invoiced(
                db,
                proposal,
                term=request.invoicing_term or "30",
                total_value=request.total_value,
                invoice_date=self.now_fn().date(),
                external_order_id=result.external_order_id,
                external_order_number=result.external_order_number,
            )
            db.commit()
        except Exception:  # noqa: BLE001
            db.rollback()
            # The ERP order exists; the schedule can be recreated idempotently.
            self.logger.exception("commission_schedule_failed", extra={"proposal_id": proposal_id})
            outcome.warning = error_message("commission_schedule_failed")
        return outcome

    def _call_create_order(self, proposal_id: int, request: ExternalOrderRequest) -> ExternalOrderResult:
        try:
            result = self.remote.create_external_order(request)
        except RemoteProcedureError as exc:
            self._raise_integration_error(proposal_id, request, str(exc))
        if not result.success:
            self._raise_integration_error(proposal_id, request, result.error or error_message("external_order_failed"))
        return result

    def _raise_integration_error(self, proposal_id: int, request: ExternalOrderRequest, raw: str) -> None:
        message = extract_remote_error_message(raw)
        code, http_status = classify_remote_failure(raw)
        self.logger.error(
            "external_order_failed",
            extra={"proposal_id": proposal_id, "payment_mode": request.payment_mode, "error": message},
        )
        raise IntegrationError(code=code, message_key="external_order_failed", http_status=http_status, details=message)

    def _order_request(
        self,
        db,
        proposal: Dict[str, Any],
        *,
        payment_mode: str,
        category_pricing: bool,
    ) -> ExternalOrderRequest:
        items = self._line_items(proposal)
        category_discounts = None
        seller = self.sellers.get_by_id(db, proposal["vendedor_id"]) if proposal.get("vendedor_id") else None
        if category_pricing and seller and seller.get("tipo_vendedor") == REPRESENTATIVE_SELLER and proposal.get("cliente_id"):
            configured = self.category_discounts.for_client(db, proposal["cliente_id"])
            if any(value > 0 for value in configured.values()):
                category_discounts = configured

        lines = invoice_line_items(items, float(proposal["desconto_percentual"] or 0), category_discounts)
        if payment_mode == PAYMENT_MODE_INVOICE:
            missing_sku = [line["description"] for line in lines if not line.get("sku")]
            if missing_sku:
                raise PreconditionError(
                    code="items_without_sku",
                    message_key="items_without_sku",
                    details="Produto(s) sem SKU: " + ", ".join(missing_sku),
                    payload={"proposal_id": proposal["id"], "items": missing_sku},
                )

        products_value = lines_total(lines)
        shipping_cost = float(proposal["valor_frete"] or 0)
        church = self.churches.get_by_id(db, proposal["cliente_id"]) if proposal.get("cliente_id") else None
        address = proposal.get("cliente_endereco") or None
        shipping_method = proposal.get("metodo_frete")
        if payment_mode == PAYMENT_MODE_INVOICE:
            shipping_method = shipping_method or DEFAULT_INVOICE_SHIPPING_METHOD
        return ExternalOrderRequest(
            proposal_id=proposal["id"],
            client={
                "id": proposal.get("cliente_id"),
                "nome": proposal.get("cliente_nome"),
                "documento": proposal.get("cliente_cnpj"),
                "telefone": church.get("telefone") if church else None,
            },
            items=lines,
            shipping_cost=shipping_cost,
            shipping_method=shipping_method or "",
            payment_mode=payment_mode,
            products_value=products_value,
            total_value=round_money(products_value + shipping_cost),
            invoicing_term=proposal.get("prazo_faturamento_selecionado") if payment_mode == PAYMENT_MODE_INVOICE else None,
            shipping_address=address,
            seller_name=proposal.get("vendedor_nome"),
            discount_percent=float(proposal["desconto_percentual"] or 0),
            freight_type=proposal.get("frete_tipo") or "automatico",
            carrier=proposal.get("frete_transportadora"),
        )

    def _build_draft(
        self,
        db,
        payload: Dict[str, Any],
        *,
        current: Dict[str, Any] | None,
        role: str | None,
    ) -> ProposalDraft:
        base = dict(current or {})
        fields: Dict[str, Any] = {}

        cliente_id = payload.get("cliente_id", base.get("cliente_id"))
        church = None
        if cliente_id:
            church = self.churches.get_by_id(db, cliente_id)
            if church is None:
                raise NotFoundError(code="church_not_found", message_key="church_not_found")
        fields["cliente_id"] = int(cliente_id) if cliente_id else None

        cliente_nome = str(payload.get("cliente_nome") or base.get("cliente_nome") or "").strip()
        if not cliente_nome and church:
            cliente_nome = church["nome_igreja"]
        if not cliente_nome:
            raise ValidationError(code="client_name_required", message_key="client_name_required")
        fields["cliente_nome"] = cliente_nome
        fields["cliente_cnpj"] = payload.get("cliente_cnpj") or base.get("cliente_cnpj") or (church or {}).get("cnpj")
        address = payload.get("cliente_endereco") or base.get("cliente_endereco") or self._church_address(church)
        fields["cliente_endereco"] = address
        fields["pode_faturar"] = bool((church or {}).get("pode_faturar", base.get("pode_faturar", False)))
        if "prazo_faturamento_selecionado" in payload:
            term = payload.get("prazo_faturamento_selecionado")
            fields["prazo_faturamento_selecionado"] = normalize_term(term) if term else None

        raw_items = payload.get("itens", base.get("itens"))
        items = parse_items(raw_items)
        fields["itens"] = [item.to_dict() for item in items]

        discount = validate_discount(payload.get("desconto_percentual", base.get("desconto_percentual", 0)))
        fields["desconto_percentual"] = discount

        vendedor_id = payload.get("vendedor_id", base.get("vendedor_id")) or (church or {}).get("vendedor_id")
        fields["vendedor_id"] = int(vendedor_id) if vendedor_id else None
        seller = self.sellers.get_by_id(db, fields["vendedor_id"]) if fields["vendedor_id"] else None
        fields["vendedor_nome"] = (seller or {}).get("nome") or payload.get("vendedor_nome") or base.get("vendedor_nome")

        products_preview = compute_totals(items, discount, 0).products
        option, quote = self._resolve_shipping(payload, base, address, items, products_preview, role)
        totals = compute_totals(items, discount, option.cost)

        fields["metodo_frete"] = option.type
        fields["valor_frete"] = totals.shipping
        fields["frete_tipo"] = "manual" if option.type == "manual" else "automatico"
        fields["frete_transportadora"] = option.carrier if option.type == "manual" else None
        fields["frete_prazo_estimado"] = self._lead_time_text(option)
        fields["valor_produtos"] = totals.products
        fields["valor_total"] = totals.total
        return ProposalDraft(
            fields=fields,
            totals={"subtotal": totals.subtotal, "products": totals.products, "total": totals.total},
            quote=quote,
        )

    def _resolve_shipping(
        self,
        payload: Dict[str, Any],
        base: Dict[str, Any],
        address: Dict[str, Any] | None,
        items: List[LineItem],
        products_value: float,
        role: str | None,
    ) -> tuple[ShippingOption, ShippingQuote | None]:
        shipping = payload.get("frete")
        if shipping is None and base:
            if base.get("frete_tipo") == "manual":
                shipping = {
                    "tipo": "manual",
                    "transportadora": base.get("frete_transportadora"),
                    "valor": base.get("valor_frete"),
                    "prazo": base.get("frete_prazo_estimado"),
                }
            else:
                shipping = {"metodo": base.get("metodo_frete")}
        shipping = dict(shipping or {})

        if str(shipping.get("tipo") or "").lower() == "manual":
            require_capability("manual_shipping", role)
            option = self.shipping.manual(shipping.get("transportadora"), shipping.get("valor"), shipping.get("prazo"))
            return option, None

        quote = self.shipping.resolve(
            self._postal_code(address),
            [item.to_dict() for item in items],
            products_value,
        )
        method = str(shipping.get("metodo") or "").strip().lower()
        if method:
            return self._pick_option(quote, method), quote
        if quote.selected is None:
            raise ValidationError(code="shipping_method_unavailable", message_key="shipping_method_unavailable")
        return quote.selected, quote

    @staticmethod
    def _pick_option(quote: ShippingQuote, method: str) -> ShippingOption:
        option = quote.option(method)
        if option is None:
            raise ValidationError(
                code="shipping_method_unavailable",
                message_key="shipping_method_unavailable",
                payload={"metodo_frete": method},
            )
        return option

    @staticmethod
    def _lead_time_text(option: ShippingOption) -> str | None:
        if option.type == "manual":
            return option.lead_time_text
        if option.type == "retirada":
            return option.hours
        if option.estimated_delivery is not None:
            return f"{option.days} dias uteis ({option.estimated_delivery.isoformat()})"
        return None

    @staticmethod
    def _line_items(proposal: Dict[str, Any]) -> List[LineItem]:
        return [LineItem.from_payload(item) for item in (proposal.get("itens") or [])]

    @staticmethod
    def _postal_code(address: Dict[str, Any] | None) -> str | None:
        if not isinstance(address, dict):
            return None
        return address.get("cep") or None

    @staticmethod
    def _church_address(church: Dict[str, Any] | None) -> Dict[str, Any] | None:
        if not church:
            return None
        return {
            "cep": church.get("endereco_cep"),
            "rua": church.get("endereco_rua"),
            "numero": church.get("endereco_numero"),
            "bairro": church.get("endereco_bairro"),
            "cidade": church.get("endereco_cidade"),
            "estado": church.get("endereco_estado"),
        }

    def _now_text(self) -> str:
        return self.now_fn().astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")
