from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Dict, Iterable, List

from gestao_ebd.domain.commission import (
    BatchApprovalResult,
    CommissionParcela,
    CommissionStatus,
    ParcelaOrigin,
    build_installment_schedule,
    commission_value,
)
from gestao_ebd.domain.payment_status import canonicalize_payment_status, is_payable
from gestao_ebd.errors import AlreadySettledError, AppError, NotFoundError, PreconditionError
from gestao_ebd.infrastructure.repositories.order_repository import OrderRepository
from gestao_ebd.infrastructure.repositories.parcela_repository import ParcelaRepository
from gestao_ebd.infrastructure.repositories.party_repository import ChurchRepository, SellerRepository
from gestao_ebd.messages import error_message


class CommissionService:
    def __init__(
        self,
        *,
        orders: OrderRepository,
        parcelas: ParcelaRepository,
        sellers: SellerRepository,
        churches: ChurchRepository,
        default_percent: float = 5.0,
        invoiced_default_percent: float = 1.5,
        today_fn: Callable[[], date] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.orders = orders
        self.parcelas = parcelas
        self.sellers = sellers
        self.churches = churches
        self.default_percent = float(default_percent)
        self.invoiced_default_percent = float(invoiced_default_percent)
        self.today_fn = today_fn or date.today
        self.logger = logger or logging.getLogger("gestao_ebd")

    def approve(self, db, order_id: int) -> CommissionParcela:
        order = self.orders.get_by_id(db, order_id)
        if order is None:
            raise NotFoundError(code="order_not_found", message_key="order_not_found", payload={"order_id": order_id})
        if order["comissao_aprovada"]:
            raise AlreadySettledError(payload={"order_id": order_id})

        if not is_payable(order.get("status_pagamento")):
            raise PreconditionError(
                code="order_not_payable",
                message_key="order_not_payable",
                payload={
                    "order_id": order_id,
                    "payment_status": canonicalize_payment_status(order.get("status_pagamento")).value,
                },
            )

        vendedor_id = self._resolve_seller_id(db, order)
        if vendedor_id is None:
            raise PreconditionError(
                code="order_without_seller",
                message_key="order_without_seller",
                payload={"order_id": order_id},
            )

        percent = self._seller_percent(db, vendedor_id, self.default_percent)
        value = float(order["valor_total"] or 0)
        draft = {
            "vendedor_id": vendedor_id,
            "cliente_id": order.get("cliente_id"),
            "pedido_id": order_id,
            "proposta_id": None,
            "origem": ParcelaOrigin.ONLINE,
            "numero_parcela": 1,
            "total_parcelas": 1,
            "valor": value,
            "valor_comissao": commission_value(value, percent),
            "data_vencimento": str(order["order_date"])[:10],
            "status": "aguardando",
            "comissao_status": CommissionStatus.LIBERADA,
            "metodo_pagamento": None,
            "external_order_id": None,
            "external_order_number": order.get("order_number"),
        }
        try:
            created = self.parcelas.insert_if_absent(db, draft)
            self.orders.mark_commission_approved(db, order_id)
            db.commit()
        except Exception:
            db.rollback()
            raise
        if created is None:
            # A concurrent approval inserted the parcela first.
            raise AlreadySettledError(payload={"order_id": order_id})

        self.logger.info(
            "commission_approved",
            extra={
                "order_id": order_id,
                "vendedor_id": vendedor_id,
                "parcela_id": created["id"],
                "valor_comissao": created["valor_comissao"],
            },
        )
        return CommissionParcela.from_row(created)

    def approve_batch(self, db, order_ids: Iterable[int]) -> BatchApprovalResult:
        result = BatchApprovalResult()
        for order_id in order_ids:
            try:
                result.approved.append(self.approve(db, order_id))
            except AlreadySettledError:
                result.skipped.append(order_id)
            except AppError as exc:
                self.logger.warning(
                    "commission_batch_item_failed",
                    extra={"order_id": order_id, "error_code": exc.code},
                )
                result.failed[order_id] = exc.user_message()
            except Exception:  # noqa: BLE001
                self.logger.exception("commission_batch_item_failed", extra={"order_id": order_id})
                result.failed[order_id] = error_message("unexpected_error")
        self.logger.info(
            "commission_batch_processed",
            extra={
                "approved": len(result.approved),
                "skipped": len(result.skipped),
                "failed": len(result.failed),
            },
        )
        return result

    def schedule_invoiced(
        self,
        db,
        proposal: Dict[str, Any],
        *,
        term: str,
        total_value: float,
        invoice_date: date | None = None,
        external_order_id: str | None = None,
        external_order_number: str | None = None,
    ) -> List[CommissionParcela]:
        """Installment parcelas for an invoiced proposal; safe to call again."""
        vendedor_id = proposal.get("vendedor_id")
        if not vendedor_id:
            self.logger.warning("commission_schedule_skipped", extra={"proposal_id": proposal["id"]})
            return []

        percent = self._seller_percent(db, vendedor_id, self.invoiced_default_percent)
        drafts = build_installment_schedule(total_value, term, percent, invoice_date or self.today_fn())
        for draft in drafts:
            self.parcelas.insert_if_absent(
                db,
                {
                    "vendedor_id": vendedor_id,
                    "cliente_id": proposal.get("cliente_id"),
                    "pedido_id": None,
                    "proposta_id": proposal["id"],
                    "origem": ParcelaOrigin.FATURADO,
                    "numero_parcela": draft.numero_parcela,
                    "total_parcelas": draft.total_parcelas,
                    "valor": draft.valor,
                    "valor_comissao": draft.valor_comissao,
                    "data_vencimento": draft.data_vencimento.isoformat(),
                    "status": "aguardando",
                    "comissao_status": CommissionStatus.PENDENTE,
                    "metodo_pagamento": draft.metodo_pagamento,
                    "external_order_id": external_order_id,
                    "external_order_number": external_order_number,
                },
            )
        self.logger.info(
            "commission_schedule_created",
            extra={"proposal_id": proposal["id"], "vendedor_id": vendedor_id, "parcelas": len(drafts), "term": term},
        )
        return [CommissionParcela.from_row(row) for row in self.parcelas.list_by_proposal(db, proposal["id"])]

    def list_parcelas(
        self,
        db,
        *,
        vendedor_id: int | None = None,
        comissao_status: str | None = None,
    ) -> List[CommissionParcela]:
        rows = self.parcelas.list(db, vendedor_id=vendedor_id, comissao_status=comissao_status)
        return [CommissionParcela.from_row(row) for row in rows]

    def pending_orders(self, db, *, vendedor_id: int | None = None) -> List[Dict[str, Any]]:
        orders = self.orders.list_pending_commission(db, vendedor_id=vendedor_id)
        for order in orders:
            status = canonicalize_payment_status(order.get("status_pagamento"))
            order["payment_status"] = status.value
            order["approvable"] = is_payable(status)
        return orders

    def _resolve_seller_id(self, db, order: Dict[str, Any]) -> int | None:
        if order.get("vendedor_id"):
            return int(order["vendedor_id"])
        cliente_id = order.get("cliente_id")
        if not cliente_id:
            return None
        church = self.churches.get_by_id(db, cliente_id)
        if church and church.get("vendedor_id"):
            return int(church["vendedor_id"])
        return None

    def _seller_percent(self, db, vendedor_id: int, default: float) -> float:
        seller = self.sellers.get_by_id(db, vendedor_id)
        percent = seller.get("comissao_percentual") if seller else None
        if percent is None or float(percent) <= 0:
            return default
        return float(percent)
