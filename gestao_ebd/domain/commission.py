from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Tuple

from gestao_ebd.domain.pricing import round_money
from gestao_ebd.errors import ValidationError


class CommissionStatus:
    LIBERADA = "liberada"
    AGENDADA = "agendada"
    PENDENTE = "pendente"
    ATRASADA = "atrasada"
    PAGA = "paga"


class ParcelaOrigin:
    ONLINE = "online"
    FATURADO = "faturado"
    BALCAO = "balcao"


# term -> (days after invoicing, payment method) per installment
INSTALLMENT_PLANS: Dict[str, Tuple[Tuple[int, str], ...]] = {
    "30": ((30, "boleto_30"),),
    "60_direto": ((60, "boleto_60"),),
    "60": ((30, "boleto_30"), (60, "boleto_60")),
    "60_90": ((60, "boleto_60"), (90, "boleto_90")),
    "90": ((30, "boleto_30"), (60, "boleto_60"), (90, "boleto_90")),
    "60_75_90": ((60, "boleto_60"), (75, "boleto_75"), (90, "boleto_90")),
    "60_90_120": ((60, "boleto_60"), (90, "boleto_90"), (120, "boleto_120")),
}
DEFAULT_TERM = "30"


def normalize_term(term: str | None) -> str:
    normalized = str(term or "").strip().lower()
    if normalized not in INSTALLMENT_PLANS:
        raise ValidationError(code="invoicing_term_invalid", message_key="invoicing_term_invalid", details=f"prazo: {term}")
    return normalized


def commission_value(value: float, percent: float) -> float:
    return round_money(Decimal(str(value)) * Decimal(str(percent)) / Decimal("100"))


@dataclass(frozen=True)
class InstallmentDraft:
    numero_parcela: int
    total_parcelas: int
    valor: float
    valor_comissao: float
    data_vencimento: date
    metodo_pagamento: str


@dataclass(frozen=True)
class CommissionParcela:
    id: int | None
    vendedor_id: int
    cliente_id: int | None
    pedido_id: int | None
    proposta_id: int | None
    origem: str
    numero_parcela: int
    total_parcelas: int
    valor: float
    valor_comissao: float
    data_vencimento: str
    status: str
    comissao_status: str
    metodo_pagamento: str | None = None
    external_order_id: str | None = None
    external_order_number: str | None = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "CommissionParcela":
        return cls(
            id=row.get("id"),
            vendedor_id=row["vendedor_id"],
            cliente_id=row.get("cliente_id"),
            pedido_id=row.get("pedido_id"),
            proposta_id=row.get("proposta_id"),
            origem=row["origem"],
            numero_parcela=int(row["numero_parcela"]),
            total_parcelas=int(row["total_parcelas"]),
            valor=float(row["valor"]),
            valor_comissao=float(row["valor_comissao"]),
            data_vencimento=str(row["data_vencimento"]),
            status=row["status"],
            comissao_status=row["comissao_status"],
            metodo_pagamento=row.get("metodo_pagamento"),
            external_order_id=row.get("external_order_id"),
            external_order_number=row.get("external_order_number"),
        )


@dataclass
class BatchApprovalResult:
    approved: List[CommissionParcela] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "approved": [parcela.pedido_id for parcela in self.approved],
            "skipped": list(self.skipped),
            "failed": [{"order_id": order_id, "error": error} for order_id, error in self.failed.items()],
        }


def build_installment_schedule(
    total_value: float,
    term: str,
    commission_percent: float,
    invoice_date: date,
) -> List[InstallmentDraft]:
    plan = INSTALLMENT_PLANS[normalize_term(term)]
    count = len(plan)
    total_cents = int((Decimal(str(total_value)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    base_cents = total_cents // count
    remainder = total_cents - base_cents * count

    drafts = []
    for index, (days, method) in enumerate(plan):
        cents = base_cents + (remainder if index == count - 1 else 0)
        value = float(Decimal(cents) / 100)
        drafts.append(
            InstallmentDraft(
                numero_parcela=index + 1,
                total_parcelas=count,
                valor=value,
                valor_comissao=commission_value(value, commission_percent),
                data_vencimento=invoice_date + timedelta(days=days),
                metodo_pagamento=method,
            )
        )
    return drafts
