from __future__ import annotations

import unicodedata
from enum import Enum
from typing import Dict


class PaymentStatus(str, Enum):
    PAID = "paid"
    PENDING = "pending"
    UNPAID = "unpaid"
    AUTHORIZED = "authorized"
    INVOICED = "invoiced"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    VOIDED = "voided"
    UNKNOWN = "unknown"


_ALIASES: Dict[str, PaymentStatus] = {
    "paid": PaymentStatus.PAID,
    "pago": PaymentStatus.PAID,
    "paga": PaymentStatus.PAID,
    "aprovado": PaymentStatus.PAID,
    "approved": PaymentStatus.PAID,
    "pending": PaymentStatus.PENDING,
    "pendente": PaymentStatus.PENDING,
    "aguardando": PaymentStatus.PENDING,
    "aguardando pagamento": PaymentStatus.PENDING,
    "unpaid": PaymentStatus.UNPAID,
    "nao pago": PaymentStatus.UNPAID,
    "authorized": PaymentStatus.AUTHORIZED,
    "autorizado": PaymentStatus.AUTHORIZED,
    "faturado": PaymentStatus.INVOICED,
    "invoiced": PaymentStatus.INVOICED,
    "refunded": PaymentStatus.REFUNDED,
    "reembolsado": PaymentStatus.REFUNDED,
    "partially refunded": PaymentStatus.PARTIALLY_REFUNDED,
    "parcialmente reembolsado": PaymentStatus.PARTIALLY_REFUNDED,
    "reembolso parcial": PaymentStatus.PARTIALLY_REFUNDED,
    "voided": PaymentStatus.VOIDED,
    "cancelled": PaymentStatus.VOIDED,
    "canceled": PaymentStatus.VOIDED,
    "cancelado": PaymentStatus.VOIDED,
}


def _fold(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.replace("_", " ").replace("-", " ").lower().split())


def canonicalize_payment_status(raw: str | None) -> PaymentStatus:
    """Map an upstream payment status string to ``PaymentStatus``.

    Accepts Portuguese and English spellings in any casing, with or
    without accents. Anything unrecognized is ``UNKNOWN``.
    """
    if raw is None:
        return PaymentStatus.UNKNOWN
    if isinstance(raw, PaymentStatus):
        return raw
    return _ALIASES.get(_fold(str(raw)), PaymentStatus.UNKNOWN)


def is_payable(raw: str | None) -> bool:
    return canonicalize_payment_status(raw) is PaymentStatus.PAID
