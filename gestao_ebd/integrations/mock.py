from __future__ import annotations

import itertools
from threading import Lock
from typing import Any, Dict, List

from gestao_ebd.integrations.gateway import (
    PAYMENT_MODE_INVOICE,
    CarrierRate,
    ExternalOrderRequest,
    ExternalOrderResult,
    RemoteProcedureError,
    RemoteProcedures,
)


# Region (first CEP digit) -> (pac base, sedex base, pac days, sedex days)
REGION_RATES: Dict[str, tuple[float, float, int, int]] = {
    "0": (18.90, 32.50, 4, 1),
    "1": (19.90, 34.90, 5, 2),
    "2": (15.90, 28.90, 3, 1),
    "3": (21.50, 38.90, 5, 2),
    "4": (26.90, 45.50, 7, 3),
    "5": (28.90, 49.90, 8, 3),
    "6": (31.90, 55.90, 9, 4),
    "7": (24.90, 42.90, 6, 2),
    "8": (22.90, 39.90, 5, 2),
    "9": (23.90, 40.90, 6, 2),
}
PER_ITEM_SURCHARGE = 1.50
MOCK_PAYMENT_BASE_URL = "https://loja.gestaoebd.com.br/invoices"


class MockRemoteProcedures(RemoteProcedures):
    """Deterministic stand-in for development and demos."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._sequence = itertools.count(1001)
        self.sent_messages: List[Dict[str, str]] = []

    def create_external_order(self, request: ExternalOrderRequest) -> ExternalOrderResult:
        missing_sku = [item.get("description") for item in request.items if not item.get("sku")]
        if request.payment_mode == PAYMENT_MODE_INVOICE and missing_sku:
            raise RemoteProcedureError(
                '{"error": "Produto(s) sem SKU: ' + ", ".join(str(name) for name in missing_sku) + '"}'
            )
        with self._lock:
            number = next(self._sequence)
        if request.payment_mode == PAYMENT_MODE_INVOICE:
            return ExternalOrderResult(
                success=True,
                external_order_id=f"MOCK-{number}",
                external_order_number=str(number),
            )
        return ExternalOrderResult(
            success=True,
            external_order_id=f"DRAFT-{number}",
            external_order_number=str(number),
            payment_url=f"{MOCK_PAYMENT_BASE_URL}/{request.proposal_id}-{number}",
        )

    def quote_shipping(self, postal_code: str, items: List[Dict[str, Any]]) -> Dict[str, CarrierRate]:
        region = str(postal_code or "")[:1]
        if region not in REGION_RATES:
            raise RemoteProcedureError(f"CEP sem cobertura: {postal_code}")
        pac_cost, sedex_cost, pac_days, sedex_days = REGION_RATES[region]
        quantity = sum(int(item.get("quantity") or 0) for item in items)
        surcharge = max(quantity - 1, 0) * PER_ITEM_SURCHARGE
        return {
            "pac": CarrierRate(cost=round(pac_cost + surcharge, 2), days=pac_days),
            "sedex": CarrierRate(cost=round(sedex_cost + surcharge, 2), days=sedex_days),
        }

    def send_message(self, phone: str, text: str) -> None:
        self.sent_messages.append({"phone": phone, "text": text})
