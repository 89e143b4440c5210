from __future__ import annotations

from datetime import date
from typing import Any, Dict, List

from gestao_ebd.application.services import ServiceRegistry, build_services
from gestao_ebd.integrations.gateway import (
    PAYMENT_MODE_INVOICE,
    CarrierRate,
    ExternalOrderRequest,
    ExternalOrderResult,
    RemoteProcedureError,
    RemoteProcedures,
)


TEST_CONFIG: Dict[str, Any] = {
    "REMOTE_MODE": "mock",
    "PUBLIC_BASE_URL": "https://gestaoebd.test",
    "FREE_SHIPPING_THRESHOLD": 199.90,
    "FALLBACK_PAC_COST": 15.0,
    "FALLBACK_PAC_DAYS": 8,
    "FALLBACK_SEDEX_COST": 25.0,
    "FALLBACK_SEDEX_DAYS": 3,
    "PICKUP_ADDRESS": "Matriz",
    "PICKUP_HOURS": "Seg a Sex 9h-18h",
    "DEFAULT_COMMISSION_PERCENT": 5.0,
    "INVOICED_DEFAULT_COMMISSION_PERCENT": 1.5,
}


class FakeRemote(RemoteProcedures):
    def __init__(
        self,
        *,
        order_error: str | None = None,
        shipping_error: str | None = None,
        rates: Dict[str, CarrierRate] | None = None,
    ) -> None:
        self.order_error = order_error
        self.shipping_error = shipping_error
        self.rates = rates or {
            "pac": CarrierRate(cost=22.5, days=6),
            "sedex": CarrierRate(cost=41.0, days=2),
        }
        self.order_requests: List[ExternalOrderRequest] = []
        self.shipping_calls: List[str] = []
        self.messages: List[tuple[str, str]] = []

    def create_external_order(self, request: ExternalOrderRequest) -> ExternalOrderResult:
        self.order_requests.append(request)
        if self.order_error:
            raise RemoteProcedureError(self.order_error)
        number = str(500 + len(self.order_requests))
        if request.payment_mode == PAYMENT_MODE_INVOICE:
            return ExternalOrderResult(success=True, external_order_id=f"ERP-{number}", external_order_number=number)
        return ExternalOrderResult(
            success=True,
            external_order_id=f"DRAFT-{number}",
            external_order_number=number,
            payment_url=f"https://pagamento.test/{number}",
        )

    def quote_shipping(self, postal_code: str, items: List[Dict[str, Any]]) -> Dict[str, CarrierRate]:
        self.shipping_calls.append(postal_code)
        if self.shipping_error:
            raise RemoteProcedureError(self.shipping_error)
        return dict(self.rates)

    def send_message(self, phone: str, text: str) -> None:
        self.messages.append((phone, text))


def build_test_services(remote: RemoteProcedures | None = None, *, today: date | None = None) -> ServiceRegistry:
    registry = build_services(TEST_CONFIG, remote=remote or FakeRemote())
    if today is not None:
        registry.shipping.today_fn = lambda: today
        registry.commissions.today_fn = lambda: today
        registry.onboarding.today_fn = lambda: today
    return registry


def seed_seller(db, registry: ServiceRegistry, *, nome: str = "Ana Vendedora", tipo: str = "vendedor", percent=None) -> Dict[str, Any]:
    seller = registry.sellers.insert(db, nome=nome, tipo_vendedor=tipo, comissao_percentual=percent)
    db.commit()
    return seller


def seed_church(db, registry: ServiceRegistry, **fields) -> Dict[str, Any]:
    data = {"nome_igreja": "Igreja Batista Central", "endereco_cep": "20040-020"}
    data.update(fields)
    church = registry.churches.insert(db, data)
    db.commit()
    return church


def sample_items(*, with_sku: bool = True) -> List[Dict[str, Any]]:
    return [
        {
            "variant_id": "v-rev-1",
            "title": "Revista EBD Adultos",
            "price": 100,
            "quantity": 2,
            "sku": "REV-ADU" if with_sku else None,
        },
        {
            "variant_id": "v-bib-1",
            "title": "Biblia de Estudo",
            "price": 50,
            "quantity": 1,
            "sku": "BIB-EST" if with_sku else None,
        },
    ]
