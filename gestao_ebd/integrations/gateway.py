from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List


PAYMENT_MODE_INVOICE = "FATURAMENTO"
PAYMENT_MODE_IMMEDIATE = "PAGAMENTO_ONLINE"


class RemoteProcedureError(RuntimeError):
    pass


def _safe_str(value: object | None) -> str | None:
    if value is None:
        return None
    raw = str(value).strip()
    return raw or None


@dataclass(frozen=True)
class ExternalOrderRequest:
    proposal_id: int
    client: Dict[str, Any]
    items: List[Dict[str, Any]]
    shipping_cost: float
    shipping_method: str
    payment_mode: str
    products_value: float
    total_value: float
    invoicing_term: str | None = None
    shipping_address: Dict[str, Any] | None = None
    seller_name: str | None = None
    discount_percent: float = 0.0
    freight_type: str = "automatico"
    carrier: str | None = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "pedido_id": self.proposal_id,
            "contato": {"id": self.client.get("id")} if self.client.get("id") else None,
            "cliente": {
                "nome": self.client.get("nome"),
                "documento": self.client.get("documento"),
                "email": self.client.get("email"),
                "telefone": self.client.get("telefone"),
            },
            "endereco_entrega": self.shipping_address,
            "itens": [
                {
                    "codigo": item.get("sku"),
                    "sku": item.get("sku"),
                    "variant_id": item.get("variant_id"),
                    "descricao": item.get("description"),
                    "unidade": "UN",
                    "quantidade": item.get("quantity"),
                    "valor": item.get("unit_price"),
                    "preco_cheio": item.get("reference_price"),
                }
                for item in self.items
            ],
            "valor_frete": self.shipping_cost,
            "metodo_frete": self.shipping_method,
            "forma_pagamento": self.payment_mode,
            "valor_produtos": self.products_value,
            "valor_total": self.total_value,
            "vendedor_nome": self.seller_name,
            "desconto_percentual": self.discount_percent,
            "frete_tipo": self.freight_type,
            "frete_transportadora": self.carrier,
        }
        if self.invoicing_term:
            payload["faturamento_prazo"] = self.invoicing_term
        return {key: value for key, value in payload.items() if value is not None}


@dataclass(frozen=True)
class ExternalOrderResult:
    success: bool
    external_order_id: str | None = None
    external_order_number: str | None = None
    payment_url: str | None = None
    error: str | None = None

    @staticmethod
    def from_response(payload: Any) -> "ExternalOrderResult":
        if not isinstance(payload, dict):
            return ExternalOrderResult(success=False, error="Resposta inesperada do servico de pedidos.")
        error = payload.get("error")
        if error:
            if isinstance(error, dict):
                error = error.get("message") or error.get("description") or str(error)
            return ExternalOrderResult(success=False, error=str(error))
        order_id = _safe_str(payload.get("order_id") or payload.get("bling_order_id") or payload.get("draft_order_id"))
        order_number = _safe_str(payload.get("order_number") or payload.get("bling_order_number"))
        payment_url = _safe_str(payload.get("payment_url") or payload.get("invoiceUrl") or payload.get("cartUrl"))
        success = payload.get("success", True) is not False
        return ExternalOrderResult(
            success=success and bool(order_id or order_number or payment_url),
            external_order_id=order_id,
            external_order_number=order_number,
            payment_url=payment_url,
            error=None if success else _safe_str(payload.get("message")),
        )


@dataclass(frozen=True)
class CarrierRate:
    cost: float
    days: int


class RemoteProcedures(ABC):
    """Named server-side procedures the back office calls for side effects."""

    @abstractmethod
    def create_external_order(self, request: ExternalOrderRequest) -> ExternalOrderResult:
        raise NotImplementedError

    @abstractmethod
    def quote_shipping(self, postal_code: str, items: List[Dict[str, Any]]) -> Dict[str, CarrierRate]:
        raise NotImplementedError

    @abstractmethod
    def send_message(self, phone: str, text: str) -> None:
        raise NotImplementedError


def parse_carrier_rates(payload: Any) -> Dict[str, CarrierRate]:
    if not isinstance(payload, dict):
        raise RemoteProcedureError("Resposta de frete invalida.")
    rates: Dict[str, CarrierRate] = {}
    for carrier in ("pac", "sedex"):
        raw = payload.get(carrier)
        if not isinstance(raw, dict):
            continue
        try:
            rates[carrier] = CarrierRate(cost=float(raw["cost"]), days=int(raw["days"]))
        except (KeyError, TypeError, ValueError):
            continue
    if not rates:
        raise RemoteProcedureError(str(payload.get("error") or "Cotacao de frete sem transportadoras."))
    return rates
