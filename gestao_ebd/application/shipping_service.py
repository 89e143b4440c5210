from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Dict, Iterable, List

from gestao_ebd.domain.pricing import parse_money
from gestao_ebd.domain.shipping import (
    ShippingOption,
    ShippingQuote,
    add_business_days,
    normalize_postal_code,
)
from gestao_ebd.errors import ValidationError
from gestao_ebd.integrations.gateway import CarrierRate, RemoteProcedureError, RemoteProcedures
from gestao_ebd.messages import warning_message


FREE_SHIPPING_DAYS = 10
PICKUP_LABEL = "Retirada na Matriz"


class ShippingResolver:
    def __init__(
        self,
        remote: RemoteProcedures,
        *,
        free_shipping_threshold: float = 199.90,
        fallback_rates: Dict[str, CarrierRate] | None = None,
        pickup_address: str = "",
        pickup_hours: str = "",
        today_fn: Callable[[], date] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.remote = remote
        self.free_shipping_threshold = float(free_shipping_threshold)
        self.fallback_rates = dict(
            fallback_rates
            or {
                "pac": CarrierRate(cost=15.0, days=8),
                "sedex": CarrierRate(cost=25.0, days=3),
            }
        )
        self.pickup_address = pickup_address
        self.pickup_hours = pickup_hours
        self.today_fn = today_fn or date.today
        self.logger = logger or logging.getLogger("gestao_ebd")

    @classmethod
    def from_config(cls, config, remote: RemoteProcedures, **kwargs) -> "ShippingResolver":
        return cls(
            remote,
            free_shipping_threshold=config.get("FREE_SHIPPING_THRESHOLD", 199.90),
            fallback_rates={
                "pac": CarrierRate(cost=config.get("FALLBACK_PAC_COST", 15.0), days=config.get("FALLBACK_PAC_DAYS", 8)),
                "sedex": CarrierRate(
                    cost=config.get("FALLBACK_SEDEX_COST", 25.0),
                    days=config.get("FALLBACK_SEDEX_DAYS", 3),
                ),
            },
            pickup_address=config.get("PICKUP_ADDRESS", ""),
            pickup_hours=config.get("PICKUP_HOURS", ""),
            **kwargs,
        )

    def free_shipping_eligible(self, subtotal: float) -> bool:
        return round(float(subtotal), 2) >= round(self.free_shipping_threshold, 2)

    def resolve(
        self,
        postal_code: str | None,
        items: Iterable[Dict[str, Any]],
        subtotal: float,
        *,
        reference_id: Any = None,
    ) -> ShippingQuote:
        cart = [{"quantity": int(item.get("quantity") or 0)} for item in items]
        cep = normalize_postal_code(postal_code)
        today = self.today_fn()
        eligible = self.free_shipping_eligible(subtotal)

        options: List[ShippingOption] = []
        warning = None
        fallback = False
        if cep:
            try:
                rates = self.remote.quote_shipping(cep, cart)
            except RemoteProcedureError as exc:
                self.logger.warning(
                    "shipping_quote_fallback",
                    extra={"postal_code": cep, "reference_id": reference_id, "error": str(exc)},
                )
                rates = self.fallback_rates
                warning = warning_message("shipping_quote_fallback")
                fallback = True
            options.extend(self._carrier_options(rates, today))

        if eligible:
            options.append(
                ShippingOption(
                    type="free",
                    label=self._free_label(),
                    cost=0.0,
                    days=FREE_SHIPPING_DAYS,
                    estimated_delivery=add_business_days(today, FREE_SHIPPING_DAYS),
                )
            )
        options.append(
            ShippingOption(
                type="retirada",
                label=PICKUP_LABEL,
                cost=0.0,
                days=0,
                estimated_delivery=today,
                address=self.pickup_address,
                hours=self.pickup_hours,
            )
        )
        return ShippingQuote(options=options, selected=self._auto_select(options), warning=warning, fallback=fallback)

    def manual(self, carrier: str | None, cost: Any, lead_time_text: str | None = None) -> ShippingOption:
        carrier_name = str(carrier or "").strip()
        if not carrier_name:
            raise ValidationError(code="carrier_required", message_key="carrier_required")
        value = parse_money(cost, message_key="shipping_cost_invalid")
        return ShippingOption(
            type="manual",
            label=carrier_name,
            cost=value,
            days=0,
            carrier=carrier_name,
            lead_time_text=str(lead_time_text or "").strip() or None,
        )

    @staticmethod
    def _auto_select(options: List[ShippingOption]) -> ShippingOption | None:
        for preferred in ("free", "pac"):
            for option in options:
                if option.type == preferred:
                    return option
        return options[0] if options else None

    def _carrier_options(self, rates: Dict[str, CarrierRate], today: date) -> List[ShippingOption]:
        options = []
        for carrier, label in (("pac", "PAC"), ("sedex", "SEDEX")):
            rate = rates.get(carrier)
            if rate is None:
                continue
            options.append(
                ShippingOption(
                    type=carrier,
                    label=label,
                    cost=round(float(rate.cost), 2),
                    days=int(rate.days),
                    estimated_delivery=add_business_days(today, int(rate.days)),
                    carrier="Correios",
                )
            )
        return options

    def _free_label(self) -> str:
        threshold = f"{self.free_shipping_threshold:.2f}".replace(".", ",")
        return f"Frete Gratis (compras acima de R${threshold})"
