from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List

from gestao_ebd.errors import ValidationError


@dataclass(frozen=True)
class ShippingOption:
    type: str
    label: str
    cost: float
    days: int
    estimated_delivery: date | None = None
    carrier: str | None = None
    lead_time_text: str | None = None
    address: str | None = None
    hours: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        if self.estimated_delivery is not None:
            payload["estimated_delivery"] = self.estimated_delivery.isoformat()
        return payload


@dataclass(frozen=True)
class ShippingQuote:
    options: List[ShippingOption] = field(default_factory=list)
    selected: ShippingOption | None = None
    warning: str | None = None
    fallback: bool = False

    def option(self, option_type: str) -> ShippingOption | None:
        for candidate in self.options:
            if candidate.type == option_type:
                return candidate
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "options": [option.to_dict() for option in self.options],
            "selected": self.selected.type if self.selected else None,
            "warning": self.warning,
            "fallback": self.fallback,
        }


def add_business_days(start: date, days: int) -> date:
    """Add ``days`` weekdays to ``start``; Saturdays and Sundays are skipped."""
    current = start
    remaining = int(days)
    while remaining > 0:
        current += timedelta(days=1)
        if current.weekday() < 5:
            remaining -= 1
    return current


_NON_DIGITS = re.compile(r"\D")


def normalize_postal_code(value: str | None) -> str | None:
    raw = str(value or "").strip()
    if not raw:
        return None
    digits = _NON_DIGITS.sub("", raw)
    if len(digits) != 8:
        raise ValidationError(code="postal_code_invalid", message_key="postal_code_invalid", details=f"cep: {raw}")
    return digits
