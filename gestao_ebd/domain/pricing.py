from __future__ import annotations

import unicodedata
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping

from gestao_ebd.errors import ValidationError


_CENT = Decimal("0.01")


def _to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(code="price_invalid", message_key="price_invalid", details=f"valor: {value}") from None


def round_money(value: Any) -> float:
    return float(_to_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP))


def parse_money(value: Any, *, message_key: str = "price_invalid", allow_negative: bool = False) -> float:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(code=message_key, message_key=message_key)
    if isinstance(value, bool):
        raise ValidationError(code=message_key, message_key=message_key)
    raw = value.strip().replace(",", ".") if isinstance(value, str) else value
    try:
        parsed = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        raise ValidationError(code=message_key, message_key=message_key, details=f"valor: {value}") from None
    if not parsed.is_finite() or (parsed < 0 and not allow_negative):
        raise ValidationError(code=message_key, message_key=message_key, details=f"valor: {value}")
    return float(parsed.quantize(_CENT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class LineItem:
    variant_id: str
    quantity: int
    price: float
    title: str
    sku: str | None = None
    category: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "LineItem":
        title = str(payload.get("title") or "").strip()
        variant_id = str(payload.get("variant_id") or payload.get("variantId") or "").strip()
        if not variant_id:
            raise ValidationError(code="items_required", message_key="items_required", details="variant_id ausente")
        try:
            quantity = int(payload.get("quantity"))
        except (TypeError, ValueError):
            raise ValidationError(code="quantity_invalid", message_key="quantity_invalid") from None
        if quantity <= 0:
            raise ValidationError(code="quantity_invalid", message_key="quantity_invalid")
        price = parse_money(payload.get("price"), message_key="price_invalid")
        sku = str(payload.get("sku") or "").strip() or None
        category = str(payload.get("category") or "").strip() or None
        return cls(
            variant_id=variant_id,
            quantity=quantity,
            price=price,
            title=title or variant_id,
            sku=sku,
            category=category,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_items(payload: Iterable[Mapping[str, Any]] | None) -> List[LineItem]:
    items = [LineItem.from_payload(raw) for raw in (payload or [])]
    if not items:
        raise ValidationError(code="items_required", message_key="items_required")
    return items


def validate_discount(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        discount = float(str(value).replace(",", "."))
    except (TypeError, ValueError):
        raise ValidationError(code="discount_invalid", message_key="discount_invalid") from None
    if discount != discount or discount < 0 or discount > 100:
        raise ValidationError(code="discount_invalid", message_key="discount_invalid", details=f"desconto: {value}")
    return discount


@dataclass(frozen=True)
class ProposalTotals:
    subtotal: float
    discount_percent: float
    products: float
    shipping: float
    total: float


def compute_subtotal(items: Iterable[LineItem]) -> float:
    total = sum((_to_decimal(item.price) * item.quantity for item in items), Decimal("0"))
    return round_money(total)


def compute_totals(items: Iterable[LineItem], discount_percent: Any, shipping_cost: Any) -> ProposalTotals:
    """Each stage is rounded to cents before feeding the next one."""
    discount = validate_discount(discount_percent)
    shipping = parse_money(shipping_cost, message_key="shipping_cost_invalid")
    subtotal = compute_subtotal(items)
    factor = Decimal("1") - _to_decimal(discount) / Decimal("100")
    products = round_money(_to_decimal(subtotal) * factor)
    total = round_money(_to_decimal(products) + _to_decimal(shipping))
    return ProposalTotals(
        subtotal=subtotal,
        discount_percent=discount,
        products=products,
        shipping=shipping,
        total=total,
    )


CATEGORY_KEYWORDS = (
    ("revistas", ("revista", "licao", "ebd")),
    ("biblias", ("biblia",)),
    ("infantil", ("infantil", "kids", "crianca")),
    ("kits", ("kit",)),
    ("livros", ("livro",)),
)
DEFAULT_CATEGORY = "outros"


def _fold(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


def categorize_product(title: str | None) -> str:
    normalized = _fold(str(title or ""))
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in normalized for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def item_category(item: LineItem) -> str:
    return item.category or categorize_product(item.title)


def invoice_line_items(
    items: Iterable[LineItem],
    discount_percent: float,
    category_discounts: Mapping[str, float] | None = None,
) -> List[Dict[str, Any]]:
    """Line items as sent to the external order.

    With ``category_discounts`` each item uses its category percentage
    (missing categories get no discount) instead of the global one.
    """
    lines = []
    for item in items:
        if category_discounts is not None:
            percent = float(category_discounts.get(item_category(item), 0.0) or 0.0)
        else:
            percent = float(discount_percent or 0.0)
        factor = Decimal("1") - _to_decimal(percent) / Decimal("100")
        lines.append(
            {
                "variant_id": item.variant_id,
                "sku": item.sku,
                "description": item.title,
                "quantity": item.quantity,
                "unit_price": round_money(_to_decimal(item.price) * factor),
                "reference_price": item.price,
                "discount_percent": percent,
            }
        )
    return lines


def lines_total(lines: Iterable[Mapping[str, Any]]) -> float:
    total = sum((_to_decimal(line["unit_price"]) * int(line["quantity"]) for line in lines), Decimal("0"))
    return round_money(total)
