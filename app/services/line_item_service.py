from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm import Session

from app.config import settings
from app.services.errors import InvalidItemError, UnknownItemReferenceError
from app.services.order_store import get_product, get_warehouse

ITEM_RULE_MESSAGE = 'Each item must have product_id, positive quantity, and non-negative price'
MAX_INT = 2**31 - 1
# Money columns are Numeric(12, currency_places).
MONEY_DIGITS = 12


@dataclass(frozen=True)
class NormalizedItem:
    product_id: int
    quantity: int
    price: Decimal
    warehouse_id: int | None = None

    @property
    def line_total(self) -> Decimal:
        return self.price * Decimal(self.quantity)


def currency_quantum() -> Decimal:
    return Decimal(1).scaleb(-settings.currency_places)


def money_limit() -> Decimal:
    return Decimal(10) ** (MONEY_DIGITS - settings.currency_places)


def coerce_id(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 0 < value <= MAX_INT else None
    raw = str(value).strip()
    if not raw.isdigit() or len(raw) > len(str(MAX_INT)):
        return None
    parsed = int(raw)
    return parsed if 0 < parsed <= MAX_INT else None


def _parse_decimal(value: object) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


def _coerce_quantity(value: object) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value if 0 < value <= MAX_INT else None
    parsed = _parse_decimal(value)
    # Bound the exponent before int() so huge literals are never expanded.
    if parsed is None or parsed <= 0 or parsed.adjusted() > 9:
        return None
    if parsed != parsed.to_integral_value() or parsed > MAX_INT:
        return None
    return int(parsed)


def _coerce_price(value: object) -> Decimal | None:
    parsed = _parse_decimal(value)
    if parsed is None or parsed < 0 or parsed >= money_limit():
        return None
    quantized = parsed.quantize(currency_quantum())
    # Sub-cent prices are rejected rather than rounded, so totals stay exact.
    if quantized != parsed:
        return None
    return quantized


def normalize_item(raw: Mapping, *, index: int) -> NormalizedItem:
    product_id = coerce_id(raw.get('product_id'))
    quantity = _coerce_quantity(raw.get('quantity'))
    price = _coerce_price(raw.get('price'))
    if product_id is None or quantity is None or price is None:
        raise InvalidItemError(f'{ITEM_RULE_MESSAGE} (item {index + 1})', index=index)

    warehouse_raw = raw.get('warehouse_id')
    warehouse_id = None
    if warehouse_raw not in (None, ''):
        warehouse_id = coerce_id(warehouse_raw)
        if warehouse_id is None:
            raise InvalidItemError(f'Invalid warehouse_id for item {index + 1}', index=index)

    return NormalizedItem(product_id=product_id, quantity=quantity, price=price, warehouse_id=warehouse_id)


def compute_total(items: list[NormalizedItem]) -> Decimal:
    total = sum((item.line_total for item in items), Decimal('0'))
    return total.quantize(currency_quantum())


def validate_line_items(db: Session, raw_items: list[Mapping]) -> tuple[list[NormalizedItem], Decimal]:
    """Normalize submitted items and compute the order total.

    Reads products and warehouses to confirm they exist; writes nothing.
    """
    if not isinstance(raw_items, list):
        raise InvalidItemError('Items must be an array')

    normalized: list[NormalizedItem] = []
    known_products: set[int] = set()
    known_warehouses: set[int] = set()
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, Mapping):
            raise InvalidItemError(f'{ITEM_RULE_MESSAGE} (item {index + 1})', index=index)
        item = normalize_item(raw, index=index)

        if item.product_id not in known_products:
            if not get_product(db, item.product_id):
                raise UnknownItemReferenceError(f'Product with ID {item.product_id} not found', index=index)
            known_products.add(item.product_id)

        if item.warehouse_id is not None and item.warehouse_id not in known_warehouses:
            if not get_warehouse(db, item.warehouse_id):
                raise UnknownItemReferenceError(f'Warehouse with ID {item.warehouse_id} not found', index=index)
            known_warehouses.add(item.warehouse_id)

        normalized.append(item)

    total = compute_total(normalized)
    if total >= money_limit():
        raise InvalidItemError('Order total is too large')
    return normalized, total
