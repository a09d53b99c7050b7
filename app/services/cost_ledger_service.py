from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models import CalculationType, CostCategory, CostItem, Order
from app.services.errors import InvalidLedgerError, NotFoundError
from app.services.line_item_service import NormalizedItem, coerce_id, currency_quantum, money_limit
from app.services.order_store import (
    create_cost_item,
    delete_cost_items_by_order,
    get_cost_category,
    get_cost_rules,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CostRule:
    category_id: int
    calculation_type: CalculationType
    value: Decimal


@dataclass(frozen=True)
class LedgerEntry:
    category_id: int
    amount: Decimal


@dataclass(frozen=True)
class DerivedLedger:
    """Build the ledger from each product's cost breakdown rules."""


@dataclass(frozen=True)
class ExplicitLedger:
    """Use caller-supplied cost items verbatim."""

    entries: list[Mapping] = field(default_factory=list)


LedgerMode = DerivedLedger | ExplicitLedger
RuleLoader = Callable[[int], list[CostRule]]


def validate_cost_rule(calculation_type: str, value: object) -> tuple[CalculationType, Decimal]:
    try:
        kind = CalculationType(str(calculation_type))
    except ValueError as exc:
        raise ValueError('Calculation type must be "percentage" or "fixed_amount"') from exc
    try:
        parsed = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError('Valid value is required') from exc
    if not parsed.is_finite():
        raise ValueError('Valid value is required')
    if parsed < 0:
        raise ValueError('Value must be non-negative')
    if kind == CalculationType.PERCENTAGE and parsed > 100:
        raise ValueError('Percentage value cannot exceed 100%')
    return kind, parsed


def derive_cost_breakdown(rules: list[CostRule], *, quantity: int, price: Decimal) -> list[LedgerEntry]:
    entries: list[LedgerEntry] = []
    for rule in rules:
        if rule.calculation_type == CalculationType.PERCENTAGE:
            amount = price * Decimal(quantity) * (rule.value / Decimal('100'))
        else:
            amount = rule.value * Decimal(quantity)
        entries.append(LedgerEntry(category_id=rule.category_id, amount=amount))
    return entries


def merge_ledger(entries: list[LedgerEntry]) -> list[LedgerEntry]:
    totals: dict[int, Decimal] = {}
    for entry in entries:
        totals[entry.category_id] = totals.get(entry.category_id, Decimal('0')) + entry.amount
    quantum = currency_quantum()
    return [
        LedgerEntry(category_id=category_id, amount=amount.quantize(quantum))
        for category_id, amount in sorted(totals.items())
    ]


def build_cost_ledger(items: list[NormalizedItem], rule_loader: RuleLoader) -> list[LedgerEntry]:
    rules_by_product: dict[int, list[CostRule]] = {}
    derived: list[LedgerEntry] = []
    for item in items:
        if item.product_id not in rules_by_product:
            rules_by_product[item.product_id] = rule_loader(item.product_id)
        derived.extend(
            derive_cost_breakdown(rules_by_product[item.product_id], quantity=item.quantity, price=item.price)
        )
    return merge_ledger(derived)


def load_cost_rules(db: Session, product_id: int) -> list[CostRule]:
    rules: list[CostRule] = []
    for row in get_cost_rules(db, product_id):
        if not get_cost_category(db, row.category_id):
            logger.warning(
                'Skipping cost rule %s for product %s: category %s no longer exists',
                row.id,
                product_id,
                row.category_id,
            )
            continue
        rules.append(CostRule(category_id=row.category_id, calculation_type=row.calculation_type, value=row.value))
    return rules


def validate_explicit_ledger(db: Session, entries: list[Mapping]) -> list[LedgerEntry]:
    if not isinstance(entries, list):
        raise InvalidLedgerError('Cost items must be an array')

    validated: list[LedgerEntry] = []
    seen: set[int] = set()
    quantum = currency_quantum()
    for index, raw in enumerate(entries):
        if not isinstance(raw, Mapping):
            raise InvalidLedgerError(f'Cost item {index + 1} must be an object')
        category_id = coerce_id(raw.get('category_id'))
        if category_id is None:
            raise InvalidLedgerError(f'Cost item {index + 1} is missing a valid category_id')
        try:
            amount = Decimal(str(raw.get('amount')).strip())
        except InvalidOperation as exc:
            raise InvalidLedgerError(f'Cost item {index + 1} amount must be numeric') from exc
        if not amount.is_finite():
            raise InvalidLedgerError(f'Cost item {index + 1} amount must be numeric')
        if amount < 0:
            raise InvalidLedgerError(f'Cost item {index + 1} amount cannot be negative')
        if amount >= money_limit():
            raise InvalidLedgerError(f'Cost item {index + 1} amount is too large')
        if category_id in seen:
            raise InvalidLedgerError(f'Cost category {category_id} appears more than once')
        if not get_cost_category(db, category_id):
            raise NotFoundError('Cost category', category_id)
        seen.add(category_id)
        validated.append(LedgerEntry(category_id=category_id, amount=amount.quantize(quantum)))
    return validated


def resolve_ledger(db: Session, mode: LedgerMode, items: list[NormalizedItem]) -> list[LedgerEntry]:
    if isinstance(mode, ExplicitLedger):
        return validate_explicit_ledger(db, mode.entries)
    return build_cost_ledger(items, lambda product_id: load_cost_rules(db, product_id))


def replace_cost_ledger(db: Session, *, order_id: int, ledger: list[LedgerEntry]) -> None:
    delete_cost_items_by_order(db, order_id)
    for entry in ledger:
        create_cost_item(db, order_id=order_id, category_id=entry.category_id, amount=entry.amount)
    db.flush()


def cost_totals_by_category(db: Session, *, status: str | None = None) -> list[dict]:
    query = (
        select(
            CostCategory.id,
            CostCategory.name,
            func.count(func.distinct(CostItem.order_id)).label('order_count'),
            func.coalesce(func.sum(CostItem.amount), 0).label('total_amount'),
        )
        .join(CostItem, CostItem.category_id == CostCategory.id)
        .join(Order, Order.id == CostItem.order_id)
        .group_by(CostCategory.id, CostCategory.name)
        .order_by(CostCategory.name.asc())
    )
    if status:
        query = query.where(func.lower(Order.status) == status.strip().lower())

    return [
        {
            'category_id': row.id,
            'category_name': row.name,
            'order_count': int(row.order_count),
            'total_amount': Decimal(str(row.total_amount)).quantize(currency_quantum()),
        }
        for row in db.execute(query).all()
    ]
