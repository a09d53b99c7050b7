from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.orm import Session

from app.services.audit_service import last_inventory_action, log_audit
from app.services.cost_ledger_service import (
    DerivedLedger,
    ExplicitLedger,
    LedgerEntry,
    LedgerMode,
    replace_cost_ledger,
    resolve_ledger,
    validate_explicit_ledger,
)
from app.services.errors import InvalidOrderFieldError, InventoryAdjustmentError, NotFoundError, OrderUpdateError
from app.services.inventory_service import StatusEdge, apply_inventory_adjustment, determine_edge, guard_completion
from app.services.line_item_service import NormalizedItem, coerce_id, validate_line_items
from app.services.order_store import (
    create_item,
    delete_items_by_order,
    get_contact,
    get_order,
    get_order_with_items,
    list_order_items,
    update_order,
)

logger = logging.getLogger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return 'UNSET'

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


@dataclass(frozen=True)
class OrderPatch:
    contact_id: object = UNSET
    status: object = UNSET
    order_date: object = UNSET
    notes: object = UNSET
    # None leaves the stored items untouched.
    items: list[Mapping] | None = None
    ledger: LedgerMode = field(default_factory=DerivedLedger)


@dataclass(frozen=True)
class OrderUpdateOutcome:
    order: dict
    edge: StatusEdge
    warnings: list[str] = field(default_factory=list)

    @property
    def inventory_adjusted(self) -> bool:
        return self.edge != StatusEdge.NONE and not self.warnings


def _parse_order_date(value: object) -> date | None:
    if value is None or value == '':
        return None
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    if len(raw) != 10:
        raise InvalidOrderFieldError('Order date must be in YYYY-MM-DD format')
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise InvalidOrderFieldError('Order date must be in YYYY-MM-DD format') from exc


def _requested_status(value: object) -> str | None:
    if value is UNSET or value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise InvalidOrderFieldError('Status must be a non-empty string')
    return value.strip()


def _order_field_values(db: Session, patch: OrderPatch, status: str | None) -> dict:
    values: dict = {}
    if patch.contact_id is not UNSET:
        if patch.contact_id is not None:
            contact_id = coerce_id(patch.contact_id)
            if contact_id is None:
                raise InvalidOrderFieldError('Contact ID must be a positive integer')
            if not get_contact(db, contact_id):
                raise NotFoundError('Contact', contact_id)
            values['contact_id'] = contact_id
        else:
            values['contact_id'] = None
    if patch.order_date is not UNSET:
        values['order_date'] = _parse_order_date(patch.order_date)
    if patch.notes is not UNSET:
        values['notes'] = None if patch.notes is None else str(patch.notes)
    if status is not None:
        values['status'] = status
    return values


def _stored_items(db: Session, order_id: int) -> list[NormalizedItem]:
    return [
        NormalizedItem(
            product_id=row.product_id,
            quantity=row.quantity,
            price=row.price,
            warehouse_id=row.warehouse_id,
        )
        for row in list_order_items(db, order_id)
    ]


def _replace_items(db: Session, *, order_id: int, items: list[NormalizedItem]) -> None:
    delete_items_by_order(db, order_id)
    for position, item in enumerate(items):
        create_item(
            db,
            order_id=order_id,
            product_id=item.product_id,
            quantity=item.quantity,
            price=item.price,
            warehouse_id=item.warehouse_id,
            position=position,
        )
    db.flush()


def apply_order_update(db: Session, order_id: int, patch: OrderPatch) -> OrderUpdateOutcome:
    """Apply an order update: items, cost ledger, status and stock.

    Validation and the completion guard run before anything is written, so any
    ``OrderUpdateError`` leaves the order exactly as it was. Inventory adjustment runs
    after the order row is written; its failure is reported in ``warnings`` instead of
    raised. The caller owns the transaction and commits on success.
    """
    order = get_order(db, order_id, for_update=True) if coerce_id(order_id) else None
    if not order:
        raise NotFoundError('Order', order_id)

    status = _requested_status(patch.status)
    values = _order_field_values(db, patch, status)

    new_items: list[NormalizedItem] | None = None
    ledger: list[LedgerEntry] | None = None
    if patch.items is not None:
        new_items, total = validate_line_items(db, patch.items)
        ledger = resolve_ledger(db, patch.ledger, new_items)
        values['total'] = total
    elif isinstance(patch.ledger, ExplicitLedger):
        ledger = validate_explicit_ledger(db, patch.ledger.entries)

    stored_items = _stored_items(db, order.id)
    effective_items = new_items if new_items is not None else stored_items
    previous_status = order.status
    edge = determine_edge(previous_status, status)
    # A failed adjustment left stock where the previous edge found it.
    stock_unchanged = (
        edge != StatusEdge.NONE and last_inventory_action(db, order.id) == 'INVENTORY_ADJUSTMENT_FAILED'
    )

    if edge == StatusEdge.RISING and not stock_unchanged:
        try:
            guard_completion(db, effective_items)
        except OrderUpdateError as exc:
            logger.warning('Order %s cannot be completed: %s', order.id, exc)
            raise

    if new_items is not None:
        _replace_items(db, order_id=order.id, items=new_items)
    if ledger is not None:
        replace_cost_ledger(db, order_id=order.id, ledger=ledger)
    update_order(db, order, values)
    log_audit(
        db,
        action='ORDER_UPDATED',
        order_id=order.id,
        metadata={
            'previous_status': previous_status,
            'status': order.status,
            'items_replaced': new_items is not None,
            'ledger_entries': len(ledger) if ledger is not None else None,
        },
    )

    # Restoration gives back what the previous completion took.
    adjust_items = effective_items if edge == StatusEdge.RISING else stored_items
    warnings: list[str] = []
    if stock_unchanged:
        logger.warning(
            'Order %s: skipping %s inventory adjustment because the previous one failed', order.id, edge.value
        )
        log_audit(
            db,
            action='INVENTORY_ADJUSTMENT_SKIPPED',
            order_id=order.id,
            metadata={'edge': edge.value, 'reason': 'previous adjustment failed'},
        )
        warnings.append('Order saved but inventory was not adjusted: the previous adjustment for this order failed')
    else:
        try:
            apply_inventory_adjustment(db, order_id=order.id, edge=edge, items=adjust_items)
        except InventoryAdjustmentError as exc:
            logger.exception('Inventory adjustment failed for order %s after the order was saved', order.id)
            log_audit(
                db,
                action='INVENTORY_ADJUSTMENT_FAILED',
                order_id=order.id,
                metadata={'edge': edge.value, 'error': str(exc)},
            )
            warnings.append(f'Order saved but inventory was not adjusted: {exc}')

    db.flush()
    logger.info(
        'Order %s updated (status %r -> %r, edge %s, %s item(s))',
        order.id,
        previous_status,
        order.status,
        edge.value,
        len(effective_items),
    )
    return OrderUpdateOutcome(order=get_order_with_items(db, order.id), edge=edge, warnings=warnings)
