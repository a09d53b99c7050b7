from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.models import is_complete_status
from app.services.audit_service import log_audit
from app.services.errors import (
    InsufficientInventoryError,
    InventoryAdjustmentError,
    MissingWarehouseError,
    Shortfall,
)
from app.services.line_item_service import NormalizedItem
from app.services.order_store import adjust_inventory, get_inventory, list_low_stock

logger = logging.getLogger(__name__)

StockKey = tuple[int, int]
AvailableLoader = Callable[[int, int], int]


class StatusEdge(str, Enum):
    NONE = 'NONE'
    RISING = 'RISING'
    FALLING = 'FALLING'


def determine_edge(previous_status: str | None, requested_status: str | None) -> StatusEdge:
    if requested_status is None:
        return StatusEdge.NONE
    was_complete = is_complete_status(previous_status)
    will_be_complete = is_complete_status(requested_status)
    if will_be_complete and not was_complete:
        return StatusEdge.RISING
    if was_complete and not will_be_complete:
        return StatusEdge.FALLING
    return StatusEdge.NONE


def collect_requirements(items: list[NormalizedItem]) -> dict[StockKey, int]:
    missing = [index for index, item in enumerate(items) if item.warehouse_id is None]
    if missing:
        raise MissingWarehouseError(missing)

    required: dict[StockKey, int] = {}
    for item in items:
        key = (item.product_id, item.warehouse_id)
        required[key] = required.get(key, 0) + item.quantity
    return required


def find_shortfalls(required: dict[StockKey, int], available_loader: AvailableLoader) -> list[Shortfall]:
    shortfalls: list[Shortfall] = []
    for (product_id, warehouse_id), requested in sorted(required.items()):
        available = available_loader(product_id, warehouse_id)
        if available < requested:
            shortfalls.append(
                Shortfall(product_id=product_id, warehouse_id=warehouse_id, requested=requested, available=available)
            )
    return shortfalls


def guard_completion(db: Session, items: list[NormalizedItem]) -> dict[StockKey, int]:
    """Check that every item can be fulfilled from its warehouse.

    Inventory rows are read ``FOR UPDATE`` so a concurrent completion against the same
    rows waits until this transaction ends. Raises before anything is written.
    """
    required = collect_requirements(items)

    def _available(product_id: int, warehouse_id: int) -> int:
        row = get_inventory(db, product_id, warehouse_id, for_update=True)
        return row.quantity if row else 0

    shortfalls = find_shortfalls(required, _available)
    if shortfalls:
        raise InsufficientInventoryError(shortfalls)
    return required


def _restorable_requirements(items: list[NormalizedItem], *, order_id: int) -> dict[StockKey, int]:
    restorable = [item for item in items if item.warehouse_id is not None]
    if len(restorable) != len(items):
        logger.warning(
            'Order %s left complete with %s item(s) lacking a warehouse; those are not restored',
            order_id,
            len(items) - len(restorable),
        )
    return collect_requirements(restorable)


def apply_inventory_adjustment(
    db: Session,
    *,
    order_id: int,
    edge: StatusEdge,
    items: list[NormalizedItem],
) -> dict[StockKey, int]:
    """Decrement stock on a rising edge or restore it on a falling edge.

    All rows for the edge are adjusted inside one savepoint: either every row moves or none do.
    """
    if edge == StatusEdge.NONE:
        return {}

    if edge == StatusEdge.RISING:
        required = collect_requirements(items)
        sign, action = -1, 'INVENTORY_DECREMENTED'
    else:
        required = _restorable_requirements(items, order_id=order_id)
        sign, action = 1, 'INVENTORY_RESTORED'

    if not required:
        return {}

    try:
        with db.begin_nested():
            for (product_id, warehouse_id), quantity in sorted(required.items()):
                adjust_inventory(db, product_id, warehouse_id, sign * quantity)
            log_audit(
                db,
                action=action,
                order_id=order_id,
                metadata={
                    'adjustments': [
                        {'product_id': product_id, 'warehouse_id': warehouse_id, 'delta': sign * quantity}
                        for (product_id, warehouse_id), quantity in sorted(required.items())
                    ],
                },
            )
    except SQLAlchemyError as exc:
        raise InventoryAdjustmentError(f'Inventory adjustment for order {order_id} failed: {exc}') from exc

    if edge == StatusEdge.RISING:
        _warn_low_stock(db, required)
    return required


def _warn_low_stock(db: Session, required: dict[StockKey, int]) -> None:
    for product_id, warehouse_id in sorted(required):
        row = get_inventory(db, product_id, warehouse_id)
        if row and row.quantity <= row.min_quantity:
            logger.warning(
                'Product %s in warehouse %s is at %s units (minimum %s)',
                product_id,
                warehouse_id,
                row.quantity,
                row.min_quantity,
            )


def list_low_stock_rows(db: Session, *, limit: int | None = None) -> list[dict]:
    rows = list_low_stock(db, limit=limit or settings.low_stock_report_limit)
    return [
        {
            'id': row.id,
            'product_id': row.product_id,
            'warehouse_id': row.warehouse_id,
            'quantity': row.quantity,
            'min_quantity': row.min_quantity,
        }
        for row in rows
    ]
