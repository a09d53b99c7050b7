from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db import get_db
from app.services.cost_ledger_service import DerivedLedger, ExplicitLedger, cost_totals_by_category
from app.services.errors import InsufficientInventoryError, MissingWarehouseError, OrderUpdateError
from app.services.line_item_service import coerce_id
from app.services.order_store import get_order_with_items
from app.services.order_update_service import UNSET, OrderPatch, apply_order_update

router = APIRouter(prefix='/orders', tags=['orders'])


class OrderUpdateRequest(BaseModel):
    contact_id: Any = None
    status: Any = None
    order_date: Any = None
    notes: Any = None
    items: list[dict[str, Any]] | None = None
    cost_items: list[dict[str, Any]] | None = None

    def to_patch(self) -> OrderPatch:
        provided = self.model_fields_set
        return OrderPatch(
            contact_id=self.contact_id if 'contact_id' in provided else UNSET,
            status=self.status if 'status' in provided else UNSET,
            order_date=self.order_date if 'order_date' in provided else UNSET,
            notes=self.notes if 'notes' in provided else UNSET,
            items=self.items,
            ledger=ExplicitLedger(self.cost_items) if self.cost_items is not None else DerivedLedger(),
        )


def _error_detail(exc: OrderUpdateError) -> dict:
    detail: dict = {'error': str(exc)}
    if isinstance(exc, InsufficientInventoryError):
        detail['shortfalls'] = [
            {
                'product_id': shortfall.product_id,
                'warehouse_id': shortfall.warehouse_id,
                'requested': shortfall.requested,
                'available': shortfall.available,
            }
            for shortfall in exc.shortfalls
        ]
    if isinstance(exc, MissingWarehouseError):
        detail['items'] = [index + 1 for index in exc.item_indexes]
    return detail


@router.get('/reports/by-cost-category')
def orders_by_cost_category(status: str | None = None, db: Session = Depends(get_db)):
    return {'categories': cost_totals_by_category(db, status=status)}


@router.get('/{order_id}')
def get_order(order_id: int, db: Session = Depends(get_db)):
    order = get_order_with_items(db, order_id) if coerce_id(order_id) else None
    if not order:
        raise HTTPException(status_code=404, detail='Order not found')
    return {'order': order}


@router.put('/{order_id}')
def update_order(order_id: int, payload: OrderUpdateRequest, db: Session = Depends(get_db)):
    try:
        outcome = apply_order_update(db, order_id, payload.to_patch())
    except OrderUpdateError as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=_error_detail(exc)) from exc

    db.commit()
    return {
        'success': True,
        'order': outcome.order,
        'inventory_edge': outcome.edge.value,
        'inventory_adjusted': outcome.inventory_adjusted,
        'warnings': outcome.warnings,
    }
