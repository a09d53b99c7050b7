from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import AuditLog

INVENTORY_ACTIONS = (
    'INVENTORY_DECREMENTED',
    'INVENTORY_RESTORED',
    'INVENTORY_ADJUSTMENT_FAILED',
    'INVENTORY_ADJUSTMENT_SKIPPED',
)


def log_audit(
    db: Session,
    *,
    action: str,
    order_id: int | None = None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            action=action,
            order_id=order_id,
            meta=metadata or {},
        )
    )


def last_inventory_action(db: Session, order_id: int) -> str | None:
    """Most recent stock bookkeeping action recorded for an order, if any."""
    return db.execute(
        select(AuditLog.action)
        .where(AuditLog.order_id == order_id, AuditLog.action.in_(INVENTORY_ACTIONS))
        .order_by(AuditLog.id.desc())
        .limit(1)
    ).scalar_one_or_none()
