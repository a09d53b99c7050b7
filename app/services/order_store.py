from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from app.models import (
    Contact,
    CostCategory,
    CostItem,
    Inventory,
    Order,
    OrderItem,
    Product,
    ProductCostBreakdown,
    Warehouse,
)
from app.services.errors import InventoryAdjustmentError


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def get_product(db: Session, product_id: int) -> Product | None:
    return db.execute(select(Product).where(Product.id == product_id)).scalar_one_or_none()


def get_cost_rules(db: Session, product_id: int) -> list[ProductCostBreakdown]:
    return db.execute(
        select(ProductCostBreakdown)
        .where(ProductCostBreakdown.product_id == product_id)
        .order_by(ProductCostBreakdown.id.asc())
    ).scalars().all()


def get_cost_category(db: Session, category_id: int) -> CostCategory | None:
    return db.execute(select(CostCategory).where(CostCategory.id == category_id)).scalar_one_or_none()


def get_contact(db: Session, contact_id: int) -> Contact | None:
    return db.execute(select(Contact).where(Contact.id == contact_id)).scalar_one_or_none()


def get_warehouse(db: Session, warehouse_id: int) -> Warehouse | None:
    return db.execute(select(Warehouse).where(Warehouse.id == warehouse_id)).scalar_one_or_none()


def get_inventory(db: Session, product_id: int, warehouse_id: int, *, for_update: bool = False) -> Inventory | None:
    query = select(Inventory).where(Inventory.product_id == product_id, Inventory.warehouse_id == warehouse_id)
    # Adjustments bypass the identity map, so always reload the row.
    query = query.execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update()
    return db.execute(query).scalar_one_or_none()


def adjust_inventory(db: Session, product_id: int, warehouse_id: int, delta: int) -> None:
    # Conditional update so two racing completions cannot drive stock negative.
    result = db.execute(
        update(Inventory)
        .where(
            Inventory.product_id == product_id,
            Inventory.warehouse_id == warehouse_id,
            Inventory.quantity + delta >= 0,
        )
        .values(quantity=Inventory.quantity + delta, updated_at=_now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InventoryAdjustmentError(
            f'Could not adjust inventory for product {product_id} in warehouse {warehouse_id} by {delta}',
            product_id=product_id,
            warehouse_id=warehouse_id,
        )


def list_low_stock(db: Session, *, limit: int) -> list[Inventory]:
    return db.execute(
        select(Inventory)
        .where(Inventory.quantity <= Inventory.min_quantity)
        .order_by(Inventory.updated_at.desc(), Inventory.id.asc())
        .limit(limit)
        .execution_options(populate_existing=True)
    ).scalars().all()


def get_order(db: Session, order_id: int, *, for_update: bool = False) -> Order | None:
    query = select(Order).where(Order.id == order_id)
    if for_update:
        query = query.with_for_update()
    return db.execute(query).scalar_one_or_none()


def list_order_items(db: Session, order_id: int) -> list[OrderItem]:
    return db.execute(
        select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.position.asc(), OrderItem.id.asc())
    ).scalars().all()


def list_cost_items(db: Session, order_id: int) -> list[CostItem]:
    return db.execute(
        select(CostItem).where(CostItem.order_id == order_id).order_by(CostItem.category_id.asc())
    ).scalars().all()


def get_order_with_items(db: Session, order_id: int) -> dict | None:
    order = get_order(db, order_id)
    if not order:
        return None

    product_rows = db.execute(
        select(OrderItem.id, Product.name, Product.sku)
        .join(Product, Product.id == OrderItem.product_id)
        .where(OrderItem.order_id == order_id)
    ).all()
    products_by_item = {row.id: (row.name, row.sku) for row in product_rows}
    category_names = dict(db.execute(select(CostCategory.id, CostCategory.name)).all())

    return {
        'id': order.id,
        'contact_id': order.contact_id,
        'status': order.status,
        'total': order.total,
        'order_date': order.order_date.isoformat() if order.order_date else None,
        'notes': order.notes,
        'items': [
            {
                'id': item.id,
                'product_id': item.product_id,
                'product_name': products_by_item.get(item.id, (None, None))[0],
                'product_sku': products_by_item.get(item.id, (None, None))[1],
                'warehouse_id': item.warehouse_id,
                'quantity': item.quantity,
                'price': item.price,
            }
            for item in list_order_items(db, order_id)
        ],
        'cost_items': [
            {
                'id': cost_item.id,
                'category_id': cost_item.category_id,
                'category_name': category_names.get(cost_item.category_id),
                'amount': cost_item.amount,
            }
            for cost_item in list_cost_items(db, order_id)
        ],
    }


def update_order(db: Session, order: Order, values: dict) -> Order:
    for key, value in values.items():
        setattr(order, key, value)
    order.updated_at = _now()
    db.flush()
    return order


def delete_items_by_order(db: Session, order_id: int) -> None:
    db.execute(delete(OrderItem).where(OrderItem.order_id == order_id))


def create_item(
    db: Session,
    *,
    order_id: int,
    product_id: int,
    quantity: int,
    price: Decimal,
    warehouse_id: int | None,
    position: int,
) -> OrderItem:
    item = OrderItem(
        order_id=order_id,
        product_id=product_id,
        quantity=quantity,
        price=price,
        warehouse_id=warehouse_id,
        position=position,
    )
    db.add(item)
    return item


def delete_cost_items_by_order(db: Session, order_id: int) -> None:
    db.execute(delete(CostItem).where(CostItem.order_id == order_id))


def create_cost_item(db: Session, *, order_id: int, category_id: int, amount: Decimal) -> CostItem:
    cost_item = CostItem(order_id=order_id, category_id=category_id, amount=amount)
    db.add(cost_item)
    return cost_item
