from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import create_engine, event, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.models import (
    Base,
    CalculationType,
    Contact,
    CostCategory,
    Inventory,
    Order,
    OrderItem,
    Product,
    ProductCostBreakdown,
    Warehouse,
)


def make_session() -> Session:
    engine = create_engine(
        'sqlite+pysqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT to nest correctly.
    @event.listens_for(engine, 'connect')
    def _connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _begin(conn):
        conn.exec_driver_sql('BEGIN')

    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


@dataclass
class Catalog:
    contact_id: int
    warehouse_x: int
    warehouse_y: int
    materials_id: int
    labor_id: int
    product_a: int
    product_b: int
    order_id: int


def seed_catalog(db: Session, *, stock_a: int = 5, stock_b: int = 2, status: str = 'pending') -> Catalog:
    contact = Contact(name='Ada Buyer', email='ada@example.com')
    warehouse_x = Warehouse(name='WarehouseX')
    warehouse_y = Warehouse(name='WarehouseY')
    materials = CostCategory(name='materials')
    labor = CostCategory(name='labor')
    product_a = Product(name='ProductA', sku='A-1', price=Decimal('100.00'))
    product_b = Product(name='ProductB', sku='B-1', price=Decimal('500.00'))
    db.add_all([contact, warehouse_x, warehouse_y, materials, labor, product_a, product_b])
    db.flush()

    db.add_all(
        [
            ProductCostBreakdown(
                product_id=product_a.id,
                category_id=materials.id,
                calculation_type=CalculationType.FIXED_AMOUNT,
                value=Decimal('10'),
            ),
            ProductCostBreakdown(
                product_id=product_b.id,
                category_id=materials.id,
                calculation_type=CalculationType.PERCENTAGE,
                value=Decimal('5'),
            ),
            Inventory(product_id=product_a.id, warehouse_id=warehouse_x.id, quantity=stock_a, min_quantity=1),
            Inventory(product_id=product_b.id, warehouse_id=warehouse_x.id, quantity=stock_b, min_quantity=0),
        ]
    )
    order = Order(contact_id=contact.id, status=status, total=Decimal('0.00'))
    db.add(order)
    db.commit()

    return Catalog(
        contact_id=contact.id,
        warehouse_x=warehouse_x.id,
        warehouse_y=warehouse_y.id,
        materials_id=materials.id,
        labor_id=labor.id,
        product_a=product_a.id,
        product_b=product_b.id,
        order_id=order.id,
    )


def stock(db: Session, product_id: int, warehouse_id: int) -> int | None:
    db.expire_all()
    return db.execute(
        select(Inventory.quantity).where(Inventory.product_id == product_id, Inventory.warehouse_id == warehouse_id)
    ).scalar_one_or_none()


def add_item(db: Session, *, order_id: int, product_id: int, quantity: int, price: str, warehouse_id: int | None) -> None:
    db.add(
        OrderItem(
            order_id=order_id,
            product_id=product_id,
            quantity=quantity,
            price=Decimal(price),
            warehouse_id=warehouse_id,
        )
    )
    db.commit()
