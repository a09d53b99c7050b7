from datetime import date
from decimal import Decimal

from sqlalchemy import select

from app.db import SessionLocal, engine
from app.models import (
    Base,
    Contact,
    CostCategory,
    Inventory,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    ProductCostBreakdown,
    Warehouse,
)
from app.services.cost_ledger_service import validate_cost_rule


def _ensure_product(db, *, name: str, sku: str, price: Decimal) -> Product:
    product = db.execute(select(Product).where(Product.sku == sku)).scalar_one_or_none()
    if not product:
        product = Product(name=name, sku=sku, price=price, is_active=True)
        db.add(product)
        db.flush()
    return product


def _ensure_rule(db, *, product: Product, category: CostCategory, calculation_type: str, value: str) -> None:
    exists = db.execute(
        select(ProductCostBreakdown.id).where(
            ProductCostBreakdown.product_id == product.id,
            ProductCostBreakdown.category_id == category.id,
        )
    ).scalar_one_or_none()
    if exists:
        return
    kind, parsed = validate_cost_rule(calculation_type, value)
    db.add(ProductCostBreakdown(product_id=product.id, category_id=category.id, calculation_type=kind, value=parsed))


def seed() -> None:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        contact = db.execute(select(Contact).where(Contact.email == 'demo@example.com')).scalar_one_or_none()
        if not contact:
            contact = Contact(name='Demo Customer', email='demo@example.com')
            db.add(contact)
            db.flush()

        warehouse = db.execute(select(Warehouse).where(Warehouse.name == 'Main Warehouse')).scalar_one_or_none()
        if not warehouse:
            warehouse = Warehouse(name='Main Warehouse', city='Salt Lake City', state='UT')
            db.add(warehouse)
            db.flush()

        materials = db.execute(select(CostCategory).where(CostCategory.name == 'materials')).scalar_one_or_none()
        if not materials:
            materials = CostCategory(name='materials', description='Raw materials and parts', is_active=True)
            db.add(materials)
            db.flush()

        frame = _ensure_product(db, name='Demo Frame', sku='DEMO-FRAME', price=Decimal('100.00'))
        kit = _ensure_product(db, name='Demo Kit', sku='DEMO-KIT', price=Decimal('500.00'))
        _ensure_rule(db, product=frame, category=materials, calculation_type='fixed_amount', value='10')
        _ensure_rule(db, product=kit, category=materials, calculation_type='percentage', value='5')

        for product, quantity in ((frame, 5), (kit, 2)):
            row = db.execute(
                select(Inventory).where(Inventory.product_id == product.id, Inventory.warehouse_id == warehouse.id)
            ).scalar_one_or_none()
            if not row:
                db.add(Inventory(product_id=product.id, warehouse_id=warehouse.id, quantity=quantity, min_quantity=1))

        order = db.execute(select(Order).where(Order.notes == 'Seeded demo order')).scalar_one_or_none()
        if not order:
            order = Order(
                contact_id=contact.id,
                status=OrderStatus.PENDING.value,
                total=Decimal('800.00'),
                order_date=date.today(),
                notes='Seeded demo order',
            )
            db.add(order)
            db.flush()
            db.add_all(
                [
                    OrderItem(order_id=order.id, product_id=frame.id, warehouse_id=warehouse.id, position=0, quantity=3, price=Decimal('100.00')),
                    OrderItem(order_id=order.id, product_id=kit.id, warehouse_id=warehouse.id, position=1, quantity=1, price=Decimal('500.00')),
                ]
            )

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
