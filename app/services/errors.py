"""Typed failures raised while applying an order update.

Everything except ``InventoryAdjustmentError`` aborts the update before any row is
written. Routers translate these into HTTP responses using ``status_code``.
"""

from __future__ import annotations

from dataclasses import dataclass


class OrderUpdateError(Exception):
    status_code = 400


class InvalidItemError(OrderUpdateError):
    """An order item has a bad quantity or price, or names an unknown product."""

    def __init__(self, message: str, *, index: int | None = None) -> None:
        super().__init__(message)
        self.index = index


class UnknownItemReferenceError(InvalidItemError):
    """An order item names a product or warehouse that does not exist."""

    status_code = 404


class InvalidLedgerError(OrderUpdateError):
    """A manually supplied cost item is malformed."""


class InvalidOrderFieldError(OrderUpdateError):
    pass


class NotFoundError(OrderUpdateError):
    status_code = 404

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f'{entity} with ID {entity_id} not found')
        self.entity = entity
        self.entity_id = entity_id


class MissingWarehouseError(OrderUpdateError):
    """Completing an order requires every item to name a warehouse."""

    def __init__(self, item_indexes: list[int]) -> None:
        positions = ', '.join(str(index + 1) for index in item_indexes)
        super().__init__(f'Warehouse is required for every item to complete an order (items: {positions})')
        self.item_indexes = item_indexes


@dataclass(frozen=True)
class Shortfall:
    product_id: int
    warehouse_id: int
    requested: int
    available: int

    def describe(self) -> str:
        return (
            f'Insufficient inventory for product {self.product_id} in warehouse {self.warehouse_id}. '
            f'Required: {self.requested}, Available: {self.available}'
        )


class InsufficientInventoryError(OrderUpdateError):
    status_code = 409

    def __init__(self, shortfalls: list[Shortfall]) -> None:
        super().__init__('; '.join(shortfall.describe() for shortfall in shortfalls))
        self.shortfalls = shortfalls


class InventoryAdjustmentError(OrderUpdateError):
    """Stock bookkeeping failed after the order row was written. Reported, never fatal."""

    def __init__(self, message: str, *, product_id: int | None = None, warehouse_id: int | None = None) -> None:
        super().__init__(message)
        self.product_id = product_id
        self.warehouse_id = warehouse_id
