"""
Interfaces the ordering core depends on.

Implementations live in ``ordering.infra`` (Django-backed and in-memory).
"""
from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol
from uuid import UUID

from ordering.domain.errors import InsufficientStock
from ordering.domain.order import Order, OwnerRef


@dataclass(frozen=True)
class ProductSnapshot:
    product_ref: str
    name: str
    price: Decimal
    stock: int


@dataclass(frozen=True)
class CartLine:
    product_ref: str
    quantity: int
    unit_price: Decimal
    name: Optional[str] = None


@dataclass(frozen=True)
class CartSnapshot:
    owner: OwnerRef
    lines: tuple[CartLine, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.lines


class InventoryLedger(Protocol):
    def try_decrement(self, product_ref: str, quantity: int) -> Optional[InsufficientStock]:
        """Atomically take ``quantity`` out of stock, or report what is available."""
        ...

    def increment(self, product_ref: str, quantity: int) -> None:
        ...

    def available(self, product_ref: str) -> Optional[int]:
        ...

    def product(self, product_ref: str) -> Optional[ProductSnapshot]:
        ...


class OrderStore(Protocol):
    def create(self, order: Order) -> Order:
        ...

    def get(self, order_id: UUID) -> Optional[Order]:
        ...

    def save(self, order: Order) -> Order:
        """Persist ``order`` if its version is still current, else raise ConcurrencyConflict."""
        ...

    def locked(self, order_id: UUID) -> AbstractContextManager[Optional[Order]]:
        """Exclusive claim on one order; yields the fresh order or ``None``."""
        ...

    def list_for_owner(self, owner: OwnerRef, limit: int = 50, offset: int = 0) -> list[Order]:
        ...

    def find_guest_order(self, order_id: UUID, email: str, phone_number: str) -> Optional[Order]:
        ...

    def find_guest_orders(self, email: str, phone_number: str, limit: int = 50) -> list[Order]:
        ...


class CartSource(Protocol):
    def read_snapshot(self, owner: OwnerRef) -> CartSnapshot:
        ...

    def clear(self, owner: OwnerRef) -> None:
        ...


class Notifier(Protocol):
    def notify(self, owner: OwnerRef, event_kind: str, payload: dict) -> None:
        ...


class LoyaltyLedger(Protocol):
    def add_points(self, owner: OwnerRef, amount: int) -> None:
        ...
