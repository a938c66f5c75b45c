"""
In-process implementations of the ordering ports.

Used by tests and by anything that needs the engine without a database.
They behave like the Django-backed ones: stored orders are copies, saves
are version-checked, stock updates are atomic per product.
"""
from __future__ import annotations

import copy
import threading
from collections import defaultdict
from contextlib import contextmanager
from decimal import Decimal
from typing import Iterator, Optional
from uuid import UUID

from ordering.domain.errors import ConcurrencyConflict, InsufficientStock
from ordering.domain.events import DomainEvent
from ordering.domain.order import Order, OwnerRef
from ordering.domain.ports import CartLine, CartSnapshot, ProductSnapshot


class InMemoryInventory:

    def __init__(self):
        self._products: dict[str, ProductSnapshot] = {}
        self._lock = threading.Lock()

    def add_product(self, product_ref: str, stock: int, price: Decimal = Decimal("0"), name: str = "") -> None:
        with self._lock:
            self._products[product_ref] = ProductSnapshot(
                product_ref=product_ref,
                name=name or product_ref,
                price=Decimal(price),
                stock=stock,
            )

    def try_decrement(self, product_ref: str, quantity: int) -> Optional[InsufficientStock]:
        with self._lock:
            product = self._products.get(product_ref)
            if product is None:
                return InsufficientStock(product_ref, 0, quantity)
            if product.stock < quantity:
                return InsufficientStock(product_ref, product.stock, quantity)
            self._products[product_ref] = _with_stock(product, product.stock - quantity)
            return None

    def increment(self, product_ref: str, quantity: int) -> None:
        with self._lock:
            product = self._products.get(product_ref)
            if product is None:
                raise KeyError(product_ref)
            self._products[product_ref] = _with_stock(product, product.stock + quantity)

    def available(self, product_ref: str) -> Optional[int]:
        product = self._products.get(product_ref)
        return product.stock if product else None

    def product(self, product_ref: str) -> Optional[ProductSnapshot]:
        return self._products.get(product_ref)


def _with_stock(product: ProductSnapshot, stock: int) -> ProductSnapshot:
    return ProductSnapshot(product.product_ref, product.name, product.price, stock)


class InMemoryOrderStore:

    def __init__(self):
        self._orders: dict[UUID, Order] = {}
        self._events: dict[UUID, list[DomainEvent]] = defaultdict(list)
        self._locks: dict[UUID, threading.Lock] = defaultdict(threading.Lock)
        self._guard = threading.Lock()

    def create(self, order: Order) -> Order:
        with self._guard:
            if order.id in self._orders:
                raise ValueError(f"Order {order.id} already exists")
            self._events[order.id].extend(order.pull_events())
            self._orders[order.id] = copy.deepcopy(order)
        return order

    def get(self, order_id: UUID) -> Optional[Order]:
        stored = self._orders.get(order_id)
        return copy.deepcopy(stored) if stored else None

    def save(self, order: Order) -> Order:
        with self._guard:
            stored = self._orders.get(order.id)
            if stored is None or stored.version != order.version:
                raise ConcurrencyConflict(order.id, order.version)
            order.version += 1
            self._events[order.id].extend(order.pull_events())
            self._orders[order.id] = copy.deepcopy(order)
        return order

    @contextmanager
    def locked(self, order_id: UUID) -> Iterator[Optional[Order]]:
        with self._guard:
            lock = self._locks[order_id]
        with lock:
            yield self.get(order_id)

    def list_for_owner(self, owner: OwnerRef, limit: int = 50, offset: int = 0) -> list[Order]:
        orders = sorted(
            (o for o in self._orders.values() if o.owner == owner),
            key=lambda o: o.created_at,
            reverse=True,
        )
        return [copy.deepcopy(o) for o in orders[offset:offset + limit]]

    def find_guest_order(self, order_id: UUID, email: str, phone_number: str) -> Optional[Order]:
        order = self._orders.get(order_id)
        if order is None or not _contact_matches(order, email, phone_number):
            return None
        return copy.deepcopy(order)

    def find_guest_orders(self, email: str, phone_number: str, limit: int = 50) -> list[Order]:
        orders = sorted(
            (o for o in self._orders.values() if _contact_matches(o, email, phone_number)),
            key=lambda o: o.created_at,
            reverse=True,
        )
        return [copy.deepcopy(o) for o in orders[:limit]]

    def events_for(self, order_id: UUID) -> list[DomainEvent]:
        return list(self._events[order_id])


def _contact_matches(order: Order, email: str, phone_number: str) -> bool:
    if not order.is_guest or order.contact is None:
        return False
    return order.contact.email.lower() == email.lower() and order.contact.phone_number == phone_number


class InMemoryCartSource:

    def __init__(self):
        self._carts: dict[OwnerRef, list[CartLine]] = defaultdict(list)
        self.fail_on_clear = False

    def add(self, owner: OwnerRef, product_ref: str, quantity: int, unit_price, name: Optional[str] = None) -> None:
        self._carts[owner].append(CartLine(product_ref, quantity, Decimal(unit_price), name))

    def read_snapshot(self, owner: OwnerRef) -> CartSnapshot:
        return CartSnapshot(owner=owner, lines=tuple(self._carts.get(owner, ())))

    def clear(self, owner: OwnerRef) -> None:
        if self.fail_on_clear:
            raise RuntimeError("cart storage unavailable")
        self._carts.pop(owner, None)


class InMemoryLoyalty:

    def __init__(self):
        self.points: dict[OwnerRef, int] = defaultdict(int)

    def add_points(self, owner: OwnerRef, amount: int) -> None:
        self.points[owner] += amount


class RecordingNotifier:
    """Keeps every notification it was asked to send."""

    def __init__(self):
        self.sent: list[tuple[OwnerRef, str, dict]] = []
        self._lock = threading.Lock()

    def notify(self, owner: OwnerRef, event_kind: str, payload: dict) -> None:
        with self._lock:
            self.sent.append((owner, event_kind, payload))

    def kinds(self) -> list[str]:
        return [kind for _, kind, _ in self.sent]
