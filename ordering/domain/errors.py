"""
Business errors returned by checkout and lifecycle operations.

These are values, not exceptions: every public operation returns either an
``Order`` or one of these, and the caller branches on ``isinstance``.
Infrastructure failures stay exceptions.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID


class ConcurrencyConflict(Exception):
    """Order was modified by another writer since it was read."""

    def __init__(self, order_id: UUID, expected_version: int):
        self.order_id = order_id
        self.expected_version = expected_version
        super().__init__(
            f"Order {order_id} changed concurrently (expected version {expected_version})"
        )


@dataclass(frozen=True)
class OrderError:
    """Base class for expected, recoverable business outcomes."""

    code: str = field(init=False, default="ORDER_ERROR")

    @property
    def message(self) -> str:
        return self.code

    def details(self) -> dict:
        return {}


@dataclass(frozen=True)
class EmptyCart(OrderError):
    code: str = field(init=False, default="EMPTY_CART")

    @property
    def message(self) -> str:
        return "Cart is empty, cannot create an order"


@dataclass(frozen=True)
class InsufficientStock(OrderError):
    product_ref: str
    available: int
    requested: int | None = field(default=None, compare=False)
    code: str = field(init=False, default="INSUFFICIENT_STOCK")

    @property
    def message(self) -> str:
        return f"Product {self.product_ref} has only {self.available} in stock"

    def details(self) -> dict:
        data = {"productRef": self.product_ref, "available": self.available}
        if self.requested is not None:
            data["requested"] = self.requested
        return data


@dataclass(frozen=True)
class ProductNotFound(OrderError):
    product_ref: str
    code: str = field(init=False, default="PRODUCT_NOT_FOUND")

    @property
    def message(self) -> str:
        return f"Product {self.product_ref} does not exist"

    def details(self) -> dict:
        return {"productRef": self.product_ref}


@dataclass(frozen=True)
class UnsupportedShippingMethod(OrderError):
    shipping_method: str
    code: str = field(init=False, default="UNSUPPORTED_SHIPPING_METHOD")

    @property
    def message(self) -> str:
        return f"Shipping method '{self.shipping_method}' is not available"

    def details(self) -> dict:
        return {"shippingMethod": self.shipping_method}


@dataclass(frozen=True)
class UnsupportedPaymentMethod(OrderError):
    payment_method: str
    code: str = field(init=False, default="UNSUPPORTED_PAYMENT_METHOD")

    @property
    def message(self) -> str:
        return f"Payment method '{self.payment_method}' is not available"

    def details(self) -> dict:
        return {"paymentMethod": self.payment_method}


@dataclass(frozen=True)
class InvalidQuantity(OrderError):
    product_ref: str
    quantity: int
    code: str = field(init=False, default="INVALID_QUANTITY")

    @property
    def message(self) -> str:
        return f"Quantity {self.quantity} for product {self.product_ref} must be at least 1"

    def details(self) -> dict:
        return {"productRef": self.product_ref, "quantity": self.quantity}


@dataclass(frozen=True)
class InvalidDiscount(OrderError):
    discount: str
    code: str = field(init=False, default="INVALID_DISCOUNT")

    @property
    def message(self) -> str:
        return f"Discount {self.discount} is negative or exceeds the items total"

    def details(self) -> dict:
        return {"discount": self.discount}


@dataclass(frozen=True)
class OrderNotFound(OrderError):
    order_id: str
    code: str = field(init=False, default="NOT_FOUND")

    @property
    def message(self) -> str:
        return f"Order {self.order_id} not found"

    def details(self) -> dict:
        return {"orderId": self.order_id}


@dataclass(frozen=True)
class IllegalTransition(OrderError):
    from_status: str
    to_status: str
    code: str = field(init=False, default="ILLEGAL_TRANSITION")

    @property
    def message(self) -> str:
        return f"Cannot move order from {self.from_status} to {self.to_status}"

    def details(self) -> dict:
        return {"from": self.from_status, "to": self.to_status}


@dataclass(frozen=True)
class AlreadyPaid(OrderError):
    order_id: str
    code: str = field(init=False, default="ALREADY_PAID")

    @property
    def message(self) -> str:
        return f"Order {self.order_id} has already been paid"

    def details(self) -> dict:
        return {"orderId": self.order_id}


@dataclass(frozen=True)
class NotPaid(OrderError):
    order_id: str
    code: str = field(init=False, default="NOT_PAID")

    @property
    def message(self) -> str:
        return f"Order {self.order_id} was never paid and cannot be refunded"

    def details(self) -> dict:
        return {"orderId": self.order_id}
