"""
Domain model for Order aggregate.

Status machine:
    Pending Payment -> Processing -> Shipped -> Delivered
    Pending Payment -> Shipped
    Pending Payment | Processing -> Cancelled
    Cancelled | Delivered -> Refunded (administrative, paid orders only)

Stock bookkeeping is a single tri-state ``stock_effect`` (none, decremented,
restocked) instead of two independent flags.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from ordering.domain.errors import IllegalTransition
from ordering.domain.events import (
    DomainEvent,
    OrderPlaced,
    OrderRefunded,
    OrderStatusChanged,
    PaymentConfirmed,
    ShipmentRecorded,
    StockDecremented,
    StockRestocked,
)


class OrderStatus(str, Enum):
    """Order status enumeration."""
    PENDING_PAYMENT = "Pending Payment"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    REFUNDED = "Refunded"


class StockEffect(str, Enum):
    """What the order has done to inventory so far."""
    NONE = "NONE"
    DECREMENTED = "DECREMENTED"
    RESTOCKED = "RESTOCKED"


class OwnerKind(str, Enum):
    CUSTOMER = "CUSTOMER"
    GUEST = "GUEST"


VALID_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING_PAYMENT: frozenset(
        {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.CANCELLED}
    ),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

# Entering one of these requires the order's stock to be taken out.
STOCK_CONSUMING_STATUSES = frozenset({OrderStatus.PROCESSING, OrderStatus.SHIPPED})

REFUNDABLE_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.DELIVERED})


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OwnerRef:
    """Registered customer or guest session that owns an order or cart."""
    kind: OwnerKind
    value: str

    def __post_init__(self):
        if not self.value:
            raise ValueError("Owner reference must not be empty")

    @classmethod
    def customer(cls, customer_id) -> OwnerRef:
        return cls(OwnerKind.CUSTOMER, str(customer_id))

    @classmethod
    def guest(cls, guest_id) -> OwnerRef:
        return cls(OwnerKind.GUEST, str(guest_id))

    @property
    def is_guest(self) -> bool:
        return self.kind == OwnerKind.GUEST

    def __str__(self) -> str:
        return f"{self.kind.value.lower()}:{self.value}"


@dataclass(frozen=True)
class LineItem:
    """Order line snapshot: name and price as they were at checkout."""
    product_ref: str
    name: str
    unit_price: Decimal
    quantity: int

    def __post_init__(self):
        if self.quantity < 1:
            raise ValueError("Quantity must be at least 1")
        if self.unit_price < 0:
            raise ValueError("Price must be non-negative")

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class Amounts:
    """Monetary summary of an order. The grand total is always derived."""
    items_total: Decimal
    tax: Decimal
    shipping_fee: Decimal
    discount: Decimal = Decimal("0.00")

    def __post_init__(self):
        for name in ("items_total", "tax", "shipping_fee", "discount"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.grand_total < 0:
            raise ValueError("Grand total must be non-negative")

    @property
    def grand_total(self) -> Decimal:
        return self.items_total + self.tax + self.shipping_fee - self.discount


@dataclass(frozen=True)
class GuestContact:
    email: str
    first_name: str
    last_name: str
    phone_number: str


@dataclass(frozen=True)
class PaymentInfo:
    paid_at: datetime | None = None
    reference: str | None = None

    @property
    def is_paid(self) -> bool:
        return self.paid_at is not None


@dataclass(frozen=True)
class FulfillmentInfo:
    delivered_at: datetime | None = None
    tracking_number: str | None = None
    carrier: str | None = None


@dataclass(frozen=True)
class StockState:
    """Read-only view of ``stock_effect`` in flag form."""
    is_decremented: bool
    is_restocked: bool


class Order:
    """Order aggregate root."""

    def __init__(
        self,
        owner: OwnerRef,
        line_items: list[LineItem] | tuple[LineItem, ...],
        amounts: Amounts,
        shipping_address: dict | None = None,
        payment_method: str = "",
        shipping_method: str = "",
        id: UUID | None = None,
        status: OrderStatus = OrderStatus.PENDING_PAYMENT,
        payment: PaymentInfo | None = None,
        fulfillment: FulfillmentInfo | None = None,
        stock_effect: StockEffect = StockEffect.NONE,
        contact: GuestContact | None = None,
        note: str = "",
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
        version: int = 0,
    ):
        if owner is None:
            raise ValueError("Order must have an owner")
        if not line_items:
            raise ValueError("Order must have at least one line item")

        self.id = id or uuid4()
        self.owner = owner
        self._line_items = tuple(line_items)
        self._amounts = amounts
        self.shipping_address = dict(shipping_address or {})
        self.payment_method = payment_method
        self.shipping_method = shipping_method
        self._status = OrderStatus(status)
        self._payment = payment or PaymentInfo()
        self._fulfillment = fulfillment or FulfillmentInfo()
        self._stock_effect = StockEffect(stock_effect)
        self.contact = contact
        self.note = note
        self.created_at = created_at or _now()
        self.updated_at = updated_at or self.created_at
        self.version = version
        self._events: list[DomainEvent] = []

    @classmethod
    def place(
        cls,
        owner: OwnerRef,
        line_items: list[LineItem],
        amounts: Amounts,
        shipping_address: dict,
        payment_method: str,
        shipping_method: str,
        contact: GuestContact | None = None,
        note: str = "",
        now: datetime | None = None,
    ) -> Order:
        """Create a new order awaiting payment."""
        now = now or _now()
        order = cls(
            owner=owner,
            line_items=line_items,
            amounts=amounts,
            shipping_address=shipping_address,
            payment_method=payment_method,
            shipping_method=shipping_method,
            contact=contact,
            note=note,
            created_at=now,
        )
        order._record(
            OrderPlaced(
                aggregate_id=order.id,
                owner=str(owner),
                grand_total=amounts.grand_total,
                items_count=len(order.line_items),
            ),
            now,
        )
        return order

    @property
    def line_items(self) -> tuple[LineItem, ...]:
        return self._line_items

    @property
    def amounts(self) -> Amounts:
        return self._amounts

    @property
    def status(self) -> OrderStatus:
        return self._status

    @property
    def payment(self) -> PaymentInfo:
        return self._payment

    @property
    def fulfillment(self) -> FulfillmentInfo:
        return self._fulfillment

    @property
    def stock_effect(self) -> StockEffect:
        return self._stock_effect

    @property
    def stock_state(self) -> StockState:
        return StockState(
            is_decremented=self._stock_effect == StockEffect.DECREMENTED,
            is_restocked=self._stock_effect == StockEffect.RESTOCKED,
        )

    @property
    def is_paid(self) -> bool:
        return self._payment.is_paid

    @property
    def is_delivered(self) -> bool:
        return self._status == OrderStatus.DELIVERED

    @property
    def is_guest(self) -> bool:
        return self.owner.is_guest

    def quantities_by_product(self) -> dict[str, int]:
        """Total quantity per product, in first-seen line order."""
        quantities: dict[str, int] = {}
        for item in self._line_items:
            quantities[item.product_ref] = quantities.get(item.product_ref, 0) + item.quantity
        return quantities

    def pull_events(self) -> list[DomainEvent]:
        """Return and forget events recorded since the last call."""
        events, self._events = self._events, []
        return events

    def check_transition(self, new_status: OrderStatus) -> IllegalTransition | None:
        """Return the violation if ``new_status`` is not reachable from the current status."""
        new_status = OrderStatus(new_status)
        if new_status not in VALID_TRANSITIONS[self._status]:
            return IllegalTransition(self._status.value, new_status.value)
        return None

    def mark_stock_decremented(self, now: datetime | None = None) -> None:
        if self._stock_effect != StockEffect.NONE:
            raise ValueError("Stock has already been decremented for this order")
        now = now or _now()
        self._stock_effect = StockEffect.DECREMENTED
        self._record(StockDecremented(aggregate_id=self.id, quantities=self.quantities_by_product()), now)

    def mark_restocked(self, now: datetime | None = None) -> None:
        if self._stock_effect != StockEffect.DECREMENTED:
            raise ValueError("Only decremented stock can be restocked")
        now = now or _now()
        self._stock_effect = StockEffect.RESTOCKED
        self._record(StockRestocked(aggregate_id=self.id, quantities=self.quantities_by_product()), now)

    def mark_paid(self, reference: str, now: datetime | None = None) -> None:
        """Record payment. Moves a pending order to Processing, never backward."""
        if self.is_paid:
            raise ValueError("Order has already been paid")
        now = now or _now()
        self._payment = PaymentInfo(paid_at=now, reference=reference)
        self._record(
            PaymentConfirmed(aggregate_id=self.id, reference=reference, amount=self._amounts.grand_total),
            now,
        )
        if self._status == OrderStatus.PENDING_PAYMENT:
            self._set_status(OrderStatus.PROCESSING, now)

    def move_to(self, new_status: OrderStatus, now: datetime | None = None) -> None:
        """Apply a legal status transition."""
        violation = self.check_transition(new_status)
        if violation is not None:
            raise ValueError(violation.message)
        now = now or _now()
        new_status = OrderStatus(new_status)
        if new_status == OrderStatus.DELIVERED:
            self._fulfillment = replace(self._fulfillment, delivered_at=now)
        self._set_status(new_status, now)

    def record_shipment(self, tracking_number: str, carrier: str, now: datetime | None = None) -> None:
        if not tracking_number or not carrier:
            raise ValueError("Tracking number and carrier are required")
        now = now or _now()
        self._fulfillment = replace(self._fulfillment, tracking_number=tracking_number, carrier=carrier)
        self._record(
            ShipmentRecorded(aggregate_id=self.id, tracking_number=tracking_number, carrier=carrier),
            now,
        )

    def mark_refunded(self, now: datetime | None = None) -> None:
        if self._status not in REFUNDABLE_STATUSES:
            raise ValueError("Only cancelled or delivered orders can be refunded")
        if not self.is_paid:
            raise ValueError("Only paid orders can be refunded")
        now = now or _now()
        self._record(OrderRefunded(aggregate_id=self.id, amount=self._amounts.grand_total), now)
        self._set_status(OrderStatus.REFUNDED, now)

    def _set_status(self, new_status: OrderStatus, now: datetime) -> None:
        previous = self._status
        self._status = new_status
        self._record(
            OrderStatusChanged(aggregate_id=self.id, from_status=previous.value, to_status=new_status.value),
            now,
        )

    def _record(self, event: DomainEvent, now: datetime) -> None:
        event.occurred_at = now.isoformat()
        self.updated_at = now
        self._events.append(event)
