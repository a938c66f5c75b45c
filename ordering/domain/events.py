"""
Domain events recorded by the Order aggregate (audit trail).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4


class EventVersion(str, Enum):
    """Event version for upcasting."""
    V1 = "1.0"


@dataclass
class DomainEvent:
    """Base domain event."""
    aggregate_id: UUID
    # event_id, version and occurred_at are set in subclasses to avoid dataclass field ordering issues

    @property
    def event_type(self) -> str:
        return type(self).__name__


@dataclass
class OrderPlaced(DomainEvent):
    """Order created from a cart snapshot."""
    owner: str
    grand_total: Decimal
    items_count: int
    event_id: UUID = field(default_factory=uuid4)
    version: EventVersion = EventVersion.V1
    occurred_at: str = ""


@dataclass
class PaymentConfirmed(DomainEvent):
    """Payment recorded for order."""
    reference: str
    amount: Decimal
    event_id: UUID = field(default_factory=uuid4)
    version: EventVersion = EventVersion.V1
    occurred_at: str = ""


@dataclass
class StockDecremented(DomainEvent):
    """Stock taken out for every product of the order."""
    quantities: dict[str, int]
    event_id: UUID = field(default_factory=uuid4)
    version: EventVersion = EventVersion.V1
    occurred_at: str = ""


@dataclass
class StockRestocked(DomainEvent):
    """Stock returned after cancellation."""
    quantities: dict[str, int]
    event_id: UUID = field(default_factory=uuid4)
    version: EventVersion = EventVersion.V1
    occurred_at: str = ""


@dataclass
class OrderStatusChanged(DomainEvent):
    """Order moved between lifecycle states."""
    from_status: str
    to_status: str
    event_id: UUID = field(default_factory=uuid4)
    version: EventVersion = EventVersion.V1
    occurred_at: str = ""


@dataclass
class ShipmentRecorded(DomainEvent):
    """Tracking data attached to order."""
    tracking_number: str
    carrier: str
    event_id: UUID = field(default_factory=uuid4)
    version: EventVersion = EventVersion.V1
    occurred_at: str = ""


@dataclass
class OrderRefunded(DomainEvent):
    """Order refunded by an administrator."""
    amount: Decimal
    event_id: UUID = field(default_factory=uuid4)
    version: EventVersion = EventVersion.V1
    occurred_at: str = ""
