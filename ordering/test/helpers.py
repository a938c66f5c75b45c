"""
Shared builders for ordering tests.
"""
from datetime import datetime, timezone
from decimal import Decimal

from ordering.config import ShopConfig
from ordering.domain.order import OwnerRef
from ordering.infra.memory import (
    InMemoryCartSource,
    InMemoryInventory,
    InMemoryLoyalty,
    InMemoryOrderStore,
    RecordingNotifier,
)
from ordering.services.checkout import CheckoutAssembler
from ordering.services.lifecycle import OrderLifecycleEngine
from ordering.services.notifications import NotificationDispatcher

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

ADDRESS = {
    "fullName": "Somchai Jaidee",
    "addressLine1": "99 Sukhumvit Rd",
    "city": "Bangkok",
    "province": "Bangkok",
    "postalCode": "10110",
    "phoneNumber": "0812345678",
}


class InMemoryShop:
    """Checkout and lifecycle wired to in-memory collaborators."""

    def __init__(self, config: ShopConfig | None = None, notifier=None):
        self.config = config or ShopConfig()
        self.inventory = InMemoryInventory()
        self.orders = InMemoryOrderStore()
        self.carts = InMemoryCartSource()
        self.loyalty = InMemoryLoyalty()
        self.notifier = notifier or RecordingNotifier()
        self.dispatcher = NotificationDispatcher(self.notifier, workers=0)
        self.checkout = CheckoutAssembler(
            orders=self.orders,
            inventory=self.inventory,
            carts=self.carts,
            dispatcher=self.dispatcher,
            config=self.config,
            clock=lambda: NOW,
        )
        self.engine = OrderLifecycleEngine(
            orders=self.orders,
            inventory=self.inventory,
            loyalty=self.loyalty,
            dispatcher=self.dispatcher,
            config=self.config,
            clock=lambda: NOW,
        )

    def place(self, owner: OwnerRef, lines, shipping_method="standard", payment_method="promptpay", **options):
        """Fill the owner's cart with ``(product_ref, quantity, price)`` lines and check out."""
        for product_ref, quantity, price in lines:
            self.carts.add(owner, product_ref, quantity, Decimal(price))
        return self.checkout.checkout(owner, dict(ADDRESS), payment_method, shipping_method, **options)
