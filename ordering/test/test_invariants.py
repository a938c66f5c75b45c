"""
Tests for storage-level invariants of the Django-backed implementations.
"""
from decimal import Decimal
from uuid import uuid4

from django.db import IntegrityError, transaction
from django.test import TestCase

from ordering.config import ShopConfig
from ordering.domain.errors import (
    AlreadyPaid,
    ConcurrencyConflict,
    InsufficientStock,
    InvalidQuantity,
    ProductNotFound,
)
from ordering.domain.order import GuestContact, OrderStatus, OwnerRef, StockEffect
from ordering.infra.event_store import EventStore, EventStoreRepository
from ordering.infra.inventory import ProductInventoryLedger
from ordering.infra.memory import RecordingNotifier
from ordering.infra.models import CartORM, CustomerORM, OrderORM, ProductORM
from ordering.infra.repositories import (
    CartRepository,
    CustomerRepository,
    LoyaltyRepository,
    OrderRepository,
)
from ordering.services.checkout import CheckoutAssembler
from ordering.services.lifecycle import OrderLifecycleEngine
from ordering.services.notifications import NotificationDispatcher
from ordering.test.helpers import ADDRESS


class InventoryLedgerTest(TestCase):
    """Tests for ProductInventoryLedger."""

    def setUp(self):
        self.ledger = ProductInventoryLedger()
        self.product = ProductORM.objects.create(name="Rice", price=Decimal("100.00"), stock=3)
        self.ref = str(self.product.id)

    def test_try_decrement(self):
        self.assertIsNone(self.ledger.try_decrement(self.ref, 2))
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 1)

    def test_try_decrement_never_goes_negative(self):
        result = self.ledger.try_decrement(self.ref, 4)
        self.assertEqual(result, InsufficientStock(self.ref, 3))
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 3)

    def test_unknown_product(self):
        self.assertEqual(self.ledger.try_decrement(str(uuid4()), 1).available, 0)
        self.assertEqual(self.ledger.try_decrement("not-a-uuid", 1).available, 0)
        self.assertIsNone(self.ledger.available("not-a-uuid"))
        self.assertIsNone(self.ledger.product(str(uuid4())))

    def test_increment_has_no_upper_bound(self):
        self.ledger.increment(self.ref, 100)
        self.assertEqual(self.ledger.available(self.ref), 103)

    def test_increment_unknown_product_raises(self):
        with self.assertRaises(ProductORM.DoesNotExist):
            self.ledger.increment(str(uuid4()), 1)

    def test_stock_check_constraint(self):
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                ProductORM.objects.filter(id=self.product.id).update(stock=-1)


class OrderRepositoryTest(TestCase):
    """Tests for OrderRepository."""

    def setUp(self):
        customer_id = CustomerRepository().create(name="Somchai", email="somchai@example.com")
        self.owner = OwnerRef.customer(customer_id)
        product = ProductORM.objects.create(name="Rice", price=Decimal("100.00"), stock=5)
        self.ref = str(product.id)
        self.carts = CartRepository()
        self.carts.add_item(self.owner, self.ref, 2)
        self.notifier = RecordingNotifier()
        dispatcher = NotificationDispatcher(self.notifier)
        config = ShopConfig()
        self.checkout = CheckoutAssembler(dispatcher=dispatcher, config=config)
        self.engine = OrderLifecycleEngine(dispatcher=dispatcher, config=config)
        self.repo = OrderRepository()

    def test_round_trip(self):
        order = self.checkout.checkout(self.owner, ADDRESS, "promptpay", "standard", note="leave at door")
        loaded = self.repo.get(order.id)
        self.assertEqual(loaded.owner, self.owner)
        self.assertEqual(loaded.amounts.grand_total, Decimal("274.00"))
        self.assertEqual(loaded.line_items[0].name, "Rice")
        self.assertEqual(loaded.shipping_address["city"], "Bangkok")
        self.assertEqual(loaded.note, "leave at door")
        self.assertEqual(loaded.created_at, order.created_at)
        self.assertEqual(loaded.version, 0)

    def test_stale_save_raises_conflict(self):
        order = self.checkout.checkout(self.owner, ADDRESS, "promptpay", "standard")
        first = self.repo.get(order.id)
        second = self.repo.get(order.id)
        first.move_to(OrderStatus.CANCELLED)
        self.repo.save(first)
        second.move_to(OrderStatus.PROCESSING)
        with self.assertRaises(ConcurrencyConflict):
            self.repo.save(second)
        self.assertEqual(self.repo.get(order.id).status, OrderStatus.CANCELLED)

    def test_exactly_one_owner_constraint(self):
        order = self.checkout.checkout(self.owner, ADDRESS, "promptpay", "standard")
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                OrderORM.objects.filter(id=order.id).update(guest_id="guest-1")

    def test_full_lifecycle_against_database(self):
        order = self.checkout.checkout(self.owner, ADDRESS, "promptpay", "standard")
        self.assertTrue(self.carts.read_snapshot(self.owner).is_empty)

        paid = self.engine.confirm_payment(order.id, "tx-1")
        self.assertEqual(paid.status, OrderStatus.PROCESSING)
        self.assertEqual(ProductORM.objects.get(id=self.ref).stock, 3)
        self.assertIsInstance(self.engine.confirm_payment(order.id, "tx-1"), AlreadyPaid)
        self.assertEqual(ProductORM.objects.get(id=self.ref).stock, 3)

        cancelled = self.engine.transition_status(order.id, OrderStatus.CANCELLED)
        self.assertEqual(cancelled.stock_effect, StockEffect.RESTOCKED)
        self.assertEqual(ProductORM.objects.get(id=self.ref).stock, 5)

        stored = OrderORM.objects.get(id=order.id)
        self.assertEqual(stored.status, "Cancelled")
        self.assertEqual(stored.version, 2)
        self.assertEqual(stored.payment_reference, "tx-1")

    def test_delivery_adds_points_to_customer(self):
        order = self.checkout.checkout(self.owner, ADDRESS, "cash_on_delivery", "express")
        self.engine.transition_status(order.id, OrderStatus.SHIPPED)
        self.engine.transition_status(order.id, OrderStatus.DELIVERED)
        # 200 + 14 tax + 100 express
        self.assertEqual(LoyaltyRepository().points_for(self.owner), 3)
        self.assertEqual(CustomerORM.objects.get(id=self.owner.value).points, 3)

    def test_events_are_stored_with_sequence(self):
        order = self.checkout.checkout(self.owner, ADDRESS, "promptpay", "standard")
        self.engine.confirm_payment(order.id, "tx-1")
        events = EventStoreRepository().get_events(order.id)
        self.assertEqual(
            [e["event_type"] for e in events],
            ["OrderPlaced", "StockDecremented", "PaymentConfirmed", "OrderStatusChanged"],
        )
        self.assertEqual([e["sequence_number"] for e in events], [1, 2, 3, 4])
        self.assertEqual(events[2]["data"]["reference"], "tx-1")
        self.assertEqual(events[1]["data"]["quantities"], {self.ref: 2})
        self.assertEqual(EventStore.objects.filter(aggregate_id=order.id).count(), 4)

    def test_list_for_owner_newest_first(self):
        first = self.checkout.checkout(self.owner, ADDRESS, "promptpay", "standard")
        self.carts.add_item(self.owner, self.ref, 1)
        second = self.checkout.checkout(self.owner, ADDRESS, "promptpay", "standard")
        ids = [o.id for o in self.repo.list_for_owner(self.owner)]
        self.assertEqual(set(ids), {first.id, second.id})
        self.assertEqual(self.repo.list_for_owner(OwnerRef.customer("not-a-uuid")), [])

    def test_find_guest_orders_by_contact(self):
        """Test that guest orders are found by email and phone, newest first."""
        guest = OwnerRef.guest("guest-1")
        contact = GuestContact("guest@example.com", "Suda", "Srisuk", "0899999999")
        orders = []
        for _ in range(2):
            self.carts.add_item(guest, self.ref, 1)
            orders.append(self.checkout.checkout(guest, ADDRESS, "promptpay", "standard", contact=contact))
        self.checkout.checkout(self.owner, ADDRESS, "promptpay", "standard")

        found = self.repo.find_guest_orders("GUEST@example.com", "0899999999")
        self.assertEqual([o.id for o in found], [orders[1].id, orders[0].id])
        self.assertEqual(found[0].contact, contact)
        self.assertEqual(len(self.repo.find_guest_orders("guest@example.com", "0899999999", limit=1)), 1)
        self.assertEqual(self.repo.find_guest_orders("guest@example.com", "0800000000"), [])
        self.assertEqual(self.repo.find_guest_orders("", ""), [])


class CartRepositoryTest(TestCase):
    """Tests for CartRepository."""

    def setUp(self):
        self.repo = CartRepository()
        self.owner = OwnerRef.guest("guest-abc")
        self.product = ProductORM.objects.create(name="Salt", price=Decimal("15.00"), stock=4)

    def test_add_item_snapshots_price(self):
        self.repo.add_item(self.owner, str(self.product.id), 2)
        ProductORM.objects.filter(id=self.product.id).update(price=Decimal("99.00"))
        snapshot = self.repo.add_item(self.owner, str(self.product.id), 1)
        self.assertEqual(len(snapshot.lines), 1)
        self.assertEqual(snapshot.lines[0].quantity, 3)
        self.assertEqual(snapshot.lines[0].unit_price, Decimal("15.00"))
        self.assertEqual(snapshot.lines[0].name, "Salt")

    def test_add_more_than_stock(self):
        result = self.repo.add_item(self.owner, str(self.product.id), 5)
        self.assertEqual(result, InsufficientStock(str(self.product.id), 4))
        self.assertTrue(self.repo.read_snapshot(self.owner).is_empty)

    def test_add_unknown_product(self):
        self.assertEqual(self.repo.add_item(self.owner, "nope", 1), ProductNotFound("nope"))

    def test_clear(self):
        self.repo.add_item(self.owner, str(self.product.id), 1)
        self.repo.clear(self.owner)
        self.assertTrue(self.repo.read_snapshot(self.owner).is_empty)

    def test_carts_are_separate_per_owner(self):
        self.repo.add_item(self.owner, str(self.product.id), 1)
        self.assertTrue(self.repo.read_snapshot(OwnerRef.guest("someone-else")).is_empty)

    def test_add_non_positive_quantity(self):
        """Test that zero or negative quantities are rejected without touching the cart."""
        self.assertEqual(
            self.repo.add_item(self.owner, str(self.product.id), 0),
            InvalidQuantity(str(self.product.id), 0),
        )
        self.assertIsInstance(self.repo.add_item(self.owner, str(self.product.id), -3), InvalidQuantity)
        self.assertTrue(self.repo.read_snapshot(self.owner).is_empty)

    def test_update_item(self):
        ref = str(self.product.id)
        self.repo.add_item(self.owner, ref, 1)
        snapshot = self.repo.update_item(self.owner, ref, 4)
        self.assertEqual(snapshot.lines[0].quantity, 4)
        self.assertEqual(self.repo.update_item(self.owner, ref, 5), InsufficientStock(ref, 4))
        self.assertIsInstance(self.repo.update_item(self.owner, ref, 0), InvalidQuantity)
        self.assertEqual(self.repo.read_snapshot(self.owner).lines[0].quantity, 4)

    def test_update_item_not_in_cart(self):
        self.assertEqual(
            self.repo.update_item(self.owner, str(self.product.id), 1),
            ProductNotFound(str(self.product.id)),
        )

    def test_remove_item(self):
        ref = str(self.product.id)
        self.repo.add_item(self.owner, ref, 2)
        self.assertTrue(self.repo.remove_item(self.owner, ref).is_empty)
        self.assertEqual(self.repo.remove_item(self.owner, ref), ProductNotFound(ref))
        self.assertEqual(self.repo.remove_item(self.owner, "nope"), ProductNotFound("nope"))


class CartMergeTest(TestCase):
    """Tests for CartRepository.merge_guest_cart."""

    def setUp(self):
        self.repo = CartRepository()
        self.customer = OwnerRef.customer(CustomerRepository().create(name="Somchai"))
        self.guest = OwnerRef.guest("guest-abc")
        self.salt = ProductORM.objects.create(name="Salt", price=Decimal("15.00"), stock=4)
        self.rice = ProductORM.objects.create(name="Rice", price=Decimal("100.00"), stock=4)

    def test_guest_cart_changes_owner(self):
        """Test that without a customer cart the guest cart is taken over as is."""
        self.repo.add_item(self.guest, str(self.salt.id), 2)
        guest_cart_id = CartORM.objects.get(guest_id="guest-abc").id

        snapshot = self.repo.merge_guest_cart(self.customer, self.guest)
        self.assertEqual([(line.product_ref, line.quantity) for line in snapshot.lines], [(str(self.salt.id), 2)])
        cart = CartORM.objects.get(id=guest_cart_id)
        self.assertEqual(str(cart.customer_id), self.customer.value)
        self.assertIsNone(cart.guest_id)

    def test_quantities_are_added(self):
        self.repo.add_item(self.customer, str(self.salt.id), 1)
        self.repo.add_item(self.guest, str(self.salt.id), 3)
        self.repo.add_item(self.guest, str(self.rice.id), 1)

        snapshot = self.repo.merge_guest_cart(self.customer, self.guest)
        quantities = {line.product_ref: line.quantity for line in snapshot.lines}
        self.assertEqual(quantities, {str(self.salt.id): 4, str(self.rice.id): 1})
        self.assertFalse(CartORM.objects.filter(guest_id="guest-abc").exists())
        self.assertTrue(self.repo.read_snapshot(self.guest).is_empty)

    def test_merge_does_not_check_stock(self):
        self.repo.add_item(self.customer, str(self.salt.id), 3)
        self.repo.add_item(self.guest, str(self.salt.id), 3)
        snapshot = self.repo.merge_guest_cart(self.customer, self.guest)
        self.assertEqual(snapshot.lines[0].quantity, 6)

    def test_merge_keeps_guest_price_snapshot(self):
        self.repo.add_item(self.customer, str(self.salt.id), 1)
        self.repo.add_item(self.guest, str(self.rice.id), 1)
        ProductORM.objects.filter(id=self.rice.id).update(price=Decimal("120.00"))
        snapshot = self.repo.merge_guest_cart(self.customer, self.guest)
        prices = {line.product_ref: line.unit_price for line in snapshot.lines}
        self.assertEqual(prices[str(self.rice.id)], Decimal("100.00"))

    def test_nothing_to_merge(self):
        self.repo.add_item(self.customer, str(self.salt.id), 1)
        snapshot = self.repo.merge_guest_cart(self.customer, self.guest)
        self.assertEqual(len(snapshot.lines), 1)

    def test_owners_must_be_customer_and_guest(self):
        with self.assertRaises(ValueError):
            self.repo.merge_guest_cart(self.guest, self.customer)


class LoyaltyRepositoryTest(TestCase):

    def test_guests_collect_nothing(self):
        repo = LoyaltyRepository()
        repo.add_points(OwnerRef.guest("g-1"), 10)
        self.assertEqual(repo.points_for(OwnerRef.guest("g-1")), 0)

    def test_unknown_customer_raises(self):
        with self.assertRaises(CustomerORM.DoesNotExist):
            LoyaltyRepository().add_points(OwnerRef.customer(uuid4()), 5)
