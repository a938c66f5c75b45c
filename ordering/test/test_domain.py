"""
Unit tests for domain models.
"""
from decimal import Decimal

from django.test import TestCase

from ordering.domain.errors import IllegalTransition, InsufficientStock
from ordering.domain.events import OrderStatusChanged, PaymentConfirmed, StockDecremented, StockRestocked
from ordering.domain.order import (
    Amounts,
    LineItem,
    Order,
    OrderStatus,
    OwnerKind,
    OwnerRef,
    StockEffect,
)
from ordering.domain.pricing import compute_amounts, items_total, shipping_fee_for, tax_for
from ordering.test.helpers import ADDRESS, NOW


def make_order(quantity=2, price="100.00") -> Order:
    items = [LineItem("P1", "Rice", Decimal(price), quantity)]
    amounts = compute_amounts(items, Decimal("0.07"), Decimal("60"))
    return Order.place(
        owner=OwnerRef.customer("c-1"),
        line_items=items,
        amounts=amounts,
        shipping_address=ADDRESS,
        payment_method="promptpay",
        shipping_method="standard",
        now=NOW,
    )


class LineItemTest(TestCase):
    """Tests for LineItem value object."""

    def test_subtotal(self):
        item = LineItem("P1", "Rice", Decimal("12.50"), 4)
        self.assertEqual(item.subtotal, Decimal("50.00"))

    def test_quantity_must_be_positive(self):
        with self.assertRaises(ValueError):
            LineItem("P1", "Rice", Decimal("10.00"), 0)

    def test_negative_price_fails(self):
        with self.assertRaises(ValueError):
            LineItem("P1", "Rice", Decimal("-1.00"), 1)


class OwnerRefTest(TestCase):

    def test_customer_and_guest_are_distinct(self):
        self.assertNotEqual(OwnerRef.customer("abc"), OwnerRef.guest("abc"))
        self.assertEqual(OwnerRef.guest("abc").kind, OwnerKind.GUEST)

    def test_empty_reference_rejected(self):
        with self.assertRaises(ValueError):
            OwnerRef.guest("")


class PricingTest(TestCase):
    """Tests for amount calculation."""

    def test_tax_rounds_half_up(self):
        # 0.5 * 0.07 = 0.035 -> 0.04
        self.assertEqual(tax_for(Decimal("0.50"), Decimal("0.07")), Decimal("0.04"))
        self.assertEqual(tax_for(Decimal("200.00"), Decimal("0.07")), Decimal("14.00"))

    def test_grand_total_is_derived(self):
        amounts = Amounts(Decimal("200.00"), Decimal("14.00"), Decimal("60.00"), Decimal("10.00"))
        self.assertEqual(amounts.grand_total, Decimal("264.00"))

    def test_items_total_is_exact(self):
        items = [LineItem("P1", "Chili", Decimal("0.335"), 3), LineItem("P2", "Lime", Decimal("0.005"), 1)]
        self.assertEqual(items_total(items), Decimal("1.010"))
        amounts = compute_amounts(items[:1], Decimal("0.07"), Decimal("0"))
        self.assertEqual(amounts.items_total, Decimal("1.005"))
        self.assertEqual(amounts.tax, Decimal("0.07"))

    def test_discount_cannot_exceed_total(self):
        with self.assertRaises(ValueError):
            Amounts(Decimal("10.00"), Decimal("0"), Decimal("0"), Decimal("100.00"))

    def test_shipping_fee_lookup(self):
        fees = {"standard": Decimal("60"), "express": Decimal("100")}
        self.assertEqual(shipping_fee_for("express", fees, Decimal("10")), Decimal("100.00"))
        self.assertIsNone(shipping_fee_for("drone", fees, Decimal("10")))

    def test_free_shipping_threshold(self):
        fees = {"standard": Decimal("60")}
        self.assertEqual(
            shipping_fee_for("standard", fees, Decimal("1500"), Decimal("1000")),
            Decimal("0.00"),
        )
        self.assertEqual(
            shipping_fee_for("standard", fees, Decimal("999.99"), Decimal("1000")),
            Decimal("60.00"),
        )


class OrderTest(TestCase):
    """Tests for Order aggregate."""

    def test_place_order(self):
        order = make_order()
        self.assertEqual(order.status, OrderStatus.PENDING_PAYMENT)
        self.assertEqual(order.stock_effect, StockEffect.NONE)
        self.assertFalse(order.is_paid)
        self.assertEqual(order.amounts.grand_total, Decimal("274.00"))
        self.assertEqual(order.created_at, NOW)

    def test_order_requires_items(self):
        with self.assertRaises(ValueError):
            Order(owner=OwnerRef.guest("g"), line_items=[], amounts=Amounts(Decimal(0), Decimal(0), Decimal(0)))

    def test_transition_table(self):
        order = make_order()
        self.assertIsNone(order.check_transition(OrderStatus.SHIPPED))
        self.assertEqual(
            order.check_transition(OrderStatus.DELIVERED),
            IllegalTransition("Pending Payment", "Delivered"),
        )
        self.assertIsNotNone(order.check_transition(OrderStatus.REFUNDED))

    def test_mark_paid_moves_pending_to_processing(self):
        order = make_order()
        order.pull_events()
        order.mark_paid("tx-1", NOW)
        self.assertTrue(order.is_paid)
        self.assertEqual(order.payment.reference, "tx-1")
        self.assertEqual(order.status, OrderStatus.PROCESSING)
        events = order.pull_events()
        self.assertIsInstance(events[0], PaymentConfirmed)
        self.assertIsInstance(events[1], OrderStatusChanged)
        self.assertEqual(order.pull_events(), [])

    def test_mark_paid_never_moves_status_backward(self):
        order = make_order()
        order.move_to(OrderStatus.SHIPPED, NOW)
        order.mark_paid("cod-1", NOW)
        self.assertEqual(order.status, OrderStatus.SHIPPED)

    def test_stock_effect_is_one_way(self):
        order = make_order()
        with self.assertRaises(ValueError):
            order.mark_restocked(NOW)
        order.mark_stock_decremented(NOW)
        self.assertTrue(order.stock_state.is_decremented)
        with self.assertRaises(ValueError):
            order.mark_stock_decremented(NOW)
        order.mark_restocked(NOW)
        self.assertEqual(order.stock_state.is_decremented, False)
        self.assertEqual(order.stock_state.is_restocked, True)
        kinds = [type(e) for e in order.pull_events()]
        self.assertIn(StockDecremented, kinds)
        self.assertIn(StockRestocked, kinds)

    def test_delivery_sets_delivered_at(self):
        order = make_order()
        order.move_to(OrderStatus.SHIPPED, NOW)
        order.move_to(OrderStatus.DELIVERED, NOW)
        self.assertTrue(order.is_delivered)
        self.assertEqual(order.fulfillment.delivered_at, NOW)

    def test_illegal_move_raises(self):
        order = make_order()
        with self.assertRaises(ValueError):
            order.move_to(OrderStatus.DELIVERED, NOW)
        self.assertEqual(order.status, OrderStatus.PENDING_PAYMENT)

    def test_refund_requires_paid_terminal_order(self):
        order = make_order()
        with self.assertRaises(ValueError):
            order.mark_refunded(NOW)
        order.move_to(OrderStatus.CANCELLED, NOW)
        with self.assertRaises(ValueError):
            order.mark_refunded(NOW)

    def test_quantities_are_summed_per_product(self):
        items = [
            LineItem("P1", "Rice", Decimal("10"), 1),
            LineItem("P2", "Salt", Decimal("5"), 2),
            LineItem("P1", "Rice", Decimal("10"), 3),
        ]
        order = Order(
            owner=OwnerRef.guest("g-1"),
            line_items=items,
            amounts=compute_amounts(items, Decimal("0.07"), Decimal("60")),
        )
        self.assertEqual(order.quantities_by_product(), {"P1": 4, "P2": 2})


class OrderErrorTest(TestCase):

    def test_insufficient_stock_equality_ignores_requested(self):
        self.assertEqual(InsufficientStock("P1", 3, 10), InsufficientStock("P1", 3))
        self.assertEqual(InsufficientStock("P1", 3, 10).details()["requested"], 10)

    def test_error_carries_code_and_details(self):
        error = IllegalTransition("Pending Payment", "Delivered")
        self.assertEqual(error.code, "ILLEGAL_TRANSITION")
        self.assertEqual(error.details(), {"from": "Pending Payment", "to": "Delivered"})
        self.assertIn("Delivered", error.message)
