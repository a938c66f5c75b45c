"""
Checkout: turn a cart snapshot into a new order awaiting payment.

Stock is checked against live inventory but not taken; that happens on
payment or on the first stock-consuming status change.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Union

from django.utils import timezone

from ordering.config import ShopConfig, get_shop_config
from ordering.domain.errors import (
    EmptyCart,
    InsufficientStock,
    InvalidDiscount,
    InvalidQuantity,
    OrderError,
    ProductNotFound,
    UnsupportedPaymentMethod,
    UnsupportedShippingMethod,
)
from ordering.domain.order import GuestContact, LineItem, Order, OwnerRef
from ordering.domain.ports import CartSnapshot, CartSource, InventoryLedger, OrderStore
from ordering.domain.pricing import compute_amounts, items_total, shipping_fee_for
from ordering.infra.inventory import ProductInventoryLedger
from ordering.infra.repositories import CartRepository, OrderRepository
from ordering.services.notifications import ORDER_PLACED, NotificationDispatcher, get_dispatcher, order_payload

logger = logging.getLogger(__name__)


class CheckoutAssembler:

    def __init__(
        self,
        orders: OrderStore | None = None,
        inventory: InventoryLedger | None = None,
        carts: CartSource | None = None,
        dispatcher: NotificationDispatcher | None = None,
        config: ShopConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or get_shop_config()
        self.orders = orders or OrderRepository()
        self.inventory = inventory or ProductInventoryLedger()
        self.carts = carts or CartRepository()
        self.dispatcher = dispatcher or get_dispatcher()
        self.clock = clock or timezone.now

    def checkout(
        self,
        owner: OwnerRef,
        shipping_address: dict,
        payment_method: str,
        shipping_method: str,
        **options,
    ) -> Union[Order, OrderError]:
        """Assemble an order from the owner's current cart."""
        snapshot = self.carts.read_snapshot(owner)
        return self.assemble(owner, snapshot, shipping_address, payment_method, shipping_method, **options)

    def assemble(
        self,
        owner: OwnerRef,
        cart_snapshot: CartSnapshot,
        shipping_address: dict,
        payment_method: str,
        shipping_method: str,
        discount: Decimal = Decimal("0"),
        contact: Optional[GuestContact] = None,
        note: str = "",
    ) -> Union[Order, OrderError]:
        """
        Validate the snapshot against live stock and create the order.

        Any failure leaves no order behind and the cart untouched. Prices come
        from the snapshot, never from the product's current price.
        """
        if cart_snapshot.is_empty:
            return EmptyCart()

        for line in cart_snapshot.lines:
            if line.quantity < 1:
                return InvalidQuantity(line.product_ref, line.quantity)

        requested: dict[str, int] = {}
        for line in cart_snapshot.lines:
            requested[line.product_ref] = requested.get(line.product_ref, 0) + line.quantity

        names = {}
        for product_ref, quantity in requested.items():
            product = self.inventory.product(product_ref)
            if product is None:
                return ProductNotFound(product_ref)
            if quantity > product.stock:
                return InsufficientStock(product_ref, product.stock, quantity)
            names[product_ref] = product.name

        line_items = [
            LineItem(
                product_ref=line.product_ref,
                name=line.name or names[line.product_ref],
                unit_price=Decimal(line.unit_price),
                quantity=line.quantity,
            )
            for line in cart_snapshot.lines
        ]

        subtotal = items_total(line_items)
        discount = Decimal(discount)
        if discount < 0 or discount > subtotal:
            return InvalidDiscount(str(discount))

        shipping_fee = shipping_fee_for(
            shipping_method,
            self.config.shipping_fees,
            subtotal,
            self.config.free_shipping_threshold,
        )
        if shipping_fee is None:
            return UnsupportedShippingMethod(shipping_method)
        if not self.config.payment_method_enabled(payment_method):
            return UnsupportedPaymentMethod(payment_method)

        order = Order.place(
            owner=owner,
            line_items=line_items,
            amounts=compute_amounts(line_items, self.config.tax_rate, shipping_fee, discount),
            shipping_address=shipping_address,
            payment_method=payment_method,
            shipping_method=shipping_method,
            contact=contact,
            note=note,
            now=self.clock(),
        )
        self.orders.create(order)
        logger.info(
            "order_created",
            extra={
                "order_id": str(order.id),
                "user_id": str(owner),
                "payload": {"grandTotal": str(order.amounts.grand_total), "items": len(line_items)},
            },
        )

        try:
            self.carts.clear(owner)
        except Exception:
            logger.exception("cart_clear_failed", extra={"order_id": str(order.id)})

        self.dispatcher.dispatch(owner, ORDER_PLACED, order_payload(order, itemsCount=len(line_items)))
        return order
