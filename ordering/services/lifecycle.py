"""
Order lifecycle engine: payment confirmation, status transitions, shipment,
refund and the stock effects attached to them.

Every mutation happens inside ``OrderStore.locked`` so the check of
``is_paid`` / ``stock_effect`` and the write of the new state are one
critical section per order. Saves are also version-checked; a
``ConcurrencyConflict`` makes the whole operation run again.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, Union
from uuid import UUID

from django.utils import timezone

from ordering.config import ShopConfig, get_shop_config
from ordering.domain.errors import (
    AlreadyPaid,
    ConcurrencyConflict,
    IllegalTransition,
    InsufficientStock,
    NotPaid,
    OrderError,
    OrderNotFound,
)
from ordering.domain.order import (
    REFUNDABLE_STATUSES,
    STOCK_CONSUMING_STATUSES,
    Order,
    OrderStatus,
    OwnerRef,
    StockEffect,
)
from ordering.domain.ports import InventoryLedger, LoyaltyLedger, OrderStore
from ordering.infra.inventory import ProductInventoryLedger
from ordering.infra.repositories import LoyaltyRepository, OrderRepository
from ordering.infra.retry import retry_with_backoff
from ordering.services.notifications import (
    ORDER_CONFIRMED,
    POINTS_AWARDED,
    STATUS_CHANGED,
    NotificationDispatcher,
    get_dispatcher,
    order_payload,
)

logger = logging.getLogger(__name__)

Result = Union[Order, OrderError]

retry_on_conflict = retry_with_backoff(max_retries=3, exceptions=(ConcurrencyConflict,))


def _order_id(order) -> UUID:
    return getattr(order, "id", order)


class OrderLifecycleEngine:
    """Sole writer of an order's status, payment, fulfillment and stock state."""

    def __init__(
        self,
        orders: OrderStore | None = None,
        inventory: InventoryLedger | None = None,
        loyalty: LoyaltyLedger | None = None,
        dispatcher: NotificationDispatcher | None = None,
        config: ShopConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or get_shop_config()
        self.orders = orders or OrderRepository()
        self.inventory = inventory or ProductInventoryLedger()
        self.loyalty = loyalty or LoyaltyRepository()
        self.dispatcher = dispatcher or get_dispatcher()
        self.clock = clock or timezone.now

    # Reads

    def get(self, order_id) -> Result:
        order = self.orders.get(order_id)
        return order if order is not None else OrderNotFound(str(order_id))

    def list_for_owner(self, owner: OwnerRef, limit: int | None = None, offset: int = 0) -> list[Order]:
        return self.orders.list_for_owner(owner, limit=limit or self.config.page_size, offset=offset)

    def find_guest_order(self, order_id, email: str, phone_number: str) -> Result:
        order = self.orders.find_guest_order(order_id, email, phone_number)
        return order if order is not None else OrderNotFound(str(order_id))

    def find_guest_orders(self, email: str, phone_number: str) -> list[Order]:
        """All guest orders placed with this contact, newest first."""
        return self.orders.find_guest_orders(email, phone_number, limit=self.config.page_size)

    # Mutations

    @retry_on_conflict
    def confirm_payment(self, order, payment_reference: str) -> Result:
        """
        Mark the order paid, taking its stock out first if that has not happened yet.

        A second confirmation returns ``AlreadyPaid`` and touches nothing, which
        makes duplicate webhook deliveries harmless.
        """
        order_id = _order_id(order)
        with self.orders.locked(order_id) as current:
            if current is None:
                return OrderNotFound(str(order_id))
            if current.is_paid:
                return AlreadyPaid(str(order_id))
            if current.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
                return IllegalTransition(current.status.value, OrderStatus.PROCESSING.value)

            now = self.clock()
            taken = self._take_stock_if_needed(current, now)
            if isinstance(taken, InsufficientStock):
                logger.info(
                    "payment_rejected",
                    extra={"order_id": str(order_id), "product_ref": taken.product_ref},
                )
                return taken
            self._commit(current, taken, lambda: current.mark_paid(payment_reference, now))

        logger.info(
            "payment_confirmed",
            extra={"order_id": str(order_id), "status": current.status.value},
        )
        self.dispatcher.dispatch(
            current.owner,
            ORDER_CONFIRMED,
            order_payload(current, paymentReference=payment_reference),
        )
        return current

    @retry_on_conflict
    def transition_status(self, order, new_status: OrderStatus) -> Result:
        order_id = _order_id(order)
        with self.orders.locked(order_id) as current:
            if current is None:
                return OrderNotFound(str(order_id))
            try:
                new_status = OrderStatus(new_status)
            except ValueError:
                return IllegalTransition(current.status.value, str(new_status))
            violation = current.check_transition(new_status)
            if violation is not None:
                return violation

            previous = current.status
            now = self.clock()
            taken = []
            returned = {}
            if new_status in STOCK_CONSUMING_STATUSES:
                taken = self._take_stock_if_needed(current, now)
                if isinstance(taken, InsufficientStock):
                    return taken
            elif new_status == OrderStatus.CANCELLED and current.stock_effect == StockEffect.DECREMENTED:
                returned = current.quantities_by_product()
                self._return_stock(returned)
                current.mark_restocked(now)
            self._commit(current, taken, lambda: current.move_to(new_status, now), returned)

        self._status_changed(current, previous)
        if new_status == OrderStatus.DELIVERED:
            self._award_points(current)
        return current

    @retry_on_conflict
    def record_shipment(self, order, tracking_number: str, carrier: str) -> Result:
        """Attach tracking data and move the order to Shipped."""
        order_id = _order_id(order)
        with self.orders.locked(order_id) as current:
            if current is None:
                return OrderNotFound(str(order_id))
            previous = current.status
            now = self.clock()
            taken = []
            if previous != OrderStatus.SHIPPED:
                violation = current.check_transition(OrderStatus.SHIPPED)
                if violation is not None:
                    return violation
                taken = self._take_stock_if_needed(current, now)
                if isinstance(taken, InsufficientStock):
                    return taken

            def apply():
                current.record_shipment(tracking_number, carrier, now)
                if previous != OrderStatus.SHIPPED:
                    current.move_to(OrderStatus.SHIPPED, now)

            self._commit(current, taken, apply)

        if previous != OrderStatus.SHIPPED:
            self._status_changed(current, previous, trackingNumber=tracking_number, carrier=carrier)
        return current

    @retry_on_conflict
    def refund(self, order) -> Result:
        order_id = _order_id(order)
        with self.orders.locked(order_id) as current:
            if current is None:
                return OrderNotFound(str(order_id))
            if current.status not in REFUNDABLE_STATUSES:
                return IllegalTransition(current.status.value, OrderStatus.REFUNDED.value)
            if not current.is_paid:
                return NotPaid(str(order_id))
            previous = current.status
            self._commit(current, [], lambda: current.mark_refunded(self.clock()))

        self._status_changed(current, previous)
        return current

    def cancel_guest_order(self, order_id, email: str, phone_number: str) -> Result:
        """Guest self-service cancellation, authorised by the order's contact details."""
        found = self.find_guest_order(order_id, email, phone_number)
        if isinstance(found, OrderError):
            return found
        return self.transition_status(found, OrderStatus.CANCELLED)

    # Stock handling

    def _take_stock_if_needed(self, order: Order, now: datetime) -> Union[list, InsufficientStock]:
        """All-or-nothing decrement of every product on the order.

        Returns the applied ``(product_ref, quantity)`` pairs, empty when the
        order already holds its stock.
        """
        if order.stock_effect != StockEffect.NONE:
            return []
        quantities = order.quantities_by_product()

        for product_ref, quantity in quantities.items():
            available = self.inventory.available(product_ref) or 0
            if available < quantity:
                return InsufficientStock(product_ref, available, quantity)

        taken: list[tuple[str, int]] = []
        try:
            for product_ref, quantity in quantities.items():
                failure = self.inventory.try_decrement(product_ref, quantity)
                if failure is not None:
                    # Lost a race with another order between check and decrement.
                    self._return_stock(dict(taken))
                    return failure
                taken.append((product_ref, quantity))
        except Exception:
            self._return_stock(dict(taken))
            raise

        order.mark_stock_decremented(now)
        return taken

    def _return_stock(self, quantities: dict[str, int]) -> None:
        for product_ref, quantity in quantities.items():
            self.inventory.increment(product_ref, quantity)
        if quantities:
            logger.info("stock_returned", extra={"payload": quantities})

    def _commit(
        self,
        order: Order,
        taken: list,
        apply: Callable[[], None],
        returned: dict[str, int] | None = None,
    ) -> None:
        """Apply the state change and save; undo the stock effect if that fails."""
        try:
            apply()
            self.orders.save(order)
        except Exception:
            self._return_stock(dict(taken))
            for product_ref, quantity in (returned or {}).items():
                if self.inventory.try_decrement(product_ref, quantity) is not None:
                    logger.error("restock_undo_failed", extra={"product_ref": product_ref})
            raise

    # Side effects

    def _status_changed(self, order: Order, previous: OrderStatus, **extra) -> None:
        logger.info(
            "order_status_changed",
            extra={
                "order_id": str(order.id),
                "from_status": previous.value,
                "to_status": order.status.value,
            },
        )
        self.dispatcher.dispatch(
            order.owner,
            STATUS_CHANGED,
            order_payload(order, previousStatus=previous.value, **extra),
        )

    def _award_points(self, order: Order) -> Optional[int]:
        if order.is_guest:
            return None
        points = int(order.amounts.grand_total // self.config.points_divisor)
        if points <= 0:
            return None
        try:
            self.loyalty.add_points(order.owner, points)
        except Exception:
            logger.exception("points_award_failed", extra={"order_id": str(order.id)})
            return None
        logger.info("points_awarded", extra={"order_id": str(order.id), "payload": {"points": points}})
        self.dispatcher.dispatch(order.owner, POINTS_AWARDED, order_payload(order, points=points))
        return points
