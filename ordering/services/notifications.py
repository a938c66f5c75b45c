"""
Customer notifications.

The lifecycle engine never waits on a notification: ``NotificationDispatcher``
hands the message to a thread pool (or sends inline when configured with no
workers) and only logs failures.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

import requests
from django.apps import apps
from django.db import close_old_connections

from ordering.config import ShopConfig
from ordering.domain.order import Order, OwnerRef
from ordering.domain.ports import Notifier
from ordering.infra.pii_masker import mask_pii_in_dict
from ordering.infra.repositories import CustomerRepository

logger = logging.getLogger(__name__)

ORDER_PLACED = "OrderPlaced"
ORDER_CONFIRMED = "OrderConfirmed"
STATUS_CHANGED = "StatusChanged"
POINTS_AWARDED = "PointsAwarded"

LINE_PUSH_URL = "https://api.line.me/v2/bot/message/push"


def order_payload(order: Order, **extra) -> dict:
    payload = {
        "orderId": str(order.id),
        "status": order.status.value,
        "grandTotal": str(order.amounts.grand_total),
    }
    payload.update(extra)
    return payload


class LogNotifier:
    """Writes notifications to the log instead of delivering them."""

    def notify(self, owner: OwnerRef, event_kind: str, payload: dict) -> None:
        logger.info(
            "notification",
            extra={
                "user_id": str(owner),
                "event_kind": event_kind,
                "payload": mask_pii_in_dict(payload),
            },
        )


class LineNotifier:
    """Push messages to customers who linked a LINE account."""

    MESSAGES = {
        ORDER_PLACED: "Order {orderId} received. Total: {grandTotal} {currency}.",
        ORDER_CONFIRMED: "Payment for order {orderId} confirmed. Total: {grandTotal} {currency}.",
        STATUS_CHANGED: "Order {orderId} is now {status}.",
        POINTS_AWARDED: "You earned {points} points for order {orderId}.",
    }

    def __init__(
        self,
        access_token: str,
        customers: CustomerRepository | None = None,
        session: requests.Session | None = None,
        currency: str = "THB",
        timeout: float = 5.0,
    ):
        self.access_token = access_token
        self.customers = customers or CustomerRepository()
        self.session = session or requests.Session()
        self.currency = currency
        self.timeout = timeout

    def notify(self, owner: OwnerRef, event_kind: str, payload: dict) -> None:
        line_user_id = self.customers.line_user_id(owner)
        if not line_user_id:
            logger.debug("line_recipient_missing", extra={"event_kind": event_kind})
            return

        template = self.MESSAGES.get(event_kind, "Order {orderId} updated.")
        text = template.format(currency=self.currency, **payload)
        response = self.session.post(
            LINE_PUSH_URL,
            json={"to": line_user_id, "messages": [{"type": "text", "text": text}]},
            headers={"Authorization": f"Bearer {self.access_token}"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        logger.info("line_message_sent", extra={"event_kind": event_kind})


class NotificationDispatcher:
    """Fire-and-forget wrapper around a ``Notifier``."""

    def __init__(self, notifier: Notifier, workers: int = 0):
        self.notifier = notifier
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify") if workers > 0 else None

    def dispatch(self, owner: OwnerRef, event_kind: str, payload: dict) -> None:
        if self._executor is None:
            self._send(owner, event_kind, payload)
        else:
            self._executor.submit(self._send_from_worker, owner, event_kind, payload)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)

    def _send_from_worker(self, owner: OwnerRef, event_kind: str, payload: dict) -> None:
        try:
            self._send(owner, event_kind, payload)
        finally:
            close_old_connections()

    def _send(self, owner: OwnerRef, event_kind: str, payload: dict) -> None:
        try:
            self.notifier.notify(owner, event_kind, payload)
        except Exception:
            logger.exception(
                "notification_failed",
                extra={"event_kind": event_kind, "order_id": payload.get("orderId")},
            )


def build_notifier(config: ShopConfig) -> Notifier:
    if config.line_channel_access_token:
        return LineNotifier(config.line_channel_access_token, currency=config.currency)
    return LogNotifier()


def get_dispatcher() -> NotificationDispatcher:
    """Dispatcher owned by the ordering app, built once in ``ready()``."""
    return apps.get_app_config("ordering").dispatcher
