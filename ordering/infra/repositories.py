"""
Infrastructure repositories for the ordering domain.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional, Union
from uuid import UUID

from django.db import transaction
from django.db.models import F

from ordering.domain.errors import (
    ConcurrencyConflict,
    InsufficientStock,
    InvalidQuantity,
    OrderError,
    ProductNotFound,
)
from ordering.domain.order import (
    Amounts,
    FulfillmentInfo,
    GuestContact,
    LineItem,
    Order,
    OrderStatus,
    OwnerKind,
    OwnerRef,
    PaymentInfo,
    StockEffect,
)
from ordering.domain.ports import CartLine, CartSnapshot
from ordering.infra.event_store import EventStoreRepository
from ordering.infra.models import (
    CartItemORM,
    CartORM,
    CustomerORM,
    OrderItemORM,
    OrderORM,
    ProductORM,
)

logger = logging.getLogger(__name__)


def as_uuid(value) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _owner_filter(owner: OwnerRef, prefix: str = "") -> dict:
    if owner.kind == OwnerKind.CUSTOMER:
        return {f"{prefix}customer_id": as_uuid(owner.value)}
    return {f"{prefix}guest_id": owner.value}


class CustomerRepository:
    """Repository for Customer records."""

    def get_by_id(self, customer_id) -> CustomerORM | None:
        pk = as_uuid(customer_id)
        if pk is None:
            return None
        return CustomerORM.objects.filter(id=pk).first()

    def create(self, name: str, email: str = "", line_user_id: str = "") -> UUID:
        customer = CustomerORM.objects.create(name=name, email=email, line_user_id=line_user_id)
        return customer.id

    def line_user_id(self, owner: OwnerRef) -> str | None:
        if owner.is_guest:
            return None
        customer = self.get_by_id(owner.value)
        return customer.line_user_id if customer and customer.line_user_id else None


class OrderRepository:
    """Order store: version-checked saves plus a per-order row claim."""

    def __init__(self, event_store_repo: EventStoreRepository | None = None):
        self.event_store_repo = event_store_repo or EventStoreRepository()

    @transaction.atomic
    def create(self, order: Order) -> Order:
        order_orm = OrderORM.objects.create(
            id=order.id,
            version=order.version,
            **self._owner_fields(order),
            **self._state_fields(order),
        )
        # auto_now and auto_now_add ignore values passed to create()
        OrderORM.objects.filter(id=order_orm.id).update(
            created_at=order.created_at, updated_at=order.updated_at
        )
        OrderItemORM.objects.bulk_create([
            OrderItemORM(
                order=order_orm,
                position=position,
                product_ref=item.product_ref,
                name=item.name,
                quantity=item.quantity,
                price=item.unit_price,
            )
            for position, item in enumerate(order.line_items)
        ])
        self.event_store_repo.save_events(order.pull_events())
        return order

    def get(self, order_id) -> Order | None:
        pk = as_uuid(order_id)
        if pk is None:
            return None
        order_orm = OrderORM.objects.prefetch_related("items").filter(id=pk).first()
        return self._to_domain(order_orm) if order_orm else None

    @transaction.atomic
    def save(self, order: Order) -> Order:
        updated = (
            OrderORM.objects
            .filter(id=order.id, version=order.version)
            .update(version=F("version") + 1, **self._state_fields(order))
        )
        if not updated:
            raise ConcurrencyConflict(order.id, order.version)
        order.version += 1
        self.event_store_repo.save_events(order.pull_events())
        return order

    @contextmanager
    def locked(self, order_id) -> Iterator[Order | None]:
        pk = as_uuid(order_id)
        with transaction.atomic():
            order_orm = None
            if pk is not None:
                order_orm = (
                    OrderORM.objects
                    .select_for_update()
                    .prefetch_related("items")
                    .filter(id=pk)
                    .first()
                )
            yield self._to_domain(order_orm) if order_orm else None

    def list_for_owner(self, owner: OwnerRef, limit: int = 50, offset: int = 0) -> list[Order]:
        if owner.kind == OwnerKind.CUSTOMER and as_uuid(owner.value) is None:
            return []
        orders_orm = (
            OrderORM.objects
            .filter(**_owner_filter(owner))
            .prefetch_related("items")
            .order_by("-created_at")[offset:offset + limit]
        )
        return [self._to_domain(order_orm) for order_orm in orders_orm]

    def find_guest_order(self, order_id, email: str, phone_number: str) -> Order | None:
        pk = as_uuid(order_id)
        if pk is None or not email or not phone_number:
            return None
        order_orm = (
            OrderORM.objects
            .prefetch_related("items")
            .filter(
                id=pk,
                guest_id__isnull=False,
                guest_email__iexact=email,
                guest_phone_number=phone_number,
            )
            .first()
        )
        return self._to_domain(order_orm) if order_orm else None

    def find_guest_orders(self, email: str, phone_number: str, limit: int = 50) -> list[Order]:
        if not email or not phone_number:
            return []
        orders_orm = (
            OrderORM.objects
            .filter(
                guest_id__isnull=False,
                guest_email__iexact=email,
                guest_phone_number=phone_number,
            )
            .prefetch_related("items")
            .order_by("-created_at")[:limit]
        )
        return [self._to_domain(order_orm) for order_orm in orders_orm]

    def _owner_fields(self, order: Order) -> dict:
        fields = {"customer_id": None, "guest_id": None}
        if order.owner.kind == OwnerKind.CUSTOMER:
            fields["customer_id"] = UUID(order.owner.value)
        else:
            fields["guest_id"] = order.owner.value
        contact = order.contact
        if contact is not None:
            fields.update(
                guest_email=contact.email,
                guest_first_name=contact.first_name,
                guest_last_name=contact.last_name,
                guest_phone_number=contact.phone_number,
            )
        fields.update(
            shipping_address=order.shipping_address,
            payment_method=order.payment_method,
            shipping_method=order.shipping_method,
            note=order.note,
            items_total=order.amounts.items_total,
            tax=order.amounts.tax,
            shipping_fee=order.amounts.shipping_fee,
            discount=order.amounts.discount,
            grand_total=order.amounts.grand_total,
        )
        return fields

    def _state_fields(self, order: Order) -> dict:
        """Columns that may change after creation."""
        return {
            "status": order.status.value,
            "paid_at": order.payment.paid_at,
            "payment_reference": order.payment.reference,
            "delivered_at": order.fulfillment.delivered_at,
            "tracking_number": order.fulfillment.tracking_number,
            "carrier": order.fulfillment.carrier,
            "stock_effect": order.stock_effect.value,
            "updated_at": order.updated_at,
        }

    def _to_domain(self, order_orm: OrderORM) -> Order:
        if order_orm.customer_id is not None:
            owner = OwnerRef.customer(order_orm.customer_id)
        else:
            owner = OwnerRef.guest(order_orm.guest_id)

        contact = None
        if order_orm.guest_email:
            contact = GuestContact(
                email=order_orm.guest_email,
                first_name=order_orm.guest_first_name,
                last_name=order_orm.guest_last_name,
                phone_number=order_orm.guest_phone_number,
            )

        items = [
            LineItem(
                product_ref=item_orm.product_ref,
                name=item_orm.name,
                unit_price=item_orm.price,
                quantity=item_orm.quantity,
            )
            for item_orm in sorted(order_orm.items.all(), key=lambda i: i.position)
        ]

        return Order(
            id=order_orm.id,
            owner=owner,
            line_items=items,
            amounts=Amounts(
                items_total=order_orm.items_total,
                tax=order_orm.tax,
                shipping_fee=order_orm.shipping_fee,
                discount=order_orm.discount,
            ),
            shipping_address=order_orm.shipping_address,
            payment_method=order_orm.payment_method,
            shipping_method=order_orm.shipping_method,
            status=OrderStatus(order_orm.status),
            payment=PaymentInfo(paid_at=order_orm.paid_at, reference=order_orm.payment_reference),
            fulfillment=FulfillmentInfo(
                delivered_at=order_orm.delivered_at,
                tracking_number=order_orm.tracking_number,
                carrier=order_orm.carrier,
            ),
            stock_effect=StockEffect(order_orm.stock_effect),
            contact=contact,
            note=order_orm.note,
            created_at=order_orm.created_at,
            updated_at=order_orm.updated_at,
            version=order_orm.version,
        )


class CartRepository:
    """Carts for customers and guest sessions."""

    def read_snapshot(self, owner: OwnerRef) -> CartSnapshot:
        items = (
            CartItemORM.objects
            .filter(**_owner_filter(owner, prefix="cart__"))
            .select_related("product")
            .order_by("created_at", "id")
        ) if self._valid(owner) else []
        return CartSnapshot(
            owner=owner,
            lines=tuple(
                CartLine(
                    product_ref=str(item.product_id),
                    quantity=item.quantity,
                    unit_price=item.price,
                    name=item.product.name,
                )
                for item in items
            ),
        )

    def clear(self, owner: OwnerRef) -> None:
        if not self._valid(owner):
            return
        deleted, _ = CartItemORM.objects.filter(**_owner_filter(owner, prefix="cart__")).delete()
        logger.info("cart_cleared", extra={"user_id": str(owner), "payload": {"items": deleted}})

    @transaction.atomic
    def add_item(self, owner: OwnerRef, product_ref: str, quantity: int) -> Union[CartSnapshot, OrderError]:
        """Add ``quantity`` of a product at its current price; repeated adds accumulate."""
        if quantity < 1:
            return InvalidQuantity(str(product_ref), quantity)
        if not self._valid(owner):
            raise ValueError(f"Invalid cart owner {owner}")
        pk = as_uuid(product_ref)
        product = ProductORM.objects.filter(id=pk).first() if pk else None
        if product is None:
            return ProductNotFound(str(product_ref))

        cart, _ = CartORM.objects.get_or_create(**_owner_filter(owner))
        item = CartItemORM.objects.select_for_update().filter(cart=cart, product=product).first()
        requested = quantity + (item.quantity if item else 0)
        if requested > product.stock:
            return InsufficientStock(str(product.id), product.stock, requested)

        if item:
            item.quantity = requested
            item.save(update_fields=["quantity", "updated_at"])
        else:
            CartItemORM.objects.create(cart=cart, product=product, quantity=quantity, price=product.price)
        return self.read_snapshot(owner)

    @transaction.atomic
    def update_item(self, owner: OwnerRef, product_ref: str, quantity: int) -> Union[CartSnapshot, OrderError]:
        """Set the quantity of a product already in the cart. The price snapshot is kept."""
        if quantity < 1:
            return InvalidQuantity(str(product_ref), quantity)
        item = self._item(owner, product_ref)
        if item is None:
            return ProductNotFound(str(product_ref))
        if quantity > item.product.stock:
            return InsufficientStock(str(item.product_id), item.product.stock, quantity)
        item.quantity = quantity
        item.save(update_fields=["quantity", "updated_at"])
        return self.read_snapshot(owner)

    @transaction.atomic
    def remove_item(self, owner: OwnerRef, product_ref: str) -> Union[CartSnapshot, OrderError]:
        item = self._item(owner, product_ref)
        if item is None:
            return ProductNotFound(str(product_ref))
        item.delete()
        return self.read_snapshot(owner)

    @transaction.atomic
    def merge_guest_cart(self, customer: OwnerRef, guest: OwnerRef) -> CartSnapshot:
        """
        Move a guest session's cart into the customer's cart once the customer identifies.

        Without a customer cart the guest cart simply changes owner. Otherwise
        quantities of the same product are added up and the guest cart is
        deleted. Stock is checked again at checkout, not here.
        """
        if customer.is_guest or not guest.is_guest or not self._valid(customer):
            raise ValueError(f"Cannot merge cart of {guest} into {customer}")
        guest_cart = CartORM.objects.select_for_update().filter(guest_id=guest.value).first()
        if guest_cart is None:
            return self.read_snapshot(customer)

        customer_cart = CartORM.objects.select_for_update().filter(**_owner_filter(customer)).first()
        if customer_cart is None:
            guest_cart.guest_id = None
            guest_cart.customer_id = as_uuid(customer.value)
            guest_cart.save(update_fields=["guest_id", "customer", "updated_at"])
            moved = guest_cart.items.count()
        else:
            existing = {item.product_id: item for item in customer_cart.items.select_for_update()}
            moved = 0
            for guest_item in guest_cart.items.all():
                item = existing.get(guest_item.product_id)
                if item:
                    item.quantity += guest_item.quantity
                    item.save(update_fields=["quantity", "updated_at"])
                else:
                    CartItemORM.objects.create(
                        cart=customer_cart,
                        product_id=guest_item.product_id,
                        quantity=guest_item.quantity,
                        price=guest_item.price,
                    )
                moved += 1
            guest_cart.delete()

        logger.info("guest_cart_merged", extra={"user_id": str(customer), "payload": {"items": moved}})
        return self.read_snapshot(customer)

    def _item(self, owner: OwnerRef, product_ref: str) -> CartItemORM | None:
        pk = as_uuid(product_ref)
        if pk is None or not self._valid(owner):
            return None
        return (
            CartItemORM.objects
            .select_for_update()
            .select_related("product")
            .filter(product_id=pk, **_owner_filter(owner, prefix="cart__"))
            .first()
        )

    def _valid(self, owner: OwnerRef) -> bool:
        return owner.kind == OwnerKind.GUEST or as_uuid(owner.value) is not None


class LoyaltyRepository:
    """Loyalty points stored on the customer row. Guests do not collect points."""

    def add_points(self, owner: OwnerRef, amount: int) -> None:
        if amount <= 0 or owner.is_guest:
            return
        updated = CustomerORM.objects.filter(id=as_uuid(owner.value)).update(points=F("points") + amount)
        if not updated:
            raise CustomerORM.DoesNotExist(f"Customer {owner.value} not found")

    def points_for(self, owner: OwnerRef) -> int:
        if owner.is_guest:
            return 0
        points = CustomerORM.objects.filter(id=as_uuid(owner.value)).values_list("points", flat=True).first()
        return points or 0
