from __future__ import annotations

from uuid import uuid4

from django.db import models
from django.db.models import Q

from ordering.domain.order import OrderStatus, StockEffect


PAYMENT_METHOD_CHOICES = (
    ("credit_card", "Credit card"),
    ("bank_transfer", "Bank transfer"),
    ("promptpay", "PromptPay"),
    ("cash_on_delivery", "Cash on delivery"),
)

SHIPPING_METHOD_CHOICES = (
    ("standard", "Standard"),
    ("express", "Express"),
)

OPERATION_TYPE = (
    ("ADD_CART_ITEM", "Add item to cart"),
    ("UPDATE_CART_ITEM", "Change cart item quantity"),
    ("REMOVE_CART_ITEM", "Remove item from cart"),
    ("MERGE_GUEST_CART", "Merge guest cart"),
    ("CHECKOUT", "Checkout"),
    ("GUEST_CHECKOUT", "Guest checkout"),
    ("CONFIRM_PAYMENT", "Confirm payment"),
    ("TRANSITION_STATUS", "Change order status"),
    ("RECORD_SHIPMENT", "Record shipment"),
    ("REFUND_ORDER", "Refund order"),
    ("GUEST_CANCEL", "Guest cancellation"),
)


class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class CustomerORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    name = models.CharField(max_length=255)
    email = models.EmailField(max_length=255, blank=True, default="")
    line_user_id = models.CharField(max_length=64, blank=True, default="")
    points = models.PositiveIntegerField(default=0)

    class Meta:
        indexes = [
            models.Index(fields=("email",)),
        ]

    def __str__(self):
        return self.name


class ProductORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    name = models.CharField(max_length=255)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    stock = models.IntegerField(default=0)

    class Meta:
        constraints = [
            models.CheckConstraint(check=Q(stock__gte=0), name="product_stock_non_negative"),
        ]

    def __str__(self):
        return self.name


class CartORM(TimeStampedModel):
    """One cart per customer or guest session."""
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    customer = models.OneToOneField(
        CustomerORM,
        on_delete=models.CASCADE,
        related_name="cart",
        null=True,
        blank=True,
    )
    guest_id = models.CharField(max_length=64, null=True, blank=True, unique=True)

    class Meta:
        constraints = [
            models.CheckConstraint(
                check=(
                    Q(customer__isnull=False, guest_id__isnull=True)
                    | Q(customer__isnull=True, guest_id__isnull=False)
                ),
                name="cart_exactly_one_owner",
            ),
        ]


class CartItemORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    cart = models.ForeignKey(CartORM, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(ProductORM, on_delete=models.CASCADE, related_name="+")
    quantity = models.PositiveIntegerField()
    price = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        unique_together = [("cart", "product")]
        ordering = ["created_at"]


class OrderORM(TimeStampedModel):

    STATUS_CHOICES = tuple((status.value, status.value) for status in OrderStatus)
    STOCK_EFFECT_CHOICES = tuple((effect.value, effect.value.title()) for effect in StockEffect)

    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    customer = models.ForeignKey(
        CustomerORM,
        on_delete=models.PROTECT,
        related_name="orders",
        null=True,
        blank=True,
    )
    guest_id = models.CharField(max_length=64, null=True, blank=True)

    guest_email = models.EmailField(max_length=255, blank=True, default="")
    guest_first_name = models.CharField(max_length=100, blank=True, default="")
    guest_last_name = models.CharField(max_length=100, blank=True, default="")
    guest_phone_number = models.CharField(max_length=32, blank=True, default="")

    shipping_address = models.JSONField(default=dict)
    payment_method = models.CharField(max_length=32, choices=PAYMENT_METHOD_CHOICES)
    shipping_method = models.CharField(max_length=32, choices=SHIPPING_METHOD_CHOICES)
    note = models.TextField(blank=True, default="")

    items_total = models.DecimalField(max_digits=12, decimal_places=2)
    tax = models.DecimalField(max_digits=12, decimal_places=2)
    shipping_fee = models.DecimalField(max_digits=12, decimal_places=2)
    discount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    grand_total = models.DecimalField(max_digits=12, decimal_places=2)

    status = models.CharField(max_length=32, choices=STATUS_CHOICES)
    paid_at = models.DateTimeField(null=True, blank=True)
    payment_reference = models.CharField(max_length=255, null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    tracking_number = models.CharField(max_length=100, null=True, blank=True)
    carrier = models.CharField(max_length=100, null=True, blank=True)
    stock_effect = models.CharField(
        max_length=16,
        choices=STOCK_EFFECT_CHOICES,
        default=StockEffect.NONE.value,
    )
    version = models.PositiveIntegerField(default=0)

    class Meta:
        constraints = [
            models.CheckConstraint(
                check=(
                    Q(customer__isnull=False, guest_id__isnull=True)
                    | Q(customer__isnull=True, guest_id__isnull=False)
                ),
                name="order_exactly_one_owner",
            ),
            models.CheckConstraint(check=Q(grand_total__gte=0), name="order_grand_total_non_negative"),
        ]
        indexes = [
            models.Index(fields=("customer", "status")),
            models.Index(fields=("guest_id",)),
            models.Index(fields=("status", "created_at")),
        ]


class OrderItemORM(TimeStampedModel):
    id = models.UUIDField(primary_key=True, default=uuid4, editable=False)
    order = models.ForeignKey(
        OrderORM,
        on_delete=models.CASCADE,
        related_name="items",
    )
    position = models.PositiveIntegerField()
    product_ref = models.CharField(max_length=64)
    name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField()
    price = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        ordering = ["position"]
        indexes = [
            models.Index(fields=("order",)),
        ]


class IdempotencyKey(TimeStampedModel):
    key = models.CharField(max_length=255)
    user_ref = models.CharField(max_length=80)
    operation = models.CharField(max_length=32, choices=OPERATION_TYPE)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=200)
    response_payload = models.JSONField()

    class Meta:
        unique_together = [("key", "user_ref", "operation")]
        indexes = [
            models.Index(fields=("request_hash",)),
        ]
