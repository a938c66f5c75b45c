from django.contrib import admin

from ordering.infra.event_store import EventStore
from ordering.infra.models import (
    CartItemORM,
    CartORM,
    CustomerORM,
    IdempotencyKey,
    OrderItemORM,
    OrderORM,
    ProductORM,
)


@admin.register(CustomerORM)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "email", "points", "created_at")
    search_fields = ("name", "email")


@admin.register(ProductORM)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "price", "stock", "updated_at")
    search_fields = ("name",)


class CartItemInline(admin.TabularInline):
    model = CartItemORM
    extra = 0


@admin.register(CartORM)
class CartAdmin(admin.ModelAdmin):
    list_display = ("id", "customer", "guest_id", "updated_at")
    inlines = [CartItemInline]


class OrderItemInline(admin.TabularInline):
    model = OrderItemORM
    extra = 0
    readonly_fields = ("position", "product_ref", "name", "quantity", "price")


@admin.register(OrderORM)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("id", "customer", "guest_id", "status", "grand_total", "stock_effect", "created_at")
    list_filter = ("status", "stock_effect", "payment_method", "created_at")
    search_fields = ("id", "customer__name", "guest_email", "tracking_number")
    # Status and stock changes go through the lifecycle engine only.
    readonly_fields = (
        "status", "stock_effect", "paid_at", "payment_reference", "delivered_at",
        "items_total", "tax", "shipping_fee", "discount", "grand_total", "version",
    )
    inlines = [OrderItemInline]


@admin.register(IdempotencyKey)
class IdempotencyAdmin(admin.ModelAdmin):
    list_display = ("key", "user_ref", "operation", "response_status", "created_at")
    list_filter = ("operation", "created_at")
    search_fields = ("key", "user_ref")


@admin.register(EventStore)
class EventStoreAdmin(admin.ModelAdmin):
    list_display = ("id", "aggregate_id", "event_type", "sequence_number", "created_at")
    list_filter = ("aggregate_type", "event_type", "created_at")
    readonly_fields = ("id", "aggregate_id", "aggregate_type", "event_type", "event_version", "event_data", "sequence_number")
