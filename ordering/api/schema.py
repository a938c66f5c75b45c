"""
GraphQL schema definition using Ariadne.

Resolvers only translate GraphQL arguments into service calls and results
back into payloads; all rules live in the checkout and lifecycle services.
Business outcomes are returned in the payload ``error`` field, malformed
input and missing identity are raised as GraphQL errors.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path

from ariadne import (
    EnumType,
    MutationType,
    QueryType,
    ScalarType,
    load_schema_from_path,
    make_executable_schema,
)

from ordering.api.middleware import RequestValidationError
from ordering.config import get_shop_config
from ordering.domain.errors import AlreadyPaid, OrderError, OrderNotFound
from ordering.domain.order import GuestContact, Order, OrderStatus, OwnerKind, OwnerRef
from ordering.domain.ports import CartSnapshot
from ordering.infra.repositories import CartRepository, CustomerRepository
from ordering.services.checkout import CheckoutAssembler
from ordering.services.lifecycle import OrderLifecycleEngine

SCHEMAS_DIR = Path(__file__).parent / "schemas"
type_defs = "\n".join([
    load_schema_from_path(SCHEMAS_DIR / "common"),
    load_schema_from_path(SCHEMAS_DIR / "query"),
    load_schema_from_path(SCHEMAS_DIR / "mutation"),
])

MAX_PAGE_SIZE = 100
MAX_GUEST_ID_LENGTH = 64
ADDRESS_REQUIRED_FIELDS = ("fullName", "addressLine1", "city", "province", "postalCode", "phoneNumber")
CONTACT_FIELDS = {
    "email": "email",
    "firstName": "first_name",
    "lastName": "last_name",
    "phoneNumber": "phone_number",
}

query = QueryType()
mutation = MutationType()
order_status = EnumType("OrderStatus", OrderStatus)


def lifecycle() -> OrderLifecycleEngine:
    return OrderLifecycleEngine()


def assembler() -> CheckoutAssembler:
    return CheckoutAssembler()


# Payload shapes

def serialize_error(error: OrderError) -> dict:
    return {"code": error.code, "message": error.message, "details": error.details()}


def serialize_order(order: Order, include_contact: bool = False) -> dict:
    data = {
        "id": str(order.id),
        "owner": {
            "kind": "guest" if order.owner.kind == OwnerKind.GUEST else "customer",
            "id": order.owner.value,
        },
        "status": order.status,
        "items": [
            {
                "productRef": item.product_ref,
                "name": item.name,
                "unitPrice": item.unit_price,
                "quantity": item.quantity,
                "subtotal": item.subtotal,
            }
            for item in order.line_items
        ],
        "amounts": {
            "itemsTotal": order.amounts.items_total,
            "tax": order.amounts.tax,
            "shippingFee": order.amounts.shipping_fee,
            "discount": order.amounts.discount,
            "grandTotal": order.amounts.grand_total,
        },
        "payment": {
            "method": order.payment_method,
            "isPaid": order.is_paid,
            "paidAt": order.payment.paid_at,
            "reference": order.payment.reference,
        },
        "shipping": {
            "method": order.shipping_method,
            "address": order.shipping_address,
        },
        "fulfillment": {
            "isDelivered": order.is_delivered,
            "deliveredAt": order.fulfillment.delivered_at,
            "trackingNumber": order.fulfillment.tracking_number,
            "carrier": order.fulfillment.carrier,
        },
        "stock": {
            "isDecremented": order.stock_state.is_decremented,
            "isRestocked": order.stock_state.is_restocked,
        },
        "contact": None,
        "note": order.note,
        "createdAt": order.created_at,
        "updatedAt": order.updated_at,
        "version": order.version,
    }
    if include_contact and order.contact is not None:
        data["contact"] = {
            "email": order.contact.email,
            "firstName": order.contact.first_name,
            "lastName": order.contact.last_name,
            "phoneNumber": order.contact.phone_number,
        }
    return data


def serialize_cart(snapshot: CartSnapshot) -> dict:
    items = [
        {
            "productRef": line.product_ref,
            "name": line.name,
            "unitPrice": line.unit_price,
            "quantity": line.quantity,
        }
        for line in snapshot.lines
    ]
    total = sum((line.unit_price * line.quantity for line in snapshot.lines), Decimal("0"))
    return {"items": items, "itemsTotal": total}


def order_payload(result, include_contact: bool = False) -> dict:
    if isinstance(result, OrderError):
        return {"order": None, "error": serialize_error(result)}
    return {"order": serialize_order(result, include_contact=include_contact), "error": None}


def cart_payload(result) -> dict:
    if isinstance(result, OrderError):
        return {"cart": None, "error": serialize_error(result)}
    return {"cart": serialize_cart(result), "error": None}


# Caller identity

def caller_owner(info, allow_customer: bool = True, allow_guest: bool = True) -> OwnerRef:
    """Identify the caller from ``X-User-ID`` or ``X-Guest-ID``."""
    request = info.context["request"]
    user_id = request.headers.get("X-User-ID")
    if user_id and allow_customer:
        customer = CustomerRepository().get_by_id(user_id)
        if customer is None:
            raise RequestValidationError("Unknown customer", code="AUTHENTICATION_REQUIRED")
        return OwnerRef.customer(customer.id)

    guest_id = request.headers.get("X-Guest-ID")
    if guest_id and allow_guest:
        return OwnerRef.guest(_guest_id(guest_id, "X-Guest-ID"))

    expected = " or ".join(
        header
        for header, allowed in (("X-User-ID", allow_customer), ("X-Guest-ID", allow_guest))
        if allowed
    )
    raise RequestValidationError(f"{expected} header is required", code="AUTHENTICATION_REQUIRED")


def _guest_id(value: str, field: str) -> str:
    value = value.strip()
    if not value or len(value) > MAX_GUEST_ID_LENGTH:
        raise RequestValidationError(f"{field} must be 1 to {MAX_GUEST_ID_LENGTH} characters", details={"field": field})
    return value


def _owned_order(engine: OrderLifecycleEngine, order_id: str, owner: OwnerRef):
    order = engine.get(order_id)
    if isinstance(order, OrderError) or order.owner != owner:
        return OrderNotFound(str(order_id))
    return order


# Input conversion

def _not_blank(data: dict, fields, prefix: str = "") -> dict:
    values = {}
    for field in fields:
        value = (data.get(field) or "").strip()
        if not value:
            raise RequestValidationError(f"{prefix}{field} must not be blank", details={"field": field})
        values[field] = value
    return values


def _shipping_address(data: dict) -> dict:
    address = _not_blank(data, ADDRESS_REQUIRED_FIELDS, "shippingAddress.")
    for key in ("addressLine2", "country"):
        if data.get(key):
            address[key] = data[key]
    return address


def _contact(data: dict) -> GuestContact:
    values = _not_blank(data, CONTACT_FIELDS, "contact.")
    if "@" not in values["email"]:
        raise RequestValidationError("contact.email is not a valid email", details={"field": "email"})
    return GuestContact(**{CONTACT_FIELDS[key]: value for key, value in values.items()})


def _checkout_options(data: dict, guest: bool = False) -> dict:
    """Keyword arguments for ``CheckoutAssembler.checkout``."""
    options = {
        "shipping_address": _shipping_address(data["shippingAddress"]),
        "payment_method": data["paymentMethod"].strip(),
        "shipping_method": data["shippingMethod"].strip(),
        "discount": data.get("discount") if data.get("discount") is not None else Decimal("0"),
        "note": data.get("note") or "",
    }
    if guest:
        options["contact"] = _contact(data["contact"])
    return options


# Queries

@query.field("cart")
def resolve_cart(_, info):
    return serialize_cart(CartRepository().read_snapshot(caller_owner(info)))


@query.field("order")
def resolve_order(_, info, id):
    owner = caller_owner(info, allow_guest=False)
    return order_payload(_owned_order(lifecycle(), id, owner))


@query.field("myOrders")
def resolve_my_orders(_, info, limit=None, offset=0):
    """Resolve the caller's orders, newest first, with pagination."""
    owner = caller_owner(info, allow_guest=False)
    limit = get_shop_config().page_size if limit is None else limit
    if limit < 1 or offset is None or offset < 0:
        raise RequestValidationError("limit must be positive and offset not negative", details={"field": "limit"})
    limit = min(limit, MAX_PAGE_SIZE)
    orders = lifecycle().list_for_owner(owner, limit=limit, offset=offset)
    return {"orders": [serialize_order(order) for order in orders], "limit": limit, "offset": offset}


@query.field("guestOrder")
def resolve_guest_order(_, info, id, email, phoneNumber):
    return order_payload(lifecycle().find_guest_order(id, email, phoneNumber), include_contact=True)


@query.field("guestOrders")
def resolve_guest_orders(_, info, email, phoneNumber):
    """All orders a guest placed with this email and phone number."""
    orders = lifecycle().find_guest_orders(email, phoneNumber)
    return [serialize_order(order, include_contact=True) for order in orders]


@query.field("paymentSettings")
def resolve_payment_settings(_, info):
    config = get_shop_config()
    return {
        "currency": config.currency,
        "taxRate": config.tax_rate,
        "paymentMethods": config.enabled_payment_methods(),
        "shippingMethods": [{"method": method, "fee": fee} for method, fee in config.shipping_fees.items()],
        "freeShippingThreshold": config.free_shipping_threshold,
    }


# Cart mutations

@mutation.field("addCartItem")
def resolve_add_cart_item(_, info, productRef, quantity=1):
    return cart_payload(CartRepository().add_item(caller_owner(info), productRef, quantity))


@mutation.field("updateCartItem")
def resolve_update_cart_item(_, info, productRef, quantity):
    return cart_payload(CartRepository().update_item(caller_owner(info), productRef, quantity))


@mutation.field("removeCartItem")
def resolve_remove_cart_item(_, info, productRef):
    return cart_payload(CartRepository().remove_item(caller_owner(info), productRef))


@mutation.field("clearCart")
def resolve_clear_cart(_, info):
    owner = caller_owner(info)
    carts = CartRepository()
    carts.clear(owner)
    return serialize_cart(carts.read_snapshot(owner))


@mutation.field("mergeGuestCart")
def resolve_merge_guest_cart(_, info, guestId):
    """Fold the cart of a guest session into the signed-in customer's cart."""
    owner = caller_owner(info, allow_guest=False)
    guest = OwnerRef.guest(_guest_id(guestId, "guestId"))
    return serialize_cart(CartRepository().merge_guest_cart(owner, guest))


# Checkout

@mutation.field("checkout")
def resolve_checkout(_, info, input: dict):
    owner = caller_owner(info, allow_guest=False)
    return order_payload(assembler().checkout(owner, **_checkout_options(input)))


@mutation.field("guestCheckout")
def resolve_guest_checkout(_, info, input: dict):
    owner = caller_owner(info, allow_customer=False)
    return order_payload(assembler().checkout(owner, **_checkout_options(input, guest=True)), include_contact=True)


# Lifecycle

@mutation.field("confirmPayment")
def resolve_confirm_payment(_, info, orderId, paymentReference):
    owner = caller_owner(info, allow_guest=False)
    engine = lifecycle()
    order = _owned_order(engine, orderId, owner)
    if isinstance(order, OrderError):
        return order_payload(order)
    return order_payload(engine.confirm_payment(order, paymentReference))


@mutation.field("transitionStatus")
def resolve_transition_status(_, info, orderId, status: OrderStatus):
    return order_payload(lifecycle().transition_status(orderId, status))


@mutation.field("recordShipment")
def resolve_record_shipment(_, info, orderId, trackingNumber, carrier):
    tracking = _not_blank({"trackingNumber": trackingNumber, "carrier": carrier}, ("trackingNumber", "carrier"))
    return order_payload(lifecycle().record_shipment(orderId, tracking["trackingNumber"], tracking["carrier"]))


@mutation.field("refundOrder")
def resolve_refund_order(_, info, orderId):
    return order_payload(lifecycle().refund(orderId))


@mutation.field("cancelGuestOrder")
def resolve_cancel_guest_order(_, info, orderId, email, phoneNumber):
    return order_payload(lifecycle().cancel_guest_order(orderId, email, phoneNumber), include_contact=True)


@mutation.field("paymentWebhook")
def resolve_payment_webhook(_, info, input: dict):
    """Payment provider callback. Only ``payment.success`` changes anything."""
    result = {"received": True, "duplicate": False, "ignored": False, "order": None, "error": None}
    if input["event"] != "payment.success":
        result["ignored"] = True
        return result

    data = input.get("data")
    if not data:
        raise RequestValidationError("data is required", details={"field": "data"})

    outcome = lifecycle().confirm_payment(data["orderId"], data["transactionId"])
    if isinstance(outcome, AlreadyPaid):
        result["duplicate"] = True
    elif isinstance(outcome, OrderError):
        result["error"] = serialize_error(outcome)
    else:
        result["order"] = serialize_order(outcome)
    return result


# Define custom scalars
decimal_scalar = ScalarType("Decimal")
datetime_scalar = ScalarType("DateTime")
json_scalar = ScalarType("JSON")


@decimal_scalar.serializer
def serialize_decimal(value):
    """Serialize Decimal to string."""
    return str(value)


@decimal_scalar.value_parser
def parse_decimal_value(value):
    """Parse a finite Decimal from a string or number."""
    if isinstance(value, bool):
        raise ValueError(f"{value!r} is not a decimal number")
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{value!r} is not a decimal number")
    if not number.is_finite():
        raise ValueError(f"{value!r} is not a finite decimal number")
    return number


@datetime_scalar.serializer
def serialize_datetime(value):
    """Serialize DateTime to ISO format string."""
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


@json_scalar.serializer
def serialize_json(value):
    return value


# Create executable schema
schema = make_executable_schema(
    type_defs,
    query,
    mutation,
    order_status,
    decimal_scalar,
    datetime_scalar,
    json_scalar,
)
