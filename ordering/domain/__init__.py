from ordering.domain.order import (
    Amounts,
    GuestContact,
    LineItem,
    Order,
    OrderStatus,
    OwnerRef,
    StockEffect,
)

__all__ = ["Amounts", "GuestContact", "LineItem", "Order", "OrderStatus", "OwnerRef", "StockEffect"]
