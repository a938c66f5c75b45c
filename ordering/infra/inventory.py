"""
Inventory ledger over the product table.

Every stock change is one conditional UPDATE, so concurrent decrements can
never take stock below zero and no product row lock is held across calls.
"""
from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from django.db.models import F

from ordering.domain.errors import InsufficientStock
from ordering.domain.ports import ProductSnapshot
from ordering.infra.models import ProductORM

logger = logging.getLogger(__name__)


def _product_pk(product_ref: str) -> Optional[UUID]:
    try:
        return UUID(str(product_ref))
    except ValueError:
        return None


class ProductInventoryLedger:
    """Inventory ledger backed by ``ProductORM.stock``."""

    def try_decrement(self, product_ref: str, quantity: int) -> Optional[InsufficientStock]:
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")
        pk = _product_pk(product_ref)
        if pk is not None:
            updated = (
                ProductORM.objects
                .filter(id=pk, stock__gte=quantity)
                .update(stock=F("stock") - quantity)
            )
            if updated:
                return None

        available = self.available(product_ref) or 0
        logger.info(
            "stock_decrement_rejected",
            extra={
                "product_ref": str(product_ref),
                "payload": {"available": available, "requested": quantity},
            },
        )
        return InsufficientStock(str(product_ref), available, quantity)

    def increment(self, product_ref: str, quantity: int) -> None:
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")
        pk = _product_pk(product_ref)
        updated = 0
        if pk is not None:
            updated = ProductORM.objects.filter(id=pk).update(stock=F("stock") + quantity)
        if not updated:
            raise ProductORM.DoesNotExist(f"Product {product_ref} not found")

    def available(self, product_ref: str) -> Optional[int]:
        pk = _product_pk(product_ref)
        if pk is None:
            return None
        return ProductORM.objects.filter(id=pk).values_list("stock", flat=True).first()

    def product(self, product_ref: str) -> Optional[ProductSnapshot]:
        pk = _product_pk(product_ref)
        if pk is None:
            return None
        product = ProductORM.objects.filter(id=pk).first()
        if product is None:
            return None
        return ProductSnapshot(
            product_ref=str(product.id),
            name=product.name,
            price=product.price,
            stock=product.stock,
        )
