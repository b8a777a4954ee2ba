"""Cart read/clear operations used by checkout and payment reconciliation."""

from __future__ import annotations

from typing import List

import structlog

from modules.cart.models import Cart, CartItem

logger = structlog.get_logger(__name__)


class CartService:
    def get_items(self, customer_id) -> List[CartItem]:
        """Return the customer's cart items with product and options loaded."""
        return list(
            CartItem.objects.filter(cart__customer_id=customer_id)
            .select_related("product")
            .prefetch_related("options")
        )

    def clear(self, customer_id) -> int:
        """Remove every item from the customer's cart; returns the count removed."""
        cart = Cart.objects.filter(customer_id=customer_id).first()
        if cart is None:
            return 0
        items = CartItem.objects.filter(cart=cart)
        removed = items.count()
        items.delete()
        logger.info("cart.cleared", customer_id=str(customer_id), removed=removed)
        return removed
