"""Shopping cart: one per customer, holding products with chosen options."""

from __future__ import annotations

from decimal import Decimal

from django.db import models

from modules.core.models import BaseModel


class Cart(BaseModel):
    customer = models.OneToOneField(
        "customers.Customer",
        on_delete=models.CASCADE,
        related_name="cart",
    )

    class Meta:
        db_table = "carts"

    def __str__(self) -> str:
        return f"Cart({self.customer_id})"


class CartItem(BaseModel):
    """A product in the cart together with the options the customer picked.

    ``product`` is nullable: a product removed from the catalog leaves a
    dangling item behind, which checkout rejects.
    """

    cart = models.ForeignKey(
        "cart.Cart",
        on_delete=models.CASCADE,
        related_name="items",
    )
    product = models.ForeignKey(
        "products.Product",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="cart_items",
    )
    options = models.ManyToManyField(
        "products.ProductOption",
        related_name="cart_items",
        blank=True,
    )

    class Meta:
        db_table = "cart_items"
        ordering = ["created_at"]

    @property
    def subtotal(self) -> Decimal:
        return sum((option.price for option in self.options.all()), Decimal("0.00"))
