"""Catalog models: digital products and their purchasable options.

A product is a downloadable item (e.g. a font family or template pack);
each ``ProductOption`` is one purchasable file/licence with its own price.
Customers buy options, so orders and carts reference options directly.

Business rules implemented:
- SKU is unique and normalised to uppercase.
- Inactive products cannot be checked out (enforced by checkout).
- Option prices are never negative (zero-priced options are free items).
"""

from __future__ import annotations

from decimal import Decimal

import structlog
from django.core.validators import MinValueValidator
from django.db import models

from modules.core.models import BaseModel

logger = structlog.get_logger(__name__)


class ProductStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    INACTIVE = "inactive", "Inactive"


class Product(BaseModel):
    sku = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    status = models.CharField(
        max_length=20,
        choices=ProductStatus.choices,
        default=ProductStatus.ACTIVE,
    )

    class Meta:
        db_table = "products"
        ordering = ["name"]
        indexes = [
            models.Index(fields=["status"], name="products_status_idx"),
        ]

    @property
    def is_active(self) -> bool:
        return self.status == ProductStatus.ACTIVE

    def save(self, *args, **kwargs) -> None:
        is_new = self._state.adding
        if self.sku:
            self.sku = self.sku.strip().upper()
        super().save(*args, **kwargs)
        if is_new:
            logger.info("product.created", product_id=str(self.id), sku=self.sku)

    def __str__(self) -> str:
        return f"{self.sku} - {self.name}"


class ProductOption(BaseModel):
    """A purchasable variant of a product with its own price."""

    product = models.ForeignKey(
        "products.Product",
        on_delete=models.CASCADE,
        related_name="options",
    )
    name = models.CharField(max_length=255)
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
    )

    class Meta:
        db_table = "product_options"
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(price__gte=0),
                name="product_options_price_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.product.sku} / {self.name} ({self.price})"
