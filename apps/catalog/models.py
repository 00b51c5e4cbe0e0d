# apps/catalog/models.py
from django.db import models

from apps.utils.models import TimestampedModel


class Book(TimestampedModel):
    """
    Sellable catalog item.

    NOTE:
    - Orders aur cart sirf price + stock padhte hain.
    - `stock` is written ONLY by apps.inventory.services.InventoryService.
    """
    title = models.CharField(max_length=255)
    author = models.CharField(max_length=255)
    isbn = models.CharField(
        max_length=20,
        unique=True,
        null=True,
        blank=True,
        help_text="ISBN-10 / ISBN-13 (optional)",
    )
    description = models.TextField(blank=True)

    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Current selling price",
    )
    stock = models.PositiveIntegerField(
        default=0,
        help_text="Units available for sale",
    )

    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "catalog_books"
        ordering = ["title"]
        indexes = [
            models.Index(fields=["is_active", "title"], name="book_active_title_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(stock__gte=0),
                name="book_stock_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(price__gte=0),
                name="book_price_non_negative",
            ),
        ]

    def __str__(self):
        return f"{self.title} ({self.author})"
