from django.conf import settings
from django.db import models

from apps.catalog.models import Book
from apps.utils.models import TimestampedModel

__all__ = ["CartItem"]


class CartItem(TimestampedModel):
    """
    One cart line (book + quantity) for a user.
    Destroyed once the cart is converted into an order.
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="cart_items",
        on_delete=models.CASCADE,
    )
    book = models.ForeignKey(
        Book,
        related_name="cart_items",
        on_delete=models.CASCADE,
    )

    quantity = models.PositiveIntegerField(default=1)

    class Meta:
        db_table = "cart_items"
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(fields=["user", "book"], name="uniq_cart_line_per_book"),
            models.CheckConstraint(condition=models.Q(quantity__gte=1), name="cart_item_quantity_positive"),
        ]

    def __str__(self):
        return f"{self.user_id} -> {self.book_id} x {self.quantity}"

    @property
    def line_total(self):
        return self.book.price * self.quantity
