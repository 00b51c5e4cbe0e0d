from django.db import models
from apps.catalog.models import Book
from apps.utils.models import TimestampedModel


class StockMovement(TimestampedModel):
    """
    Immutable Ledger of all stock changes.
    Every write to Book.stock produces exactly one row here.
    """
    class MovementType(models.TextChoices):
        RESERVATION = "RESERVE", "Reservation (Order)"
        RELEASE = "RELEASE", "Release (Cancellation)"
        ADJUSTMENT = "ADJUST", "Manual Adjustment"

    book = models.ForeignKey(
        Book,
        on_delete=models.PROTECT,
        related_name='movements'
    )
    order = models.ForeignKey(
        "orders.Order",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name='stock_movements'
    )

    movement_type = models.CharField(max_length=20, choices=MovementType.choices)
    quantity_change = models.IntegerField(help_text="Delta value (+/-)")
    balance_after = models.PositiveIntegerField(help_text="Snapshot of Book.stock after the change")

    # Traceability for non-order movements (restock, audit fix, ...)
    reference = models.CharField(max_length=100, blank=True, db_index=True)

    class Meta:
        db_table = "stock_movements"
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['order', 'book', 'movement_type'], name='stockmove_order_book_idx'),
        ]

    def __str__(self):
        return f"{self.movement_type} {self.quantity_change:+d} {self.book_id} -> {self.balance_after}"
