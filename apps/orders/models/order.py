from django.db import models
from django.conf import settings
from apps.utils.models import TimestampedModel

__all__ = ["Order"]


class Order(TimestampedModel):
    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        PROCESSING = "PROCESSING", "Processing"
        SHIPPED = "SHIPPED", "Shipped"
        DELIVERED = "DELIVERED", "Delivered"
        CANCELLED = "CANCELLED", "Cancelled"
        REFUNDED = "REFUNDED", "Refunded"

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='orders')

    # Human-readable id (e.g. ORD-1718000000000-0421)
    order_number = models.CharField(max_length=40, unique=True, editable=False)

    # Frozen at creation; never recomputed from live catalog prices
    total_amount = models.DecimalField(max_digits=10, decimal_places=2, editable=False)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)

    shipping_address = models.TextField()
    notes = models.TextField(blank=True, null=True)

    # Lifecycle stamps, each set at most once
    shipped_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "created_at"], name="order_user_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total_amount__gte=0),
                name="order_total_non_negative",
            ),
        ]

    def __str__(self):
        return f"{self.order_number} [{self.status}]"

    @property
    def can_cancel(self):
        return self.status in (self.Status.PENDING, self.Status.PROCESSING)

    @property
    def is_address_editable(self):
        return self.status in (self.Status.PENDING, self.Status.PROCESSING)
