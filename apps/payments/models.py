from django.db import models
from django.conf import settings
from apps.orders.models import Order
from apps.utils.models import TimestampedModel


class PaymentStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    COMPLETED = "COMPLETED", "Completed"
    FAILED = "FAILED", "Failed"
    REFUNDED = "REFUNDED", "Refunded"


class PaymentMethod(models.TextChoices):
    CARD = "CARD", "Card (Razorpay)"
    COD = "COD", "Cash on Delivery"
    WALLET = "WALLET", "Wallet"


class Payment(TimestampedModel):
    """
    One attempt (or success) to collect money for an order.
    At most one payment per order may ever be COMPLETED.
    """
    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="payments")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="payments")

    method = models.CharField(max_length=20, choices=PaymentMethod.choices)
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default="INR")

    # Razorpay order id for CARD, caller-supplied reference for WALLET, empty for COD
    external_ref = models.CharField(max_length=100, unique=True, null=True, blank=True)
    # Captured payment id ('pay_...'), needed for refunds
    gateway_payment_id = models.CharField(max_length=100, blank=True, default="", db_index=True)

    status = models.CharField(
        max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING, db_index=True
    )
    payment_date = models.DateTimeField(null=True, blank=True)

    # Audit fields
    card_last_four = models.CharField(max_length=4, blank=True, default="")
    gateway_response = models.JSONField(default=dict, blank=True)
    error_message = models.TextField(blank=True, null=True)

    refund_reason = models.TextField(blank=True, null=True)
    # Running total reported by the gateway; below `amount` means a partial refund
    amount_refunded = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    gateway_refund_id = models.CharField(max_length=100, blank=True, default="")
    refunded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "payments"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["order", "status"], name="payment_order_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["order"],
                condition=models.Q(status="COMPLETED"),
                name="uniq_completed_payment_per_order",
            ),
            models.CheckConstraint(condition=models.Q(amount__gte=0), name="payment_amount_non_negative"),
        ]

    def __str__(self):
        return f"{self.method} {self.external_ref or self.id} | {self.amount} | {self.status}"

    @property
    def is_terminal(self):
        return self.status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED)


class WebhookEvent(TimestampedModel):
    """
    Idempotency store for Webhook Events.
    """
    event_id = models.CharField(max_length=100, unique=True, help_text="Unique ID from Provider")
    event_type = models.CharField(max_length=60)
    provider = models.CharField(max_length=20, default="RAZORPAY")
    payload = models.JSONField()
    is_processed = models.BooleanField(default=False)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "payment_webhook_events"
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.provider} - {self.event_type} - {self.event_id}"
