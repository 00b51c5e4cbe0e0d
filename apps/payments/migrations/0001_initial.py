import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("orders", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "method",
                    models.CharField(
                        choices=[("CARD", "Card (Razorpay)"), ("COD", "Cash on Delivery"), ("WALLET", "Wallet")],
                        max_length=20,
                    ),
                ),
                ("amount", models.DecimalField(decimal_places=2, max_digits=10)),
                ("currency", models.CharField(default="INR", max_length=3)),
                ("external_ref", models.CharField(blank=True, max_length=100, null=True, unique=True)),
                ("gateway_payment_id", models.CharField(blank=True, db_index=True, default="", max_length=100)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("COMPLETED", "Completed"),
                            ("FAILED", "Failed"),
                            ("REFUNDED", "Refunded"),
                        ],
                        db_index=True,
                        default="PENDING",
                        max_length=20,
                    ),
                ),
                ("payment_date", models.DateTimeField(blank=True, null=True)),
                ("card_last_four", models.CharField(blank=True, default="", max_length=4)),
                ("gateway_response", models.JSONField(blank=True, default=dict)),
                ("error_message", models.TextField(blank=True, null=True)),
                ("refund_reason", models.TextField(blank=True, null=True)),
                ("gateway_refund_id", models.CharField(blank=True, default="", max_length=100)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="orders.order",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "payments",
                "ordering": ["-created_at"],
                "indexes": [models.Index(fields=["order", "status"], name="payment_order_status_idx")],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(status="COMPLETED"),
                        fields=("order",),
                        name="uniq_completed_payment_per_order",
                    ),
                    models.CheckConstraint(condition=models.Q(amount__gte=0), name="payment_amount_non_negative"),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("event_id", models.CharField(help_text="Unique ID from Provider", max_length=100, unique=True)),
                ("event_type", models.CharField(max_length=60)),
                ("provider", models.CharField(default="RAZORPAY", max_length=20)),
                ("payload", models.JSONField()),
                ("is_processed", models.BooleanField(default=False)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "db_table": "payment_webhook_events",
                "ordering": ["-created_at"],
            },
        ),
    ]
