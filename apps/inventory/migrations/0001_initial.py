import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("catalog", "0001_initial"),
        ("orders", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="StockMovement",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "movement_type",
                    models.CharField(
                        choices=[
                            ("RESERVE", "Reservation (Order)"),
                            ("RELEASE", "Release (Cancellation)"),
                            ("ADJUST", "Manual Adjustment"),
                        ],
                        max_length=20,
                    ),
                ),
                ("quantity_change", models.IntegerField(help_text="Delta value (+/-)")),
                ("balance_after", models.PositiveIntegerField(help_text="Snapshot of Book.stock after the change")),
                ("reference", models.CharField(blank=True, db_index=True, max_length=100)),
                (
                    "book",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="movements",
                        to="catalog.book",
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="stock_movements",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "db_table": "stock_movements",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["order", "book", "movement_type"], name="stockmove_order_book_idx"),
                ],
            },
        ),
    ]
