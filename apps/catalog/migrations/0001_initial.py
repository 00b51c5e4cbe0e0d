import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Book",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("title", models.CharField(max_length=255)),
                ("author", models.CharField(max_length=255)),
                ("isbn", models.CharField(blank=True, help_text="ISBN-10 / ISBN-13 (optional)", max_length=20, null=True, unique=True)),
                ("description", models.TextField(blank=True)),
                ("price", models.DecimalField(decimal_places=2, help_text="Current selling price", max_digits=10)),
                ("stock", models.PositiveIntegerField(default=0, help_text="Units available for sale")),
                ("is_active", models.BooleanField(default=True)),
            ],
            options={
                "db_table": "catalog_books",
                "ordering": ["title"],
                "indexes": [models.Index(fields=["is_active", "title"], name="book_active_title_idx")],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(stock__gte=0), name="book_stock_non_negative"),
                    models.CheckConstraint(condition=models.Q(price__gte=0), name="book_price_non_negative"),
                ],
            },
        ),
    ]
