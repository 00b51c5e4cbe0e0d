from django.core.management.base import BaseCommand
from django.db.models import Sum

from apps.inventory.models import StockMovement


class Command(BaseCommand):
    help = (
        "Compares per-order stock reservations with releases. "
        "Reports drift only; never modifies stock."
    )

    def handle(self, *args, **options):
        self.stdout.write("Auditing stock ledger...")

        rows = (
            StockMovement.objects
            .filter(order__isnull=False)
            .order_by()
            .values("order_id", "order__status", "order__cancelled_at", "book_id", "movement_type")
            .annotate(total=Sum("quantity_change"))
        )

        ledger = {}
        for row in rows:
            key = (row["order_id"], row["book_id"])
            entry = ledger.setdefault(key, {
                "status": row["order__status"],
                "cancelled": row["order__cancelled_at"] is not None,
                "RESERVE": 0,
                "RELEASE": 0,
            })
            entry[row["movement_type"]] = abs(row["total"] or 0)

        drift_count = 0
        for (order_id, book_id), entry in ledger.items():
            reserved = entry[StockMovement.MovementType.RESERVATION]
            released = entry[StockMovement.MovementType.RELEASE]

            # Cancelled orders (even if later refunded) must have released everything
            if entry["cancelled"]:
                expected_released = reserved
            else:
                expected_released = 0

            if released != expected_released:
                drift_count += 1
                self.stdout.write(
                    self.style.WARNING(
                        f"DRIFT order={order_id} book={book_id} status={entry['status']} "
                        f"reserved={reserved} released={released} expected_released={expected_released}"
                    )
                )

        if drift_count:
            self.stdout.write(self.style.ERROR(f"Audit finished: {drift_count} drifted lines."))
        else:
            self.stdout.write(self.style.SUCCESS("Audit finished: ledger consistent."))
