import logging
from typing import Dict, Iterable, List
from django.db import transaction
from django.db.models import F, Sum
from django.utils import timezone

from apps.catalog.models import Book
from .exceptions import BookNotFound, InsufficientStock, InvalidQuantity, LedgerDriftError
from .models import StockMovement

logger = logging.getLogger(__name__)


def _validate_qty(qty):
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise InvalidQuantity(qty)


class InventoryService:
    """
    Core Logic for Inventory Management.
    ALL stock changes must pass through here.

    Decrements are conditional UPDATEs (`stock >= qty` in the WHERE clause),
    so two concurrent reservations can never push stock below zero even
    without the row locks taken by the *_many helpers.
    """

    @staticmethod
    def lock_books(book_ids: Iterable) -> Dict[str, Book]:
        """
        Locks book rows in deterministic order to prevent deadlocks.
        Must be called inside a transaction.
        """
        ids = sorted({str(book_id) for book_id in book_ids})
        books = Book.objects.select_for_update().filter(id__in=ids).order_by("id")
        book_map = {str(book.id): book for book in books}

        for book_id in ids:
            if book_id not in book_map:
                raise BookNotFound(book_id)
        return book_map

    @staticmethod
    def _record(book_id, movement_type, delta, order=None, reference=""):
        balance = Book.objects.filter(id=book_id).values_list("stock", flat=True).get()
        StockMovement.objects.create(
            book_id=book_id,
            order=order,
            movement_type=movement_type,
            quantity_change=delta,
            balance_after=balance,
            reference=reference,
        )
        return balance

    @staticmethod
    @transaction.atomic
    def reserve(book_id, qty: int, *, order=None) -> int:
        """
        Decrements stock by `qty`. Raises InsufficientStock (with the current
        stock) if that would go negative. Returns the new balance.
        """
        _validate_qty(qty)

        updated = Book.objects.filter(id=book_id, stock__gte=qty).update(
            stock=F("stock") - qty,
            updated_at=timezone.now(),
        )
        if not updated:
            book = Book.objects.filter(id=book_id).first()
            if book is None:
                raise BookNotFound(book_id)
            raise InsufficientStock(book, available=book.stock, requested=qty)

        balance = InventoryService._record(
            book_id, StockMovement.MovementType.RESERVATION, -qty, order=order
        )
        logger.info(
            f"Reserved {qty} of book {book_id} (balance {balance})",
            extra={"order_id": getattr(order, "id", None)},
        )
        return balance

    @staticmethod
    def _released_so_far(book_id, order) -> Dict[str, int]:
        totals = (
            StockMovement.objects
            .filter(order=order, book_id=book_id)
            .order_by()
            .values("movement_type")
            .annotate(total=Sum("quantity_change"))
        )
        by_type = {row["movement_type"]: abs(row["total"] or 0) for row in totals}
        return {
            "reserved": by_type.get(StockMovement.MovementType.RESERVATION, 0),
            "released": by_type.get(StockMovement.MovementType.RELEASE, 0),
        }

    @staticmethod
    @transaction.atomic
    def release(book_id, qty: int, *, order=None) -> int:
        """
        Increments stock by `qty` (cancellation). When tied to an order, the
        ledger refuses to release more than that order reserved.
        """
        _validate_qty(qty)

        if order is not None:
            ledger = InventoryService._released_so_far(book_id, order)
            if ledger["released"] + qty > ledger["reserved"]:
                logger.error(
                    f"Ledger drift: order {order.id} book {book_id} reserved={ledger['reserved']} "
                    f"released={ledger['released']} requested={qty}",
                    extra={"order_id": order.id},
                )
                raise LedgerDriftError(
                    "Release exceeds reservation for this order.",
                    book_id=str(book_id),
                    order_id=str(order.id),
                    reserved=ledger["reserved"],
                    released=ledger["released"],
                    requested=qty,
                )

        updated = Book.objects.filter(id=book_id).update(
            stock=F("stock") + qty,
            updated_at=timezone.now(),
        )
        if not updated:
            raise BookNotFound(book_id)

        balance = InventoryService._record(
            book_id, StockMovement.MovementType.RELEASE, qty, order=order
        )
        logger.info(
            f"Released {qty} of book {book_id} (balance {balance})",
            extra={"order_id": getattr(order, "id", None)},
        )
        return balance

    @staticmethod
    @transaction.atomic
    def reserve_many(items: List[Dict], *, order=None) -> None:
        """
        items: [{"book_id": ..., "quantity": ...}]
        Locks every row first (sorted), then reserves line by line.
        """
        InventoryService.lock_books(i["book_id"] for i in items)
        for item in sorted(items, key=lambda x: str(x["book_id"])):
            InventoryService.reserve(item["book_id"], item["quantity"], order=order)

    @staticmethod
    @transaction.atomic
    def release_many(items: List[Dict], *, order=None) -> None:
        InventoryService.lock_books(i["book_id"] for i in items)
        for item in sorted(items, key=lambda x: str(x["book_id"])):
            InventoryService.release(item["book_id"], item["quantity"], order=order)

    @staticmethod
    @transaction.atomic
    def adjust(book_id, delta_qty: int, reason: str) -> int:
        """
        Restock / cycle-count correction. Never drives stock below zero.
        """
        if isinstance(delta_qty, bool) or not isinstance(delta_qty, int) or delta_qty == 0:
            raise InvalidQuantity(delta_qty)

        qs = Book.objects.filter(id=book_id)
        if delta_qty < 0:
            qs = qs.filter(stock__gte=-delta_qty)

        updated = qs.update(stock=F("stock") + delta_qty, updated_at=timezone.now())
        if not updated:
            book = Book.objects.filter(id=book_id).first()
            if book is None:
                raise BookNotFound(book_id)
            raise InsufficientStock(book, available=book.stock, requested=-delta_qty)

        balance = InventoryService._record(
            book_id,
            StockMovement.MovementType.ADJUSTMENT,
            delta_qty,
            reference=f"MANUAL: {reason}"[:100],
        )
        logger.info(f"Adjusted book {book_id} by {delta_qty:+d} ({reason}); balance {balance}")
        return balance
