import concurrent.futures
import unittest
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db import connection
from django.test import TestCase, TransactionTestCase
from django.utils import timezone

from apps.catalog.models import Book
from apps.inventory.exceptions import BookNotFound, InsufficientStock, InvalidQuantity, LedgerDriftError
from apps.inventory.models import StockMovement
from apps.inventory.services import InventoryService
from apps.orders.models import CartItem, Order
from apps.orders.services import OrderService

User = get_user_model()


class InventoryServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="reader", password="pw")
        self.book = Book.objects.create(title="Dune", author="Frank Herbert", price=Decimal("10.00"), stock=5)
        self.order = Order.objects.create(
            user=self.user,
            order_number="ORD-1-0001",
            total_amount=Decimal("20.00"),
            shipping_address="221B Baker Street, London",
        )

    def test_reserve_decrements_and_records_movement(self):
        balance = InventoryService.reserve(self.book.id, 2, order=self.order)

        self.book.refresh_from_db()
        self.assertEqual(balance, 3)
        self.assertEqual(self.book.stock, 3)

        movement = StockMovement.objects.get(book=self.book)
        self.assertEqual(movement.movement_type, StockMovement.MovementType.RESERVATION)
        self.assertEqual(movement.quantity_change, -2)
        self.assertEqual(movement.balance_after, 3)
        self.assertEqual(movement.order, self.order)

    def test_reserve_more_than_stock_reports_current_stock(self):
        with self.assertRaises(InsufficientStock) as ctx:
            InventoryService.reserve(self.book.id, 6)

        self.assertEqual(ctx.exception.available, 5)
        self.assertEqual(ctx.exception.details["book_id"], str(self.book.id))
        self.assertEqual(ctx.exception.status_code, 409)

        self.book.refresh_from_db()
        self.assertEqual(self.book.stock, 5)
        self.assertFalse(StockMovement.objects.exists())

    def test_reserve_exact_stock_reaches_zero(self):
        InventoryService.reserve(self.book.id, 5)
        self.book.refresh_from_db()
        self.assertEqual(self.book.stock, 0)

    def test_non_positive_quantity_rejected(self):
        for qty in (0, -1, True, "2"):
            with self.assertRaises(InvalidQuantity):
                InventoryService.reserve(self.book.id, qty)
            with self.assertRaises(InvalidQuantity):
                InventoryService.release(self.book.id, qty)

    def test_unknown_book(self):
        missing = "00000000-0000-0000-0000-000000000000"
        with self.assertRaises(BookNotFound):
            InventoryService.reserve(missing, 1)
        with self.assertRaises(BookNotFound):
            InventoryService.lock_books([missing])

    def test_release_restores_stock(self):
        InventoryService.reserve(self.book.id, 2, order=self.order)
        InventoryService.release(self.book.id, 2, order=self.order)

        self.book.refresh_from_db()
        self.assertEqual(self.book.stock, 5)
        self.assertEqual(
            StockMovement.objects.filter(movement_type=StockMovement.MovementType.RELEASE).count(), 1
        )

    def test_release_beyond_reservation_is_ledger_drift(self):
        InventoryService.reserve(self.book.id, 2, order=self.order)
        InventoryService.release(self.book.id, 1, order=self.order)

        with self.assertRaises(LedgerDriftError):
            InventoryService.release(self.book.id, 2, order=self.order)

        self.book.refresh_from_db()
        self.assertEqual(self.book.stock, 4)

    def test_release_for_order_without_reservation_is_ledger_drift(self):
        with self.assertRaises(LedgerDriftError):
            InventoryService.release(self.book.id, 1, order=self.order)

    def test_reserve_many_is_all_or_nothing(self):
        scarce = Book.objects.create(title="Emma", author="Jane Austen", price=Decimal("5.00"), stock=0)

        with self.assertRaises(InsufficientStock):
            InventoryService.reserve_many(
                [
                    {"book_id": self.book.id, "quantity": 1},
                    {"book_id": scarce.id, "quantity": 1},
                ],
                order=self.order,
            )

        self.book.refresh_from_db()
        self.assertEqual(self.book.stock, 5)
        self.assertFalse(StockMovement.objects.exists())

    def test_adjust_restock_and_floor(self):
        self.assertEqual(InventoryService.adjust(self.book.id, 3, "restock"), 8)

        with self.assertRaises(InsufficientStock):
            InventoryService.adjust(self.book.id, -9, "cycle count")

        self.assertEqual(InventoryService.adjust(self.book.id, -8, "cycle count"), 0)
        movement = StockMovement.objects.filter(movement_type=StockMovement.MovementType.ADJUSTMENT).first()
        self.assertTrue(movement.reference.startswith("MANUAL:"))


    def test_stale_read_cannot_over_reserve(self):
        stale = Book.objects.get(pk=self.book.pk)
        InventoryService.reserve(self.book.id, 5)  # another checkout takes every copy

        with self.assertRaises(InsufficientStock) as ctx:
            InventoryService.reserve(stale.id, stale.stock)

        self.assertEqual(ctx.exception.available, 0)
        self.book.refresh_from_db()
        self.assertEqual(self.book.stock, 0)
        self.assertEqual(StockMovement.objects.count(), 1)

    def test_order_checked_against_stale_stock_is_rolled_back(self):
        buyer = User.objects.create_user(username="late-buyer", password="pw")
        CartItem.objects.create(user=buyer, book=self.book, quantity=2)
        stale = Book.objects.get(pk=self.book.pk)
        InventoryService.reserve(self.book.id, 4)

        # The pre-check sees 5 copies; only the conditional decrement knows better
        with patch.object(InventoryService, "lock_books", return_value={str(self.book.id): stale}):
            with self.assertRaises(InsufficientStock) as ctx:
                OrderService.create_order(buyer, "1 Race Condition Road, Springfield")

        self.assertEqual(ctx.exception.available, 1)
        self.book.refresh_from_db()
        self.assertEqual(self.book.stock, 1)
        self.assertFalse(Order.objects.filter(user=buyer).exists())
        self.assertEqual(CartItem.objects.filter(user=buyer).count(), 1)
        self.assertEqual(StockMovement.objects.count(), 1)

class AuditStockLedgerCommandTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="auditor", password="pw")
        self.book = Book.objects.create(title="Ulysses", author="James Joyce", price=Decimal("12.00"), stock=4)

    def test_clean_ledger_reports_no_drift(self):
        CartItem.objects.create(user=self.user, book=self.book, quantity=2)
        order = OrderService.create_order(self.user, "12 Eccles Street, Dublin")
        OrderService.cancel_order(order.id, self.user)

        out = StringIO()
        call_command("audit_stock_ledger", stdout=out)
        self.assertIn("ledger consistent", out.getvalue())

    def test_cancelled_order_without_release_is_reported(self):
        CartItem.objects.create(user=self.user, book=self.book, quantity=2)
        order = OrderService.create_order(self.user, "12 Eccles Street, Dublin")
        # Simulate a cancellation that bypassed the ledger
        Order.objects.filter(pk=order.pk).update(status=Order.Status.CANCELLED, cancelled_at=timezone.now())

        out = StringIO()
        call_command("audit_stock_ledger", stdout=out)
        self.assertIn(f"DRIFT order={order.id}", out.getvalue())

        self.book.refresh_from_db()
        self.assertEqual(self.book.stock, 2)


@unittest.skipUnless(connection.vendor == "postgresql", "row locks need PostgreSQL")
class ConcurrencyTests(TransactionTestCase):
    # Use TransactionTestCase to allow real DB transactions for concurrency testing

    def setUp(self):
        # Only 1 item in stock
        self.book = Book.objects.create(title="Last Copy", author="A. Writer", price=Decimal("9.99"), stock=1)
        self.user1 = User.objects.create_user(username="first", password="pw")
        self.user2 = User.objects.create_user(username="second", password="pw")
        CartItem.objects.create(user=self.user1, book=self.book, quantity=1)
        CartItem.objects.create(user=self.user2, book=self.book, quantity=1)

    def test_concurrent_ordering(self):
        """Verify that two users cannot buy the last item simultaneously"""
        def place_order(user_id):
            try:
                user = User.objects.get(id=user_id)
                OrderService.create_order(user, "1 Concurrency Lane, Testville")
                return "SUCCESS"
            except InsufficientStock:
                return "FAILED"
            finally:
                connection.close()

        with concurrent.futures.ThreadPoolExecutor(max_workers=2) as executor:
            futures = [
                executor.submit(place_order, self.user1.id),
                executor.submit(place_order, self.user2.id),
            ]
            results = [f.result() for f in futures]

        # One must succeed, one must fail
        self.assertEqual(results.count("SUCCESS"), 1)
        self.assertEqual(results.count("FAILED"), 1)
        self.book.refresh_from_db()
        self.assertEqual(self.book.stock, 0)
