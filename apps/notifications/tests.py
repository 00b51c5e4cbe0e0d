# apps/notifications/tests.py
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core import mail
from django.test import TestCase

from apps.catalog.models import Book
from apps.orders.models import Order, OrderItem
from .services import queue_order_confirmation, queue_order_status_update
from .tasks import send_order_confirmation_email, send_order_status_email

User = get_user_model()


class OrderEmailTaskTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="reader", email="reader@example.com", password="pw")
        book = Book.objects.create(title="Middlemarch", author="George Eliot", price=Decimal("15.00"), stock=3)
        self.order = Order.objects.create(
            user=self.user,
            order_number="ORD-1700000000000-0001",
            total_amount=Decimal("30.00"),
            shipping_address="10 Downing Street, London",
        )
        OrderItem.objects.create(
            order=self.order, book=book, title_snapshot=book.title, unit_price=book.price, quantity=2
        )

    def test_confirmation_lists_frozen_lines(self):
        self.assertTrue(send_order_confirmation_email.run(str(self.order.id)))

        self.assertEqual(len(mail.outbox), 1)
        message = mail.outbox[0]
        self.assertEqual(message.subject, "Order ORD-1700000000000-0001 confirmed")
        self.assertIn("Middlemarch x 2 @ 15.00", message.body)
        self.assertIn("Total: 30.00", message.body)
        self.assertEqual(message.from_email, "orders@bookstore.test")

    def test_status_email_uses_display_name(self):
        Order.objects.filter(pk=self.order.pk).update(status=Order.Status.SHIPPED)

        send_order_status_email.run(str(self.order.id))

        self.assertEqual(mail.outbox[0].subject, "Order ORD-1700000000000-0001: Shipped")

    def test_user_without_email_is_skipped(self):
        self.user.email = ""
        self.user.save()

        self.assertFalse(send_order_confirmation_email.run(str(self.order.id)))
        self.assertEqual(len(mail.outbox), 0)

    def test_missing_order(self):
        self.assertFalse(send_order_status_email.run("00000000-0000-0000-0000-000000000000"))


class QueueingTests(TestCase):
    def test_nothing_is_sent_before_commit(self):
        with patch("celery.app.task.Task.delay") as mock_delay:
            with self.captureOnCommitCallbacks() as callbacks:
                queue_order_confirmation("some-order")
                queue_order_status_update("some-order")

            mock_delay.assert_not_called()
            self.assertEqual(len(callbacks), 2)

            for callback in callbacks:
                callback()
            self.assertEqual(mock_delay.call_count, 2)
            mock_delay.assert_called_with("some-order")

    def test_broker_errors_are_logged_not_raised(self):
        with patch("celery.app.task.Task.delay", side_effect=ConnectionError("broker down")):
            with self.assertLogs("apps.notifications.services", level="ERROR"):
                with self.captureOnCommitCallbacks(execute=True):
                    queue_order_confirmation("some-order")
