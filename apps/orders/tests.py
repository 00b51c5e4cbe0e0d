# apps/orders/tests.py
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core import mail
from django.test import TestCase
from rest_framework import status
from rest_framework.test import APITestCase

from apps.catalog.models import Book
from apps.inventory.exceptions import BookUnavailable, InsufficientStock
from apps.inventory.models import StockMovement
from apps.orders.exceptions import AddressLocked, EmptyCart, InvalidTransition, NotCancellable, OrderNotFound
from apps.orders.models import CartItem, Order, OrderItem
from apps.orders.services import CartService, OrderService
from apps.orders.state_machine import Event, OrderStateMachine
from apps.payments.models import Payment, PaymentMethod, PaymentStatus
from apps.utils.exceptions import ValidationFailed

User = get_user_model()

ADDRESS = "42 Wallaby Way, Sydney"


class OrderFixtureMixin:
    def make_books(self, stock_a=5, stock_b=1):
        self.book_a = Book.objects.create(title="Book A", author="Author A", price=Decimal("10.00"), stock=stock_a)
        self.book_b = Book.objects.create(title="Book B", author="Author B", price=Decimal("25.00"), stock=stock_b)

    def fill_cart(self, user):
        CartItem.objects.create(user=user, book=self.book_a, quantity=2)
        CartItem.objects.create(user=user, book=self.book_b, quantity=1)

    def place_order(self, user):
        self.fill_cart(user)
        return OrderService.create_order(user, ADDRESS)


class CreateOrderServiceTests(OrderFixtureMixin, TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="alice", email="alice@example.com", password="pw")
        self.make_books()

    def test_create_order_freezes_total_reserves_stock_and_clears_cart(self):
        self.fill_cart(self.user)

        order = OrderService.create_order(self.user, ADDRESS, notes="Gift wrap")

        self.assertEqual(order.total_amount, Decimal("45.00"))
        self.assertEqual(order.status, Order.Status.PENDING)
        self.assertEqual(order.notes, "Gift wrap")
        self.assertTrue(order.order_number.startswith("ORD-"))

        items = list(order.items.all())
        self.assertEqual(len(items), 2)
        self.assertEqual(sum(i.unit_price * i.quantity for i in items), order.total_amount)

        self.book_a.refresh_from_db()
        self.book_b.refresh_from_db()
        self.assertEqual(self.book_a.stock, 3)
        self.assertEqual(self.book_b.stock, 0)
        self.assertFalse(CartItem.objects.filter(user=self.user).exists())
        self.assertEqual(StockMovement.objects.filter(order=order).count(), 2)

    def test_insufficient_stock_aborts_without_partial_commit(self):
        Book.objects.filter(pk=self.book_b.pk).update(stock=0)
        self.fill_cart(self.user)

        with self.assertRaises(InsufficientStock) as ctx:
            OrderService.create_order(self.user, ADDRESS)

        self.assertEqual(ctx.exception.details["book_id"], str(self.book_b.id))
        self.assertEqual(ctx.exception.details["available"], 0)

        self.book_a.refresh_from_db()
        self.assertEqual(self.book_a.stock, 5)
        self.assertFalse(Order.objects.exists())
        self.assertFalse(StockMovement.objects.exists())
        self.assertEqual(CartItem.objects.filter(user=self.user).count(), 2)

    def test_empty_cart(self):
        with self.assertRaises(EmptyCart):
            OrderService.create_order(self.user, ADDRESS)

    def test_inactive_book_is_unavailable(self):
        Book.objects.filter(pk=self.book_b.pk).update(is_active=False)
        self.fill_cart(self.user)

        with self.assertRaises(BookUnavailable):
            OrderService.create_order(self.user, ADDRESS)
        self.assertFalse(Order.objects.exists())

    def test_short_shipping_address_rejected(self):
        self.fill_cart(self.user)
        with self.assertRaises(ValidationFailed):
            OrderService.create_order(self.user, "   short  ")

    def test_total_is_not_recomputed_after_price_change(self):
        order = self.place_order(self.user)
        Book.objects.filter(pk=self.book_a.pk).update(price=Decimal("99.00"))

        order.refresh_from_db()
        self.assertEqual(order.total_amount, Decimal("45.00"))
        self.assertEqual(order.items.get(book=self.book_a).unit_price, Decimal("10.00"))

    def test_order_number_collision_is_retried(self):
        first = self.place_order(self.user)
        Book.objects.filter(pk=self.book_b.pk).update(stock=1)

        with patch(
            "apps.orders.services.generate_order_number",
            side_effect=[first.order_number, "ORD-1700000000000-0042"],
        ):
            second = self.place_order(self.user)

        self.assertEqual(second.order_number, "ORD-1700000000000-0042")
        self.assertEqual(Order.objects.count(), 2)

    def test_confirmation_email_sent_after_commit(self):
        self.fill_cart(self.user)

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            order = OrderService.create_order(self.user, ADDRESS)

        self.assertEqual(len(callbacks), 1)
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn(order.order_number, mail.outbox[0].subject)
        self.assertEqual(mail.outbox[0].to, ["alice@example.com"])

    def test_broker_failure_does_not_roll_back_order(self):
        self.fill_cart(self.user)

        with patch(
            "celery.app.task.Task.delay",
            side_effect=ConnectionError("broker down"),
        ):
            with self.captureOnCommitCallbacks(execute=True):
                order = OrderService.create_order(self.user, ADDRESS)

        self.assertTrue(Order.objects.filter(pk=order.pk).exists())
        self.assertEqual(len(mail.outbox), 0)


class CancelOrderServiceTests(OrderFixtureMixin, TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="bob", password="pw")
        self.make_books()
        self.order = self.place_order(self.user)

    def test_cancel_restores_stock_exactly(self):
        order = OrderService.cancel_order(self.order.id, self.user)

        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.assertIsNotNone(order.cancelled_at)
        self.book_a.refresh_from_db()
        self.book_b.refresh_from_db()
        self.assertEqual(self.book_a.stock, 5)
        self.assertEqual(self.book_b.stock, 1)

    def test_recancel_is_not_a_silent_noop(self):
        OrderService.cancel_order(self.order.id, self.user)

        with self.assertRaises(NotCancellable):
            OrderService.cancel_order(self.order.id, self.user)

        self.book_a.refresh_from_db()
        self.assertEqual(self.book_a.stock, 5)

    def test_cannot_cancel_shipped_or_delivered(self):
        for state in (Order.Status.SHIPPED, Order.Status.DELIVERED):
            Order.objects.filter(pk=self.order.pk).update(status=state)

            with self.assertRaises(NotCancellable):
                OrderService.cancel_order(self.order.id, self.user)

            self.order.refresh_from_db()
            self.assertEqual(self.order.status, state)
            self.assertIsNone(self.order.cancelled_at)
            self.book_a.refresh_from_db()
            self.assertEqual(self.book_a.stock, 3)

    def test_other_users_order_is_not_found(self):
        intruder = User.objects.create_user(username="mallory", password="pw")
        with self.assertRaises(OrderNotFound):
            OrderService.cancel_order(self.order.id, intruder)

    def test_malformed_order_id_is_not_found(self):
        with self.assertRaises(OrderNotFound):
            OrderService.cancel_order("not-a-uuid", self.user)


class OrderStateMachineTests(OrderFixtureMixin, TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="carol", password="pw")
        self.make_books()
        self.order = self.place_order(self.user)

    def test_happy_path_stamps_timestamps_once(self):
        order = OrderStateMachine.fire(self.order, Event.PROCESS)
        order = OrderStateMachine.fire(order, Event.SHIP)
        shipped_at = order.shipped_at
        self.assertIsNotNone(shipped_at)

        order = OrderStateMachine.fire(order, Event.DELIVER)
        self.assertEqual(order.status, Order.Status.DELIVERED)
        self.assertIsNotNone(order.delivered_at)
        self.assertEqual(order.shipped_at, shipped_at)

    def test_pairs_outside_table_are_rejected(self):
        with self.assertRaises(InvalidTransition):
            OrderStateMachine.fire(self.order, Event.SHIP)
        with self.assertRaises(InvalidTransition):
            OrderStateMachine.fire(self.order, Event.DELIVER)

    def test_allowed_events(self):
        self.assertEqual(
            set(OrderStateMachine.allowed_events(Order.Status.PENDING)),
            {Event.PROCESS, Event.CANCEL, Event.REFUND},
        )
        self.assertEqual(OrderStateMachine.allowed_events(Order.Status.REFUNDED), [])
        self.assertTrue(OrderStateMachine.can_fire("SHIPPED", Event.DELIVER))
        self.assertFalse(OrderStateMachine.can_fire("DELIVERED", Event.CANCEL))

    def test_admin_cancel_from_processing_releases_stock(self):
        OrderService.update_order_status(self.order.id, Order.Status.PROCESSING)
        order = OrderService.update_order_status(self.order.id, Order.Status.CANCELLED)

        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.assertIsNotNone(order.cancelled_at)
        self.book_a.refresh_from_db()
        self.assertEqual(self.book_a.stock, 5)

    def test_admin_delivered_to_processing_is_invalid(self):
        Order.objects.filter(pk=self.order.pk).update(status=Order.Status.DELIVERED)

        with self.assertRaises(InvalidTransition) as ctx:
            OrderService.update_order_status(self.order.id, Order.Status.PROCESSING)

        self.assertEqual(ctx.exception.details["current_status"], Order.Status.DELIVERED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.DELIVERED)

    def test_admin_pending_status_is_never_a_target(self):
        with self.assertRaises(InvalidTransition):
            OrderService.update_order_status(self.order.id, Order.Status.PENDING)

    def test_admin_refund_requires_refunded_payment(self):
        with self.assertRaises(InvalidTransition):
            OrderService.update_order_status(self.order.id, Order.Status.REFUNDED)

        Payment.objects.create(
            order=self.order,
            user=self.user,
            method=PaymentMethod.WALLET,
            amount=self.order.total_amount,
            external_ref="wallet-ref-1",
            status=PaymentStatus.REFUNDED,
        )
        order = OrderService.update_order_status(self.order.id, Order.Status.REFUNDED)
        self.assertEqual(order.status, Order.Status.REFUNDED)
        # No stock effect
        self.book_a.refresh_from_db()
        self.assertEqual(self.book_a.stock, 3)

    def test_advance_after_payment_only_moves_pending(self):
        order = OrderService.advance_after_payment(self.order)
        self.assertEqual(order.status, Order.Status.PROCESSING)

        again = OrderService.advance_after_payment(order)
        self.assertEqual(again.status, Order.Status.PROCESSING)


class OrderSupportOperationsTests(OrderFixtureMixin, TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="dave", password="pw")
        self.make_books()
        self.order = self.place_order(self.user)

    def test_update_shipping_address(self):
        order = OrderService.update_shipping_address(self.order.id, self.user, "  1 New Street, Springfield ")
        self.assertEqual(order.shipping_address, "1 New Street, Springfield")

    def test_address_locked_once_shipped(self):
        Order.objects.filter(pk=self.order.pk).update(status=Order.Status.SHIPPED)
        with self.assertRaises(AddressLocked):
            OrderService.update_shipping_address(self.order.id, self.user, "1 New Street, Springfield")

    def test_track_order_timeline(self):
        OrderStateMachine.fire(self.order, Event.PROCESS)
        OrderStateMachine.fire(self.order, Event.SHIP)

        result = OrderService.track_order(self.order.id, self.user)

        self.assertEqual(result["order"]["status"], Order.Status.SHIPPED)
        self.assertEqual(
            [step["status"] for step in result["timeline"]],
            ["Order Placed", "Processing", "Shipped"],
        )

    def test_track_cancelled_order(self):
        OrderService.cancel_order(self.order.id, self.user)
        result = OrderService.track_order(self.order.id, self.user)
        self.assertEqual([s["status"] for s in result["timeline"]], ["Order Placed", "Cancelled"])

    def test_get_order_by_number(self):
        found = OrderService.get_order_by_number(self.order.order_number, self.user)
        self.assertEqual(found.pk, self.order.pk)
        with self.assertRaises(OrderNotFound):
            OrderService.get_order_by_number("ORD-0-0000", self.user)

    def test_cart_add_item_merges_quantity(self):
        other = User.objects.create_user(username="erin", password="pw")
        CartService.add_item(other, self.book_a.id, 1)
        line = CartService.add_item(other, self.book_a.id, 2)
        self.assertEqual(line.quantity, 3)
        self.assertEqual(CartService.summary(other)["total_amount"], Decimal("30.00"))


class OrderAPITests(OrderFixtureMixin, APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="frank", password="pw")
        self.admin = User.objects.create_user(username="root", password="pw", is_staff=True)
        self.make_books()
        self.client.force_authenticate(self.user)

    def test_requires_authentication(self):
        self.client.force_authenticate(None)
        response = self.client.get("/api/v1/orders/")
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_create_order_endpoint(self):
        self.fill_cart(self.user)

        response = self.client.post(
            "/api/v1/orders/", {"shipping_address": ADDRESS, "notes": "Leave at door"}, format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["total_amount"], "45.00")
        self.assertEqual(len(response.data["items"]), 2)
        self.assertEqual(response.data["payments"], [])

    def test_insufficient_stock_response_names_book(self):
        Book.objects.filter(pk=self.book_b.pk).update(stock=0)
        self.fill_cart(self.user)

        response = self.client.post("/api/v1/orders/", {"shipping_address": ADDRESS}, format="json")

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "insufficient_stock")
        self.assertEqual(response.data["available"], 0)
        self.assertEqual(response.data["book_id"], str(self.book_b.id))

    def test_empty_cart_is_bad_request(self):
        response = self.client.post("/api/v1/orders/", {"shipping_address": ADDRESS}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "empty_cart")

    def test_list_retrieve_cancel_track(self):
        order = self.place_order(self.user)

        listing = self.client.get("/api/v1/orders/")
        self.assertEqual(listing.status_code, status.HTTP_200_OK)
        self.assertEqual(listing.data["count"], 1)

        detail = self.client.get(f"/api/v1/orders/{order.id}/")
        self.assertEqual(detail.data["order_number"], order.order_number)

        by_number = self.client.get(f"/api/v1/orders/by-number/{order.order_number}/")
        self.assertEqual(by_number.data["id"], str(order.id))

        track = self.client.get(f"/api/v1/orders/{order.id}/track/")
        self.assertEqual(track.data["timeline"][0]["status"], "Order Placed")

        cancel = self.client.post(f"/api/v1/orders/{order.id}/cancel/")
        self.assertEqual(cancel.status_code, status.HTTP_200_OK)
        self.assertEqual(cancel.data["status"], Order.Status.CANCELLED)

        again = self.client.post(f"/api/v1/orders/{order.id}/cancel/")
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)

    def test_other_users_order_is_404(self):
        order = self.place_order(self.admin)
        response = self.client.get(f"/api/v1/orders/{order.id}/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_shipping_address_endpoint(self):
        order = self.place_order(self.user)
        response = self.client.patch(
            f"/api/v1/orders/{order.id}/shipping-address/",
            {"shipping_address": "9 Elm Street, Springwood"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["shipping_address"], "9 Elm Street, Springwood")

    def test_cart_endpoints(self):
        response = self.client.post(
            "/api/v1/orders/cart/items/", {"book_id": str(self.book_a.id), "quantity": 2}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 1)
        self.assertEqual(response.data["total_amount"], "20.00")

        response = self.client.delete(f"/api/v1/orders/cart/items/{self.book_a.id}/")
        self.assertEqual(response.data["count"], 0)

    def test_admin_status_endpoint(self):
        order = self.place_order(self.user)
        url = f"/api/v1/orders/admin/orders/{order.id}/status/"

        forbidden = self.client.patch(url, {"status": "PROCESSING"}, format="json")
        self.assertEqual(forbidden.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(self.admin)
        ok = self.client.patch(url, {"status": "PROCESSING"}, format="json")
        self.assertEqual(ok.status_code, status.HTTP_200_OK)
        self.assertEqual(ok.data["status"], "PROCESSING")

        invalid = self.client.patch(url, {"status": "DELIVERED"}, format="json")
        self.assertEqual(invalid.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(invalid.data["code"], "invalid_transition")

    def test_admin_list_filters_by_status(self):
        pending = self.place_order(self.user)
        Book.objects.filter(pk=self.book_b.pk).update(stock=1)
        processing = self.place_order(self.user)
        OrderStateMachine.fire(processing, Event.PROCESS)

        self.client.force_authenticate(self.admin)
        response = self.client.get("/api/v1/orders/admin/orders/", {"status": "PENDING"})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        ids = [row["id"] for row in response.data["results"]]
        self.assertEqual(ids, [str(pending.id)])
        self.assertTrue(OrderItem.objects.filter(order=processing).exists())
