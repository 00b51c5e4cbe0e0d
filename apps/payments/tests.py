import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.conf import settings
from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from apps.catalog.models import Book
from apps.orders.exceptions import OrderNotFound
from apps.orders.models import CartItem, Order
from apps.orders.services import OrderService
from apps.utils.exceptions import ServiceUnavailable, ValidationFailed
from .exceptions import (
    DuplicateCompletedPayment,
    DuplicatePayment,
    InvalidPaymentTransition,
    PaymentGatewayError,
    PaymentNotCompleted,
)
from .gateway import RazorpayGateway, razorpay_breaker
from .models import Payment, PaymentMethod, PaymentStatus, WebhookEvent
from .services import PaymentService

User = get_user_model()

WEBHOOK_URL = "/api/v1/payments/webhook/"


def sign(body: str, secret: str = "whsec_test") -> str:
    return hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()


def captured_event(payment_id="pay_1", gateway_order_id="order_RZP1", amount=4500):
    return json.dumps({
        "event": "payment.captured",
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "order_id": gateway_order_id,
                    "amount": amount,
                    "status": "captured",
                    "card": {"last4": "4242"},
                }
            }
        },
    })


def failed_event(payment_id="pay_1", gateway_order_id="order_RZP1"):
    return json.dumps({
        "event": "payment.failed",
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "order_id": gateway_order_id,
                    "error_description": "Card declined by issuer",
                }
            }
        },
    })


def refund_event(amount_refunded, refund_status, payment_id="pay_1", gateway_order_id="order_RZP1"):
    return json.dumps({
        "event": "refund.processed",
        "payload": {
            "refund": {"entity": {"id": f"rfnd_{amount_refunded}", "payment_id": payment_id, "amount": amount_refunded}},
            "payment": {
                "entity": {
                    "id": payment_id,
                    "order_id": gateway_order_id,
                    "amount": 4500,
                    "amount_refunded": amount_refunded,
                    "refund_status": refund_status,
                }
            },
        },
    })


class PaymentFixtureMixin:
    def make_order(self, user, stock=10):
        book = Book.objects.create(
            title=f"Book for {user.username}", author="Anon", price=Decimal("22.50"), stock=stock
        )
        CartItem.objects.create(user=user, book=book, quantity=2)
        return OrderService.create_order(user, "7 Rue de la Paix, Paris")

    def card_payment(self, order, external_ref="order_RZP1", **fields):
        return Payment.objects.create(
            order=order,
            user=order.user,
            method=PaymentMethod.CARD,
            amount=order.total_amount,
            external_ref=external_ref,
            **fields,
        )


class PaymentInitiationTests(PaymentFixtureMixin, TestCase):
    def setUp(self):
        razorpay_breaker.reset()
        self.user = User.objects.create_user(username="payer", password="pw")
        self.order = self.make_order(self.user)

    @patch("apps.payments.services.PaymentService.get_gateway")
    def test_card_payment_creates_pending_payment(self, mock_get_gateway):
        gateway = mock_get_gateway.return_value
        gateway.create_order.return_value = {"id": "order_RZP1", "amount": 4500, "status": "created"}

        data = PaymentService.create_card_payment(self.order.id, self.user)

        gateway.create_order.assert_called_once()
        kwargs = gateway.create_order.call_args.kwargs
        self.assertEqual(kwargs["amount"], 4500)
        self.assertEqual(kwargs["currency"], settings.PAYMENT_CURRENCY)
        self.assertEqual(kwargs["receipt"], self.order.order_number)

        self.assertEqual(data["gateway_order_id"], "order_RZP1")
        self.assertEqual(data["key_id"], "rzp_test_key")
        self.assertEqual(data["amount"], 4500)

        payment = Payment.objects.get(id=data["payment_id"])
        self.assertEqual(payment.status, PaymentStatus.PENDING)
        self.assertEqual(payment.method, PaymentMethod.CARD)
        self.assertEqual(payment.external_ref, "order_RZP1")

        # Card initiation does not move the order
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PENDING)

    @patch("apps.payments.services.PaymentService.get_gateway")
    def test_gateway_failure_leaves_no_payment_row(self, mock_get_gateway):
        mock_get_gateway.return_value.create_order.side_effect = PaymentGatewayError("Payment Gateway Error")

        with self.assertRaises(PaymentGatewayError):
            PaymentService.create_card_payment(self.order.id, self.user)

        self.assertFalse(Payment.objects.exists())

    @patch("apps.payments.services.PaymentService.get_gateway")
    def test_card_payment_for_paid_order_skips_gateway(self, mock_get_gateway):
        PaymentService.create_wallet_payment(self.order.id, self.user, "wallet-txn-1")

        with self.assertRaises(DuplicateCompletedPayment):
            PaymentService.create_card_payment(self.order.id, self.user)

        mock_get_gateway.assert_not_called()

    def test_cash_on_delivery_advances_order(self):
        payment = PaymentService.create_cash_on_delivery(self.order.id, self.user)

        self.assertEqual(payment.method, PaymentMethod.COD)
        self.assertEqual(payment.status, PaymentStatus.PENDING)
        self.assertEqual(payment.amount, self.order.total_amount)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PROCESSING)

    def test_second_cash_on_delivery_is_duplicate(self):
        PaymentService.create_cash_on_delivery(self.order.id, self.user)

        with self.assertRaises(DuplicatePayment):
            PaymentService.create_cash_on_delivery(self.order.id, self.user)

        self.assertEqual(Payment.objects.filter(order=self.order).count(), 1)

    def test_cash_on_delivery_for_paid_order_is_duplicate(self):
        PaymentService.create_wallet_payment(self.order.id, self.user, "wallet-txn-1")

        with self.assertRaises(DuplicatePayment):
            PaymentService.create_cash_on_delivery(self.order.id, self.user)

    def test_cancelled_order_cannot_be_paid(self):
        OrderService.cancel_order(self.order.id, self.user)

        with self.assertRaises(OrderNotFound):
            PaymentService.create_cash_on_delivery(self.order.id, self.user)

    def test_other_users_order_cannot_be_paid(self):
        stranger = User.objects.create_user(username="stranger", password="pw")
        with self.assertRaises(OrderNotFound):
            PaymentService.create_cash_on_delivery(self.order.id, stranger)

    def test_wallet_payment_completes_immediately(self):
        payment = PaymentService.create_wallet_payment(self.order.id, self.user, "  wallet-txn-1 ")

        self.assertEqual(payment.status, PaymentStatus.COMPLETED)
        self.assertEqual(payment.external_ref, "wallet-txn-1")
        self.assertIsNotNone(payment.payment_date)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PROCESSING)

    def test_second_wallet_payment_is_rejected(self):
        PaymentService.create_wallet_payment(self.order.id, self.user, "wallet-txn-1")

        with self.assertRaises(DuplicateCompletedPayment):
            PaymentService.create_wallet_payment(self.order.id, self.user, "wallet-txn-2")

        self.assertEqual(
            Payment.objects.filter(order=self.order, status=PaymentStatus.COMPLETED).count(), 1
        )

    def test_wallet_reference_cannot_be_reused(self):
        PaymentService.create_wallet_payment(self.order.id, self.user, "wallet-txn-1")
        other_order = self.make_order(self.user)

        with self.assertRaises(DuplicatePayment):
            PaymentService.create_wallet_payment(other_order.id, self.user, "wallet-txn-1")

    def test_wallet_reference_required(self):
        with self.assertRaises(ValidationFailed):
            PaymentService.create_wallet_payment(self.order.id, self.user, "   ")


class RazorpayGatewayTests(TestCase):
    def setUp(self):
        razorpay_breaker.reset()
        self.client_mock = MagicMock()
        self.gateway = RazorpayGateway(client=self.client_mock)

    def tearDown(self):
        razorpay_breaker.reset()

    def test_create_order_passes_timeout(self):
        self.client_mock.order.create.return_value = {"id": "order_X"}

        result = self.gateway.create_order(amount=1000, currency="INR", receipt="ORD-1")

        self.assertEqual(result["id"], "order_X")
        args, kwargs = self.client_mock.order.create.call_args
        self.assertEqual(args[0]["amount"], 1000)
        self.assertEqual(args[0]["payment_capture"], 1)
        self.assertEqual(kwargs["timeout"], settings.PAYMENT_GATEWAY_TIMEOUT)

    def test_sdk_error_becomes_gateway_error(self):
        self.client_mock.payment.refund.side_effect = ConnectionError("read timed out")

        with self.assertRaises(PaymentGatewayError) as ctx:
            self.gateway.refund("pay_1", amount=100)

        self.assertEqual(ctx.exception.status_code, 502)
        self.assertEqual(ctx.exception.details["operation"], "payment.refund")

    @override_settings(GATEWAY_CIRCUIT_FAILURE_THRESHOLD=2)
    def test_circuit_opens_after_repeated_failures(self):
        self.client_mock.order.create.side_effect = ConnectionError("down")

        for _ in range(2):
            with self.assertRaises(PaymentGatewayError):
                self.gateway.create_order(amount=1, currency="INR", receipt="r")

        with self.assertRaises(ServiceUnavailable):
            self.gateway.create_order(amount=1, currency="INR", receipt="r")

        self.assertEqual(self.client_mock.order.create.call_count, 2)


class WebhookReconciliationTests(PaymentFixtureMixin, APITestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="buyer", password="pw")
        self.order = self.make_order(self.user)
        self.payment = self.card_payment(self.order)

    def post_event(self, body, signature=None, **headers):
        return self.client.post(
            WEBHOOK_URL,
            data=body,
            content_type="application/json",
            HTTP_X_RAZORPAY_SIGNATURE=sign(body) if signature is None else signature,
            **headers,
        )

    def test_capture_completes_payment_and_advances_order(self):
        response = self.post_event(captured_event())

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {"status": "processed"})

        self.payment.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.COMPLETED)
        self.assertEqual(self.payment.gateway_payment_id, "pay_1")
        self.assertEqual(self.payment.card_last_four, "4242")
        self.assertIsNotNone(self.payment.payment_date)
        self.assertEqual(self.order.status, Order.Status.PROCESSING)

    def test_replayed_event_is_acknowledged_once(self):
        body = captured_event()
        self.post_event(body)
        replay = self.post_event(body)

        self.assertEqual(replay.status_code, status.HTTP_200_OK)
        self.assertEqual(replay.data, {"status": "duplicate"})
        self.assertEqual(WebhookEvent.objects.count(), 1)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PROCESSING)

    def test_capture_redelivered_under_new_event_id_is_noop(self):
        body = captured_event()
        self.post_event(body, HTTP_X_RAZORPAY_EVENT_ID="evt_1")
        again = self.post_event(body, HTTP_X_RAZORPAY_EVENT_ID="evt_2")

        self.assertEqual(again.data, {"status": "duplicate"})
        self.assertEqual(
            Payment.objects.filter(order=self.order, status=PaymentStatus.COMPLETED).count(), 1
        )

    def test_failure_marks_payment_failed(self):
        response = self.post_event(failed_event())

        self.assertEqual(response.data, {"status": "processed"})
        self.payment.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.FAILED)
        self.assertEqual(self.payment.error_message, "Card declined by issuer")
        self.assertEqual(self.order.status, Order.Status.PENDING)

    def test_late_failure_never_downgrades_completed_payment(self):
        self.post_event(captured_event())
        response = self.post_event(failed_event())

        self.assertEqual(response.data, {"status": "ignored"})
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.COMPLETED)

    def test_second_capture_for_paid_order_is_flagged(self):
        second = self.card_payment(self.order, external_ref="order_RZP2")
        self.post_event(captured_event())

        response = self.post_event(captured_event(payment_id="pay_2", gateway_order_id="order_RZP2"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        second.refresh_from_db()
        self.assertEqual(second.status, PaymentStatus.FAILED)
        self.assertEqual(
            Payment.objects.filter(order=self.order, status=PaymentStatus.COMPLETED).count(), 1
        )

    def test_full_refund_refunds_payment_and_order(self):
        self.post_event(captured_event())

        response = self.post_event(refund_event(4500, "full"))

        self.assertEqual(response.data, {"status": "processed"})
        self.payment.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.REFUNDED)
        self.assertEqual(self.payment.gateway_refund_id, "rfnd_4500")
        self.assertIsNotNone(self.payment.refunded_at)
        self.assertEqual(self.order.status, Order.Status.REFUNDED)

    def test_partial_refund_leaves_order_status(self):
        self.post_event(captured_event())

        self.post_event(refund_event(1000, "partial"))

        self.payment.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.REFUNDED)
        self.assertEqual(self.order.status, Order.Status.PROCESSING)

    def test_partial_then_full_refund_refunds_order(self):
        self.post_event(captured_event())

        self.post_event(refund_event(1000, "partial"))
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.amount_refunded, Decimal("10.00"))

        response = self.post_event(refund_event(4500, "full"))

        self.assertEqual(response.data, {"status": "processed"})
        self.payment.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.REFUNDED)
        self.assertEqual(self.payment.amount_refunded, Decimal("45.00"))
        self.assertEqual(self.order.status, Order.Status.REFUNDED)

        again = self.post_event(refund_event(4500, "full"), HTTP_X_RAZORPAY_EVENT_ID="evt_refund_again")
        self.assertEqual(again.data, {"status": "duplicate"})

    def test_refund_delivered_before_capture(self):
        response = self.post_event(refund_event(4500, "full"))

        self.assertEqual(response.data, {"status": "processed"})
        self.payment.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.REFUNDED)
        self.assertEqual(self.payment.gateway_payment_id, "pay_1")
        self.assertIsNotNone(self.payment.payment_date)
        self.assertEqual(self.order.status, Order.Status.REFUNDED)

        late_capture = self.post_event(captured_event())

        self.assertEqual(late_capture.data, {"status": "ignored"})
        self.payment.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.REFUNDED)
        self.assertEqual(self.order.status, Order.Status.REFUNDED)

    def test_partial_refund_delivered_before_capture(self):
        self.post_event(refund_event(1000, "partial"))
        self.post_event(captured_event())

        self.payment.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.REFUNDED)
        self.assertEqual(self.payment.amount_refunded, Decimal("10.00"))
        self.assertEqual(self.order.status, Order.Status.PROCESSING)

    def test_refund_of_payment_that_lost_the_race_keeps_order(self):
        second = self.card_payment(self.order, external_ref="order_RZP2")
        self.post_event(captured_event())
        self.post_event(captured_event(payment_id="pay_2", gateway_order_id="order_RZP2"))

        self.post_event(refund_event(4500, "full", payment_id="pay_2", gateway_order_id="order_RZP2"))

        second.refresh_from_db()
        self.payment.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(second.status, PaymentStatus.REFUNDED)
        self.assertEqual(self.payment.status, PaymentStatus.COMPLETED)
        self.assertEqual(self.order.status, Order.Status.PROCESSING)

    def test_invalid_signature_is_rejected_without_side_effects(self):
        response = self.post_event(captured_event(), signature=sign(captured_event(), secret="wrong"))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data["code"], "invalid_signature")
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.PENDING)
        self.assertFalse(WebhookEvent.objects.exists())

    def test_missing_signature_is_rejected(self):
        response = self.post_event(captured_event(), signature="")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_unknown_reference_is_acknowledged(self):
        response = self.post_event(captured_event(payment_id="pay_x", gateway_order_id="order_UNKNOWN"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {"status": "ignored"})
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, PaymentStatus.PENDING)

    def test_unhandled_event_type_is_ignored(self):
        body = json.dumps({"event": "order.paid", "payload": {}})
        response = self.post_event(body)
        self.assertEqual(response.data, {"status": "ignored"})

    def test_malformed_body_with_valid_signature(self):
        response = self.post_event("not-json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class RefundAndOverrideTests(PaymentFixtureMixin, TestCase):
    def setUp(self):
        razorpay_breaker.reset()
        self.user = User.objects.create_user(username="refundee", password="pw")
        self.order = self.make_order(self.user)

    @patch("apps.payments.services.PaymentService.get_gateway")
    def test_wallet_refund_skips_gateway(self, mock_get_gateway):
        payment = PaymentService.create_wallet_payment(self.order.id, self.user, "wallet-txn-1")

        payment = PaymentService.refund_payment(payment.id, "Damaged copy")

        mock_get_gateway.assert_not_called()
        self.assertEqual(payment.status, PaymentStatus.REFUNDED)
        self.assertEqual(payment.refund_reason, "Damaged copy")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.REFUNDED)

    @patch("apps.payments.services.PaymentService.get_gateway")
    def test_card_refund_calls_gateway(self, mock_get_gateway):
        mock_get_gateway.return_value.refund.return_value = {"id": "rfnd_9"}
        payment = self.card_payment(
            self.order,
            status=PaymentStatus.COMPLETED,
            gateway_payment_id="pay_9",
            payment_date=timezone.now(),
        )

        payment = PaymentService.refund_payment(payment.id, "Customer request")

        args, kwargs = mock_get_gateway.return_value.refund.call_args
        self.assertEqual(args[0], "pay_9")
        self.assertEqual(kwargs["amount"], 4500)
        self.assertEqual(payment.gateway_refund_id, "rfnd_9")
        self.assertEqual(payment.status, PaymentStatus.REFUNDED)

    @patch("apps.payments.services.PaymentService.get_gateway")
    def test_card_refund_gateway_failure_keeps_payment_completed(self, mock_get_gateway):
        mock_get_gateway.return_value.refund.side_effect = PaymentGatewayError("Payment Gateway Error")
        payment = self.card_payment(self.order, status=PaymentStatus.COMPLETED, gateway_payment_id="pay_9")

        with self.assertRaises(PaymentGatewayError):
            PaymentService.refund_payment(payment.id, "Customer request")

        payment.refresh_from_db()
        self.assertEqual(payment.status, PaymentStatus.COMPLETED)

    def test_only_completed_payments_can_be_refunded(self):
        payment = PaymentService.create_cash_on_delivery(self.order.id, self.user)

        with self.assertRaises(PaymentNotCompleted):
            PaymentService.refund_payment(payment.id, "Too early")

    def test_manual_completion_respects_single_completed_payment(self):
        first = PaymentService.create_cash_on_delivery(self.order.id, self.user)
        second = self.card_payment(self.order)

        first = PaymentService.update_payment_status(first.id, PaymentStatus.COMPLETED)
        self.assertEqual(first.status, PaymentStatus.COMPLETED)
        self.assertIsNotNone(first.payment_date)

        with self.assertRaises(DuplicateCompletedPayment):
            PaymentService.update_payment_status(second.id, PaymentStatus.COMPLETED)

    def test_manual_override_cannot_reopen_terminal_payment(self):
        payment = PaymentService.create_wallet_payment(self.order.id, self.user, "wallet-txn-1")

        with self.assertRaises(InvalidPaymentTransition):
            PaymentService.update_payment_status(payment.id, PaymentStatus.FAILED)

    @patch("apps.payments.services.PaymentService.get_gateway")
    def test_manual_refunded_status_never_calls_gateway(self, mock_get_gateway):
        payment = self.card_payment(self.order, status=PaymentStatus.COMPLETED, gateway_payment_id="pay_9")

        payment = PaymentService.update_payment_status(payment.id, PaymentStatus.REFUNDED, reason="Refunded offline")

        mock_get_gateway.assert_not_called()
        self.assertEqual(payment.status, PaymentStatus.REFUNDED)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.REFUNDED)


class PaymentAPITests(PaymentFixtureMixin, APITestCase):
    def setUp(self):
        razorpay_breaker.reset()
        self.user = User.objects.create_user(username="api-payer", password="pw")
        self.admin = User.objects.create_user(username="api-admin", password="pw", is_staff=True)
        self.order = self.make_order(self.user)
        self.client.force_authenticate(self.user)

    def tearDown(self):
        razorpay_breaker.reset()

    def test_cod_endpoint_and_duplicate(self):
        first = self.client.post("/api/v1/payments/cod/", {"order_id": str(self.order.id)}, format="json")
        self.assertEqual(first.status_code, status.HTTP_201_CREATED)
        self.assertEqual(first.data["method"], PaymentMethod.COD)

        second = self.client.post("/api/v1/payments/cod/", {"order_id": str(self.order.id)}, format="json")
        self.assertEqual(second.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(second.data["code"], "duplicate_payment")

    def test_card_endpoint_with_open_circuit(self):
        for _ in range(settings.GATEWAY_CIRCUIT_FAILURE_THRESHOLD):
            razorpay_breaker.record_failure()

        response = self.client.post("/api/v1/payments/card/", {"order_id": str(self.order.id)}, format="json")

        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertEqual(response.data["code"], "gateway_unavailable")
        self.assertFalse(Payment.objects.exists())

    def test_invalid_order_id_is_validation_error(self):
        response = self.client.post("/api/v1/payments/cod/", {"order_id": "nope"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("order_id", response.data["fields"])

    def test_history_is_scoped_to_caller(self):
        PaymentService.create_cash_on_delivery(self.order.id, self.user)
        other = User.objects.create_user(username="other-payer", password="pw")
        PaymentService.create_cash_on_delivery(self.make_order(other).id, other)

        mine = self.client.get("/api/v1/payments/")
        self.assertEqual(mine.data["count"], 1)

        for_order = self.client.get(f"/api/v1/payments/order/{self.order.id}/")
        self.assertEqual(len(for_order.data), 1)

        self.client.force_authenticate(self.admin)
        everything = self.client.get("/api/v1/payments/")
        self.assertEqual(everything.data["count"], 2)

    def test_refund_endpoint_requires_admin(self):
        payment = PaymentService.create_wallet_payment(self.order.id, self.user, "wallet-txn-1")
        url = f"/api/v1/payments/{payment.id}/refund/"

        forbidden = self.client.post(url, {"reason": "Changed mind"}, format="json")
        self.assertEqual(forbidden.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(self.admin)
        ok = self.client.post(url, {"reason": "Changed mind"}, format="json")
        self.assertEqual(ok.status_code, status.HTTP_200_OK)
        self.assertEqual(ok.data["status"], PaymentStatus.REFUNDED)
