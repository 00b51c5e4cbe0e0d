import hashlib
import json
import logging

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone
from razorpay.errors import SignatureVerificationError

from apps.orders.models import Order
from apps.orders.services import OrderService  # Explicit Cross-App Import
from apps.orders.exceptions import OrderNotFound
from apps.orders.state_machine import Event, OrderStateMachine
from apps.utils.exceptions import ValidationFailed
from apps.utils.utils import from_minor_units, to_minor_units
from .exceptions import (
    DuplicateCompletedPayment,
    DuplicatePayment,
    InvalidPaymentTransition,
    InvalidSignature,
    PaymentGatewayError,
    PaymentNotCompleted,
    PaymentNotFound,
)
from .gateway import RazorpayGateway
from .models import Payment, PaymentMethod, PaymentStatus, WebhookEvent

logger = logging.getLogger(__name__)


def _first_or_none(queryset, **lookup):
    try:
        return queryset.filter(**lookup).first()
    except (DjangoValidationError, ValueError):
        return None


class PaymentService:
    """
    Service to handle Payment Lifecycle.

    Initiation (card / COD / wallet), gateway reconciliation and refunds.
    Order status moves only through OrderService / OrderStateMachine.
    """

    @staticmethod
    def get_gateway():
        return RazorpayGateway()

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    @staticmethod
    def _payable_order(order_id, user, *, lock=False) -> Order:
        queryset = Order.objects.filter(user=user).exclude(status=Order.Status.CANCELLED)
        if lock:
            queryset = queryset.select_for_update()
        order = _first_or_none(queryset, id=order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    @staticmethod
    def _ensure_not_paid(order, *, exclude=None):
        completed = Payment.objects.filter(order=order, status=PaymentStatus.COMPLETED)
        if exclude is not None:
            completed = completed.exclude(pk=exclude.pk)
        if completed.exists():
            raise DuplicateCompletedPayment(order)

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    @staticmethod
    def create_card_payment(order_id, user) -> dict:
        """
        Creates a Razorpay order first; the local PENDING payment is written
        only once the gateway has answered. Order status is untouched until
        the capture webhook arrives.
        """
        order = PaymentService._payable_order(order_id, user)
        PaymentService._ensure_not_paid(order)

        currency = settings.PAYMENT_CURRENCY
        amount_minor = to_minor_units(order.total_amount)

        # 1. Call Gateway (outside any DB transaction)
        provider_order = PaymentService.get_gateway().create_order(
            amount=amount_minor,
            currency=currency,
            receipt=order.order_number,
            notes={"order_id": str(order.id), "user_id": str(user.id)},
        )
        gateway_order_id = provider_order.get("id")
        if not gateway_order_id:
            raise PaymentGatewayError("Payment Gateway Error", operation="order.create")

        # 2. Store Payment
        with transaction.atomic():
            order = PaymentService._payable_order(order_id, user, lock=True)
            PaymentService._ensure_not_paid(order)

            payment = Payment.objects.create(
                order=order,
                user=user,
                method=PaymentMethod.CARD,
                amount=order.total_amount,
                currency=currency,
                external_ref=gateway_order_id,
                status=PaymentStatus.PENDING,
                gateway_response=provider_order,
            )

        logger.info(
            f"Card payment {payment.id} created for order {order.order_number} (gateway order {gateway_order_id})",
            extra={"order_id": order.id, "payment_id": payment.id, "user_id": user.id},
        )
        return {
            "payment_id": str(payment.id),
            "gateway_order_id": gateway_order_id,
            "key_id": settings.RAZORPAY_KEY_ID,
            "amount": amount_minor,
            "currency": currency,
            "order": {
                "id": str(order.id),
                "order_number": order.order_number,
                "total_amount": str(order.total_amount),
            },
        }

    @staticmethod
    @transaction.atomic
    def create_cash_on_delivery(order_id, user) -> Payment:
        order = PaymentService._payable_order(order_id, user, lock=True)
        PaymentService._ensure_not_paid(order)

        if Payment.objects.filter(order=order, status=PaymentStatus.PENDING).exists():
            raise DuplicatePayment(order)

        payment = Payment.objects.create(
            order=order,
            user=user,
            method=PaymentMethod.COD,
            amount=order.total_amount,
            currency=settings.PAYMENT_CURRENCY,
            status=PaymentStatus.PENDING,
        )
        OrderService.advance_after_payment(order)

        logger.info(
            f"COD payment {payment.id} created for order {order.order_number}",
            extra={"order_id": order.id, "payment_id": payment.id, "user_id": user.id},
        )
        return payment

    @staticmethod
    @transaction.atomic
    def create_wallet_payment(order_id, user, external_ref: str) -> Payment:
        external_ref = (external_ref or "").strip()
        if not external_ref:
            raise ValidationFailed("external_ref is required for wallet payments.", field="external_ref")

        order = PaymentService._payable_order(order_id, user, lock=True)
        PaymentService._ensure_not_paid(order)

        if Payment.objects.filter(external_ref=external_ref).exists():
            raise DuplicatePayment(
                order, "This transaction reference has already been used.", external_ref=external_ref
            )

        try:
            with transaction.atomic():
                payment = Payment.objects.create(
                    order=order,
                    user=user,
                    method=PaymentMethod.WALLET,
                    amount=order.total_amount,
                    currency=settings.PAYMENT_CURRENCY,
                    external_ref=external_ref,
                    status=PaymentStatus.COMPLETED,
                    payment_date=timezone.now(),
                )
        except IntegrityError:
            # Lost a race on the unique reference or the one-completed-per-order index
            PaymentService._ensure_not_paid(order)
            raise DuplicatePayment(
                order, "This transaction reference has already been used.", external_ref=external_ref
            )

        OrderService.advance_after_payment(order)
        logger.info(
            f"Wallet payment {payment.id} completed for order {order.order_number}",
            extra={"order_id": order.id, "payment_id": payment.id, "user_id": user.id},
        )
        return payment

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    @staticmethod
    def handle_gateway_webhook(body, signature, event_id=None) -> dict:
        """
        Idempotent Webhook Processor.
        Handles: payment.captured, payment.failed, refund.processed.
        Everything else is acknowledged and ignored.
        """
        if not signature:
            logger.warning("Razorpay Webhook: Missing Signature")
            raise InvalidSignature()

        if isinstance(body, bytes):
            try:
                body = body.decode("utf-8")
            except UnicodeDecodeError:
                logger.warning("Razorpay Webhook: body is not valid UTF-8")
                raise InvalidSignature()

        # 1. Verify Signature
        try:
            PaymentService.get_gateway().verify_webhook_signature(body, signature)
        except SignatureVerificationError:
            logger.critical("Razorpay Webhook: Invalid Signature detected! Possible attack.")
            raise InvalidSignature()

        # 2. Parse
        try:
            event_data = json.loads(body)
        except ValueError:
            raise ValidationFailed("Malformed webhook payload.")
        if not isinstance(event_data, dict):
            raise ValidationFailed("Malformed webhook payload.")

        event_type = event_data.get("event") or ""
        event_key = (event_id or PaymentService._derive_event_key(event_type, event_data, body))[:100]

        with transaction.atomic():
            # 3. Idempotency Check
            webhook, _ = WebhookEvent.objects.select_for_update().get_or_create(
                event_id=event_key,
                defaults={"event_type": event_type, "payload": event_data},
            )
            if webhook.is_processed:
                logger.info(f"Skipping duplicate webhook event: {event_key}", extra={"event_id": event_key})
                return {"status": "duplicate"}

            # 4. Dispatch
            handler = WEBHOOK_HANDLERS.get(event_type)
            if handler is None:
                logger.info(f"Ignoring webhook event {event_type}", extra={"event_id": event_key})
                result = "ignored"
            else:
                logger.info(f"Processing Webhook: {event_type}", extra={"event_id": event_key})
                result = handler(event_data)

            webhook.is_processed = True
            webhook.processed_at = timezone.now()
            webhook.save(update_fields=["is_processed", "processed_at", "updated_at"])

        return {"status": result}

    @staticmethod
    def _derive_event_key(event_type, event_data, body):
        payload = event_data.get("payload") or {}
        for entity_name in ("refund", "payment"):
            entity = (payload.get(entity_name) or {}).get("entity") or {}
            if entity.get("id"):
                return f"{event_type}:{entity['id']}"
        return f"sha256:{hashlib.sha256(body.encode('utf-8')).hexdigest()}"

    @staticmethod
    def _entity(event_data, name) -> dict:
        payload = event_data.get("payload") or {}
        return (payload.get(name) or {}).get("entity") or {}

    @staticmethod
    def _locked_payment_for(gateway_order_id=None, gateway_payment_id=None):
        """
        Finds the local payment by gateway reference, then locks order -> payment
        (same order as initiation) and returns both.
        """
        payment = None
        if gateway_order_id:
            payment = Payment.objects.filter(external_ref=gateway_order_id).first()
        if payment is None and gateway_payment_id:
            payment = Payment.objects.filter(gateway_payment_id=gateway_payment_id).first()
        if payment is None:
            return None, None

        order = Order.objects.select_for_update().get(pk=payment.order_id)
        payment = Payment.objects.select_for_update().get(pk=payment.pk)
        return payment, order

    @staticmethod
    def _on_payment_captured(event_data) -> str:
        entity = PaymentService._entity(event_data, "payment")
        gateway_order_id = entity.get("order_id")

        payment, order = PaymentService._locked_payment_for(gateway_order_id, entity.get("id"))
        if payment is None:
            logger.warning(f"Webhook: no local payment for gateway order {gateway_order_id}. Acknowledged.")
            return "ignored"

        if payment.status == PaymentStatus.COMPLETED:
            logger.info(f"Payment {payment.id} already completed; capture replay ignored.",
                        extra={"payment_id": payment.id})
            return "duplicate"

        if payment.status == PaymentStatus.REFUNDED:
            logger.warning(f"Capture for refunded payment {payment.id} ignored.", extra={"payment_id": payment.id})
            return "ignored"

        payment.gateway_payment_id = entity.get("id") or payment.gateway_payment_id
        payment.gateway_response = entity

        if Payment.objects.filter(order=order, status=PaymentStatus.COMPLETED).exclude(pk=payment.pk).exists():
            payment.status = PaymentStatus.FAILED
            payment.error_message = "Order already paid by another payment; captured amount needs a manual refund."
            payment.save()
            logger.error(
                f"Second capture for order {order.order_number}: payment {payment.id} "
                f"({payment.gateway_payment_id}) marked FAILED, refund required.",
                extra={"order_id": order.id, "payment_id": payment.id},
            )
            return "processed"

        PaymentService._complete(payment, order, entity)
        return "processed"

    @staticmethod
    def _complete(payment, order, entity):
        payment.status = PaymentStatus.COMPLETED
        payment.payment_date = timezone.now()
        payment.gateway_payment_id = entity.get("id") or payment.gateway_payment_id
        payment.gateway_response = entity
        payment.card_last_four = ((entity.get("card") or {}).get("last4") or payment.card_last_four)[:4]
        payment.error_message = None
        payment.save()

        OrderService.advance_after_payment(order)
        logger.info(
            f"Payment {payment.id} COMPLETED via webhook for order {order.order_number}",
            extra={"order_id": order.id, "payment_id": payment.id},
        )

    @staticmethod
    def _on_payment_failed(event_data) -> str:
        entity = PaymentService._entity(event_data, "payment")
        gateway_order_id = entity.get("order_id")

        payment, _ = PaymentService._locked_payment_for(gateway_order_id, entity.get("id"))
        if payment is None:
            logger.warning(f"Webhook: no local payment for gateway order {gateway_order_id}. Acknowledged.")
            return "ignored"

        if payment.is_terminal:
            logger.warning(
                f"Late payment.failed for {payment.status} payment {payment.id} ignored.",
                extra={"payment_id": payment.id},
            )
            return "ignored"

        payment.status = PaymentStatus.FAILED
        payment.error_message = entity.get("error_description") or "Payment Failed"
        payment.gateway_payment_id = entity.get("id") or payment.gateway_payment_id
        payment.gateway_response = entity
        payment.save()
        logger.info(f"Payment failed for Order {payment.order_id}", extra={"payment_id": payment.id})
        return "processed"

    @staticmethod
    def _on_refund_processed(event_data) -> str:
        payment_entity = PaymentService._entity(event_data, "payment")
        refund_entity = PaymentService._entity(event_data, "refund")

        payment, order = PaymentService._locked_payment_for(
            payment_entity.get("order_id"),
            payment_entity.get("id") or refund_entity.get("payment_id"),
        )
        if payment is None:
            logger.warning("Webhook: refund for unknown payment. Acknowledged.")
            return "ignored"

        refunded_minor = payment_entity.get("amount_refunded") or refund_entity.get("amount") or 0
        is_full = (
            payment_entity.get("refund_status") == "full"
            or refunded_minor >= to_minor_units(payment.amount)
        )
        refunded_amount = payment.amount if is_full else min(from_minor_units(refunded_minor), payment.amount)

        if payment.status in (PaymentStatus.PENDING, PaymentStatus.FAILED):
            # Refund delivered ahead of its capture: the gateway did capture this payment
            if Payment.objects.filter(order=order, status=PaymentStatus.COMPLETED).exclude(pk=payment.pk).exists():
                logger.error(
                    f"Refund for uncounted payment {payment.id}; order {order.order_number} "
                    f"is paid by another payment.",
                    extra={"order_id": order.id, "payment_id": payment.id},
                )
            else:
                PaymentService._complete(payment, order, payment_entity)

        # A payment that never paid the order (lost the race to another) leaves the order alone
        pays_order = payment.status == PaymentStatus.COMPLETED or (
            payment.status == PaymentStatus.REFUNDED and payment.payment_date is not None
        )
        order_pending_refund = is_full and pays_order and order.status != Order.Status.REFUNDED

        if (
            payment.status == PaymentStatus.REFUNDED
            and refunded_amount <= payment.amount_refunded
            and not order_pending_refund
        ):
            return "duplicate"

        if payment.status != PaymentStatus.REFUNDED:
            payment.status = PaymentStatus.REFUNDED
            payment.refunded_at = timezone.now()
            payment.refund_reason = payment.refund_reason or "Refunded at gateway"
        payment.amount_refunded = max(payment.amount_refunded, refunded_amount)
        payment.gateway_refund_id = refund_entity.get("id") or payment.gateway_refund_id
        payment.save()

        if order_pending_refund:
            OrderStateMachine.fire(order, Event.REFUND, reason="gateway refund")

        logger.info(
            f"Payment {payment.id} REFUNDED via webhook "
            f"({payment.amount_refunded} of {payment.amount}, {'full' if is_full else 'partial'})",
            extra={"order_id": order.id, "payment_id": payment.id},
        )
        return "processed"

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    @staticmethod
    def _get(payment_id) -> Payment:
        payment = _first_or_none(Payment.objects.all(), id=payment_id)
        if payment is None:
            raise PaymentNotFound(payment_id)
        return payment

    @staticmethod
    def refund_payment(payment_id, reason: str, *, call_gateway: bool = True) -> Payment:
        """
        Gateway refund (CARD) or plain status flip (COD / WALLET), then
        payment and order -> REFUNDED.
        """
        payment = PaymentService._get(payment_id)
        if payment.status != PaymentStatus.COMPLETED:
            raise PaymentNotCompleted(payment)

        gateway_refund_id = ""
        if call_gateway and payment.method == PaymentMethod.CARD:
            if not payment.gateway_payment_id:
                raise PaymentGatewayError(
                    "Payment has no captured gateway id to refund.", payment_id=str(payment.id)
                )
            refund = PaymentService.get_gateway().refund(
                payment.gateway_payment_id,
                amount=to_minor_units(payment.amount),
                notes={"reason": (reason or "")[:255], "payment_id": str(payment.id)},
            )
            gateway_refund_id = refund.get("id", "")

        with transaction.atomic():
            order = Order.objects.select_for_update().get(pk=payment.order_id)
            payment = Payment.objects.select_for_update().get(pk=payment.pk)

            # The refund webhook may have landed while the gateway call was in flight
            if payment.status == PaymentStatus.REFUNDED:
                return payment
            if payment.status != PaymentStatus.COMPLETED:
                raise PaymentNotCompleted(payment)

            payment.status = PaymentStatus.REFUNDED
            payment.refund_reason = reason
            payment.refunded_at = timezone.now()
            payment.amount_refunded = payment.amount
            payment.gateway_refund_id = gateway_refund_id or payment.gateway_refund_id
            payment.save()

            if order.status != Order.Status.REFUNDED:
                OrderStateMachine.fire(order, Event.REFUND, reason=reason)

        logger.info(
            f"Payment {payment.id} refunded ({payment.method}): {reason}",
            extra={"order_id": order.id, "payment_id": payment.id},
        )
        return payment

    @staticmethod
    def update_payment_status(payment_id, new_status: str, *, reason: str = "") -> Payment:
        """
        Manual override. COMPLETED keeps the one-completed-per-order rule,
        REFUNDED never calls the gateway, PENDING/FAILED only from
        non-terminal states.
        """
        if new_status == PaymentStatus.REFUNDED:
            return PaymentService.refund_payment(
                payment_id, reason or "Manual status update", call_gateway=False
            )

        payment = PaymentService._get(payment_id)

        with transaction.atomic():
            order = Order.objects.select_for_update().get(pk=payment.order_id)
            payment = Payment.objects.select_for_update().get(pk=payment.pk)

            if payment.status == new_status:
                return payment

            if new_status == PaymentStatus.COMPLETED:
                if payment.status == PaymentStatus.REFUNDED:
                    raise InvalidPaymentTransition(payment, new_status)
                PaymentService._ensure_not_paid(order, exclude=payment)

                payment.status = PaymentStatus.COMPLETED
                payment.payment_date = timezone.now()
                payment.save()
                OrderService.advance_after_payment(order)

            elif new_status in (PaymentStatus.PENDING, PaymentStatus.FAILED):
                if payment.is_terminal:
                    raise InvalidPaymentTransition(payment, new_status)
                payment.status = new_status
                if reason:
                    payment.error_message = reason
                payment.save()

            else:
                raise InvalidPaymentTransition(payment, new_status)

        logger.info(
            f"Payment {payment.id} status set to {new_status} by admin {reason}".rstrip(),
            extra={"order_id": order.id, "payment_id": payment.id},
        )
        return payment

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def visible_payments(user):
        queryset = Payment.objects.select_related("order")
        if user.is_staff:
            return queryset
        return queryset.filter(user=user)

    @staticmethod
    def get_payment(payment_id, user) -> Payment:
        payment = _first_or_none(PaymentService.visible_payments(user), id=payment_id)
        if payment is None:
            raise PaymentNotFound(payment_id)
        return payment

    @staticmethod
    def list_order_payments(order_id, user):
        orders = Order.objects.all() if user.is_staff else Order.objects.filter(user=user)
        order = _first_or_none(orders, id=order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return Payment.objects.filter(order=order).order_by("-created_at")

    @staticmethod
    def payment_history(user):
        return Payment.objects.filter(user=user).select_related("order").order_by("-created_at")


WEBHOOK_HANDLERS = {
    "payment.captured": PaymentService._on_payment_captured,
    "payment.failed": PaymentService._on_payment_failed,
    "refund.processed": PaymentService._on_refund_processed,
}
