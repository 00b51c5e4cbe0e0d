import logging

import razorpay
from django.conf import settings

from apps.utils.exceptions import ServiceUnavailable
from apps.utils.resilience import CircuitBreaker
from .exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)

razorpay_breaker = CircuitBreaker("razorpay")


class RazorpayGateway:
    """
    Thin wrapper over the Razorpay SDK.

    Outbound calls carry a timeout and go through a shared circuit breaker;
    any SDK / network error surfaces as PaymentGatewayError (502).
    """

    def __init__(self, client=None):
        self.client = client or razorpay.Client(
            auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)
        )

    def _call(self, operation, func, *args, **kwargs):
        guarded = razorpay_breaker(func)
        try:
            return guarded(*args, timeout=settings.PAYMENT_GATEWAY_TIMEOUT, **kwargs)
        except ServiceUnavailable:
            logger.warning(f"Razorpay circuit open, skipping {operation}")
            raise
        except Exception as e:
            logger.error(f"Razorpay {operation} failed: {e.__class__.__name__}: {e}")
            raise PaymentGatewayError("Payment Gateway Error", operation=operation) from e

    def create_order(self, *, amount: int, currency: str, receipt: str, notes=None) -> dict:
        """
        `amount` is in minor units (paise). Returns the Razorpay order entity.
        """
        return self._call(
            "order.create",
            self.client.order.create,
            {
                "amount": amount,
                "currency": currency,
                "receipt": receipt,
                "notes": notes or {},
                "payment_capture": 1,
            },
        )

    def refund(self, gateway_payment_id: str, *, amount: int, notes=None) -> dict:
        return self._call(
            "payment.refund",
            self.client.payment.refund,
            gateway_payment_id,
            {"amount": amount, "notes": notes or {}},
        )

    def verify_webhook_signature(self, body: str, signature: str) -> None:
        """
        Raises razorpay.errors.SignatureVerificationError on mismatch.
        Local HMAC check, no network call.
        """
        self.client.utility.verify_webhook_signature(
            body, signature, settings.RAZORPAY_WEBHOOK_SECRET
        )
