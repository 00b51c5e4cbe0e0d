from rest_framework import status

from apps.utils.exceptions import (
    BusinessLogicException,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
)


class PaymentNotFound(NotFoundError):
    default_code = "payment_not_found"

    def __init__(self, payment_ref):
        super().__init__("Payment not found", payment=str(payment_ref))


class DuplicatePayment(ConflictError):
    default_code = "duplicate_payment"

    def __init__(self, order, message=None, **details):
        super().__init__(
            message or f"Order {order.order_number} already has an active payment.",
            order_id=str(order.id),
            **details,
        )


class DuplicateCompletedPayment(DuplicatePayment):
    default_code = "duplicate_completed_payment"

    def __init__(self, order):
        super().__init__(order, f"Order {order.order_number} has already been paid.")


class PaymentNotCompleted(ConflictError):
    default_code = "payment_not_completed"

    def __init__(self, payment):
        super().__init__(
            f"Payment is {payment.status}; only completed payments can be refunded.",
            payment_id=str(payment.id),
            status=payment.status,
        )


class InvalidPaymentTransition(ConflictError):
    default_code = "invalid_payment_transition"

    def __init__(self, payment, requested):
        super().__init__(
            f"Cannot move payment from {payment.status} to {requested}.",
            payment_id=str(payment.id),
            current_status=payment.status,
            requested=str(requested),
        )


class InvalidSignature(BusinessLogicException):
    # Never echo the secret or the payload back
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "invalid_signature"

    def __init__(self):
        super().__init__("Invalid webhook signature.")


class PaymentGatewayError(ExternalServiceError):
    default_code = "payment_gateway_error"
