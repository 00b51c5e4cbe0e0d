from rest_framework.exceptions import ValidationError
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
import logging

logger = logging.getLogger(__name__)


class BusinessLogicException(Exception):
    """
    Raised when a domain rule is violated (e.g. 'Stock not available').

    Subclasses pin the HTTP status and a stable machine-readable code.
    `details` carries the context a caller needs to correct the request
    (current stock, current status, ...).
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "business_error"

    def __init__(self, message, code=None, **details):
        self.message = message
        self.code = code or self.default_code
        self.details = details
        super().__init__(message)

    def as_dict(self):
        return {"error": self.message, "code": self.code, **self.details}


class ValidationFailed(BusinessLogicException):
    default_code = "validation_error"


class NotFoundError(BusinessLogicException):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class ConflictError(BusinessLogicException):
    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"


class ExternalServiceError(BusinessLogicException):
    """
    A dependency outside this system (payment gateway, ...) failed.
    The caller is expected to retry.
    """
    status_code = status.HTTP_502_BAD_GATEWAY
    default_code = "external_service_error"


class ServiceUnavailable(ExternalServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "service_unavailable"


class InvariantViolation(BusinessLogicException):
    """
    Internal consistency check failed. Never shown to the caller verbatim.
    """
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "invariant_violation"


def _correlation_id(context):
    request = context.get("request")
    return getattr(request, "correlation_id", None)


def custom_exception_handler(exc, context):
    # Call REST framework's default exception handler first
    response = exception_handler(exc, context)

    if isinstance(exc, InvariantViolation):
        correlation_id = _correlation_id(context)
        logger.error(
            "Invariant violation [%s]: %s %s",
            correlation_id, exc.message, exc.details,
            extra={"correlation_id": correlation_id},
        )
        return Response(
            {"error": "Internal Server Error", "code": "server_error", "correlation_id": correlation_id},
            status=exc.status_code,
        )

    # Handle custom BusinessLogicException
    if isinstance(exc, BusinessLogicException):
        return Response(exc.as_dict(), status=exc.status_code)

    # If response is None, it's an unhandled server error (500)
    if response is None:
        correlation_id = _correlation_id(context)
        logger.error(
            f"Unhandled Exception [{correlation_id}]: {exc}",
            exc_info=True,
            extra={"correlation_id": correlation_id},
        )
        return Response(
            {"error": "Internal Server Error", "code": "server_error", "correlation_id": correlation_id},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    # Same envelope for DRF errors (auth, validation, 404, ...)
    if isinstance(exc, ValidationError):
        response.data = {"error": "Invalid input.", "code": "validation_error", "fields": response.data}
    elif isinstance(response.data, dict) and "detail" in response.data:
        detail = response.data["detail"]
        response.data = {"error": str(detail), "code": getattr(detail, "code", None) or "error"}

    return response
