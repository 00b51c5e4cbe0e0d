import logging
import uuid
from django.utils.deprecation import MiddlewareMixin
from django.http import JsonResponse

logger = logging.getLogger("django")

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(MiddlewareMixin):
    """
    Attaches a correlation id to every request so operators can match a
    generic 500 response to the server-side log line.
    """
    def process_request(self, request):
        incoming = request.headers.get(REQUEST_ID_HEADER, "")
        # Client supplied ids are accepted only if they look sane
        if incoming and len(incoming) <= 64 and incoming.replace("-", "").isalnum():
            request.correlation_id = incoming
        else:
            request.correlation_id = uuid.uuid4().hex

    def process_response(self, request, response):
        correlation_id = getattr(request, "correlation_id", None)
        if correlation_id:
            response[REQUEST_ID_HEADER] = correlation_id
        return response


class GlobalExceptionMiddleware(MiddlewareMixin):
    """
    Last line of defense for non-DRF views.
    """
    def process_exception(self, request, exception):
        correlation_id = getattr(request, "correlation_id", None)
        logger.exception(f"Unhandled Middleware Exception [{correlation_id}]: {str(exception)}")
        if request.path.startswith('/api/'):
            return JsonResponse(
                {"error": "Internal System Error", "correlation_id": correlation_id},
                status=500
            )
        return None # Let Django's default 500 handler work for HTML
