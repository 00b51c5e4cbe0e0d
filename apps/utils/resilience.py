import functools
import logging
from django.conf import settings
from django.core.cache import cache
from apps.utils.exceptions import ServiceUnavailable

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """
    Cache-backed circuit breaker for outbound calls.

    After `failure_threshold` failures inside `failure_window` seconds the
    circuit opens and calls fail fast with ServiceUnavailable for
    `recovery_timeout` seconds. State lives in the shared cache so every
    worker process sees the same circuit.
    """

    def __init__(self, service_name, failure_threshold=None, recovery_timeout=None,
                 failure_window=120, failure_exceptions=(Exception,)):
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_window = failure_window
        self.failure_exceptions = failure_exceptions
        self.cache_key_failures = f"cb_failures:{service_name}"
        self.cache_key_open = f"cb_open:{service_name}"

    def _threshold(self):
        if self.failure_threshold is not None:
            return self.failure_threshold
        return getattr(settings, "GATEWAY_CIRCUIT_FAILURE_THRESHOLD", 5)

    def _recovery(self):
        if self.recovery_timeout is not None:
            return self.recovery_timeout
        return getattr(settings, "GATEWAY_CIRCUIT_RECOVERY_TIMEOUT", 60)

    def is_open(self):
        return bool(cache.get(self.cache_key_open))

    def reset(self):
        cache.delete_many([self.cache_key_failures, self.cache_key_open])

    def record_failure(self):
        cache.add(self.cache_key_failures, 0, timeout=self.failure_window)
        try:
            failures = cache.incr(self.cache_key_failures)
        except ValueError:
            # Counter expired between add() and incr()
            cache.set(self.cache_key_failures, 1, timeout=self.failure_window)
            failures = 1

        if failures >= self._threshold():
            logger.error(f"Circuit OPEN for {self.service_name} after {failures} failures")
            cache.set(self.cache_key_open, "OPEN", timeout=self._recovery())
            cache.delete(self.cache_key_failures)

    def __call__(self, func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            if self.is_open():
                raise ServiceUnavailable(
                    f"{self.service_name} is temporarily unavailable. Please try again later.",
                    code="gateway_unavailable",
                )

            try:
                result = func(*args, **kwargs)
            except self.failure_exceptions:
                self.record_failure()
                raise

            cache.delete(self.cache_key_failures)
            return result

        return wrapper
