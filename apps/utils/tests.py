# apps/utils/tests.py
import json
import logging
import re
from decimal import Decimal
from types import SimpleNamespace

from django.core.cache import cache
from django.test import TestCase
from rest_framework import status
from rest_framework.exceptions import NotAuthenticated, ValidationError

from .exceptions import (
    ConflictError,
    InvariantViolation,
    ServiceUnavailable,
    custom_exception_handler,
)
from .logging import JSONFormatter
from .resilience import CircuitBreaker
from .utils import from_minor_units, generate_order_number, to_minor_units


class UtilityFunctionTests(TestCase):
    def test_order_number_format(self):
        number = generate_order_number()
        self.assertRegex(number, r"^ORD-\d{13}-\d{4}$")

    def test_to_minor_units_rounds_half_up(self):
        self.assertEqual(to_minor_units(Decimal("45.00")), 4500)
        self.assertEqual(to_minor_units(Decimal("10.005")), 1001)
        self.assertEqual(to_minor_units("0.10"), 10)

    def test_from_minor_units(self):
        self.assertEqual(from_minor_units(4500), Decimal("45.00"))
        self.assertEqual(from_minor_units(1), Decimal("0.01"))


class CircuitBreakerTests(TestCase):
    def setUp(self):
        self.breaker = CircuitBreaker("test-service", failure_threshold=2, recovery_timeout=30)
        self.breaker.reset()

    def tearDown(self):
        self.breaker.reset()

    def test_opens_after_threshold_and_fails_fast(self):
        calls = []

        @self.breaker
        def flaky():
            calls.append(1)
            raise ConnectionError("boom")

        for _ in range(2):
            with self.assertRaises(ConnectionError):
                flaky()

        self.assertTrue(self.breaker.is_open())
        with self.assertRaises(ServiceUnavailable) as ctx:
            flaky()
        self.assertEqual(ctx.exception.code, "gateway_unavailable")
        self.assertEqual(len(calls), 2)

    def test_success_clears_failure_count(self):
        outcomes = iter([ConnectionError("boom"), None, ConnectionError("boom")])

        @self.breaker
        def sometimes():
            outcome = next(outcomes)
            if outcome:
                raise outcome
            return "ok"

        with self.assertRaises(ConnectionError):
            sometimes()
        self.assertEqual(sometimes(), "ok")
        with self.assertRaises(ConnectionError):
            sometimes()

        self.assertFalse(self.breaker.is_open())


class ExceptionHandlerTests(TestCase):
    def context(self):
        return {"request": SimpleNamespace(correlation_id="abc123"), "view": None}

    def test_business_exception_envelope(self):
        exc = ConflictError("Out of stock", code="insufficient_stock", available=0)

        response = custom_exception_handler(exc, self.context())

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data, {"error": "Out of stock", "code": "insufficient_stock", "available": 0})

    def test_invariant_violation_is_generic(self):
        exc = InvariantViolation("ledger drift", book_id="b1")

        response = custom_exception_handler(exc, self.context())

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data["code"], "server_error")
        self.assertEqual(response.data["correlation_id"], "abc123")
        self.assertNotIn("book_id", response.data)

    def test_unhandled_exception_becomes_500(self):
        response = custom_exception_handler(RuntimeError("kaput"), self.context())
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertNotIn("kaput", json.dumps(response.data))

    def test_drf_errors_share_the_envelope(self):
        validation = custom_exception_handler(ValidationError({"quantity": ["Too small."]}), self.context())
        self.assertEqual(validation.data["code"], "validation_error")
        self.assertIn("quantity", validation.data["fields"])

        auth = custom_exception_handler(NotAuthenticated(), self.context())
        self.assertEqual(auth.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(auth.data["code"], "not_authenticated")


class JSONFormatterTests(TestCase):
    def test_redacts_secrets_and_lifts_context(self):
        record = logging.LogRecord(
            name="apps.payments", level=logging.INFO, pathname=__file__, lineno=1,
            msg={"signature": "deadbeef", "nested": {"password": "pw", "amount": 10}},
            args=None, exc_info=None,
        )
        record.order_id = "order-1"

        payload = json.loads(JSONFormatter().format(record))

        self.assertEqual(payload["lvl"], "INFO")
        self.assertEqual(payload["order_id"], "order-1")
        self.assertNotIn("deadbeef", payload["msg"])
        self.assertNotIn("'pw'", payload["msg"])
        self.assertIn("10", payload["msg"])


class RequestPlumbingTests(TestCase):
    def test_health_check(self):
        response = self.client.get("/api/v1/health/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["components"], {"db": "ok", "cache": "ok"})

    def test_request_id_is_generated_or_echoed(self):
        generated = self.client.get("/api/v1/health/")
        self.assertTrue(re.fullmatch(r"[0-9a-f]{32}", generated["X-Request-ID"]))

        echoed = self.client.get("/api/v1/health/", HTTP_X_REQUEST_ID="client-req-42")
        self.assertEqual(echoed["X-Request-ID"], "client-req-42")

        rejected = self.client.get("/api/v1/health/", HTTP_X_REQUEST_ID="bad id!")
        self.assertNotEqual(rejected["X-Request-ID"], "bad id!")

    def tearDown(self):
        cache.clear()
