"""
Tests for the request logging middleware.

Tests request ID propagation, response timing, request context handling
and the log filtering rules.
"""

import logging
import os
import sys
import unittest
from unittest.mock import MagicMock

# Set environment before imports
os.environ["DEV_MODE"] = "true"
os.environ["ENVIRONMENT"] = "development"

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from access_core.utils.logging import get_request_id, get_tenant_id, get_user_id
from app.middleware import RequestLoggingMiddleware


def build_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestLoggingMiddleware)

    @app.get("/context")
    async def context():
        return {
            "request_id": get_request_id(),
            "user_id": get_user_id(),
            "tenant_id": get_tenant_id(),
        }

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    @app.get("/locked")
    async def locked():
        raise HTTPException(status_code=403, detail="Not permitted")

    return app


class TestRequestId(unittest.TestCase):
    """Tests for request ID handling."""

    def setUp(self):
        self.client = TestClient(build_app())

    def test_incoming_request_id_is_echoed(self):
        response = self.client.get("/context", headers={"X-Request-ID": "req-abc"})

        self.assertEqual(response.headers["x-request-id"], "req-abc")
        self.assertEqual(response.json()["request_id"], "req-abc")

    def test_request_id_is_generated(self):
        response = self.client.get("/context")

        request_id = response.headers["x-request-id"]
        self.assertEqual(len(request_id), 36)
        self.assertEqual(response.json()["request_id"], request_id)

    def test_each_request_gets_its_own_id(self):
        first = self.client.get("/context").headers["x-request-id"]
        second = self.client.get("/context").headers["x-request-id"]
        self.assertNotEqual(first, second)

    def test_response_time_header(self):
        response = self.client.get("/health")

        self.assertIn("x-response-time", response.headers)
        self.assertTrue(response.headers["x-response-time"].endswith("ms"))


class TestRequestContext(unittest.TestCase):
    """Tests for the logging context set around each request."""

    def setUp(self):
        self.client = TestClient(build_app())

    def test_identity_headers_enter_context(self):
        response = self.client.get(
            "/context",
            headers={"X-User-ID": "user-1", "X-Tenant-ID": "tenant-1"},
        )

        self.assertEqual(response.json()["user_id"], "user-1")
        self.assertEqual(response.json()["tenant_id"], "tenant-1")

    def test_missing_headers_leave_context_empty(self):
        data = self.client.get("/context").json()

        self.assertIsNone(data["user_id"])
        self.assertIsNone(data["tenant_id"])

    def test_context_is_cleared_after_request(self):
        self.client.get("/context", headers={"X-User-ID": "user-1"})

        self.assertIsNone(get_request_id())
        self.assertIsNone(get_user_id())

    def test_custom_identity_headers(self):
        app = FastAPI()
        app.add_middleware(
            RequestLoggingMiddleware,
            user_header="X-Actor",
            tenant_header="X-Company",
        )

        @app.get("/context")
        async def context():
            return {"user_id": get_user_id(), "tenant_id": get_tenant_id()}

        response = TestClient(app).get("/context", headers={"X-Actor": "u-9", "X-Company": "c-9"})

        self.assertEqual(response.json(), {"user_id": "u-9", "tenant_id": "c-9"})


class TestLogRules(unittest.TestCase):
    """Tests for which requests get logged and at what level."""

    def setUp(self):
        self.middleware = RequestLoggingMiddleware(MagicMock())

    def test_excluded_paths_are_not_logged(self):
        self.assertFalse(self.middleware._should_log("/docs", 200))
        self.assertFalse(self.middleware._should_log("/", 500))

    def test_health_logs_only_errors(self):
        self.assertFalse(self.middleware._should_log("/health", 200))
        self.assertTrue(self.middleware._should_log("/health", 503))

    def test_api_paths_are_logged(self):
        self.assertTrue(self.middleware._should_log("/api/roles", 200))

    def test_log_levels(self):
        self.assertEqual(self.middleware._get_log_level(200), logging.INFO)
        self.assertEqual(self.middleware._get_log_level(404), logging.WARNING)
        self.assertEqual(self.middleware._get_log_level(503), logging.ERROR)

    def test_request_is_logged(self):
        client = TestClient(build_app())

        with self.assertLogs("app.middleware.logging", level="INFO") as captured:
            client.get("/context")

        self.assertTrue(any("GET /context 200" in line for line in captured.output))

    def test_denied_request_is_a_security_event(self):
        client = TestClient(build_app())

        with self.assertLogs("app.middleware.logging", level="WARNING") as captured:
            response = client.get("/locked", headers={"X-User-ID": "user-1"})

        self.assertEqual(response.status_code, 403)
        record = captured.records[0]
        self.assertEqual(record.http_status, 403)
        self.assertEqual(record.security_event, "request_denied")

    def test_long_incoming_request_id_is_capped(self):
        response = TestClient(build_app()).get("/context", headers={"X-Request-ID": "r" * 200})

        self.assertEqual(len(response.headers["x-request-id"]), 64)


class TestClientIp(unittest.TestCase):
    """Tests for client IP extraction."""

    def setUp(self):
        self.middleware = RequestLoggingMiddleware(MagicMock())

    def _request(self, headers, host="10.0.0.1"):
        request = MagicMock()
        request.headers = headers
        request.client.host = host
        return request

    def test_forwarded_for_first_hop(self):
        request = self._request({"X-Forwarded-For": "203.0.113.7, 10.0.0.2"})
        self.assertEqual(self.middleware._get_client_ip(request), "203.0.113.7")

    def test_real_ip(self):
        request = self._request({"X-Real-IP": " 203.0.113.8 "})
        self.assertEqual(self.middleware._get_client_ip(request), "203.0.113.8")

    def test_socket_peer(self):
        self.assertEqual(self.middleware._get_client_ip(self._request({})), "10.0.0.1")

    def test_unknown(self):
        request = self._request({})
        request.client = None
        self.assertEqual(self.middleware._get_client_ip(request), "unknown")


if __name__ == "__main__":
    unittest.main()
