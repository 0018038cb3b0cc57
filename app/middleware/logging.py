"""
Request logging middleware.

Every request runs inside a logging context holding its request ID, the
actor from the trusted identity header and the tenant from the tenant
header, so service-level log lines carry them without being passed around.
Denied requests (401/403) are logged as security events.
"""

import logging
import time
import uuid
from typing import Callable, Dict, Optional, Set

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from access_core.utils.logging import clear_request_context, set_request_context

logger = logging.getLogger(__name__)

DENIED_STATUSES = frozenset({401, 403})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Structured access log with request ID propagation and timing."""

    DEFAULT_EXCLUDE_PATHS: Set[str] = frozenset({
        "/",
        "/docs",
        "/openapi.json",
        "/redoc",
        "/favicon.ico",
    })

    # Paths that only log on errors
    ERROR_ONLY_PATHS: Set[str] = frozenset({"/health"})

    def __init__(
        self,
        app,
        user_header: str = "X-User-ID",
        tenant_header: str = "X-Tenant-ID",
        exclude_paths: Optional[Set[str]] = None,
        error_only_paths: Optional[Set[str]] = None,
    ):
        super().__init__(app)
        self.user_header = user_header
        self.tenant_header = tenant_header
        self.exclude_paths = exclude_paths or self.DEFAULT_EXCLUDE_PATHS
        self.error_only_paths = error_only_paths or self.ERROR_ONLY_PATHS

    def _get_request_id(self, request: Request) -> str:
        incoming = (request.headers.get("X-Request-ID") or "").strip()
        return incoming[:64] if incoming else str(uuid.uuid4())

    def _get_client_ip(self, request: Request) -> str:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()
        return request.client.host if request.client else "unknown"

    def _should_log(self, path: str, status_code: int) -> bool:
        if path in self.exclude_paths:
            return False
        if path in self.error_only_paths:
            return status_code >= 400
        return True

    def _get_log_level(self, status_code: int) -> int:
        if status_code >= 500:
            return logging.ERROR
        if status_code >= 400:
            return logging.WARNING
        return logging.INFO

    def _fields(self, request: Request, client_ip: str, started: float) -> Dict:
        return {
            "event": "http_request",
            "http_method": request.method,
            "http_path": request.url.path,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            "client_ip": client_ip,
        }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = self._get_request_id(request)
        set_request_context(
            request_id=request_id,
            user_id=request.headers.get(self.user_header),
            tenant_id=request.headers.get(self.tenant_header),
        )
        request.state.request_id = request_id
        client_ip = self._get_client_ip(request)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            fields = self._fields(request, client_ip, started)
            fields.update(event="http_request_error", error_type=type(exc).__name__)
            logger.error(
                f"{request.method} {request.url.path} FAILED: {type(exc).__name__}",
                extra=fields,
                exc_info=True,
            )
            clear_request_context()
            raise

        fields = self._fields(request, client_ip, started)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{fields['duration_ms']:.2f}ms"

        status_code = response.status_code
        if self._should_log(request.url.path, status_code):
            fields["http_status"] = status_code
            if status_code in DENIED_STATUSES:
                fields["security_event"] = "request_denied"
            logger.log(
                self._get_log_level(status_code),
                f"{request.method} {request.url.path} {status_code} ({fields['duration_ms']:.2f}ms)",
                extra=fields,
            )

        clear_request_context()
        return response
