"""
Exception handlers for the access API.

Every error leaves the API in one shape:

    {"success": false, "error": "...", "error_code": "...", "details": {...}}

Authorization failures are rendered without a reason or details, whatever
the underlying cause, so callers outside a tenant learn nothing about what
exists inside it. Details of other errors pass through an allow-list, and
messages that look like they carry credentials, connection strings or host
paths are replaced wholesale.
"""

import logging
import re
import uuid
from typing import Any, Dict, List, Optional

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from access_core.config import get_settings
from access_core.exceptions import AccessCoreError, ErrorCode, Unauthorized

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "An error occurred while processing your request"
MAX_MESSAGE_LENGTH = 500
MAX_LIST_ITEMS = 10

_LEAKY_MESSAGE = re.compile(
    r"api[_-]?key|secret|password|bearer|credential|postgres(ql)?://|"
    r"/home/|/Users/|/var/|/etc/",
    re.IGNORECASE,
)
_IPV4 = re.compile(r"\b\d{1,3}(?:\.\d{1,3}){3}\b")

SAFE_DETAIL_KEYS = frozenset({
    "field",
    "resource_type",
    "resource_id",
    "target_role",
    "current",
    "requested",
    "errors",
    "error_reference",
    "sentry_event_id",
})

# Error codes for framework-raised HTTP errors (routing, method, auth header)
HTTP_STATUS_ERROR_CODES: Dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.NOT_PERMITTED,
    403: ErrorCode.NOT_PERMITTED,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.VALIDATION_ERROR,
    409: ErrorCode.CONCURRENT_MODIFICATION,
    422: ErrorCode.VALIDATION_ERROR,
}


def sanitize_error_message(message: str) -> str:
    """Make a message safe to return to the caller."""
    if not message:
        return message
    if _LEAKY_MESSAGE.search(message):
        return GENERIC_MESSAGE
    message = _IPV4.sub("[ip]", message)
    if len(message) > MAX_MESSAGE_LENGTH:
        message = message[:MAX_MESSAGE_LENGTH] + "..."
    return message


def sanitize_details(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Keep allow-listed keys whose values are primitives or short lists."""
    sanitized: Dict[str, Any] = {}
    for key, value in (details or {}).items():
        if key not in SAFE_DETAIL_KEYS:
            continue
        if isinstance(value, str):
            sanitized[key] = sanitize_error_message(value)
        elif isinstance(value, (bool, int, float)):
            sanitized[key] = value
        elif isinstance(value, list):
            sanitized[key] = [
                item for item in value if isinstance(item, (str, int, float, bool, dict))
            ][:MAX_LIST_ITEMS]
    return sanitized


def format_validation_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Turn pydantic error dicts into field/message pairs."""
    formatted = []
    for error in errors[:MAX_LIST_ITEMS]:
        location = [
            str(part) for part in error.get("loc", ())
            if part not in ("body", "query", "path", "header")
        ]
        field = ".".join(location) or "request"
        error_type = error.get("type", "")

        if error_type == "missing":
            message = f"Field '{field}' is required"
        elif error_type == "literal_error" or "enum" in error_type.lower():
            message = f"Field '{field}' has an invalid value"
        else:
            message = sanitize_error_message(error.get("msg", "Invalid value"))
        formatted.append({"field": field, "message": message})
    return formatted


def create_error_response(
    status_code: int,
    error: str,
    error_code: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "success": False,
        "error": sanitize_error_message(error),
        "error_code": error_code,
    }
    safe_details = sanitize_details(details)
    if safe_details:
        content["details"] = safe_details
    return JSONResponse(status_code=status_code, content=content)


def report_to_sentry(
    exc: Exception,
    request: Optional[Request] = None,
    extra_context: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """
    Send an exception to Sentry, tagged with the request's actor and ID.

    Returns:
        The Sentry event ID, or None when Sentry is not active.
    """
    try:
        if not sentry_sdk.get_client().is_active():
            return None

        with sentry_sdk.push_scope() as scope:
            if request is not None:
                scope.set_context("request", {"method": request.method, "path": request.url.path})
                actor_id = getattr(request.state, "actor_id", None)
                if actor_id:
                    scope.set_user({"id": actor_id})
                request_id = getattr(request.state, "request_id", None)
                if request_id:
                    scope.set_tag("request_id", request_id)
            if extra_context:
                scope.set_context("extra", extra_context)
            return sentry_sdk.capture_exception(exc)
    except Exception as e:
        logger.warning(f"Failed to report exception to Sentry: {e}")
        return None


# =============================================================================
# Exception Handlers
# =============================================================================


async def unauthorized_handler(request: Request, exc: Unauthorized) -> JSONResponse:
    """Render a denial with no reason attached."""
    logger.warning(
        f"Request denied on {request.method} {request.url.path}",
        extra={
            "required_permission": exc.required_permission,
            "reason": exc.internal_message,
            "security_event": "authorization_denied",
        },
    )
    return create_error_response(
        status_code=exc.status_code,
        error=Unauthorized.default_message,
        error_code=exc.error_code.value,
    )


async def access_core_exception_handler(request: Request, exc: AccessCoreError) -> JSONResponse:
    """Render a typed failure from the core with its allow-listed details."""
    summary = f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}"
    if exc.status_code >= 500:
        logger.error(summary, extra={"reason": exc.internal_message}, exc_info=True)
        report_to_sentry(exc, request)
    else:
        logger.info(summary, extra={"error_code": exc.error_code.value, "reason": exc.internal_message})

    return create_error_response(
        status_code=exc.status_code,
        error=exc.message,
        error_code=exc.error_code.value,
        details=exc.details,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = format_validation_errors(exc.errors())
    logger.info(f"Invalid request on {request.method} {request.url.path} ({len(errors)} error(s))")

    message = errors[0]["message"] if len(errors) == 1 else f"Validation failed with {len(errors)} error(s)"
    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        error=message,
        error_code=ErrorCode.VALIDATION_ERROR.value,
        details={"errors": errors},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework HTTP errors in the standard shape."""
    error_code = HTTP_STATUS_ERROR_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, f"HTTP {exc.status_code} on {request.method} {request.url.path}: {detail}")

    return create_error_response(
        status_code=exc.status_code,
        error=detail,
        error_code=error_code.value,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Last resort for bugs.

    The caller gets a short reference to quote to support; the traceback
    goes to the log and Sentry under the same reference.
    """
    error_reference = uuid.uuid4().hex[:8]
    logger.error(
        f"Unhandled exception [ref:{error_reference}] on {request.method} {request.url.path}",
        exc_info=True,
    )
    event_id = report_to_sentry(exc, request, extra_context={"error_reference": error_reference})

    details: Dict[str, Any] = {"error_reference": error_reference}
    if get_settings().is_production:
        message = "An unexpected error occurred. Please try again later."
    else:
        message = f"Internal server error: {type(exc).__name__}"
        if event_id:
            details["sentry_event_id"] = event_id

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error=message,
        error_code=ErrorCode.INTERNAL_ERROR.value,
        details=details,
    )


def register_exception_handlers(app: FastAPI) -> None:
    # Starlette picks the most specific class, so Unauthorized wins over its base
    app.add_exception_handler(Unauthorized, unauthorized_handler)
    app.add_exception_handler(AccessCoreError, access_core_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
