"""
Structured logging for the access core.

One root handler carries two filters and one of two formatters:

- RequestContextFilter stamps every record with the request, actor and
  tenant of the current request (ContextVars set by the HTTP middleware)
- SensitiveDataFilter scrubs credentials from messages and arguments
- JSONFormatter (production) emits one JSON object per line; records with a
  ``security_event`` extra are lifted to a top-level ``security`` block so
  denials and audit failures can be alerted on directly
- DevelopmentFormatter prints a compact coloured line

Modules log through ``logging.getLogger(__name__)`` and pass structured
fields with ``extra={...}``. The keys ``user_id`` and ``tenant_id`` are
reserved for the request context; use ``actor``/``target_user_id``/
``target_tenant_id`` in extras instead.
"""

import json
import logging
import os
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
tenant_id_var: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)

REDACTED = "[REDACTED]"

SENSITIVE_PATTERNS: List[re.Pattern] = [
    re.compile(r'bearer\s+[\w.~+/-]+=*', re.IGNORECASE),
    re.compile(r'(api[_-]?key|secret|password|token|authorization)["\']?\s*[:=]\s*["\']?[^\s,}"\']+', re.IGNORECASE),
    re.compile(r'eyJ[\w-]+\.eyJ[\w-]+\.[\w-]+'),  # JWT
    re.compile(r'postgres(?:ql)?://\S+', re.IGNORECASE),
]

# Attributes every LogRecord has; anything else on a record came from extra={}
_RECORD_ATTRS: FrozenSet[str] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "request_id", "user_id", "tenant_id"}

_CONTEXT_FIELDS = ("request_id", "user_id", "tenant_id")


def redact_sensitive_data(message: str) -> str:
    """Replace credentials in a string with [REDACTED]."""
    if not message:
        return message
    for pattern in SENSITIVE_PATTERNS:
        message = pattern.sub(REDACTED, message)
    return message


def _extras(record: logging.LogRecord) -> Dict[str, Any]:
    extras = {}
    for key, value in record.__dict__.items():
        if key in _RECORD_ATTRS or key.startswith("_"):
            continue
        extras[key] = redact_sensitive_data(value) if isinstance(value, str) else value
    return extras


class RequestContextFilter(logging.Filter):
    """Stamp records with the current request, actor and tenant."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        record.user_id = user_id_var.get() or "-"
        record.tenant_id = tenant_id_var.get() or "-"
        return True


class SensitiveDataFilter(logging.Filter):
    """Scrub credentials from the message and its string arguments."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_sensitive_data(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(
                redact_sensitive_data(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line, for log aggregation in production.

    Example:
        {"timestamp": "...", "level": "WARNING", "logger": "access_core.rbac.resolver",
         "message": "Authorization denied", "service": "buildpro-access",
         "context": {"request_id": "...", "user_id": "...", "tenant_id": "..."},
         "security": {"event": "authorization_denied"},
         "extra": {"required_permission": "members.manage"}}
    """

    def __init__(self, service_name: str = "buildpro-access"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "context": {field: getattr(record, field, "-") for field in _CONTEXT_FIELDS},
        }

        extras = _extras(record)
        security_event = extras.pop("security_event", None)
        if security_event:
            payload["security"] = {"event": security_event}
        if extras:
            payload["extra"] = extras

        if record.levelno >= logging.ERROR:
            payload["source"] = f"{record.pathname}:{record.lineno} in {record.funcName}"
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=False)


class DevelopmentFormatter(logging.Formatter):
    """
    Coloured single-line output for local development.

    Format: HH:MM:SS.mmm LEVEL    req/actor@tenant logger - message {extras}
    """

    COLORS: Dict[str, str] = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    SECURITY = "\033[1;31m"
    DIM = "\033[2m"
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        request_id = getattr(record, "request_id", "-")[:8]
        actor = getattr(record, "user_id", "-")[:8]
        tenant = getattr(record, "tenant_id", "-")[:8]

        extras = _extras(record)
        security_event = extras.pop("security_event", None)
        marker = f"{self.SECURITY}[{security_event}]{self.RESET} " if security_event else ""

        line = (
            f"{self.DIM}{timestamp}{self.RESET} {color}{record.levelname:8}{self.RESET} "
            f"{self.DIM}{request_id}/{actor}@{tenant}{self.RESET} "
            f"{marker}{record.name} - {record.getMessage()}"
        )
        if extras:
            line += f" {self.DIM}{extras}{self.RESET}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("true", "1", "yes")


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    service_name: str = "buildpro-access",
    level: Optional[str] = None,
    json_format: Optional[bool] = None,
) -> logging.Logger:
    """
    Configure the root logger. Call once at startup.

    Args:
        service_name: Reported in every JSON record.
        level: Level name; defaults to LOG_LEVEL, then INFO.
        json_format: Force the formatter; defaults to JSON when
            LOG_FORMAT_JSON is set or ENVIRONMENT is production.

    Returns:
        The root logger.
    """
    log_level = _resolve_level(level)
    if json_format is None:
        environment = os.environ.get("ENVIRONMENT", "development").lower()
        json_format = _env_flag("LOG_FORMAT_JSON") or environment in ("production", "prod")

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(RequestContextFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JSONFormatter(service_name) if json_format else DevelopmentFormatter())
    root_logger.addHandler(handler)

    for noisy in ("uvicorn.access", "httpx", "httpcore", "websockets", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    root_logger.info(
        "Logging configured",
        extra={
            "log_level": logging.getLevelName(log_level),
            "format": "json" if json_format else "development",
            "service": service_name,
        },
    )
    return root_logger


# =============================================================================
# Request Context
# =============================================================================


def set_request_context(
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
) -> None:
    """Set the request context for the current task. None leaves a field as is."""
    if request_id is not None:
        request_id_var.set(request_id)
    if user_id is not None:
        user_id_var.set(user_id)
    if tenant_id is not None:
        tenant_id_var.set(tenant_id)


def clear_request_context() -> None:
    request_id_var.set(None)
    user_id_var.set(None)
    tenant_id_var.set(None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def get_user_id() -> Optional[str]:
    return user_id_var.get()


def get_tenant_id() -> Optional[str]:
    return tenant_id_var.get()
