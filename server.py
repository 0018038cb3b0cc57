"""
Backend server for the BuildPro access API.

Assembles the app package around the access_core services: authorization
checks, membership and company lifecycle, the audit log and the permission
propagation channel.
"""

import os
import re
import sys
from contextlib import asynccontextmanager
from typing import Optional

import sentry_sdk
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

# Configure structured logging FIRST, before other imports that use logging
from access_core.utils.logging import REDACTED, redact_sensitive_data, setup_logging

logger = setup_logging(service_name="buildpro-access")

from access_core import __version__
from access_core.config import Settings, get_settings
from access_core.container import Services, create_services, init_services, reset_services
from app.error_handlers import register_exception_handlers
from app.middleware import RequestLoggingMiddleware
from app.routes import (
    audit_router,
    health_router,
    live_router,
    members_router,
    permissions_router,
    tenants_router,
)

# =============================================================================
# Sentry Error Tracking Configuration
# =============================================================================

SENSITIVE_HEADER_PARTS = ("authorization", "cookie", "token", "secret", "key")
_QUERY_SECRET = re.compile(r"((?:token|key|secret|password)[^=&]*=)[^&]*", re.IGNORECASE)


def filter_sensitive_breadcrumbs(crumb, hint):
    """Scrub credentials from breadcrumbs; identity headers are kept for triage."""
    data = crumb.get("data")
    if crumb.get("category") == "http" and isinstance(data, dict):
        headers = data.get("headers")
        if isinstance(headers, dict):
            for name in list(headers):
                if any(part in name.lower() for part in SENSITIVE_HEADER_PARTS):
                    headers[name] = REDACTED
        if isinstance(data.get("url"), str):
            data["url"] = _QUERY_SECRET.sub(r"\1" + REDACTED, data["url"])

    if crumb.get("category") in ("console", "log") and isinstance(crumb.get("message"), str):
        crumb["message"] = redact_sensitive_data(crumb["message"])
    return crumb


def init_sentry(settings: Settings) -> None:
    if not settings.is_sentry_configured:
        logger.info("Sentry DSN not configured, error tracking disabled")
        return

    sentry_settings = settings.sentry
    sentry_sdk.init(
        dsn=sentry_settings.sentry_dsn,
        environment=sentry_settings.sentry_environment,
        sample_rate=1.0,
        traces_sample_rate=sentry_settings.sentry_traces_sample_rate,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        before_breadcrumb=filter_sensitive_breadcrumbs,
        send_default_pii=False,
        attach_stacktrace=True,
        release=sentry_settings.sentry_release,
    )
    logger.info(f"Sentry initialized for environment: {sentry_settings.sentry_environment}")


# =============================================================================
# Application Factory
# =============================================================================


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use, defaults to get_settings().
        services: Pre-built services (tests); built from settings at startup
            otherwise.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        wired = services or await create_services(settings)
        init_services(wired)
        logger.info("Configuration loaded", extra={"config": settings.get_config_summary()})
        yield
        try:
            await wired.audit.flush_outbox()
        except Exception as e:
            logger.warning("Failed to flush audit outbox on shutdown: %s", e)
        reset_services()

    app = FastAPI(
        title="BuildPro Access API",
        description=(
            "Multi-tenant authorization and audit core: permission checks, "
            "membership and company lifecycle, audit log and live permission "
            "updates."
        ),
        version=__version__,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "health", "description": "Health checks and system status"},
            {"name": "permissions", "description": "Effective permissions and roles"},
            {"name": "tenants", "description": "Company lifecycle"},
            {"name": "members", "description": "Membership lifecycle"},
            {"name": "audit", "description": "Audit log queries and export"},
            {"name": "realtime", "description": "Permission propagation channel"},
        ],
    )

    register_exception_handlers(app)

    security_settings = settings.security
    app.add_middleware(
        CORSMiddleware,
        allow_origins=security_settings.origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "X-Request-ID",
            security_settings.trusted_user_header,
            security_settings.tenant_header,
        ],
        expose_headers=["X-Request-ID", "X-Response-Time"],
        max_age=600,
    )

    # Added last so it wraps every other middleware
    if settings.logging.request_logging_enabled:
        app.add_middleware(
            RequestLoggingMiddleware,
            user_header=security_settings.trusted_user_header,
            tenant_header=security_settings.tenant_header,
        )

    app.include_router(health_router)
    app.include_router(permissions_router)
    app.include_router(tenants_router)
    app.include_router(members_router)
    app.include_router(audit_router)
    app.include_router(live_router)

    return app


try:
    settings: Settings = get_settings()
except Exception as e:
    logger.critical(f"Unexpected error loading configuration: {e}")
    sys.exit(1)

init_sentry(settings)
app = create_app(settings)


if __name__ == "__main__":
    reload_enabled = os.environ.get("UVICORN_RELOAD", "false").lower() == "true"
    port = int(os.environ.get("PORT") or os.environ.get("BACKEND_PORT", "8000"))
    uvicorn.run("server:app", host="0.0.0.0", port=port, reload=reload_enabled)
