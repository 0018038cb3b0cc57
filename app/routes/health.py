"""
Health check and root endpoints.
"""

import logging
from typing import Dict

import sentry_sdk
from fastapi import APIRouter, Depends

from access_core import __version__
from access_core.container import Services
from app.dependencies import get_services_dependency
from app.models import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/")
async def root() -> Dict:
    return {"message": "BuildPro access API", "version": __version__}


@router.get("/health", response_model=HealthResponse)
async def health_check(
    services: Services = Depends(get_services_dependency),
) -> HealthResponse:
    """
    Report service health.

    Degraded while audit entries are parked in the retry outbox.
    """
    audit_stats = services.audit.stats
    return HealthResponse(
        status="degraded" if audit_stats["outbox_size"] else "healthy",
        version=__version__,
        details={
            "storage": "supabase" if services.settings.is_supabase_configured else "memory",
            "audit": audit_stats,
            "realtime": services.hub.get_stats(),
            "email_relay_configured": services.notifier.is_configured,
            "sentry_active": sentry_sdk.get_client().is_active(),
        },
    )


@router.post("/health/audit/flush")
async def flush_audit_outbox(
    services: Services = Depends(get_services_dependency),
) -> Dict:
    """Retry parked audit entries now."""
    flushed = await services.audit.flush_outbox()
    return {"success": True, "flushed": flushed, "outbox_size": services.audit.outbox_size}
