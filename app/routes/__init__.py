"""API routes for the access API."""

from .audit import router as audit_router
from .health import router as health_router
from .live import router as live_router
from .members import router as members_router
from .permissions import router as permissions_router
from .tenants import router as tenants_router

__all__ = [
    "audit_router",
    "health_router",
    "live_router",
    "members_router",
    "permissions_router",
    "tenants_router",
]
