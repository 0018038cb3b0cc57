"""
FastAPI dependencies for the access API.

This module provides reusable dependencies for:
- The wired service container
- The authenticated actor and active tenant
- Request context captured on audit entries

Usage:
    from app.dependencies import get_actor_id, get_request_context
"""

from app.dependencies.identity import (
    get_actor_id,
    get_request_context,
    get_services_dependency,
    get_tenant_id_from_header,
    require_tenant_permission,
)

__all__ = [
    "get_actor_id",
    "get_request_context",
    "get_services_dependency",
    "get_tenant_id_from_header",
    "require_tenant_permission",
]
