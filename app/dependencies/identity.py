"""
Identity and context dependencies.

The API sits behind an identity gateway that verifies the session and
forwards the user ID in a trusted header. Nothing here checks credentials.
"""

import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request, status

from access_core.config import get_settings
from access_core.container import Services, get_services
from access_core.exceptions import ValidationError
from access_core.rbac.resolver import EffectivePermissionSet
from access_core.types.tenancy import RequestContext
from access_core.utils.logging import set_request_context

logger = logging.getLogger(__name__)


def get_services_dependency() -> Services:
    """Dependency returning the wired services."""
    return get_services()


async def get_actor_id(request: Request) -> str:
    """
    The authenticated user ID from the trusted header.

    Raises:
        HTTPException: 401 if the header is missing.
    """
    header = get_settings().security.trusted_user_header
    actor_id = (request.headers.get(header) or "").strip()
    if not actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    request.state.actor_id = actor_id
    set_request_context(user_id=actor_id)
    return actor_id


async def get_tenant_id_from_header(request: Request) -> str:
    """
    The active tenant from the tenant header.

    The active tenant is always explicit per request, never session state.
    """
    header = get_settings().security.tenant_header
    tenant_id = (request.headers.get(header) or "").strip()
    if not tenant_id:
        raise ValidationError(f"{header} header is required", field="tenant_id")
    set_request_context(tenant_id=tenant_id)
    return tenant_id


async def get_request_context(request: Request) -> RequestContext:
    """Extract request metadata for audit entries."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None

    return RequestContext(
        ip_address=ip_address,
        user_agent=request.headers.get("User-Agent"),
        request_id=getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID"),
    )


def require_tenant_permission(permission: str) -> Callable:
    """
    Create a dependency that requires a permission in the path's tenant.

    Usage:
        @router.get("/{tenant_id}/things")
        async def list_things(
            permissions: EffectivePermissionSet = Depends(
                require_tenant_permission("things.view")
            ),
        ):
            ...
    """
    async def dependency(
        tenant_id: str,
        actor_id: str = Depends(get_actor_id),
        services: Services = Depends(get_services_dependency),
    ) -> EffectivePermissionSet:
        set_request_context(tenant_id=tenant_id)
        return await services.resolver.require(actor_id, tenant_id, permission)

    return dependency
