"""
Permission and role information endpoints.

These answer questions about the caller; they never raise for a missing
membership, they just return an empty set.
"""

import logging
from typing import Dict

from fastapi import APIRouter, Depends

from access_core.container import Services
from access_core.rbac.catalog import PERMISSION_CATALOG, get_permission_description
from access_core.rbac.roles import SUPERADMIN_RANK, get_assignable_roles, get_role_rank, list_roles
from app.dependencies import get_actor_id, get_services_dependency, get_tenant_id_from_header
from app.models import MyPermissionsResponse, PermissionCheckRequest, PermissionCheckResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["permissions"])


@router.get(
    "/permissions/me",
    response_model=MyPermissionsResponse,
    summary="Get my permissions",
    description="Resolve the caller's effective permissions in the active tenant.",
)
async def get_my_permissions(
    actor_id: str = Depends(get_actor_id),
    tenant_id: str = Depends(get_tenant_id_from_header),
    services: Services = Depends(get_services_dependency),
) -> MyPermissionsResponse:
    resolved = await services.resolver.resolve(actor_id, tenant_id)

    if resolved.is_super_actor:
        rank = SUPERADMIN_RANK
    elif resolved.role is not None and not resolved.is_empty:
        rank = get_role_rank(resolved.role)
    else:
        rank = -1

    return MyPermissionsResponse(
        user_id=actor_id,
        tenant_id=tenant_id,
        role=resolved.role if not resolved.is_empty else None,
        is_super_actor=resolved.is_super_actor,
        permissions=resolved.to_list(),
        can_assign_roles=get_assignable_roles(rank),
    )


@router.post(
    "/permissions/check",
    response_model=PermissionCheckResponse,
    summary="Check a permission",
)
async def check_permission(
    data: PermissionCheckRequest,
    actor_id: str = Depends(get_actor_id),
    tenant_id: str = Depends(get_tenant_id_from_header),
    services: Services = Depends(get_services_dependency),
) -> PermissionCheckResponse:
    allowed = await services.resolver.check(actor_id, tenant_id, data.permission)
    return PermissionCheckResponse(
        allowed=allowed,
        permission=data.permission,
        tenant_id=tenant_id,
    )


@router.get(
    "/roles",
    summary="List roles",
    description="Roles with descriptions and privilege levels, highest first.",
)
async def get_roles(actor_id: str = Depends(get_actor_id)) -> Dict:
    return {"success": True, "roles": list_roles()}


@router.get(
    "/permissions/catalog",
    summary="List permission tokens",
)
async def get_permission_catalog(actor_id: str = Depends(get_actor_id)) -> Dict:
    return {
        "success": True,
        "permissions": [
            {"permission": token, "description": get_permission_description(token)}
            for token in sorted(PERMISSION_CATALOG)
        ],
    }
