"""
Membership endpoints.

All routes are scoped to the company in the path. Guards (admin rank, peer
protection, last admin) are enforced by MembershipService; failures come
back through the shared exception handlers.
"""

import logging

from fastapi import APIRouter, Depends, Query, status

from access_core.container import Services
from access_core.types.tenancy import RequestContext
from app.dependencies import get_actor_id, get_request_context, get_services_dependency
from app.models import (
    GrantPermissionRequest,
    InviteRequest,
    MembersResponse,
    MembershipResponse,
    UpdateRoleRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tenants/{tenant_id}", tags=["members"])


@router.get("/members", response_model=MembersResponse, summary="List members")
async def list_members(
    tenant_id: str,
    include_removed: bool = Query(default=False),
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services_dependency),
) -> MembersResponse:
    members = await services.memberships.list_members(
        tenant_id, actor_id, include_removed=include_removed
    )
    return MembersResponse(members=members, total=len(members))


@router.post(
    "/members",
    response_model=MembershipResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Invite member",
)
async def invite_member(
    tenant_id: str,
    data: InviteRequest,
    actor_id: str = Depends(get_actor_id),
    context: RequestContext = Depends(get_request_context),
    services: Services = Depends(get_services_dependency),
) -> MembershipResponse:
    membership = await services.memberships.invite(
        tenant_id=tenant_id,
        email=data.email,
        display_name=data.display_name,
        role=data.role,
        actor_id=actor_id,
        context=context,
    )
    return MembershipResponse(membership=membership)


@router.post(
    "/invitations/accept",
    response_model=MembershipResponse,
    summary="Accept invitation",
    description="Activate the caller's pending membership in this company.",
)
async def accept_invitation(
    tenant_id: str,
    actor_id: str = Depends(get_actor_id),
    context: RequestContext = Depends(get_request_context),
    services: Services = Depends(get_services_dependency),
) -> MembershipResponse:
    membership = await services.memberships.accept_invitation(tenant_id, actor_id, context)
    return MembershipResponse(membership=membership)


@router.patch(
    "/members/{user_id}/role",
    response_model=MembershipResponse,
    summary="Update member role",
)
async def update_member_role(
    tenant_id: str,
    user_id: str,
    data: UpdateRoleRequest,
    actor_id: str = Depends(get_actor_id),
    context: RequestContext = Depends(get_request_context),
    services: Services = Depends(get_services_dependency),
) -> MembershipResponse:
    membership = await services.memberships.update_role(
        tenant_id, user_id, data.role, actor_id, context
    )
    return MembershipResponse(membership=membership)


@router.delete(
    "/members/{user_id}",
    response_model=MembershipResponse,
    summary="Remove member",
)
async def remove_member(
    tenant_id: str,
    user_id: str,
    actor_id: str = Depends(get_actor_id),
    context: RequestContext = Depends(get_request_context),
    services: Services = Depends(get_services_dependency),
) -> MembershipResponse:
    membership = await services.memberships.remove(tenant_id, user_id, actor_id, context)
    return MembershipResponse(membership=membership)


@router.post(
    "/members/{user_id}/suspend",
    response_model=MembershipResponse,
    summary="Suspend member",
)
async def suspend_member(
    tenant_id: str,
    user_id: str,
    actor_id: str = Depends(get_actor_id),
    context: RequestContext = Depends(get_request_context),
    services: Services = Depends(get_services_dependency),
) -> MembershipResponse:
    membership = await services.memberships.suspend(tenant_id, user_id, actor_id, context)
    return MembershipResponse(membership=membership)


@router.post(
    "/members/{user_id}/reinstate",
    response_model=MembershipResponse,
    summary="Reinstate member",
)
async def reinstate_member(
    tenant_id: str,
    user_id: str,
    actor_id: str = Depends(get_actor_id),
    context: RequestContext = Depends(get_request_context),
    services: Services = Depends(get_services_dependency),
) -> MembershipResponse:
    membership = await services.memberships.reinstate(tenant_id, user_id, actor_id, context)
    return MembershipResponse(membership=membership)


@router.post(
    "/members/{user_id}/permissions",
    response_model=MembershipResponse,
    summary="Grant permission override",
)
async def grant_permission(
    tenant_id: str,
    user_id: str,
    data: GrantPermissionRequest,
    actor_id: str = Depends(get_actor_id),
    context: RequestContext = Depends(get_request_context),
    services: Services = Depends(get_services_dependency),
) -> MembershipResponse:
    membership = await services.memberships.grant_permission(
        tenant_id, user_id, data.permission, actor_id, context
    )
    return MembershipResponse(membership=membership)


@router.delete(
    "/members/{user_id}/permissions/{permission}",
    response_model=MembershipResponse,
    summary="Revoke permission override",
)
async def revoke_permission(
    tenant_id: str,
    user_id: str,
    permission: str,
    actor_id: str = Depends(get_actor_id),
    context: RequestContext = Depends(get_request_context),
    services: Services = Depends(get_services_dependency),
) -> MembershipResponse:
    membership = await services.memberships.revoke_permission(
        tenant_id, user_id, permission, actor_id, context
    )
    return MembershipResponse(membership=membership)
