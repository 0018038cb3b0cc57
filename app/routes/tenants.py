"""
Company (tenant) endpoints.

This module provides REST endpoints for:
- Company creation and updates
- Suspension, reactivation and deletion (platform super-actors)
- Usage against plan limits
- The caller's own memberships
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, status

from access_core.container import Services
from access_core.types.tenancy import RequestContext, TenantUsage
from app.dependencies import get_actor_id, get_request_context, get_services_dependency
from app.models import CreateTenantRequest, MyMembershipsResponse, TenantResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tenants", tags=["tenants"])


@router.post(
    "",
    response_model=TenantResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create company",
    description="Create a company with the given owner as its first admin.",
)
async def create_tenant(
    data: CreateTenantRequest,
    actor_id: str = Depends(get_actor_id),
    context: RequestContext = Depends(get_request_context),
    services: Services = Depends(get_services_dependency),
) -> TenantResponse:
    tenant = await services.tenants.create_tenant(
        name=data.name,
        owner_email=data.owner_email,
        owner_name=data.owner_name,
        plan=data.plan,
        actor_id=actor_id,
        context=context,
    )
    return TenantResponse(tenant=tenant)


@router.get(
    "/mine",
    response_model=MyMembershipsResponse,
    summary="List my memberships",
)
async def list_my_memberships(
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services_dependency),
) -> MyMembershipsResponse:
    memberships = await services.memberships.list_user_memberships(actor_id)
    return MyMembershipsResponse(memberships=memberships)


@router.get("/{tenant_id}", response_model=TenantResponse, summary="Get company")
async def get_tenant(
    tenant_id: str,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services_dependency),
) -> TenantResponse:
    tenant = await services.tenants.get_tenant(tenant_id, actor_id)
    return TenantResponse(tenant=tenant)


@router.patch(
    "/{tenant_id}",
    response_model=TenantResponse,
    summary="Update company",
    description="Update the company name or settings. Other fields are rejected.",
)
async def update_tenant(
    tenant_id: str,
    updates: Dict[str, Any] = Body(...),
    actor_id: str = Depends(get_actor_id),
    context: RequestContext = Depends(get_request_context),
    services: Services = Depends(get_services_dependency),
) -> TenantResponse:
    tenant = await services.tenants.update_tenant(tenant_id, updates, actor_id, context)
    return TenantResponse(tenant=tenant)


@router.delete("/{tenant_id}", summary="Delete company")
async def delete_tenant(
    tenant_id: str,
    actor_id: str = Depends(get_actor_id),
    context: RequestContext = Depends(get_request_context),
    services: Services = Depends(get_services_dependency),
) -> Dict:
    deleted = await services.tenants.delete_tenant(tenant_id, actor_id, context)
    return {"success": deleted, "tenant_id": tenant_id}


@router.post("/{tenant_id}/suspend", response_model=TenantResponse, summary="Suspend company")
async def suspend_tenant(
    tenant_id: str,
    actor_id: str = Depends(get_actor_id),
    context: RequestContext = Depends(get_request_context),
    services: Services = Depends(get_services_dependency),
) -> TenantResponse:
    tenant = await services.tenants.suspend_tenant(tenant_id, actor_id, context)
    return TenantResponse(tenant=tenant)


@router.post("/{tenant_id}/reactivate", response_model=TenantResponse, summary="Reactivate company")
async def reactivate_tenant(
    tenant_id: str,
    actor_id: str = Depends(get_actor_id),
    context: RequestContext = Depends(get_request_context),
    services: Services = Depends(get_services_dependency),
) -> TenantResponse:
    tenant = await services.tenants.reactivate_tenant(tenant_id, actor_id, context)
    return TenantResponse(tenant=tenant)


@router.get("/{tenant_id}/usage", summary="Get company usage")
async def get_tenant_usage(
    tenant_id: str,
    actor_id: str = Depends(get_actor_id),
    services: Services = Depends(get_services_dependency),
) -> Dict:
    usage: TenantUsage = await services.tenants.get_tenant_usage(tenant_id, actor_id)
    return {
        "success": True,
        "usage": usage.model_dump(),
        "users_remaining": usage.users_remaining,
        "at_user_limit": usage.at_user_limit,
    }
