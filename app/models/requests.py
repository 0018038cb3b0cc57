"""
Request and response bodies for the access API.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from access_core.rbac.roles import Role
from access_core.types.tenancy import (
    AuditLogEntry,
    MemberDetails,
    Membership,
    Tenant,
    TenantPlan,
)


# =============================================================================
# Permissions
# =============================================================================


class PermissionCheckRequest(BaseModel):
    permission: str = Field(..., min_length=1, max_length=100)


class PermissionCheckResponse(BaseModel):
    allowed: bool
    permission: str
    tenant_id: str


class MyPermissionsResponse(BaseModel):
    success: bool = True
    user_id: str
    tenant_id: str
    role: Optional[Role] = None
    is_super_actor: bool = False
    permissions: List[str]
    can_assign_roles: List[Role] = Field(default_factory=list)


# =============================================================================
# Tenants
# =============================================================================


class CreateTenantRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    owner_email: str = Field(..., min_length=3, max_length=320)
    owner_name: str = Field(default="", max_length=200)
    plan: TenantPlan = TenantPlan.FREE


class TenantResponse(BaseModel):
    success: bool = True
    tenant: Tenant


class MyMembershipsResponse(BaseModel):
    success: bool = True
    memberships: List[Membership]


# =============================================================================
# Members
# =============================================================================


class InviteRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    display_name: str = Field(default="", max_length=200)
    role: Role


class UpdateRoleRequest(BaseModel):
    role: Role


class GrantPermissionRequest(BaseModel):
    permission: str = Field(..., min_length=1, max_length=100)


class MembershipResponse(BaseModel):
    success: bool = True
    membership: Membership


class MembersResponse(BaseModel):
    success: bool = True
    members: List[MemberDetails]
    total: int


# =============================================================================
# Audit
# =============================================================================


class AuditLogsResponse(BaseModel):
    success: bool = True
    entries: List[AuditLogEntry]
    total: int
    limit: int
    offset: int


class HealthResponse(BaseModel):
    status: str
    version: str
    details: Dict[str, Any] = Field(default_factory=dict)
