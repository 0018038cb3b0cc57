"""API request and response models."""

from .requests import (
    AuditLogsResponse,
    CreateTenantRequest,
    GrantPermissionRequest,
    HealthResponse,
    InviteRequest,
    MembersResponse,
    MembershipResponse,
    MyMembershipsResponse,
    MyPermissionsResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    TenantResponse,
    UpdateRoleRequest,
)

__all__ = [
    "AuditLogsResponse",
    "CreateTenantRequest",
    "GrantPermissionRequest",
    "HealthResponse",
    "InviteRequest",
    "MembersResponse",
    "MembershipResponse",
    "MyMembershipsResponse",
    "MyPermissionsResponse",
    "PermissionCheckRequest",
    "PermissionCheckResponse",
    "TenantResponse",
    "UpdateRoleRequest",
]
