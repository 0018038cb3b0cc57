"""Type definitions for the access core."""

from .tenancy import (
    MEMBERSHIP_TRANSITIONS,
    PLAN_LIMITS,
    TENANT_MUTABLE_FIELDS,
    AuditAction,
    AuditLogEntry,
    AuditLogQuery,
    AuditStatus,
    MemberDetails,
    Membership,
    MembershipStatus,
    RequestContext,
    Tenant,
    TenantLimits,
    TenantPlan,
    TenantStatus,
    TenantUsage,
    User,
    UserStatus,
    can_transition,
    new_id,
    utc_now,
)

__all__ = [
    "MEMBERSHIP_TRANSITIONS",
    "PLAN_LIMITS",
    "TENANT_MUTABLE_FIELDS",
    "AuditAction",
    "AuditLogEntry",
    "AuditLogQuery",
    "AuditStatus",
    "MemberDetails",
    "Membership",
    "MembershipStatus",
    "RequestContext",
    "Tenant",
    "TenantLimits",
    "TenantPlan",
    "TenantStatus",
    "TenantUsage",
    "User",
    "UserStatus",
    "can_transition",
    "new_id",
    "utc_now",
]
