"""
Tenant, user, membership and audit type definitions.

This module defines Pydantic models for:
- Users and their global permission overrides
- Tenants (companies) with plan limits
- Memberships binding a user to a tenant with a role and status
- Audit log entries and queries
- Request context captured for audit entries
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from access_core.rbac.roles import Role


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a new record identifier."""
    return str(uuid.uuid4())


# =============================================================================
# Enums
# =============================================================================


class UserStatus(str, Enum):
    """Account status of a user."""
    ACTIVE = "active"
    INVITED = "invited"
    SUSPENDED = "suspended"
    DEACTIVATED = "deactivated"


class TenantPlan(str, Enum):
    """Subscription plan of a tenant."""
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class TenantStatus(str, Enum):
    """Lifecycle status of a tenant."""
    ACTIVE = "active"
    SUSPENDED = "suspended"


class MembershipStatus(str, Enum):
    """
    Status of a membership.

    removed is terminal: a removed member comes back only through a new
    membership row.
    """
    INVITED = "invited"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REMOVED = "removed"


class AuditStatus(str, Enum):
    """Outcome recorded on an audit entry."""
    SUCCESS = "success"
    FAILURE = "failure"


class AuditAction(str, Enum):
    """Audit verbs written by the lifecycle services."""

    # Tenant actions
    CREATE_COMPANY = "CREATE_COMPANY"
    UPDATE_COMPANY = "UPDATE_COMPANY"
    DELETE_COMPANY = "DELETE_COMPANY"
    SUSPEND_COMPANY = "SUSPEND_COMPANY"
    REACTIVATE_COMPANY = "REACTIVATE_COMPANY"

    # Membership actions
    INVITE_USER = "INVITE_USER"
    REINVITE_USER = "REINVITE_USER"
    ACCEPT_INVITE = "ACCEPT_INVITE"
    UPDATE_ROLE = "UPDATE_ROLE"
    REMOVE_MEMBER = "REMOVE_MEMBER"
    SUSPEND_MEMBER = "SUSPEND_MEMBER"
    REINSTATE_MEMBER = "REINSTATE_MEMBER"

    # Override actions
    GRANT_PERMISSION = "GRANT_PERMISSION"
    REVOKE_PERMISSION = "REVOKE_PERMISSION"


# =============================================================================
# Membership State Machine
# =============================================================================


MEMBERSHIP_TRANSITIONS: Dict[MembershipStatus, FrozenSet[MembershipStatus]] = {
    MembershipStatus.INVITED: frozenset([
        MembershipStatus.ACTIVE,
        MembershipStatus.SUSPENDED,
        MembershipStatus.REMOVED,
    ]),
    MembershipStatus.ACTIVE: frozenset([
        MembershipStatus.SUSPENDED,
        MembershipStatus.REMOVED,
    ]),
    MembershipStatus.SUSPENDED: frozenset([
        MembershipStatus.ACTIVE,
        MembershipStatus.REMOVED,
    ]),
    MembershipStatus.REMOVED: frozenset(),
}


def can_transition(current: MembershipStatus, target: MembershipStatus) -> bool:
    """Check whether a membership may move from one status to another."""
    return target in MEMBERSHIP_TRANSITIONS.get(current, frozenset())


# =============================================================================
# User Models
# =============================================================================


class User(BaseModel):
    """
    A person who can hold memberships.

    permissions holds global override tokens that apply in every tenant
    where the user is an active member. A "*" override marks a platform
    super-actor.
    """
    id: str = Field(default_factory=new_id)
    email: str
    display_name: str = ""
    status: UserStatus = UserStatus.INVITED
    permissions: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# Tenant Models
# =============================================================================


class TenantLimits(BaseModel):
    """Plan limits reported by usage queries."""
    max_users: int = 10
    max_projects: int = 5


PLAN_LIMITS: Dict[TenantPlan, TenantLimits] = {
    TenantPlan.FREE: TenantLimits(max_users=10, max_projects=5),
    TenantPlan.STARTER: TenantLimits(max_users=25, max_projects=20),
    TenantPlan.PRO: TenantLimits(max_users=100, max_projects=100),
    TenantPlan.ENTERPRISE: TenantLimits(max_users=1000, max_projects=1000),
}


class Tenant(BaseModel):
    """A company: the unit of data isolation."""
    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=200)
    plan: TenantPlan = TenantPlan.FREE
    status: TenantStatus = TenantStatus.ACTIVE
    settings: Dict[str, Any] = Field(default_factory=dict)
    limits: TenantLimits = Field(default_factory=TenantLimits)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = 1

    model_config = ConfigDict(from_attributes=True)


# Fields update_tenant may change
TENANT_MUTABLE_FIELDS: FrozenSet[str] = frozenset({"name", "settings"})


class TenantUsage(BaseModel):
    """Membership counts compared against plan limits."""
    tenant_id: str
    plan: TenantPlan
    current_users: int
    pending_invites: int
    max_users: int
    max_projects: int

    @property
    def users_remaining(self) -> int:
        return max(self.max_users - self.current_users - self.pending_invites, 0)

    @property
    def at_user_limit(self) -> bool:
        return self.users_remaining == 0


# =============================================================================
# Membership Models
# =============================================================================


class Membership(BaseModel):
    """
    Binds one user to one tenant with a role and status.

    permissions holds tenant-scoped override tokens granted on top of the
    role defaults. At most one non-removed membership exists per
    (user_id, tenant_id) pair.
    """
    id: str = Field(default_factory=new_id)
    user_id: str
    tenant_id: str
    role: Role
    status: MembershipStatus = MembershipStatus.INVITED
    permissions: List[str] = Field(default_factory=list)
    invited_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = 1

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_active(self) -> bool:
        return self.status == MembershipStatus.ACTIVE


class MemberDetails(BaseModel):
    """Membership joined with the user's profile, for list views."""
    membership: Membership
    email: str
    display_name: str


# =============================================================================
# Audit Log Models
# =============================================================================


class RequestContext(BaseModel):
    """Request metadata captured on audit entries."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None


class AuditLogEntry(BaseModel):
    """
    A single audit event.

    Entries are frozen once built; the audit store exposes no update API.
    """
    id: str = Field(default_factory=new_id)
    tenant_id: str
    actor_id: str
    actor_name: str = ""
    action: str
    resource: str
    resource_id: Optional[str] = None
    changes: Dict[str, Any] = Field(default_factory=dict)
    status: AuditStatus = AuditStatus.SUCCESS
    timestamp: datetime = Field(default_factory=utc_now)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None

    model_config = ConfigDict(frozen=True, from_attributes=True)


class AuditLogQuery(BaseModel):
    """Filters for reading a tenant's audit log."""
    actor_id: Optional[str] = None
    action: Optional[str] = None
    resource: Optional[str] = None
    resource_id: Optional[str] = None
    status: Optional[AuditStatus] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)

    @field_validator("start", "end")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def matches(self, entry: AuditLogEntry) -> bool:
        """Check an entry against every filter except paging."""
        if self.actor_id and entry.actor_id != self.actor_id:
            return False
        if self.action and entry.action != self.action:
            return False
        if self.resource and entry.resource != self.resource:
            return False
        if self.resource_id and entry.resource_id != self.resource_id:
            return False
        if self.status and entry.status != self.status:
            return False
        if self.start and entry.timestamp < self.start:
            return False
        if self.end and entry.timestamp > self.end:
            return False
        return True
