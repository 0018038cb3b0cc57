"""
Role registry.

Maps each role to its default permission tokens and to a privilege rank.
Ranks are only used for peer-protection and assignment checks; what a role
may actually do is decided by its permission set.

Roles are immutable configuration, not user data.
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Union

from .catalog import PERMISSION_CATALOG, Resource


class Role(str, Enum):
    """Roles a member can hold in a company."""

    SUPERADMIN = "SUPERADMIN"
    COMPANY_ADMIN = "COMPANY_ADMIN"
    PROJECT_MANAGER = "PROJECT_MANAGER"
    FINANCE = "FINANCE"
    SUPERVISOR = "SUPERVISOR"
    OPERATIVE = "OPERATIVE"
    READ_ONLY = "READ_ONLY"


# =============================================================================
# Role Hierarchy
# =============================================================================


# Higher number = more privileges
ROLE_RANKS: Dict[Role, int] = {
    Role.READ_ONLY: 0,
    Role.OPERATIVE: 1,
    Role.SUPERVISOR: 2,
    Role.FINANCE: 3,
    Role.PROJECT_MANAGER: 4,
    Role.COMPANY_ADMIN: 5,
    Role.SUPERADMIN: 6,
}

ADMIN_RANK = ROLE_RANKS[Role.COMPANY_ADMIN]
SUPERADMIN_RANK = ROLE_RANKS[Role.SUPERADMIN]

# Rank reported for unknown roles, below every real role
UNKNOWN_RANK = -1


# =============================================================================
# Role-Permission Mappings
# =============================================================================


_VIEW_ALL = frozenset(
    f"{resource.value}.view"
    for resource in (
        Resource.PROJECTS,
        Resource.TASKS,
        Resource.DOCUMENTS,
        Resource.DAILY_LOGS,
        Resource.RFIS,
        Resource.SAFETY,
        Resource.EQUIPMENT,
        Resource.REPORTS,
        Resource.TENANT,
    )
)

_OPERATIVE = _VIEW_ALL | frozenset([
    "tasks.update",
    "daily_logs.create",
    "safety.create",
    "timesheets.view",
    "timesheets.create",
    "timesheets.update",
    "inventory.view",
])

_SUPERVISOR = _OPERATIVE | frozenset([
    "tasks.create",
    "daily_logs.update",
    "daily_logs.approve",
    "rfis.create",
    "rfis.update",
    "safety.update",
    "equipment.update",
    "inventory.update",
    "timesheets.approve",
    "team.view",
    "members.view",
])

_FINANCE = _VIEW_ALL | frozenset([
    "financials.*",
    "procurement.*",
    "reports.*",
    "timesheets.view",
    "timesheets.approve",
    "clients.view",
    "inventory.view",
    "members.view",
])

_PROJECT_MANAGER = _SUPERVISOR | frozenset([
    "projects.*",
    "tasks.*",
    "team.*",
    "documents.*",
    "daily_logs.*",
    "rfis.*",
    "safety.*",
    "equipment.*",
    "reports.view",
    "reports.create",
    "clients.view",
    "clients.update",
    "financials.view",
    "procurement.view",
    "procurement.create",
])

# Using frozensets for immutability
ROLE_PERMISSIONS: Dict[Role, FrozenSet[str]] = {
    Role.SUPERADMIN: frozenset(["*"]),
    Role.COMPANY_ADMIN: PERMISSION_CATALOG,
    Role.PROJECT_MANAGER: _PROJECT_MANAGER,
    Role.FINANCE: _FINANCE,
    Role.SUPERVISOR: _SUPERVISOR,
    Role.OPERATIVE: _OPERATIVE,
    Role.READ_ONLY: _VIEW_ALL,
}

ROLE_DESCRIPTIONS: Dict[Role, str] = {
    Role.SUPERADMIN: "Full platform access, manages all companies",
    Role.COMPANY_ADMIN: "Full access within their company",
    Role.PROJECT_MANAGER: "Manages projects, tasks, and team assignments",
    Role.FINANCE: "Access to financial data and reports",
    Role.SUPERVISOR: "Oversees field operations and teams",
    Role.OPERATIVE: "Field workers, can update tasks",
    Role.READ_ONLY: "View-only access",
}


# =============================================================================
# Lookups
# =============================================================================


def parse_role(value: Union[Role, str, None]) -> Optional[Role]:
    """Convert a raw value into a Role, or None if it is not a known role."""
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return None


def get_role_permissions(role: Union[Role, str]) -> FrozenSet[str]:
    """
    Get the default permission tokens for a role.

    Unknown roles have no permissions.
    """
    parsed = parse_role(role)
    if parsed is None:
        return frozenset()
    return ROLE_PERMISSIONS[parsed]


def get_role_rank(role: Union[Role, str, None]) -> int:
    """Get the privilege rank of a role (higher = more privileges)."""
    parsed = parse_role(role)
    if parsed is None:
        return UNKNOWN_RANK
    return ROLE_RANKS[parsed]


def is_role_higher(role1: Union[Role, str], role2: Union[Role, str]) -> bool:
    """Check if role1 strictly outranks role2."""
    return get_role_rank(role1) > get_role_rank(role2)


def is_role_higher_or_equal(role1: Union[Role, str], role2: Union[Role, str]) -> bool:
    """Check if role1 ranks at least as high as role2."""
    return get_role_rank(role1) >= get_role_rank(role2)


def can_assign_role(actor_rank: int, role: Union[Role, str]) -> bool:
    """
    Check if an actor of the given rank may hand out a role.

    Rules:
    - Only company admins and above assign roles
    - Nobody can assign a role that outranks their own
    """
    if actor_rank < ADMIN_RANK:
        return False
    target_rank = get_role_rank(role)
    return UNKNOWN_RANK < target_rank <= actor_rank


def get_assignable_roles(actor_rank: int) -> List[Role]:
    """List the roles an actor of the given rank may assign, highest first."""
    return [
        role
        for role in sorted(ROLE_RANKS, key=ROLE_RANKS.get, reverse=True)
        if can_assign_role(actor_rank, role)
    ]


def get_role_description(role: Union[Role, str]) -> str:
    """Get a human-readable description of a role."""
    parsed = parse_role(role)
    if parsed is None:
        return str(role)
    return ROLE_DESCRIPTIONS[parsed]


def get_role_display_name(role: Role) -> str:
    """Display name for a role, e.g. PROJECT_MANAGER -> Project Manager."""
    if role == Role.SUPERADMIN:
        return "Superadmin"
    return role.value.replace("_", " ").title()


def list_roles() -> List[Dict[str, Any]]:
    """Role metadata for display, highest rank first."""
    return [
        {
            "id": role.value,
            "name": get_role_display_name(role),
            "description": ROLE_DESCRIPTIONS[role],
            "level": ROLE_RANKS[role],
        }
        for role in sorted(ROLE_RANKS, key=ROLE_RANKS.get, reverse=True)
    ]
