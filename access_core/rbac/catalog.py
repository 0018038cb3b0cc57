"""
Permission catalog.

The vocabulary of capability tokens the system understands. Tokens follow
the format ``resource.action``. The catalog is pure data: tokens that are not
listed here are never rejected, but they only ever match an identical exact
grant.
"""

from enum import Enum
from typing import Dict, FrozenSet, List, Tuple


# =============================================================================
# Vocabulary
# =============================================================================


class Resource(str, Enum):
    """Resources a permission can apply to."""

    PROJECTS = "projects"
    TASKS = "tasks"
    TEAM = "team"
    DOCUMENTS = "documents"
    DAILY_LOGS = "daily_logs"
    RFIS = "rfis"
    SAFETY = "safety"
    EQUIPMENT = "equipment"
    INVENTORY = "inventory"
    TIMESHEETS = "timesheets"
    FINANCIALS = "financials"
    PROCUREMENT = "procurement"
    REPORTS = "reports"
    CLIENTS = "clients"

    # Administrative resources
    TENANT = "tenant"
    MEMBERS = "members"
    ROLES = "roles"
    SECURITY = "security"


class Action(str, Enum):
    """Actions a permission can grant on a resource."""

    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"
    EXPORT = "export"
    MANAGE = "manage"


_CRUD = (Action.VIEW, Action.CREATE, Action.UPDATE, Action.DELETE)

# Actions that exist for each resource
RESOURCE_ACTIONS: Dict[Resource, Tuple[Action, ...]] = {
    Resource.PROJECTS: _CRUD,
    Resource.TASKS: _CRUD,
    Resource.TEAM: _CRUD,
    Resource.DOCUMENTS: _CRUD,
    Resource.DAILY_LOGS: _CRUD + (Action.APPROVE,),
    Resource.RFIS: _CRUD,
    Resource.SAFETY: _CRUD,
    Resource.EQUIPMENT: _CRUD,
    Resource.INVENTORY: _CRUD,
    Resource.TIMESHEETS: _CRUD + (Action.APPROVE,),
    Resource.FINANCIALS: _CRUD + (Action.APPROVE, Action.EXPORT),
    Resource.PROCUREMENT: _CRUD + (Action.APPROVE,),
    Resource.REPORTS: (Action.VIEW, Action.CREATE, Action.EXPORT),
    Resource.CLIENTS: _CRUD,
    Resource.TENANT: (Action.VIEW, Action.UPDATE, Action.MANAGE),
    Resource.MEMBERS: (Action.VIEW, Action.MANAGE),
    Resource.ROLES: (Action.VIEW, Action.MANAGE),
    Resource.SECURITY: (Action.VIEW, Action.EXPORT),
}


def make_token(resource: Resource, action: Action) -> str:
    """Build a ``resource.action`` token string."""
    return f"{resource.value}.{action.value}"


PERMISSION_CATALOG: FrozenSet[str] = frozenset(
    make_token(resource, action)
    for resource, actions in RESOURCE_ACTIONS.items()
    for action in actions
)


# =============================================================================
# Lookups
# =============================================================================


def is_known_permission(token: str) -> bool:
    """Check whether a token is part of the catalog."""
    return token in PERMISSION_CATALOG


def permissions_for_resource(resource: str) -> List[str]:
    """
    List every catalog token under a resource.

    Args:
        resource: Resource name (e.g. "projects").

    Returns:
        Sorted list of tokens, empty for an unknown resource.
    """
    try:
        key = Resource(resource)
    except ValueError:
        return []
    return sorted(make_token(key, action) for action in RESOURCE_ACTIONS[key])


_ACTION_VERBS: Dict[Action, str] = {
    Action.VIEW: "View",
    Action.CREATE: "Create",
    Action.UPDATE: "Update",
    Action.DELETE: "Delete",
    Action.APPROVE: "Approve",
    Action.EXPORT: "Export",
    Action.MANAGE: "Manage",
}

# Descriptions that do not follow the "<Verb> <resource>" pattern
_SPECIAL_DESCRIPTIONS: Dict[str, str] = {
    "tenant.view": "View company details",
    "tenant.update": "Update company name and settings",
    "tenant.manage": "Administer the company, including inviting members",
    "members.view": "View company members",
    "members.manage": "Change member roles, permissions and status",
    "roles.view": "View roles and their permissions",
    "roles.manage": "Manage role assignments",
    "security.view": "View audit logs and security events",
    "security.export": "Export audit logs",
    "daily_logs.approve": "Approve daily site logs",
    "timesheets.approve": "Approve timesheets",
}


def get_permission_description(token: str) -> str:
    """
    Get a human-readable description of a permission token.

    Unknown tokens are described by the token itself.
    """
    if token == "*":
        return "Full platform access"
    if token in _SPECIAL_DESCRIPTIONS:
        return _SPECIAL_DESCRIPTIONS[token]

    resource, _, action = token.partition(".")
    if action == "*":
        return f"All actions on {resource.replace('_', ' ')}"
    if token not in PERMISSION_CATALOG:
        return token
    return f"{_ACTION_VERBS[Action(action)]} {resource.replace('_', ' ')}"
