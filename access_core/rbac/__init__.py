"""
Role-based access control primitives.

- catalog: the vocabulary of permission tokens
- tokens: typed parsing and matching of permission tokens
- roles: role defaults and privilege ranks
- resolver: effective permission sets per (user, tenant)

The resolver is imported from access_core.rbac.resolver directly since it
depends on the storage layer.
"""

from .catalog import (
    PERMISSION_CATALOG,
    Action,
    Resource,
    get_permission_description,
    is_known_permission,
    permissions_for_resource,
)
from .roles import (
    ADMIN_RANK,
    ROLE_PERMISSIONS,
    ROLE_RANKS,
    SUPERADMIN_RANK,
    Role,
    can_assign_role,
    get_assignable_roles,
    get_role_description,
    get_role_permissions,
    get_role_rank,
    is_role_higher,
    is_role_higher_or_equal,
    list_roles,
    parse_role,
)
from .tokens import (
    ExactPermission,
    GlobalWildcard,
    PermissionToken,
    ResourceWildcard,
    parse_requested,
    parse_token,
)

__all__ = [
    # Catalog
    "PERMISSION_CATALOG",
    "Action",
    "Resource",
    "get_permission_description",
    "is_known_permission",
    "permissions_for_resource",
    # Roles
    "ADMIN_RANK",
    "ROLE_PERMISSIONS",
    "ROLE_RANKS",
    "SUPERADMIN_RANK",
    "Role",
    "can_assign_role",
    "get_assignable_roles",
    "get_role_description",
    "get_role_permissions",
    "get_role_rank",
    "is_role_higher",
    "is_role_higher_or_equal",
    "list_roles",
    "parse_role",
    # Tokens
    "ExactPermission",
    "GlobalWildcard",
    "PermissionToken",
    "ResourceWildcard",
    "parse_requested",
    "parse_token",
]
