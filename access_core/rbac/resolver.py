"""
Authorization resolver.

Computes a user's effective permission set for one tenant and answers
allow/deny questions against it.

Resolution order for a requested token "resource.action":
1. A "*" in the user's global overrides allows everything, in every tenant.
   This marks a platform super-actor and needs no membership.
2. Otherwise the user must hold an active membership in exactly this tenant,
   and the tenant must exist and be active. If not, the set is empty.
3. The exact token in the overrides allows.
4. "resource.*" in the overrides or in the role defaults allows.
5. The exact token in the role defaults allows.
6. Anything else is denied.

Overrides are the user's global overrides plus the membership's own
tenant-scoped overrides. A "*" granted as a tenant-scoped override is
ignored.

Security Notes:
- resolve() and check() never raise; data access failures resolve to deny
- Denials raised through require() are logged for security monitoring
"""

import logging
from typing import FrozenSet, Iterable, List, Optional

from access_core.exceptions import Unauthorized
from access_core.rbac.roles import (
    SUPERADMIN_RANK,
    Role,
    get_role_permissions,
    get_role_rank,
)
from access_core.rbac.tokens import (
    GLOBAL_WILDCARD,
    ExactPermission,
    GlobalWildcard,
    ResourceWildcard,
    parse_requested,
    parse_tokens,
)
from access_core.storage.base import TenancyStore
from access_core.types.tenancy import MembershipStatus, TenantStatus, UserStatus

logger = logging.getLogger(__name__)

INACTIVE_USER_STATUSES = frozenset({UserStatus.SUSPENDED, UserStatus.DEACTIVATED})


# =============================================================================
# Effective Permission Set
# =============================================================================


class EffectivePermissionSet:
    """
    The resolved permissions of one user in one tenant.

    Derived, never stored. Tokens are parsed once on construction and every
    allows() call works on the parsed form.
    """

    def __init__(
        self,
        user_id: str,
        tenant_id: str,
        role: Optional[Role] = None,
        overrides: Iterable[str] = (),
        defaults: Iterable[str] = (),
        is_super_actor: bool = False,
    ):
        self.user_id = user_id
        self.tenant_id = tenant_id
        self.role = role
        self.is_super_actor = is_super_actor

        # Tenant-scoped "*" is not a super-actor grant
        self._overrides = [
            t for t in parse_tokens(overrides) if not isinstance(t, GlobalWildcard)
        ]
        self._defaults = parse_tokens(defaults)
        self._role_grants_all = any(isinstance(t, GlobalWildcard) for t in self._defaults)

        raw = {str(t) for t in self._overrides} | {str(t) for t in self._defaults}
        if is_super_actor:
            raw.add(GLOBAL_WILDCARD)
        self.tokens: FrozenSet[str] = frozenset(raw)

    @classmethod
    def empty(cls, user_id: str, tenant_id: str) -> "EffectivePermissionSet":
        return cls(user_id, tenant_id)

    @property
    def is_empty(self) -> bool:
        return not self.tokens

    def allows(self, token: str) -> bool:
        """Check a requested "resource.action" token. Wildcards requested are denied."""
        if self.is_super_actor:
            return True

        requested = parse_requested(token)
        if requested is None:
            return False

        # Exact override
        if any(isinstance(t, ExactPermission) and t.grants(requested) for t in self._overrides):
            return True

        # Resource wildcard in overrides or role defaults
        for t in self._overrides + self._defaults:
            if isinstance(t, ResourceWildcard) and t.grants(requested):
                return True

        # Exact role default
        if any(isinstance(t, ExactPermission) and t.grants(requested) for t in self._defaults):
            return True

        return self._role_grants_all

    def allows_any(self, tokens: Iterable[str]) -> bool:
        return any(self.allows(t) for t in tokens)

    def allows_all(self, tokens: Iterable[str]) -> bool:
        return all(self.allows(t) for t in tokens)

    def to_list(self) -> List[str]:
        return sorted(self.tokens)

    def __contains__(self, token: str) -> bool:
        return self.allows(token)

    def __repr__(self) -> str:
        return (
            f"EffectivePermissionSet(user_id={self.user_id!r}, "
            f"tenant_id={self.tenant_id!r}, role={self.role}, "
            f"tokens={len(self.tokens)}, super={self.is_super_actor})"
        )


# =============================================================================
# Resolver
# =============================================================================


class AuthorizationResolver:
    """
    Resolves effective permissions against durable state.

    Reads only; safe to call concurrently. Every call goes to the store, so
    results never depend on whether a propagation event was delivered.
    """

    def __init__(self, store: TenancyStore):
        self.store = store

    async def is_super_actor(self, user_id: str) -> bool:
        """Check if the user holds the global "*" override."""
        try:
            user = await self.store.get_user(user_id)
        except Exception as e:
            logger.error(
                f"Super-actor lookup failed: {e}",
                extra={"target_user_id": user_id},
            )
            return False
        return bool(
            user
            and user.status not in INACTIVE_USER_STATUSES
            and GLOBAL_WILDCARD in user.permissions
        )

    async def resolve(self, user_id: str, tenant_id: str) -> EffectivePermissionSet:
        """
        Compute the effective permission set for (user_id, tenant_id).

        Never raises. Anything other than an active membership in an active
        tenant resolves to the empty set unless the user is a super-actor.
        """
        try:
            return await self._resolve(user_id, tenant_id)
        except Exception as e:
            logger.error(
                f"Permission resolution failed, denying: {e}",
                extra={"target_user_id": user_id, "target_tenant_id": tenant_id},
            )
            return EffectivePermissionSet.empty(user_id, tenant_id)

    async def _resolve(self, user_id: str, tenant_id: str) -> EffectivePermissionSet:
        if not user_id or not tenant_id:
            return EffectivePermissionSet.empty(user_id, tenant_id)

        user = await self.store.get_user(user_id)
        if user is None or user.status in INACTIVE_USER_STATUSES:
            return EffectivePermissionSet.empty(user_id, tenant_id)

        membership = await self.store.get_membership(user_id, tenant_id)

        if GLOBAL_WILDCARD in user.permissions:
            return EffectivePermissionSet(
                user_id,
                tenant_id,
                role=membership.role if membership else None,
                is_super_actor=True,
            )

        if membership is None or membership.status != MembershipStatus.ACTIVE:
            return EffectivePermissionSet.empty(user_id, tenant_id)

        tenant = await self.store.get_tenant(tenant_id)
        if tenant is None or tenant.status != TenantStatus.ACTIVE:
            return EffectivePermissionSet.empty(user_id, tenant_id)

        return EffectivePermissionSet(
            user_id,
            tenant_id,
            role=membership.role,
            overrides=list(user.permissions) + list(membership.permissions),
            defaults=get_role_permissions(membership.role),
        )

    async def check(self, user_id: str, tenant_id: str, token: str) -> bool:
        """Allow/deny for a single token. Never raises."""
        permissions = await self.resolve(user_id, tenant_id)
        return permissions.allows(token)

    async def check_any(self, user_id: str, tenant_id: str, tokens: Iterable[str]) -> bool:
        permissions = await self.resolve(user_id, tenant_id)
        return permissions.allows_any(tokens)

    async def check_all(self, user_id: str, tenant_id: str, tokens: Iterable[str]) -> bool:
        permissions = await self.resolve(user_id, tenant_id)
        return permissions.allows_all(tokens)

    async def get_actor_rank(self, user_id: str, tenant_id: str) -> Optional[int]:
        """
        Privilege rank of an actor inside a tenant.

        Super-actors rank as SUPERADMIN everywhere. Otherwise the rank of
        the role on an active membership, or None.
        """
        permissions = await self.resolve(user_id, tenant_id)
        if permissions.is_super_actor:
            return SUPERADMIN_RANK
        if permissions.role is None or permissions.is_empty:
            return None
        return get_role_rank(permissions.role)

    async def require(self, user_id: str, tenant_id: str, token: str) -> EffectivePermissionSet:
        """
        Require a permission, raising if it is not held.

        Raises:
            Unauthorized: If the permission is not held.
        """
        permissions = await self.resolve(user_id, tenant_id)
        if not permissions.allows(token):
            log_authorization_failure(user_id, tenant_id, token, permissions.role)
            raise Unauthorized(required_permission=token)
        return permissions


# =============================================================================
# Utility Functions
# =============================================================================


def log_authorization_failure(
    user_id: str,
    tenant_id: Optional[str],
    required_permission: str,
    user_role: Optional[Role],
) -> None:
    """Log an authorization failure for security monitoring."""
    logger.warning(
        "Authorization denied",
        extra={
            "actor": user_id[:8] + "..." if user_id and len(user_id) > 8 else user_id,
            "target_tenant_id": tenant_id,
            "required_permission": required_permission,
            "user_role": user_role.value if user_role else None,
            "security_event": "authorization_denied",
        },
    )
