"""
Session-side permission cache.

Holds the permission list of the signed-in user for the active tenant, so UI
gating does not hit the server on every check. The cache is advisory: the
server resolves again on every request. Any rbac_updated push or channel
resync drops it and fetches again.
"""

import logging
import time
from typing import Awaitable, Callable, List, Optional

from access_core.client.realtime import PropagationClient
from access_core.rbac.resolver import EffectivePermissionSet
from access_core.rbac.tokens import GLOBAL_WILDCARD

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Awaitable[List[str]]]


class SessionPermissionCache:
    """TTL cache of one user's permissions in the active tenant."""

    def __init__(
        self,
        fetch: Fetcher,
        ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            fetch: Coroutine returning the permission tokens for a tenant.
            ttl: Seconds a fetched list stays fresh.
            clock: Monotonic clock, replaceable in tests.
        """
        self._fetch = fetch
        self.ttl = ttl
        self._clock = clock

        self.user_id: Optional[str] = None
        self.tenant_id: Optional[str] = None
        self._permissions: Optional[List[str]] = None
        self._fetched_at = 0.0
        self._channel: Optional[PropagationClient] = None
        self.refreshes = 0

    # =========================================================================
    # Session State
    # =========================================================================

    def login(self, user_id: str) -> None:
        self.user_id = user_id
        self.tenant_id = None
        self.invalidate()

    async def logout(self) -> None:
        if self._channel is not None and self.tenant_id:
            await self._channel.leave_tenant()
        self.user_id = None
        self.tenant_id = None
        self.invalidate()

    async def switch_tenant(self, tenant_id: str) -> List[str]:
        """Make tenant_id the active tenant and resolve permissions for it."""
        self.tenant_id = tenant_id
        self.invalidate()
        if self._channel is not None:
            await self._channel.join_tenant(tenant_id)
        return await self.refresh()

    def invalidate(self) -> None:
        self._permissions = None
        self._fetched_at = 0.0

    @property
    def is_fresh(self) -> bool:
        return (
            self._permissions is not None
            and self._clock() - self._fetched_at < self.ttl
        )

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_permissions(self) -> List[str]:
        """Cached permissions, fetching again when stale or invalidated."""
        if not self.user_id or not self.tenant_id:
            return []
        if self.is_fresh:
            return list(self._permissions)
        return await self.refresh()

    async def refresh(self) -> List[str]:
        """
        Fetch permissions for the active tenant.

        A failed fetch leaves the cache empty, so checks deny until the
        next successful fetch.
        """
        tenant_id = self.tenant_id
        if not self.user_id or not tenant_id:
            return []

        self.refreshes += 1
        try:
            permissions = list(await self._fetch(tenant_id))
        except Exception as e:
            logger.warning(f"Permission refresh failed: {e}", extra={"target_tenant_id": tenant_id})
            self.invalidate()
            return []

        # Tenant switched while the fetch was in flight
        if tenant_id != self.tenant_id:
            return []

        self._permissions = permissions
        self._fetched_at = self._clock()
        return list(permissions)

    async def can(self, token: str) -> bool:
        """Check a token with the same matching rules the server uses."""
        permissions = await self.get_permissions()
        resolved = EffectivePermissionSet(
            self.user_id or "",
            self.tenant_id or "",
            overrides=permissions,
            is_super_actor=GLOBAL_WILDCARD in permissions,
        )
        return resolved.allows(token)

    # =========================================================================
    # Propagation
    # =========================================================================

    def attach(self, channel: PropagationClient) -> None:
        """Drop and refetch on every push and every channel (re)connection."""
        self._channel = channel
        channel.on_rbac_updated = self._on_change
        channel.on_resync = self._on_change
        if self.tenant_id:
            channel.tenant_id = self.tenant_id

    async def _on_change(self) -> None:
        self.invalidate()
        await self.refresh()
