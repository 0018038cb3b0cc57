"""
In-memory stores for tests and local development.

Every read returns a deep copy so callers can never mutate stored state
without going through an update method. Each check-and-write runs under a
lock with no await in between, which makes it atomic on the event loop.
"""

import asyncio
import itertools
import logging
from typing import Dict, List, Optional, Tuple

from access_core.exceptions import AuditWriteFailed, Conflict, NotFound
from access_core.storage.base import AuditStore, TenancyStore
from access_core.types.tenancy import (
    AuditLogEntry,
    AuditLogQuery,
    Membership,
    MembershipStatus,
    Tenant,
    User,
    utc_now,
)

logger = logging.getLogger(__name__)


class InMemoryTenancyStore(TenancyStore):
    """Dictionary-backed TenancyStore."""

    def __init__(self):
        self._users: Dict[str, User] = {}
        self._tenants: Dict[str, Tenant] = {}
        self._memberships: Dict[str, Membership] = {}
        self._roster_versions: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    # Users

    async def get_user(self, user_id: str) -> Optional[User]:
        user = self._users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        wanted = email.strip().lower()
        for user in self._users.values():
            if user.email.lower() == wanted:
                return user.model_copy(deep=True)
        return None

    async def create_user(self, user: User) -> User:
        async with self._lock:
            if any(u.email.lower() == user.email.lower() for u in self._users.values()):
                raise Conflict("user", user.email)
            self._users[user.id] = user.model_copy(deep=True)
        return user.model_copy(deep=True)

    async def update_user(self, user: User) -> User:
        async with self._lock:
            if user.id not in self._users:
                raise NotFound("user", user.id)
            stored = user.model_copy(update={"updated_at": utc_now()}, deep=True)
            self._users[user.id] = stored
        return stored.model_copy(deep=True)

    # Tenants

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        tenant = self._tenants.get(tenant_id)
        return tenant.model_copy(deep=True) if tenant else None

    async def create_tenant(self, tenant: Tenant) -> Tenant:
        async with self._lock:
            if tenant.id in self._tenants:
                raise Conflict("tenant", tenant.id)
            self._tenants[tenant.id] = tenant.model_copy(deep=True)
            self._roster_versions[tenant.id] = 0
        return tenant.model_copy(deep=True)

    async def update_tenant(self, tenant: Tenant, expected_version: int) -> Tenant:
        async with self._lock:
            current = self._tenants.get(tenant.id)
            if current is None:
                raise NotFound("tenant", tenant.id)
            if current.version != expected_version:
                raise Conflict("tenant", tenant.id)
            stored = tenant.model_copy(
                update={"version": expected_version + 1, "updated_at": utc_now()},
                deep=True,
            )
            self._tenants[tenant.id] = stored
        return stored.model_copy(deep=True)

    async def delete_tenant(self, tenant_id: str) -> bool:
        async with self._lock:
            if self._tenants.pop(tenant_id, None) is None:
                return False
            self._roster_versions.pop(tenant_id, None)
            for membership_id in [
                m.id for m in self._memberships.values() if m.tenant_id == tenant_id
            ]:
                del self._memberships[membership_id]
        return True

    # Memberships

    def _current_membership(self, user_id: str, tenant_id: str) -> Optional[Membership]:
        for membership in self._memberships.values():
            if (
                membership.user_id == user_id
                and membership.tenant_id == tenant_id
                and membership.status != MembershipStatus.REMOVED
            ):
                return membership
        return None

    async def get_membership(self, user_id: str, tenant_id: str) -> Optional[Membership]:
        membership = self._current_membership(user_id, tenant_id)
        return membership.model_copy(deep=True) if membership else None

    async def list_tenant_memberships(
        self,
        tenant_id: str,
        include_removed: bool = False,
    ) -> List[Membership]:
        return [
            m.model_copy(deep=True)
            for m in sorted(self._memberships.values(), key=lambda m: m.created_at)
            if m.tenant_id == tenant_id
            and (include_removed or m.status != MembershipStatus.REMOVED)
        ]

    async def list_user_memberships(
        self,
        user_id: str,
        include_removed: bool = False,
    ) -> List[Membership]:
        return [
            m.model_copy(deep=True)
            for m in sorted(self._memberships.values(), key=lambda m: m.created_at)
            if m.user_id == user_id
            and (include_removed or m.status != MembershipStatus.REMOVED)
        ]

    async def create_membership(self, membership: Membership) -> Membership:
        async with self._lock:
            if self._current_membership(membership.user_id, membership.tenant_id):
                raise Conflict(
                    "membership",
                    membership.id,
                    internal_message="non-removed membership already exists for pair",
                )
            self._memberships[membership.id] = membership.model_copy(deep=True)
        return membership.model_copy(deep=True)

    async def update_membership(
        self,
        membership: Membership,
        expected_version: int,
        expected_roster_version: Optional[int] = None,
    ) -> Membership:
        async with self._lock:
            current = self._memberships.get(membership.id)
            if current is None:
                raise NotFound("membership", membership.id)
            if current.version != expected_version:
                raise Conflict("membership", membership.id)
            if expected_roster_version is not None:
                roster = self._roster_versions.get(membership.tenant_id, 0)
                if roster != expected_roster_version:
                    raise Conflict(
                        "membership",
                        membership.id,
                        internal_message="tenant roster changed concurrently",
                    )
                self._roster_versions[membership.tenant_id] = roster + 1
            stored = membership.model_copy(
                update={"version": expected_version + 1, "updated_at": utc_now()},
                deep=True,
            )
            self._memberships[membership.id] = stored
        return stored.model_copy(deep=True)

    async def get_roster_version(self, tenant_id: str) -> int:
        return self._roster_versions.get(tenant_id, 0)


class InMemoryAuditStore(AuditStore):
    """
    List-backed AuditStore.

    Set fail_writes to simulate a durable store outage.
    """

    def __init__(self):
        self._entries: List[Tuple[int, AuditLogEntry]] = []
        self._sequence = itertools.count()
        self.fail_writes = False

    async def insert(self, entry: AuditLogEntry) -> None:
        if self.fail_writes:
            raise AuditWriteFailed(entry.id, RuntimeError("audit store unavailable"))
        self._entries.append((next(self._sequence), entry))

    def _matching(self, tenant_id: str, query: Optional[AuditLogQuery]) -> List[AuditLogEntry]:
        query = query or AuditLogQuery()
        ordered = sorted(
            (item for item in self._entries if item[1].tenant_id == tenant_id),
            key=lambda item: (item[1].timestamp, item[0]),
            reverse=True,
        )
        return [entry for _, entry in ordered if query.matches(entry)]

    async def select(self, tenant_id: str, query: AuditLogQuery) -> List[AuditLogEntry]:
        matching = self._matching(tenant_id, query)
        end = query.offset + query.limit if query.limit is not None else None
        return matching[query.offset:end]

    async def count(self, tenant_id: str, query: Optional[AuditLogQuery] = None) -> int:
        return len(self._matching(tenant_id, query))

    async def delete_for_tenant(self, tenant_id: str, keep_entry_id: Optional[str] = None) -> int:
        before = len(self._entries)
        self._entries = [
            item for item in self._entries
            if item[1].tenant_id != tenant_id or item[1].id == keep_entry_id
        ]
        deleted = before - len(self._entries)
        logger.info(
            "Audit entries purged",
            extra={"target_tenant_id": tenant_id, "deleted": deleted},
        )
        return deleted
