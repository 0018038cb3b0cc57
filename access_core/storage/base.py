"""
Storage contracts for tenancy records and the audit log.

Both contracts are storage-engine agnostic. Implementations must provide:
- at most one non-removed membership per (user_id, tenant_id) pair
- compare-and-set updates on tenants and memberships keyed on version,
  raising Conflict when the stored version no longer matches
- a per-tenant roster version for writes that can reduce the number of
  active company admins
- an audit store with no update API
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from access_core.types.tenancy import (
    AuditLogEntry,
    AuditLogQuery,
    Membership,
    Tenant,
    User,
)


class TenancyStore(ABC):
    """Durable users, tenants and memberships."""

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Case-insensitive lookup by email."""

    @abstractmethod
    async def create_user(self, user: User) -> User:
        """Insert a user. Raises Conflict if the email is taken."""

    @abstractmethod
    async def update_user(self, user: User) -> User:
        ...

    # -------------------------------------------------------------------------
    # Tenants
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        ...

    @abstractmethod
    async def create_tenant(self, tenant: Tenant) -> Tenant:
        ...

    @abstractmethod
    async def update_tenant(self, tenant: Tenant, expected_version: int) -> Tenant:
        """
        Write a tenant if its stored version equals expected_version.

        Returns the stored tenant with its version incremented.

        Raises:
            Conflict: If the stored version differs.
            NotFound: If the tenant does not exist.
        """

    @abstractmethod
    async def delete_tenant(self, tenant_id: str) -> bool:
        """Delete a tenant and every membership in it."""

    # -------------------------------------------------------------------------
    # Memberships
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_membership(self, user_id: str, tenant_id: str) -> Optional[Membership]:
        """Return the non-removed membership for the exact pair, if any."""

    @abstractmethod
    async def list_tenant_memberships(
        self,
        tenant_id: str,
        include_removed: bool = False,
    ) -> List[Membership]:
        ...

    @abstractmethod
    async def list_user_memberships(
        self,
        user_id: str,
        include_removed: bool = False,
    ) -> List[Membership]:
        ...

    @abstractmethod
    async def create_membership(self, membership: Membership) -> Membership:
        """
        Insert a membership.

        Raises:
            Conflict: If a non-removed membership already exists for the pair.
        """

    @abstractmethod
    async def update_membership(
        self,
        membership: Membership,
        expected_version: int,
        expected_roster_version: Optional[int] = None,
    ) -> Membership:
        """
        Write a membership if its stored version equals expected_version.

        When expected_roster_version is given, the tenant's roster version
        must also match, and it is incremented by the write.

        Raises:
            Conflict: If either version differs.
        """

    @abstractmethod
    async def get_roster_version(self, tenant_id: str) -> int:
        ...


class AuditStore(ABC):
    """Append-only audit entries."""

    @abstractmethod
    async def insert(self, entry: AuditLogEntry) -> None:
        """
        Persist an entry.

        Raises:
            AuditWriteFailed: If the write did not complete.
        """

    @abstractmethod
    async def select(self, tenant_id: str, query: AuditLogQuery) -> List[AuditLogEntry]:
        """
        Entries for one tenant matching query, most recent first.

        Paged by query.limit and query.offset. Callers always set a limit.
        """

    @abstractmethod
    async def count(self, tenant_id: str, query: Optional[AuditLogQuery] = None) -> int:
        ...

    @abstractmethod
    async def delete_for_tenant(self, tenant_id: str, keep_entry_id: Optional[str] = None) -> int:
        """
        Delete a tenant's entries, except keep_entry_id.

        Only used by tenant deletion.
        """
