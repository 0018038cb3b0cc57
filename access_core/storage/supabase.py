"""
Supabase-backed stores.

Tables:
- users: id, email, display_name, status, permissions (jsonb), timestamps
- companies: id, name, plan, status, settings (jsonb), max_users,
  max_projects, timestamps, version, roster_version
- memberships: id, user_id, tenant_id, role, status, permissions (jsonb),
  invited_by, timestamps, version
- audit_logs: one row per AuditLogEntry

Compare-and-set writes filter on the version column and treat an empty
result as a lost race. An admin-reducing write bumps the tenant's
roster_version first and releases it again if the membership write loses.
The "one non-removed membership per pair" rule is backed by a partial
unique index on memberships(user_id, tenant_id) where status <> 'removed'.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from access_core.exceptions import AuditWriteFailed, Conflict, NotFound
from access_core.rbac.roles import Role
from access_core.storage.base import AuditStore, TenancyStore
from access_core.types.tenancy import (
    AuditLogEntry,
    AuditLogQuery,
    AuditStatus,
    Membership,
    MembershipStatus,
    Tenant,
    TenantLimits,
    TenantPlan,
    TenantStatus,
    User,
    UserStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

USERS_TABLE = "users"
TENANTS_TABLE = "companies"
MEMBERSHIPS_TABLE = "memberships"
AUDIT_TABLE = "audit_logs"

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


def _parse_ts(value: Optional[str]) -> datetime:
    if not value:
        return utc_now()
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _is_unique_violation(exc: Exception) -> bool:
    return getattr(exc, "code", None) == UNIQUE_VIOLATION


class SupabaseTenancyStore(TenancyStore):
    """TenancyStore on the async Supabase client."""

    def __init__(self, db_client: Any):
        """
        Args:
            db_client: Async Supabase client.
        """
        self.db = db_client

    # =========================================================================
    # Users
    # =========================================================================

    async def get_user(self, user_id: str) -> Optional[User]:
        result = await self.db.table(USERS_TABLE).select("*").eq(
            "id", user_id
        ).limit(1).execute()
        rows = result.data or []
        return self._map_user(rows[0]) if rows else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        # Emails are stored lowercased; ilike would treat _ and % as wildcards
        result = await self.db.table(USERS_TABLE).select("*").eq(
            "email", email.strip().lower()
        ).limit(1).execute()
        rows = result.data or []
        return self._map_user(rows[0]) if rows else None

    async def create_user(self, user: User) -> User:
        try:
            result = await self.db.table(USERS_TABLE).insert(
                self._user_row(user)
            ).execute()
        except Exception as e:
            if _is_unique_violation(e):
                raise Conflict("user", user.email) from e
            raise
        return self._map_user(result.data[0])

    async def update_user(self, user: User) -> User:
        row = self._user_row(user)
        row["updated_at"] = utc_now().isoformat()
        result = await self.db.table(USERS_TABLE).update(row).eq(
            "id", user.id
        ).execute()
        if not result.data:
            raise NotFound("user", user.id)
        return self._map_user(result.data[0])

    # =========================================================================
    # Tenants
    # =========================================================================

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        result = await self.db.table(TENANTS_TABLE).select("*").eq(
            "id", tenant_id
        ).limit(1).execute()
        rows = result.data or []
        return self._map_tenant(rows[0]) if rows else None

    async def create_tenant(self, tenant: Tenant) -> Tenant:
        row = self._tenant_row(tenant)
        row["roster_version"] = 0
        result = await self.db.table(TENANTS_TABLE).insert(row).execute()
        return self._map_tenant(result.data[0])

    async def update_tenant(self, tenant: Tenant, expected_version: int) -> Tenant:
        row = self._tenant_row(tenant)
        row["version"] = expected_version + 1
        row["updated_at"] = utc_now().isoformat()
        result = await self.db.table(TENANTS_TABLE).update(row).eq(
            "id", tenant.id
        ).eq("version", expected_version).execute()
        if not result.data:
            if await self.get_tenant(tenant.id) is None:
                raise NotFound("tenant", tenant.id)
            raise Conflict("tenant", tenant.id)
        return self._map_tenant(result.data[0])

    async def delete_tenant(self, tenant_id: str) -> bool:
        await self.db.table(MEMBERSHIPS_TABLE).delete().eq(
            "tenant_id", tenant_id
        ).execute()
        result = await self.db.table(TENANTS_TABLE).delete().eq(
            "id", tenant_id
        ).execute()
        return bool(result.data)

    # =========================================================================
    # Memberships
    # =========================================================================

    async def get_membership(self, user_id: str, tenant_id: str) -> Optional[Membership]:
        result = await self.db.table(MEMBERSHIPS_TABLE).select("*").eq(
            "user_id", user_id
        ).eq("tenant_id", tenant_id).neq(
            "status", MembershipStatus.REMOVED.value
        ).limit(1).execute()
        rows = result.data or []
        return self._map_membership(rows[0]) if rows else None

    async def list_tenant_memberships(
        self,
        tenant_id: str,
        include_removed: bool = False,
    ) -> List[Membership]:
        query = self.db.table(MEMBERSHIPS_TABLE).select("*").eq("tenant_id", tenant_id)
        if not include_removed:
            query = query.neq("status", MembershipStatus.REMOVED.value)
        result = await query.order("created_at", desc=False).execute()
        return [self._map_membership(row) for row in (result.data or [])]

    async def list_user_memberships(
        self,
        user_id: str,
        include_removed: bool = False,
    ) -> List[Membership]:
        query = self.db.table(MEMBERSHIPS_TABLE).select("*").eq("user_id", user_id)
        if not include_removed:
            query = query.neq("status", MembershipStatus.REMOVED.value)
        result = await query.order("created_at", desc=False).execute()
        return [self._map_membership(row) for row in (result.data or [])]

    async def create_membership(self, membership: Membership) -> Membership:
        try:
            result = await self.db.table(MEMBERSHIPS_TABLE).insert(
                self._membership_row(membership)
            ).execute()
        except Exception as e:
            if _is_unique_violation(e):
                raise Conflict(
                    "membership",
                    membership.id,
                    internal_message="non-removed membership already exists for pair",
                ) from e
            raise
        return self._map_membership(result.data[0])

    async def update_membership(
        self,
        membership: Membership,
        expected_version: int,
        expected_roster_version: Optional[int] = None,
    ) -> Membership:
        if expected_roster_version is not None:
            roster = await self.db.table(TENANTS_TABLE).update({
                "roster_version": expected_roster_version + 1,
            }).eq("id", membership.tenant_id).eq(
                "roster_version", expected_roster_version
            ).execute()
            if not roster.data:
                raise Conflict(
                    "membership",
                    membership.id,
                    internal_message="tenant roster changed concurrently",
                )

        row = self._membership_row(membership)
        row["version"] = expected_version + 1
        row["updated_at"] = utc_now().isoformat()
        result = await self.db.table(MEMBERSHIPS_TABLE).update(row).eq(
            "id", membership.id
        ).eq("version", expected_version).execute()
        if not result.data:
            if expected_roster_version is not None:
                await self._release_roster(membership.tenant_id, expected_roster_version)
            raise Conflict("membership", membership.id)
        return self._map_membership(result.data[0])

    async def _release_roster(self, tenant_id: str, expected_roster_version: int) -> None:
        """Undo a roster bump whose membership write lost its race."""
        try:
            await self.db.table(TENANTS_TABLE).update({
                "roster_version": expected_roster_version,
            }).eq("id", tenant_id).eq(
                "roster_version", expected_roster_version + 1
            ).execute()
        except Exception as e:
            logger.warning(f"Failed to release roster version for tenant {tenant_id}: {e}")

    async def get_roster_version(self, tenant_id: str) -> int:
        result = await self.db.table(TENANTS_TABLE).select("roster_version").eq(
            "id", tenant_id
        ).limit(1).execute()
        rows = result.data or []
        return int(rows[0].get("roster_version") or 0) if rows else 0

    # =========================================================================
    # Row Mapping
    # =========================================================================

    def _user_row(self, user: User) -> Dict[str, Any]:
        return {
            "id": user.id,
            "email": user.email.strip().lower(),
            "display_name": user.display_name,
            "status": user.status.value,
            "permissions": list(user.permissions),
            "created_at": user.created_at.isoformat(),
            "updated_at": user.updated_at.isoformat(),
        }

    def _map_user(self, data: Dict[str, Any]) -> User:
        return User(
            id=data["id"],
            email=data["email"],
            display_name=data.get("display_name") or "",
            status=UserStatus(data.get("status", "active")),
            permissions=data.get("permissions") or [],
            created_at=_parse_ts(data.get("created_at")),
            updated_at=_parse_ts(data.get("updated_at")),
        )

    def _tenant_row(self, tenant: Tenant) -> Dict[str, Any]:
        return {
            "id": tenant.id,
            "name": tenant.name,
            "plan": tenant.plan.value,
            "status": tenant.status.value,
            "settings": tenant.settings,
            "max_users": tenant.limits.max_users,
            "max_projects": tenant.limits.max_projects,
            "created_at": tenant.created_at.isoformat(),
            "updated_at": tenant.updated_at.isoformat(),
            "version": tenant.version,
        }

    def _map_tenant(self, data: Dict[str, Any]) -> Tenant:
        return Tenant(
            id=data["id"],
            name=data["name"],
            plan=TenantPlan(data.get("plan", "free")),
            status=TenantStatus(data.get("status", "active")),
            settings=data.get("settings") or {},
            limits=TenantLimits(
                max_users=data.get("max_users") or 10,
                max_projects=data.get("max_projects") or 5,
            ),
            created_at=_parse_ts(data.get("created_at")),
            updated_at=_parse_ts(data.get("updated_at")),
            version=data.get("version", 1),
        )

    def _membership_row(self, membership: Membership) -> Dict[str, Any]:
        return {
            "id": membership.id,
            "user_id": membership.user_id,
            "tenant_id": membership.tenant_id,
            "role": membership.role.value,
            "status": membership.status.value,
            "permissions": list(membership.permissions),
            "invited_by": membership.invited_by,
            "created_at": membership.created_at.isoformat(),
            "updated_at": membership.updated_at.isoformat(),
            "version": membership.version,
        }

    def _map_membership(self, data: Dict[str, Any]) -> Membership:
        return Membership(
            id=data["id"],
            user_id=data["user_id"],
            tenant_id=data["tenant_id"],
            role=Role(data["role"]),
            status=MembershipStatus(data["status"]),
            permissions=data.get("permissions") or [],
            invited_by=data.get("invited_by"),
            created_at=_parse_ts(data.get("created_at")),
            updated_at=_parse_ts(data.get("updated_at")),
            version=data.get("version", 1),
        )


class SupabaseAuditStore(AuditStore):
    """AuditStore on the async Supabase client. Inserts only, never updates."""

    def __init__(self, db_client: Any):
        self.db = db_client

    async def insert(self, entry: AuditLogEntry) -> None:
        try:
            await self.db.table(AUDIT_TABLE).insert({
                "id": entry.id,
                "tenant_id": entry.tenant_id,
                "actor_id": entry.actor_id,
                "actor_name": entry.actor_name,
                "action": entry.action,
                "resource": entry.resource,
                "resource_id": entry.resource_id,
                "changes": entry.changes,
                "status": entry.status.value,
                "timestamp": entry.timestamp.isoformat(),
                "ip_address": entry.ip_address,
                "user_agent": entry.user_agent,
                "request_id": entry.request_id,
            }).execute()
        except Exception as e:
            raise AuditWriteFailed(entry.id, e) from e

    def _filtered(self, db_query: Any, tenant_id: str, query: AuditLogQuery) -> Any:
        db_query = db_query.eq("tenant_id", tenant_id)
        if query.actor_id:
            db_query = db_query.eq("actor_id", query.actor_id)
        if query.action:
            db_query = db_query.eq("action", query.action)
        if query.resource:
            db_query = db_query.eq("resource", query.resource)
        if query.resource_id:
            db_query = db_query.eq("resource_id", query.resource_id)
        if query.status:
            db_query = db_query.eq("status", query.status.value)
        if query.start:
            db_query = db_query.gte("timestamp", query.start.isoformat())
        if query.end:
            db_query = db_query.lte("timestamp", query.end.isoformat())
        return db_query

    async def select(self, tenant_id: str, query: AuditLogQuery) -> List[AuditLogEntry]:
        db_query = self._filtered(
            self.db.table(AUDIT_TABLE).select("*"), tenant_id, query
        )
        # id breaks timestamp ties so paging is stable
        db_query = db_query.order("timestamp", desc=True).order("id", desc=True)
        if query.limit is not None:
            db_query = db_query.range(query.offset, query.offset + query.limit - 1)
        result = await db_query.execute()
        return [self._map_entry(row) for row in (result.data or [])]

    async def count(self, tenant_id: str, query: Optional[AuditLogQuery] = None) -> int:
        db_query = self._filtered(
            self.db.table(AUDIT_TABLE).select("id", count="exact"),
            tenant_id,
            query or AuditLogQuery(),
        )
        result = await db_query.execute()
        return result.count or 0

    async def delete_for_tenant(self, tenant_id: str, keep_entry_id: Optional[str] = None) -> int:
        db_query = self.db.table(AUDIT_TABLE).delete().eq("tenant_id", tenant_id)
        if keep_entry_id:
            db_query = db_query.neq("id", keep_entry_id)
        result = await db_query.execute()
        return len(result.data or [])

    def _map_entry(self, data: Dict[str, Any]) -> AuditLogEntry:
        return AuditLogEntry(
            id=data["id"],
            tenant_id=data["tenant_id"],
            actor_id=data["actor_id"],
            actor_name=data.get("actor_name") or "",
            action=data["action"],
            resource=data["resource"],
            resource_id=data.get("resource_id"),
            changes=data.get("changes") or {},
            status=AuditStatus(data.get("status", "success")),
            timestamp=_parse_ts(data.get("timestamp")),
            ip_address=data.get("ip_address"),
            user_agent=data.get("user_agent"),
            request_id=data.get("request_id"),
        )
