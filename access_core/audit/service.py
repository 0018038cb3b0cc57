"""
Audit log service.

This module provides:
- Fail-safe appends: a failed durable write never fails the business
  operation that produced it
- A bounded retry outbox for entries whose durable write failed
- Tenant-scoped queries, most recent first, gated by security.view
- CSV export
- An in-memory mirror of the most recent entries

Security Notes:
- Entries are immutable; there is no update path and the only delete path
  is the tenant deletion cascade
- Sensitive fields are redacted from changes before an entry is built
- Failed writes are logged with security_event="audit_write_failed" and
  reported to Sentry so a silently failing trail is visible
"""

import csv
import io
import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Union

import sentry_sdk

from access_core.exceptions import AuditWriteFailed, Unauthorized
from access_core.rbac.resolver import AuthorizationResolver, log_authorization_failure
from access_core.storage.base import AuditStore, TenancyStore
from access_core.types.tenancy import (
    AuditAction,
    AuditLogEntry,
    AuditLogQuery,
    AuditStatus,
    RequestContext,
    new_id,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================


# Keys whose values are never written to an audit entry
SENSITIVE_FIELDS = frozenset({
    "password",
    "api_key",
    "secret",
    "token",
    "credential",
    "private_key",
    "ssn",
    "card_number",
})

# Maximum size for logged string values (truncated if larger)
MAX_VALUE_SIZE = 10000

# Maximum list length kept in changes
MAX_LIST_ITEMS = 100

MAX_USER_AGENT_LENGTH = 500

VIEW_PERMISSION = "security.view"
EXPORT_PERMISSION = "security.export"

CSV_HEADERS = [
    "Timestamp",
    "User ID",
    "Company ID",
    "Action",
    "Resource",
    "Resource ID",
    "IP Address",
]


# =============================================================================
# Audit Log
# =============================================================================


class AuditLog:
    """
    Append-only audit trail.

    append() and record() never raise. Reads go through the authorization
    resolver so a caller can only ever see its own tenant's log unless it
    is a platform super-actor.
    """

    def __init__(
        self,
        store: AuditStore,
        resolver: AuthorizationResolver,
        users: Optional[TenancyStore] = None,
        mirror_size: int = 1000,
        default_limit: int = 100,
        max_limit: int = 500,
        outbox_max_size: int = 10000,
    ):
        """
        Args:
            store: Durable audit store.
            resolver: Resolver used to authorize reads.
            users: Optional tenancy store used to denormalize actor names.
            mirror_size: Recent entries kept in memory.
            default_limit: Page size when a query has none.
            max_limit: Largest page size a query may request.
            outbox_max_size: Failed entries kept for retry.
        """
        self.store = store
        self.resolver = resolver
        self.users = users
        self.default_limit = default_limit
        self.max_limit = max_limit
        self._mirror: Deque[AuditLogEntry] = deque(maxlen=mirror_size)
        self._outbox: Deque[AuditLogEntry] = deque(maxlen=outbox_max_size)
        self._appended = 0
        self._failed = 0
        self._dropped = 0

    # =========================================================================
    # Writes
    # =========================================================================

    async def append(self, entry: AuditLogEntry) -> Optional[str]:
        """
        Persist an entry.

        Never raises. On a failed durable write the entry is parked in the
        outbox for flush_outbox() to retry.

        Returns:
            The entry ID if it was written, None if it was parked.
        """
        self._mirror.append(entry)
        try:
            await self.store.insert(entry)
        except Exception as e:
            failure = e if isinstance(e, AuditWriteFailed) else AuditWriteFailed(entry.id, e)
            self._park(entry, failure)
            return None

        self._appended += 1
        logger.debug(
            f"Audit logged: {entry.action} on {entry.resource}",
            extra={
                "audit_id": entry.id,
                "action": entry.action,
                "resource": entry.resource,
                "target_tenant_id": entry.tenant_id,
            },
        )
        return entry.id

    def _park(self, entry: AuditLogEntry, failure: AuditWriteFailed) -> None:
        self._failed += 1
        if self._outbox.maxlen is not None and len(self._outbox) == self._outbox.maxlen:
            self._dropped += 1
        self._outbox.append(entry)

        logger.error(
            f"Failed to write audit entry: {failure.internal_message}",
            extra={
                "audit_id": entry.id,
                "action": entry.action,
                "target_tenant_id": entry.tenant_id,
                "outbox_size": len(self._outbox),
                "security_event": "audit_write_failed",
            },
        )
        sentry_sdk.capture_exception(failure)

    async def record(
        self,
        tenant_id: str,
        actor_id: str,
        action: Union[AuditAction, str],
        resource: str,
        resource_id: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
        status: AuditStatus = AuditStatus.SUCCESS,
        context: Optional[RequestContext] = None,
        actor_name: Optional[str] = None,
        entry_id: Optional[str] = None,
    ) -> Optional[str]:
        """
        Build, sanitize and append an entry.

        The actor's display name is looked up and stored on the entry so it
        survives later profile changes.
        """
        context = context or RequestContext()
        action_str = action.value if isinstance(action, AuditAction) else str(action)
        user_agent = context.user_agent
        if user_agent and len(user_agent) > MAX_USER_AGENT_LENGTH:
            user_agent = user_agent[:MAX_USER_AGENT_LENGTH]

        entry = AuditLogEntry(
            id=entry_id or new_id(),
            tenant_id=tenant_id,
            actor_id=actor_id,
            actor_name=actor_name if actor_name is not None else await self._actor_name(actor_id),
            action=action_str,
            resource=resource,
            resource_id=resource_id,
            changes=self._sanitize_data(changes) or {},
            status=status,
            ip_address=context.ip_address,
            user_agent=user_agent,
            request_id=context.request_id,
        )
        return await self.append(entry)

    async def _actor_name(self, actor_id: str) -> str:
        if self.users is None:
            return ""
        try:
            user = await self.users.get_user(actor_id)
        except Exception as e:
            logger.warning(f"Actor name lookup failed: {e}")
            return ""
        if user is None:
            return ""
        return user.display_name or user.email

    async def flush_outbox(self) -> int:
        """
        Retry parked entries in the order they failed.

        Stops at the first entry that still fails.

        Returns:
            Number of entries written.
        """
        flushed = 0
        while self._outbox:
            entry = self._outbox[0]
            try:
                await self.store.insert(entry)
            except Exception as e:
                logger.warning(
                    f"Audit outbox flush stopped: {e}",
                    extra={"flushed": flushed, "outbox_size": len(self._outbox)},
                )
                break
            self._outbox.popleft()
            self._appended += 1
            flushed += 1

        if flushed:
            logger.info(f"Flushed {flushed} parked audit entries")
        return flushed

    async def purge_tenant(self, tenant_id: str, keep_entry_id: Optional[str] = None) -> int:
        """
        Delete a tenant's entries as part of tenant deletion.

        keep_entry_id survives the purge so the deletion itself stays on
        record.
        """
        deleted = await self.store.delete_for_tenant(tenant_id, keep_entry_id=keep_entry_id)
        self._mirror = deque(
            (e for e in self._mirror if e.tenant_id != tenant_id or e.id == keep_entry_id),
            maxlen=self._mirror.maxlen,
        )
        return deleted

    # =========================================================================
    # Reads
    # =========================================================================

    async def _authorize(self, tenant_id: str, actor_id: str, permission: str) -> None:
        permissions = await self.resolver.resolve(actor_id, tenant_id)
        if not permissions.allows(permission):
            log_authorization_failure(actor_id, tenant_id, permission, permissions.role)
            raise Unauthorized(required_permission=permission)

    def _page(self, filters: Optional[AuditLogQuery]) -> AuditLogQuery:
        filters = filters or AuditLogQuery()
        limit = min(filters.limit or self.default_limit, self.max_limit)
        return filters.model_copy(update={"limit": limit})

    async def query(
        self,
        tenant_id: str,
        filters: Optional[AuditLogQuery],
        actor_id: str,
    ) -> List[AuditLogEntry]:
        """
        Read a tenant's log, most recent first.

        Raises:
            Unauthorized: If the actor lacks security.view in the tenant.
        """
        await self._authorize(tenant_id, actor_id, VIEW_PERMISSION)
        return await self.store.select(tenant_id, self._page(filters))

    async def count(
        self,
        tenant_id: str,
        filters: Optional[AuditLogQuery],
        actor_id: str,
    ) -> int:
        """Number of entries matching filters, ignoring paging."""
        await self._authorize(tenant_id, actor_id, VIEW_PERMISSION)
        return await self.store.count(tenant_id, filters)

    async def export_csv(
        self,
        tenant_id: str,
        filters: Optional[AuditLogQuery],
        actor_id: str,
    ) -> str:
        """
        Export every matching entry as CSV, most recent first.

        Raises:
            Unauthorized: If the actor lacks security.export in the tenant.
        """
        await self._authorize(tenant_id, actor_id, EXPORT_PERMISSION)

        page = self._page(filters).model_copy(update={"limit": self.max_limit})
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(CSV_HEADERS)

        while True:
            entries = await self.store.select(tenant_id, page)
            for entry in entries:
                writer.writerow([
                    entry.timestamp.isoformat(),
                    entry.actor_id,
                    entry.tenant_id,
                    entry.action,
                    entry.resource,
                    entry.resource_id or "",
                    entry.ip_address or "",
                ])
            if len(entries) < page.limit:
                break
            page = page.model_copy(update={"offset": page.offset + page.limit})

        return output.getvalue()

    def recent(self, tenant_id: Optional[str] = None, limit: Optional[int] = None) -> List[AuditLogEntry]:
        """Most recent mirrored entries, newest first. Not authorized; internal use."""
        entries = [
            e for e in reversed(self._mirror)
            if tenant_id is None or e.tenant_id == tenant_id
        ]
        return entries[:limit] if limit is not None else entries

    @property
    def outbox_size(self) -> int:
        return len(self._outbox)

    @property
    def stats(self) -> Dict[str, int]:
        return {
            "appended": self._appended,
            "failed": self._failed,
            "dropped": self._dropped,
            "outbox_size": len(self._outbox),
            "mirror_size": len(self._mirror),
        }

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def _sanitize_data(self, data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Redact sensitive keys and truncate large values."""
        if data is None:
            return None

        sanitized: Dict[str, Any] = {}
        for key, value in data.items():
            key_lower = str(key).lower()
            if any(sensitive in key_lower for sensitive in SENSITIVE_FIELDS):
                sanitized[key] = "[REDACTED]"
                continue

            if isinstance(value, dict):
                sanitized[key] = self._sanitize_data(value)
            elif isinstance(value, list):
                sanitized[key] = [
                    self._sanitize_data(item) if isinstance(item, dict) else item
                    for item in value[:MAX_LIST_ITEMS]
                ]
            elif isinstance(value, str) and len(value) > MAX_VALUE_SIZE:
                sanitized[key] = value[:MAX_VALUE_SIZE] + "...[truncated]"
            else:
                sanitized[key] = value

        return sanitized
