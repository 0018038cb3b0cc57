"""
Tests for the audit log service.

Verifies that:
- A failing durable store never fails the caller, and parked entries flush later
- Sensitive values are redacted before an entry is built
- Reads are tenant-scoped, most recent first and gated by security.view
- CSV export pages through every matching entry
"""

import csv
import io
from datetime import timedelta

import pytest

from access_core.audit.service import AuditLog
from access_core.exceptions import Unauthorized
from access_core.rbac.roles import Role
from access_core.storage.memory import InMemoryAuditStore
from access_core.types.tenancy import (
    AuditAction,
    AuditLogEntry,
    AuditLogQuery,
    AuditStatus,
    RequestContext,
    utc_now,
)


async def record_many(audit, tenant_id, actor_id, count, action=AuditAction.UPDATE_ROLE):
    for i in range(count):
        await audit.record(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=action,
            resource="members",
            resource_id=f"m-{i}",
        )


class TestAppend:
    """Tests for fail-safe writes and the outbox."""

    @pytest.mark.asyncio
    async def test_record_returns_entry_id(self, services, seed):
        tenant, admin = await seed.company()

        entry_id = await services.audit.record(
            tenant_id=tenant.id,
            actor_id=admin.id,
            action=AuditAction.INVITE_USER,
            resource="members",
            context=RequestContext(ip_address="10.1.1.1", user_agent="x" * 600),
        )

        assert entry_id is not None
        entries = await services.audit.query(tenant.id, None, admin.id)
        assert entries[0].id == entry_id
        assert entries[0].actor_name == "Admin"
        assert entries[0].ip_address == "10.1.1.1"
        assert len(entries[0].user_agent) == 500

    @pytest.mark.asyncio
    async def test_store_outage_parks_entry(self, services, seed):
        tenant, admin = await seed.company()
        services.audit_store.fail_writes = True

        result = await services.audit.record(
            tenant_id=tenant.id, actor_id=admin.id, action="CUSTOM", resource="tenant"
        )

        assert result is None
        assert services.audit.outbox_size == 1
        assert services.audit.stats["failed"] == 1
        assert len(services.audit.recent(tenant.id)) == 1

    @pytest.mark.asyncio
    async def test_flush_outbox_in_order(self, services, seed):
        tenant, admin = await seed.company()
        services.audit_store.fail_writes = True
        await record_many(services.audit, tenant.id, admin.id, 3)

        assert await services.audit.flush_outbox() == 0
        assert services.audit.outbox_size == 3

        services.audit_store.fail_writes = False
        assert await services.audit.flush_outbox() == 3
        assert services.audit.outbox_size == 0

        entries = await services.audit.query(tenant.id, None, admin.id)
        assert {e.resource_id for e in entries} == {"m-0", "m-1", "m-2"}

    @pytest.mark.asyncio
    async def test_outbox_is_bounded(self, services, seed):
        tenant, admin = await seed.company()
        audit = AuditLog(InMemoryAuditStore(), services.resolver, outbox_max_size=2)
        audit.store.fail_writes = True

        await record_many(audit, tenant.id, admin.id, 3)

        assert audit.outbox_size == 2
        assert audit.stats["dropped"] == 1
        assert audit.stats["failed"] == 3

    @pytest.mark.asyncio
    async def test_sensitive_changes_are_redacted(self, services, seed):
        tenant, admin = await seed.company()

        await services.audit.record(
            tenant_id=tenant.id,
            actor_id=admin.id,
            action="UPDATE_INTEGRATION",
            resource="tenant",
            changes={
                "api_key": "sk-live-123",
                "nested": {"client_secret": "abc", "label": "erp"},
                "note": "n" * 20000,
            },
        )

        changes = services.audit.recent(tenant.id)[0].changes
        assert changes["api_key"] == "[REDACTED]"
        assert changes["nested"] == {"client_secret": "[REDACTED]", "label": "erp"}
        assert changes["note"].endswith("...[truncated]")

    @pytest.mark.asyncio
    async def test_explicit_actor_name_and_unknown_actor(self, services, seed):
        tenant, _ = await seed.company()

        await services.audit.record(
            tenant_id=tenant.id, actor_id="system", action="SYNC", resource="tenant"
        )
        await services.audit.record(
            tenant_id=tenant.id, actor_id="system", action="SYNC", resource="tenant",
            actor_name="Nightly job",
        )

        names = [e.actor_name for e in services.audit.recent(tenant.id)]
        assert names == ["Nightly job", ""]

    @pytest.mark.asyncio
    async def test_mirror_limit(self, services, seed):
        tenant, admin = await seed.company()
        audit = AuditLog(InMemoryAuditStore(), services.resolver, mirror_size=2)

        await record_many(audit, tenant.id, admin.id, 3)

        assert [e.resource_id for e in audit.recent()] == ["m-2", "m-1"]
        assert len(audit.recent(tenant.id, limit=1)) == 1


class TestQuery:
    """Tests for tenant-scoped reads."""

    @pytest.mark.asyncio
    async def test_most_recent_first(self, services, seed):
        tenant, admin = await seed.company()
        await record_many(services.audit, tenant.id, admin.id, 3)

        entries = await services.audit.query(tenant.id, None, admin.id)

        assert [e.resource_id for e in entries] == ["m-2", "m-1", "m-0"]

    @pytest.mark.asyncio
    async def test_repeated_queries_are_identical(self, services, seed):
        tenant, admin = await seed.company()
        await record_many(services.audit, tenant.id, admin.id, 5)
        filters = AuditLogQuery(limit=3, offset=1)

        first = await services.audit.query(tenant.id, filters, admin.id)
        second = await services.audit.query(tenant.id, filters, admin.id)

        assert [e.id for e in first] == [e.id for e in second]
        assert len(first) == 3

    @pytest.mark.asyncio
    async def test_tenant_isolation(self, services, seed):
        tenant_a, admin_a = await seed.company("Acme Builders")
        tenant_b, admin_b = await seed.company("Beta Construction")
        await record_many(services.audit, tenant_a.id, admin_a.id, 2)
        await record_many(services.audit, tenant_b.id, admin_b.id, 1)

        entries = await services.audit.query(tenant_b.id, None, admin_b.id)
        assert len(entries) == 1
        assert all(e.tenant_id == tenant_b.id for e in entries)

        with pytest.raises(Unauthorized):
            await services.audit.query(tenant_a.id, None, admin_b.id)

    @pytest.mark.asyncio
    async def test_requires_security_view(self, services, seed):
        tenant, _ = await seed.company()
        pm, _ = await seed.member(tenant.id, "pm@acme.com", Role.PROJECT_MANAGER)

        with pytest.raises(Unauthorized) as exc_info:
            await services.audit.query(tenant.id, None, pm.id)
        assert exc_info.value.required_permission == "security.view"
        with pytest.raises(Unauthorized):
            await services.audit.count(tenant.id, None, pm.id)

    @pytest.mark.asyncio
    async def test_super_actor_reads_any_tenant(self, services, seed):
        tenant, admin = await seed.company()
        root = await seed.super_actor()
        await record_many(services.audit, tenant.id, admin.id, 2)

        assert len(await services.audit.query(tenant.id, None, root.id)) == 2

    @pytest.mark.asyncio
    async def test_filters(self, services, seed):
        tenant, admin = await seed.company()
        user, _ = await seed.member(tenant.id, "op@acme.com", Role.OPERATIVE)
        await record_many(services.audit, tenant.id, admin.id, 2)
        await services.audit.record(
            tenant_id=tenant.id, actor_id=user.id, action=AuditAction.ACCEPT_INVITE,
            resource="members", resource_id="m-9",
        )
        await services.audit.record(
            tenant_id=tenant.id, actor_id=admin.id, action=AuditAction.UPDATE_ROLE,
            resource="members", resource_id="m-9", status=AuditStatus.FAILURE,
        )

        by_actor = await services.audit.query(tenant.id, AuditLogQuery(actor_id=user.id), admin.id)
        by_action = await services.audit.query(tenant.id, AuditLogQuery(action="UPDATE_ROLE"), admin.id)
        by_resource_id = await services.audit.query(tenant.id, AuditLogQuery(resource_id="m-9"), admin.id)
        failures = await services.audit.query(
            tenant.id, AuditLogQuery(status=AuditStatus.FAILURE), admin.id
        )

        assert [e.action for e in by_actor] == ["ACCEPT_INVITE"]
        assert len(by_action) == 3
        assert len(by_resource_id) == 2
        assert len(failures) == 1

    @pytest.mark.asyncio
    async def test_time_range_accepts_naive_datetimes(self, services, seed):
        tenant, admin = await seed.company()
        await record_many(services.audit, tenant.id, admin.id, 2)
        now = utc_now()

        future = AuditLogQuery(start=(now + timedelta(hours=1)).replace(tzinfo=None))
        past = AuditLogQuery(end=(now - timedelta(hours=1)).replace(tzinfo=None))
        around = AuditLogQuery(start=now - timedelta(minutes=5), end=now + timedelta(minutes=5))

        assert await services.audit.query(tenant.id, future, admin.id) == []
        assert await services.audit.query(tenant.id, past, admin.id) == []
        assert len(await services.audit.query(tenant.id, around, admin.id)) == 2

    @pytest.mark.asyncio
    async def test_limit_is_capped(self, services, seed):
        tenant, admin = await seed.company()
        audit = AuditLog(services.audit_store, services.resolver, default_limit=2, max_limit=3)
        await record_many(audit, tenant.id, admin.id, 5)

        assert len(await audit.query(tenant.id, None, admin.id)) == 2
        assert len(await audit.query(tenant.id, AuditLogQuery(limit=50), admin.id)) == 3
        assert await audit.count(tenant.id, AuditLogQuery(limit=1), admin.id) == 5


class TestExport:
    """Tests for CSV export."""

    @pytest.mark.asyncio
    async def test_export_pages_through_all_entries(self, services, seed):
        tenant, admin = await seed.company()
        audit = AuditLog(services.audit_store, services.resolver, max_limit=2)
        await record_many(audit, tenant.id, admin.id, 5)

        content = await audit.export_csv(tenant.id, None, admin.id)

        rows = list(csv.reader(io.StringIO(content)))
        assert rows[0] == [
            "Timestamp", "User ID", "Company ID", "Action", "Resource", "Resource ID", "IP Address",
        ]
        assert [row[5] for row in rows[1:]] == ["m-4", "m-3", "m-2", "m-1", "m-0"]
        assert all(row[2] == tenant.id for row in rows[1:])

    @pytest.mark.asyncio
    async def test_export_respects_filters(self, services, seed):
        tenant, admin = await seed.company()
        await record_many(services.audit, tenant.id, admin.id, 2)
        await record_many(services.audit, tenant.id, admin.id, 1, action=AuditAction.GRANT_PERMISSION)

        content = await services.audit.export_csv(
            tenant.id, AuditLogQuery(action="GRANT_PERMISSION"), admin.id
        )

        rows = list(csv.reader(io.StringIO(content)))
        assert len(rows) == 2

    @pytest.mark.asyncio
    async def test_export_requires_security_export(self, services, seed):
        tenant, _ = await seed.company()
        finance, _ = await seed.member(tenant.id, "fin@acme.com", Role.FINANCE)

        with pytest.raises(Unauthorized) as exc_info:
            await services.audit.export_csv(tenant.id, None, finance.id)
        assert exc_info.value.required_permission == "security.export"


class TestPurge:
    """Tests for the tenant deletion cascade."""

    @pytest.mark.asyncio
    async def test_purge_keeps_named_entry(self, services, seed):
        tenant_a, admin_a = await seed.company("Acme Builders")
        tenant_b, admin_b = await seed.company("Beta Construction")
        await record_many(services.audit, tenant_a.id, admin_a.id, 3)
        await record_many(services.audit, tenant_b.id, admin_b.id, 2)
        keep = services.audit.recent(tenant_a.id)[0].id

        deleted = await services.audit.purge_tenant(tenant_a.id, keep_entry_id=keep)

        assert deleted == 2
        assert [e.id for e in services.audit.recent(tenant_a.id)] == [keep]
        assert await services.audit_store.count(tenant_b.id) == 2

    def test_entries_are_immutable(self):
        entry = AuditLogEntry(tenant_id="t", actor_id="a", action="X", resource="r")

        with pytest.raises(Exception):
            entry.action = "Y"
