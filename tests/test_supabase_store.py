"""
Tests for the Supabase-backed stores.

The async Supabase client is replaced with MagicMock query builders: every
builder method returns the same mock and only execute() is awaited, so the
tests check which filters a store sends and how it reads the result.
"""

from unittest.mock import AsyncMock, MagicMock, call

import pytest

from access_core.exceptions import AuditWriteFailed, Conflict, NotFound
from access_core.rbac.roles import Role
from access_core.storage.supabase import SupabaseAuditStore, SupabaseTenancyStore
from access_core.types.tenancy import (
    AuditLogEntry,
    AuditLogQuery,
    Membership,
    MembershipStatus,
    Tenant,
    User,
)

BUILDER_METHODS = (
    "select", "insert", "update", "delete", "eq", "neq",
    "ilike", "gte", "lte", "order", "range", "limit",
)


def make_query(data=None, count=None, error=None):
    """A query builder chain whose execute() returns data or raises error."""
    query = MagicMock()
    for method in BUILDER_METHODS:
        getattr(query, method).return_value = query
    if error is not None:
        query.execute = AsyncMock(side_effect=error)
    else:
        query.execute = AsyncMock(return_value=MagicMock(data=data, count=count))
    return query


def make_db(*queries):
    """Client whose table() calls hand out the given queries in order."""
    db = MagicMock()
    db.table.side_effect = list(queries)
    return db


def unique_violation():
    error = Exception("duplicate key value violates unique constraint")
    error.code = "23505"
    return error


ROWS = SupabaseTenancyStore(None)


def admin_membership(version=3):
    return Membership(
        id="m-1",
        user_id="user-1",
        tenant_id="tenant-1",
        role=Role.COMPANY_ADMIN,
        status=MembershipStatus.ACTIVE,
        version=version,
    )


class TestUsers:
    """User lookups and inserts."""

    @pytest.mark.asyncio
    async def test_email_lookup_is_exact(self):
        row = ROWS._user_row(User(id="user-1", email="john_doe@acme.com"))
        query = make_query(data=[row])
        db = make_db(query)

        user = await SupabaseTenancyStore(db).get_user_by_email("  John_Doe@Acme.com ")

        assert user.id == "user-1"
        db.table.assert_called_once_with("users")
        query.eq.assert_called_once_with("email", "john_doe@acme.com")
        query.ilike.assert_not_called()

    @pytest.mark.asyncio
    async def test_email_lookup_miss(self):
        store = SupabaseTenancyStore(make_db(make_query(data=[])))

        assert await store.get_user_by_email("nobody@acme.com") is None

    @pytest.mark.asyncio
    async def test_emails_are_stored_lowercased(self):
        user = User(email="Site.Lead@Acme.com")
        query = make_query(data=[ROWS._user_row(user)])

        await SupabaseTenancyStore(make_db(query)).create_user(user)

        assert query.insert.call_args.args[0]["email"] == "site.lead@acme.com"

    @pytest.mark.asyncio
    async def test_duplicate_user_is_a_conflict(self):
        store = SupabaseTenancyStore(make_db(make_query(error=unique_violation())))

        with pytest.raises(Conflict):
            await store.create_user(User(email="op@acme.com"))

    @pytest.mark.asyncio
    async def test_other_insert_errors_propagate(self):
        store = SupabaseTenancyStore(make_db(make_query(error=RuntimeError("connection reset"))))

        with pytest.raises(RuntimeError):
            await store.create_user(User(email="op@acme.com"))


class TestTenants:
    """Tenant compare-and-set."""

    @pytest.mark.asyncio
    async def test_stale_version_is_a_conflict(self):
        tenant = Tenant(id="tenant-1", name="Acme Builders")
        update = make_query(data=[])
        lookup = make_query(data=[ROWS._tenant_row(tenant)])

        with pytest.raises(Conflict):
            await SupabaseTenancyStore(make_db(update, lookup)).update_tenant(tenant, expected_version=1)

        assert call("version", 1) in update.eq.call_args_list
        assert update.update.call_args.args[0]["version"] == 2

    @pytest.mark.asyncio
    async def test_missing_tenant_is_not_found(self):
        tenant = Tenant(id="tenant-1", name="Acme Builders")
        store = SupabaseTenancyStore(make_db(make_query(data=[]), make_query(data=[])))

        with pytest.raises(NotFound):
            await store.update_tenant(tenant, expected_version=1)

    @pytest.mark.asyncio
    async def test_new_tenant_starts_roster_at_zero(self):
        tenant = Tenant(id="tenant-1", name="Acme Builders")
        query = make_query(data=[ROWS._tenant_row(tenant)])

        await SupabaseTenancyStore(make_db(query)).create_tenant(tenant)

        assert query.insert.call_args.args[0]["roster_version"] == 0

    @pytest.mark.asyncio
    async def test_roster_version_of_unknown_tenant(self):
        store = SupabaseTenancyStore(make_db(make_query(data=[])))

        assert await store.get_roster_version("tenant-9") == 0


class TestMemberships:
    """Membership inserts and compare-and-set writes."""

    @pytest.mark.asyncio
    async def test_duplicate_pair_is_a_conflict(self):
        store = SupabaseTenancyStore(make_db(make_query(error=unique_violation())))

        with pytest.raises(Conflict):
            await store.create_membership(admin_membership())

    @pytest.mark.asyncio
    async def test_update_bumps_version(self):
        membership = admin_membership()
        stored = ROWS._membership_row(membership)
        stored["version"] = 4
        query = make_query(data=[stored])

        result = await SupabaseTenancyStore(make_db(query)).update_membership(membership, expected_version=3)

        assert result.version == 4
        assert query.update.call_args.args[0]["version"] == 4
        assert call("version", 3) in query.eq.call_args_list

    @pytest.mark.asyncio
    async def test_stale_version_is_a_conflict(self):
        store = SupabaseTenancyStore(make_db(make_query(data=[])))

        with pytest.raises(Conflict):
            await store.update_membership(admin_membership(), expected_version=3)

    @pytest.mark.asyncio
    async def test_roster_is_bumped_with_the_write(self):
        membership = admin_membership().model_copy(update={"role": Role.OPERATIVE})
        roster = make_query(data=[{"roster_version": 6}])
        write = make_query(data=[ROWS._membership_row(membership)])
        db = make_db(roster, write)

        await SupabaseTenancyStore(db).update_membership(
            membership, expected_version=3, expected_roster_version=5
        )

        assert db.table.call_args_list == [call("companies"), call("memberships")]
        roster.update.assert_called_once_with({"roster_version": 6})
        assert call("roster_version", 5) in roster.eq.call_args_list

    @pytest.mark.asyncio
    async def test_stale_roster_stops_the_write(self):
        db = make_db(make_query(data=[]))

        with pytest.raises(Conflict):
            await SupabaseTenancyStore(db).update_membership(
                admin_membership(), expected_version=3, expected_roster_version=5
            )

        assert db.table.call_count == 1

    @pytest.mark.asyncio
    async def test_lost_write_releases_the_roster(self):
        roster = make_query(data=[{"roster_version": 6}])
        write = make_query(data=[])
        release = make_query(data=[{"roster_version": 5}])
        db = make_db(roster, write, release)

        with pytest.raises(Conflict):
            await SupabaseTenancyStore(db).update_membership(
                admin_membership(), expected_version=3, expected_roster_version=5
            )

        release.update.assert_called_once_with({"roster_version": 5})
        assert call("roster_version", 6) in release.eq.call_args_list

    @pytest.mark.asyncio
    async def test_listing_excludes_removed(self):
        query = make_query(data=[ROWS._membership_row(admin_membership())])

        memberships = await SupabaseTenancyStore(make_db(query)).list_tenant_memberships("tenant-1")

        assert [m.id for m in memberships] == ["m-1"]
        query.neq.assert_called_once_with("status", "removed")


def audit_row(entry_id, **overrides):
    row = {
        "id": entry_id,
        "tenant_id": "tenant-1",
        "actor_id": "user-1",
        "actor_name": "Dana Site",
        "action": "UPDATE_ROLE",
        "resource": "members",
        "resource_id": "m-1",
        "changes": {"role": "FINANCE"},
        "status": "success",
        "timestamp": "2026-01-05T10:00:00Z",
    }
    row.update(overrides)
    return row


class TestAuditStore:
    """Audit inserts, filters and paging."""

    @pytest.mark.asyncio
    async def test_insert_failure_is_wrapped(self):
        store = SupabaseAuditStore(make_db(make_query(error=RuntimeError("timeout"))))
        entry = AuditLogEntry(tenant_id="tenant-1", actor_id="user-1", action="INVITE", resource="members")

        with pytest.raises(AuditWriteFailed):
            await store.insert(entry)

    @pytest.mark.asyncio
    async def test_select_filters_orders_and_pages(self):
        query = make_query(data=[audit_row("e-2"), audit_row("e-1")])
        store = SupabaseAuditStore(make_db(query))

        entries = await store.select(
            "tenant-1",
            AuditLogQuery(actor_id="user-1", action="UPDATE_ROLE", limit=20, offset=40),
        )

        assert [e.id for e in entries] == ["e-2", "e-1"]
        assert entries[0].changes == {"role": "FINANCE"}
        assert query.eq.call_args_list == [
            call("tenant_id", "tenant-1"),
            call("actor_id", "user-1"),
            call("action", "UPDATE_ROLE"),
        ]
        assert query.order.call_args_list == [
            call("timestamp", desc=True),
            call("id", desc=True),
        ]
        query.range.assert_called_once_with(40, 59)

    @pytest.mark.asyncio
    async def test_select_without_limit_is_unpaged(self):
        query = make_query(data=[])

        await SupabaseAuditStore(make_db(query)).select("tenant-1", AuditLogQuery())

        query.range.assert_not_called()

    @pytest.mark.asyncio
    async def test_count_is_exact(self):
        query = make_query(data=[], count=7)

        assert await SupabaseAuditStore(make_db(query)).count("tenant-1") == 7
        query.select.assert_called_once_with("id", count="exact")

    @pytest.mark.asyncio
    async def test_purge_keeps_the_deletion_entry(self):
        query = make_query(data=[audit_row("e-1"), audit_row("e-2")])

        deleted = await SupabaseAuditStore(make_db(query)).delete_for_tenant("tenant-1", keep_entry_id="e-3")

        assert deleted == 2
        query.neq.assert_called_once_with("id", "e-3")
