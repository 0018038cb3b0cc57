"""
Tests for concurrent membership mutations.

The barrier store holds chosen reads until two requests have both made
them, forcing the interleaving where each request validates its guards
against the same snapshot. Exactly one of them may win.
"""

import asyncio

import pytest

from access_core.container import build_services
from access_core.exceptions import Conflict, LastAdmin
from access_core.rbac.roles import ADMIN_RANK, Role, get_role_rank
from access_core.storage.memory import InMemoryTenancyStore
from access_core.types.tenancy import Membership, MembershipStatus, Tenant


class BarrierTenancyStore(InMemoryTenancyStore):
    """In-memory store that parks watched reads until `parties` callers arrive."""

    def __init__(self, parties: int = 2):
        super().__init__()
        self.parties = parties
        self.watched_user_id = None
        self.watched_roster_tenant_id = None
        self._arrived = 0
        self._released = asyncio.Event()

    async def _barrier(self) -> None:
        self._arrived += 1
        if self._arrived >= self.parties:
            self._released.set()
        await self._released.wait()

    async def get_membership(self, user_id, tenant_id):
        membership = await super().get_membership(user_id, tenant_id)
        if user_id == self.watched_user_id:
            await self._barrier()
        return membership

    async def list_tenant_memberships(self, tenant_id, include_removed=False):
        memberships = await super().list_tenant_memberships(tenant_id, include_removed)
        # The last-admin guard reads the roster version before this listing
        if tenant_id == self.watched_roster_tenant_id:
            await self._barrier()
        return memberships


@pytest.fixture
def services(settings):
    return build_services(settings, tenancy_store=BarrierTenancyStore())


class TestConcurrentUpdates:
    """Two requests racing on the same guarded state."""

    @pytest.mark.asyncio
    async def test_same_membership_role_race(self, services, seed):
        tenant, admin = await seed.company()
        user, _ = await seed.member(tenant.id, "op@acme.com", Role.OPERATIVE)
        services.tenancy_store.watched_user_id = user.id

        results = await asyncio.gather(
            services.memberships.update_role(tenant.id, user.id, Role.SUPERVISOR, admin.id),
            services.memberships.update_role(tenant.id, user.id, Role.FINANCE, admin.id),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, Conflict)]
        winners = [r for r in results if isinstance(r, Membership)]
        assert len(conflicts) == 1
        assert len(winners) == 1

        final = await services.tenancy_store.get_membership(user.id, tenant.id)
        assert final.version == 2
        assert final.role == winners[0].role
        assert final.role in (Role.SUPERVISOR, Role.FINANCE)
        assert [e.action for e in services.audit.recent(tenant.id)] == ["UPDATE_ROLE"]

    @pytest.mark.asyncio
    async def test_two_admin_demotions_keep_one_admin(self, services, seed):
        tenant, admin_a = await seed.company()
        admin_b, _ = await seed.member(tenant.id, "b@acme.com", Role.COMPANY_ADMIN)
        root = await seed.super_actor()
        services.tenancy_store.watched_roster_tenant_id = tenant.id

        results = await asyncio.gather(
            services.memberships.update_role(tenant.id, admin_a.id, Role.OPERATIVE, root.id),
            services.memberships.update_role(tenant.id, admin_b.id, Role.OPERATIVE, root.id),
            return_exceptions=True,
        )

        assert len([r for r in results if isinstance(r, Conflict)]) == 1
        assert not [r for r in results if isinstance(r, LastAdmin)]
        memberships = await services.tenancy_store.list_tenant_memberships(tenant.id)
        admins = [
            m for m in memberships
            if m.is_active and get_role_rank(m.role) >= ADMIN_RANK
        ]
        assert len(admins) == 1
        assert await services.tenancy_store.get_roster_version(tenant.id) == 1

    @pytest.mark.asyncio
    async def test_demotion_racing_removal_keeps_one_admin(self, services, seed):
        tenant, admin_a = await seed.company()
        admin_b, _ = await seed.member(tenant.id, "b@acme.com", Role.COMPANY_ADMIN)
        root = await seed.super_actor()
        services.tenancy_store.watched_roster_tenant_id = tenant.id

        results = await asyncio.gather(
            services.memberships.remove(tenant.id, admin_a.id, root.id),
            services.memberships.update_role(tenant.id, admin_b.id, Role.FINANCE, root.id),
            return_exceptions=True,
        )

        assert len([r for r in results if isinstance(r, Conflict)]) == 1
        memberships = await services.tenancy_store.list_tenant_memberships(tenant.id)
        assert len([m for m in memberships if m.role == Role.COMPANY_ADMIN and m.is_active]) == 1


class TestVersionChecks:
    """Compare-and-set at the store level."""

    @pytest.mark.asyncio
    async def test_stale_membership_version(self):
        store = InMemoryTenancyStore()
        tenant = await store.create_tenant(Tenant(name="Acme Builders"))
        membership = await store.create_membership(Membership(
            user_id="user-1",
            tenant_id=tenant.id,
            role=Role.OPERATIVE,
            status=MembershipStatus.ACTIVE,
        ))
        await store.update_membership(
            membership.model_copy(update={"role": Role.SUPERVISOR}),
            expected_version=membership.version,
        )

        with pytest.raises(Conflict):
            await store.update_membership(
                membership.model_copy(update={"role": Role.FINANCE}),
                expected_version=membership.version,
            )

        current = await store.get_membership("user-1", tenant.id)
        assert current.role == Role.SUPERVISOR

    @pytest.mark.asyncio
    async def test_stale_roster_version(self):
        store = InMemoryTenancyStore()
        tenant = await store.create_tenant(Tenant(name="Acme Builders"))
        membership = await store.create_membership(Membership(
            user_id="user-1",
            tenant_id=tenant.id,
            role=Role.COMPANY_ADMIN,
            status=MembershipStatus.ACTIVE,
        ))

        with pytest.raises(Conflict):
            await store.update_membership(
                membership.model_copy(update={"role": Role.OPERATIVE}),
                expected_version=membership.version,
                expected_roster_version=3,
            )
        assert await store.get_roster_version(tenant.id) == 0

    @pytest.mark.asyncio
    async def test_stale_tenant_version(self):
        store = InMemoryTenancyStore()
        tenant = await store.create_tenant(Tenant(name="Acme Builders"))
        await store.update_tenant(tenant.model_copy(update={"name": "Acme"}), expected_version=1)

        with pytest.raises(Conflict):
            await store.update_tenant(tenant.model_copy(update={"name": "Other"}), expected_version=1)

    @pytest.mark.asyncio
    async def test_duplicate_pair_rejected(self):
        store = InMemoryTenancyStore()
        first = Membership(user_id="user-1", tenant_id="tenant-1", role=Role.OPERATIVE)
        await store.create_membership(first)

        with pytest.raises(Conflict):
            await store.create_membership(
                Membership(user_id="user-1", tenant_id="tenant-1", role=Role.FINANCE)
            )
