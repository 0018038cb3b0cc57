"""
Pytest configuration and shared fixtures for the access core tests.

This module provides common fixtures used across all test files:
- Settings and fully wired in-memory services
- A seeder for users, companies and memberships
- A FastAPI test client bound to the seeded services
"""

import os
import sys
from typing import List, Optional, Tuple

import pytest

# Environment setup before any imports
os.environ["DEV_MODE"] = "true"
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["REQUEST_LOGGING_ENABLED"] = "true"
for _var in ("SUPABASE_URL", "SUPABASE_KEY", "SUPABASE_SERVICE_KEY", "SENTRY_DSN", "EMAIL_RELAY_URL"):
    os.environ.pop(_var, None)

# Ensure project root is in path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from access_core.config import Settings, get_settings
from access_core.container import Services, build_services, init_services, reset_services
from access_core.rbac.roles import Role
from access_core.types.tenancy import (
    Membership,
    MembershipStatus,
    Tenant,
    TenantPlan,
    User,
    UserStatus,
)


class Seeder:
    """Writes fixtures straight to the stores, bypassing services and audit."""

    def __init__(self, services: Services):
        self.services = services
        self.store = services.tenancy_store

    async def user(
        self,
        email: str,
        display_name: str = "",
        status: UserStatus = UserStatus.ACTIVE,
        permissions: Optional[List[str]] = None,
    ) -> User:
        return await self.store.create_user(User(
            email=email,
            display_name=display_name or email.split("@")[0].title(),
            status=status,
            permissions=permissions or [],
        ))

    async def super_actor(self, email: str = "platform@buildpro.app") -> User:
        return await self.user(email, display_name="Platform Admin", permissions=["*"])

    async def company(
        self,
        name: str = "Acme Builders",
        admin_email: Optional[str] = None,
        plan: TenantPlan = TenantPlan.FREE,
    ) -> Tuple[Tenant, User]:
        """A company with one active COMPANY_ADMIN."""
        tenant = await self.store.create_tenant(Tenant(name=name, plan=plan))
        slug = name.lower().replace(" ", "")
        admin = await self.user(admin_email or f"admin@{slug}.com")
        await self.store.create_membership(Membership(
            user_id=admin.id,
            tenant_id=tenant.id,
            role=Role.COMPANY_ADMIN,
            status=MembershipStatus.ACTIVE,
        ))
        return tenant, admin

    async def member(
        self,
        tenant_id: str,
        email: str,
        role: Role = Role.OPERATIVE,
        status: MembershipStatus = MembershipStatus.ACTIVE,
        permissions: Optional[List[str]] = None,
        user: Optional[User] = None,
    ) -> Tuple[User, Membership]:
        user = user or await self.user(email)
        membership = await self.store.create_membership(Membership(
            user_id=user.id,
            tenant_id=tenant_id,
            role=role,
            status=status,
            permissions=permissions or [],
        ))
        return user, membership


@pytest.fixture
def settings() -> Settings:
    """Fresh settings from the test environment."""
    get_settings.cache_clear()
    return get_settings()


@pytest.fixture
def services(settings) -> Services:
    """Services wired on empty in-memory stores."""
    return build_services(settings)


@pytest.fixture
def seed(services) -> Seeder:
    return Seeder(services)


@pytest.fixture
def client(settings, services):
    """FastAPI test client running the app on the fixture services."""
    from fastapi.testclient import TestClient
    from server import create_app

    app = create_app(settings, services=services)
    with TestClient(app) as test_client:
        yield test_client
    reset_services()


@pytest.fixture
def installed_services(services):
    """Services installed as the process-wide singleton, without an app."""
    init_services(services)
    yield services
    reset_services()
