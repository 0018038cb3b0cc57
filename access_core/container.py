"""
Service wiring.

Builds the resolver, audit log, lifecycle services, propagation hub and
notifier on top of one pair of stores, and holds the process-wide instance
used by the API layer.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from access_core.audit.service import AuditLog
from access_core.config import Settings
from access_core.memberships.service import MembershipService
from access_core.notifications import Notifier
from access_core.rbac.resolver import AuthorizationResolver
from access_core.realtime.hub import PropagationHub
from access_core.storage.base import AuditStore, TenancyStore
from access_core.storage.memory import InMemoryAuditStore, InMemoryTenancyStore
from access_core.tenants.service import TenantService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a request handler needs."""

    settings: Settings
    tenancy_store: TenancyStore
    audit_store: AuditStore
    resolver: AuthorizationResolver
    audit: AuditLog
    hub: PropagationHub
    notifier: Notifier
    memberships: MembershipService
    tenants: TenantService


def build_services(
    settings: Settings,
    tenancy_store: Optional[TenancyStore] = None,
    audit_store: Optional[AuditStore] = None,
    notifier: Optional[Notifier] = None,
) -> Services:
    """
    Wire services on the given stores, defaulting to in-memory ones.
    """
    tenancy_store = tenancy_store or InMemoryTenancyStore()
    audit_store = audit_store or InMemoryAuditStore()
    notifier = notifier or Notifier.from_settings(settings.notifications)

    resolver = AuthorizationResolver(tenancy_store)
    audit = AuditLog(
        audit_store,
        resolver,
        users=tenancy_store,
        mirror_size=settings.audit.audit_mirror_size,
        default_limit=settings.audit.audit_default_query_limit,
        max_limit=settings.audit.audit_max_query_limit,
        outbox_max_size=settings.audit.audit_outbox_max_size,
    )
    hub = PropagationHub(tenancy_store, resolver)

    memberships = MembershipService(
        tenancy_store,
        resolver,
        audit,
        hub=hub,
        notifier=notifier,
        enforce_last_admin=settings.rbac.enforce_last_admin,
        allow_self_demotion=settings.rbac.allow_self_demotion,
    )
    tenants = TenantService(
        tenancy_store,
        resolver,
        audit,
        hub=hub,
        notifier=notifier,
        self_service_creation=settings.rbac.self_service_tenant_creation,
        cascade_audit=settings.audit.audit_cascade_on_tenant_delete,
    )

    return Services(
        settings=settings,
        tenancy_store=tenancy_store,
        audit_store=audit_store,
        resolver=resolver,
        audit=audit,
        hub=hub,
        notifier=notifier,
        memberships=memberships,
        tenants=tenants,
    )


async def create_services(settings: Settings) -> Services:
    """
    Build services for the configured backend.

    Uses the Supabase stores when Supabase is configured, otherwise the
    in-memory stores (development only).

    Raises:
        RuntimeError: In production without Supabase, since memberships and
            the audit trail would not persist.
    """
    if not settings.is_supabase_configured:
        if settings.is_production:
            logger.critical("Supabase not configured in production; refusing to start")
            raise RuntimeError("Supabase is required in production")
        logger.warning("Supabase not configured; using in-memory stores")
        return build_services(settings)

    from supabase import acreate_client

    from access_core.storage.supabase import SupabaseAuditStore, SupabaseTenancyStore

    client = await acreate_client(settings.database.supabase_url, settings.database.api_key)
    logger.info("Using Supabase stores")
    return build_services(
        settings,
        tenancy_store=SupabaseTenancyStore(client),
        audit_store=SupabaseAuditStore(client),
    )


# =============================================================================
# Service Singleton (for dependency injection)
# =============================================================================


_services: Optional[Services] = None


def get_services() -> Services:
    """
    Get the services singleton.

    Raises:
        RuntimeError: If services have not been initialized.
    """
    if _services is None:
        raise RuntimeError("Services not initialized. Call init_services() first.")
    return _services


def init_services(services: Services) -> Services:
    """Install the services singleton."""
    global _services
    _services = services
    logger.info("Access services initialized")
    return _services


def reset_services() -> None:
    """Clear the singleton. Used by tests."""
    global _services
    _services = None
