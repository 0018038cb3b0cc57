"""
Multi-tenant authorization and audit core for BuildPro.

This package provides:
- Permission catalog, typed permission tokens and role registry
- Authorization resolver computing effective permissions per tenant
- Membership and tenant lifecycle services
- Append-only audit log with a fail-safe write path
- Realtime propagation of permission changes to connected sessions
- Client-side session permission cache

Usage:
    from access_core.config import get_settings
    from access_core.container import build_services

    services = build_services(get_settings())
    allowed = await services.resolver.check(user_id, tenant_id, "projects.view")
"""

__version__ = "1.0.0"
