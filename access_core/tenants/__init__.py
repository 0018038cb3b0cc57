"""Tenant (company) lifecycle."""

from .service import TenantService

__all__ = ["TenantService"]
