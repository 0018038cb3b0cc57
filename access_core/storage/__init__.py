"""
Storage contracts and implementations.

- base: TenancyStore and AuditStore contracts
- memory: in-process stores for tests and development
- supabase: stores on the async Supabase client
"""

from .base import AuditStore, TenancyStore
from .memory import InMemoryAuditStore, InMemoryTenancyStore
from .supabase import SupabaseAuditStore, SupabaseTenancyStore

__all__ = [
    "AuditStore",
    "TenancyStore",
    "InMemoryAuditStore",
    "InMemoryTenancyStore",
    "SupabaseAuditStore",
    "SupabaseTenancyStore",
]
