"""Append-only audit trail."""

from .service import CSV_HEADERS, SENSITIVE_FIELDS, AuditLog

__all__ = ["AuditLog", "CSV_HEADERS", "SENSITIVE_FIELDS"]
