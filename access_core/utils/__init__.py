"""Shared utilities for the access core."""

from .logging import (
    clear_request_context,
    get_request_id,
    get_tenant_id,
    get_user_id,
    set_request_context,
    setup_logging,
)

__all__ = [
    "setup_logging",
    "set_request_context",
    "clear_request_context",
    "get_request_id",
    "get_user_id",
    "get_tenant_id",
]
