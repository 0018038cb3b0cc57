"""Realtime propagation of permission changes."""

from .hub import ConnectionInfo, PropagationHub
from .protocol import RBAC_UPDATED, MessageType, parse_client_message

__all__ = [
    "ConnectionInfo",
    "PropagationHub",
    "RBAC_UPDATED",
    "MessageType",
    "parse_client_message",
]
