"""Client-side helpers: API client, propagation channel and permission cache."""

from .api import AccessApiClient
from .realtime import PropagationClient
from .session import SessionPermissionCache

__all__ = ["AccessApiClient", "PropagationClient", "SessionPermissionCache"]
