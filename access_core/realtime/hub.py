"""
Server side of the permission propagation channel.

Tracks live sessions and the one tenant each has joined, and pushes
rbac_updated to sessions whose permissions may have changed.

Delivery is at-most-once and best-effort: a failed send drops the
connection and is never raised to the lifecycle service that triggered it.
The resolver re-checks durable state on every request, so a lost push only
delays a client's cache refresh.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from access_core.rbac.resolver import AuthorizationResolver
from access_core.realtime.protocol import (
    RBAC_UPDATED,
    JoinRejected,
    JoinTenant,
    Joined,
    LeaveTenant,
    parse_client_message,
)
from access_core.storage.base import TenancyStore
from access_core.types.tenancy import utc_now

logger = logging.getLogger(__name__)


@dataclass
class ConnectionInfo:
    """Information about one live session."""

    websocket: Any
    user_id: str
    tenant_id: Optional[str] = None
    connected_at: datetime = field(default_factory=utc_now)
    messages_sent: int = 0


class PropagationHub:
    """
    Registry of live sessions keyed by websocket.

    No cross-connection locking: joins and sends are per connection, and a
    notify only looks up who is currently joined.
    """

    def __init__(self, store: TenancyStore, resolver: AuthorizationResolver):
        self.store = store
        self.resolver = resolver
        self._connections: Dict[Any, ConnectionInfo] = {}

    async def connect(self, websocket: Any, user_id: str, accept: bool = True) -> ConnectionInfo:
        """Accept and register a session for an authenticated user."""
        if accept:
            await websocket.accept()
        info = ConnectionInfo(websocket=websocket, user_id=user_id)
        self._connections[websocket] = info
        logger.debug("Propagation session connected", extra={"session_user": user_id})
        return info

    def disconnect(self, websocket: Any) -> None:
        info = self._connections.pop(websocket, None)
        if info:
            logger.debug(
                "Propagation session disconnected",
                extra={"session_user": info.user_id, "joined_tenant": info.tenant_id},
            )

    async def join_tenant(self, websocket: Any, tenant_id: str) -> bool:
        """
        Subscribe a session to one tenant's events.

        Joining implicitly leaves any previously joined tenant. Only users
        with a non-removed membership in the tenant, or super-actors, may
        join; other requests are ignored and logged.
        """
        info = self.get_connection_info(websocket)
        if info is None:
            return False

        allowed = await self._may_join(info.user_id, tenant_id)
        if not allowed:
            logger.warning(
                "Join rejected for tenant without membership",
                extra={
                    "session_user": info.user_id,
                    "target_tenant_id": tenant_id,
                    "security_event": "join_rejected",
                },
            )
            await self._send(info, JoinRejected(tenant_id=tenant_id).model_dump(by_alias=True))
            return False

        info.tenant_id = tenant_id
        await self._send(info, Joined(tenant_id=tenant_id).model_dump(by_alias=True))
        return True

    async def _may_join(self, user_id: str, tenant_id: str) -> bool:
        if await self.resolver.is_super_actor(user_id):
            return True
        try:
            membership = await self.store.get_membership(user_id, tenant_id)
        except Exception as e:
            logger.error(f"Membership lookup failed on join: {e}")
            return False
        return membership is not None

    def leave_tenant(self, websocket: Any) -> None:
        info = self.get_connection_info(websocket)
        if info:
            info.tenant_id = None

    async def handle_message(self, websocket: Any, raw: Any) -> None:
        """Dispatch a client message. Unknown messages are ignored."""
        message = parse_client_message(raw)
        if isinstance(message, JoinTenant):
            await self.join_tenant(websocket, message.tenant_id)
        elif isinstance(message, LeaveTenant):
            self.leave_tenant(websocket)

    async def notify_user(self, user_id: str, tenant_id: str) -> int:
        """
        Push rbac_updated to every session of user_id joined to tenant_id.

        Returns:
            Number of sessions the push was delivered to.
        """
        targets = [
            info for info in self._connections.values()
            if info.user_id == user_id and info.tenant_id == tenant_id
        ]
        return await self._push(targets)

    async def notify_tenant(self, tenant_id: str) -> int:
        """Push rbac_updated to every session joined to tenant_id."""
        targets = [
            info for info in self._connections.values()
            if info.tenant_id == tenant_id
        ]
        return await self._push(targets)

    async def _push(self, targets: List[ConnectionInfo]) -> int:
        delivered = 0
        for info in targets:
            if await self._send(info, RBAC_UPDATED):
                delivered += 1
        return delivered

    async def _send(self, info: ConnectionInfo, message: Dict[str, Any]) -> bool:
        try:
            await info.websocket.send_json(message)
        except Exception as e:
            logger.warning(f"Failed to send propagation message, dropping session: {e}")
            self.disconnect(info.websocket)
            return False
        info.messages_sent += 1
        return True

    def get_connection_info(self, websocket: Any) -> Optional[ConnectionInfo]:
        return self._connections.get(websocket)

    def get_stats(self) -> Dict[str, Any]:
        joined: Dict[str, int] = {}
        for info in self._connections.values():
            if info.tenant_id:
                joined[info.tenant_id] = joined.get(info.tenant_id, 0) + 1
        return {
            "total_connections": len(self._connections),
            "connections_by_tenant": joined,
        }
