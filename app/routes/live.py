"""
WebSocket endpoint for the permission propagation channel.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from access_core.config import get_settings
from access_core.container import get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


async def authenticate_websocket(
    websocket: WebSocket,
    user_id: Optional[str] = None,
) -> Optional[str]:
    """
    Identify the user behind a channel connection.

    Uses the trusted user header set by the identity gateway. The user_id
    query parameter is honoured only in dev mode outside production, for
    browser clients that cannot set headers.

    Returns:
        user_id if identified, None after closing the socket otherwise.
    """
    settings = get_settings()
    header_user = (websocket.headers.get(settings.security.trusted_user_header) or "").strip()
    if header_user:
        return header_user

    if user_id and settings.security.dev_mode and not settings.is_production:
        return user_id

    await websocket.close(code=4001, reason="Authentication required")
    return None


async def live_channel(
    websocket: WebSocket,
    user_id: Optional[str] = Query(None),
):
    """
    Propagation channel.

    Clients send join_tenant/leave_tenant; the server pushes rbac_updated.
    """
    actor_id = await authenticate_websocket(websocket, user_id)
    if not actor_id:
        return

    hub = get_services().hub
    await hub.connect(websocket, actor_id)

    try:
        while True:
            data = await websocket.receive_text()
            await hub.handle_message(websocket, data)
    except WebSocketDisconnect:
        logger.debug("Propagation channel closed by client")
    except (ConnectionResetError, TimeoutError) as e:
        logger.warning(f"Propagation channel dropped: {e}")
    finally:
        hub.disconnect(websocket)


router.add_api_websocket_route(get_settings().realtime.realtime_ws_path, live_channel)
