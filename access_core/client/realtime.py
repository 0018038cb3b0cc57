"""
Client side of the permission propagation channel.

PropagationClient keeps one websocket open to the server, reconnecting on a
fixed interval. After every successful (re)connection it re-joins the last
known tenant and fires on_resync, since pushes sent while it was away are
not replayed.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import websockets
from websockets.exceptions import WebSocketException

from access_core.realtime.protocol import JoinTenant, LeaveTenant, is_rbac_updated

logger = logging.getLogger(__name__)

Callback = Callable[[], Union[None, Awaitable[None]]]


class PropagationClient:
    """Reconnecting websocket client for rbac_updated pushes."""

    def __init__(
        self,
        url: str,
        user_id: str,
        reconnect_interval: float = 3.0,
        user_header: str = "X-User-ID",
        on_rbac_updated: Optional[Callback] = None,
        on_resync: Optional[Callback] = None,
        connect: Callable[..., Any] = websockets.connect,
    ):
        """
        Args:
            url: Channel URL, e.g. ws://host/api/live.
            user_id: Authenticated user ID sent in the trusted header.
            reconnect_interval: Seconds between reconnection attempts.
            on_rbac_updated: Called for every rbac_updated push.
            on_resync: Called after every successful (re)connection.
            connect: websockets.connect or a compatible factory.
        """
        self.url = url
        self.user_id = user_id
        self.reconnect_interval = reconnect_interval
        self.user_header = user_header
        self.on_rbac_updated = on_rbac_updated
        self.on_resync = on_resync
        self._connect = connect

        self.tenant_id: Optional[str] = None
        self.connections = 0
        self._websocket: Optional[Any] = None
        self._closed = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return self._websocket is not None

    async def join_tenant(self, tenant_id: str) -> None:
        """Remember the tenant and join it now if connected."""
        self.tenant_id = tenant_id
        await self._send(JoinTenant(tenant_id=tenant_id).model_dump(by_alias=True))

    async def leave_tenant(self) -> None:
        self.tenant_id = None
        await self._send(LeaveTenant().model_dump(by_alias=True))

    async def _send(self, message: Dict[str, Any]) -> None:
        if self._websocket is None:
            return
        try:
            await self._websocket.send(json.dumps(message))
        except (OSError, WebSocketException) as e:
            logger.warning(f"Channel send failed: {e}")

    def start(self) -> asyncio.Task:
        """Run the connection loop in the background."""
        if self._task is None or self._task.done():
            self._closed = False
            self._task = asyncio.create_task(self.run())
        return self._task

    async def close(self) -> None:
        self._closed = True
        if self._websocket is not None:
            await self._websocket.close()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def run(self) -> None:
        """Connect, listen, and reconnect until close() is called."""
        while not self._closed:
            try:
                async with self._connect(
                    self.url,
                    additional_headers={self.user_header: self.user_id},
                ) as websocket:
                    self._websocket = websocket
                    self.connections += 1
                    logger.info("Propagation channel connected", extra={"reconnects": self.connections - 1})

                    if self.tenant_id:
                        await self._send(JoinTenant(tenant_id=self.tenant_id).model_dump(by_alias=True))
                    await self._fire(self.on_resync)

                    async for raw in websocket:
                        if is_rbac_updated(raw):
                            await self._fire(self.on_rbac_updated)
            except (OSError, WebSocketException) as e:
                logger.warning(f"Propagation channel disconnected: {e}")
            finally:
                self._websocket = None

            if self._closed:
                break
            await asyncio.sleep(self.reconnect_interval)

    @staticmethod
    async def _fire(callback: Optional[Callback]) -> None:
        if callback is None:
            return
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Channel callback failed: {e}")
