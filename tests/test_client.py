"""
Tests for the client-side helpers.

Covers the session permission cache, the reconnecting propagation client
(driven by scripted fake websocket sessions) and the HTTP API client
(driven by httpx.MockTransport).
"""

import asyncio
import json
from typing import List

import httpx
import pytest
from unittest.mock import AsyncMock

from access_core.client import AccessApiClient, PropagationClient, SessionPermissionCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Poll until predicate() is true."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


# =============================================================================
# Session Permission Cache
# =============================================================================


class TestSessionPermissionCache:
    """Tests for SessionPermissionCache."""

    @pytest.mark.asyncio
    async def test_no_session_means_no_permissions(self):
        fetch = AsyncMock(return_value=["projects.view"])
        cache = SessionPermissionCache(fetch)

        assert await cache.get_permissions() == []
        cache.login("user-1")
        assert await cache.get_permissions() == []
        fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ttl(self):
        clock = FakeClock()
        fetch = AsyncMock(return_value=["tasks.update"])
        cache = SessionPermissionCache(fetch, ttl=60, clock=clock)
        cache.login("user-1")

        assert await cache.switch_tenant("t-1") == ["tasks.update"]
        fetch.assert_awaited_once_with("t-1")

        clock.now += 30
        await cache.get_permissions()
        assert fetch.await_count == 1

        clock.now += 31
        assert not cache.is_fresh
        await cache.get_permissions()
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_can_matches_like_the_server(self):
        fetch = AsyncMock(return_value=["tasks.update", "projects.*"])
        cache = SessionPermissionCache(fetch)
        cache.login("user-1")
        await cache.switch_tenant("t-1")

        assert await cache.can("projects.delete")
        assert await cache.can("tasks.update")
        assert not await cache.can("financials.view")
        assert not await cache.can("projects.*")

    @pytest.mark.asyncio
    async def test_super_actor_list(self):
        cache = SessionPermissionCache(AsyncMock(return_value=["*"]))
        cache.login("root")
        await cache.switch_tenant("t-1")

        assert await cache.can("financials.delete")

    @pytest.mark.asyncio
    async def test_failed_fetch_denies(self):
        fetch = AsyncMock(side_effect=httpx.ConnectError("down"))
        cache = SessionPermissionCache(fetch)
        cache.login("user-1")

        assert await cache.switch_tenant("t-1") == []
        assert not await cache.can("tasks.update")
        assert cache.refreshes == 2

    @pytest.mark.asyncio
    async def test_tenant_switch_during_fetch_discards_result(self):
        cache = SessionPermissionCache(AsyncMock())

        async def fetch(tenant_id: str) -> List[str]:
            cache.tenant_id = "t-2"
            return ["members.manage"]

        cache._fetch = fetch
        cache.login("user-1")
        cache.tenant_id = "t-1"

        assert await cache.refresh() == []
        assert not cache.is_fresh

    @pytest.mark.asyncio
    async def test_invalidate_and_logout(self):
        fetch = AsyncMock(return_value=["tasks.update"])
        cache = SessionPermissionCache(fetch)
        cache.login("user-1")
        await cache.switch_tenant("t-1")

        cache.invalidate()
        assert not cache.is_fresh
        await cache.get_permissions()
        assert fetch.await_count == 2

        await cache.logout()
        assert cache.user_id is None
        assert await cache.get_permissions() == []

    @pytest.mark.asyncio
    async def test_attached_channel_drives_refresh(self):
        fetch = AsyncMock(side_effect=[["tasks.update"], ["tasks.update", "tasks.create"]])
        cache = SessionPermissionCache(fetch)
        channel = PropagationClient("ws://localhost/api/live", "user-1")
        cache.login("user-1")
        cache.attach(channel)

        await cache.switch_tenant("t-1")
        assert channel.tenant_id == "t-1"
        assert not await cache.can("tasks.create")

        await channel.on_rbac_updated()

        assert await cache.can("tasks.create")
        assert fetch.await_count == 2

        await cache.logout()
        assert channel.tenant_id is None


# =============================================================================
# Propagation Client
# =============================================================================


class FakeWebSocket:
    """Scripted server session. Stays open after its messages when hold_open."""

    def __init__(self, messages: List[str], hold_open: bool = False):
        self.messages = messages
        self.hold_open = hold_open
        self.sent: List[dict] = []
        self._closed = asyncio.Event()

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self._closed.set()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield message
        if self.hold_open:
            await self._closed.wait()


class FakeConnection:
    def __init__(self, websocket: FakeWebSocket):
        self.websocket = websocket

    async def __aenter__(self) -> FakeWebSocket:
        return self.websocket

    async def __aexit__(self, *exc_info) -> bool:
        return False


class FakeConnector:
    """Stands in for websockets.connect. Refuses once the script runs out."""

    def __init__(self, sessions: List[FakeWebSocket]):
        self.sessions = list(sessions)
        self.calls: List[dict] = []

    def __call__(self, url: str, additional_headers=None):
        self.calls.append({"url": url, "headers": additional_headers})
        if not self.sessions:
            raise OSError("connection refused")
        return FakeConnection(self.sessions.pop(0))


class TestPropagationClient:
    """Tests for PropagationClient."""

    @pytest.mark.asyncio
    async def test_reconnect_rejoins_and_resyncs(self):
        first = FakeWebSocket(['{"type": "joined", "tenantId": "t-1"}', '{"type": "rbac_updated"}'])
        second = FakeWebSocket([], hold_open=True)
        connector = FakeConnector([first, second])
        updates = []
        resyncs = []
        client = PropagationClient(
            "ws://localhost/api/live",
            "user-1",
            reconnect_interval=0.01,
            on_rbac_updated=lambda: updates.append(1),
            on_resync=lambda: resyncs.append(1),
            connect=connector,
        )
        await client.join_tenant("t-1")

        client.start()
        await wait_for(lambda: client.connections == 2 and len(resyncs) == 2)

        assert len(updates) == 1
        assert first.sent == [{"type": "join_tenant", "tenantId": "t-1"}]
        assert second.sent == [{"type": "join_tenant", "tenantId": "t-1"}]
        assert connector.calls[0]["headers"] == {"X-User-ID": "user-1"}
        assert client.is_connected

        await client.close()
        assert not client.is_connected

    @pytest.mark.asyncio
    async def test_refused_connections_are_retried(self):
        session = FakeWebSocket([], hold_open=True)
        connector = FakeConnector([])
        resync = AsyncMock()
        client = PropagationClient(
            "ws://localhost/api/live",
            "user-1",
            reconnect_interval=0.01,
            on_resync=resync,
            connect=connector,
        )

        client.start()
        await wait_for(lambda: len(connector.calls) >= 3)
        assert client.connections == 0

        connector.sessions.append(session)
        await wait_for(lambda: client.connections == 1)
        resync.assert_awaited_once()
        assert session.sent == []

        await client.close()

    @pytest.mark.asyncio
    async def test_join_while_connected_sends_immediately(self):
        session = FakeWebSocket([], hold_open=True)
        client = PropagationClient(
            "ws://localhost/api/live",
            "user-1",
            connect=FakeConnector([session]),
        )
        client.start()
        await wait_for(lambda: client.is_connected)

        await client.join_tenant("t-9")
        await client.leave_tenant()

        assert session.sent == [
            {"type": "join_tenant", "tenantId": "t-9"},
            {"type": "leave_tenant"},
        ]
        await client.close()

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_listening(self):
        session = FakeWebSocket(
            ['{"type": "rbac_updated"}', "not json", '{"type": "rbac_updated"}'],
            hold_open=True,
        )
        calls = []

        def on_update():
            calls.append(1)
            raise RuntimeError("handler bug")

        client = PropagationClient(
            "ws://localhost/api/live",
            "user-1",
            on_rbac_updated=on_update,
            connect=FakeConnector([session]),
        )
        client.start()
        await wait_for(lambda: len(calls) == 2)

        await client.close()


# =============================================================================
# API Client
# =============================================================================


def make_api_client(handler) -> AccessApiClient:
    return AccessApiClient(
        "http://access.test/",
        "user-1",
        transport=httpx.MockTransport(handler),
    )


class TestAccessApiClient:
    """Tests for AccessApiClient."""

    @pytest.mark.asyncio
    async def test_get_permission_tokens(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"success": True, "permissions": ["tasks.update"]})

        tokens = await make_api_client(handler).get_permission_tokens("t-1")

        assert tokens == ["tasks.update"]
        assert seen[0].url.path == "/api/permissions/me"
        assert seen[0].headers["X-User-ID"] == "user-1"
        assert seen[0].headers["X-Tenant-ID"] == "t-1"

    @pytest.mark.asyncio
    async def test_check(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            return httpx.Response(200, json={"allowed": body["permission"] == "tasks.update"})

        client = make_api_client(handler)

        assert await client.check("t-1", "tasks.update")
        assert not await client.check("t-1", "tasks.delete")

    @pytest.mark.asyncio
    async def test_list_my_tenants_sends_no_tenant_header(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert "X-Tenant-ID" not in request.headers
            return httpx.Response(200, json={"memberships": [{"tenant_id": "t-1"}]})

        tenants = await make_api_client(handler).list_my_tenants()

        assert tenants == [{"tenant_id": "t-1"}]

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"success": False, "error": "Not permitted"})

        with pytest.raises(httpx.HTTPStatusError):
            await make_api_client(handler).get_my_permissions("t-1")
