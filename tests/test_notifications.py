"""
Tests for the outbound email notifier.
"""

import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from access_core.config import NotificationSettings
from access_core.notifications import Notifier


def relay(handler) -> Notifier:
    return Notifier(
        relay_url="https://mail.buildpro.test/send",
        relay_token="relay-token",
        app_url="https://app.buildpro.test/",
        transport=httpx.MockTransport(handler),
    )


class TestNotifier:
    """Tests for Notifier."""

    @pytest.mark.asyncio
    async def test_mock_mode_logs_instead_of_sending(self):
        notifier = Notifier()

        assert not notifier.is_configured
        assert await notifier.send_email("op@acme.com", "Hello", "Body") is True

    @pytest.mark.asyncio
    async def test_invitation_is_posted_to_relay(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202, json={"queued": True})

        notifier = relay(handler)
        sent = await notifier.send_invitation(
            "new@acme.com", "SUPERVISOR", "Acme Builders", "user-1", "tenant-1"
        )

        assert sent is True
        request = seen[0]
        assert request.headers["Authorization"] == "Bearer relay-token"
        payload = json.loads(request.content)
        assert payload["to"] == "new@acme.com"
        assert payload["from"] == "noreply@buildpro.app"
        assert payload["subject"] == "You've been invited to join Acme Builders on BuildPro"
        assert "as a SUPERVISOR" in payload["text"]
        assert notifier.invitation_link("user-1", "tenant-1") in payload["html"]

    @pytest.mark.asyncio
    async def test_welcome(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200)

        assert await relay(handler).send_welcome("owner@acme.com", "", "Acme Builders")
        assert seen[0]["text"].startswith("Hello there,")
        assert seen[0]["html"] == seen[0]["text"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [400, 401, 500, 503])
    async def test_relay_rejection_returns_false(self, status_code):
        notifier = relay(lambda request: httpx.Response(status_code))

        assert await notifier.send_email("op@acme.com", "Hello", "Body") is False

    @pytest.mark.asyncio
    async def test_transport_error_returns_false(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("relay unreachable", request=request)

        assert await relay(handler).send_email("op@acme.com", "Hello", "Body") is False

    def test_invitation_link(self):
        notifier = Notifier(app_url="https://app.buildpro.test/")

        link = notifier.invitation_link("user-1", "tenant-1")

        parsed = urlparse(link)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://app.buildpro.test/accept-invite"
        assert parse_qs(parsed.query) == {"userId": ["user-1"], "companyId": ["tenant-1"]}

    def test_from_settings(self):
        settings = NotificationSettings(
            email_relay_url="https://mail.buildpro.test/send",
            email_relay_token="relay-token",
            email_from="invites@acme.com",
            app_url="https://acme.buildpro.test",
        )

        notifier = Notifier.from_settings(settings)

        assert notifier.is_configured
        assert notifier.relay_token == "relay-token"
        assert notifier.from_address == "invites@acme.com"
        assert notifier.app_url == "https://acme.buildpro.test"
