"""
Outbound email notifications.

Invitations and welcome mail are best-effort: send methods report failure
by returning False and never raise. Without a configured relay, messages
are logged instead of sent.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

import httpx

from access_core.config import NotificationSettings

logger = logging.getLogger(__name__)


class Notifier:
    """Sends mail through an HTTP email relay."""

    def __init__(
        self,
        relay_url: Optional[str] = None,
        relay_token: Optional[str] = None,
        from_address: str = "noreply@buildpro.app",
        app_url: str = "http://localhost:3000",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.relay_url = relay_url
        self.relay_token = relay_token
        self.from_address = from_address
        self.app_url = app_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

        if not self.is_configured:
            logger.warning("Email relay not configured. Emails will be logged only.")

    @classmethod
    def from_settings(cls, settings: NotificationSettings) -> "Notifier":
        return cls(
            relay_url=settings.email_relay_url,
            relay_token=(
                settings.email_relay_token.get_secret_value()
                if settings.email_relay_token
                else None
            ),
            from_address=settings.email_from,
            app_url=settings.app_url,
            timeout=settings.email_timeout,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.relay_url)

    async def send_email(
        self,
        to: str,
        subject: str,
        text: str,
        html: Optional[str] = None,
    ) -> bool:
        """
        Send one email.

        Returns:
            True if the relay accepted it (or it was logged in mock mode).
        """
        if not self.is_configured:
            logger.info(f"[MOCK EMAIL] To: {to} | Subject: {subject}")
            logger.debug(f"[MOCK EMAIL BODY] {text}")
            return True

        headers = {"Content-Type": "application/json"}
        if self.relay_token:
            headers["Authorization"] = f"Bearer {self.relay_token}"

        payload = {
            "to": to,
            "from": self.from_address,
            "subject": subject,
            "text": text,
            "html": html or text,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.relay_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Failed to send email: {e}", extra={"subject": subject})
            return False

        if response.status_code >= 400:
            logger.error(
                f"Email relay rejected message: {response.status_code}",
                extra={"subject": subject},
            )
            return False

        logger.info("Email sent", extra={"subject": subject})
        return True

    def invitation_link(self, user_id: str, tenant_id: str) -> str:
        query = urlencode({"userId": user_id, "companyId": tenant_id})
        return f"{self.app_url}/accept-invite?{query}"

    async def send_invitation(
        self,
        to: str,
        role: str,
        company_name: str,
        user_id: str,
        tenant_id: str,
    ) -> bool:
        """Invite a user to a company."""
        link = self.invitation_link(user_id, tenant_id)
        subject = f"You've been invited to join {company_name} on BuildPro"
        text = (
            "Hello,\n\n"
            f"You have been invited to join {company_name} as a {role}.\n\n"
            "Click the link below to accept your invitation:\n"
            f"{link}\n\n"
            "If you did not expect this invitation, please ignore this email.\n"
        )
        html = (
            '<div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">'
            "<h2>Welcome to BuildPro</h2>"
            f"<p>You have been invited to join <strong>{company_name}</strong> "
            f"as a <strong>{role}</strong>.</p>"
            f'<p><a href="{link}">Accept Invitation</a></p>'
            f"<p>If the button doesn't work, copy and paste this link:<br/>{link}</p>"
            "</div>"
        )
        return await self.send_email(to, subject, text, html)

    async def send_welcome(self, to: str, owner_name: str, company_name: str) -> bool:
        """Welcome the owner of a newly created company."""
        subject = f"{company_name} is ready on BuildPro"
        text = (
            f"Hello {owner_name or 'there'},\n\n"
            f"Your company {company_name} has been created and you are its administrator.\n"
            f"Sign in at {self.app_url} to invite your team.\n"
        )
        return await self.send_email(to, subject, text)
