"""
HTTP client for the access API.

Used by sessions that keep a local permission cache. The caller's identity
is passed in the trusted user header set by the identity gateway.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class AccessApiClient:
    """Thin async client over the /api endpoints."""

    def __init__(
        self,
        base_url: str,
        user_id: str,
        timeout: float = 10.0,
        user_header: str = "X-User-ID",
        tenant_header: str = "X-Tenant-ID",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.timeout = timeout
        self.user_header = user_header
        self.tenant_header = tenant_header
        self._transport = transport

    def _headers(self, tenant_id: Optional[str] = None) -> Dict[str, str]:
        headers = {self.user_header: self.user_id}
        if tenant_id:
            headers[self.tenant_header] = tenant_id
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        tenant_id: Optional[str] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = await client.request(
                method,
                path,
                headers=self._headers(tenant_id),
                json=json,
            )
        response.raise_for_status()
        return response.json()

    async def get_my_permissions(self, tenant_id: str) -> Dict[str, Any]:
        """Resolved permission set of the caller in a tenant."""
        return await self._request("GET", "/api/permissions/me", tenant_id=tenant_id)

    async def get_permission_tokens(self, tenant_id: str) -> List[str]:
        """Just the token list, for SessionPermissionCache."""
        data = await self.get_my_permissions(tenant_id)
        return list(data.get("permissions", []))

    async def check(self, tenant_id: str, permission: str) -> bool:
        data = await self._request(
            "POST",
            "/api/permissions/check",
            tenant_id=tenant_id,
            json={"permission": permission},
        )
        return bool(data.get("allowed"))

    async def list_my_tenants(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/api/tenants/mine")
        return list(data.get("memberships", []))
