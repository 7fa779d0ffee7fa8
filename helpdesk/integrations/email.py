"""Outbound mail through Microsoft Graph using application credentials."""

from __future__ import annotations

import logging
import time
import uuid

import httpx

from helpdesk.core.errors import IntegrationError
from helpdesk.core.logging import mask_email

from .base import DeliveryResult
from .http import ProviderClient, error_message

logger = logging.getLogger(__name__)

LOGIN_BASE_URL = "https://login.microsoftonline.com"
GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
TOKEN_REFRESH_MARGIN = 300


class GraphEmailClient(ProviderClient):
    provider = "graph"

    def __init__(
        self,
        *,
        tenant_id: str | None,
        client_id: str | None,
        client_secret: str | None,
        sender_address: str | None,
        login_url: str = LOGIN_BASE_URL,
        graph_url: str = GRAPH_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(http_client=http_client)
        self._tenant_id = tenant_id
        self._client_id = client_id
        self._client_secret = client_secret
        self._sender = sender_address
        self._login_url = login_url.rstrip("/")
        self._graph_url = graph_url.rstrip("/")
        self._token: str | None = None
        self._token_expires_at = 0.0

    @property
    def is_configured(self) -> bool:
        return bool(self._tenant_id and self._client_id and self._client_secret and self._sender)

    async def send_email(self, to: str, subject: str, body: str) -> DeliveryResult:
        if not self.is_configured:
            logger.info("Graph mail not configured, simulating send to %s", mask_email(to))
            return DeliveryResult(success=True, message_id=f"dev_{uuid.uuid4().hex}", simulated=True)

        message = {
            "subject": subject,
            "body": {"contentType": "Text", "content": body},
            "toRecipients": [{"emailAddress": {"address": to}}],
        }
        try:
            token = await self._access_token()
            response = await self._request(
                "POST",
                f"{self._graph_url}/users/{self._sender}/sendMail",
                json={"message": message, "saveToSentItems": True},
                headers={"Authorization": f"Bearer {token}"},
            )
        except (httpx.HTTPError, IntegrationError) as exc:
            logger.error("Graph sendMail to %s failed: %s", mask_email(to), exc)
            return DeliveryResult(success=False, error=str(exc))

        if response.is_error:
            return DeliveryResult(success=False, error=error_message(response))
        return DeliveryResult(success=True)

    async def _access_token(self) -> str:
        """Client-credentials token, reused until five minutes before expiry."""

        if self._token and self._token_expires_at - TOKEN_REFRESH_MARGIN > time.monotonic():
            return self._token

        response = await self._request(
            "POST",
            f"{self._login_url}/{self._tenant_id}/oauth2/v2.0/token",
            data={
                "grant_type": "client_credentials",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "scope": GRAPH_SCOPE,
            },
        )
        if response.is_error:
            raise IntegrationError(f"Graph token request failed: {error_message(response)}")
        data = response.json()
        self._token = data["access_token"]
        self._token_expires_at = time.monotonic() + int(data.get("expires_in", 3600))
        return self._token
