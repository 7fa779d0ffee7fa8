"""WhatsApp Business Cloud API client."""

from __future__ import annotations

import logging
import re
import uuid
from typing import Any, Sequence

import httpx

from helpdesk.core.logging import mask_phone

from .base import DeliveryResult
from .http import ProviderClient, error_message

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.facebook.com"


def format_phone(phone: str) -> str:
    """Strip everything but digits, the form the Cloud API expects."""

    return re.sub(r"[^0-9]", "", phone or "")


class WhatsAppClient(ProviderClient):
    """Sends text and template messages through ``/{phone_number_id}/messages``.

    Without credentials the client runs in dev mode: sends are logged and
    reported as simulated successes so the rest of the flow can be exercised.
    """

    provider = "whatsapp"

    def __init__(
        self,
        *,
        access_token: str | None,
        phone_number_id: str | None,
        api_version: str = "v18.0",
        base_url: str = GRAPH_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(http_client=http_client)
        self._access_token = access_token
        self._phone_number_id = phone_number_id
        self._base = f"{base_url.rstrip('/')}/{api_version}"

    @property
    def is_configured(self) -> bool:
        return bool(self._access_token and self._phone_number_id)

    async def send_text(self, to: str, body: str) -> DeliveryResult:
        return await self._send(
            to,
            {"type": "text", "text": {"preview_url": False, "body": body}},
        )

    async def send_template(
        self,
        to: str,
        template_name: str,
        params: Sequence[str] = (),
        language: str = "en",
    ) -> DeliveryResult:
        template: dict[str, Any] = {"name": template_name, "language": {"code": language}}
        if params:
            template["components"] = [
                {"type": "body", "parameters": [{"type": "text", "text": value} for value in params]}
            ]
        return await self._send(to, {"type": "template", "template": template})

    async def _send(self, to: str, content: dict[str, Any]) -> DeliveryResult:
        recipient = format_phone(to)
        if not self.is_configured:
            logger.info("WhatsApp dev mode, not sending %s message to %s", content["type"], mask_phone(recipient))
            return DeliveryResult(success=True, message_id=f"dev_{uuid.uuid4().hex}", simulated=True)

        payload = {"messaging_product": "whatsapp", "recipient_type": "individual", "to": recipient, **content}
        try:
            response = await self._request(
                "POST",
                f"{self._base}/{self._phone_number_id}/messages",
                json=payload,
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            logger.error("WhatsApp send to %s failed: %s", mask_phone(recipient), exc)
            return DeliveryResult(success=False, error="API request failed")

        if response.is_error:
            return DeliveryResult(success=False, error=error_message(response))
        messages = response.json().get("messages") or [{}]
        return DeliveryResult(success=True, message_id=messages[0].get("id"))

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}
