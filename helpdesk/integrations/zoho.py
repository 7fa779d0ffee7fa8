"""Zoho Books client: contacts, estimates, invoices and items."""

from __future__ import annotations

import logging
import time
from datetime import date, datetime
from typing import Any, Mapping

import httpx

from helpdesk.core.errors import IntegrationError, IntegrationNotConfiguredError

from .http import ProviderClient, error_message

logger = logging.getLogger(__name__)

TOKEN_REFRESH_MARGIN = 300
ITEMS_PAGE_SIZE = 200

_ESTIMATE_STATUS_PATHS = {
    "SENT": "sent",
    "ACCEPTED": "accepted",
    "REJECTED": "declined",
}


def _created_id(body: Mapping[str, Any], entity: str) -> str:
    try:
        return str(body[entity][f"{entity}_id"])
    except (KeyError, TypeError) as exc:
        raise IntegrationError(f"Zoho Books response has no {entity}_id") from exc


def zoho_base_urls(region: str = "com") -> dict[str, str]:
    """Accounts and Books endpoints for a data-center region (com, eu, in, com.au, jp)."""

    return {
        "accounts": f"https://accounts.zoho.{region}",
        "books": f"https://www.zohoapis.{region}/books/v3",
    }


def _iso_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value) if value else date.today().isoformat()


class ZohoBooksClient(ProviderClient):
    """Refresh-token OAuth client implementing ``ExternalSyncTarget``."""

    provider = "zoho"

    def __init__(
        self,
        *,
        client_id: str | None,
        client_secret: str | None,
        refresh_token: str | None,
        organization_id: str | None,
        region: str = "com",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(http_client=http_client)
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._organization_id = organization_id
        urls = zoho_base_urls(region)
        self._accounts_url = urls["accounts"]
        self._books_url = urls["books"]
        self._token: str | None = None
        self._token_expires_at = 0.0

    @property
    def is_configured(self) -> bool:
        return bool(self._client_id and self._client_secret and self._refresh_token and self._organization_id)

    async def push_contact(self, contact: Mapping[str, Any], external_id: str | None = None) -> str:
        """Update the known contact, else match by email, else create a customer."""

        if external_id:
            await self._call("PUT", f"/contacts/{external_id}", json=dict(contact))
            return external_id
        email = contact.get("email")
        if email:
            found = await self._call("GET", "/contacts", params={"email": email})
            matches = found.get("contacts") or []
            if matches:
                return str(matches[0]["contact_id"])
        created = await self._call("POST", "/contacts", json={"contact_type": "customer", **contact})
        return _created_id(created, "contact")

    async def push_estimate(self, estimate: Mapping[str, Any], external_id: str | None = None) -> str:
        if external_id:
            await self._call("PUT", f"/estimates/{external_id}", json=dict(estimate))
            return external_id
        created = await self._call("POST", "/estimates", json=dict(estimate))
        return _created_id(created, "estimate")

    async def push_invoice(self, invoice: Mapping[str, Any], external_id: str | None = None) -> str:
        """Create or update an invoice.

        A payload carrying ``estimate_id`` and no ``external_id`` is converted
        from that estimate so Zoho keeps the two linked.
        """

        if external_id:
            body = {key: value for key, value in invoice.items() if key != "estimate_id"}
            await self._call("PUT", f"/invoices/{external_id}", json=body)
            return external_id
        if invoice.get("estimate_id"):
            created = await self._call(
                "POST",
                "/invoices/fromestimate",
                params={"estimate_id": invoice["estimate_id"]},
            )
        else:
            created = await self._call("POST", "/invoices", json=dict(invoice))
        return _created_id(created, "invoice")

    async def push_estimate_status(self, external_id: str, status: str) -> None:
        target = _ESTIMATE_STATUS_PATHS.get(status)
        if target is None:
            return
        await self._call("POST", f"/estimates/{external_id}/status/{target}")

    async def push_invoice_status(
        self,
        external_id: str,
        status: str,
        *,
        amount: Any = None,
        paid_date: Any = None,
    ) -> None:
        if status == "SENT":
            await self._call("POST", f"/invoices/{external_id}/status/sent")
        elif status == "PAID":
            await self._call(
                "POST",
                "/customerpayments",
                json={
                    "invoices": [{"invoice_id": external_id, "amount_applied": float(amount or 0)}],
                    "date": _iso_date(paid_date),
                    "payment_mode": "cash",
                },
            )

    async def pull_items(self) -> list[Mapping[str, Any]]:
        items: list[Mapping[str, Any]] = []
        page = 1
        while True:
            data = await self._call("GET", "/items", params={"page": page, "per_page": ITEMS_PAGE_SIZE})
            items.extend(data.get("items") or [])
            if not (data.get("page_context") or {}).get("has_more_page"):
                return items
            page += 1

    async def _call(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> dict[str, Any]:
        if not self.is_configured:
            raise IntegrationNotConfiguredError("Zoho not configured")
        query = {"organization_id": self._organization_id, **(params or {})}
        try:
            token = await self._access_token()
            response = await self._request(
                method,
                f"{self._books_url}{path}",
                params=query,
                json=json,
                headers={"Authorization": f"Zoho-oauthtoken {token}"},
            )
        except httpx.HTTPError as exc:
            raise IntegrationError(f"Zoho Books {method} {path} failed: {exc}") from exc
        if response.is_error:
            raise IntegrationError(f"Zoho Books {method} {path} failed: {error_message(response)}")
        try:
            data = response.json() if response.content else {}
        except ValueError as exc:
            raise IntegrationError(f"Zoho Books {method} {path} returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise IntegrationError(f"Zoho Books {method} {path} returned an unexpected body")
        return data

    async def _access_token(self) -> str:
        if self._token and self._token_expires_at - TOKEN_REFRESH_MARGIN > time.monotonic():
            return self._token

        response = await self._request(
            "POST",
            f"{self._accounts_url}/oauth/v2/token",
            data={
                "grant_type": "refresh_token",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": self._refresh_token,
            },
        )
        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {}
        if response.is_error or not isinstance(data, dict) or not data.get("access_token"):
            raise IntegrationError(f"Failed to refresh Zoho access token: {error_message(response)}")
        self._token = data["access_token"]
        self._token_expires_at = time.monotonic() + int(data.get("expires_in", 3600))
        logger.info("Refreshed Zoho access token")
        return self._token
