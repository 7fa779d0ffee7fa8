"""Trello REST client used by the kanban proxy routes."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from helpdesk.core.errors import IntegrationError, IntegrationNotConfiguredError

from .http import ProviderClient, error_message

logger = logging.getLogger(__name__)

TRELLO_BASE_URL = "https://api.trello.com/1"

# Card attributes the update endpoint passes through.
CARD_FIELDS = frozenset({"name", "desc", "due", "dueComplete", "idList", "pos", "closed"})


class TrelloClient(ProviderClient):
    provider = "trello"

    def __init__(
        self,
        *,
        api_key: str | None,
        token: str | None,
        base_url: str = TRELLO_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(http_client=http_client)
        self._api_key = api_key
        self._token = token
        self._base_url = base_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key and self._token)

    async def status(self) -> dict[str, Any]:
        if not self.is_configured:
            return {"configured": False, "connected": False, "username": None}
        try:
            member = await self._call("GET", "/members/me", params={"fields": "username,fullName"})
        except IntegrationError as exc:
            return {"configured": True, "connected": False, "username": None, "error": str(exc)}
        return {"configured": True, "connected": True, "username": member.get("username")}

    async def get_boards(self) -> list[dict[str, Any]]:
        return await self._call(
            "GET",
            "/members/me/boards",
            params={"filter": "open", "fields": "name,desc,url,closed"},
        )

    async def get_lists(self, board_id: str) -> list[dict[str, Any]]:
        return await self._call("GET", f"/boards/{board_id}/lists", params={"filter": "open"})

    async def get_cards(self, list_id: str) -> list[dict[str, Any]]:
        return await self._call("GET", f"/lists/{list_id}/cards")

    async def create_card(
        self,
        *,
        list_id: str,
        name: str,
        desc: str | None = None,
        due: str | None = None,
        pos: str = "bottom",
    ) -> dict[str, Any]:
        params = {"idList": list_id, "name": name, "pos": pos}
        if desc:
            params["desc"] = desc
        if due:
            params["due"] = due
        return await self._call("POST", "/cards", params=params)

    async def update_card(self, card_id: str, **fields: Any) -> dict[str, Any]:
        """Edit or move (``idList``) a card; unknown attributes are dropped."""

        params = {name: value for name, value in fields.items() if name in CARD_FIELDS and value is not None}
        return await self._call("PUT", f"/cards/{card_id}", params=params)

    async def delete_card(self, card_id: str) -> None:
        await self._call("DELETE", f"/cards/{card_id}")

    async def _call(self, method: str, path: str, *, params: dict[str, Any] | None = None) -> Any:
        if not self.is_configured:
            raise IntegrationNotConfiguredError("Trello not configured")
        query = {"key": self._api_key, "token": self._token, **(params or {})}
        try:
            response = await self._request(method, f"{self._base_url}{path}", params=query)
        except httpx.HTTPError as exc:
            logger.error("Trello %s %s failed: %s", method, path, exc)
            raise IntegrationError(f"Trello request failed: {exc}") from exc
        if response.is_error:
            raise IntegrationError(f"Trello API error {response.status_code}: {error_message(response)}")
        if not response.content:
            return {}
        return response.json()
