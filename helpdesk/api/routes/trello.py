"""Session-protected proxy over the Trello board API."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from helpdesk.dependencies.auth import AgentUser
from helpdesk.dependencies.services import TrelloClientDep

router = APIRouter(prefix="/trello", tags=["trello"])


class CardCreateRequest(BaseModel):
    list_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=16384)
    desc: str | None = None
    due: str | None = None
    pos: str = "bottom"


class CardUpdateRequest(BaseModel):
    name: str | None = None
    desc: str | None = None
    due: str | None = None
    dueComplete: bool | None = None
    idList: str | None = None
    pos: str | None = None
    closed: bool | None = None


@router.get("/status")
async def trello_status(client: TrelloClientDep, _: AgentUser) -> dict[str, Any]:
    return await client.status()


@router.get("/boards")
async def list_boards(client: TrelloClientDep, _: AgentUser) -> list[dict[str, Any]]:
    return await client.get_boards()


@router.get("/boards/{board_id}/lists")
async def list_board_lists(board_id: str, client: TrelloClientDep, _: AgentUser) -> list[dict[str, Any]]:
    return await client.get_lists(board_id)


@router.get("/lists/{list_id}/cards")
async def list_cards(list_id: str, client: TrelloClientDep, _: AgentUser) -> list[dict[str, Any]]:
    return await client.get_cards(list_id)


@router.post("/cards", status_code=status.HTTP_201_CREATED)
async def create_card(payload: CardCreateRequest, client: TrelloClientDep, _: AgentUser) -> dict[str, Any]:
    return await client.create_card(**payload.model_dump())


@router.put("/cards/{card_id}")
async def update_card(
    card_id: str,
    payload: CardUpdateRequest,
    client: TrelloClientDep,
    _: AgentUser,
) -> dict[str, Any]:
    return await client.update_card(card_id, **payload.model_dump(exclude_unset=True))


@router.delete("/cards/{card_id}")
async def delete_card(card_id: str, client: TrelloClientDep, _: AgentUser) -> dict[str, str]:
    await client.delete_card(card_id)
    return {"message": "Card deleted successfully"}
