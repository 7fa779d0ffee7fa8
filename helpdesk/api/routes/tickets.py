from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from helpdesk.api.pagination import MAX_PAGE_SIZE, PaginatedResponse, paginated
from helpdesk.dependencies.auth import AgentUser
from helpdesk.dependencies.services import TicketServiceDep
from helpdesk.integrations.base import DeliveryStatus
from helpdesk.tickets.models import Message, Ticket, TicketListFilters
from helpdesk.tickets.state import SenderType, TicketChannel, TicketPriority, TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])


class TicketCreateRequest(BaseModel):
    subject: str = Field(..., min_length=1, max_length=255)
    client_id: str = Field(..., min_length=1)
    channel: TicketChannel
    priority: TicketPriority = TicketPriority.MEDIUM
    agent_id: str | None = None
    description: str | None = None
    message: str | None = None


class TicketUpdateRequest(BaseModel):
    subject: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    agent_id: str | None = None

    def ensure_payload(self) -> None:
        if not self.model_fields_set:
            raise HTTPException(status_code=400, detail="No fields provided for update")


class MessageCreateRequest(BaseModel):
    content: str = Field(..., max_length=10_000)
    sender_type: SenderType = SenderType.AGENT
    sender_id: str | None = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    sender_type: SenderType
    sender_id: str | None
    content: str
    read: bool
    timestamp: datetime
    external_id: str | None
    delivery_status: DeliveryStatus | None


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    subject: str
    description: str | None
    client_id: str
    agent_id: str | None
    channel: TicketChannel
    status: TicketStatus
    priority: TicketPriority
    unread: bool
    session_id: str | None
    created_at: datetime
    updated_at: datetime
    messages: list[MessageResponse] = Field(default_factory=list)


class MarkReadResponse(BaseModel):
    updated: int


def _to_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse.model_validate(ticket)


def _to_message_response(message: Message) -> MessageResponse:
    return MessageResponse.model_validate(message)


@router.get("", response_model=PaginatedResponse[TicketResponse])
async def list_tickets(
    service: TicketServiceDep,
    _: AgentUser,
    channel: TicketChannel | None = Query(default=None),
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
    agent_id: str | None = Query(default=None),
    client_id: str | None = Query(default=None),
    unread: bool | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=MAX_PAGE_SIZE),
) -> PaginatedResponse[TicketResponse]:
    result = await service.list_tickets(
        TicketListFilters(
            channel=channel,
            status=status_filter,
            agent_id=agent_id,
            client_id=client_id,
            unread=unread,
            page=page,
            limit=limit,
        )
    )
    return paginated(result, _to_response)


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(payload: TicketCreateRequest, service: TicketServiceDep, _: AgentUser) -> TicketResponse:
    ticket = await service.create_ticket(
        subject=payload.subject,
        client_id=payload.client_id,
        channel=payload.channel,
        priority=payload.priority,
        agent_id=payload.agent_id,
        description=payload.description,
        initial_message=payload.message,
    )
    return _to_response(ticket)


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: str, service: TicketServiceDep, _: AgentUser) -> TicketResponse:
    return _to_response(await service.get_ticket(ticket_id))


@router.put("/{ticket_id}", response_model=TicketResponse)
async def update_ticket(
    ticket_id: str,
    payload: TicketUpdateRequest,
    service: TicketServiceDep,
    _: AgentUser,
) -> TicketResponse:
    payload.ensure_payload()
    ticket = await service.update_ticket(ticket_id, **payload.model_dump(exclude_unset=True))
    return _to_response(ticket)


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(ticket_id: str, service: TicketServiceDep, _: AgentUser) -> None:
    await service.delete_ticket(ticket_id)


@router.get("/{ticket_id}/messages", response_model=list[MessageResponse])
async def list_messages(ticket_id: str, service: TicketServiceDep, _: AgentUser) -> list[MessageResponse]:
    return [_to_message_response(message) for message in await service.list_messages(ticket_id)]


@router.post("/{ticket_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def post_message(
    ticket_id: str,
    payload: MessageCreateRequest,
    service: TicketServiceDep,
    _: AgentUser,
) -> MessageResponse:
    message = await service.post_message(
        ticket_id,
        content=payload.content,
        sender_type=payload.sender_type,
        sender_id=payload.sender_id,
    )
    return _to_message_response(message)


@router.put("/{ticket_id}/messages/{message_id}/read", response_model=MessageResponse)
async def mark_message_read(
    ticket_id: str,
    message_id: str,
    service: TicketServiceDep,
    _: AgentUser,
) -> MessageResponse:
    return _to_message_response(await service.mark_message_read(ticket_id, message_id))


@router.put("/{ticket_id}/read", response_model=MarkReadResponse)
async def mark_ticket_read(ticket_id: str, service: TicketServiceDep, _: AgentUser) -> MarkReadResponse:
    return MarkReadResponse(updated=await service.mark_all_read(ticket_id))
