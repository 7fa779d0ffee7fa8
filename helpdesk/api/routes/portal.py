from __future__ import annotations

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from helpdesk.api.routes.tickets import MessageResponse, TicketResponse
from helpdesk.dependencies.services import PortalServiceDep

router = APIRouter(prefix="/portal", tags=["portal"])


class PortalLookupRequest(BaseModel):
    reference: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)


class PortalLookupResponse(BaseModel):
    ticket_id: str
    subject: str


class PortalReplyRequest(BaseModel):
    email: str = Field(..., min_length=1)
    content: str = Field(..., max_length=10_000)


@router.post("/lookup", response_model=PortalLookupResponse)
async def lookup_ticket(payload: PortalLookupRequest, portal: PortalServiceDep) -> PortalLookupResponse:
    ticket = await portal.lookup(payload.reference, payload.email)
    return PortalLookupResponse(ticket_id=ticket.id, subject=ticket.subject)


@router.get("/tickets/{ticket_id}", response_model=TicketResponse)
async def view_ticket(
    ticket_id: str,
    portal: PortalServiceDep,
    email: str = Query(..., min_length=1),
) -> TicketResponse:
    return TicketResponse.model_validate(await portal.view(ticket_id, email))


@router.post("/tickets/{ticket_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def reply_to_ticket(ticket_id: str, payload: PortalReplyRequest, portal: PortalServiceDep) -> MessageResponse:
    message = await portal.reply(ticket_id, payload.email, payload.content)
    return MessageResponse.model_validate(message)
