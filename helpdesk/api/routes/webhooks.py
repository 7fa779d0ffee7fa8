"""Public intake webhooks for the form, chat, WhatsApp and email channels."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from helpdesk.core.config import Settings, get_settings
from helpdesk.dependencies.auth import verify_webhook_key
from helpdesk.dependencies.services import IntakeServiceDep
from helpdesk.tickets.intake import ChatMessage, FormSubmission, InboundEmail

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class FormWebhookRequest(BaseModel):
    name: str = ""
    email: str = ""
    message: str = ""
    phone: str | None = None
    company: str | None = None
    service: str | None = None
    subject: str | None = None


class ChatWebhookRequest(BaseModel):
    content: str = ""
    session_id: str | None = None
    name: str | None = None
    email: str | None = None
    phone: str | None = None


class EmailNotification(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(..., alias="from")
    from_name: str | None = None
    subject: str = ""
    body: str = ""
    message_id: str | None = None


class EmailWebhookRequest(BaseModel):
    value: list[EmailNotification] = Field(default_factory=list)


class IntakeResponse(BaseModel):
    ticket_id: str
    client_id: str
    message: str


@router.post(
    "/form",
    response_model=IntakeResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(verify_webhook_key)],
)
async def form_webhook(payload: FormWebhookRequest, intake: IntakeServiceDep) -> IntakeResponse:
    result = await intake.submit_form(FormSubmission(**payload.model_dump()))
    return IntakeResponse(
        ticket_id=result.ticket.id,
        client_id=result.client.id,
        message="Thank you for contacting us. We will get back to you shortly.",
    )


@router.post(
    "/chat",
    response_model=IntakeResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(verify_webhook_key)],
)
async def chat_webhook(
    payload: ChatWebhookRequest,
    intake: IntakeServiceDep,
    x_session_id: Annotated[str | None, Header()] = None,
) -> IntakeResponse:
    result = await intake.receive_chat(
        ChatMessage(
            session_id=payload.session_id or x_session_id or "",
            content=payload.content,
            name=payload.name,
            email=payload.email,
            phone=payload.phone,
        )
    )
    return IntakeResponse(
        ticket_id=result.ticket.id,
        client_id=result.client.id,
        message="Message received",
    )


@router.get("/whatsapp", response_class=PlainTextResponse)
async def whatsapp_verify(
    settings: Annotated[Settings, Depends(get_settings)],
    mode: str | None = Query(default=None, alias="hub.mode"),
    token: str | None = Query(default=None, alias="hub.verify_token"),
    challenge: str | None = Query(default=None, alias="hub.challenge"),
) -> PlainTextResponse:
    expected = settings.whatsapp_verify_token
    if mode == "subscribe" and expected and token == expected:
        logger.info("WhatsApp webhook verified")
        return PlainTextResponse(challenge or "")
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/whatsapp")
async def whatsapp_inbound(request: Request, intake: IntakeServiceDep) -> dict[str, Any]:
    """Always acknowledge so the provider does not retry the delivery."""

    try:
        payload = await request.json()
        result = await intake.receive_whatsapp(payload if isinstance(payload, dict) else {})
    except Exception:  # noqa: BLE001 - a non-200 makes the provider redeliver
        logger.exception("WhatsApp webhook processing failed")
        return {"status": "error"}
    return {
        "status": "ok",
        "messages": result.messages,
        "duplicates": result.duplicates,
        "statuses": result.statuses,
    }


@router.post("/email", response_model=None)
async def email_inbound(
    intake: IntakeServiceDep,
    validation_token: str | None = Query(default=None, alias="validationToken"),
    payload: EmailWebhookRequest | None = None,
) -> PlainTextResponse | JSONResponse:
    if validation_token is not None:
        return PlainTextResponse(validation_token)
    notifications = payload.value if payload is not None else []
    results = await intake.receive_emails(
        InboundEmail(
            sender=item.sender,
            subject=item.subject,
            body=item.body,
            sender_name=item.from_name,
            message_id=item.message_id,
        )
        for item in notifications
    )
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content={"received": len(notifications), "processed": len(results)},
    )
