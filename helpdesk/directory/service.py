from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError

from helpdesk.core.errors import BusinessRuleError, ConflictError, NotFoundError, ValidationFailedError
from helpdesk.db.pagination import Page
from helpdesk.db.session import utcnow

from .models import Agent, AgentRole, AgentStatus, Client, RelatedCounts
from .repository import AgentRepository, ClientRepository

logger = logging.getLogger(__name__)

DEFAULT_COMMISSION_RATE = Decimal("50")


class ClientNotFoundError(NotFoundError):
    """Raised when a client could not be located."""


class AgentNotFoundError(NotFoundError):
    """Raised when an agent could not be located."""


class DuplicateEmailError(ConflictError):
    """Raised when an email address is already registered."""


class ReferencedEntityError(BusinessRuleError):
    """Raised when deleting a record that other rows still point at."""


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(slots=True)
class ClientService:
    repository: ClientRepository

    async def create_client(
        self,
        *,
        name: str,
        email: str,
        phone: str | None = None,
        company: str | None = None,
        whatsapp_id: str | None = None,
        address: str | None = None,
        notes: str | None = None,
    ) -> Client:
        name = (name or "").strip()
        email = (email or "").strip().lower()
        if not name or not email:
            raise ValidationFailedError("Name and email are required")
        if await self.repository.get_by_email(email) is not None:
            raise DuplicateEmailError(f"A client with email {email} already exists")

        now = utcnow()
        client = Client(
            id=str(uuid.uuid4()),
            name=name,
            email=email,
            phone=_clean(phone),
            company=_clean(company),
            whatsapp_id=_clean(whatsapp_id),
            address=_clean(address),
            notes=notes,
            zoho_contact_id=None,
            created_at=now,
            updated_at=now,
        )
        try:
            return await self.repository.create_client(client)
        except IntegrityError as exc:
            raise DuplicateEmailError(f"A client with email {email} already exists") from exc

    async def find_or_create(self, *, name: str, email: str, **fields: Any) -> tuple[Client, bool]:
        """Return ``(client, created)`` matching ``email``; used by the intake channels."""

        existing = await self.repository.get_by_email(email.strip().lower())
        if existing is not None:
            return existing, False
        try:
            return await self.create_client(name=name, email=email, **fields), True
        except DuplicateEmailError:
            # lost a race with a concurrent intake for the same address
            existing = await self.repository.get_by_email(email.strip().lower())
            if existing is None:
                raise
            return existing, False

    async def get_client(self, client_id: str) -> Client:
        client = await self.repository.get_client(client_id)
        if client is None:
            raise ClientNotFoundError(f"Client {client_id} not found")
        return client

    async def get_related_counts(self, client_id: str) -> RelatedCounts:
        await self.get_client(client_id)
        return await self.repository.count_related(client_id)

    async def list_clients(
        self,
        *,
        search: str | None = None,
        company: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> Page[Client]:
        return await self.repository.list_clients(search=search, company=company, page=page, limit=limit)

    async def update_client(self, client_id: str, **changes: Any) -> Client:
        current = await self.get_client(client_id)
        if "name" in changes and not (changes["name"] or "").strip():
            raise ValidationFailedError("Name cannot be empty")
        if changes.get("email") is not None:
            email = changes["email"].strip().lower()
            if email != current.email and await self.repository.get_by_email(email) is not None:
                raise DuplicateEmailError(f"A client with email {email} already exists")
            changes["email"] = email
        try:
            updated = await self.repository.update_client(client_id, changes=changes, now=utcnow())
        except IntegrityError as exc:
            raise DuplicateEmailError("Email or WhatsApp id already registered") from exc
        if updated is None:
            raise ClientNotFoundError(f"Client {client_id} not found")
        return updated

    async def delete_client(self, client_id: str) -> None:
        counts = await self.get_related_counts(client_id)
        if counts.total:
            raise ReferencedEntityError(
                f"Cannot delete client with existing data "
                f"({counts.tickets} tickets, {counts.quotes} quotes, {counts.invoices} invoices)"
            )
        await self.repository.delete_client(client_id)
        logger.info("Deleted client %s", client_id)


def _validate_commission(rate: Decimal | float | int | None) -> Decimal | None:
    if rate is None:
        return None
    value = Decimal(str(rate))
    if value < 0 or value > 100:
        raise ValidationFailedError("Commission rate must be between 0 and 100")
    return value


@dataclass(slots=True)
class AgentService:
    repository: AgentRepository

    async def create_agent(
        self,
        *,
        name: str,
        email: str,
        role: AgentRole = AgentRole.AGENT,
        commission_rate: Decimal | float | None = None,
        status: AgentStatus = AgentStatus.ACTIVE,
        phone: str | None = None,
    ) -> Agent:
        name = (name or "").strip()
        email = (email or "").strip().lower()
        if not name or not email:
            raise ValidationFailedError("Name and email are required")
        rate = _validate_commission(commission_rate)
        if await self.repository.get_by_email(email) is not None:
            raise DuplicateEmailError(f"An agent with email {email} already exists")

        now = utcnow()
        agent = Agent(
            id=str(uuid.uuid4()),
            name=name,
            email=email,
            phone=_clean(phone),
            role=role,
            commission_rate=rate if rate is not None else DEFAULT_COMMISSION_RATE,
            status=status,
            created_at=now,
            updated_at=now,
        )
        try:
            return await self.repository.create_agent(agent)
        except IntegrityError as exc:
            raise DuplicateEmailError(f"An agent with email {email} already exists") from exc

    async def get_agent(self, agent_id: str) -> Agent:
        agent = await self.repository.get_agent(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent {agent_id} not found")
        return agent

    async def list_agents(
        self,
        *,
        status: AgentStatus | None = None,
        role: AgentRole | None = None,
        search: str | None = None,
    ) -> list[Agent]:
        return await self.repository.list_agents(status=status, role=role, search=search)

    async def update_agent(self, agent_id: str, **changes: Any) -> Agent:
        current = await self.get_agent(agent_id)
        if "commission_rate" in changes:
            changes["commission_rate"] = _validate_commission(changes["commission_rate"])
            if changes["commission_rate"] is None:
                changes.pop("commission_rate")
        if changes.get("email") is not None:
            email = changes["email"].strip().lower()
            if email != current.email and await self.repository.get_by_email(email) is not None:
                raise DuplicateEmailError(f"An agent with email {email} already exists")
            changes["email"] = email
        try:
            updated = await self.repository.update_agent(agent_id, changes=changes, now=utcnow())
        except IntegrityError as exc:
            raise DuplicateEmailError("Email already registered") from exc
        if updated is None:
            raise AgentNotFoundError(f"Agent {agent_id} not found")
        return updated

    async def delete_agent(self, agent_id: str) -> None:
        await self.get_agent(agent_id)
        counts = await self.repository.count_related(agent_id)
        if counts.total:
            raise ReferencedEntityError(
                "Cannot delete agent with associated tickets, quotes or invoices. "
                "Set the agent INACTIVE instead."
            )
        await self.repository.delete_agent(agent_id)
        logger.info("Deleted agent %s", agent_id)
