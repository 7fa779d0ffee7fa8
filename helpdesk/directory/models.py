from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum


class AgentRole(str, Enum):
    ADMIN = "ADMIN"
    SENIOR_AGENT = "SENIOR_AGENT"
    AGENT = "AGENT"


class AgentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


@dataclass(slots=True)
class Client:
    """Customer record shared by tickets, quotes and invoices."""

    id: str
    name: str
    email: str
    phone: str | None
    company: str | None
    whatsapp_id: str | None
    address: str | None
    notes: str | None
    zoho_contact_id: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class Agent:
    """Staff member; ``commission_rate`` is a percentage in [0, 100]."""

    id: str
    name: str
    email: str
    phone: str | None
    role: AgentRole
    commission_rate: Decimal
    status: AgentStatus
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class RelatedCounts:
    tickets: int = 0
    quotes: int = 0
    invoices: int = 0

    @property
    def total(self) -> int:
        return self.tickets + self.quotes + self.invoices
