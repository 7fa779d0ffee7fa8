"""Capability interfaces the domain services depend on.

Concrete HTTP clients live next to this module; the quote, invoice and ticket
services only ever see these protocols.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Protocol


class DeliveryStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"
    FAILED = "FAILED"
    SIMULATED = "SIMULATED"


@dataclass(slots=True)
class DeliveryResult:
    """Outcome of pushing one outbound message to a provider."""

    success: bool
    message_id: str | None = None
    error: str | None = None
    simulated: bool = False

    @property
    def status(self) -> DeliveryStatus:
        if not self.success:
            return DeliveryStatus.FAILED
        return DeliveryStatus.SIMULATED if self.simulated else DeliveryStatus.SENT


@dataclass(slots=True)
class SyncResult:
    created: int = 0
    updated: int = 0
    errors: list[str] = field(default_factory=list)


class MessagingSender(Protocol):
    async def send_text(self, to: str, body: str) -> DeliveryResult:
        ...


class EmailSender(Protocol):
    async def send_email(self, to: str, subject: str, body: str) -> DeliveryResult:
        ...


class ExternalSyncTarget(Protocol):
    """Accounting/CRM system that receives contacts, estimates and invoices."""

    @property
    def is_configured(self) -> bool:
        ...

    async def push_contact(self, contact: Mapping[str, Any], external_id: str | None = None) -> str:
        ...

    async def push_estimate(self, estimate: Mapping[str, Any], external_id: str | None = None) -> str:
        ...

    async def push_invoice(self, invoice: Mapping[str, Any], external_id: str | None = None) -> str:
        ...

    async def push_estimate_status(self, external_id: str, status: str) -> None:
        ...

    async def push_invoice_status(
        self,
        external_id: str,
        status: str,
        *,
        amount: Any = None,
        paid_date: Any = None,
    ) -> None:
        ...

    async def pull_items(self) -> list[Mapping[str, Any]]:
        ...


class StatusSyncHook(Protocol):
    """Receives quote/invoice status changes after they are committed."""

    async def quote_status_changed(self, quote: Any) -> None:
        ...

    async def invoice_status_changed(self, invoice: Any) -> None:
        ...
