"""SQLModel table definitions for the helpdesk data layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String, Text
from sqlmodel import Field, SQLModel

MONEY = Numeric(12, 2)
QUANTITY = Numeric(10, 2)


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    """Generate a random UUID string."""

    return str(uuid.uuid4())


def _fk(target: str, *, nullable: bool = False, ondelete: str | None = None, **kwargs) -> Column:
    return Column(String(36), ForeignKey(target, ondelete=ondelete), nullable=nullable, index=True, **kwargs)


def _timestamp(nullable: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable)


class ClientTable(SQLModel, table=True):
    """Customers that own tickets, quotes and invoices."""

    __tablename__ = "clients"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    email: str = Field(sa_column=Column(String(255), nullable=False, unique=True))
    phone: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    company: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    whatsapp_id: str | None = Field(default=None, sa_column=Column(String(50), nullable=True, unique=True))
    address: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    notes: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    zoho_contact_id: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    zoho_synced_at: datetime | None = Field(default=None, sa_column=_timestamp(nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp())
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp())


class AgentTable(SQLModel, table=True):
    """Staff members that handle tickets and own quotes."""

    __tablename__ = "agents"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    email: str = Field(sa_column=Column(String(255), nullable=False, unique=True))
    phone: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    role: str = Field(sa_column=Column(String(20), nullable=False))
    commission_rate: Decimal = Field(default=Decimal("50"), sa_column=Column(Numeric(5, 2), nullable=False))
    status: str = Field(sa_column=Column(String(20), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp())
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp())


class ServiceTable(SQLModel, table=True):
    """Catalog entries that quote and invoice lines refer to."""

    __tablename__ = "services"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    category: str = Field(sa_column=Column(String(100), nullable=False, index=True))
    rate: Decimal = Field(sa_column=Column(MONEY, nullable=False))
    unit: str = Field(sa_column=Column(String(50), nullable=False))
    sku: str = Field(sa_column=Column(String(64), nullable=False, unique=True))
    active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    zoho_item_id: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp())
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp())


class QuoteTable(SQLModel, table=True):
    """Priced proposals moving through the quote lifecycle."""

    __tablename__ = "quotes"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    number: str = Field(sa_column=Column(String(32), nullable=False, unique=True))
    client_id: str = Field(sa_column=_fk("clients.id"))
    agent_id: str | None = Field(default=None, sa_column=_fk("agents.id", nullable=True, ondelete="SET NULL"))
    subtotal: Decimal = Field(default=Decimal("0"), sa_column=Column(MONEY, nullable=False))
    tax_rate: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(5, 2), nullable=False))
    tax_amount: Decimal = Field(default=Decimal("0"), sa_column=Column(MONEY, nullable=False))
    discount_rate: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(5, 2), nullable=False))
    discount_amount: Decimal = Field(default=Decimal("0"), sa_column=Column(MONEY, nullable=False))
    total_amount: Decimal = Field(default=Decimal("0"), sa_column=Column(MONEY, nullable=False))
    status: str = Field(sa_column=Column(String(20), nullable=False, index=True))
    valid_until: datetime | None = Field(default=None, sa_column=_timestamp(nullable=True))
    notes: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    terms: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    sent_at: datetime | None = Field(default=None, sa_column=_timestamp(nullable=True))
    accepted_at: datetime | None = Field(default=None, sa_column=_timestamp(nullable=True))
    expired_at: datetime | None = Field(default=None, sa_column=_timestamp(nullable=True))
    zoho_estimate_id: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp())
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp())


class QuoteItemTable(SQLModel, table=True):
    """Line items belonging to a quote."""

    __tablename__ = "quote_items"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    quote_id: str = Field(sa_column=_fk("quotes.id", ondelete="CASCADE"))
    service_id: str = Field(sa_column=_fk("services.id"))
    quantity: Decimal = Field(sa_column=Column(QUANTITY, nullable=False))
    rate: Decimal = Field(sa_column=Column(MONEY, nullable=False))
    line_total: Decimal = Field(sa_column=Column(MONEY, nullable=False))
    custom_description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp())


class QuoteStatusLogTable(SQLModel, table=True):
    """Append-only history of quote status changes."""

    __tablename__ = "quote_status_logs"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    quote_id: str = Field(sa_column=_fk("quotes.id", ondelete="CASCADE"))
    status: str = Field(sa_column=Column(String(20), nullable=False))
    changed_by: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    notes: str = Field(default="", sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp())


class InvoiceTable(SQLModel, table=True):
    """Billing documents, optionally produced from an accepted quote."""

    __tablename__ = "invoices"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    number: str = Field(sa_column=Column(String(32), nullable=False, unique=True))
    quote_id: str | None = Field(
        default=None, sa_column=Column(String(36), ForeignKey("quotes.id"), nullable=True, unique=True)
    )
    client_id: str = Field(sa_column=_fk("clients.id"))
    agent_id: str | None = Field(default=None, sa_column=_fk("agents.id", nullable=True, ondelete="SET NULL"))
    subtotal: Decimal = Field(default=Decimal("0"), sa_column=Column(MONEY, nullable=False))
    tax_rate: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(5, 2), nullable=False))
    tax_amount: Decimal = Field(default=Decimal("0"), sa_column=Column(MONEY, nullable=False))
    discount_rate: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(5, 2), nullable=False))
    discount_amount: Decimal = Field(default=Decimal("0"), sa_column=Column(MONEY, nullable=False))
    total_amount: Decimal = Field(default=Decimal("0"), sa_column=Column(MONEY, nullable=False))
    status: str = Field(sa_column=Column(String(20), nullable=False, index=True))
    due_date: datetime | None = Field(default=None, sa_column=_timestamp(nullable=True))
    paid_date: datetime | None = Field(default=None, sa_column=_timestamp(nullable=True))
    notes: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    zoho_invoice_id: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp())
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp())


class InvoiceItemTable(SQLModel, table=True):
    """Line items belonging to an invoice."""

    __tablename__ = "invoice_items"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    invoice_id: str = Field(sa_column=_fk("invoices.id", ondelete="CASCADE"))
    service_id: str = Field(sa_column=_fk("services.id"))
    quantity: Decimal = Field(sa_column=Column(QUANTITY, nullable=False))
    rate: Decimal = Field(sa_column=Column(MONEY, nullable=False))
    line_total: Decimal = Field(sa_column=Column(MONEY, nullable=False))
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp())


class BillTable(SQLModel, table=True):
    """Agent commission bills raised against paid invoices."""

    __tablename__ = "bills"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    invoice_id: str = Field(sa_column=Column(String(36), ForeignKey("invoices.id"), nullable=False, unique=True))
    agent_id: str = Field(sa_column=_fk("agents.id"))
    total_amount: Decimal = Field(sa_column=Column(MONEY, nullable=False))
    status: str = Field(sa_column=Column(String(20), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp())


class TicketTable(SQLModel, table=True):
    """Support conversations opened through one of the intake channels."""

    __tablename__ = "tickets"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    subject: str = Field(sa_column=Column(String(255), nullable=False))
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    client_id: str = Field(sa_column=_fk("clients.id"))
    agent_id: str | None = Field(default=None, sa_column=_fk("agents.id", nullable=True, ondelete="SET NULL"))
    channel: str = Field(sa_column=Column(String(20), nullable=False, index=True))
    status: str = Field(sa_column=Column(String(20), nullable=False, index=True))
    priority: str = Field(sa_column=Column(String(20), nullable=False))
    unread: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    session_id: str | None = Field(default=None, sa_column=Column(String(100), nullable=True, index=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp())
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=_timestamp())


class MessageTable(SQLModel, table=True):
    """Individual messages threaded under a ticket."""

    __tablename__ = "messages"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(sa_column=_fk("tickets.id", ondelete="CASCADE"))
    sender_type: str = Field(sa_column=Column(String(10), nullable=False))
    sender_id: str | None = Field(default=None, sa_column=Column(String(36), nullable=True))
    content: str = Field(sa_column=Column(Text, nullable=False))
    read: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    external_id: str | None = Field(default=None, sa_column=Column(String(128), nullable=True, index=True))
    delivery_status: str | None = Field(default=None, sa_column=Column(String(20), nullable=True))
    timestamp: datetime = Field(default_factory=_utcnow, sa_column=_timestamp())
