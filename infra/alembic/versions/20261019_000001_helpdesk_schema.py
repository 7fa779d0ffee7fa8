"""Helpdesk schema: directory, catalog, quotes, invoices and tickets."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(12, 2)
RATE = sa.Numeric(5, 2)
QUANTITY = sa.Numeric(10, 2)


def _id() -> sa.Column:
    return sa.Column("id", sa.String(length=36), primary_key=True, nullable=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    ]


def _totals() -> list[sa.Column]:
    return [
        sa.Column("subtotal", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("tax_rate", RATE, nullable=False, server_default=sa.text("0")),
        sa.Column("tax_amount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("discount_rate", RATE, nullable=False, server_default=sa.text("0")),
        sa.Column("discount_amount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("total_amount", MONEY, nullable=False, server_default=sa.text("0")),
    ]


def upgrade() -> None:
    op.create_table(
        "clients",
        _id(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("whatsapp_id", sa.String(length=50), nullable=True, unique=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("zoho_contact_id", sa.String(length=64), nullable=True),
        sa.Column("zoho_synced_at", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "agents",
        _id(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("commission_rate", RATE, nullable=False, server_default=sa.text("50")),
        sa.Column("status", sa.String(length=20), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "services",
        _id(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=100), nullable=False, index=True),
        sa.Column("rate", MONEY, nullable=False),
        sa.Column("unit", sa.String(length=50), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False, unique=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("zoho_item_id", sa.String(length=64), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "quotes",
        _id(),
        sa.Column("number", sa.String(length=32), nullable=False, unique=True),
        sa.Column("client_id", sa.String(length=36), sa.ForeignKey("clients.id"), nullable=False, index=True),
        sa.Column(
            "agent_id",
            sa.String(length=36),
            sa.ForeignKey("agents.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
        *_totals(),
        sa.Column("status", sa.String(length=20), nullable=False, index=True),
        sa.Column("valid_until", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("terms", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("expired_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("zoho_estimate_id", sa.String(length=64), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "quote_items",
        _id(),
        sa.Column(
            "quote_id",
            sa.String(length=36),
            sa.ForeignKey("quotes.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("service_id", sa.String(length=36), sa.ForeignKey("services.id"), nullable=False, index=True),
        sa.Column("quantity", QUANTITY, nullable=False),
        sa.Column("rate", MONEY, nullable=False),
        sa.Column("line_total", MONEY, nullable=False),
        sa.Column("custom_description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    op.create_table(
        "quote_status_logs",
        _id(),
        sa.Column(
            "quote_id",
            sa.String(length=36),
            sa.ForeignKey("quotes.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("changed_by", sa.String(length=36), nullable=True),
        sa.Column("notes", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    op.create_table(
        "invoices",
        _id(),
        sa.Column("number", sa.String(length=32), nullable=False, unique=True),
        sa.Column("quote_id", sa.String(length=36), sa.ForeignKey("quotes.id"), nullable=True, unique=True),
        sa.Column("client_id", sa.String(length=36), sa.ForeignKey("clients.id"), nullable=False, index=True),
        sa.Column(
            "agent_id",
            sa.String(length=36),
            sa.ForeignKey("agents.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
        *_totals(),
        sa.Column("status", sa.String(length=20), nullable=False, index=True),
        sa.Column("due_date", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("paid_date", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("zoho_invoice_id", sa.String(length=64), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "invoice_items",
        _id(),
        sa.Column(
            "invoice_id",
            sa.String(length=36),
            sa.ForeignKey("invoices.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("service_id", sa.String(length=36), sa.ForeignKey("services.id"), nullable=False, index=True),
        sa.Column("quantity", QUANTITY, nullable=False),
        sa.Column("rate", MONEY, nullable=False),
        sa.Column("line_total", MONEY, nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    op.create_table(
        "bills",
        _id(),
        sa.Column("invoice_id", sa.String(length=36), sa.ForeignKey("invoices.id"), nullable=False, unique=True),
        sa.Column("agent_id", sa.String(length=36), sa.ForeignKey("agents.id"), nullable=False, index=True),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )

    op.create_table(
        "tickets",
        _id(),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("client_id", sa.String(length=36), sa.ForeignKey("clients.id"), nullable=False, index=True),
        sa.Column(
            "agent_id",
            sa.String(length=36),
            sa.ForeignKey("agents.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
        sa.Column("channel", sa.String(length=20), nullable=False, index=True),
        sa.Column("status", sa.String(length=20), nullable=False, index=True),
        sa.Column("priority", sa.String(length=20), nullable=False),
        sa.Column("unread", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("session_id", sa.String(length=100), nullable=True, index=True),
        *_timestamps(),
    )

    op.create_table(
        "messages",
        _id(),
        sa.Column(
            "ticket_id",
            sa.String(length=36),
            sa.ForeignKey("tickets.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("sender_type", sa.String(length=10), nullable=False),
        sa.Column("sender_id", sa.String(length=36), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("external_id", sa.String(length=128), nullable=True, index=True),
        sa.Column("delivery_status", sa.String(length=20), nullable=True),
        sa.Column("timestamp", sa.TIMESTAMP(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("messages")
    op.drop_table("tickets")
    op.drop_table("bills")
    op.drop_table("invoice_items")
    op.drop_table("invoices")
    op.drop_table("quote_status_logs")
    op.drop_table("quote_items")
    op.drop_table("quotes")
    op.drop_table("services")
    op.drop_table("agents")
    op.drop_table("clients")
