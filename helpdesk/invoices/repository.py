from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import delete, or_, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from helpdesk.db.models import (
    BillTable,
    ClientTable,
    InvoiceItemTable,
    InvoiceTable,
    QuoteStatusLogTable,
    QuoteTable,
)
from helpdesk.db.pagination import Page, paginate_query
from helpdesk.db.session import ensure_utc, utcnow
from helpdesk.quotes.models import QuoteStatusLog
from helpdesk.quotes.state import QuoteStatus

from .models import Bill, Invoice, InvoiceItem, InvoiceListFilters
from .state import BillStatus, InvoiceStatus

_SORT_COLUMNS = {
    "created_at": InvoiceTable.created_at,
    "updated_at": InvoiceTable.updated_at,
    "total_amount": InvoiceTable.total_amount,
    "number": InvoiceTable.number,
    "due_date": InvoiceTable.due_date,
}

_EDITABLE_FIELDS = frozenset({"agent_id", "due_date", "notes"})


class InvoiceRepository:
    """Persistence for invoices, invoice lines and commission bills."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_invoice(self, invoice: Invoice, *, quote_log: QuoteStatusLog | None = None) -> Invoice:
        """Insert the invoice with all of its items atomically.

        A second invoice for the same quote violates ``invoices.quote_id``'s
        unique constraint and the whole transaction is rolled back.
        """

        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    InvoiceTable(
                        id=invoice.id,
                        number=invoice.number,
                        quote_id=invoice.quote_id,
                        client_id=invoice.client_id,
                        agent_id=invoice.agent_id,
                        subtotal=invoice.subtotal,
                        tax_rate=invoice.tax_rate,
                        tax_amount=invoice.tax_amount,
                        discount_rate=invoice.discount_rate,
                        discount_amount=invoice.discount_amount,
                        total_amount=invoice.total_amount,
                        status=invoice.status.value,
                        due_date=invoice.due_date,
                        paid_date=invoice.paid_date,
                        notes=invoice.notes,
                        created_at=invoice.created_at,
                        updated_at=invoice.updated_at,
                    )
                )
                await session.flush()
                for item in invoice.items:
                    session.add(
                        InvoiceItemTable(
                            id=item.id,
                            invoice_id=invoice.id,
                            service_id=item.service_id,
                            quantity=item.quantity,
                            rate=item.rate,
                            line_total=item.line_total,
                            description=item.description,
                            created_at=item.created_at,
                        )
                    )
                if quote_log is not None:
                    session.add(
                        QuoteStatusLogTable(
                            id=quote_log.id,
                            quote_id=quote_log.quote_id,
                            status=quote_log.status.value,
                            changed_by=quote_log.changed_by,
                            notes=quote_log.notes,
                            created_at=quote_log.created_at,
                        )
                    )
        return invoice

    async def get_invoice(self, invoice_id: str) -> Invoice | None:
        async with self._session_factory() as session:
            row = await session.get(InvoiceTable, invoice_id)
            if row is None:
                return None
            return await self._load_aggregate(session, row)

    async def find_invoice_id_for_quote(self, quote_id: str) -> str | None:
        async with self._session_factory() as session:
            result = await session.execute(select(InvoiceTable.id).where(InvoiceTable.quote_id == quote_id))
            return result.scalars().first()

    async def list_invoices(self, filters: InvoiceListFilters) -> Page[Invoice]:
        query = select(InvoiceTable)
        if filters.search:
            pattern = f"%{filters.search}%"
            query = query.join(ClientTable, ClientTable.id == InvoiceTable.client_id).where(
                or_(
                    InvoiceTable.number.ilike(pattern),
                    ClientTable.name.ilike(pattern),
                    ClientTable.email.ilike(pattern),
                )
            )
        if filters.status is not None:
            query = query.where(InvoiceTable.status == filters.status.value)
        if filters.agent_id:
            query = query.where(InvoiceTable.agent_id == filters.agent_id)
        if filters.client_id:
            query = query.where(InvoiceTable.client_id == filters.client_id)

        column = _SORT_COLUMNS.get(filters.sort_by, InvoiceTable.created_at)
        query = query.order_by(column.asc() if filters.sort_order == "asc" else column.desc())

        async with self._session_factory() as session:
            rows, total = await paginate_query(session, query, page=filters.page, limit=filters.limit)
        return Page(
            items=[self._table_to_invoice(row) for row in rows],
            total=total,
            page=filters.page,
            limit=filters.limit,
        )

    async def update_invoice(self, invoice_id: str, *, changes: Mapping[str, Any], now: datetime) -> Invoice | None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(InvoiceTable, invoice_id)
                if row is None:
                    return None
                for name, value in changes.items():
                    if name in _EDITABLE_FIELDS:
                        setattr(row, name, value)
                row.updated_at = now
            return await self._load_aggregate(session, row)

    async def change_status(
        self,
        invoice_id: str,
        *,
        status: InvoiceStatus,
        paid_date: datetime | None,
        now: datetime,
        notes: str | None = None,
    ) -> Invoice | None:
        async with self._session_factory() as session:
            async with session.begin():
                # The UPDATE goes first and holds the row against a concurrent delete.
                result = await session.execute(
                    update(InvoiceTable)
                    .where(InvoiceTable.id == invoice_id)
                    .values(status=status.value, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return None
                row = await session.get(InvoiceTable, invoice_id)
                if status == InvoiceStatus.PAID:
                    if paid_date is not None:
                        row.paid_date = paid_date
                    elif row.paid_date is None:
                        row.paid_date = now
                else:
                    row.paid_date = None
                if notes is not None:
                    row.notes = notes
            return await self._load_aggregate(session, row)

    async def delete_invoice(self, invoice_id: str, *, quote_log: QuoteStatusLog | None = None) -> bool:
        """Delete the invoice and its items; reopen the source quote as ACCEPTED.

        Returns ``False`` with nothing removed when the invoice is missing, PAID
        or billed at the time of the delete.
        """

        async with self._session_factory() as session:
            async with session.begin():
                billed = select(BillTable.id).where(BillTable.invoice_id == invoice_id).exists()
                result = await session.execute(
                    update(InvoiceTable)
                    .where(
                        InvoiceTable.id == invoice_id,
                        InvoiceTable.status != InvoiceStatus.PAID.value,
                        ~billed,
                    )
                    .values(updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return False
                row = await session.get(InvoiceTable, invoice_id)
                quote_id = row.quote_id
                await session.execute(delete(InvoiceItemTable).where(InvoiceItemTable.invoice_id == invoice_id))
                await session.delete(row)
                if quote_id is not None:
                    quote_row = await session.get(QuoteTable, quote_id)
                    if quote_row is not None:
                        quote_row.status = QuoteStatus.ACCEPTED.value
                        if quote_log is not None:
                            session.add(
                                QuoteStatusLogTable(
                                    id=quote_log.id,
                                    quote_id=quote_id,
                                    status=QuoteStatus.ACCEPTED.value,
                                    changed_by=quote_log.changed_by,
                                    notes=quote_log.notes,
                                    created_at=quote_log.created_at,
                                )
                            )
        return True

    async def create_bill(self, bill: Bill) -> Bill:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    BillTable(
                        id=bill.id,
                        invoice_id=bill.invoice_id,
                        agent_id=bill.agent_id,
                        total_amount=bill.total_amount,
                        status=bill.status.value,
                        created_at=bill.created_at,
                    )
                )
        return bill

    async def set_zoho_invoice_id(self, invoice_id: str, zoho_invoice_id: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(InvoiceTable, invoice_id)
                if row is not None:
                    row.zoho_invoice_id = zoho_invoice_id

    async def _load_aggregate(self, session: AsyncSession, row: InvoiceTable) -> Invoice:
        invoice = self._table_to_invoice(row)
        items = await session.execute(
            select(InvoiceItemTable)
            .where(InvoiceItemTable.invoice_id == row.id)
            .order_by(InvoiceItemTable.created_at.asc())
        )
        invoice.items = [self._table_to_item(item) for item in items.scalars().all()]
        bill = await session.execute(select(BillTable).where(BillTable.invoice_id == row.id))
        bill_row = bill.scalars().first()
        invoice.bill = self._table_to_bill(bill_row) if bill_row is not None else None
        return invoice

    @staticmethod
    def _table_to_invoice(row: InvoiceTable) -> Invoice:
        return Invoice(
            id=row.id,
            number=row.number,
            quote_id=row.quote_id,
            client_id=row.client_id,
            agent_id=row.agent_id,
            subtotal=Decimal(row.subtotal),
            tax_rate=Decimal(row.tax_rate),
            tax_amount=Decimal(row.tax_amount),
            discount_rate=Decimal(row.discount_rate),
            discount_amount=Decimal(row.discount_amount),
            total_amount=Decimal(row.total_amount),
            status=InvoiceStatus(row.status),
            due_date=ensure_utc(row.due_date),
            paid_date=ensure_utc(row.paid_date),
            notes=row.notes,
            zoho_invoice_id=row.zoho_invoice_id,
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )

    @staticmethod
    def _table_to_item(row: InvoiceItemTable) -> InvoiceItem:
        return InvoiceItem(
            id=row.id,
            invoice_id=row.invoice_id,
            service_id=row.service_id,
            quantity=Decimal(row.quantity),
            rate=Decimal(row.rate),
            line_total=Decimal(row.line_total),
            description=row.description,
            created_at=ensure_utc(row.created_at),
        )

    @staticmethod
    def _table_to_bill(row: BillTable) -> Bill:
        return Bill(
            id=row.id,
            invoice_id=row.invoice_id,
            agent_id=row.agent_id,
            total_amount=Decimal(row.total_amount),
            status=BillStatus(row.status),
            created_at=ensure_utc(row.created_at),
        )
