from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Sequence

from sqlalchemy import delete, or_, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from helpdesk.db.models import ClientTable, InvoiceTable, QuoteItemTable, QuoteStatusLogTable, QuoteTable
from helpdesk.db.pagination import Page, paginate_query
from helpdesk.db.session import ensure_utc, utcnow

from .models import Quote, QuoteItem, QuoteItemDraft, QuoteListFilters, QuoteStatusLog
from .state import QuoteStateMachine, QuoteStatus
from .totals import compute_totals, line_total

_SORT_COLUMNS = {
    "created_at": QuoteTable.created_at,
    "updated_at": QuoteTable.updated_at,
    "total_amount": QuoteTable.total_amount,
    "number": QuoteTable.number,
    "valid_until": QuoteTable.valid_until,
}

# Columns a caller may overwrite through ``update_quote``.
_EDITABLE_FIELDS = frozenset({"agent_id", "notes", "terms", "valid_until", "tax_rate", "discount_rate"})


class QuoteRepository:
    """Persistence for quotes, their line items and status history."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_quote(self, quote: Quote) -> Quote:
        """Insert the quote, its items and its initial log rows in one transaction."""

        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    QuoteTable(
                        id=quote.id,
                        number=quote.number,
                        client_id=quote.client_id,
                        agent_id=quote.agent_id,
                        subtotal=quote.subtotal,
                        tax_rate=quote.tax_rate,
                        tax_amount=quote.tax_amount,
                        discount_rate=quote.discount_rate,
                        discount_amount=quote.discount_amount,
                        total_amount=quote.total_amount,
                        status=quote.status.value,
                        valid_until=quote.valid_until,
                        notes=quote.notes,
                        terms=quote.terms,
                        created_at=quote.created_at,
                        updated_at=quote.updated_at,
                    )
                )
                # Parent row first so the children satisfy their foreign keys.
                await session.flush()
                for item in quote.items:
                    session.add(_item_to_table(item))
                for log in quote.status_logs:
                    session.add(_log_to_table(log))
        return quote

    async def get_quote(self, quote_id: str) -> Quote | None:
        async with self._session_factory() as session:
            row = await session.get(QuoteTable, quote_id)
            if row is None:
                return None
            return await self._load_aggregate(session, row)

    async def list_quotes(self, filters: QuoteListFilters) -> Page[Quote]:
        query = select(QuoteTable)
        if filters.search:
            pattern = f"%{filters.search}%"
            query = query.join(ClientTable, ClientTable.id == QuoteTable.client_id).where(
                or_(
                    QuoteTable.number.ilike(pattern),
                    ClientTable.name.ilike(pattern),
                    ClientTable.email.ilike(pattern),
                )
            )
        if filters.status is not None:
            query = query.where(QuoteTable.status == filters.status.value)
        if filters.agent_id:
            query = query.where(QuoteTable.agent_id == filters.agent_id)
        if filters.client_id:
            query = query.where(QuoteTable.client_id == filters.client_id)

        column = _SORT_COLUMNS.get(filters.sort_by, QuoteTable.created_at)
        query = query.order_by(column.asc() if filters.sort_order == "asc" else column.desc())

        async with self._session_factory() as session:
            rows, total = await paginate_query(session, query, page=filters.page, limit=filters.limit)
        return Page(
            items=[self._table_to_quote(row) for row in rows],
            total=total,
            page=filters.page,
            limit=filters.limit,
        )

    async def update_quote(
        self,
        quote_id: str,
        *,
        changes: Mapping[str, Any],
        items: Sequence[QuoteItem] | None = None,
    ) -> Quote | None:
        """Apply field edits and optionally replace every line, then recompute totals.

        Returns ``None`` when the quote is missing or locked.
        """

        async with self._session_factory() as session:
            async with session.begin():
                row = await self._claim_editable(session, quote_id)
                if row is None:
                    return None
                for name, value in changes.items():
                    if name in _EDITABLE_FIELDS:
                        setattr(row, name, value)
                if items is not None:
                    await session.execute(delete(QuoteItemTable).where(QuoteItemTable.quote_id == quote_id))
                    for item in items:
                        session.add(_item_to_table(item))
                await self._recompute(session, row)
            return await self._load_aggregate(session, row)

    async def delete_quote(self, quote_id: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(QuoteTable, quote_id)
                if row is None:
                    return False
                await session.execute(delete(QuoteItemTable).where(QuoteItemTable.quote_id == quote_id))
                await session.execute(delete(QuoteStatusLogTable).where(QuoteStatusLogTable.quote_id == quote_id))
                await session.delete(row)
        return True

    async def list_items(self, quote_id: str) -> list[QuoteItem]:
        async with self._session_factory() as session:
            return await self._load_items(session, quote_id)

    async def add_item(self, quote_id: str, draft: QuoteItemDraft, *, item_id: str) -> QuoteItem | None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await self._claim_editable(session, quote_id)
                if row is None:
                    return None
                item_row = QuoteItemTable(
                    id=item_id,
                    quote_id=quote_id,
                    service_id=draft.service_id,
                    quantity=draft.quantity,
                    rate=draft.rate,
                    line_total=line_total(draft.quantity, draft.rate),
                    custom_description=draft.custom_description,
                    created_at=utcnow(),
                )
                session.add(item_row)
                await self._recompute(session, row)
            return self._table_to_item(item_row)

    async def update_item(
        self,
        quote_id: str,
        item_id: str,
        *,
        quantity: Decimal | None = None,
        rate: Decimal | None = None,
        custom_description: str | None = None,
    ) -> QuoteItem | None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await self._claim_editable(session, quote_id)
                item_row = await session.get(QuoteItemTable, item_id)
                if row is None or item_row is None or item_row.quote_id != quote_id:
                    return None
                if quantity is not None:
                    item_row.quantity = quantity
                if rate is not None:
                    item_row.rate = rate
                if custom_description is not None:
                    item_row.custom_description = custom_description
                item_row.line_total = line_total(item_row.quantity, item_row.rate)
                await self._recompute(session, row)
            return self._table_to_item(item_row)

    async def remove_item(self, quote_id: str, item_id: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                row = await self._claim_editable(session, quote_id)
                item_row = await session.get(QuoteItemTable, item_id)
                if row is None or item_row is None or item_row.quote_id != quote_id:
                    return False
                await session.delete(item_row)
                await self._recompute(session, row)
        return True

    async def change_status(
        self,
        quote_id: str,
        *,
        expected_status: QuoteStatus,
        new_status: QuoteStatus,
        log: QuoteStatusLog,
        now: datetime,
    ) -> Quote | None:
        """Persist a validated status change together with its log row.

        The row is only updated while it still holds ``expected_status``; a
        concurrent change in between makes this return ``None`` with nothing
        written.
        """

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(QuoteTable)
                    .where(QuoteTable.id == quote_id, QuoteTable.status == expected_status.value)
                    .values(status=new_status.value, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return None
                row = await session.get(QuoteTable, quote_id)
                if new_status == QuoteStatus.SENT and row.sent_at is None:
                    row.sent_at = now
                elif new_status == QuoteStatus.ACCEPTED and row.accepted_at is None:
                    row.accepted_at = now
                elif new_status == QuoteStatus.EXPIRED and row.expired_at is None:
                    row.expired_at = now
                row.updated_at = now
                session.add(_log_to_table(log))
            return await self._load_aggregate(session, row)

    async def get_status_logs(self, quote_id: str) -> list[QuoteStatusLog]:
        async with self._session_factory() as session:
            return await self._load_logs(session, quote_id)

    async def set_zoho_estimate_id(self, quote_id: str, estimate_id: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(QuoteTable, quote_id)
                if row is not None:
                    row.zoho_estimate_id = estimate_id

    async def _claim_editable(self, session: AsyncSession, quote_id: str) -> QuoteTable | None:
        # The UPDATE holds the row until commit; status changes wait behind it.
        locked = [status.value for status in QuoteStateMachine.locked_states()]
        result = await session.execute(
            update(QuoteTable)
            .where(QuoteTable.id == quote_id, QuoteTable.status.not_in(locked))
            .values(updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        return await session.get(QuoteTable, quote_id)

    async def _recompute(self, session: AsyncSession, row: QuoteTable) -> None:
        result = await session.execute(select(QuoteItemTable.line_total).where(QuoteItemTable.quote_id == row.id))
        totals = compute_totals(
            [Decimal(value) for value in result.scalars().all()],
            row.tax_rate,
            row.discount_rate,
        )
        row.subtotal = totals.subtotal
        row.discount_amount = totals.discount_amount
        row.tax_amount = totals.tax_amount
        row.total_amount = totals.total_amount
        row.updated_at = utcnow()

    async def _load_aggregate(self, session: AsyncSession, row: QuoteTable) -> Quote:
        quote = self._table_to_quote(row)
        quote.items = await self._load_items(session, row.id)
        quote.status_logs = await self._load_logs(session, row.id)
        invoice = await session.execute(select(InvoiceTable.id).where(InvoiceTable.quote_id == row.id))
        quote.invoice_id = invoice.scalars().first()
        return quote

    async def _load_items(self, session: AsyncSession, quote_id: str) -> list[QuoteItem]:
        result = await session.execute(
            select(QuoteItemTable)
            .where(QuoteItemTable.quote_id == quote_id)
            .order_by(QuoteItemTable.created_at.asc())
        )
        return [self._table_to_item(item) for item in result.scalars().all()]

    async def _load_logs(self, session: AsyncSession, quote_id: str) -> list[QuoteStatusLog]:
        result = await session.execute(
            select(QuoteStatusLogTable)
            .where(QuoteStatusLogTable.quote_id == quote_id)
            .order_by(QuoteStatusLogTable.created_at.asc())
        )
        return [self._table_to_log(log) for log in result.scalars().all()]

    @staticmethod
    def _table_to_quote(row: QuoteTable) -> Quote:
        return Quote(
            id=row.id,
            number=row.number,
            client_id=row.client_id,
            agent_id=row.agent_id,
            subtotal=Decimal(row.subtotal),
            tax_rate=Decimal(row.tax_rate),
            tax_amount=Decimal(row.tax_amount),
            discount_rate=Decimal(row.discount_rate),
            discount_amount=Decimal(row.discount_amount),
            total_amount=Decimal(row.total_amount),
            status=QuoteStatus(row.status),
            valid_until=ensure_utc(row.valid_until),
            notes=row.notes,
            terms=row.terms,
            sent_at=ensure_utc(row.sent_at),
            accepted_at=ensure_utc(row.accepted_at),
            expired_at=ensure_utc(row.expired_at),
            zoho_estimate_id=row.zoho_estimate_id,
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )

    @staticmethod
    def _table_to_item(row: QuoteItemTable) -> QuoteItem:
        return QuoteItem(
            id=row.id,
            quote_id=row.quote_id,
            service_id=row.service_id,
            quantity=Decimal(row.quantity),
            rate=Decimal(row.rate),
            line_total=Decimal(row.line_total),
            custom_description=row.custom_description,
            created_at=ensure_utc(row.created_at),
        )

    @staticmethod
    def _table_to_log(row: QuoteStatusLogTable) -> QuoteStatusLog:
        return QuoteStatusLog(
            id=row.id,
            quote_id=row.quote_id,
            status=QuoteStatus(row.status),
            changed_by=row.changed_by,
            notes=row.notes,
            created_at=ensure_utc(row.created_at),
        )


def _item_to_table(item: QuoteItem) -> QuoteItemTable:
    return QuoteItemTable(
        id=item.id,
        quote_id=item.quote_id,
        service_id=item.service_id,
        quantity=item.quantity,
        rate=item.rate,
        line_total=item.line_total,
        custom_description=item.custom_description,
        created_at=item.created_at,
    )


def _log_to_table(log: QuoteStatusLog) -> QuoteStatusLogTable:
    return QuoteStatusLogTable(
        id=log.id,
        quote_id=log.quote_id,
        status=log.status.value,
        changed_by=log.changed_by,
        notes=log.notes,
        created_at=log.created_at,
    )
