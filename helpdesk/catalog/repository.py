from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import case, func, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from helpdesk.db.models import InvoiceItemTable, QuoteItemTable, ServiceTable
from helpdesk.db.session import ensure_utc
from helpdesk.quotes.totals import round2

from .models import CategorySummary, Service

_EDITABLE_FIELDS = frozenset({"name", "description", "category", "rate", "unit", "sku", "active", "zoho_item_id"})


class ServiceRepository:
    """Persistence for the service catalog."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_service(self, service: Service) -> Service:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    ServiceTable(
                        id=service.id,
                        name=service.name,
                        description=service.description,
                        category=service.category,
                        rate=service.rate,
                        unit=service.unit,
                        sku=service.sku,
                        active=service.active,
                        zoho_item_id=service.zoho_item_id,
                        created_at=service.created_at,
                        updated_at=service.updated_at,
                    )
                )
        return service

    async def get_service(self, service_id: str) -> Service | None:
        async with self._session_factory() as session:
            row = await session.get(ServiceTable, service_id)
            return self._table_to_service(row) if row is not None else None

    async def get_services(self, service_ids: set[str]) -> dict[str, Service]:
        if not service_ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(select(ServiceTable).where(ServiceTable.id.in_(service_ids)))
            return {row.id: self._table_to_service(row) for row in result.scalars().all()}

    async def get_by_sku(self, sku: str) -> Service | None:
        return await self._get_by(ServiceTable.sku == sku)

    async def get_by_zoho_item_id(self, zoho_item_id: str) -> Service | None:
        return await self._get_by(ServiceTable.zoho_item_id == zoho_item_id)

    async def list_services(
        self,
        *,
        category: str | None = None,
        active: bool | None = None,
        search: str | None = None,
    ) -> list[Service]:
        query = select(ServiceTable)
        if category:
            query = query.where(ServiceTable.category == category)
        if active is not None:
            query = query.where(ServiceTable.active == active)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    ServiceTable.name.ilike(pattern),
                    ServiceTable.description.ilike(pattern),
                    ServiceTable.sku.ilike(pattern),
                )
            )
        async with self._session_factory() as session:
            result = await session.execute(query.order_by(ServiceTable.category.asc(), ServiceTable.name.asc()))
            return [self._table_to_service(row) for row in result.scalars().all()]

    async def update_service(self, service_id: str, *, changes: Mapping[str, Any], now: datetime) -> Service | None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(ServiceTable, service_id)
                if row is None:
                    return None
                for name, value in changes.items():
                    if name in _EDITABLE_FIELDS:
                        setattr(row, name, value)
                row.updated_at = now
            return self._table_to_service(row)

    async def is_referenced(self, service_id: str) -> bool:
        async with self._session_factory() as session:
            for table in (QuoteItemTable, InvoiceItemTable):
                result = await session.execute(
                    select(func.count()).select_from(table).where(table.service_id == service_id)
                )
                if result.scalar():
                    return True
        return False

    async def delete_service(self, service_id: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(ServiceTable, service_id)
                if row is None:
                    return False
                await session.delete(row)
        return True

    async def category_summaries(self, *, include_inactive: bool = False) -> list[CategorySummary]:
        query = select(
            ServiceTable.category,
            func.count(),
            func.sum(case((ServiceTable.active, 1), else_=0)),
            func.avg(ServiceTable.rate),
            func.min(ServiceTable.rate),
            func.max(ServiceTable.rate),
        ).group_by(ServiceTable.category)
        if not include_inactive:
            query = query.where(ServiceTable.active == True)  # noqa: E712
        async with self._session_factory() as session:
            result = await session.execute(query.order_by(ServiceTable.category.asc()))
            rows = result.all()
        return [
            CategorySummary(
                category=category,
                count=int(count),
                active_count=int(active_count or 0),
                average_rate=round2(avg_rate or 0),
                min_rate=round2(min_rate or 0),
                max_rate=round2(max_rate or 0),
            )
            for category, count, active_count, avg_rate, min_rate, max_rate in rows
        ]

    async def _get_by(self, clause) -> Service | None:
        async with self._session_factory() as session:
            result = await session.execute(select(ServiceTable).where(clause))
            row = result.scalars().first()
            return self._table_to_service(row) if row is not None else None

    @staticmethod
    def _table_to_service(row: ServiceTable) -> Service:
        return Service(
            id=row.id,
            name=row.name,
            description=row.description,
            category=row.category,
            rate=Decimal(row.rate),
            unit=row.unit,
            sku=row.sku,
            active=bool(row.active),
            zoho_item_id=row.zoho_item_id,
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )
