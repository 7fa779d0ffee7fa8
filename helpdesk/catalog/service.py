from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError

from helpdesk.core.errors import BusinessRuleError, ConflictError, NotFoundError, ValidationFailedError
from helpdesk.db.session import utcnow
from helpdesk.quotes.totals import round2

from .models import CategorySummary, Service
from .repository import ServiceRepository

logger = logging.getLogger(__name__)


class ServiceNotFoundError(NotFoundError):
    """Raised when a catalog service could not be located."""


class InactiveServiceError(BusinessRuleError):
    """Raised when an archived service is used on a new line item."""


class DuplicateSkuError(ConflictError):
    """Raised when a SKU is already taken."""


def generate_sku(category: str, name: str) -> str:
    """Build ``CAT-NAM-123456`` from the first letters of category and name."""

    def _prefix(value: str) -> str:
        letters = re.sub(r"[^A-Za-z0-9]", "", value).upper()
        return (letters[:3] or "SRV").ljust(3, "X")

    return f"{_prefix(category)}-{_prefix(name)}-{str(int(time.time() * 1000))[-6:]}"


@dataclass(slots=True)
class CatalogService:
    """Business rules for the service catalog."""

    repository: ServiceRepository

    async def create_service(
        self,
        *,
        name: str,
        category: str,
        rate: Decimal,
        unit: str,
        description: str | None = None,
        sku: str | None = None,
        active: bool = True,
        zoho_item_id: str | None = None,
    ) -> Service:
        name, category, unit = (name or "").strip(), (category or "").strip(), (unit or "").strip()
        if not name or not category or not unit:
            raise ValidationFailedError("Name, category and unit are required")
        if rate is None or Decimal(rate) < 0:
            raise ValidationFailedError("Rate must be zero or greater")

        sku = (sku or "").strip().upper() or generate_sku(category, name)
        if await self.repository.get_by_sku(sku) is not None:
            raise DuplicateSkuError(f"SKU {sku} already exists")

        now = utcnow()
        service = Service(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            category=category,
            rate=round2(rate),
            unit=unit,
            sku=sku,
            active=active,
            zoho_item_id=zoho_item_id,
            created_at=now,
            updated_at=now,
        )
        try:
            return await self.repository.create_service(service)
        except IntegrityError as exc:
            raise DuplicateSkuError(f"SKU {sku} already exists") from exc

    async def get_service(self, service_id: str) -> Service:
        service = await self.repository.get_service(service_id)
        if service is None:
            raise ServiceNotFoundError(f"Service {service_id} not found")
        return service

    async def get_active_service(self, service_id: str) -> Service:
        service = await self.get_service(service_id)
        if not service.active:
            raise InactiveServiceError(f"Service {service.name} is not active")
        return service

    async def list_services(
        self,
        *,
        category: str | None = None,
        active: bool | None = None,
        search: str | None = None,
    ) -> list[Service]:
        return await self.repository.list_services(category=category, active=active, search=search)

    async def list_categories(self, *, include_inactive: bool = False) -> list[CategorySummary]:
        return await self.repository.category_summaries(include_inactive=include_inactive)

    async def update_service(self, service_id: str, **changes: Any) -> Service:
        current = await self.get_service(service_id)
        if changes.get("rate") is not None:
            if Decimal(changes["rate"]) < 0:
                raise ValidationFailedError("Rate must be zero or greater")
            changes["rate"] = round2(changes["rate"])
        for required in ("name", "category", "unit"):
            if required in changes and not (changes[required] or "").strip():
                raise ValidationFailedError(f"{required.capitalize()} cannot be empty")
        if changes.get("sku"):
            sku = changes["sku"].strip().upper()
            if sku != current.sku and await self.repository.get_by_sku(sku) is not None:
                raise DuplicateSkuError(f"SKU {sku} already exists")
            changes["sku"] = sku
        try:
            updated = await self.repository.update_service(service_id, changes=changes, now=utcnow())
        except IntegrityError as exc:
            raise DuplicateSkuError("SKU already exists") from exc
        if updated is None:
            raise ServiceNotFoundError(f"Service {service_id} not found")
        return updated

    async def delete_service(self, service_id: str) -> bool:
        """Delete or archive the service; returns ``True`` when it was archived."""

        await self.get_service(service_id)
        if await self.repository.is_referenced(service_id):
            await self.repository.update_service(service_id, changes={"active": False}, now=utcnow())
            logger.info("Archived referenced service %s", service_id)
            return True
        await self.repository.delete_service(service_id)
        return False
