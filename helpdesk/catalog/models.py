from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass(slots=True)
class Service:
    """Billable catalog entry."""

    id: str
    name: str
    description: str | None
    category: str
    rate: Decimal
    unit: str
    sku: str
    active: bool
    zoho_item_id: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class CategorySummary:
    category: str
    count: int
    active_count: int
    average_rate: Decimal
    min_rate: Decimal
    max_rate: Decimal
