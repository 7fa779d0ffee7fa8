from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

T = TypeVar("T")


@dataclass(slots=True)
class Page(Generic[T]):
    """One page of results plus the total row count."""

    items: list[T] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return math.ceil(self.total / self.limit)


async def paginate_query(session: AsyncSession, query: Select, *, page: int, limit: int) -> tuple[list[Any], int]:
    """Run ``query`` for one page and return ``(rows, total)``.

    ``query`` must be ordered and must not carry its own limit or offset.
    """

    count_query = select(func.count()).select_from(query.order_by(None).subquery())
    total = (await session.execute(count_query)).scalar() or 0
    result = await session.execute(query.offset((page - 1) * limit).limit(limit))
    return list(result.scalars().all()), int(total)
