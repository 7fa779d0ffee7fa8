"""Paged response envelope shared by the list endpoints."""

from __future__ import annotations

from typing import Callable, Generic, TypeVar

from pydantic import BaseModel

from helpdesk.db.pagination import Page

T = TypeVar("T")
R = TypeVar("R")

MAX_PAGE_SIZE = 100


class PaginationMeta(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class PaginatedResponse(BaseModel, Generic[T]):
    items: list[T]
    pagination: PaginationMeta


def paginated(page: Page[R], convert: Callable[[R], T]) -> PaginatedResponse[T]:
    return PaginatedResponse(
        items=[convert(item) for item in page.items],
        pagination=PaginationMeta(page=page.page, limit=page.limit, total=page.total, pages=page.pages),
    )
