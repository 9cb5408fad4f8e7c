"""Pagination request/result types.

``PaginationOptions`` itself is unvalidated: bounds are enforced by
``Repository.get_paginated`` so that a bad window fails before any query.
"""

from __future__ import annotations

import dataclasses
import math
from typing import Generic, Optional, Sequence, TypeVar

T = TypeVar("T")

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 10


@dataclasses.dataclass(frozen=True)
class PaginationOptions:
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE
    sort_by: Optional[str] = None
    sort_order: str = "asc"

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def descending(self) -> bool:
        return self.sort_order.strip().lower() == "desc"


@dataclasses.dataclass(frozen=True)
class PaginatedResult(Generic[T]):
    items: Sequence[T]
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next_page: bool
    has_previous_page: bool

    @classmethod
    def build(cls, items: Sequence[T], total_items: int, page: int, limit: int) -> "PaginatedResult[T]":
        total_pages = math.ceil(total_items / limit)
        return cls(
            items=list(items),
            current_page=page,
            total_pages=total_pages,
            total_items=total_items,
            items_per_page=limit,
            has_next_page=page < total_pages,
            has_previous_page=page > 1,
        )
