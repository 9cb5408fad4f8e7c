"""Owner-scoped book queries.

Every method takes the owner id and filters on it in the same statement
as the rest of the criteria; nothing fetches first and checks ownership
afterwards.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlmodel import col, or_

from shelf.models import Book
from shelf.pagination import PaginatedResult, PaginationOptions
from shelf.repository import DeleteResult, PartialData, Repository, SoftDeleteMixin, UpdateResult


def _contains_pattern(term: str) -> str:
    """``%term%`` with LIKE wildcards in ``term`` matched literally."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class BookRepository(SoftDeleteMixin, Repository[Book]):
    model = Book
    searchable_fields = frozenset({"owner_id", "title", "author", "year"})
    sortable_fields = frozenset({"title", "author", "year", "created_at", "updated_at"})
    immutable_fields = frozenset({"owner_id"})  # ownership never moves

    def _owned(self, owner_id: int, *extra: Any) -> list:
        return [*self._criteria(), Book.owner_id == owner_id, *extra]

    async def find_by_id_and_owner(self, book_id: int, owner_id: int) -> Optional[Book]:
        """The only read-by-id path for end users."""
        statement = self._select(self._owned(owner_id, Book.id == book_id))
        return await self._fetch_first(statement, "find_by_id_and_owner")

    async def title_exists_for_owner(
        self,
        owner_id: int,
        title: str,
        exclude_id: Optional[int] = None,
    ) -> bool:
        """Exact, case-sensitive title match for this owner.

        Soft-deleted books count: the unique constraint still covers them.
        """
        criteria = [Book.owner_id == owner_id, Book.title == title]
        if exclude_id is not None:
            criteria.append(Book.id != exclude_id)
        return await self._count(criteria, "title_exists_for_owner") > 0

    async def search_by_title_for_owner(self, owner_id: int, term: str) -> list[Book]:
        """Case-insensitive substring match on title OR author."""
        pattern = _contains_pattern(term)
        matches = or_(
            col(Book.title).ilike(pattern, escape="\\"),
            col(Book.author).ilike(pattern, escape="\\"),
        )
        statement = self._select(self._owned(owner_id, matches)).order_by(col(Book.id))
        return await self._fetch_all(statement, "search_by_title_for_owner")

    async def find_by_author_for_owner(self, owner_id: int, author: str) -> list[Book]:
        matches = col(Book.author).ilike(_contains_pattern(author), escape="\\")
        statement = self._select(self._owned(owner_id, matches)).order_by(col(Book.id))
        return await self._fetch_all(statement, "find_by_author_for_owner")

    async def find_by_year_for_owner(self, owner_id: int, year: int) -> list[Book]:
        return await self.get_all({"owner_id": owner_id, "year": year})

    async def get_paginated_by_owner(
        self,
        owner_id: int,
        options: PaginationOptions,
    ) -> PaginatedResult[Book]:
        return await self.get_paginated(options, {"owner_id": owner_id})

    async def count_for_owner(self, owner_id: int) -> int:
        return await self.count({"owner_id": owner_id})

    async def update_for_owner(self, book_id: int, owner_id: int, data: PartialData) -> UpdateResult:
        values = self._values(data, for_update=True)
        return await self._update_where(self._owned(owner_id, Book.id == book_id), values, "update_for_owner")

    async def delete_for_owner(self, book_id: int, owner_id: int) -> DeleteResult:
        criteria = [Book.owner_id == owner_id, Book.id == book_id]
        return await self._delete_where(criteria, "delete_for_owner")

    async def delete_all_for_owner(self, owner_id: int) -> DeleteResult:
        return await self.delete_by_field("owner_id", owner_id)
