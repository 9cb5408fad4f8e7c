"""Data Access Layer for Shelfkeeper.

``Repository`` is an entity-agnostic async CRUD/pagination engine over a
SQLModel table. Entity repositories subclass it, name their ``model`` and
the closed set of fields callers may filter and sort on. Storage failures
never leak SQLAlchemy types: they surface as ``RepositoryError`` (or its
``DuplicateKeyError`` subclass for unique violations).

Writes commit immediately unless they run inside ``transaction()``, in
which case they only flush and the scope commits or rolls back once.
"""

from __future__ import annotations

import dataclasses
import logging
from contextlib import asynccontextmanager
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    ClassVar,
    Generic,
    Iterable,
    Mapping,
    Optional,
    Sequence,
    TypeVar,
    Union,
)

from pydantic import BaseModel
from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import defer, undefer
from sqlmodel import SQLModel, col, func, select
from sqlmodel.ext.asyncio.session import AsyncSession

from .errors import DuplicateKeyError, RepositoryError, ValidationError
from .logging_config import get_logger
from .models import utcnow
from .pagination import MAX_PAGE_SIZE, PaginatedResult, PaginationOptions

ModelT = TypeVar("ModelT", bound=SQLModel)
R = TypeVar("R")

PartialData = Union[Mapping[str, Any], BaseModel]

# Stored on session.info so every repository sharing a session joins the scope
_TRANSACTION_FLAG = "shelfkeeper.in_transaction"

# Managed by the repository itself, never taken from caller data
_PROTECTED_FIELDS = frozenset({"id", "created_at", "updated_at", "deleted_at"})


@dataclasses.dataclass(frozen=True)
class UpdateResult:
    matched_count: int


@dataclasses.dataclass(frozen=True)
class DeleteResult:
    affected_count: int


def _unique_violation_columns(exc: IntegrityError) -> Optional[tuple[str, ...]]:
    """Columns named by a unique violation, () when unknown, None when not unique."""
    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    message = str(orig)
    if "UNIQUE constraint failed:" in message:
        # SQLite: "UNIQUE constraint failed: books.owner_id, books.title"
        names = message.split("UNIQUE constraint failed:", 1)[1]
        return tuple(part.strip().rsplit(".", 1)[-1] for part in names.split(","))
    if sqlstate == "23505" or "duplicate key" in message.lower():
        return ()
    return None


class Repository(Generic[ModelT]):
    """Generic async repository over a single SQLModel table."""

    model: ClassVar[type[SQLModel]]
    # Fields callers may pass to find_by_field/exists/count/... filters
    searchable_fields: ClassVar[frozenset[str]] = frozenset()
    # Fields callers may pass as PaginationOptions.sort_by
    sortable_fields: ClassVar[frozenset[str]] = frozenset()
    # Columns left out of default reads
    deferred_fields: ClassVar[frozenset[str]] = frozenset()
    # Settable on insert, stripped from every update path
    immutable_fields: ClassVar[frozenset[str]] = frozenset()
    soft_delete_enabled: ClassVar[bool] = False

    def __init__(self, session: AsyncSession, logger: Optional[logging.Logger] = None):
        self.session = session
        self.logger = logger or get_logger(__name__)

    # --- Internals ---

    @property
    def entity_name(self) -> str:
        return self.model.__name__

    @property
    def column_names(self) -> frozenset[str]:
        return frozenset(self.model.__table__.columns.keys())

    @property
    def in_transaction(self) -> bool:
        return bool(self.session.info.get(_TRANSACTION_FLAG, False))

    def _field(self, name: str, allowed: frozenset[str]):
        if name != "id" and name not in allowed:
            raise ValidationError(
                f"{self.entity_name} cannot be queried by '{name}'",
                detail=f"Allowed fields: {', '.join(sorted(allowed | {'id'}))}",
            )
        return getattr(self.model, name)

    def _criteria(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        include_deleted: bool = False,
    ) -> list:
        criteria = []
        for name, value in (filters or {}).items():
            column = self._field(name, self.searchable_fields)
            criteria.append(col(column).is_(None) if value is None else column == value)
        if self.soft_delete_enabled and not include_deleted:
            criteria.append(col(self.model.deleted_at).is_(None))
        return criteria

    def _select(self, criteria: Sequence = (), *, undeferred: bool = False):
        statement = select(self.model).where(*criteria)
        if self.deferred_fields:
            loader = undefer if undeferred else defer
            statement = statement.options(
                *(loader(getattr(self.model, name)) for name in sorted(self.deferred_fields))
            )
        # Core update/delete bypass the identity map; reads always refresh it
        return statement.execution_options(populate_existing=True)

    def _ordering(self, sort_by: Optional[str], descending: bool) -> list:
        primary_key = col(self.model.id)
        if not sort_by:
            return [primary_key.desc() if descending else primary_key.asc()]
        column = col(self._field(sort_by, self.sortable_fields))
        ordering = [column.desc() if descending else column.asc()]
        if sort_by != "id":
            ordering.append(primary_key.asc())  # stable page windows on ties
        return ordering

    def _values(self, data: PartialData, *, for_update: bool = False) -> dict[str, Any]:
        if isinstance(data, BaseModel):
            data = data.model_dump(exclude_unset=True)
        excluded = (_PROTECTED_FIELDS | self.immutable_fields) if for_update else _PROTECTED_FIELDS
        columns = self.column_names
        return {
            key: value
            for key, value in data.items()
            if key in columns and key not in excluded
        }

    async def _recover(self) -> None:
        """Roll back a failed autonomous write so the session stays usable."""
        if not self.in_transaction:
            await self.session.rollback()

    async def _finish_write(self) -> None:
        if self.in_transaction:
            await self.session.flush()
        else:
            await self.session.commit()

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except IntegrityError as exc:
            await self._recover()
            columns = _unique_violation_columns(exc)
            if columns is not None:
                self.logger.debug(f"{self.entity_name}.{operation}: unique violation on {columns or '?'}")
                raise DuplicateKeyError(operation, exc, columns) from exc
            self.logger.error(f"{self.entity_name}.{operation} integrity failure: {exc.orig}")
            raise RepositoryError(operation, exc) from exc
        except SQLAlchemyError as exc:
            await self._recover()
            self.logger.error(f"{self.entity_name}.{operation} failed: {exc}")
            raise RepositoryError(operation, exc) from exc

    async def _fetch_all(self, statement, operation: str) -> list[ModelT]:
        async with self._guard(operation):
            result = await self.session.exec(statement)
            return list(result.all())

    async def _fetch_first(self, statement, operation: str) -> Optional[ModelT]:
        async with self._guard(operation):
            result = await self.session.exec(statement)
            return result.first()

    async def _count(self, criteria: Sequence, operation: str) -> int:
        statement = select(func.count()).select_from(self.model).where(*criteria)
        async with self._guard(operation):
            result = await self.session.exec(statement)
            return int(result.one())

    async def _update_where(self, criteria: Sequence, values: dict[str, Any], operation: str) -> UpdateResult:
        if not values:
            # Nothing to write; still report how many rows would have matched
            return UpdateResult(matched_count=await self._count(criteria, operation))
        statement = sa_update(self.model).where(*criteria).values(**values)
        async with self._guard(operation):
            result = await self.session.exec(statement)
            await self._finish_write()
        return UpdateResult(matched_count=result.rowcount)

    async def _delete_where(self, criteria: Sequence, operation: str) -> DeleteResult:
        statement = sa_delete(self.model).where(*criteria)
        async with self._guard(operation):
            result = await self.session.exec(statement)
            await self._finish_write()
        return DeleteResult(affected_count=result.rowcount)

    # --- Reads ---

    async def get_by_id(self, id: int, *, include_deleted: bool = False) -> Optional[ModelT]:
        """Entity by primary key, or None. Only storage failures raise."""
        criteria = self._criteria(include_deleted=include_deleted)
        statement = self._select([*criteria, self.model.id == id])
        return await self._fetch_first(statement, "get_by_id")

    async def get_all(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        sort_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        include_deleted: bool = False,
    ) -> list[ModelT]:
        """All entities matching the equality ``filters``."""
        statement = self._select(self._criteria(filters, include_deleted=include_deleted))
        statement = statement.order_by(*self._ordering(sort_by, descending))
        if limit is not None:
            statement = statement.limit(limit)
        if offset:
            statement = statement.offset(offset)
        return await self._fetch_all(statement, "get_all")

    async def find_by_field(
        self,
        field: str,
        value: Any,
        *,
        sort_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        include_deleted: bool = False,
    ) -> list[ModelT]:
        statement = self._select(self._criteria({field: value}, include_deleted=include_deleted))
        statement = statement.order_by(*self._ordering(sort_by, descending))
        if limit is not None:
            statement = statement.limit(limit)
        return await self._fetch_all(statement, "find_by_field")

    async def find_one_by_field(
        self,
        field: str,
        value: Any,
        *,
        include_deleted: bool = False,
    ) -> Optional[ModelT]:
        statement = self._select(self._criteria({field: value}, include_deleted=include_deleted))
        statement = statement.order_by(col(self.model.id).asc()).limit(1)
        return await self._fetch_first(statement, "find_one_by_field")

    async def exists(self, field: str, value: Any, *, include_deleted: bool = False) -> bool:
        criteria = self._criteria({field: value}, include_deleted=include_deleted)
        return await self._count(criteria, "exists") > 0

    async def count(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        *,
        include_deleted: bool = False,
    ) -> int:
        return await self._count(self._criteria(filters, include_deleted=include_deleted), "count")

    async def get_paginated(
        self,
        options: PaginationOptions,
        base_filter: Optional[Mapping[str, Any]] = None,
    ) -> PaginatedResult[ModelT]:
        """One page of entities plus the page arithmetic.

        Bounds are checked before any query: page >= 1, 1 <= limit <= 100.
        Without ``sort_by`` rows come in ascending primary-key order.
        """
        if not isinstance(options.page, int) or options.page < 1:
            raise ValidationError("Page must be greater than 0")
        if not isinstance(options.limit, int) or not 1 <= options.limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_SIZE}")
        if options.sort_order.strip().lower() not in ("asc", "desc"):
            raise ValidationError("Sort order must be ASC or DESC")

        criteria = self._criteria(base_filter)
        ordering = self._ordering(options.sort_by, options.descending)
        statement = (
            self._select(criteria)
            .order_by(*ordering)
            .offset(options.offset)
            .limit(options.limit)
        )

        total = await self._count(criteria, "get_paginated")
        items = await self._fetch_all(statement, "get_paginated")
        return PaginatedResult.build(items, total, options.page, options.limit)

    # --- Writes ---

    async def create(self, data: PartialData) -> ModelT:
        """Insert and return the stored entity (generated id and timestamps set)."""
        entity = self.model(**self._values(data))
        async with self._guard("create"):
            self.session.add(entity)
            await self._finish_write()
        self.logger.debug(f"Created {self.entity_name} id={entity.id}")
        return entity

    async def bulk_create(self, items: Iterable[PartialData]) -> list[ModelT]:
        entities = [self.model(**self._values(item)) for item in items]
        if not entities:
            return []
        async with self._guard("bulk_create"):
            self.session.add_all(entities)
            await self._finish_write()
        self.logger.debug(f"Created {len(entities)} {self.entity_name} rows")
        return entities

    async def update(self, id: int, data: PartialData) -> UpdateResult:
        """Partial update by id. A missing id reports matched_count=0."""
        criteria = [*self._criteria(), self.model.id == id]
        return await self._update_where(criteria, self._values(data, for_update=True), "update")

    async def update_by_field(self, field: str, value: Any, data: PartialData) -> UpdateResult:
        criteria = self._criteria({field: value})
        return await self._update_where(criteria, self._values(data, for_update=True), "update_by_field")

    async def update_and_return(self, id: int, data: PartialData) -> Optional[ModelT]:
        """Update then re-fetch. Not atomic: a concurrent delete yields None."""
        await self.update(id, data)
        return await self.get_by_id(id)

    async def delete(self, id: int) -> DeleteResult:
        return await self._delete_where([self.model.id == id], "delete")

    async def delete_by_field(self, field: str, value: Any) -> DeleteResult:
        criteria = self._criteria({field: value}, include_deleted=True)
        return await self._delete_where(criteria, "delete_by_field")

    # --- Transactions ---

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["Repository[ModelT]"]:
        """Commit on normal exit, roll back on any exception.

        Nested scopes join the outermost one.
        """
        if self.in_transaction:
            yield self
            return

        self.session.info[_TRANSACTION_FLAG] = True
        try:
            yield self
            async with self._guard("with_transaction"):
                await self.session.commit()
        except BaseException:
            await self.session.rollback()
            raise
        finally:
            self.session.info.pop(_TRANSACTION_FLAG, None)

    async def with_transaction(self, operation: Callable[["Repository[ModelT]"], Awaitable[R]]) -> R:
        async with self.transaction() as repository:
            return await operation(repository)


class SoftDeleteMixin:
    """Opt-in soft delete/restore for repositories whose model has ``deleted_at``.

    Must precede ``Repository`` in the bases. Repositories without it have
    no ``soft_delete``/``restore`` at all.
    """

    soft_delete_enabled: ClassVar[bool] = True

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        model = getattr(cls, "model", None)
        if model is not None and "deleted_at" not in model.__table__.columns:
            raise TypeError(f"{model.__name__} has no deleted_at column; cannot soft delete")

    async def soft_delete(self, id: int) -> UpdateResult:
        criteria = [self.model.id == id, col(self.model.deleted_at).is_(None)]
        return await self._update_where(criteria, {"deleted_at": utcnow()}, "soft_delete")

    async def restore(self, id: int) -> UpdateResult:
        criteria = [self.model.id == id, col(self.model.deleted_at).is_not(None)]
        return await self._update_where(criteria, {"deleted_at": None}, "restore")
