"""Book collection flows for an authenticated owner.

Covers live in the object store and are not transactional with the
database row: an orphaned object is tolerated, a failed cleanup is logged
and never fails the surrounding operation.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from sqlmodel.ext.asyncio.session import AsyncSession

from shelf.config import ShelfConfig, get_config
from shelf.errors import ConflictError, DuplicateKeyError, NotFoundError, RepositoryError, ValidationError
from shelf.logging_config import audit, get_logger
from shelf.models import Book, utcnow
from shelf.objectstore import ObjectStore, StoredObject, generate_object_key
from shelf.pagination import PaginatedResult, PaginationOptions

from .repository import BookRepository
from .schemas import BookCreate, BookQuery, BookUpdate, Upload


def _title_conflict(title: str) -> ConflictError:
    return ConflictError(f'A book with title "{title}" already exists in your collection')


class BookService:
    def __init__(
        self,
        session: AsyncSession,
        store: ObjectStore,
        config: Optional[ShelfConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or get_config()
        self.logger = logger or get_logger(__name__)
        self.store = store
        self.books = BookRepository(session, logger=self.logger)

    # --- Covers ---

    def _check_upload(self, upload: Upload) -> None:
        uploads = self.config.uploads
        content_type = (upload.content_type or "").lower()
        if content_type not in uploads.allowed_types:
            raise ValidationError(
                f"Unsupported cover type: {upload.content_type or 'unknown'}",
                detail=f"Allowed: {', '.join(uploads.allowed_types)}",
            )
        if upload.size == 0:
            raise ValidationError("Cover image is empty")
        if upload.size > uploads.max_size_bytes:
            raise ValidationError(f"Cover image exceeds {uploads.max_size_mb}MB")

    async def _store_cover(self, owner_id: int, upload: Upload) -> StoredObject:
        key = generate_object_key(upload.filename, prefix=f"covers/{owner_id}")
        return await self.store.upload(
            upload.data,
            upload.filename,
            target_key=key,
            content_type=upload.content_type.lower(),
            metadata={"owner_id": str(owner_id), "uploaded_at": utcnow().isoformat()},
        )

    async def _discard_cover(self, url: Optional[str], book_id: Optional[int] = None) -> None:
        """Best-effort object delete; failures are logged only."""
        key = self.store.key_from_url(url)
        if not key:
            return
        try:
            await self.store.delete(key)
        except Exception as exc:
            audit(
                self.logger,
                "cover_delete_failed",
                level=logging.WARNING,
                book_id=book_id,
                key=key,
                error=exc,
            )

    # --- Reads ---

    async def list_books(self, owner_id: int, query: BookQuery) -> Union[list[Book], PaginatedResult[Book]]:
        """Search and author filters return plain lists; otherwise one page."""
        if query.search:
            return await self.books.search_by_title_for_owner(owner_id, query.search)
        if query.author:
            return await self.books.find_by_author_for_owner(owner_id, query.author)
        options = PaginationOptions(
            page=query.page,
            limit=query.limit,
            sort_by=query.sort_by,
            sort_order=query.sort_order,
        )
        return await self.books.get_paginated_by_owner(owner_id, options)

    async def get_book(self, owner_id: int, book_id: int) -> Book:
        book = await self.books.find_by_id_and_owner(book_id, owner_id)
        if book is None:
            raise NotFoundError("Book not found")
        return book

    async def count_for_owner(self, owner_id: int) -> int:
        return await self.books.count_for_owner(owner_id)

    async def find_by_year_for_owner(self, owner_id: int, year: int) -> list[Book]:
        return await self.books.find_by_year_for_owner(owner_id, year)

    # --- Writes ---

    async def create_book(self, owner_id: int, data: BookCreate, cover: Optional[Upload] = None) -> Book:
        """Insert a book owned by ``owner_id`` (never by an id from the input).

        Raises:
            ValidationError: the cover breaks the upload rules
            ConflictError: the owner already has a book with this title
        """
        if cover is not None:
            self._check_upload(cover)

        if await self.books.title_exists_for_owner(owner_id, data.title):
            raise _title_conflict(data.title)

        stored = await self._store_cover(owner_id, cover) if cover is not None else None

        values = data.model_dump()
        values["owner_id"] = owner_id
        if stored is not None:
            values["attachment_url"] = stored.url

        try:
            book = await self.books.create(values)
        except RepositoryError as exc:
            if stored is not None:
                await self._discard_cover(stored.url)
            if isinstance(exc, DuplicateKeyError) and exc.involves("owner_id", "title"):
                raise _title_conflict(data.title) from exc
            raise

        audit(self.logger, "book_created", book_id=book.id, owner_id=owner_id, cover=stored is not None)
        return book

    async def update_book(self, owner_id: int, book_id: int, data: BookUpdate) -> Book:
        book = await self.get_book(owner_id, book_id)

        values = data.model_dump(exclude_unset=True)
        # Required columns: an explicit null means "leave as is"
        for required in ("title", "author"):
            if values.get(required, "") is None:
                del values[required]

        title = values.get("title")
        if title is not None and title != book.title:
            if await self.books.title_exists_for_owner(owner_id, title, exclude_id=book_id):
                raise _title_conflict(title)

        try:
            await self.books.update_for_owner(book_id, owner_id, values)
        except DuplicateKeyError as exc:
            if exc.involves("owner_id", "title"):
                raise _title_conflict(title or book.title) from exc
            raise

        updated = await self.books.find_by_id_and_owner(book_id, owner_id)
        if updated is None:
            raise NotFoundError("Book not found")
        audit(self.logger, "book_updated", book_id=book_id, owner_id=owner_id, fields=",".join(sorted(values)))
        return updated

    async def replace_cover(self, owner_id: int, book_id: int, cover: Upload) -> Book:
        self._check_upload(cover)
        book = await self.get_book(owner_id, book_id)
        previous_url = book.attachment_url

        stored = await self._store_cover(owner_id, cover)
        try:
            await self.books.update_for_owner(book_id, owner_id, {"attachment_url": stored.url})
        except RepositoryError:
            await self._discard_cover(stored.url, book_id=book_id)
            raise

        if previous_url and previous_url != stored.url:
            await self._discard_cover(previous_url, book_id=book_id)
        audit(self.logger, "book_updated", book_id=book_id, owner_id=owner_id, fields="attachment_url")
        return await self.get_book(owner_id, book_id)

    async def delete_book(self, owner_id: int, book_id: int) -> None:
        """Remove the cover (best effort) and hard-delete the row."""
        book = await self.get_book(owner_id, book_id)
        if book.attachment_url:
            await self._discard_cover(book.attachment_url, book_id=book_id)
        await self.books.delete_for_owner(book_id, owner_id)
        audit(self.logger, "book_deleted", book_id=book_id, owner_id=owner_id)

    async def delete_all_for_owner(self, owner_id: int) -> int:
        result = await self.books.delete_all_for_owner(owner_id)
        return result.affected_count
