import logging
import re

import pytest

from accounts.repository import AccountRepository
from books.schemas import BookCreate, BookQuery, BookUpdate, Upload
from books.service import BookService
from shelf.errors import ConflictError, NotFoundError, RepositoryError, UpstreamError, ValidationError
from shelf.objectstore import LocalObjectStore
from shelf.pagination import PaginatedResult

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


class BrokenDeleteStore(LocalObjectStore):
    async def delete(self, key: str) -> None:
        raise UpstreamError("storage is down")


@pytest.fixture
def service(session, store, config):
    return BookService(session, store, config)


def _create(title, author="F. Scott Fitzgerald", **extra):
    return BookCreate(title=title, author=author, **extra)


async def test_find_by_id_and_owner_is_scoped(service, owner, other_owner):
    book = await service.create_book(owner.id, _create("The Great Gatsby"))

    assert (await service.books.find_by_id_and_owner(book.id, owner.id)).id == book.id
    assert await service.books.find_by_id_and_owner(book.id, other_owner.id) is None
    with pytest.raises(NotFoundError):
        await service.get_book(other_owner.id, book.id)


async def test_duplicate_title_conflicts_per_owner_only(service, owner, other_owner):
    await service.create_book(owner.id, _create("The Great Gatsby"))

    with pytest.raises(ConflictError, match="The Great Gatsby"):
        await service.create_book(owner.id, _create("The Great Gatsby"))

    other = await service.create_book(other_owner.id, _create("The Great Gatsby"))
    assert other.owner_id == other_owner.id


async def test_storage_level_conflict_is_translated(service, owner, monkeypatch):
    await service.create_book(owner.id, _create("The Great Gatsby"))

    async def never_exists(*args, **kwargs):
        return False

    # Simulate a concurrent create slipping past the pre-check
    monkeypatch.setattr(service.books, "title_exists_for_owner", never_exists)

    with pytest.raises(ConflictError, match="The Great Gatsby"):
        await service.create_book(owner.id, _create("The Great Gatsby"))


async def test_title_exists_is_exact_and_case_sensitive(service, owner):
    await service.create_book(owner.id, _create("The Great Gatsby"))

    assert await service.books.title_exists_for_owner(owner.id, "The Great Gatsby") is True
    assert await service.books.title_exists_for_owner(owner.id, "the great gatsby") is False
    assert await service.books.title_exists_for_owner(owner.id, "Great") is False


async def test_search_matches_title_or_author_within_owner(service, owner, other_owner):
    await service.create_book(owner.id, _create("The Great Gatsby"))
    await service.create_book(owner.id, _create("Emma", author="Jane Austen"))
    await service.create_book(other_owner.id, _create("The Great Gatsby"))

    by_title = await service.books.search_by_title_for_owner(owner.id, "gat")
    by_author = await service.books.search_by_title_for_owner(owner.id, "AUSTEN")

    assert [b.title for b in by_title] == ["The Great Gatsby"]
    assert all(b.owner_id == owner.id for b in by_title)
    assert [b.title for b in by_author] == ["Emma"]


async def test_search_treats_wildcards_literally(service, owner):
    await service.create_book(owner.id, _create("100% Pure"))
    await service.create_book(owner.id, _create("Plain Title"))

    assert [b.title for b in await service.books.search_by_title_for_owner(owner.id, "%")] == ["100% Pure"]
    assert await service.books.search_by_title_for_owner(owner.id, "_") == []


async def test_find_by_author_and_year(service, owner, other_owner):
    await service.create_book(owner.id, _create("Emma", author="Jane Austen", year=1815))
    await service.create_book(owner.id, _create("Persuasion", author="Jane Austen", year=1817))
    await service.create_book(other_owner.id, _create("Emma", author="Jane Austen", year=1815))

    assert len(await service.books.find_by_author_for_owner(owner.id, "austen")) == 2
    assert [b.title for b in await service.find_by_year_for_owner(owner.id, 1817)] == ["Persuasion"]
    assert await service.count_for_owner(owner.id) == 2


async def test_list_books_modes(service, owner, other_owner):
    for i in range(12):
        await service.create_book(owner.id, _create(f"Volume {i:02d}"))
    await service.create_book(other_owner.id, _create("Volume 99"))

    page = await service.list_books(owner.id, BookQuery(page=2, limit=5, sort_by="title", sort_order="desc"))
    searched = await service.list_books(owner.id, BookQuery(search="volume 1"))

    assert isinstance(page, PaginatedResult)
    assert page.total_items == 12
    assert page.total_pages == 3
    assert [b.title for b in page.items] == [f"Volume {i:02d}" for i in (6, 5, 4, 3, 2)]
    assert sorted(b.title for b in searched) == ["Volume 10", "Volume 11"]

    with pytest.raises(ValidationError):
        await service.list_books(owner.id, BookQuery(limit=101))


async def test_create_ignores_client_owner_id(service, owner, other_owner):
    data = BookCreate(title="Dune", author="Frank Herbert", owner_id=other_owner.id)

    book = await service.create_book(owner.id, data)

    assert book.owner_id == owner.id


async def test_update_book_policy(service, owner, other_owner):
    dune = await service.create_book(owner.id, _create("Dune", author="Frank Herbert"))
    await service.create_book(owner.id, _create("Emma", author="Jane Austen"))

    updated = await service.update_book(
        owner.id, dune.id, BookUpdate(year=1965, owner_id=other_owner.id)
    )
    assert updated.year == 1965
    assert updated.owner_id == owner.id
    assert updated.title == "Dune"

    with pytest.raises(ConflictError, match="Emma"):
        await service.update_book(owner.id, dune.id, BookUpdate(title="Emma"))
    with pytest.raises(NotFoundError):
        await service.update_book(other_owner.id, dune.id, BookUpdate(year=1))

    # Same title as itself is not a conflict
    same = await service.update_book(owner.id, dune.id, BookUpdate(title="Dune"))
    assert same.title == "Dune"


async def test_generic_update_paths_never_move_ownership(service, owner, other_owner):
    dune = await service.create_book(owner.id, _create("Dune", author="Frank Herbert"))

    result = await service.books.update(dune.id, {"owner_id": other_owner.id})
    assert result.matched_count == 1
    assert (await service.books.get_by_id(dune.id)).owner_id == owner.id

    returned = await service.books.update_and_return(dune.id, {"owner_id": other_owner.id, "year": 1965})
    assert returned.year == 1965
    assert returned.owner_id == owner.id

    await service.books.update_by_field("title", "Dune", {"owner_id": other_owner.id})
    assert await service.books.count_for_owner(other_owner.id) == 0


async def test_storage_level_conflict_on_rename_is_translated(service, owner, monkeypatch):
    dune = await service.create_book(owner.id, _create("Dune", author="Frank Herbert"))
    await service.create_book(owner.id, _create("Emma", author="Jane Austen"))

    async def never_exists(*args, **kwargs):
        return False

    monkeypatch.setattr(service.books, "title_exists_for_owner", never_exists)

    with pytest.raises(ConflictError, match="Emma"):
        await service.update_book(owner.id, dune.id, BookUpdate(title="Emma"))
    assert (await service.get_book(owner.id, dune.id)).title == "Dune"


async def test_create_with_cover_stores_object(service, store, owner):
    cover = Upload(data=PNG, filename="My Cover.PNG", content_type="image/png")

    book = await service.create_book(owner.id, _create("Dune"), cover)

    key = store.key_from_url(book.attachment_url)
    assert re.fullmatch(rf"covers/{owner.id}/\d{{13}}-[0-9a-f]{{8}}-My_Cover\.png", key)
    assert await store.download(key) == PNG


@pytest.mark.parametrize(
    "upload",
    [
        Upload(data=b"GIF89a", filename="anim.gif", content_type="image/gif"),
        Upload(data=b"x" * (3 * 1024 * 1024 + 1), filename="huge.png", content_type="image/png"),
        Upload(data=b"", filename="empty.png", content_type="image/png"),
    ],
)
async def test_cover_rules_checked_before_anything_is_stored(service, store, owner, upload):
    with pytest.raises(ValidationError):
        await service.create_book(owner.id, _create("Dune"), upload)

    assert await store.list() == []
    assert await service.count_for_owner(owner.id) == 0


async def test_failed_insert_discards_uploaded_cover(service, store, owner, monkeypatch):
    async def failing_create(data):
        raise RepositoryError("create", RuntimeError("disk full"))

    monkeypatch.setattr(service.books, "create", failing_create)
    cover = Upload(data=PNG, filename="cover.png", content_type="image/png")

    with pytest.raises(RepositoryError):
        await service.create_book(owner.id, _create("Dune"), cover)

    assert await store.list() == []


async def test_replace_cover_removes_previous_object(service, store, owner):
    first = Upload(data=PNG, filename="first.png", content_type="image/png")
    second = Upload(data=PNG + b"2", filename="second.jpg", content_type="image/jpeg")
    book = await service.create_book(owner.id, _create("Dune"), first)
    old_key = store.key_from_url(book.attachment_url)

    updated = await service.replace_cover(owner.id, book.id, second)

    assert await store.exists(old_key) is False
    assert await store.list(f"covers/{owner.id}/") == [store.key_from_url(updated.attachment_url)]


async def test_delete_book_removes_row_and_cover(service, store, owner):
    cover = Upload(data=PNG, filename="cover.png", content_type="image/png")
    book = await service.create_book(owner.id, _create("Dune"), cover)

    await service.delete_book(owner.id, book.id)

    assert await store.list() == []
    assert await service.books.get_by_id(book.id, include_deleted=True) is None


async def test_delete_book_survives_cover_cleanup_failure(session, config, owner, caplog):
    store = BrokenDeleteStore(config.storage.path, config.storage.public_url, "secret")
    service = BookService(session, store, config)
    cover = Upload(data=PNG, filename="cover.png", content_type="image/png")
    book = await service.create_book(owner.id, _create("Dune"), cover)
    caplog.set_level(logging.INFO)

    await service.delete_book(owner.id, book.id)

    assert await service.books.find_by_id_and_owner(book.id, owner.id) is None
    assert any(getattr(r, "event", None) == "cover_delete_failed" for r in caplog.records)
    assert any(getattr(r, "event", None) == "book_deleted" for r in caplog.records)


async def test_delete_book_of_other_owner_is_not_found(service, owner, other_owner):
    book = await service.create_book(owner.id, _create("Dune"))

    with pytest.raises(NotFoundError):
        await service.delete_book(other_owner.id, book.id)
    assert await service.count_for_owner(owner.id) == 1


async def test_delete_all_for_owner(service, owner, other_owner):
    await service.create_book(owner.id, _create("Dune"))
    await service.create_book(owner.id, _create("Emma"))
    await service.create_book(other_owner.id, _create("Emma"))

    assert await service.delete_all_for_owner(owner.id) == 2
    assert await service.count_for_owner(other_owner.id) == 1


async def test_deleting_account_cascades_to_books(session, service, owner):
    await service.create_book(owner.id, _create("Dune"))

    await AccountRepository(session).delete(owner.id)

    assert await service.books.count(include_deleted=True) == 0


def test_book_create_validation():
    with pytest.raises(ValueError):
        BookCreate(title="X", author="Someone")
    with pytest.raises(ValueError):
        BookCreate(title="Dune", author="Frank Herbert", year=0)
    with pytest.raises(ValueError):
        BookCreate(title="Dune", author="Frank Herbert", year=99999)
    assert BookCreate(title="  Dune  ", author="Frank Herbert").title == "Dune"
