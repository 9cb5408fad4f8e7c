import sqlite3

from shelf.migrations import get_status, run_migrations


def test_upgrade_creates_schema(tmp_path):
    db_file = tmp_path / "shelfkeeper.db"
    url = f"sqlite+aiosqlite:///{db_file}"

    assert get_status(url)[0] is None

    run_migrations(backup=False, url=url)
    current, head = get_status(url)

    assert current == head == "0001"
    conn = sqlite3.connect(db_file)
    try:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        indexes = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='index'")}
    finally:
        conn.close()

    assert {"accounts", "books", "alembic_version"} <= tables
    assert {"ix_accounts_email", "ix_books_owner_id", "ix_books_title_author"} <= indexes


def test_upgrade_is_idempotent(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'shelfkeeper.db'}"

    run_migrations(backup=False, url=url)
    run_migrations(backup=False, url=url)

    assert get_status(url) == ("0001", "0001")
