"""Alembic migration helpers for Shelfkeeper.

This is the only module in the project that imports alembic directly.
Everything else (CLI, tests) goes through the functions below. The
functions are synchronous: ``migrations/env.py`` drives the async engine
with its own event loop, so call them outside a running loop.
"""

from __future__ import annotations

import asyncio
import shutil
from typing import Optional

from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

from .config import PROJECT_ROOT, get_config
from .database import create_engine
from .logging_config import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Alembic config object, reused by every public function
# ---------------------------------------------------------------------------

def _alembic_cfg(url: Optional[str] = None) -> AlembicConfig:
    """Build an AlembicConfig in code; there is no alembic.ini."""
    cfg = AlembicConfig()
    # Absolute path so it works regardless of the current working directory.
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    # configparser interpolation would choke on '%' in passwords
    cfg.set_main_option("sqlalchemy.url", (url or get_config().database_url).replace("%", "%%"))
    return cfg


def _backup_db() -> None:
    """Copy shelfkeeper.db -> shelfkeeper.db.bak (overwrite previous backup)."""
    db_path = get_config().database_path
    if db_path is not None and db_path.exists():
        shutil.copy2(db_path, db_path.with_suffix(".db.bak"))
        logger.info(f"Backed up database to {db_path.with_suffix('.db.bak')}")


async def _current_revision(url: str) -> Optional[str]:
    engine = create_engine(url)
    try:
        async with engine.connect() as conn:
            return await conn.run_sync(
                lambda sync_conn: MigrationContext.configure(sync_conn).get_current_revision()
            )
    finally:
        await engine.dispose()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def run_migrations(backup: bool = True, url: Optional[str] = None) -> None:
    """Run ``alembic upgrade head``.

    If *backup* is True and the SQLite database file exists, a copy is made first.
    """
    if backup and url is None:
        _backup_db()
    alembic_command.upgrade(_alembic_cfg(url), "head")


def stamp_head(url: Optional[str] = None) -> None:
    """Mark a database created by ``init_db`` as being at head."""
    alembic_command.stamp(_alembic_cfg(url), "head")


def get_status(url: Optional[str] = None) -> tuple[Optional[str], str]:
    """Return (current_revision, head_revision).

    current_revision is None when the database has never been
    stamped/migrated.
    """
    cfg = _alembic_cfg(url)

    # Head is a static property of the migration scripts; no DB needed.
    head_rev: str = ScriptDirectory.from_config(cfg).get_current_head() or "unknown"

    db_path = get_config().database_path if url is None else None
    if url is None and db_path is not None and not db_path.exists():
        return None, head_rev

    current = asyncio.run(_current_revision(url or get_config().database_url))
    return current, head_rev
