"""Alembic migration environment.

Builds the engine through ``shelf.database.create_engine`` so migrations
connect exactly the way the application does (async driver, SQLite
foreign keys). The URL comes from ``shelf.migrations._alembic_cfg``.
"""

from __future__ import annotations

import asyncio

from alembic import context
from sqlmodel import SQLModel

from shelf.database import create_engine

# Import all model modules so that their tables are registered on
# SQLModel.metadata before Alembic inspects it.
from shelf import models as _models  # noqa: F401

target_metadata = SQLModel.metadata


def _run(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        # ALTER TABLE on SQLite needs table rebuilds
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Run migrations with a real database connection."""
    engine = create_engine(context.config.get_main_option("sqlalchemy.url"))
    try:
        async with engine.connect() as conn:
            await conn.run_sync(_run)
    finally:
        await engine.dispose()


# We only support online mode.
if context.is_offline_mode():
    raise RuntimeError(
        "Offline migration mode is not supported. "
        "Run without --sql."
    )
else:
    asyncio.run(run_migrations_online())
