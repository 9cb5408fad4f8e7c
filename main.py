"""Shelfkeeper admin CLI entry point."""

from __future__ import annotations

import asyncio
import logging
import secrets
import shutil
from typing import Awaitable, Callable, TypeVar

import pydantic
import typer
from sqlmodel import func, select

from accounts.schemas import RegisterInput
from accounts.service import AccountService
from shelf.config import DEFAULT_CONFIG_PATH, ShelfConfig, get_config, write_default_config
from shelf.database import dispose, drop_db, init_db, session_scope
from shelf.errors import ShelfError
from shelf.logging_config import setup_logging
from shelf.migrations import get_status, run_migrations, stamp_head
from shelf.models import Account, Book
from shelf.tokens import TokenSigner


__version__ = "0.1.0"

app = typer.Typer(add_completion=False, help="Shelfkeeper admin CLI")
logger = logging.getLogger("shelfkeeper")

T = TypeVar("T")


def _ensure_config() -> ShelfConfig:
    try:
        config = get_config()
    except FileNotFoundError:
        typer.echo("[ERROR] config.ini not found. Run: shelfkeeper init")
        raise typer.Exit(code=1)
    setup_logging(config.logging.level)
    return config


def _run(work: Callable[[], Awaitable[T]]) -> T:
    """Run one async unit of work and release the engine afterwards."""

    async def runner() -> T:
        try:
            return await work()
        finally:
            await dispose()

    return asyncio.run(runner())


def _account_service(session, config: ShelfConfig) -> AccountService:
    return AccountService(session, TokenSigner.from_config(config.auth), config)


@app.command()
def init(
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config.ini"),
) -> None:
    """Initialize config.ini with default settings and a fresh signing secret."""
    config_path = DEFAULT_CONFIG_PATH
    if config_path.exists() and not force:
        typer.echo(f"[ERROR] {config_path} already exists. Use --force to overwrite.")
        raise typer.Exit(code=1)
    write_default_config(config_path, secret_key=secrets.token_urlsafe(48))
    typer.echo(f"[OK] Config created at {config_path}")


@app.command()
def migrate(
    check: bool = typer.Option(False, "--check", help="Print status and exit (1 if not at head)"),
) -> None:
    """Run pending database migrations (or check status with --check)."""
    _ensure_config()                    # config must exist before we touch the DB

    current, head = get_status()

    if check:
        if current == head:
            typer.echo(f"[OK] Database at {head} (head).")
            raise typer.Exit(code=0)
        typer.echo(f"[WARN] Database behind. Current: {current}, head: {head}")
        raise typer.Exit(code=1)

    if current == head:
        logger.info(f"Database already at {head} (head). Nothing to do.")
        raise typer.Exit(code=0)

    logger.info(f"Migrating database {current} -> {head} ...")
    run_migrations(backup=True)
    logger.info("Migration complete.")


@app.command()
def stats() -> None:
    """Show account and book counts."""
    _ensure_config()

    async def collect() -> dict[str, int]:
        async with session_scope() as session:
            accounts = (await session.exec(select(func.count()).select_from(Account))).one()
            closed = (
                await session.exec(
                    select(func.count()).select_from(Account).where(Account.deleted_at.is_not(None))
                )
            ).one()
            books = (await session.exec(select(func.count()).select_from(Book))).one()
            covers = (
                await session.exec(
                    select(func.count()).select_from(Book).where(Book.attachment_url.is_not(None))
                )
            ).one()
        return {"accounts": accounts, "closed": closed, "books": books, "covers": covers}

    counts = _run(collect)
    typer.echo("Shelfkeeper Statistics:")
    typer.echo(f"  Accounts: {counts['accounts']} ({counts['closed']} closed)")
    typer.echo(f"  Books: {counts['books']}")
    typer.echo(f"  Books with covers: {counts['covers']}")


@app.command("create-account")
def create_account(
    email: str = typer.Argument(..., help="Email address for the new account"),
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
) -> None:
    """Register an account through the normal registration flow."""
    config = _ensure_config()
    try:
        data = RegisterInput(email=email, password=password)
    except pydantic.ValidationError as exc:
        for error in exc.errors():
            typer.echo(f"[ERROR] {error['loc'][0]}: {error['msg']}")
        raise typer.Exit(code=1)

    async def register():
        async with session_scope() as session:
            return await _account_service(session, config).register(data.email, data.password)

    try:
        result = _run(register)
    except ShelfError as exc:
        typer.echo(f"[ERROR] {exc.message}")
        raise typer.Exit(code=1)
    typer.echo(f"[OK] Account {result.account_id} created for {result.email}")


@app.command("close-account")
def close_account(account_id: int = typer.Argument(..., help="Account id")) -> None:
    """Soft-delete an account; its email stays reserved."""
    config = _ensure_config()

    async def close():
        async with session_scope() as session:
            await _account_service(session, config).close_account(account_id)

    try:
        _run(close)
    except ShelfError as exc:
        typer.echo(f"[ERROR] {exc.message}")
        raise typer.Exit(code=1)
    typer.echo(f"[OK] Account {account_id} closed")


@app.command("reopen-account")
def reopen_account(account_id: int = typer.Argument(..., help="Account id")) -> None:
    """Restore a closed account."""
    config = _ensure_config()

    async def reopen():
        async with session_scope() as session:
            await _account_service(session, config).reopen_account(account_id)

    try:
        _run(reopen)
    except ShelfError as exc:
        typer.echo(f"[ERROR] {exc.message}")
        raise typer.Exit(code=1)
    typer.echo(f"[OK] Account {account_id} reopened")


@app.command()
def reset(
    confirm: bool = typer.Option(False, "--confirm", help="Confirm destructive reset"),
) -> None:
    """Drop and recreate all tables; local covers are removed too."""
    if not confirm:
        typer.echo("[ERROR] This will delete all accounts, books and covers. Use --confirm.")
        raise typer.Exit(code=1)

    config = _ensure_config()

    async def recreate() -> None:
        await drop_db()
        await init_db()

    _run(recreate)
    stamp_head()

    if config.storage.backend == "local" and config.storage.path.exists():
        shutil.rmtree(config.storage.path)

    typer.echo("[INFO] Database and covers reset.")


if __name__ == "__main__":
    app()
