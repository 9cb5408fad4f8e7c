"""Initial schema: accounts, books

Revision ID: 0001
Revises: None
Create Date: 2026-10-19 00:00:00
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None


def _table_exists(name: str) -> bool:
    """Check whether a table already exists in the database."""
    return sa.inspect(op.get_bind()).has_table(name)


def upgrade() -> None:
    # Guarded so the migration is safe on a DB created by init_db()
    # (create_all) before it was stamped.

    if not _table_exists("accounts"):
        op.create_table(
            "accounts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("credential_hash", sa.String(length=255), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.Column("deleted_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_accounts_email", "accounts", ["email"], unique=True)
        op.create_index("ix_accounts_deleted_at", "accounts", ["deleted_at"])

    if not _table_exists("books"):
        op.create_table(
            "books",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("author", sa.String(length=255), nullable=False),
            sa.Column("description", sa.String(length=1000), nullable=True),
            sa.Column("year", sa.Integer(), nullable=True),
            sa.Column("attachment_url", sa.String(length=500), nullable=True),
            sa.Column(
                "owner_id",
                sa.Integer(),
                sa.ForeignKey("accounts.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.Column("deleted_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("owner_id", "title", name="uq_books_owner_title"),
        )
        op.create_index("ix_books_owner_id", "books", ["owner_id"])
        op.create_index("ix_books_title_author", "books", ["title", "author"])
        op.create_index("ix_books_deleted_at", "books", ["deleted_at"])


def downgrade() -> None:
    # Reverse FK order: books -> accounts.
    op.drop_table("books")
    op.drop_table("accounts")
