"""SQLModel database models for Shelfkeeper."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Index, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampedModel(SQLModel):
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column_kwargs={"onupdate": utcnow},
    )
    # Soft-delete marker; rows with a value are hidden from default reads
    deleted_at: Optional[datetime] = Field(default=None, index=True)


class AccountBase(SQLModel):
    email: str = Field(max_length=255, unique=True, index=True)


class Account(AccountBase, TimestampedModel, table=True):
    __tablename__ = "accounts"

    id: Optional[int] = Field(default=None, primary_key=True)
    credential_hash: str = Field(max_length=255)


class BookBase(SQLModel):
    title: str = Field(max_length=255)
    author: str = Field(max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    year: Optional[int] = None
    attachment_url: Optional[str] = Field(default=None, max_length=500)


class Book(BookBase, TimestampedModel, table=True):
    __tablename__ = "books"
    __table_args__ = (
        UniqueConstraint("owner_id", "title", name="uq_books_owner_title"),
        Index("ix_books_title_author", "title", "author"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    # Immutable after creation; the scoping layer never writes it on update
    owner_id: int = Field(foreign_key="accounts.id", ondelete="CASCADE", index=True)
