"""Validated input for the book flows.

Every model ignores unknown keys, which is how a client-supplied
``owner_id`` gets dropped: ownership always comes from the caller identity.
"""

from __future__ import annotations

import dataclasses
from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

SortField = Literal["title", "author", "year", "created_at", "updated_at"]


def max_publication_year() -> int:
    return date.today().year + 10


def validate_year(value: Optional[int]) -> Optional[int]:
    if value is None:
        return value
    if value < 1:
        raise ValueError("Year must be greater than 0")
    if value > max_publication_year():
        raise ValueError("Year cannot be too far in the future")
    return value


class BookCreate(BaseModel):
    model_config = {"extra": "ignore", "str_strip_whitespace": True}

    title: str = Field(min_length=2, max_length=255)
    author: str = Field(min_length=2, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    year: Optional[int] = None

    @field_validator("year")
    @classmethod
    def _check_year(cls, value: Optional[int]) -> Optional[int]:
        return validate_year(value)


class BookUpdate(BaseModel):
    """Partial update; only fields explicitly set are written."""

    model_config = {"extra": "ignore", "str_strip_whitespace": True}

    title: Optional[str] = Field(default=None, min_length=2, max_length=255)
    author: Optional[str] = Field(default=None, min_length=2, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    year: Optional[int] = None
    attachment_url: Optional[str] = Field(default=None, max_length=500)

    @field_validator("year")
    @classmethod
    def _check_year(cls, value: Optional[int]) -> Optional[int]:
        return validate_year(value)

    @field_validator("attachment_url")
    @classmethod
    def _check_url(cls, value: Optional[str]) -> Optional[str]:
        if value and not value.startswith(("http://", "https://")):
            raise ValueError("Cover image URL must be a valid URL")
        return value


class BookQuery(BaseModel):
    model_config = {"extra": "ignore"}

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1)
    sort_by: Optional[SortField] = None
    sort_order: Literal["ASC", "DESC"] = "ASC"
    author: Optional[str] = None
    search: Optional[str] = None

    @field_validator("sort_order", mode="before")
    @classmethod
    def _upper(cls, value):
        return value.upper() if isinstance(value, str) else value


@dataclasses.dataclass(frozen=True)
class Upload:
    """An uploaded cover image as handed over by the transport layer."""

    data: bytes
    filename: str
    content_type: str

    @property
    def size(self) -> int:
        return len(self.data)
