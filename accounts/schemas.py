"""Validated input and results for the identity flows."""

from __future__ import annotations

import dataclasses
import re
from typing import Any

from pydantic import BaseModel, EmailStr, Field, field_validator


def normalize_email(email: str) -> str:
    return email.strip().lower()


class LoginInput(BaseModel):
    model_config = {"extra": "ignore"}

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, value: Any) -> Any:
        return normalize_email(value) if isinstance(value, str) else value


class RegisterInput(LoginInput):
    """Registration payload. Email is normalized then validated; password strength is checked."""

    email: EmailStr
    password: str = Field(min_length=6, max_length=128)

    @field_validator("password")
    @classmethod
    def _check_strength(cls, value: str) -> str:
        if not (
            re.search(r"[a-z]", value)
            and re.search(r"[A-Z]", value)
            and re.search(r"\d", value)
        ):
            raise ValueError(
                "Password must contain at least one lowercase letter, "
                "one uppercase letter, and one number"
            )
        return value


@dataclasses.dataclass(frozen=True)
class AuthResult:
    account_id: int
    email: str
    token: str
