"""Signed identity tokens (JWT via python-jose)."""

from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import jwt
from jose.exceptions import JOSEError

from .errors import InvalidTokenError, UpstreamError


@dataclasses.dataclass(frozen=True)
class TokenClaims:
    subject: int
    email: str
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class TokenSigner:
    """Issues and verifies HS256 (by default) tokens carrying account identity."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_minutes: int = 24 * 60):
        if not secret_key:
            raise ValueError("Token secret_key must not be empty")
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    @classmethod
    def from_config(cls, auth_config) -> "TokenSigner":
        return cls(
            auth_config.secret_key,
            algorithm=auth_config.algorithm,
            expire_minutes=auth_config.token_expire_minutes,
        )

    def sign(self, claims: TokenClaims) -> str:
        """Encode ``claims``; missing issue/expiry times default to now + expire_minutes."""
        issued_at = (claims.issued_at or datetime.now(timezone.utc)).replace(microsecond=0)
        expires_at = claims.expires_at or issued_at + timedelta(minutes=self.expire_minutes)
        payload: dict[str, Any] = {
            # RFC 7519 wants a string subject
            "sub": str(claims.subject),
            "email": claims.email,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        try:
            return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        except JOSEError as exc:
            raise UpstreamError("Failed to sign token", detail=str(exc)) from exc

    def issue(self, subject: int, email: str) -> str:
        return self.sign(TokenClaims(subject=subject, email=email))

    def verify(self, token: str) -> TokenClaims:
        """Decode and check signature and expiry.

        Raises:
            InvalidTokenError: on any signature, shape or expiry problem
        """
        if not token:
            raise InvalidTokenError("Invalid or expired token")
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JOSEError as exc:
            raise InvalidTokenError("Invalid or expired token", detail=str(exc)) from exc

        subject = payload.get("sub")
        email = payload.get("email")
        if subject is None or not isinstance(email, str):
            raise InvalidTokenError("Token missing identity claims")
        try:
            subject_id = int(subject)
        except (TypeError, ValueError) as exc:
            raise InvalidTokenError("Invalid subject in token") from exc

        return TokenClaims(
            subject=subject_id,
            email=email,
            issued_at=_from_timestamp(payload.get("iat")),
            expires_at=_from_timestamp(payload.get("exp")),
        )


def _from_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)
