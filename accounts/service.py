"""Identity & credential service: registration, login, token validation.

Credential failures always surface as the same ``UnauthorizedError`` so a
caller cannot tell a wrong password from an unknown email.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlmodel.ext.asyncio.session import AsyncSession

from shelf.config import ShelfConfig, get_config
from shelf.errors import (
    BadRequestError,
    ConflictError,
    DuplicateKeyError,
    NotFoundError,
    RepositoryError,
    UnauthorizedError,
)
from shelf.logging_config import audit, get_logger
from shelf.models import Account
from shelf.security import hash_credential_async, verify_against_placeholder, verify_credential_async
from shelf.tokens import TokenClaims, TokenSigner

from .repository import AccountRepository
from .schemas import AuthResult, normalize_email

INVALID_CREDENTIALS = "Invalid email or password"
ACCOUNT_EXISTS = "User with this email already exists"


class AccountService:
    def __init__(
        self,
        session: AsyncSession,
        signer: TokenSigner,
        config: Optional[ShelfConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or get_config()
        self.logger = logger or get_logger(__name__)
        self.signer = signer
        self.accounts = AccountRepository(session, logger=self.logger)

    def _result(self, account: Account) -> AuthResult:
        return AuthResult(
            account_id=account.id,
            email=account.email,
            token=self.signer.issue(account.id, account.email),
        )

    async def _reject_unknown(self, password: str) -> UnauthorizedError:
        # Unknown emails cost one bcrypt check too
        await verify_against_placeholder(password, self.config.auth.bcrypt_rounds)
        return self._reject_login("unknown_email")

    def _reject_login(self, reason: str, account_id: Optional[int] = None) -> UnauthorizedError:
        audit(self.logger, "login_failed", level=logging.WARNING, reason=reason, account_id=account_id)
        return UnauthorizedError(INVALID_CREDENTIALS)

    async def register(self, email: str, password: str) -> AuthResult:
        """Create an account and return it with a fresh token.

        Raises:
            ConflictError: the email is already registered (pre-check or race)
            BadRequestError: any other persistence failure
        """
        email = normalize_email(email)

        # Closed accounts still hold their email in the unique index
        if await self.accounts.exists("email", email, include_deleted=True):
            audit(self.logger, "account_register_conflict", level=logging.WARNING)
            raise ConflictError(ACCOUNT_EXISTS)

        credential_hash = await hash_credential_async(password, self.config.auth.bcrypt_rounds)

        try:
            account = await self.accounts.create({"email": email, "credential_hash": credential_hash})
        except DuplicateKeyError as exc:
            audit(self.logger, "account_register_conflict", level=logging.WARNING, race=True)
            raise ConflictError(ACCOUNT_EXISTS) from exc
        except RepositoryError as exc:
            audit(self.logger, "account_register_failed", level=logging.ERROR, operation=exc.operation)
            raise BadRequestError("Failed to create account") from exc

        audit(self.logger, "account_registered", account_id=account.id)
        return self._result(account)

    async def login(self, email: str, password: str) -> AuthResult:
        email = normalize_email(email)

        account = await self.accounts.find_one_by_field("email", email)
        if account is None:
            raise await self._reject_unknown(password)

        # The default projection leaves the hash out
        account = await self.accounts.find_with_credentials(email)
        if account is None:
            raise await self._reject_unknown(password)

        if not await verify_credential_async(password, account.credential_hash):
            raise self._reject_login("bad_credential", account_id=account.id)

        audit(self.logger, "login_succeeded", account_id=account.id)
        return self._result(account)

    async def validate_token(self, claims: TokenClaims) -> Optional[Account]:
        """Account named by the token subject, or None once it is gone or closed."""
        return await self.accounts.get_by_id(claims.subject)

    async def authenticate_token(self, token: str) -> Optional[Account]:
        """Verify ``token`` then resolve its account.

        Raises:
            InvalidTokenError: bad signature, shape or expiry
        """
        return await self.validate_token(self.signer.verify(token))

    async def find_by_email(self, email: str) -> Optional[Account]:
        return await self.accounts.find_one_by_field("email", normalize_email(email))

    async def email_exists(self, email: str) -> bool:
        return await self.accounts.exists("email", normalize_email(email), include_deleted=True)

    async def close_account(self, account_id: int) -> None:
        result = await self.accounts.soft_delete(account_id)
        if result.matched_count == 0:
            raise NotFoundError("Account not found")
        audit(self.logger, "account_closed", account_id=account_id)

    async def reopen_account(self, account_id: int) -> None:
        result = await self.accounts.restore(account_id)
        if result.matched_count == 0:
            raise NotFoundError("Account not found")
        audit(self.logger, "account_reopened", account_id=account_id)
