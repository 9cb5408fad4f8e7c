"""Error taxonomy shared by the repository, services and storage collaborators.

The outer boundary maps ``code`` to whatever its transport needs; nothing
in this package knows about status codes.
"""

from __future__ import annotations

from typing import Optional


class ShelfError(Exception):
    """Base exception for Shelfkeeper errors."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class ValidationError(ShelfError):
    """Bad input shape or range, detected before storage access."""

    code = "VALIDATION_ERROR"


class BadRequestError(ShelfError):
    """The request could not be carried out; internals are not exposed."""

    code = "BAD_REQUEST"


class ConflictError(ShelfError):
    """A write would violate a uniqueness rule."""

    code = "CONFLICT"


class UnauthorizedError(ShelfError):
    """Credential or token failure. Messages stay generic."""

    code = "UNAUTHORIZED"


class InvalidTokenError(UnauthorizedError):
    """A token failed signature, shape or expiry checks."""

    code = "INVALID_TOKEN"


class NotFoundError(ShelfError):
    """Referenced entity is absent for the caller's scope."""

    code = "NOT_FOUND"


class UpstreamError(ShelfError):
    """Object storage or token signing failed."""

    code = "UPSTREAM_ERROR"


class RepositoryError(ShelfError):
    """Any lower-level storage failure, tagged with the failing operation."""

    code = "REPOSITORY_ERROR"

    def __init__(self, operation: str, cause: BaseException):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Repository error in {operation}: {cause}")


class DuplicateKeyError(RepositoryError):
    """A unique constraint or index rejected the write."""

    code = "DUPLICATE_KEY"

    def __init__(self, operation: str, cause: BaseException, columns: tuple[str, ...] = ()):
        self.columns = columns
        super().__init__(operation, cause)

    def involves(self, *columns: str) -> bool:
        """True when the violated constraint covers all given columns.

        Drivers that do not report columns make this return True, so callers
        translating a single known constraint stay correct.
        """
        if not self.columns:
            return True
        return all(column in self.columns for column in columns)
