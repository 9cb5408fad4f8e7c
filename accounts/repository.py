"""Account data access."""

from __future__ import annotations

from typing import Optional

from shelf.models import Account
from shelf.repository import Repository, SoftDeleteMixin


class AccountRepository(SoftDeleteMixin, Repository[Account]):
    model = Account
    searchable_fields = frozenset({"email", "created_at"})
    sortable_fields = frozenset({"email", "created_at", "updated_at"})
    # Credential hashes stay out of every default read
    deferred_fields = frozenset({"credential_hash"})

    async def find_with_credentials(self, email: str) -> Optional[Account]:
        """Active account by email with ``credential_hash`` loaded."""
        criteria = [*self._criteria(), Account.email == email]
        statement = self._select(criteria, undeferred=True).limit(1)
        return await self._fetch_first(statement, "find_with_credentials")
