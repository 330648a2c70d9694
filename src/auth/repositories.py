"""
Storage interfaces the auth core depends on.

The core never talks to a database directly. Anything implementing these
protocols can back it; ``src.database.auth_db`` provides the SQL versions.
"""
from datetime import datetime
from typing import Callable, List, Optional, Protocol, Sequence

from .types import AccountPatch, AccountRecord, BackupCodeRecord

Clock = Callable[[], datetime]


class AccountRepository(Protocol):
    """Accounts of one kind (users or admins)."""

    def find_by_id(self, account_id: str) -> Optional[AccountRecord]:
        ...

    def find_by_identifier(self, identifier: str) -> Optional[AccountRecord]:
        ...

    def update_fields(self, account_id: str, patch: AccountPatch) -> bool:
        """Apply the patch if the row matches its expectations. True if applied."""
        ...

    def exists_by_email(self, email: str) -> bool:
        ...

    def exists_by_username(self, username: str) -> bool:
        ...

    def create(self, email: str, username: str, password_hash: str) -> str:
        ...


class BackupCodeRepository(Protocol):
    """Hashed backup codes."""

    def replace_all_by_owner(self, owner_id: str, records: Sequence[BackupCodeRecord]) -> None:
        """Swap the owner's codes for ``records`` atomically. All or nothing."""
        ...

    def find_unused_by_owner(self, owner_id: str) -> List[BackupCodeRecord]:
        ...

    def list_by_owner(self, owner_id: str) -> List[BackupCodeRecord]:
        ...

    def conditional_mark_used(self, code_id: str, used_at: datetime) -> bool:
        """Mark the code used only if it is still unused. True if this call did it."""
        ...

    def delete_all_by_owner(self, owner_id: str) -> int:
        ...
