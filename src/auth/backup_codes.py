"""
MFA backup codes: generation, hashing and single-use redemption.

Codes are 8 random digits shown as ``1234-5678``. Only salted bcrypt hashes
are stored, at a lower work factor than passwords since the codes are
single-use and expire.
"""
import logging
import secrets
import uuid
from datetime import timedelta
from typing import List, Optional

import bcrypt

from .errors import InvalidBackupCode
from .mfa import normalize_code
from .repositories import BackupCodeRepository, Clock
from .types import BackupCodeInfo, BackupCodeRecord, utc_now

logger = logging.getLogger(__name__)

CODE_DIGITS = 8


def generate_backup_code() -> str:
    """One formatted backup code, e.g. ``0412-9981``."""
    digits = f"{secrets.randbelow(10 ** CODE_DIGITS):0{CODE_DIGITS}d}"
    return f"{digits[:4]}-{digits[4:]}"


def hash_backup_code(code: str, rounds: int = 6) -> str:
    """
    Hash a backup code for secure storage.

    Args:
        code: Plain text backup code (e.g., "0412-9981").
        rounds: bcrypt work factor.

    Returns:
        Bcrypt hash of the normalized code.
    """
    normalized = normalize_code(code)
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(normalized.encode('utf-8'), salt).decode('utf-8')


def verify_backup_code(code: str, hashed_code: str) -> bool:
    """
    Verify a backup code against its hash.

    Args:
        code: Plain text backup code entered by user.
        hashed_code: Stored bcrypt hash.

    Returns:
        True if code matches, False otherwise.
    """
    normalized = normalize_code(code)
    if not normalized:
        return False
    try:
        return bcrypt.checkpw(
            normalized.encode('utf-8'),
            hashed_code.encode('utf-8')
        )
    except ValueError:
        return False


class BackupCodeStore:
    """
    Backup codes for one account kind.

    Example usage:
        store = BackupCodeStore(SqlBackupCodeRepository(db, "mfa_backup_codes"))
        codes = store.generate(user_id)      # plaintexts, shown once
        store.redeem(user_id, codes[0])      # ok
        store.redeem(user_id, codes[0])      # raises InvalidBackupCode
    """

    def __init__(
        self,
        repository: BackupCodeRepository,
        clock: Clock = utc_now,
        rounds: int = 6,
        count: int = 8,
        ttl_days: Optional[int] = 90,
    ):
        self.repository = repository
        self.clock = clock
        self.rounds = rounds
        self.count = count
        self.ttl_days = ttl_days

    def generate(self, owner_id: str) -> List[str]:
        """
        Replace the owner's codes with a fresh set.

        Returns:
            The plaintext codes. They are not retrievable afterwards.
        """
        now = self.clock()
        expires_at = now + timedelta(days=self.ttl_days) if self.ttl_days else None

        codes = [generate_backup_code() for _ in range(self.count)]
        records = [
            BackupCodeRecord(
                code_id=str(uuid.uuid4()),
                owner_id=owner_id,
                code_hash=hash_backup_code(code, self.rounds),
                label=f"Backup Code {i + 1}",
                created_at=now,
                expires_at=expires_at,
            )
            for i, code in enumerate(codes)
        ]

        self.repository.replace_all_by_owner(owner_id, records)

        logger.info(f"Generated {len(records)} backup codes for account {owner_id}")
        return codes

    def redeem(self, owner_id: str, code: str) -> None:
        """
        Consume one backup code.

        The code is marked used with a conditional write, so of several
        concurrent redemptions of the same code exactly one succeeds.

        Raises:
            InvalidBackupCode: No unused, unexpired code matched, or another
                request consumed it first.
        """
        now = self.clock()
        for record in self.repository.find_unused_by_owner(owner_id):
            if not record.is_redeemable(now):
                continue
            if not verify_backup_code(code, record.code_hash):
                continue
            if self.repository.conditional_mark_used(record.code_id, now):
                logger.info(f"Backup code redeemed for account {owner_id} ({record.label})")
                return
            logger.warning(f"Backup code for account {owner_id} was consumed concurrently")
            break

        raise InvalidBackupCode()

    def list(self, owner_id: str) -> List[BackupCodeInfo]:
        """Metadata for the owner's codes. No plaintexts, no hashes."""
        return [
            BackupCodeInfo(
                code_id=record.code_id,
                label=record.label,
                used=record.used_at is not None,
                created_at=record.created_at,
                expires_at=record.expires_at,
                used_at=record.used_at,
            )
            for record in self.repository.list_by_owner(owner_id)
        ]

    def remaining(self, owner_id: str) -> int:
        """Number of codes that could still be redeemed."""
        now = self.clock()
        return sum(
            1 for record in self.repository.find_unused_by_owner(owner_id)
            if record.is_redeemable(now)
        )

    def clear(self, owner_id: str) -> int:
        """Delete every code of the owner."""
        deleted = self.repository.delete_all_by_owner(owner_id)
        logger.info(f"Cleared {deleted} backup codes for account {owner_id}")
        return deleted
