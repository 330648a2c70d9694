"""
Auth domain types - no dependencies on other auth modules.

Plain, immutable value objects shared by the token service, the MFA engine,
the backup code store and the orchestrator.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Tuple


def utc_now() -> datetime:
    """Default clock: current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class TokenPurpose(str, Enum):
    """What a token may be used for. Fixed at issuance."""
    ACCESS = "access"
    TEMPORARY = "temporary"
    ADMIN = "admin"


class MfaState(str, Enum):
    """Per-account MFA enrollment state."""
    DISABLED = "disabled"
    PENDING = "pending"
    ENABLED = "enabled"


class _Unset:
    """Marker for patch fields that must not be written."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class Claims:
    """Decoded, verified token payload."""
    subject: str
    purpose: TokenPurpose
    issued_at: datetime
    expires_at: datetime
    jti: str
    scope: Tuple[str, ...] = ()


@dataclass(frozen=True)
class IssuedToken:
    """A signed token together with the claims it carries."""
    token: str
    claims: Claims

    @property
    def max_age(self) -> int:
        """Token lifetime in seconds (used for the cookie Max-Age)."""
        return int((self.claims.expires_at - self.claims.issued_at).total_seconds())


@dataclass(frozen=True)
class AccountRecord:
    """Credential record as read from an account repository."""
    account_id: str
    email: str
    password_hash: str
    username: Optional[str] = None
    totp_enabled: bool = False
    totp_secret: Optional[str] = None
    account_status: str = "active"
    locked_until: Optional[datetime] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def mfa_state(self) -> MfaState:
        if self.totp_enabled and self.totp_secret:
            return MfaState.ENABLED
        if self.totp_secret:
            return MfaState.PENDING
        return MfaState.DISABLED

    def is_available(self, now: datetime) -> bool:
        """True if the account may log in (active and not locked)."""
        if self.account_status != "active":
            return False
        return self.locked_until is None or self.locked_until <= now


@dataclass(frozen=True)
class AccountPatch:
    """
    Explicit partial update for an account row.

    Fields left as UNSET are not written. The ``expect_*`` fields turn the
    write into a conditional update: the repository only applies the patch if
    the stored row still matches them, and reports whether it did.
    """
    totp_secret: Any = UNSET
    totp_enabled: Any = UNSET
    password_hash: Any = UNSET
    last_login: Any = UNSET
    expect_totp_enabled: Any = UNSET
    expect_totp_secret: Any = UNSET

    def changes(self) -> dict:
        """Fields to write, keyed by column name."""
        values = {
            "totp_secret": self.totp_secret,
            "totp_enabled": self.totp_enabled,
            "password_hash": self.password_hash,
            "last_login": self.last_login,
        }
        return {k: v for k, v in values.items() if v is not UNSET}

    def expectations(self) -> dict:
        """Preconditions on the stored row, keyed by column name."""
        values = {
            "totp_enabled": self.expect_totp_enabled,
            "totp_secret": self.expect_totp_secret,
        }
        return {k: v for k, v in values.items() if v is not UNSET}


@dataclass(frozen=True)
class BackupCodeRecord:
    """Stored backup code (hash only)."""
    code_id: str
    owner_id: str
    code_hash: str
    label: Optional[str]
    created_at: datetime
    expires_at: Optional[datetime] = None
    used_at: Optional[datetime] = None

    def is_redeemable(self, now: datetime) -> bool:
        if self.used_at is not None:
            return False
        return self.expires_at is None or self.expires_at > now


@dataclass(frozen=True)
class BackupCodeInfo:
    """Metadata view of a backup code. Never carries the code or its hash."""
    code_id: str
    label: Optional[str]
    used: bool
    created_at: datetime
    expires_at: Optional[datetime] = None
    used_at: Optional[datetime] = None


@dataclass(frozen=True)
class ProvisioningData:
    """Everything an authenticator app needs to enroll a secret."""
    secret: str
    provisioning_uri: str
    qr_code_base64: str
    algorithm: str = "SHA1"
    digits: int = 6
    period: int = 30
    skew: int = 1


@dataclass(frozen=True)
class LoginResult:
    """Outcome of the password step of a login."""
    token: IssuedToken
    requires_mfa: bool
    account_id: str
