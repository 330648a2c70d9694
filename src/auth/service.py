"""
Authentication orchestrator.

Composes credential checks, TOTP, backup codes and token issuance into the
login and MFA flows. User and admin accounts go through the same code; an
``AccountKind`` supplies the repositories and the token purpose that a
successful login yields.

Every state change is persisted before a token is handed out.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from ..utils.settings import AuthSettings
from .backup_codes import BackupCodeStore
from .errors import (
    AccountConflict,
    AccountUnavailable,
    InvalidCredentials,
    InvalidInput,
    InvalidMfaCode,
    MfaAlreadyEnabled,
    MfaNotEnabled,
    MfaNotPending,
    MfaStateConflict,
    Unauthenticated,
)
from .mfa import generate_totp_secret, get_provisioning_data, verify_totp
from .passwords import (
    dummy_password_hash,
    hash_password,
    validate_email,
    validate_password_strength,
    validate_username,
    verify_password,
)
from .repositories import AccountRepository, Clock
from .tokens import TokenService
from .types import (
    AccountPatch,
    AccountRecord,
    BackupCodeInfo,
    Claims,
    IssuedToken,
    LoginResult,
    MfaState,
    ProvisioningData,
    TokenPurpose,
    utc_now,
)

logger = logging.getLogger(__name__)

USER = "user"
ADMIN = "admin"


@dataclass(frozen=True)
class AccountKind:
    """One family of accounts (users or admins) and what a login yields."""
    name: str
    accounts: AccountRepository
    backup_codes: BackupCodeStore
    success_purpose: TokenPurpose


class AuthService:
    """
    Login, MFA and registration flows.

    Example usage:
        service = AuthService([user_kind, admin_kind], tokens, settings.auth)
        result = service.login("buyer@example.com", "password123x")
        if result.requires_mfa:
            token = service.verify_mfa(result.account_id, "123456")
    """

    def __init__(
        self,
        kinds: Iterable[AccountKind],
        tokens: TokenService,
        settings: AuthSettings,
        clock: Clock = utc_now,
    ):
        self.kinds: Dict[str, AccountKind] = {k.name: k for k in kinds}
        self.tokens = tokens
        self.settings = settings
        self.clock = clock

    def kind(self, name: str) -> AccountKind:
        try:
            return self.kinds[name]
        except KeyError:
            raise ValueError(f"Unknown account kind: {name}") from None

    def kind_for_claims(self, claims: Claims) -> AccountKind:
        """Account kind a verified token belongs to."""
        if claims.purpose is TokenPurpose.ADMIN:
            return self.kind(ADMIN)
        if claims.purpose is TokenPurpose.TEMPORARY:
            for entry in claims.scope:
                if entry in self.kinds:
                    return self.kinds[entry]
        return self.kind(USER)

    # ==========================================
    # Login
    # ==========================================

    def login(self, identifier: str, password: str, kind: str = USER) -> LoginResult:
        """
        Password step of a login.

        Returns a success token when MFA is off, otherwise a temporary
        token that is only good for the MFA verification step.

        Raises:
            InvalidInput: Empty or malformed identifier, empty password.
            InvalidCredentials: Unknown account or wrong password (same error).
            AccountUnavailable: Correct password, account suspended or locked.
        """
        identifier = (identifier or "").strip().lower()
        errors = validate_email(identifier)
        if not password:
            errors.append("Password is required")
        if errors:
            raise InvalidInput(errors)

        account_kind = self.kind(kind)
        account = account_kind.accounts.find_by_identifier(identifier)

        if account is None:
            verify_password(password, dummy_password_hash(self.settings.password_bcrypt_rounds))
            logger.info(f"Failed {kind} login: no such account")
            raise InvalidCredentials()

        if not verify_password(password, account.password_hash):
            logger.info(f"Failed {kind} login for {account.account_id}: wrong password")
            raise InvalidCredentials()

        now = self.clock()
        if not account.is_available(now):
            logger.warning(f"Login refused for {account.account_id}: account {account.account_status}")
            raise AccountUnavailable()

        if account.totp_enabled:
            token = self.tokens.issue(
                account.account_id,
                TokenPurpose.TEMPORARY,
                scope=(account_kind.name,),
            )
            logger.info(f"Password accepted for {account.account_id}, MFA required")
            return LoginResult(token=token, requires_mfa=True, account_id=account.account_id)

        token = self._complete_login(account_kind, account.account_id)
        return LoginResult(token=token, requires_mfa=False, account_id=account.account_id)

    def verify_mfa(
        self,
        subject: str,
        code: str,
        is_backup: bool = False,
        kind: str = USER,
    ) -> IssuedToken:
        """
        Second step of a login: TOTP or backup code.

        Raises:
            InvalidMfaCode: Wrong code, MFA not enabled, or unknown subject.
            AccountUnavailable: The account was suspended since the password step.
        """
        account_kind = self.kind(kind)
        account = account_kind.accounts.find_by_id(subject)
        if account is None or not account.totp_enabled:
            logger.info(f"MFA verification for {subject} without enabled MFA")
            raise InvalidMfaCode()

        now = self.clock()
        if not account.is_available(now):
            raise AccountUnavailable()

        if is_backup:
            account_kind.backup_codes.redeem(account.account_id, code)
        elif not verify_totp(account.totp_secret, code, for_time=now):
            logger.info(f"Invalid TOTP code for {account.account_id}")
            raise InvalidMfaCode()

        return self._complete_login(account_kind, account.account_id)

    def _complete_login(self, account_kind: AccountKind, account_id: str) -> IssuedToken:
        account_kind.accounts.update_fields(account_id, AccountPatch(last_login=self.clock()))
        token = self.tokens.issue(account_id, account_kind.success_purpose)
        logger.info(f"{account_kind.name.capitalize()} logged in: {account_id}")
        return token

    # ==========================================
    # MFA Enrollment
    # ==========================================

    def setup_mfa(self, subject: str, kind: str = USER) -> ProvisioningData:
        """
        Start enrollment: store a new secret as pending.

        Calling it again while pending replaces the pending secret.
        """
        account_kind = self.kind(kind)
        account = self.get_account(subject, kind)
        if account.mfa_state is MfaState.ENABLED:
            raise MfaAlreadyEnabled()

        secret = generate_totp_secret()
        data = get_provisioning_data(secret, account.email, self.settings.totp_issuer)

        applied = account_kind.accounts.update_fields(
            account.account_id,
            AccountPatch(totp_secret=secret, expect_totp_enabled=False),
        )
        if not applied:
            raise MfaStateConflict()

        logger.info(f"MFA setup started for {account.account_id}")
        return data

    def enable_mfa(self, subject: str, code: str, kind: str = USER) -> List[str]:
        """
        Confirm enrollment with a code from the authenticator.

        Returns:
            Fresh backup codes in plaintext, shown to the user once.
        """
        account_kind = self.kind(kind)
        account = self.get_account(subject, kind)
        state = account.mfa_state
        if state is MfaState.ENABLED:
            raise MfaAlreadyEnabled()
        if state is not MfaState.PENDING:
            raise MfaNotPending()

        if not verify_totp(account.totp_secret, code, for_time=self.clock()):
            logger.info(f"Invalid TOTP code while enabling MFA for {account.account_id}")
            raise InvalidMfaCode()

        applied = account_kind.accounts.update_fields(
            account.account_id,
            AccountPatch(
                totp_enabled=True,
                expect_totp_enabled=False,
                expect_totp_secret=account.totp_secret,
            ),
        )
        if not applied:
            raise MfaStateConflict()

        try:
            codes = account_kind.backup_codes.generate(account.account_id)
        except Exception:
            # Back to pending so enrollment can be retried
            account_kind.accounts.update_fields(
                account.account_id,
                AccountPatch(
                    totp_enabled=False,
                    expect_totp_enabled=True,
                    expect_totp_secret=account.totp_secret,
                ),
            )
            logger.error(f"Backup code generation failed, MFA left pending for {account.account_id}")
            raise
        logger.info(f"MFA enabled for {account.account_id}")
        return codes

    def disable_mfa(self, subject: str, code: str, kind: str = USER) -> None:
        """Turn MFA off. Needs a currently valid TOTP code."""
        account_kind = self.kind(kind)
        account = self.get_account(subject, kind)
        if account.mfa_state is not MfaState.ENABLED:
            raise MfaNotEnabled()

        if not verify_totp(account.totp_secret, code, for_time=self.clock()):
            logger.info(f"Invalid TOTP code while disabling MFA for {account.account_id}")
            raise InvalidMfaCode()

        applied = account_kind.accounts.update_fields(
            account.account_id,
            AccountPatch(
                totp_secret=None,
                totp_enabled=False,
                expect_totp_enabled=True,
                expect_totp_secret=account.totp_secret,
            ),
        )
        if not applied:
            raise MfaStateConflict()

        account_kind.backup_codes.clear(account.account_id)
        logger.info(f"MFA disabled for {account.account_id}")

    def regenerate_backup_codes(self, subject: str, code: str, kind: str = USER) -> List[str]:
        """Replace all backup codes. Needs a currently valid TOTP code."""
        account_kind = self.kind(kind)
        account = self.get_account(subject, kind)
        if account.mfa_state is not MfaState.ENABLED:
            raise MfaNotEnabled()

        if not verify_totp(account.totp_secret, code, for_time=self.clock()):
            raise InvalidMfaCode()

        return account_kind.backup_codes.generate(account.account_id)

    def list_backup_codes(self, subject: str, kind: str = USER) -> List[BackupCodeInfo]:
        account = self.get_account(subject, kind)
        return self.kind(kind).backup_codes.list(account.account_id)

    # ==========================================
    # Accounts
    # ==========================================

    def register(
        self,
        email: str,
        username: str,
        password: str,
        confirm_password: Optional[str] = None,
        kind: str = USER,
    ) -> str:
        """
        Create an account.

        All input problems are reported together, before storage is touched.

        Returns:
            The new account id.
        """
        email = (email or "").strip().lower()
        username = (username or "").strip()

        errors = []
        errors.extend(validate_email(email))
        errors.extend(validate_username(username))
        errors.extend(validate_password_strength(password, self.settings.password_min_length))
        if confirm_password is not None and password != confirm_password:
            errors.append("Passwords do not match")
        if errors:
            raise InvalidInput(errors)

        accounts = self.kind(kind).accounts
        if accounts.exists_by_email(email):
            raise AccountConflict("An account with this email already exists")
        if accounts.exists_by_username(username):
            raise AccountConflict("This username is already taken")

        password_hash = hash_password(password, rounds=self.settings.password_bcrypt_rounds)
        account_id = accounts.create(email, username, password_hash)
        logger.info(f"Registered {kind} account {account_id}")
        return account_id

    def get_account(self, subject: str, kind: str = USER) -> AccountRecord:
        """
        Account a verified token refers to.

        Raises:
            Unauthenticated: The account no longer exists.
        """
        account = self.kind(kind).accounts.find_by_id(subject)
        if account is None:
            logger.warning(f"Token subject {subject} has no {kind} account")
            raise Unauthenticated()
        return account
