"""
Authentication error taxonomy.

Every error carries a fixed ``public_message`` that is safe to return to a
client. Authentication and token failures deliberately share generic messages
so responses never reveal which check failed; the specific reason is only
logged.
"""
from typing import List, Optional


class AuthError(Exception):
    """Base class for all auth errors."""
    status_code = 500
    code = "AUTH_ERROR"
    public_message = "Authentication error"
    # only errors whose message is meant for the user set this
    expose_message = False

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)


# ============================================
# Validation
# ============================================

class InvalidInput(AuthError):
    """Malformed input. User-actionable, raised before any storage access."""
    status_code = 400
    code = "VALIDATION_ERROR"
    public_message = "Invalid input"
    expose_message = True

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


# ============================================
# Authentication (generic on purpose)
# ============================================

class AuthenticationFailed(AuthError):
    status_code = 401
    code = "AUTH_FAILED"
    public_message = "Authentication failed"


class InvalidCredentials(AuthenticationFailed):
    code = "AUTH_INVALID_CREDENTIALS"
    public_message = "Invalid email or password"


class InvalidMfaCode(AuthenticationFailed):
    code = "AUTH_INVALID_CODE"
    public_message = "Invalid verification code"


class InvalidBackupCode(InvalidMfaCode):
    """No unused, unexpired backup code matched. Which of the three is not said."""


# ============================================
# Tokens (internal; collapsed to Unauthenticated at the boundary)
# ============================================

class TokenError(AuthError):
    status_code = 401
    code = "AUTH_TOKEN_INVALID"
    public_message = "Authentication required"


class TokenMalformed(TokenError):
    pass


class TokenSignatureInvalid(TokenError):
    pass


class TokenExpired(TokenError):
    pass


class TokenRevoked(TokenError):
    pass


class Unauthenticated(AuthError):
    status_code = 401
    code = "AUTH_REQUIRED"
    public_message = "Authentication required"


# ============================================
# Authorization
# ============================================

class Forbidden(AuthError):
    status_code = 403
    code = "FORBIDDEN"
    public_message = "Access to this resource is not allowed"


# ============================================
# Account and MFA state
# ============================================

class AccountUnavailable(AuthError):
    status_code = 403
    code = "ACCOUNT_UNAVAILABLE"
    public_message = "Account is disabled or locked"


class AccountConflict(AuthError):
    status_code = 409
    code = "ACCOUNT_CONFLICT"
    public_message = "Account already exists"
    expose_message = True


class MfaStateError(AuthError):
    status_code = 400
    code = "MFA_STATE"
    public_message = "MFA is not in the required state"


class MfaAlreadyEnabled(MfaStateError):
    code = "MFA_ALREADY_ENABLED"
    public_message = "MFA is already enabled. Disable it first to set up a new authenticator."


class MfaNotPending(MfaStateError):
    code = "MFA_NOT_PENDING"
    public_message = "No pending MFA setup found. Please call /mfa/setup first."


class MfaNotEnabled(MfaStateError):
    code = "MFA_NOT_ENABLED"
    public_message = "MFA is not enabled"


class MfaStateConflict(MfaStateError):
    status_code = 409
    code = "MFA_STATE_CONFLICT"
    public_message = "MFA state changed concurrently. Please retry."


# ============================================
# Configuration
# ============================================

class ConfigurationError(AuthError):
    """Fatal misconfiguration, raised at startup."""
    code = "CONFIGURATION_ERROR"
    public_message = "Server misconfiguration"


class InvalidTotpSecret(AuthError):
    """A stored TOTP secret is structurally invalid (not an auth failure)."""
    code = "TOTP_SECRET_INVALID"
    public_message = "Server misconfiguration"
