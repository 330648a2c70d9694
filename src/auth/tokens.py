"""
JWT token creation and verification.

Handles:
- Access, temporary (MFA pending) and admin token creation
- Signature, expiry and revocation checks

Admin tokens are signed in their own context: header ``kid="admin"`` and a
key derived from the configured secret with a distinct label. User tokens
carry ``kid="user"``. A token only verifies under the key its kid names, and
its purpose must belong to that kid, so an admin token never passes as a
user token or the reverse.
"""
import hashlib
import hmac
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Optional

import jwt

from ..utils.settings import AuthSettings
from .errors import (
    ConfigurationError,
    TokenExpired,
    TokenMalformed,
    TokenRevoked,
    TokenSignatureInvalid,
)
from .repositories import Clock
from .revocation import RevocationList
from .types import Claims, IssuedToken, TokenPurpose, utc_now

logger = logging.getLogger(__name__)

USER_KEY_ID = "user"
ADMIN_KEY_ID = "admin"

KEY_ID_FOR_PURPOSE = {
    TokenPurpose.ACCESS: USER_KEY_ID,
    TokenPurpose.TEMPORARY: USER_KEY_ID,
    TokenPurpose.ADMIN: ADMIN_KEY_ID,
}

REQUIRED_CLAIMS = ["sub", "exp", "iat", "jti", "purpose"]


def derive_signing_key(secret: str, key_id: str) -> bytes:
    """HMAC-SHA256 of the secret and a per-context label."""
    return hmac.new(
        secret.encode("utf-8"),
        f"emporium:{key_id}".encode("utf-8"),
        hashlib.sha256,
    ).digest()


class TokenService:
    """
    Issues and verifies signed tokens.

    Example usage:
        tokens = TokenService(settings.auth)
        issued = tokens.issue(user_id, TokenPurpose.ACCESS)
        claims = tokens.verify(issued.token)
    """

    def __init__(
        self,
        settings: AuthSettings,
        clock: Clock = utc_now,
        revocations: Optional[RevocationList] = None,
    ):
        secret = settings.jwt_secret.get_secret_value()
        if not secret:
            raise ConfigurationError(
                "JWT_SECRET is not configured. "
                "Generate one with: openssl rand -hex 32"
            )

        self.algorithm = settings.jwt_algorithm
        self.clock = clock
        self.revocations = revocations
        self._keys: Dict[str, bytes] = {
            USER_KEY_ID: derive_signing_key(secret, USER_KEY_ID),
            ADMIN_KEY_ID: derive_signing_key(secret, ADMIN_KEY_ID),
        }
        self._ttls: Dict[TokenPurpose, timedelta] = {
            TokenPurpose.ACCESS: timedelta(hours=settings.access_token_hours),
            TokenPurpose.TEMPORARY: timedelta(minutes=settings.temporary_token_minutes),
            TokenPurpose.ADMIN: timedelta(hours=settings.admin_token_hours),
        }

    def ttl_for(self, purpose: TokenPurpose) -> timedelta:
        return self._ttls[purpose]

    # ==========================================
    # Token Creation
    # ==========================================

    def issue(
        self,
        subject: str,
        purpose: TokenPurpose,
        scope: Optional[Iterable[str]] = None,
    ) -> IssuedToken:
        """
        Create a signed token.

        Args:
            subject: Account id the token is about.
            purpose: What the token may be used for.
            scope: Extra scope entries. Admin tokens always carry "admin".

        Returns:
            IssuedToken with the compact token and its claims.
        """
        purpose = TokenPurpose(purpose)
        scope = tuple(scope or ())
        if purpose is TokenPurpose.ADMIN and "admin" not in scope:
            scope = ("admin",) + scope

        issued_at = int(self.clock().timestamp())
        expires_at = issued_at + int(self._ttls[purpose].total_seconds())
        jti = str(uuid.uuid4())

        payload = {
            "sub": subject,
            "purpose": purpose.value,
            "iat": issued_at,
            "exp": expires_at,
            "jti": jti,
        }
        if scope:
            payload["scope"] = list(scope)

        key_id = KEY_ID_FOR_PURPOSE[purpose]
        token = jwt.encode(
            payload,
            self._keys[key_id],
            algorithm=self.algorithm,
            headers={"kid": key_id},
        )

        claims = Claims(
            subject=subject,
            purpose=purpose,
            issued_at=datetime.fromtimestamp(issued_at, timezone.utc),
            expires_at=datetime.fromtimestamp(expires_at, timezone.utc),
            jti=jti,
            scope=scope,
        )
        logger.debug(f"Issued {purpose.value} token for {subject}")
        return IssuedToken(token=token, claims=claims)

    # ==========================================
    # Token Verification
    # ==========================================

    def verify(self, token: str) -> Claims:
        """
        Verify a token and return its claims.

        Raises:
            TokenMalformed: Not a token, unknown kid or purpose, missing claims.
            TokenSignatureInvalid: Signature does not match.
            TokenExpired: Expiry is at or before now.
            TokenRevoked: The jti was revoked.
        """
        if not token:
            raise TokenMalformed("Empty token")

        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError:
            raise TokenMalformed("Token header could not be decoded") from None

        key_id = header.get("kid")
        key = self._keys.get(key_id) if isinstance(key_id, str) else None
        if key is None:
            raise TokenMalformed("Unknown signing context")

        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=[self.algorithm],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": REQUIRED_CLAIMS,
                },
            )
        except jwt.InvalidSignatureError:
            raise TokenSignatureInvalid("Signature verification failed") from None
        except jwt.InvalidTokenError as e:
            raise TokenMalformed(f"Token rejected: {type(e).__name__}") from None

        try:
            purpose = TokenPurpose(payload["purpose"])
        except ValueError:
            raise TokenMalformed("Unknown token purpose") from None
        if KEY_ID_FOR_PURPOSE[purpose] != key_id:
            raise TokenMalformed("Purpose does not match signing context")

        claims = self._claims_from_payload(payload, purpose)

        if self.clock() >= claims.expires_at:
            raise TokenExpired("Token has expired")

        if self.revocations is not None and self.revocations.is_revoked(claims.jti):
            raise TokenRevoked("Token has been revoked")

        return claims

    def revoke(self, claims: Claims) -> None:
        """Revoke a verified token for the rest of its lifetime."""
        if self.revocations is None:
            logger.warning("Token revocation requested but no revocation list is configured")
            return
        self.revocations.revoke(claims.jti, claims.expires_at)

    @staticmethod
    def _claims_from_payload(payload: dict, purpose: TokenPurpose) -> Claims:
        subject = payload["sub"]
        jti = payload["jti"]
        scope = payload.get("scope", [])
        if not isinstance(subject, str) or not subject:
            raise TokenMalformed("Invalid subject")
        if not isinstance(jti, str) or not jti:
            raise TokenMalformed("Invalid jti")
        if not isinstance(scope, list) or not all(isinstance(s, str) for s in scope):
            raise TokenMalformed("Invalid scope")

        try:
            issued_at = datetime.fromtimestamp(int(payload["iat"]), timezone.utc)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            raise TokenMalformed("Invalid timestamps") from None

        return Claims(
            subject=subject,
            purpose=purpose,
            issued_at=issued_at,
            expires_at=expires_at,
            jti=jti,
            scope=tuple(scope),
        )
