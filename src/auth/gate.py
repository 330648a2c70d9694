"""
Request gate: which token purpose may reach which path.

Policy:
- temporary: only the MFA verification path
- access: everything except the MFA verification path
- admin: only paths under the admin prefix
- anything else: nothing

Handlers under the admin prefix additionally require an admin token; that
check lives with the admin routes, not here.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Union

from ..utils.settings import RoutingSettings
from .errors import Forbidden, TokenError, Unauthenticated
from .tokens import TokenService
from .types import Claims, TokenPurpose

logger = logging.getLogger(__name__)


def normalize_path(path: str) -> str:
    """
    Canonical form of a request path.

    Collapses duplicate slashes and ``.``/``..`` segments and drops the
    trailing slash, so ``/api//v1/./private/mfa/verify/`` and
    ``/api/v1/private/mfa/verify`` compare equal.
    """
    segments = []
    for segment in (path or "").split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if segments:
                segments.pop()
            continue
        segments.append(segment)
    return "/" + "/".join(segments)


@dataclass(frozen=True)
class RoutePolicy:
    """The two paths the purpose policy depends on."""
    mfa_verify_path: str
    admin_prefix: str

    @classmethod
    def from_settings(cls, routing: RoutingSettings) -> "RoutePolicy":
        return cls(
            mfa_verify_path=normalize_path(routing.mfa_verify_path),
            admin_prefix=normalize_path(routing.admin_prefix),
        )


def _under_prefix(path: str, prefix: str) -> bool:
    if prefix == "/":
        return True
    return path == prefix or path.startswith(prefix + "/")


def is_destination_allowed(
    purpose: Union[TokenPurpose, str, None],
    path: str,
    policy: RoutePolicy,
) -> bool:
    """True if a token with this purpose may reach this path."""
    try:
        purpose = TokenPurpose(purpose)
    except ValueError:
        return False

    path = normalize_path(path)
    mfa_verify_path = normalize_path(policy.mfa_verify_path)

    if purpose is TokenPurpose.TEMPORARY:
        return path == mfa_verify_path
    if purpose is TokenPurpose.ACCESS:
        return path != mfa_verify_path
    if purpose is TokenPurpose.ADMIN:
        return _under_prefix(path, normalize_path(policy.admin_prefix))
    return False


class RequestGate:
    """
    Runs before any protected handler.

    Every token failure turns into the same ``Unauthenticated`` error; the
    actual reason is only logged.
    """

    def __init__(self, tokens: TokenService, policy: RoutePolicy):
        self.tokens = tokens
        self.policy = policy

    def authorize(self, token: Optional[str], path: str) -> Claims:
        """
        Verify the token and check its purpose against the path.

        Raises:
            Unauthenticated: Missing or invalid token.
            Forbidden: Valid token, wrong purpose for this path.
        """
        if not token:
            raise Unauthenticated()

        try:
            claims = self.tokens.verify(token)
        except TokenError as e:
            logger.info(f"Token rejected ({type(e).__name__}): {e}")
            raise Unauthenticated() from None

        if not is_destination_allowed(claims.purpose, path, self.policy):
            logger.info(
                f"{claims.purpose.value} token for {claims.subject} "
                f"not allowed at {normalize_path(path)}"
            )
            raise Forbidden()

        return claims
