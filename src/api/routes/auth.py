"""
Authentication Endpoints.

Provides user registration, login, logout and the current profile.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..cookies import clear_auth_cookie, set_auth_cookie
from ..deps import (
    Services,
    check_login_rate_limit,
    check_register_rate_limit,
    get_services,
    get_token,
    require_claims,
)
from ..models import (
    AccountResponse,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
)
from ...auth.errors import InvalidCredentials, TokenError
from ...auth.service import USER
from ...auth.types import AccountRecord, Claims
from ...utils.secrets import mask_secret

logger = logging.getLogger(__name__)

public_router = APIRouter(prefix="/auth", tags=["Authentication"])
router = APIRouter(prefix="/auth", tags=["Authentication"], dependencies=[Depends(require_claims)])


def perform_login(
    services: Services,
    email: str,
    password: str,
    response: Response,
    kind: str,
) -> LoginResponse:
    """
    Password step shared by user and admin login.

    Failed attempts are counted per identifier, whether or not an account
    exists, and the identifier is locked once the threshold is reached.
    """
    settings = services.settings.auth
    identifier = (email or "").strip().lower()
    lockout_key = identifier if kind == USER else f"{kind}:{identifier}"
    window = settings.lockout_window_minutes

    # Check for lockout before processing
    if identifier and services.db.get_failed_login_count(lockout_key, window) >= settings.lockout_threshold:
        logger.warning(f"Login blocked for locked identifier {mask_secret(identifier)}")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many failed attempts. Try again in {window} minutes.",
            headers={"Retry-After": str(window * 60)},
        )

    try:
        result = services.auth.login(identifier, password, kind=kind)
    except InvalidCredentials:
        services.db.record_failed_login(lockout_key, window)
        raise

    services.db.clear_failed_logins(lockout_key)
    set_auth_cookie(response, result.token, services.settings.cookie)

    return LoginResponse(
        requires_mfa=result.requires_mfa,
        token_purpose=result.token.claims.purpose.value,
        expires_in=result.token.max_age,
    )


def account_response(account: AccountRecord) -> AccountResponse:
    return AccountResponse(
        user_id=account.account_id,
        email=account.email,
        username=account.username,
        mfa_enabled=account.totp_enabled,
        account_status=account.account_status,
        created_at=account.created_at,
        last_login=account.last_login,
    )


@public_router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid input"},
        409: {"model": ErrorResponse, "description": "Email or username already exists"},
        429: {"model": ErrorResponse, "description": "Too many registration attempts"},
    },
    dependencies=[Depends(check_register_rate_limit)],
)
def register(
    body: RegisterRequest,
    services: Services = Depends(get_services),
):
    """
    Register a new user account.

    Does not log the user in; call /auth/login afterwards.
    """
    user_id = services.auth.register(
        email=body.email,
        username=body.username,
        password=body.password,
        confirm_password=body.confirm_password,
    )
    return RegisterResponse(user_id=user_id)


@public_router.post(
    "/login",
    response_model=LoginResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid input"},
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        403: {"model": ErrorResponse, "description": "Account disabled or locked"},
        429: {"model": ErrorResponse, "description": "Identifier locked or too many attempts from this IP"},
    },
    dependencies=[Depends(check_login_rate_limit)],
)
def login(
    body: LoginRequest,
    response: Response,
    services: Services = Depends(get_services),
):
    """
    Authenticate with email and password.

    Sets the auth cookie. If MFA is enabled the cookie holds a temporary
    token that is only accepted by /mfa/verify.

    Identifier is locked for 15 minutes after 5 failed login attempts.
    """
    return perform_login(services, body.email, body.password, response, kind=USER)


@router.get("/me", response_model=AccountResponse)
def get_me(
    claims: Claims = Depends(require_claims),
    services: Services = Depends(get_services),
):
    """Get current user profile."""
    account = services.auth.get_account(claims.subject, USER)
    return account_response(account)


@router.post("/logout", response_model=MessageResponse)
def logout(
    response: Response,
    claims: Claims = Depends(require_claims),
    services: Services = Depends(get_services),
):
    """
    Logout and revoke the current token.
    """
    services.tokens.revoke(claims)
    clear_auth_cookie(response, services.settings.cookie)
    logger.info(f"User logged out: {claims.subject}")
    return MessageResponse(message="Logged out")


@public_router.post("/logout", response_model=MessageResponse)
def public_logout(
    response: Response,
    token: Optional[str] = Depends(get_token),
    services: Services = Depends(get_services),
):
    """
    Logout without passing the gate.

    Works for any token purpose, including a temporary token whose MFA step
    was never finished. A token that still verifies is revoked; the cookie is
    cleared either way.
    """
    if token:
        try:
            claims = services.tokens.verify(token)
        except TokenError as e:
            logger.debug(f"Logout with unusable token: {e.code}")
        else:
            services.tokens.revoke(claims)
            logger.info(f"Logged out {claims.purpose.value} token for {claims.subject}")
    clear_auth_cookie(response, services.settings.cookie)
    return MessageResponse(message="Logged out")
