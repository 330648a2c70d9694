"""
Admin Endpoints.

Admin accounts log in through the same flow as users but receive admin
tokens, which only open the admin routes. Admin MFA verification goes
through the shared /mfa/verify endpoint.
"""
import logging

from fastapi import APIRouter, Depends, Response

from ..cookies import clear_auth_cookie
from ..deps import Services, check_login_rate_limit, get_services, require_admin
from ..models import (
    AccountResponse,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    MFACodeRequest,
    MFAEnableResponse,
    MFASetupResponse,
)
from .auth import account_response, perform_login
from .mfa import setup_response
from ...auth.service import ADMIN
from ...auth.types import Claims

logger = logging.getLogger(__name__)

public_router = APIRouter(prefix="/admin", tags=["Admin"])
router = APIRouter(tags=["Admin"], dependencies=[Depends(require_admin)])


@public_router.post(
    "/login",
    response_model=LoginResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        429: {"model": ErrorResponse, "description": "Too many attempts"},
    },
    dependencies=[Depends(check_login_rate_limit)],
)
def admin_login(
    body: LoginRequest,
    response: Response,
    services: Services = Depends(get_services),
):
    """Authenticate an admin account."""
    return perform_login(services, body.email, body.password, response, kind=ADMIN)


@router.get("/me", response_model=AccountResponse)
def admin_me(
    claims: Claims = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Get current admin profile."""
    return account_response(services.auth.get_account(claims.subject, ADMIN))


@router.post("/logout", response_model=MessageResponse)
def admin_logout(
    response: Response,
    claims: Claims = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Logout and revoke the current admin token."""
    services.tokens.revoke(claims)
    clear_auth_cookie(response, services.settings.cookie)
    logger.info(f"Admin logged out: {claims.subject}")
    return MessageResponse(message="Logged out")


@router.post("/mfa/setup", response_model=MFASetupResponse)
def admin_mfa_setup(
    claims: Claims = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Start MFA setup for the admin account."""
    return setup_response(services.auth.setup_mfa(claims.subject, ADMIN))


@router.post("/mfa/enable", response_model=MFAEnableResponse)
def admin_mfa_enable(
    body: MFACodeRequest,
    claims: Claims = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Confirm admin MFA setup. Returns backup codes, shown once."""
    codes = services.auth.enable_mfa(claims.subject, body.totp_code, ADMIN)
    return MFAEnableResponse(backup_codes=codes)


@router.post("/mfa/disable", response_model=MessageResponse)
def admin_mfa_disable(
    body: MFACodeRequest,
    claims: Claims = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Disable admin MFA. Requires a valid TOTP code."""
    services.auth.disable_mfa(claims.subject, body.totp_code, ADMIN)
    return MessageResponse(message="MFA disabled successfully")
