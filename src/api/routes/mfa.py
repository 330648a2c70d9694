"""
MFA Endpoints.

Enrollment, second-step verification and backup codes for user accounts.
The verification endpoint is the only one a temporary token can reach.
"""
import logging

from fastapi import APIRouter, Depends, Response

from ..cookies import set_auth_cookie
from ..deps import Services, check_mfa_verify_rate_limit, get_services, require_claims
from ..models import (
    BackupCodeInfoResponse,
    BackupCodeListResponse,
    ErrorResponse,
    LoginResponse,
    MessageResponse,
    MFACodeRequest,
    MFAEnableResponse,
    MFASetupResponse,
    MFAVerifyRequest,
)
from ...auth.service import USER
from ...auth.types import Claims, ProvisioningData

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/mfa", tags=["MFA"], dependencies=[Depends(require_claims)])


def setup_response(data: ProvisioningData) -> MFASetupResponse:
    return MFASetupResponse(
        secret=data.secret,
        qr_code_base64=data.qr_code_base64,
        provisioning_uri=data.provisioning_uri,
        algorithm=data.algorithm,
        digits=data.digits,
        period=data.period,
    )


@router.post(
    "/setup",
    response_model=MFASetupResponse,
    responses={400: {"model": ErrorResponse, "description": "MFA already enabled"}},
)
def mfa_setup(
    claims: Claims = Depends(require_claims),
    services: Services = Depends(get_services),
):
    """
    Start MFA setup.

    Returns a secret and QR code for the authenticator app. MFA is not
    enabled until /mfa/enable is called with a valid code.
    """
    data = services.auth.setup_mfa(claims.subject, USER)
    return setup_response(data)


@router.post(
    "/enable",
    response_model=MFAEnableResponse,
    responses={
        400: {"model": ErrorResponse, "description": "No pending MFA setup"},
        401: {"model": ErrorResponse, "description": "Invalid verification code"},
    },
)
def mfa_enable(
    body: MFACodeRequest,
    claims: Claims = Depends(require_claims),
    services: Services = Depends(get_services),
):
    """
    Confirm MFA setup with a code from the authenticator.

    Returns backup codes. Store them securely - they are only shown once!
    """
    codes = services.auth.enable_mfa(claims.subject, body.totp_code, USER)
    return MFAEnableResponse(backup_codes=codes)


@router.post(
    "/verify",
    response_model=LoginResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid verification code"}},
    dependencies=[Depends(check_mfa_verify_rate_limit)],
)
def mfa_verify(
    body: MFAVerifyRequest,
    response: Response,
    claims: Claims = Depends(require_claims),
    services: Services = Depends(get_services),
):
    """
    Second login step, with a temporary token.

    Accepts a TOTP code or a backup code. On success the temporary cookie is
    replaced by a full session cookie.
    """
    kind = services.auth.kind_for_claims(claims)
    token = services.auth.verify_mfa(
        claims.subject,
        body.code,
        is_backup=body.is_backup_code,
        kind=kind.name,
    )
    services.tokens.revoke(claims)
    set_auth_cookie(response, token, services.settings.cookie)

    return LoginResponse(
        requires_mfa=False,
        token_purpose=token.claims.purpose.value,
        expires_in=token.max_age,
    )


@router.post(
    "/disable",
    response_model=MessageResponse,
    responses={
        400: {"model": ErrorResponse, "description": "MFA not enabled"},
        401: {"model": ErrorResponse, "description": "Invalid verification code"},
    },
)
def mfa_disable(
    body: MFACodeRequest,
    claims: Claims = Depends(require_claims),
    services: Services = Depends(get_services),
):
    """
    Disable MFA.

    Requires a valid TOTP code. Backup codes are deleted.
    """
    services.auth.disable_mfa(claims.subject, body.totp_code, USER)
    return MessageResponse(message="MFA disabled successfully")


@router.get("/backup-codes", response_model=BackupCodeListResponse)
def list_backup_codes(
    claims: Claims = Depends(require_claims),
    services: Services = Depends(get_services),
):
    """List backup codes (labels and usage only)."""
    infos = services.auth.list_backup_codes(claims.subject, USER)
    now = services.auth.clock()
    return BackupCodeListResponse(
        codes=[
            BackupCodeInfoResponse(
                code_id=info.code_id,
                label=info.label,
                used=info.used,
                created_at=info.created_at,
                expires_at=info.expires_at,
                used_at=info.used_at,
            )
            for info in infos
        ],
        remaining=sum(
            1 for info in infos
            if not info.used and (info.expires_at is None or info.expires_at > now)
        ),
    )


@router.post(
    "/backup-codes/regenerate",
    response_model=MFAEnableResponse,
    responses={
        400: {"model": ErrorResponse, "description": "MFA not enabled"},
        401: {"model": ErrorResponse, "description": "Invalid verification code"},
    },
)
def regenerate_backup_codes(
    body: MFACodeRequest,
    claims: Claims = Depends(require_claims),
    services: Services = Depends(get_services),
):
    """Replace all backup codes. Requires a valid TOTP code."""
    codes = services.auth.regenerate_backup_codes(claims.subject, body.totp_code, USER)
    return MFAEnableResponse(message="Backup codes regenerated", backup_codes=codes)
