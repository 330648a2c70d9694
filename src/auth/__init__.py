"""
Authentication and authorization for EMPORIUM.

This package provides:
- Credential verification (bcrypt)
- TOTP multi-factor authentication and backup codes
- JWT token issuance, verification and revocation
- The request gate and the login orchestrator
"""
from .backup_codes import BackupCodeStore
from .gate import RequestGate, RoutePolicy, is_destination_allowed, normalize_path
from .mfa import (
    generate_totp_secret,
    get_provisioning_data,
    get_totp_provisioning_uri,
    verify_totp,
    generate_qr_code_base64,
)
from .revocation import RevocationList
from .service import AccountKind, AuthService
from .tokens import TokenService
from .types import Claims, IssuedToken, LoginResult, TokenPurpose

__all__ = [
    "AccountKind",
    "AuthService",
    "BackupCodeStore",
    "Claims",
    "IssuedToken",
    "LoginResult",
    "RequestGate",
    "RevocationList",
    "RoutePolicy",
    "TokenPurpose",
    "TokenService",
    "generate_totp_secret",
    "get_provisioning_data",
    "get_totp_provisioning_uri",
    "verify_totp",
    "generate_qr_code_base64",
    "is_destination_allowed",
    "normalize_path",
]
