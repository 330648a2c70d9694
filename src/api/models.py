"""
Pydantic Models for EMPORIUM API.

Request and response models for all API endpoints. Request fields are plain
strings; the auth core validates them so every client gets the same rules
and messages.
"""
from datetime import datetime
from typing import Optional, List, Dict
from pydantic import BaseModel, Field, ConfigDict


# ============================================
# Authentication Models
# ============================================

class RegisterRequest(BaseModel):
    """
    User registration request.

    Password must be at least 10 characters with a letter and a digit.
    """
    email: str = Field(..., description="Valid email address")
    username: str = Field(..., description="Public display name (3-32 characters)")
    password: str = Field(..., description="Password (minimum 10 characters)")
    confirm_password: str = Field(..., alias="confirmPassword", description="Repeat of password")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "email": "collector@example.com",
                "username": "collector",
                "password": "holofoil2024",
                "confirmPassword": "holofoil2024"
            }
        }
    )


class RegisterResponse(BaseModel):
    user_id: str
    message: str = "Account created"


class LoginRequest(BaseModel):
    """
    Login request.

    If MFA is enabled the response says so, and the temporary cookie it sets
    is only accepted by the MFA verification endpoint.
    """
    email: str = Field(..., description="Registered email address")
    password: str = Field(..., description="Account password")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "collector@example.com",
                "password": "holofoil2024"
            }
        }
    )


class LoginResponse(BaseModel):
    """Login outcome. The token itself is only sent as a cookie."""
    requires_mfa: bool
    token_purpose: str
    expires_in: int = Field(..., description="Token expiration in seconds")


class AccountResponse(BaseModel):
    """Account profile response."""
    user_id: str
    email: str
    username: Optional[str]
    mfa_enabled: bool
    account_status: str
    created_at: Optional[datetime]
    last_login: Optional[datetime]


class MessageResponse(BaseModel):
    message: str


# ============================================
# MFA Models
# ============================================

class MFASetupResponse(BaseModel):
    """MFA setup response with QR code."""
    secret: str
    qr_code_base64: str
    provisioning_uri: str
    algorithm: str = "SHA1"
    digits: int = 6
    period: int = 30


class MFACodeRequest(BaseModel):
    """A TOTP code from the authenticator app."""
    totp_code: str = Field(..., description="6-digit TOTP code")


class MFAVerifyRequest(BaseModel):
    """
    Second login step.

    Provide either a TOTP code or a backup code.
    """
    code: str = Field(..., description="TOTP code, or backup code (format: 1234-5678)")
    is_backup_code: bool = Field(False, description="True if code is a backup code")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "code": "123456",
                "is_backup_code": False
            }
        }
    )


class MFAEnableResponse(BaseModel):
    """
    MFA enable success response.

    Contains backup codes that should be stored securely.
    Each backup code can only be used once.
    """
    message: str = "MFA enabled successfully"
    backup_codes: List[str] = Field(..., description="One-time backup codes for account recovery (store securely!)")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "message": "MFA enabled successfully",
                "backup_codes": [
                    "0412-9981",
                    "7730-1264",
                    "5590-0037",
                    "1846-2203",
                    "9921-4410",
                    "3305-8876",
                    "6148-5092",
                    "2077-3619"
                ]
            }
        }
    )


class BackupCodeInfoResponse(BaseModel):
    """Backup code metadata. Never the code itself."""
    code_id: str
    label: Optional[str]
    used: bool
    created_at: datetime
    expires_at: Optional[datetime] = None
    used_at: Optional[datetime] = None


class BackupCodeListResponse(BaseModel):
    codes: List[BackupCodeInfoResponse]
    remaining: int


# ============================================
# Health Models
# ============================================

class HealthStatus(BaseModel):
    """Health check response."""
    status: str = Field(..., description="healthy or unhealthy")
    version: str
    services: Dict[str, str]
    timestamp: datetime


# ============================================
# Error Models
# ============================================

class ErrorResponse(BaseModel):
    """
    Standard error response.

    All API errors return this format with an error message,
    optional detail, and error code for programmatic handling.
    """
    error: str = Field(..., description="Error type/summary")
    detail: Optional[str] = Field(None, description="Detailed error message")
    code: Optional[str] = Field(None, description="Error code for programmatic handling")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Unauthorized",
                "detail": "Authentication required",
                "code": "AUTH_REQUIRED"
            }
        }
    )
