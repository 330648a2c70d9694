"""
Multi-Factor Authentication (MFA) utilities for EMPORIUM.

Implements TOTP (Time-based One-Time Password) using RFC 6238.
Compatible with Google Authenticator, Authy, and other TOTP apps.

Parameters are fixed: SHA1, 6 digits, 30 second step, and one step of
clock skew accepted in either direction.
"""
import base64
import binascii
import io
from datetime import datetime
from typing import Optional
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import pyotp
import qrcode

from .errors import InvalidTotpSecret
from .types import ProvisioningData

TOTP_ALGORITHM = "SHA1"
TOTP_DIGITS = 6
TOTP_PERIOD = 30
TOTP_SKEW = 1

# totp secrets shorter than 128 bits are rejected
MIN_SECRET_BYTES = 16


def generate_totp_secret() -> str:
    """
    Generate a new TOTP secret for MFA enrollment.

    Returns:
        Base32-encoded secret (32 characters, 160 bits).
    """
    return pyotp.random_base32()


def validate_totp_secret(secret: Optional[str]) -> None:
    """
    Check that a stored secret is usable.

    Raises:
        InvalidTotpSecret: If the secret is missing, not base32, or too short.
    """
    if not secret:
        raise InvalidTotpSecret("TOTP secret is empty")
    padded = secret.upper() + "=" * (-len(secret) % 8)
    try:
        decoded = base64.b32decode(padded, casefold=True)
    except (binascii.Error, ValueError):
        raise InvalidTotpSecret("TOTP secret is not valid base32") from None
    if len(decoded) < MIN_SECRET_BYTES:
        raise InvalidTotpSecret("TOTP secret is shorter than 128 bits")


def _totp(secret: str) -> pyotp.TOTP:
    return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_PERIOD)


def get_totp_provisioning_uri(
    secret: str,
    account_label: str,
    issuer: str = "EMPORIUM"
) -> str:
    """
    Generate a provisioning URI for TOTP apps.

    The URI states algorithm, digits and period explicitly so apps never
    fall back to their own defaults.

    Args:
        secret: Base32-encoded TOTP secret.
        account_label: Account name displayed in the authenticator app.
        issuer: Application name displayed in the authenticator app.

    Returns:
        otpauth:// URI string.
    """
    uri = _totp(secret).provisioning_uri(name=account_label, issuer_name=issuer)
    parts = urlsplit(uri)
    params = dict(parse_qsl(parts.query))
    params.update({
        "algorithm": TOTP_ALGORITHM,
        "digits": str(TOTP_DIGITS),
        "period": str(TOTP_PERIOD),
    })
    query = urlencode(params, quote_via=quote)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def generate_qr_code(uri: str) -> bytes:
    """
    Generate a QR code image for the provisioning URI.

    Args:
        uri: otpauth:// provisioning URI.

    Returns:
        PNG image bytes.
    """
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    buffer.seek(0)
    return buffer.read()


def generate_qr_code_base64(uri: str) -> str:
    """
    Generate a base64-encoded QR code for embedding in HTML.

    Args:
        uri: otpauth:// provisioning URI.

    Returns:
        Base64-encoded PNG image string (data URI ready).
    """
    png_bytes = generate_qr_code(uri)
    b64 = base64.b64encode(png_bytes).decode('utf-8')
    return f"data:image/png;base64,{b64}"


def get_provisioning_data(
    secret: str,
    account_label: str,
    issuer: str = "EMPORIUM",
) -> ProvisioningData:
    """
    Build the enrollment payload: secret, URI and QR code.

    Pure function of its inputs.
    """
    validate_totp_secret(secret)
    uri = get_totp_provisioning_uri(secret, account_label, issuer)
    return ProvisioningData(
        secret=secret,
        provisioning_uri=uri,
        qr_code_base64=generate_qr_code_base64(uri),
        algorithm=TOTP_ALGORITHM,
        digits=TOTP_DIGITS,
        period=TOTP_PERIOD,
        skew=TOTP_SKEW,
    )


def normalize_code(code: Optional[str]) -> str:
    """Drop spaces and dashes users paste along with the code."""
    if not code:
        return ""
    return code.replace(" ", "").replace("-", "")


def verify_totp(
    secret: str,
    code: str,
    for_time: Optional[datetime] = None,
    window: int = TOTP_SKEW,
) -> bool:
    """
    Verify a TOTP code against the secret.

    Args:
        secret: Base32-encoded TOTP secret.
        code: 6-digit code entered by user.
        for_time: Time to verify at (default: now).
        window: Number of 30-second steps accepted on each side.

    Returns:
        True if code is valid, False otherwise.

    Raises:
        InvalidTotpSecret: If the secret itself is unusable.
    """
    validate_totp_secret(secret)

    code = normalize_code(code)
    if len(code) != TOTP_DIGITS or not (code.isascii() and code.isdigit()):
        return False

    return _totp(secret).verify(code, for_time=for_time, valid_window=window)


def get_totp_at(secret: str, for_time: datetime) -> str:
    """
    Get the TOTP code for a given time (for testing/debugging).

    Args:
        secret: Base32-encoded TOTP secret.
        for_time: Time the code belongs to.

    Returns:
        6-digit TOTP code.
    """
    return _totp(secret).at(for_time)
