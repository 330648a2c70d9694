"""
Password hashing, verification and input validation.

Handles:
- Password hashing (bcrypt)
- Password verification (never raises, never logs inputs)
- Email, username and password strength validation
"""
import re
import logging
from functools import lru_cache
from typing import List

import bcrypt

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{3,32}$")

# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


def hash_password(password: str, rounds: int = 12) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password.
        rounds: bcrypt work factor.

    Returns:
        Bcrypt hash string.
    """
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify a password against its hash.

    A malformed hash or any bcrypt error counts as a mismatch.

    Args:
        password: Plain text password to verify.
        password_hash: Stored bcrypt hash.

    Returns:
        True if password matches, False otherwise.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(
            password.encode('utf-8'),
            password_hash.encode('utf-8')
        )
    except ValueError as e:
        logger.warning(f"Password hash check failed: {type(e).__name__}")
        return False


@lru_cache(maxsize=4)
def dummy_password_hash(rounds: int = 12) -> str:
    """Hash checked when no account exists, so both paths cost the same."""
    return hash_password("emporium-dummy-password", rounds=rounds)


# ============================================
# Input Validation
# ============================================

def validate_email(email: str) -> List[str]:
    """Return validation errors for an email address (empty if valid)."""
    if not email:
        return ["Email is required"]
    if not EMAIL_PATTERN.match(email):
        return ["Email address is not valid"]
    return []


def validate_username(username: str) -> List[str]:
    """Return validation errors for a display name (empty if valid)."""
    if not username:
        return ["Username is required"]
    if not USERNAME_PATTERN.match(username):
        return ["Username must be 3-32 characters of letters, digits, '.', '_' or '-'"]
    return []


def validate_password_strength(password: str, min_length: int = 10) -> List[str]:
    """
    Validate password meets complexity requirements.

    Args:
        password: Password to validate.
        min_length: Minimum number of characters.

    Returns:
        List of error messages (empty if the password is acceptable).
    """
    if not password:
        return ["Password is required"]

    errors = []
    if len(password) < min_length:
        errors.append(f"Password must be at least {min_length} characters")
    if len(password.encode('utf-8')) > MAX_PASSWORD_BYTES:
        errors.append(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    if not re.search(r"[A-Za-z]", password):
        errors.append("Password must contain at least one letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one digit")
    return errors
