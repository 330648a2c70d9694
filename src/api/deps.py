"""
FastAPI Dependencies for EMPORIUM API.

Provides:
- Service container (built once per app, stored on app.state)
- Request gate dependencies
- Rate limiting (Redis-backed)
- Redis client
"""
import time
import logging
from dataclasses import dataclass
from typing import Optional, Dict

import redis
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..auth.errors import Forbidden
from ..auth.gate import RequestGate
from ..auth.service import AuthService
from ..auth.tokens import TokenService
from ..auth.types import Claims, TokenPurpose
from ..database.auth_db import AuthDB
from ..utils.settings import RateLimitSettings, RedisSettings, Settings
from .cookies import read_auth_cookie

logger = logging.getLogger(__name__)


# ============================================
# Redis Client
# ============================================

def connect_redis(settings: RedisSettings) -> Optional[redis.Redis]:
    """
    Connect to Redis.

    Returns None if Redis is disabled or unavailable.
    """
    if not settings.enabled:
        return None

    password = settings.password.get_secret_value() if settings.password else None

    try:
        client = redis.Redis(
            host=settings.host,
            port=settings.port,
            password=password,
            db=settings.db,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        # Test connection
        client.ping()
        logger.info(f"Redis connected: {settings.host}:{settings.port}")
        return client
    except redis.RedisError as e:
        logger.warning(f"Redis connection failed: {e}. Using in-memory fallback.")
        return None


# ============================================
# Service Container
# ============================================

@dataclass
class Services:
    """Everything the routes need, built once by create_app."""
    settings: Settings
    db: AuthDB
    tokens: TokenService
    auth: AuthService
    gate: RequestGate
    rate_limiter: "AuthRateLimiter"
    redis_client: Optional[redis.Redis] = None


def get_services(request: Request) -> Services:
    return request.app.state.services


# Security scheme
security = HTTPBearer(auto_error=False)


# ============================================
# Gate Dependencies
# ============================================

def get_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    services: Services = Depends(get_services),
) -> Optional[str]:
    """Token from the auth cookie, else from an Authorization: Bearer header."""
    token = read_auth_cookie(request, services.settings.cookie)
    if token:
        return token
    if credentials is not None:
        return credentials.credentials
    return None


def require_claims(
    request: Request,
    token: Optional[str] = Depends(get_token),
    services: Services = Depends(get_services),
) -> Claims:
    """
    Run the request gate.

    Raises:
        Unauthenticated: Missing or invalid token.
        Forbidden: Token purpose not allowed at this path.
    """
    claims = services.gate.authorize(token, request.url.path)
    request.state.claims = claims
    return claims


def require_admin(claims: Claims = Depends(require_claims)) -> Claims:
    """Admin handlers only serve admin tokens."""
    if claims.purpose is not TokenPurpose.ADMIN:
        raise Forbidden()
    return claims


# ============================================
# Auth Rate Limiting (IP-based for unauthenticated endpoints)
# ============================================

class AuthRateLimiter:
    """
    Rate limiter for authentication endpoints (IP-based).

    Provides separate limits for register, login and MFA verification.
    Uses Redis with in-memory fallback.
    """

    def __init__(self, settings: RateLimitSettings, redis_client: Optional[redis.Redis] = None):
        self.redis = redis_client
        self.enabled = settings.enabled
        self.register_limit = settings.register_per_hour
        self.login_limit = settings.login_per_window
        self.mfa_verify_limit = settings.mfa_verify_per_window
        self.window_seconds = settings.window_minutes * 60
        # In-memory fallback storage
        self._memory_store: Dict[str, list] = {}

    def _get_count(self, key: str, window_seconds: int) -> int:
        """Get current count for a key."""
        if self.redis is not None:
            try:
                full_key = f"emporium:auth_ratelimit:{key}"
                count = self.redis.get(full_key)
                return int(count) if count else 0
            except redis.RedisError as e:
                logger.warning(f"Redis error in auth rate limit check: {e}")

        # In-memory fallback
        now = time.time()
        if key not in self._memory_store:
            return 0
        self._memory_store[key] = [
            ts for ts in self._memory_store[key]
            if now - ts < window_seconds
        ]
        return len(self._memory_store[key])

    def _increment(self, key: str, window_seconds: int) -> int:
        """Increment counter for a key."""
        if self.redis is not None:
            try:
                full_key = f"emporium:auth_ratelimit:{key}"
                pipe = self.redis.pipeline()
                pipe.incr(full_key)
                pipe.expire(full_key, window_seconds)
                results = pipe.execute()
                return results[0]
            except redis.RedisError as e:
                logger.warning(f"Redis error in auth rate limit increment: {e}")

        # In-memory fallback
        now = time.time()
        if key not in self._memory_store:
            self._memory_store[key] = []
        self._memory_store[key] = [
            ts for ts in self._memory_store[key]
            if now - ts < window_seconds
        ]
        self._memory_store[key].append(now)
        return len(self._memory_store[key])

    def hit(self, action: str, ip: str) -> tuple[bool, int]:
        """
        Check the limit for an action and record the attempt.

        Returns:
            Tuple of (allowed, remaining_requests)
        """
        if not self.enabled:
            return True, 0

        limit, window = self._limit_for(action)
        key = f"{action}:{ip}"
        count = self._get_count(key, window)
        remaining = limit - count
        if remaining <= 0:
            return False, 0

        self._increment(key, window)
        return True, remaining - 1

    def _limit_for(self, action: str) -> tuple[int, int]:
        if action == "register":
            return self.register_limit, 3600
        if action == "login":
            return self.login_limit, self.window_seconds
        if action == "mfa_verify":
            return self.mfa_verify_limit, self.window_seconds
        raise ValueError(f"Unknown rate limited action: {action}")


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _enforce(request: Request, services: Services, action: str, retry_after: int, detail: str) -> None:
    allowed, _ = services.rate_limiter.hit(action, _client_ip(request))
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=detail,
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Remaining": "0",
            },
        )


def check_register_rate_limit(
    request: Request,
    services: Services = Depends(get_services),
) -> None:
    """
    Dependency to check register rate limit by IP.

    Raises HTTPException 429 if limit exceeded.
    """
    _enforce(request, services, "register", 3600, "Too many registration attempts. Try again later.")


def check_login_rate_limit(
    request: Request,
    services: Services = Depends(get_services),
) -> None:
    """
    Dependency to check login rate limit by IP.

    Raises HTTPException 429 if limit exceeded.
    """
    _enforce(
        request, services, "login",
        services.rate_limiter.window_seconds,
        "Too many login attempts from this IP. Try again later.",
    )


def check_mfa_verify_rate_limit(
    request: Request,
    services: Services = Depends(get_services),
) -> None:
    """Dependency to check MFA verification rate limit by IP."""
    _enforce(
        request, services, "mfa_verify",
        services.rate_limiter.window_seconds,
        "Too many verification attempts. Try again later.",
    )
