"""
Token revocation list keyed by jti.

Uses Redis SETEX so entries disappear once the token would have expired
anyway. Falls back to an in-process dict if Redis is unavailable.
"""
import logging
import math
import threading
from datetime import datetime
from typing import Dict, Optional

import redis

from .repositories import Clock
from .types import utc_now

logger = logging.getLogger(__name__)

KEY_PREFIX = "emporium:revoked:"


class RevocationList:
    """
    Revoked token ids.

    Example usage:
        revocations = RevocationList(redis_client)
        revocations.revoke(claims.jti, claims.expires_at)
        revocations.is_revoked(claims.jti)  # True
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None, clock: Clock = utc_now):
        self.redis = redis_client
        self.clock = clock
        # In-memory fallback storage: jti -> expiry
        self._memory_store: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def revoke(self, jti: str, expires_at: datetime) -> None:
        """Revoke a token id until its expiry."""
        now = self.clock()
        ttl = math.ceil((expires_at - now).total_seconds())
        if ttl <= 0:
            return

        if self.redis is not None:
            try:
                self.redis.setex(f"{KEY_PREFIX}{jti}", ttl, "1")
                return
            except redis.RedisError as e:
                logger.warning(f"Redis error revoking token: {e}")

        with self._lock:
            expired = [key for key, until in self._memory_store.items() if until <= now]
            for key in expired:
                del self._memory_store[key]
            self._memory_store[jti] = expires_at

    def is_revoked(self, jti: str) -> bool:
        if self.redis is not None:
            try:
                if self.redis.get(f"{KEY_PREFIX}{jti}"):
                    return True
            except redis.RedisError as e:
                logger.warning(f"Redis error in revocation check: {e}")

        now = self.clock()
        with self._lock:
            expires_at = self._memory_store.get(jti)
            if expires_at is None:
                return False
            if expires_at <= now:
                del self._memory_store[jti]
                return False
            return True
