"""
Pytest configuration and shared fixtures for EMPORIUM tests.

This module provides common test fixtures for:
- A frozen clock
- Test settings (low bcrypt cost, no Redis, no rate limits)
- A SQLite-backed AuthDB and repositories
- Mock Redis client
- The FastAPI test client
"""
import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add project root to Python path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi.testclient import TestClient

from src.api.main import create_app
from src.auth.backup_codes import BackupCodeStore
from src.auth.mfa import get_totp_at
from src.auth.passwords import hash_password
from src.auth.revocation import RevocationList
from src.auth.service import ADMIN, USER, AccountKind, AuthService
from src.auth.tokens import TokenService
from src.auth.types import TokenPurpose
from src.database.auth_db import AuthDB, SqlAccountRepository, SqlBackupCodeRepository
from src.utils.settings import (
    AuthSettings,
    CookieSettings,
    DatabaseSettings,
    RateLimitSettings,
    RedisSettings,
    Settings,
)

TEST_JWT_SECRET = "test-jwt-secret-0123456789abcdef0123456789abcdef"
TEST_PASSWORD = "holofoil2024"
TEST_ROUNDS = 4

# Aligned to a 30 second TOTP step
FROZEN_NOW = datetime(2026, 3, 14, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = FROZEN_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ============================================
# Clock and Settings Fixtures
# ============================================

@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def auth_settings():
    return AuthSettings(
        jwt_secret=TEST_JWT_SECRET,
        password_bcrypt_rounds=TEST_ROUNDS,
        backup_code_bcrypt_rounds=TEST_ROUNDS,
    )


@pytest.fixture
def settings(auth_settings, tmp_path):
    return Settings(
        app_env="test",
        auth=auth_settings,
        cookie=CookieSettings(secure=False),
        database=DatabaseSettings(database_url=f"sqlite:///{tmp_path / 'app.db'}"),
        redis=RedisSettings(enabled=False),
        rate_limit=RateLimitSettings(enabled=False),
    )


# ============================================
# Database Fixtures
# ============================================

@pytest.fixture
def auth_db(tmp_path, clock):
    """SQLite AuthDB with the schema in place."""
    db = AuthDB(f"sqlite:///{tmp_path / 'auth.db'}", clock=clock)
    db.init_schema()
    yield db
    db.dispose()


@pytest.fixture
def user_repo(auth_db):
    return SqlAccountRepository(auth_db, "users")


@pytest.fixture
def admin_repo(auth_db):
    return SqlAccountRepository(auth_db, "admin_users")


@pytest.fixture
def user_codes(auth_db, clock):
    return BackupCodeStore(
        SqlBackupCodeRepository(auth_db, "mfa_backup_codes"),
        clock=clock,
        rounds=TEST_ROUNDS,
    )


@pytest.fixture
def admin_codes(auth_db, clock):
    return BackupCodeStore(
        SqlBackupCodeRepository(auth_db, "admin_mfa_backup_codes"),
        clock=clock,
        rounds=TEST_ROUNDS,
    )


@pytest.fixture
def tokens(auth_settings, clock):
    return TokenService(auth_settings, clock=clock, revocations=RevocationList(clock=clock))


@pytest.fixture
def auth_service(user_repo, admin_repo, user_codes, admin_codes, tokens, auth_settings, clock):
    kinds = [
        AccountKind(USER, user_repo, user_codes, TokenPurpose.ACCESS),
        AccountKind(ADMIN, admin_repo, admin_codes, TokenPurpose.ADMIN),
    ]
    return AuthService(kinds, tokens, auth_settings, clock=clock)


@pytest.fixture
def make_account():
    """Create an account directly in a repository."""
    def _make(repo, email="collector@example.com", username=None, password=TEST_PASSWORD):
        username = username or email.split("@")[0]
        return repo.create(email, username, hash_password(password, rounds=TEST_ROUNDS))
    return _make


@pytest.fixture
def totp_code(clock):
    """Current TOTP code for a secret, according to the frozen clock."""
    def _code(secret, **offset):
        return get_totp_at(secret, clock.now + timedelta(**offset))
    return _code


# ============================================
# Redis Fixtures
# ============================================

@pytest.fixture
def mock_redis_client():
    """
    Mock Redis client for testing revocation and rate limiting.
    Implements basic get/set/setex/delete operations with in-memory store.
    """
    class MockPipeline:
        def __init__(self, client):
            self.client = client
            self.ops = []

        def incr(self, key):
            self.ops.append(("incr", key))
            return self

        def expire(self, key, seconds):
            self.ops.append(("expire", key, seconds))
            return self

        def execute(self):
            results = []
            for op in self.ops:
                results.append(getattr(self.client, op[0])(*op[1:]))
            self.ops = []
            return results

    class MockRedisClient:
        def __init__(self):
            self.store = {}
            self.expiry = {}

        def ping(self):
            return True

        def get(self, key):
            return self.store.get(key)

        def set(self, key, value, ex=None):
            self.store[key] = value
            if ex:
                self.expiry[key] = ex
            return True

        def setex(self, key, seconds, value):
            self.store[key] = value
            self.expiry[key] = seconds
            return True

        def delete(self, key):
            if key in self.store:
                del self.store[key]
            if key in self.expiry:
                del self.expiry[key]
            return True

        def exists(self, key):
            return key in self.store

        def incr(self, key):
            if key not in self.store:
                self.store[key] = 0
            self.store[key] = int(self.store[key]) + 1
            return self.store[key]

        def expire(self, key, seconds):
            self.expiry[key] = seconds
            return True

        def pipeline(self):
            return MockPipeline(self)

    return MockRedisClient()


# ============================================
# API Fixtures
# ============================================

@pytest.fixture
def app(settings, clock, auth_db, mock_redis_client):
    return create_app(settings, clock=clock, db=auth_db, redis_client=mock_redis_client)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def services(app):
    return app.state.services
