"""
Tests for the database initialization script.
"""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

from init_databases import check_redis, create_admin, init_auth_database

from src.auth.errors import AccountConflict, InvalidInput
from src.auth.passwords import verify_password
from src.database.auth_db import SqlAccountRepository
from src.utils.settings import RedisSettings

from conftest import TEST_PASSWORD


def test_init_is_idempotent(auth_db):
    init_auth_database(auth_db)
    init_auth_database(auth_db)
    assert auth_db.ping() is True


def test_create_admin(auth_db, settings):
    admin_id = create_admin(auth_db, settings, " Ops@Example.com", "ops", TEST_PASSWORD)

    admin = SqlAccountRepository(auth_db, "admin_users").find_by_id(admin_id)
    assert admin.email == "ops@example.com"
    assert verify_password(TEST_PASSWORD, admin.password_hash)
    assert SqlAccountRepository(auth_db, "users").find_by_identifier("ops@example.com") is None


def test_create_admin_validates(auth_db, settings):
    with pytest.raises(InvalidInput) as exc_info:
        create_admin(auth_db, settings, "not-an-email", "ops", "short")
    assert len(exc_info.value.errors) >= 2


def test_create_admin_twice(auth_db, settings):
    create_admin(auth_db, settings, "ops@example.com", "ops", TEST_PASSWORD)
    with pytest.raises(AccountConflict):
        create_admin(auth_db, settings, "ops@example.com", "ops2", TEST_PASSWORD)


def test_check_redis_disabled(settings):
    disabled = settings.model_copy(update={"redis": RedisSettings(enabled=False)})
    assert check_redis(disabled) is False
