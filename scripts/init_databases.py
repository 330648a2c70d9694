#!/usr/bin/env python3
"""
Initialize EMPORIUM database schemas.

Run this after first setup:
    python scripts/init_databases.py

This script:
1. Creates the auth tables (users, admin_users, backup codes, failed logins)
2. Optionally creates an admin account (admins cannot self-register)
3. Checks that Redis is reachable (revocation list and rate limits)
"""
import argparse
import getpass
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.api.deps import connect_redis
from src.auth.errors import AccountConflict, InvalidInput
from src.auth.passwords import hash_password, validate_email, validate_password_strength, validate_username
from src.database.auth_db import AuthDB, SqlAccountRepository
from src.utils.settings import Settings, load_settings


def init_auth_database(db: AuthDB) -> None:
    print("Creating auth tables...")
    db.init_schema()
    print("  Tables: users, admin_users, mfa_backup_codes, admin_mfa_backup_codes, failed_logins")


def create_admin(db: AuthDB, settings: Settings, email: str, username: str, password: str) -> str:
    """
    Create an admin account.

    Raises:
        InvalidInput: Email, username or password fails validation.
        AccountConflict: Email or username already taken.
    """
    email = email.strip().lower()
    errors = (
        validate_email(email)
        + validate_username(username)
        + validate_password_strength(password, settings.auth.password_min_length)
    )
    if errors:
        raise InvalidInput(errors)

    admins = SqlAccountRepository(db, "admin_users")
    if admins.exists_by_email(email) or admins.exists_by_username(username):
        raise AccountConflict("An admin with this email or username already exists")

    return admins.create(email, username, hash_password(password, rounds=settings.auth.password_bcrypt_rounds))


def check_redis(settings: Settings) -> bool:
    print("Checking Redis...")
    if connect_redis(settings.redis) is None:
        print("  Redis unavailable - revocations and rate limits fall back to process memory")
        return False
    print(f"  Redis OK ({settings.redis.host}:{settings.redis.port})")
    return True


def main():
    parser = argparse.ArgumentParser(description="Initialize EMPORIUM databases")
    parser.add_argument("--admin-email", help="Create an admin account with this email")
    parser.add_argument("--admin-username", help="Username for the admin account (default: part before @)")
    parser.add_argument("--skip-redis", action="store_true", help="Do not check Redis")
    args = parser.parse_args()

    settings = load_settings()
    db = AuthDB(settings.database.url)

    print("=" * 60)
    print("EMPORIUM Database Initialization")
    print("=" * 60)

    print("\n[1/3] Auth Schema:")
    init_auth_database(db)

    print("\n[2/3] Admin Account:")
    if args.admin_email:
        username = args.admin_username or args.admin_email.split("@")[0]
        password = getpass.getpass("  Admin password: ")
        try:
            admin_id = create_admin(db, settings, args.admin_email, username, password)
        except InvalidInput as e:
            for error in e.errors:
                print(f"  ERROR: {error}")
            sys.exit(1)
        except AccountConflict as e:
            print(f"  ERROR: {e}")
            sys.exit(1)
        print(f"  Admin created: {admin_id}")
    else:
        print("  Skipped (use --admin-email to create one)")

    print("\n[3/3] Redis:")
    if args.skip_redis:
        print("  Skipped")
    else:
        check_redis(settings)

    print("\n" + "=" * 60)
    print("Database initialization complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
