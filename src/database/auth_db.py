"""
SQL storage for authentication.

This module provides connection management and the repositories the auth
core depends on:
- User and admin accounts (credentials, MFA state)
- Hashed MFA backup codes
- Failed login tracking (for lockout)

PostgreSQL in production, SQLite in tests. Timestamps are bound as ISO-8601
strings and compared in Python so both engines behave the same.
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from ..auth.errors import AccountConflict
from ..auth.repositories import Clock
from ..auth.types import AccountPatch, AccountRecord, BackupCodeRecord, utc_now

logger = logging.getLogger(__name__)

# account table -> its backup code table
ACCOUNT_TABLES = {
    "users": "mfa_backup_codes",
    "admin_users": "admin_mfa_backup_codes",
}
BACKUP_CODE_TABLES = {codes: accounts for accounts, codes in ACCOUNT_TABLES.items()}


def _bind(value: Any) -> Any:
    """Bind datetimes as UTC ISO strings."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
    return value


def _ts(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AuthDB:
    """
    Connection manager for the auth tables.

    Example usage:
        auth_db = AuthDB("sqlite:///auth.db")
        auth_db.init_schema()

        users = SqlAccountRepository(auth_db, "users")
        user_id = users.create("buyer@example.com", "buyer", password_hash)
    """

    def __init__(self, connection_string: str, clock: Clock = utc_now):
        """
        Initialize database connection.

        Args:
            connection_string: SQLAlchemy database URL.
            clock: Time source for failed login tracking.
        """
        self.clock = clock
        self.is_sqlite = connection_string.startswith("sqlite")
        self.is_postgres = connection_string.startswith("postgres")

        if self.is_sqlite:
            self.engine = create_engine(
                connection_string,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
        else:
            self.engine = create_engine(
                connection_string,
                poolclass=QueuePool,
                pool_size=10,
                max_overflow=20,
                pool_timeout=30,
                pool_pre_ping=True,  # Test connections before use (detect stale)
                pool_recycle=300,    # Recycle connections every 5 minutes
            )
        self.Session = sessionmaker(bind=self.engine)

    @contextmanager
    def get_session(self):
        """
        Get a database session with automatic cleanup.

        Usage:
            with auth_db.get_session() as session:
                result = session.execute(query)
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> bool:
        with self.get_session() as session:
            session.execute(text("SELECT 1"))
        return True

    def dispose(self) -> None:
        self.engine.dispose()

    # ==========================================
    # Failed Login Tracking
    # ==========================================

    def record_failed_login(self, email: str, window_minutes: int = 15) -> int:
        """
        Record a failed login attempt for an email.

        Args:
            email: Email address that failed login.
            window_minutes: Lockout window in minutes.

        Returns:
            Current count of failed attempts in the lockout window.
        """
        email_lower = email.lower().strip()
        now = self.clock()

        with self.get_session() as session:
            # Attempts that fell out of the window no longer count for anyone
            session.execute(
                text("DELETE FROM failed_logins WHERE attempted_at <= :window_start"),
                {"window_start": _bind(now - timedelta(minutes=window_minutes))}
            )
            session.execute(
                text("""
                    INSERT INTO failed_logins (id, email, attempted_at)
                    VALUES (:id, :email, :attempted_at)
                """),
                {"id": str(uuid.uuid4()), "email": email_lower, "attempted_at": _bind(now)}
            )

        return self.get_failed_login_count(email, window_minutes)

    def get_failed_login_count(self, email: str, window_minutes: int = 15) -> int:
        """
        Get the count of failed login attempts within the lockout window.

        Args:
            email: Email address to check.
            window_minutes: Lockout window in minutes (default 15).

        Returns:
            Number of failed attempts in the window.
        """
        window_start = self.clock() - timedelta(minutes=window_minutes)
        email_lower = email.lower().strip()

        with self.get_session() as session:
            count = session.execute(
                text("""
                    SELECT COUNT(*) FROM failed_logins
                    WHERE email = :email AND attempted_at > :window_start
                """),
                {"email": email_lower, "window_start": _bind(window_start)}
            ).scalar()

        return int(count or 0)

    def clear_failed_logins(self, email: str) -> None:
        """
        Clear failed login attempts for an email (after successful login).

        Args:
            email: Email address to clear.
        """
        email_lower = email.lower().strip()

        with self.get_session() as session:
            session.execute(
                text("DELETE FROM failed_logins WHERE email = :email"),
                {"email": email_lower}
            )
        logger.debug("Cleared failed login attempts")

    # ==========================================
    # Schema Initialization
    # ==========================================

    def init_schema(self) -> None:
        """
        Initialize database schema (create tables if not exist).

        Call this once during application setup.
        """
        with self.get_session() as session:
            for accounts_table, codes_table in ACCOUNT_TABLES.items():
                session.execute(text(f"""
                    CREATE TABLE IF NOT EXISTS {accounts_table} (
                        user_id VARCHAR(36) PRIMARY KEY,
                        email VARCHAR(255) UNIQUE NOT NULL,
                        username VARCHAR(64) UNIQUE NOT NULL,
                        password_hash VARCHAR(255) NOT NULL,
                        totp_secret VARCHAR(64),
                        totp_enabled BOOLEAN NOT NULL DEFAULT FALSE,
                        account_status VARCHAR(20) NOT NULL DEFAULT 'active',
                        locked_until TIMESTAMP WITH TIME ZONE,
                        last_login TIMESTAMP WITH TIME ZONE,
                        created_at TIMESTAMP WITH TIME ZONE NOT NULL,
                        updated_at TIMESTAMP WITH TIME ZONE NOT NULL
                    )
                """))

                session.execute(text(f"""
                    CREATE TABLE IF NOT EXISTS {codes_table} (
                        id VARCHAR(36) PRIMARY KEY,
                        user_id VARCHAR(36) NOT NULL
                            REFERENCES {accounts_table}(user_id) ON DELETE CASCADE,
                        code_hash VARCHAR(255) NOT NULL,
                        label VARCHAR(64),
                        used_at TIMESTAMP WITH TIME ZONE,
                        created_at TIMESTAMP WITH TIME ZONE NOT NULL,
                        expires_at TIMESTAMP WITH TIME ZONE
                    )
                """))
                session.execute(text(f"""
                    CREATE UNIQUE INDEX IF NOT EXISTS idx_{accounts_table}_username_lower
                    ON {accounts_table} (lower(username))
                """))
                session.execute(text(f"""
                    CREATE INDEX IF NOT EXISTS idx_{codes_table}_user ON {codes_table}(user_id)
                """))

            # Failed logins table (for account lockout)
            session.execute(text("""
                CREATE TABLE IF NOT EXISTS failed_logins (
                    id VARCHAR(36) PRIMARY KEY,
                    email VARCHAR(255) NOT NULL,
                    attempted_at TIMESTAMP WITH TIME ZONE NOT NULL
                )
            """))
            session.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_failed_logins_email ON failed_logins(email, attempted_at)
            """))
            session.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_failed_logins_time ON failed_logins(attempted_at)
            """))

        logger.info("Database schema initialized")


# ==========================================
# Accounts
# ==========================================

ACCOUNT_COLUMNS = """
    user_id, email, username, password_hash, totp_secret, totp_enabled,
    account_status, locked_until, last_login, created_at
"""


def _account_from_row(row) -> AccountRecord:
    return AccountRecord(
        account_id=str(row[0]),
        email=row[1],
        username=row[2],
        password_hash=row[3],
        totp_secret=row[4],
        totp_enabled=bool(row[5]),
        account_status=row[6],
        locked_until=_ts(row[7]),
        last_login=_ts(row[8]),
        created_at=_ts(row[9]),
    )


class SqlAccountRepository:
    """Accounts stored in ``users`` or ``admin_users``."""

    def __init__(self, db: AuthDB, table: str = "users"):
        if table not in ACCOUNT_TABLES:
            raise ValueError(f"Unknown account table: {table}")
        self.db = db
        self.table = table

    def find_by_id(self, account_id: str) -> Optional[AccountRecord]:
        with self.db.get_session() as session:
            row = session.execute(
                text(f"SELECT {ACCOUNT_COLUMNS} FROM {self.table} WHERE user_id = :user_id"),
                {"user_id": str(account_id)}
            ).fetchone()
        return _account_from_row(row) if row else None

    def find_by_identifier(self, identifier: str) -> Optional[AccountRecord]:
        with self.db.get_session() as session:
            row = session.execute(
                text(f"SELECT {ACCOUNT_COLUMNS} FROM {self.table} WHERE email = :email"),
                {"email": identifier.lower().strip()}
            ).fetchone()
        return _account_from_row(row) if row else None

    def update_fields(self, account_id: str, patch: AccountPatch) -> bool:
        """
        Apply a patch in a single UPDATE.

        The patch's expectations become part of the WHERE clause, so the
        database decides whether the row still matches.

        Returns:
            True if a row was updated.
        """
        changes = patch.changes()
        if not changes:
            return self.find_by_id(account_id) is not None

        params: Dict[str, Any] = {"user_id": str(account_id), "updated_at": _bind(self.db.clock())}
        assignments = ["updated_at = :updated_at"]
        for column, value in changes.items():
            assignments.append(f"{column} = :set_{column}")
            params[f"set_{column}"] = _bind(value)

        conditions = ["user_id = :user_id"]
        for column, value in patch.expectations().items():
            if value is None:
                conditions.append(f"{column} IS NULL")
            else:
                conditions.append(f"{column} = :expect_{column}")
                params[f"expect_{column}"] = _bind(value)

        with self.db.get_session() as session:
            result = session.execute(
                text(f"""
                    UPDATE {self.table}
                    SET {", ".join(assignments)}
                    WHERE {" AND ".join(conditions)}
                """),
                params
            )
            return result.rowcount == 1

    def exists_by_email(self, email: str) -> bool:
        with self.db.get_session() as session:
            row = session.execute(
                text(f"SELECT 1 FROM {self.table} WHERE email = :email"),
                {"email": email.lower().strip()}
            ).fetchone()
        return row is not None

    def exists_by_username(self, username: str) -> bool:
        with self.db.get_session() as session:
            row = session.execute(
                text(f"SELECT 1 FROM {self.table} WHERE lower(username) = lower(:username)"),
                {"username": username.strip()}
            ).fetchone()
        return row is not None

    def create(self, email: str, username: str, password_hash: str) -> str:
        """
        Create a new account.

        Returns:
            UUID of created account.

        Raises:
            AccountConflict: If email or username is already taken.
        """
        user_id = str(uuid.uuid4())
        now = _bind(self.db.clock())

        try:
            with self.db.get_session() as session:
                session.execute(
                    text(f"""
                        INSERT INTO {self.table} (
                            user_id, email, username, password_hash,
                            totp_enabled, account_status, created_at, updated_at
                        ) VALUES (
                            :user_id, :email, :username, :password_hash,
                            :totp_enabled, 'active', :created_at, :updated_at
                        )
                    """),
                    {
                        "user_id": user_id,
                        "email": email.lower().strip(),
                        "username": username.strip(),
                        "password_hash": password_hash,
                        "totp_enabled": False,
                        "created_at": now,
                        "updated_at": now,
                    }
                )
        except IntegrityError:
            raise AccountConflict() from None

        logger.info(f"Created account in {self.table} (id={user_id})")
        return user_id

    def set_status(
        self,
        account_id: str,
        status: str,
        locked_until: Optional[datetime] = None,
    ) -> bool:
        """Suspend, ban, lock or reactivate an account."""
        with self.db.get_session() as session:
            result = session.execute(
                text(f"""
                    UPDATE {self.table}
                    SET account_status = :status, locked_until = :locked_until,
                        updated_at = :updated_at
                    WHERE user_id = :user_id
                """),
                {
                    "user_id": str(account_id),
                    "status": status,
                    "locked_until": _bind(locked_until),
                    "updated_at": _bind(self.db.clock()),
                }
            )
            return result.rowcount == 1


# ==========================================
# Backup Codes
# ==========================================

def _code_from_row(row) -> BackupCodeRecord:
    return BackupCodeRecord(
        code_id=str(row[0]),
        owner_id=str(row[1]),
        code_hash=row[2],
        label=row[3],
        used_at=_ts(row[4]),
        created_at=_ts(row[5]),
        expires_at=_ts(row[6]),
    )


class SqlBackupCodeRepository:
    """Hashed backup codes stored in ``mfa_backup_codes`` or ``admin_mfa_backup_codes``."""

    def __init__(self, db: AuthDB, table: str = "mfa_backup_codes"):
        if table not in BACKUP_CODE_TABLES:
            raise ValueError(f"Unknown backup code table: {table}")
        self.db = db
        self.table = table

    def replace_all_by_owner(self, owner_id: str, records: Sequence[BackupCodeRecord]) -> None:
        """Delete the owner's codes and insert ``records`` in one transaction."""
        with self.db.get_session() as session:
            if self.db.is_postgres:
                # Serialise replacements for one owner
                session.execute(
                    text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                    {"key": f"{self.table}:{owner_id}"}
                )
            session.execute(
                text(f"DELETE FROM {self.table} WHERE user_id = :user_id"),
                {"user_id": str(owner_id)}
            )
            if not records:
                return
            session.execute(
                text(f"""
                    INSERT INTO {self.table} (
                        id, user_id, code_hash, label, used_at, created_at, expires_at
                    ) VALUES (
                        :id, :user_id, :code_hash, :label, :used_at, :created_at, :expires_at
                    )
                """),
                [
                    {
                        "id": record.code_id,
                        "user_id": record.owner_id,
                        "code_hash": record.code_hash,
                        "label": record.label,
                        "used_at": _bind(record.used_at),
                        "created_at": _bind(record.created_at),
                        "expires_at": _bind(record.expires_at),
                    }
                    for record in records
                ]
            )

    def _select(self, owner_id: str, unused_only: bool) -> List[BackupCodeRecord]:
        query = f"""
            SELECT id, user_id, code_hash, label, used_at, created_at, expires_at
            FROM {self.table}
            WHERE user_id = :user_id
        """
        if unused_only:
            query += " AND used_at IS NULL"
        with self.db.get_session() as session:
            rows = session.execute(text(query), {"user_id": str(owner_id)}).fetchall()
        return sorted(
            (_code_from_row(row) for row in rows),
            key=lambda r: (r.created_at, r.label or ""),
        )

    def find_unused_by_owner(self, owner_id: str) -> List[BackupCodeRecord]:
        return self._select(owner_id, unused_only=True)

    def list_by_owner(self, owner_id: str) -> List[BackupCodeRecord]:
        return self._select(owner_id, unused_only=False)

    def conditional_mark_used(self, code_id: str, used_at: datetime) -> bool:
        """Mark a code used unless it already is. True only for the call that did it."""
        with self.db.get_session() as session:
            result = session.execute(
                text(f"""
                    UPDATE {self.table}
                    SET used_at = :used_at
                    WHERE id = :id AND used_at IS NULL
                """),
                {"id": code_id, "used_at": _bind(used_at)}
            )
            return result.rowcount == 1

    def delete_all_by_owner(self, owner_id: str) -> int:
        with self.db.get_session() as session:
            result = session.execute(
                text(f"DELETE FROM {self.table} WHERE user_id = :user_id"),
                {"user_id": str(owner_id)}
            )
            return result.rowcount
