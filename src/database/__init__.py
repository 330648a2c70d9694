"""
Database connection managers for EMPORIUM.

This package provides:
- auth_db: SQL storage for accounts, backup codes and failed logins
"""
from .auth_db import AuthDB, SqlAccountRepository, SqlBackupCodeRepository

__all__ = ["AuthDB", "SqlAccountRepository", "SqlBackupCodeRepository"]
