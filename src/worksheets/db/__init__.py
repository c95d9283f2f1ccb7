"""Database module for SQLite persistence.

Provides:
- Database connection management
- Schema initialization
- Repository functions for exercises and responses
- Asset storage for uploaded images and files
"""

from worksheets.db.database import get_db, init_db

__all__ = ["get_db", "init_db"]
