"""
Database abstraction layer supporting SQLite and PostgreSQL.

Usage:
    from src.core.database import get_database, affected_rows

    db = await get_database()

    rows = await db.fetch("SELECT * FROM processing_records WHERE status = $1", status)
    result = await db.execute("UPDATE processing_records SET status = $1 WHERE cast_hash = $2", status, h)
    if affected_rows(result) == 0:
        ...
"""

from .adapter import (
    DatabaseAdapter,
    DatabaseBackend,
    DatabaseConfig,
    UniqueViolation,
    affected_rows,
    get_database,
    close_database,
)

__all__ = [
    "DatabaseAdapter",
    "DatabaseBackend",
    "DatabaseConfig",
    "UniqueViolation",
    "affected_rows",
    "get_database",
    "close_database",
]
