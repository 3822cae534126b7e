"""
Keypool Storage.

Schema shapes, database bootstrap and versioned schema migrations.
"""

from keypool.storage.database import Database, connect, initialize_database
from keypool.storage.schema import (
    Column,
    PostgreSQLDialect,
    SQLiteDialect,
    TableShape,
    ensure_table,
)

__all__ = [
    "Column",
    "Database",
    "PostgreSQLDialect",
    "SQLiteDialect",
    "TableShape",
    "connect",
    "ensure_table",
    "initialize_database",
]
