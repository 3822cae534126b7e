"""
Keypool Migration Framework - Version Ledgers.

Implementations of the applied-version ledger for each supported database.
Each ledger lives in the database being migrated and works on the
connection lent to it by the caller; it never opens connections itself.
"""

import hashlib
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional, Set

from keypool.exceptions import ConfigurationError, LedgerError, RegistrationError
from keypool.storage.migrations.base import SchemaVersion
from keypool.storage.schema import validate_identifier

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_TABLE = "_schema_versions"


@dataclass(frozen=True)
class LedgerEntry:
    """
    One applied migration as recorded in the ledger.

    Attributes:
        version: Applied version
        applied_at: When the migration was recorded
        description: Human-readable description of changes
        checksum: Hash of the migration body at the time it was applied
    """

    version: SchemaVersion
    applied_at: datetime
    description: str = ""
    checksum: Optional[str] = None


def _parse_ledger_version(raw: str) -> SchemaVersion:
    try:
        return SchemaVersion.parse(raw)
    except RegistrationError as e:
        raise LedgerError(
            f"Ledger contains unparseable version {raw!r}", version=raw, cause=e
        ) from e


def _field(row: Any, name: str, index: int) -> Any:
    """Read a column from a tuple row or a dict row."""
    if isinstance(row, dict):
        return row[name]
    return row[index]


class SQLiteVersionLedger:
    """
    Version ledger stored in a SQLite database.

    Creates a `_schema_versions` table to track applied migrations.
    """

    def __init__(self, connection: Any, table_name: str = DEFAULT_LEDGER_TABLE):
        """
        Initialize SQLite version ledger.

        Args:
            connection: sqlite3 connection to the database being migrated
            table_name: Name of the bookkeeping table
        """
        self.connection = connection
        self.table_name = validate_identifier(table_name)

    def ensure_storage(self) -> None:
        """Create the ledger table if it doesn't exist."""
        if self.has_storage():
            return
        cursor = self.connection.cursor()
        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                version TEXT NOT NULL UNIQUE,
                applied_at TEXT NOT NULL,
                description TEXT,
                checksum TEXT
            )
        """)
        self.connection.commit()

    def has_storage(self) -> bool:
        """Check if the ledger table exists."""
        cursor = self.connection.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            (self.table_name,),
        )
        return cursor.fetchone() is not None

    def applied_versions(self) -> Set[SchemaVersion]:
        """Get the set of versions recorded as applied."""
        cursor = self.connection.execute(f"SELECT version FROM {self.table_name}")
        return {_parse_ledger_version(_field(row, "version", 0)) for row in cursor.fetchall()}

    def get_version_history(self) -> List[LedgerEntry]:
        """Get all applied versions in the order they were recorded."""
        cursor = self.connection.execute(f"""
            SELECT version, applied_at, description, checksum
            FROM {self.table_name}
            ORDER BY id ASC
        """)
        return [
            LedgerEntry(
                version=_parse_ledger_version(_field(row, "version", 0)),
                applied_at=datetime.fromisoformat(_field(row, "applied_at", 1)),
                description=_field(row, "description", 2) or "",
                checksum=_field(row, "checksum", 3),
            )
            for row in cursor.fetchall()
        ]

    def record_applied(
        self,
        version: SchemaVersion,
        applied_at: Optional[datetime] = None,
        description: str = "",
        checksum: Optional[str] = None,
    ) -> None:
        """Append one ledger entry. Becomes durable on commit()."""
        applied_at = applied_at or datetime.now(timezone.utc)
        self.connection.execute(
            f"""
            INSERT INTO {self.table_name} (version, applied_at, description, checksum)
            VALUES (?, ?, ?, ?)
            """,
            (str(version), applied_at.isoformat(), description, checksum),
        )
        logger.debug(f"Recorded schema version {version}")

    @contextmanager
    def lock(self) -> Iterator[None]:
        """SQLite deployments are single-writer; no cross-process lock is taken."""
        yield

    def commit(self) -> None:
        self.connection.commit()

    def rollback(self) -> None:
        self.connection.rollback()


class PostgreSQLVersionLedger:
    """
    Version ledger stored in a PostgreSQL database.

    Creates a `_schema_versions` table in the configured schema. When
    use_advisory_lock is set, a session-level advisory lock is held for
    the duration of a migration pass so that concurrently starting
    instances apply migrations one at a time.
    """

    def __init__(
        self,
        connection: Any,
        schema: str = "public",
        table_name: str = DEFAULT_LEDGER_TABLE,
        use_advisory_lock: bool = True,
    ):
        """
        Initialize PostgreSQL version ledger.

        Args:
            connection: psycopg connection to the database being migrated
            schema: Database schema name
            table_name: Name of the bookkeeping table
            use_advisory_lock: Hold pg_advisory_lock for each pass
        """
        self.connection = connection
        self.schema = validate_identifier(schema)
        self.table_name = validate_identifier(table_name)
        self.use_advisory_lock = use_advisory_lock

    @property
    def qualified_table(self) -> str:
        return f"{self.schema}.{self.table_name}"

    @property
    def lock_key(self) -> int:
        """Signed 64-bit advisory lock key derived from the ledger table name."""
        digest = hashlib.sha256(self.qualified_table.encode()).digest()
        return int.from_bytes(digest[:8], "big", signed=True)

    def ensure_storage(self) -> None:
        """
        Create the ledger table if it doesn't exist.

        Also points the session search_path at the ledger schema so that
        migration units, which use unqualified table names, change the
        same schema the ledger describes.
        """
        self.connection.execute(f"SET search_path TO {self.schema}")
        if self.has_storage():
            self.connection.commit()
            return
        self.connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.qualified_table} (
                id BIGSERIAL PRIMARY KEY,
                version TEXT NOT NULL UNIQUE,
                applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                description TEXT,
                checksum TEXT
            )
        """)
        self.connection.commit()

    def has_storage(self) -> bool:
        """Check if the ledger table exists."""
        cursor = self.connection.execute(
            """
            SELECT 1 FROM information_schema.tables
            WHERE table_schema = %s AND table_name = %s
            """,
            (self.schema, self.table_name),
        )
        return cursor.fetchone() is not None

    def applied_versions(self) -> Set[SchemaVersion]:
        """Get the set of versions recorded as applied."""
        cursor = self.connection.execute(f"SELECT version FROM {self.qualified_table}")
        return {_parse_ledger_version(_field(row, "version", 0)) for row in cursor.fetchall()}

    def get_version_history(self) -> List[LedgerEntry]:
        """Get all applied versions in the order they were recorded."""
        cursor = self.connection.execute(f"""
            SELECT version, applied_at, description, checksum
            FROM {self.qualified_table}
            ORDER BY id ASC
        """)
        entries = []
        for row in cursor.fetchall():
            applied_at = _field(row, "applied_at", 1)
            if not isinstance(applied_at, datetime):
                applied_at = datetime.fromisoformat(str(applied_at))
            entries.append(
                LedgerEntry(
                    version=_parse_ledger_version(_field(row, "version", 0)),
                    applied_at=applied_at,
                    description=_field(row, "description", 2) or "",
                    checksum=_field(row, "checksum", 3),
                )
            )
        return entries

    def record_applied(
        self,
        version: SchemaVersion,
        applied_at: Optional[datetime] = None,
        description: str = "",
        checksum: Optional[str] = None,
    ) -> None:
        """
        Append one ledger entry.

        PostgreSQL DDL is transactional, so the unit's changes and this row
        become durable together on commit().
        """
        self.connection.execute(
            f"""
            INSERT INTO {self.qualified_table}
            (version, applied_at, description, checksum)
            VALUES (%s, %s, %s, %s)
            """,
            (
                str(version),
                applied_at or datetime.now(timezone.utc),
                description,
                checksum,
            ),
        )
        logger.debug(f"Recorded schema version {version}")

    @contextmanager
    def lock(self) -> Iterator[None]:
        """Hold the migration advisory lock for the duration of a pass."""
        if not self.use_advisory_lock:
            yield
            return

        logger.debug(f"Acquiring migration advisory lock {self.lock_key}")
        self.connection.execute("SELECT pg_advisory_lock(%s)", (self.lock_key,))
        self.connection.commit()
        try:
            yield
        finally:
            # A session lock is released with the session if the connection died
            try:
                self.connection.execute(
                    "SELECT pg_advisory_unlock(%s)", (self.lock_key,)
                )
                self.connection.commit()
                logger.debug(f"Released migration advisory lock {self.lock_key}")
            except Exception as e:
                logger.warning(
                    f"Could not release migration advisory lock {self.lock_key}: {e}"
                )

    def commit(self) -> None:
        self.connection.commit()

    def rollback(self) -> None:
        self.connection.rollback()


def create_ledger(
    connection: Any,
    backend: Optional[str] = None,
    schema: str = "public",
    table_name: Optional[str] = None,
    advisory_lock: bool = True,
) -> Any:
    """
    Build the ledger matching a connection.

    Args:
        connection: sqlite3 or psycopg connection
        backend: "sqlite" or "postgresql" (inferred from the connection if omitted)
        schema: PostgreSQL schema holding the ledger table
        table_name: Ledger table name
        advisory_lock: Hold a PostgreSQL advisory lock during passes

    Returns:
        SQLiteVersionLedger or PostgreSQLVersionLedger
    """
    table_name = table_name or DEFAULT_LEDGER_TABLE
    if backend is None:
        backend = "sqlite" if isinstance(connection, sqlite3.Connection) else "postgresql"

    if backend == "sqlite":
        return SQLiteVersionLedger(connection, table_name=table_name)
    if backend == "postgresql":
        return PostgreSQLVersionLedger(
            connection,
            schema=schema,
            table_name=table_name,
            use_advisory_lock=advisory_lock,
        )
    raise ConfigurationError(f"Unsupported migration backend: {backend}")
