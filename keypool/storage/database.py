"""
Keypool Database Bootstrap.

Opens the service database described by DatabaseSettings and brings its
schema up to date before the service starts handling traffic.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from keypool.config.loader import DatabaseSettings
from keypool.exceptions import MigrationFailedError, StorageError
from keypool.observability.logging import get_logger
from keypool.observability.tracing import trace_method
from keypool.storage.migrations.base import MigrationRegistry
from keypool.storage.migrations.runner import MigrationReport, MigrationRunner
from keypool.storage.migrations.version_stores import create_ledger

logger = get_logger(__name__)

# Try to import psycopg (v3) with connection pooling
try:
    from psycopg.rows import dict_row
    from psycopg_pool import ConnectionPool

    PSYCOPG_AVAILABLE = True
except ImportError:
    PSYCOPG_AVAILABLE = False


class Database:
    """
    Handle on the service database.

    SQLite databases share one connection; PostgreSQL databases use a
    connection pool and lend one connection per operation.
    """

    def __init__(
        self,
        settings: DatabaseSettings,
        connection: Any = None,
        pool: Any = None,
        registry: Optional[MigrationRegistry] = None,
    ):
        self.settings = settings
        self._connection = connection
        self._pool = pool
        self._registry = registry

    @property
    def backend(self) -> str:
        return self.settings.backend

    @property
    def registry(self) -> MigrationRegistry:
        if self._registry is None:
            from keypool.storage.migrations.versions import build_registry

            self._registry = build_registry()
        return self._registry

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """Borrow a connection for the duration of the block."""
        if self._pool is not None:
            with self._pool.connection() as conn:
                yield conn
        elif self._connection is not None:
            yield self._connection
        else:
            raise StorageError("Database is closed")

    def _runner(self, conn: Any) -> MigrationRunner:
        ledger = create_ledger(
            conn,
            backend=self.backend,
            schema=self.settings.schema,
            table_name=self.settings.ledger_table,
            advisory_lock=self.settings.advisory_lock,
        )
        return MigrationRunner(self.registry, ledger)

    def migrate(
        self,
        target_version: Optional[str] = None,
        dry_run: bool = False,
    ) -> MigrationReport:
        """
        Apply pending schema migrations.

        Args:
            target_version: Optional target version (applies all if not specified)
            dry_run: If True, log what would be done without making changes

        Returns:
            MigrationReport for the pass

        Raises:
            MigrationFailedError: If the pass stops before completing
        """
        with self.connection() as conn:
            report = self._runner(conn).migrate(
                conn, target_version=target_version, dry_run=dry_run
            )
        if report.applied:
            logger.info(f"Applied {len(report.applied)} migrations: {report.applied}")
        return report

    def get_schema_version(self) -> Optional[str]:
        """Get the highest applied schema version."""
        return self.get_migration_status()["current_version"]

    def get_migration_status(self) -> Dict[str, Any]:
        """Get migration status information."""
        with self.connection() as conn:
            return self._runner(conn).get_status()

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            self._pool = None
        if self._connection is not None:
            self._connection.close()
            self._connection = None


def connect(
    settings: DatabaseSettings,
    registry: Optional[MigrationRegistry] = None,
) -> Database:
    """
    Open the database described by settings without migrating it.

    Args:
        settings: Database settings
        registry: Migration registry (the shipped one by default)

    Returns:
        Database handle
    """
    if settings.backend == "sqlite":
        if settings.path != ":memory:":
            Path(settings.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(settings.path)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open SQLite database {settings.path}: {e}") from e
        logger.info(f"Opened SQLite database at {settings.path}")
        return Database(settings, connection=conn, registry=registry)

    if not PSYCOPG_AVAILABLE:
        raise ImportError(
            "psycopg not installed. Install with: pip install 'keypool[postgres]'"
        )

    pool = ConnectionPool(
        conninfo=settings.dsn,
        min_size=1,
        max_size=settings.pool_size,
        kwargs={"row_factory": dict_row},
        open=True,
    )
    logger.info("Opened PostgreSQL connection pool")
    return Database(settings, pool=pool, registry=registry)


@trace_method(name="keypool.database.initialize", record_args=False)
def initialize_database(
    settings: DatabaseSettings,
    registry: Optional[MigrationRegistry] = None,
) -> Database:
    """
    Open the database and apply pending migrations.

    The service must not start serving when this raises: a failed pass
    means the schema does not match what the code expects.

    Args:
        settings: Database settings
        registry: Migration registry (the shipped one by default)

    Returns:
        Database handle with an up-to-date schema

    Raises:
        MigrationFailedError: If a migration pass fails
    """
    database = connect(settings, registry=registry)
    if not settings.auto_migrate:
        logger.info("Automatic migrations disabled")
        return database

    with logger.with_context(backend=settings.backend):
        try:
            database.migrate()
        except MigrationFailedError as e:
            logger.error(
                f"Schema migration failed at {e.version or 'ledger setup'}; not starting",
                stage=e.stage,
            )
            database.close()
            raise
    return database
