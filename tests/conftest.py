"""
Keypool Shared Test Fixtures.

The fixtures follow a layered approach:
1. Database fixtures (temporary SQLite files, statement capture)
2. Ledger and registry fixtures
3. Logging isolation
"""

import logging
import shutil
import sqlite3
import tempfile
from pathlib import Path
from typing import Generator, List

import pytest

from keypool.observability.metrics import MetricsCollector, MigrationMetrics
from keypool.storage.migrations.base import MigrationRegistry
from keypool.storage.migrations.version_stores import SQLiteVersionLedger
from keypool.testing import MockVersionLedger

# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory."""
    path = tempfile.mkdtemp(prefix="keypool_test_")
    yield Path(path)
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    """Path of a fresh SQLite database file."""
    return temp_dir / "keypool.db"


@pytest.fixture
def sqlite_conn(db_path: Path) -> Generator[sqlite3.Connection, None, None]:
    """Open connection to an empty SQLite database."""
    conn = sqlite3.connect(db_path)
    yield conn
    conn.close()


class StatementLog:
    """Collects SQL statements executed on a sqlite3 connection."""

    DDL_PREFIXES = ("CREATE", "ALTER", "DROP")

    def __init__(self):
        self.statements: List[str] = []

    def __call__(self, statement: str) -> None:
        self.statements.append(statement.strip())

    def ddl(self) -> List[str]:
        return [
            s
            for s in self.statements
            if s.upper().startswith(self.DDL_PREFIXES)
        ]

    def clear(self) -> None:
        self.statements.clear()


@pytest.fixture
def statement_log(sqlite_conn: sqlite3.Connection) -> StatementLog:
    """Record every statement sqlite_conn executes."""
    log = StatementLog()
    sqlite_conn.set_trace_callback(log)
    return log


# =============================================================================
# Ledger / Registry Fixtures
# =============================================================================


@pytest.fixture
def sqlite_ledger(sqlite_conn: sqlite3.Connection) -> SQLiteVersionLedger:
    """Ledger stored in the test SQLite database."""
    return SQLiteVersionLedger(sqlite_conn)


@pytest.fixture
def mock_ledger() -> MockVersionLedger:
    """In-memory ledger."""
    return MockVersionLedger()


@pytest.fixture
def empty_registry() -> MigrationRegistry:
    return MigrationRegistry()


@pytest.fixture
def metrics() -> MigrationMetrics:
    """Metrics sink isolated from the global instance."""
    return MigrationMetrics(MetricsCollector(service_name="keypool-test"))


# =============================================================================
# Logging Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def restore_keypool_logger():
    """Undo setup_logging() changes made by a test."""
    logger = logging.getLogger("keypool")
    level, handlers = logger.level, list(logger.handlers)
    yield
    logger.setLevel(level)
    logger.handlers = handlers
