"""
Keypool Schema Migration Framework.

Versioned, forward-only schema migrations with an applied-version ledger
stored in the migrated database.
"""

from keypool.exceptions import (
    DuplicateVersionError,
    LedgerError,
    MigrationError,
    MigrationFailedError,
    RegistrationError,
)
from keypool.storage.migrations.base import (
    MigrationRegistry,
    MigrationUnit,
    SchemaVersion,
    migration,
)
from keypool.storage.migrations.runner import (
    MigrationReport,
    MigrationRunner,
    RunnerState,
    VersionLedger,
    apply_migrations,
)
from keypool.storage.migrations.version_stores import (
    LedgerEntry,
    PostgreSQLVersionLedger,
    SQLiteVersionLedger,
    create_ledger,
)

__all__ = [
    "DuplicateVersionError",
    "LedgerEntry",
    "LedgerError",
    "MigrationError",
    "MigrationFailedError",
    "MigrationRegistry",
    "MigrationReport",
    "MigrationRunner",
    "MigrationUnit",
    "PostgreSQLVersionLedger",
    "RegistrationError",
    "RunnerState",
    "SQLiteVersionLedger",
    "SchemaVersion",
    "VersionLedger",
    "apply_migrations",
    "create_ledger",
    "migration",
]
