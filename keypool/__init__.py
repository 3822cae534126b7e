"""
Keypool - database layer of the API key pool service.

Opens the service database and keeps its schema current through
versioned, forward-only migrations recorded in an in-database ledger.

Basic usage:
    from keypool import ConfigLoader, DatabaseSettings, initialize_database

    config = ConfigLoader.load("config.yaml")
    database = initialize_database(DatabaseSettings.from_config(config))
"""

__version__ = "1.2.0"

from keypool.config.loader import ConfigLoader, DatabaseSettings
from keypool.exceptions import (
    ConfigurationError,
    KeypoolError,
    MigrationError,
    MigrationFailedError,
    StorageError,
)
from keypool.storage.database import Database, connect, initialize_database

__all__ = [
    "ConfigLoader",
    "ConfigurationError",
    "Database",
    "DatabaseSettings",
    "KeypoolError",
    "MigrationError",
    "MigrationFailedError",
    "StorageError",
    "connect",
    "initialize_database",
]
