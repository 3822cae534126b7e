"""
Keypool Exception Hierarchy

Custom exceptions for the keypool database layer, providing clear error
categorization for configuration, storage, and schema migration failures.
"""

from typing import List, Optional


class KeypoolError(Exception):
    """Base exception for all keypool errors."""

    pass


class ConfigurationError(KeypoolError):
    """Raised when configuration is invalid or missing."""

    pass


class StorageError(KeypoolError):
    """Raised when storage operations fail."""

    pass


class MigrationError(KeypoolError):
    """Base exception for schema migration errors."""

    def __init__(
        self,
        message: str,
        version: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.version = version
        self.cause = cause
        super().__init__(message)


class RegistrationError(MigrationError):
    """Raised when a migration unit cannot be registered (malformed version)."""

    pass


class DuplicateVersionError(RegistrationError):
    """Raised when two migration units declare the same version."""

    pass


class LedgerError(MigrationError):
    """Raised when the applied-version ledger cannot be read or written."""

    pass


class MigrationFailedError(MigrationError):
    """
    Raised when a migration pass stops.

    Attributes:
        version: Version of the unit the pass stopped at (None when the
            pass failed before any unit ran)
        cause: Underlying exception, if any
        stage: One of "storage", "apply" or "record"
        applied: Versions applied and recorded earlier in the same pass
    """

    def __init__(
        self,
        message: str,
        version: Optional[str] = None,
        cause: Optional[BaseException] = None,
        stage: str = "apply",
        applied: Optional[List[str]] = None,
    ):
        super().__init__(message, version=version, cause=cause)
        self.stage = stage
        self.applied = list(applied or [])
