"""
Keypool Testing Module.

Reusable test utilities for code that runs keypool migrations:

- MockVersionLedger: In-memory, transactional ledger
- FlakyLedger: Wrapper that injects ledger failures
- create_test_unit: Migration units that record their calls

Example usage:
    >>> from keypool.testing import MockVersionLedger, create_test_unit
    >>> calls = []
    >>> registry = MigrationRegistry([create_test_unit("1.0.0", calls)])
    >>> MigrationRunner(registry, MockVersionLedger()).migrate(None)
    >>> assert calls == ["1.0.0"]
"""

from keypool.testing.factories import create_test_unit
from keypool.testing.mocks import FlakyLedger, MockVersionLedger

__all__ = [
    # Mocks
    "MockVersionLedger",
    "FlakyLedger",
    # Factories
    "create_test_unit",
]
