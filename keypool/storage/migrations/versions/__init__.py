"""
Keypool Schema Migrations - Version Definitions.

Each module defines one migration unit. New units are added to
ALL_MIGRATIONS; build_registry() rejects duplicate versions at startup.
"""

from typing import List

from keypool.storage.migrations.base import MigrationRegistry, MigrationUnit
from keypool.storage.migrations.versions.v1_0_0_initial_schema import (
    V1_0_0_InitialSchema,
)
from keypool.storage.migrations.versions.v1_2_0_add_key_validation_result import (
    V1_2_0_AddKeyValidationResult,
)

ALL_MIGRATIONS: List[MigrationUnit] = [
    V1_0_0_InitialSchema,
    V1_2_0_AddKeyValidationResult,
]


def build_registry() -> MigrationRegistry:
    """Build the registry of all schema migrations shipped with keypool."""
    return MigrationRegistry(ALL_MIGRATIONS)


__all__ = [
    "ALL_MIGRATIONS",
    "V1_0_0_InitialSchema",
    "V1_2_0_AddKeyValidationResult",
    "build_registry",
]
