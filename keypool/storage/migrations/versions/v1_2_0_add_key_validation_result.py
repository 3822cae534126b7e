"""
Keypool Schema Migration v1.2.0 - Key Validation Result.

Adds last_validation_status and last_validation_response to api_keys so
the outcome of the most recent validation run is kept with each key.
"""

from typing import Any

from keypool.models import APIKey, table_shape
from keypool.storage.migrations.base import migration
from keypool.storage.schema import ensure_table


@migration()
def V1_2_0_AddKeyValidationResult(connection: Any) -> None:  # noqa: N802
    """Add last_validation_status and last_validation_response columns to api_keys."""
    ensure_table(connection, table_shape(APIKey))
