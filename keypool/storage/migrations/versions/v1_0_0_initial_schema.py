"""
Keypool Schema Migration v1.0.0 - Initial Schema.

Creates the groups and api_keys tables. The shapes are frozen here rather
than derived from keypool.models so that later model changes arrive
through their own migrations.
"""

from typing import Any

from keypool.storage.migrations.base import migration
from keypool.storage.schema import Column, TableShape, ensure_table

GROUPS_V1 = TableShape(
    name="groups",
    columns=(
        Column("id", "integer", primary_key=True),
        Column("name", "string", nullable=False, unique=True),
        Column("display_name", "string"),
        Column("description", "text"),
        Column("channel_type", "string", nullable=False, default="'openai'"),
        Column("created_at", "timestamp"),
        Column("updated_at", "timestamp"),
    ),
)

API_KEYS_V1 = TableShape(
    name="api_keys",
    columns=(
        Column("id", "integer", primary_key=True),
        Column("key_value", "text", nullable=False),
        Column("group_id", "integer", nullable=False),
        Column("status", "string", nullable=False, default="'active'"),
        Column("request_count", "bigint", nullable=False, default="0"),
        Column("failure_count", "bigint", nullable=False, default="0"),
        Column("last_used_at", "timestamp"),
        Column("created_at", "timestamp"),
        Column("updated_at", "timestamp"),
    ),
)


@migration()
def V1_0_0_InitialSchema(connection: Any) -> None:  # noqa: N802
    """Create groups and api_keys tables."""
    ensure_table(connection, GROUPS_V1)
    ensure_table(connection, API_KEYS_V1)
