"""
Keypool Data Models.

Row types for the key pool and the table shapes derived from them.
Schema migrations compare the database against these shapes, so adding a
field here needs a matching migration in keypool.storage.migrations.versions.
"""

from dataclasses import MISSING, dataclass, field, fields
from datetime import datetime
from typing import Any, Optional

from keypool.storage.schema import Column, TableShape


def column(
    type: str,
    nullable: bool = True,
    server_default: Optional[str] = None,
    primary_key: bool = False,
    unique: bool = False,
    default: Any = MISSING,
):
    """
    Declare a dataclass field that maps to a table column.

    Args:
        type: Logical column type
        nullable: Whether NULL is allowed
        server_default: Literal SQL default expression
        primary_key: Whether the column is the primary key
        unique: Whether a UNIQUE constraint applies
        default: Python-side default for the dataclass field
    """
    return field(
        default=default,
        metadata={
            "column": {
                "type": type,
                "nullable": nullable,
                "default": server_default,
                "primary_key": primary_key,
                "unique": unique,
            }
        },
    )


def table_shape(model: type) -> TableShape:
    """
    Build the table shape of a model class.

    The primary key comes first, then the remaining columns in field
    declaration order. Fields without column metadata are not persisted.
    """
    columns = []
    for f in fields(model):
        meta = f.metadata.get("column")
        if meta is None:
            continue
        columns.append(Column(name=f.name, **meta))
    columns.sort(key=lambda c: not c.primary_key)
    return TableShape(name=model.__tablename__, columns=tuple(columns))


@dataclass
class Group:
    """A named pool of upstream API keys."""

    __tablename__ = "groups"

    name: str = column("string", nullable=False, unique=True)
    id: Optional[int] = column("integer", primary_key=True, default=None)
    display_name: Optional[str] = column("string", default=None)
    description: Optional[str] = column("text", default=None)
    channel_type: str = column(
        "string", nullable=False, server_default="'openai'", default="openai"
    )
    created_at: Optional[datetime] = column("timestamp", default=None)
    updated_at: Optional[datetime] = column("timestamp", default=None)


@dataclass
class APIKey:
    """
    An upstream API key belonging to a group.

    last_validation_status / last_validation_response hold the outcome of
    the most recent key validation run.
    """

    __tablename__ = "api_keys"

    key_value: str = column("text", nullable=False)
    group_id: int = column("integer", nullable=False)
    id: Optional[int] = column("integer", primary_key=True, default=None)
    status: str = column(
        "string", nullable=False, server_default="'active'", default="active"
    )
    request_count: int = column("bigint", nullable=False, server_default="0", default=0)
    failure_count: int = column("bigint", nullable=False, server_default="0", default=0)
    last_used_at: Optional[datetime] = column("timestamp", default=None)
    created_at: Optional[datetime] = column("timestamp", default=None)
    updated_at: Optional[datetime] = column("timestamp", default=None)
    last_validation_status: Optional[str] = column("string", default=None)
    last_validation_response: Optional[str] = column("text", default=None)
