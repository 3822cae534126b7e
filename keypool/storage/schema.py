"""
Keypool Schema Shapes.

Describes desired table shapes and brings a database in line with them by
creating missing tables and adding missing columns. Nothing is ever
dropped or altered in place, so calling ensure_table() repeatedly is safe.
"""

import logging
import re
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from keypool.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_identifier(name: str) -> str:
    """Reject table/column/schema names that are unsafe to interpolate."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ConfigurationError(f"Invalid SQL identifier: {name!r}")
    return name


@dataclass(frozen=True)
class Column:
    """
    A column in a desired table shape.

    Attributes:
        name: Column name
        type: Logical type (integer, bigint, string, text, boolean, timestamp)
        nullable: Whether NULL is allowed
        default: Literal SQL default expression, if any
        primary_key: Whether the column is the primary key
        unique: Whether a UNIQUE constraint applies
    """

    name: str
    type: str
    nullable: bool = True
    default: Optional[str] = None
    primary_key: bool = False
    unique: bool = False


@dataclass(frozen=True)
class TableShape:
    """Desired shape of one table."""

    name: str
    columns: Tuple[Column, ...] = field(default_factory=tuple)

    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]


class Dialect:
    """SQL dialect used to inspect and extend tables."""

    name = ""
    TYPE_MAP: Dict[str, str] = {}

    def column_type(self, column: Column) -> str:
        try:
            return self.TYPE_MAP[column.type]
        except KeyError:
            raise ConfigurationError(
                f"Unknown column type {column.type!r} for column {column.name}"
            ) from None

    def column_definition(self, column: Column, for_alter: bool = False) -> str:
        parts = [validate_identifier(column.name), self.column_type(column)]
        if column.primary_key:
            parts.append(self.primary_key_clause(column))
        else:
            if not column.nullable:
                parts.append("NOT NULL")
            if column.unique and not for_alter:
                parts.append("UNIQUE")
        if column.default is not None:
            parts.append(f"DEFAULT {column.default}")
        return " ".join(parts)

    def primary_key_clause(self, column: Column) -> str:
        return "PRIMARY KEY"

    def qualified(self, table: str) -> str:
        return validate_identifier(table)

    def create_table_sql(self, shape: TableShape) -> str:
        columns = ",\n    ".join(self.column_definition(c) for c in shape.columns)
        return f"CREATE TABLE IF NOT EXISTS {self.qualified(shape.name)} (\n    {columns}\n)"

    def add_column_sql(self, table: str, column: Column) -> str:
        return (
            f"ALTER TABLE {self.qualified(table)} "
            f"ADD COLUMN {self.column_definition(column, for_alter=True)}"
        )

    def table_exists(self, connection: Any, table: str) -> bool:
        raise NotImplementedError

    def existing_columns(self, connection: Any, table: str) -> Set[str]:
        raise NotImplementedError


class SQLiteDialect(Dialect):
    """SQLite dialect."""

    name = "sqlite"
    TYPE_MAP = {
        "integer": "INTEGER",
        "bigint": "INTEGER",
        "string": "VARCHAR(255)",
        "text": "TEXT",
        "boolean": "BOOLEAN",
        "timestamp": "DATETIME",
    }

    def primary_key_clause(self, column: Column) -> str:
        if column.type in ("integer", "bigint"):
            return "PRIMARY KEY AUTOINCREMENT"
        return "PRIMARY KEY"

    def table_exists(self, connection: Any, table: str) -> bool:
        cursor = connection.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            (table,),
        )
        return cursor.fetchone() is not None

    def existing_columns(self, connection: Any, table: str) -> Set[str]:
        cursor = connection.execute(f"PRAGMA table_info({validate_identifier(table)})")
        return {row[1] for row in cursor.fetchall()}


class PostgreSQLDialect(Dialect):
    """
    PostgreSQL dialect.

    With a schema, table names are qualified with it. Without one, names
    are left unqualified and resolve through the session search_path,
    which the migration ledger pins to the configured schema.
    """

    name = "postgresql"
    TYPE_MAP = {
        "integer": "INTEGER",
        "bigint": "BIGINT",
        "string": "VARCHAR(255)",
        "text": "TEXT",
        "boolean": "BOOLEAN",
        "timestamp": "TIMESTAMPTZ",
    }

    def __init__(self, schema: Optional[str] = None):
        self.schema = validate_identifier(schema) if schema is not None else None

    def column_type(self, column: Column) -> str:
        if column.primary_key and column.type in ("integer", "bigint"):
            return "BIGSERIAL" if column.type == "bigint" else "SERIAL"
        return super().column_type(column)

    def qualified(self, table: str) -> str:
        if self.schema is None:
            return validate_identifier(table)
        return f"{self.schema}.{validate_identifier(table)}"

    def _schema_filter(self, table: str) -> Tuple[str, Tuple[str, ...]]:
        if self.schema is None:
            return "table_schema = current_schema()", (table,)
        return "table_schema = %s", (self.schema, table)

    def add_column_sql(self, table: str, column: Column) -> str:
        return (
            f"ALTER TABLE {self.qualified(table)} "
            f"ADD COLUMN IF NOT EXISTS {self.column_definition(column, for_alter=True)}"
        )

    def table_exists(self, connection: Any, table: str) -> bool:
        condition, params = self._schema_filter(table)
        cursor = connection.execute(
            f"""
            SELECT 1 FROM information_schema.tables
            WHERE {condition} AND table_name = %s
            """,
            params,
        )
        return cursor.fetchone() is not None

    def existing_columns(self, connection: Any, table: str) -> Set[str]:
        condition, params = self._schema_filter(table)
        cursor = connection.execute(
            f"""
            SELECT column_name FROM information_schema.columns
            WHERE {condition} AND table_name = %s
            """,
            params,
        )
        rows = cursor.fetchall()
        return {row["column_name"] if isinstance(row, dict) else row[0] for row in rows}


def dialect_for(connection: Any, schema: Optional[str] = None) -> Dialect:
    """
    Pick a dialect from the connection type.

    PostgreSQL names stay unqualified unless a schema is given.
    """
    if isinstance(connection, sqlite3.Connection):
        return SQLiteDialect()
    return PostgreSQLDialect(schema)


def ensure_table(
    connection: Any,
    shape: TableShape,
    dialect: Optional[Dialect] = None,
) -> List[str]:
    """
    Make sure a table matches the desired shape.

    Creates the table when it is missing, otherwise adds only the columns
    that are absent. Existing columns are never modified.

    Args:
        connection: Database connection
        shape: Desired table shape
        dialect: SQL dialect (inferred from the connection if omitted)

    Returns:
        DDL statements issued; empty when the table already matched
    """
    dialect = dialect or dialect_for(connection)
    statements: List[str] = []

    if not dialect.table_exists(connection, shape.name):
        statements.append(dialect.create_table_sql(shape))
    else:
        existing = dialect.existing_columns(connection, shape.name)
        for column in shape.columns:
            if column.name not in existing:
                statements.append(dialect.add_column_sql(shape.name, column))

    for statement in statements:
        logger.debug(f"Executing DDL: {statement}")
        connection.execute(statement)

    if statements:
        logger.info(
            f"Table {shape.name}: issued {len(statements)} schema change(s)"
        )
    return statements
