"""
Unit tests for keypool table shapes and the additive schema helper.
"""

from unittest.mock import MagicMock

import pytest

from keypool.exceptions import ConfigurationError
from keypool.models import APIKey, Group, table_shape
from keypool.storage.schema import (
    Column,
    PostgreSQLDialect,
    SQLiteDialect,
    TableShape,
    dialect_for,
    ensure_table,
    validate_identifier,
)

NOTES = TableShape(
    "notes",
    (
        Column("id", "integer", primary_key=True),
        Column("body", "text", nullable=False),
        Column("slug", "string", unique=True),
        Column("pinned", "boolean", nullable=False, default="0"),
    ),
)


def columns_of(conn, table):
    return [row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]


class TestValidateIdentifier:
    @pytest.mark.parametrize("name", ["api_keys", "_schema_versions", "T1"])
    def test_valid(self, name):
        assert validate_identifier(name) == name

    @pytest.mark.parametrize("name", ["", "1table", "a-b", "x; DROP TABLE y", None])
    def test_invalid(self, name):
        with pytest.raises(ConfigurationError):
            validate_identifier(name)


class TestSQLiteDialect:
    def test_create_table_sql(self):
        sql = SQLiteDialect().create_table_sql(NOTES)

        assert sql.startswith("CREATE TABLE IF NOT EXISTS notes (")
        assert "id INTEGER PRIMARY KEY AUTOINCREMENT" in sql
        assert "body TEXT NOT NULL" in sql
        assert "slug VARCHAR(255) UNIQUE" in sql
        assert "pinned BOOLEAN NOT NULL DEFAULT 0" in sql

    def test_add_column_omits_unique(self):
        sql = SQLiteDialect().add_column_sql("notes", Column("slug", "string", unique=True))
        assert sql == "ALTER TABLE notes ADD COLUMN slug VARCHAR(255)"

    def test_unknown_type(self):
        with pytest.raises(ConfigurationError):
            SQLiteDialect().column_definition(Column("blob", "geometry"))


class TestPostgreSQLDialect:
    def test_create_table_sql(self):
        sql = PostgreSQLDialect("keypool").create_table_sql(
            TableShape(
                "events",
                (
                    Column("id", "bigint", primary_key=True),
                    Column("seen_at", "timestamp"),
                ),
            )
        )

        assert "CREATE TABLE IF NOT EXISTS keypool.events" in sql
        assert "id BIGSERIAL PRIMARY KEY" in sql
        assert "seen_at TIMESTAMPTZ" in sql

    def test_add_column_if_not_exists(self):
        sql = PostgreSQLDialect("public").add_column_sql("api_keys", Column("note", "text"))
        assert sql == "ALTER TABLE public.api_keys ADD COLUMN IF NOT EXISTS note TEXT"

    def test_unqualified_without_schema(self):
        """Names resolve through the session search_path."""
        dialect = PostgreSQLDialect()
        shape = TableShape("api_keys", (Column("id", "integer", primary_key=True),))

        assert dialect.create_table_sql(shape).startswith(
            "CREATE TABLE IF NOT EXISTS api_keys ("
        )
        assert dialect.add_column_sql("api_keys", Column("note", "text")) == (
            "ALTER TABLE api_keys ADD COLUMN IF NOT EXISTS note TEXT"
        )

    def test_lookups_use_current_schema_without_schema(self):
        conn = MagicMock()
        conn.execute.return_value.fetchone.return_value = None

        assert PostgreSQLDialect().table_exists(conn, "api_keys") is False

        sql, params = conn.execute.call_args[0]
        assert "current_schema()" in sql
        assert params == ("api_keys",)

    def test_lookups_use_explicit_schema(self):
        conn = MagicMock()
        PostgreSQLDialect("tenant").table_exists(conn, "api_keys")
        assert conn.execute.call_args[0][1] == ("tenant", "api_keys")

    def test_existing_columns_from_dict_rows(self):
        conn = MagicMock()
        conn.execute.return_value.fetchall.return_value = [
            {"column_name": "id"},
            {"column_name": "key_value"},
        ]
        assert PostgreSQLDialect().existing_columns(conn, "api_keys") == {
            "id",
            "key_value",
        }

    def test_invalid_schema(self):
        with pytest.raises(ConfigurationError):
            PostgreSQLDialect("bad schema")


class TestDialectFor:
    def test_sqlite_connection(self, sqlite_conn):
        assert isinstance(dialect_for(sqlite_conn), SQLiteDialect)

    def test_other_connection(self):
        dialect = dialect_for(MagicMock(), schema="app")
        assert isinstance(dialect, PostgreSQLDialect)
        assert dialect.schema == "app"
        assert dialect_for(MagicMock()).schema is None


class TestEnsureTable:
    def test_creates_missing_table(self, sqlite_conn):
        statements = ensure_table(sqlite_conn, NOTES)

        assert len(statements) == 1
        assert columns_of(sqlite_conn, "notes") == ["id", "body", "slug", "pinned"]

    def test_adds_only_missing_columns(self, sqlite_conn):
        sqlite_conn.execute("CREATE TABLE notes (id INTEGER PRIMARY KEY, body TEXT)")
        sqlite_conn.execute("INSERT INTO notes (body) VALUES ('keep me')")
        sqlite_conn.commit()

        statements = ensure_table(sqlite_conn, NOTES)

        assert statements == [
            "ALTER TABLE notes ADD COLUMN slug VARCHAR(255)",
            "ALTER TABLE notes ADD COLUMN pinned BOOLEAN NOT NULL DEFAULT 0",
        ]
        assert columns_of(sqlite_conn, "notes") == ["id", "body", "slug", "pinned"]
        row = sqlite_conn.execute("SELECT body, pinned FROM notes").fetchone()
        assert row == ("keep me", 0)

    def test_matching_table_is_noop(self, sqlite_conn, statement_log):
        ensure_table(sqlite_conn, NOTES)
        statement_log.clear()

        assert ensure_table(sqlite_conn, NOTES) == []
        assert statement_log.ddl() == []

    def test_extra_columns_left_alone(self, sqlite_conn):
        sqlite_conn.execute(
            "CREATE TABLE notes (id INTEGER PRIMARY KEY, body TEXT, slug TEXT,"
            " pinned BOOLEAN, legacy TEXT)"
        )
        assert ensure_table(sqlite_conn, NOTES) == []
        assert "legacy" in columns_of(sqlite_conn, "notes")


class TestModelShapes:
    def test_api_key_shape(self):
        shape = table_shape(APIKey)

        assert shape.name == "api_keys"
        assert shape.column_names()[0] == "id"
        assert shape.column_names()[-2:] == [
            "last_validation_status",
            "last_validation_response",
        ]

    def test_column_metadata(self):
        by_name = {c.name: c for c in table_shape(Group).columns}

        assert by_name["id"].primary_key
        assert by_name["name"].unique and not by_name["name"].nullable
        assert by_name["channel_type"].default == "'openai'"

    def test_models_are_plain_dataclasses(self):
        key = APIKey(key_value="sk-test", group_id=1)
        assert key.status == "active"
        assert key.last_validation_status is None
