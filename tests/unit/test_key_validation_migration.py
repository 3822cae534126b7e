"""
Tests for the shipped schema migrations, centred on v1.2.0 which adds the
key validation result columns to api_keys.
"""

from datetime import datetime, timezone

from keypool.storage.migrations.base import MigrationRegistry, SchemaVersion
from keypool.storage.migrations.runner import MigrationRunner
from keypool.storage.migrations.version_stores import SQLiteVersionLedger
from keypool.storage.migrations.versions import (
    ALL_MIGRATIONS,
    V1_0_0_InitialSchema,
    V1_2_0_AddKeyValidationResult,
    build_registry,
)
from keypool.storage.migrations.versions.v1_0_0_initial_schema import API_KEYS_V1
from keypool.storage.schema import ensure_table

T = datetime(2024, 7, 15, 8, 0, tzinfo=timezone.utc)
NEW_COLUMNS = {"last_validation_status", "last_validation_response"}


def api_key_columns(conn):
    return {row[1] for row in conn.execute("PRAGMA table_info(api_keys)").fetchall()}


def api_key_ddl(statement_log):
    return [s for s in statement_log.ddl() if "api_keys" in s]


class TestShippedRegistry:
    def test_build_registry(self):
        registry = build_registry()
        assert [str(u.version) for u in registry] == ["1.0.0", "1.2.0"]
        assert len(registry) == len(ALL_MIGRATIONS)

    def test_unit_metadata(self):
        assert V1_2_0_AddKeyValidationResult.version == SchemaVersion(1, 2, 0)
        assert V1_2_0_AddKeyValidationResult.description == (
            "Add last_validation_status and last_validation_response columns to api_keys."
        )
        assert V1_0_0_InitialSchema.name == "V1_0_0_InitialSchema"


class TestAddKeyValidationResult:
    """v1.2.0 against databases in different starting states."""

    def run_pass(self, conn, metrics):
        registry = MigrationRegistry([V1_2_0_AddKeyValidationResult])
        ledger = SQLiteVersionLedger(conn)
        report = MigrationRunner(registry, ledger, clock=lambda: T, metrics=metrics).migrate(
            conn
        )
        return report, ledger

    def test_existing_table_gains_columns(self, sqlite_conn, statement_log, metrics):
        ensure_table(sqlite_conn, API_KEYS_V1)
        sqlite_conn.execute("INSERT INTO api_keys (key_value, group_id) VALUES ('sk-1', 1)")
        sqlite_conn.commit()
        statement_log.clear()

        report, ledger = self.run_pass(sqlite_conn, metrics)

        assert report.applied == ["1.2.0"]
        assert len(api_key_ddl(statement_log)) == 2
        assert NEW_COLUMNS <= api_key_columns(sqlite_conn)
        (entry,) = ledger.get_version_history()
        assert entry.version == SchemaVersion(1, 2, 0)
        assert entry.applied_at == T

        row = sqlite_conn.execute(
            "SELECT key_value, last_validation_status FROM api_keys"
        ).fetchone()
        assert row == ("sk-1", None)

    def test_empty_database(self, sqlite_conn, metrics):
        report, ledger = self.run_pass(sqlite_conn, metrics)

        assert report.applied == ["1.2.0"]
        assert ledger.applied_versions() == {SchemaVersion(1, 2, 0)}
        assert NEW_COLUMNS <= api_key_columns(sqlite_conn)

    def test_second_pass_issues_no_schema_changes(
        self, sqlite_conn, statement_log, metrics
    ):
        ensure_table(sqlite_conn, API_KEYS_V1)
        self.run_pass(sqlite_conn, metrics)
        statement_log.clear()

        report, ledger = self.run_pass(sqlite_conn, metrics)

        assert report.applied == []
        assert statement_log.ddl() == []
        assert [str(e.version) for e in ledger.get_version_history()] == ["1.2.0"]

    def test_reapply_after_lost_ledger_entry(self, sqlite_conn, statement_log, metrics):
        """Columns already present: applying again changes nothing."""
        ensure_table(sqlite_conn, API_KEYS_V1)
        V1_2_0_AddKeyValidationResult.apply(sqlite_conn)
        statement_log.clear()

        report, _ = self.run_pass(sqlite_conn, metrics)

        assert report.applied == ["1.2.0"]
        assert api_key_ddl(statement_log) == []


class TestFullHistory:
    def test_all_migrations_from_scratch(self, sqlite_conn, metrics):
        ledger = SQLiteVersionLedger(sqlite_conn)
        runner = MigrationRunner(build_registry(), ledger, clock=lambda: T, metrics=metrics)

        report = runner.migrate(sqlite_conn)

        assert report.applied == ["1.0.0", "1.2.0"]
        assert NEW_COLUMNS <= api_key_columns(sqlite_conn)
        assert runner.get_status()["current_version"] == "1.2.0"
        assert runner.verify_checksums() == []
