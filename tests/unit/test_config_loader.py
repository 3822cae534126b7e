"""
Tests for the keypool configuration loader.
"""

import os
from unittest.mock import patch

import pytest
import yaml

from keypool.config.loader import ConfigLoader, DatabaseSettings
from keypool.exceptions import ConfigurationError


class TestConfigLoaderLoad:
    """Tests for ConfigLoader.load()."""

    def test_missing_file_returns_defaults(self, tmp_path):
        config = ConfigLoader.load(str(tmp_path / "nope.yaml"))

        assert config["database"]["backend"] == "sqlite"
        assert config["migrations"]["ledger_table"] == "_schema_versions"
        assert config["migrations"]["auto_migrate"] is True

    def test_empty_file_returns_defaults(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")

        config = ConfigLoader.load(str(config_file))

        assert config == ConfigLoader._get_defaults()

    def test_keypool_section_merged_over_defaults(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            yaml.dump(
                {
                    "keypool": {
                        "database": {"backend": "postgresql", "dsn": "postgresql://db/kp"},
                        "migrations": {"advisory_lock": False},
                    }
                }
            )
        )

        config = ConfigLoader.load(str(config_file))

        assert config["database"]["backend"] == "postgresql"
        assert config["database"]["dsn"] == "postgresql://db/kp"
        assert config["database"]["schema"] == "public"
        assert config["migrations"]["advisory_lock"] is False
        assert config["migrations"]["auto_migrate"] is True

    def test_top_level_config_without_section(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.dump({"database": {"path": "/var/kp.db"}}))

        config = ConfigLoader.load(str(config_file))

        assert config["database"]["path"] == "/var/kp.db"

    def test_invalid_yaml(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("database: [unclosed")

        with pytest.raises(ConfigurationError):
            ConfigLoader.load(str(config_file))

    def test_non_mapping(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError):
            ConfigLoader.load(str(config_file))


class TestEnvExpansion:
    """Tests for ${VAR} expansion."""

    def test_expands_env_var(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.dump({"database": {"dsn": "${KEYPOOL_TEST_DSN}"}}))

        with patch.dict(os.environ, {"KEYPOOL_TEST_DSN": "postgresql://env/kp"}):
            config = ConfigLoader.load(str(config_file))

        assert config["database"]["dsn"] == "postgresql://env/kp"

    def test_fallback_used_when_unset(self):
        with patch.dict(os.environ, {}, clear=True):
            assert ConfigLoader._expand_value("${KEYPOOL_MISSING:-sqlite}") == "sqlite"

    def test_unset_without_fallback_kept(self):
        with patch.dict(os.environ, {}, clear=True):
            assert ConfigLoader._expand_value("${KEYPOOL_MISSING}") == "${KEYPOOL_MISSING}"

    def test_embedded_reference(self):
        with patch.dict(os.environ, {"KP_HOST": "db.internal"}):
            value = ConfigLoader._expand_value("postgresql://${KP_HOST}:5432/kp")
        assert value == "postgresql://db.internal:5432/kp"

    def test_nested_lists(self):
        with patch.dict(os.environ, {"KP_A": "1"}):
            expanded = ConfigLoader._expand_config({"items": ["${KP_A}", 2]})
        assert expanded == {"items": ["1", 2]}


class TestConfigLoaderSave:
    def test_save_and_reload(self, tmp_path):
        config_file = tmp_path / "nested" / "config.yaml"
        config = ConfigLoader._get_defaults()
        config["database"]["path"] = "/srv/keypool.db"

        ConfigLoader.save(config, str(config_file))

        assert "keypool" in yaml.safe_load(config_file.read_text())
        assert ConfigLoader.load(str(config_file))["database"]["path"] == "/srv/keypool.db"


class TestDatabaseSettings:
    """Tests for DatabaseSettings."""

    def test_from_defaults(self):
        settings = DatabaseSettings.from_config(ConfigLoader._get_defaults())

        assert settings.backend == "sqlite"
        assert settings.path == "data/keypool.db"
        assert settings.ledger_table == "_schema_versions"
        assert settings.advisory_lock is True

    def test_from_empty_config(self):
        assert DatabaseSettings.from_config({}) == DatabaseSettings()

    def test_string_booleans_from_env(self):
        settings = DatabaseSettings.from_config(
            {"migrations": {"auto_migrate": "false", "advisory_lock": "yes"}}
        )
        assert settings.auto_migrate is False
        assert settings.advisory_lock is True

    def test_postgresql_requires_dsn(self):
        with pytest.raises(ConfigurationError):
            DatabaseSettings(backend="postgresql")

    def test_sqlite_requires_path(self):
        with pytest.raises(ConfigurationError):
            DatabaseSettings(backend="sqlite", path=None)

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError):
            DatabaseSettings.from_config({"database": {"backend": "mongodb"}})

    def test_invalid_pool_size(self):
        with pytest.raises(ConfigurationError):
            DatabaseSettings.from_config({"database": {"pool_size": "lots"}})
