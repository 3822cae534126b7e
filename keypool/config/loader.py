"""
Keypool Configuration Loader.

Handles loading configuration from YAML files with environment variable
expansion, and turns the database section into typed settings.
"""

import copy
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from keypool.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")

SUPPORTED_BACKENDS = ("sqlite", "postgresql")


def _as_bool(value: Any) -> bool:
    """Interpret booleans that may arrive as strings from env expansion."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


class ConfigLoader:
    """
    Loads keypool configuration from YAML files.

    Supports ${ENV_VAR} and ${ENV_VAR:-fallback} references in string values.
    """

    @classmethod
    def load(cls, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to config.yaml

        Returns:
            Parsed and expanded configuration dict, merged over defaults
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning(f"Config not found at {config_path}, using defaults")
            return cls._get_defaults()

        with open(path, "r") as f:
            try:
                raw_config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        if raw_config is None:
            logger.warning(f"Config file {config_path} is empty, using defaults")
            return cls._get_defaults()
        if not isinstance(raw_config, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")

        # Use the 'keypool' section or the whole file
        config = raw_config.get("keypool", raw_config)
        config = cls._expand_config(config)
        return cls._merge(cls._get_defaults(), config)

    @classmethod
    def _expand_config(cls, config: Any) -> Any:
        """Recursively expand environment variables in config."""
        if isinstance(config, dict):
            return {k: cls._expand_config(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [cls._expand_config(item) for item in config]
        elif isinstance(config, str):
            return cls._expand_value(config)
        return config

    @staticmethod
    def _expand_value(value: str) -> str:
        if "${" not in value:
            return value

        def replace(match):
            ref = match.group(1)
            name, _, fallback = ref.partition(":-")
            env_value = os.environ.get(name)
            if env_value is not None:
                return env_value
            if ":-" in ref:
                return fallback
            logger.warning(f"Environment variable {name} not set")
            return match.group(0)

        return _ENV_PATTERN.sub(replace, value)

    @classmethod
    def _merge(cls, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        merged = copy.deepcopy(base)
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = cls._merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    @staticmethod
    def _get_defaults() -> Dict[str, Any]:
        """Return default configuration."""
        return {
            "database": {
                "backend": "sqlite",
                "path": "data/keypool.db",
                "dsn": None,
                "schema": "public",
                "pool_size": 10,
            },
            "migrations": {
                "auto_migrate": True,
                "ledger_table": "_schema_versions",
                "advisory_lock": True,
            },
            "logging": {
                "level": "INFO",
                "format": "json",
            },
        }

    @classmethod
    def save(cls, config: Dict[str, Any], config_path: str):
        """Save configuration to YAML file under a `keypool` section."""
        path = Path(config_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.safe_dump({"keypool": config}, f, default_flow_style=False)


@dataclass
class DatabaseSettings:
    """
    Database and migration settings.

    Attributes:
        backend: "sqlite" or "postgresql"
        path: SQLite database file
        dsn: PostgreSQL connection string
        schema: PostgreSQL schema
        pool_size: PostgreSQL connection pool size
        ledger_table: Name of the applied-version ledger table
        advisory_lock: Hold a PostgreSQL advisory lock during migration passes
        auto_migrate: Apply pending migrations when the database is opened
    """

    backend: str = "sqlite"
    path: Optional[str] = "data/keypool.db"
    dsn: Optional[str] = None
    schema: str = "public"
    pool_size: int = 10
    ledger_table: str = "_schema_versions"
    advisory_lock: bool = True
    auto_migrate: bool = True

    def __post_init__(self):
        if self.backend not in SUPPORTED_BACKENDS:
            raise ConfigurationError(
                f"Unsupported database backend {self.backend!r}; "
                f"expected one of {', '.join(SUPPORTED_BACKENDS)}"
            )
        if self.backend == "sqlite" and not self.path:
            raise ConfigurationError("SQLite backend requires database.path")
        if self.backend == "postgresql" and not self.dsn:
            raise ConfigurationError("PostgreSQL backend requires database.dsn")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "DatabaseSettings":
        """Build settings from a loaded configuration dict."""
        database = config.get("database", {}) or {}
        migrations = config.get("migrations", {}) or {}
        defaults = cls.__dataclass_fields__

        def pick(section: Dict[str, Any], key: str) -> Any:
            return section.get(key, defaults[key].default)

        try:
            pool_size = int(pick(database, "pool_size"))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid database.pool_size: {e}") from e

        return cls(
            backend=pick(database, "backend"),
            path=pick(database, "path"),
            dsn=pick(database, "dsn"),
            schema=pick(database, "schema"),
            pool_size=pool_size,
            ledger_table=pick(migrations, "ledger_table"),
            advisory_lock=_as_bool(pick(migrations, "advisory_lock")),
            auto_migrate=_as_bool(pick(migrations, "auto_migrate")),
        )
