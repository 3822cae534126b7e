"""
Keypool Testing Factories.

Builders for migration units with recorded side effects.
"""

from typing import Any, Callable, List, Optional

from keypool.storage.migrations.base import MigrationUnit

__all__ = ["create_test_unit"]


def create_test_unit(
    version: str,
    calls: Optional[List[str]] = None,
    fail: bool = False,
    report_failure: bool = False,
    effect: Optional[Callable[[Any], Any]] = None,
    description: Optional[str] = None,
) -> MigrationUnit:
    """
    Create a migration unit for tests.

    Args:
        version: Version string, e.g. "1.0.0"
        calls: List the unit appends its version to on every apply
        fail: Raise RuntimeError when applied
        report_failure: Return False when applied
        effect: Function run against the connection when applied
        description: Description (defaults to "Test migration <version>")

    Returns:
        MigrationUnit
    """

    def apply(connection: Any) -> Any:
        if calls is not None:
            calls.append(version)
        if fail:
            raise RuntimeError(f"migration {version} exploded")
        if effect is not None:
            effect(connection)
        if report_failure:
            return False
        return None

    apply.__name__ = f"test_migration_{version.replace('.', '_').replace('-', '_')}"
    return MigrationUnit.from_function(
        apply,
        version=version,
        description=description or f"Test migration {version}",
    )
