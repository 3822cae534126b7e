"""
Keypool Migration Framework - Migration Runner.

Reconciles the migration registry with the applied-version ledger and
applies pending units, in ascending version order, one at a time.
"""

import logging
import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import (
    Any,
    Callable,
    ContextManager,
    Dict,
    List,
    Optional,
    Protocol,
    Set,
    Union,
)

from keypool.exceptions import MigrationFailedError
from keypool.observability.metrics import MigrationMetrics, get_metrics
from keypool.observability.tracing import migration_span
from keypool.storage.migrations.base import (
    MigrationRegistry,
    MigrationUnit,
    SchemaVersion,
)
from keypool.storage.migrations.version_stores import LedgerEntry, create_ledger

logger = logging.getLogger(__name__)


class VersionLedger(Protocol):
    """Protocol for the applied-version ledger."""

    def ensure_storage(self) -> None:
        """Create the bookkeeping table if absent."""
        ...

    def applied_versions(self) -> Set[SchemaVersion]:
        """Versions recorded as applied."""
        ...

    def get_version_history(self) -> List[LedgerEntry]:
        """All entries in recording order."""
        ...

    def record_applied(
        self,
        version: SchemaVersion,
        applied_at: Optional[datetime] = None,
        description: str = "",
        checksum: Optional[str] = None,
    ) -> None:
        """Append one entry."""
        ...

    def lock(self) -> ContextManager[None]:
        """Exclusive access for the duration of a pass."""
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


class RunnerState(Enum):
    """Progress of a single migration pass."""

    NOT_STARTED = "not_started"
    STORAGE_ENSURED = "storage_ensured"
    DIFFING = "diffing"
    APPLYING = "applying"
    DONE = "done"
    FAILED = "failed"


@dataclass
class MigrationReport:
    """
    Outcome of a successful migration pass.

    Attributes:
        applied: Versions applied and recorded during the pass
        pending: Versions that were pending when the pass started
        dry_run: True when nothing was applied on purpose
        state: Final runner state
        duration_ms: Wall time of the pass
    """

    applied: List[str] = field(default_factory=list)
    pending: List[str] = field(default_factory=list)
    dry_run: bool = False
    state: RunnerState = RunnerState.DONE
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.state is RunnerState.DONE


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MigrationRunner:
    """
    Applies pending migrations and records them in the ledger.

    A pass stops at the first failure: earlier units stay applied and
    recorded, later units are not attempted, and a MigrationFailedError
    carrying the offending version is raised. Re-running the pass resumes
    from the first unrecorded unit.
    """

    HOOK_EVENTS = ("pre_migrate", "post_migrate")

    def __init__(
        self,
        registry: MigrationRegistry,
        ledger: VersionLedger,
        clock: Optional[Callable[[], datetime]] = None,
        metrics: Optional[MigrationMetrics] = None,
    ):
        """
        Initialize migration runner.

        Args:
            registry: Registered migration units
            ledger: Applied-version ledger for the target database
            clock: Source of applied_at timestamps (UTC now by default)
            metrics: Metrics sink (global instance by default)
        """
        self.registry = registry
        self.ledger = ledger
        self.clock = clock or _utcnow
        self.metrics = metrics or get_metrics()
        self.state = RunnerState.NOT_STARTED
        self._hooks: Dict[str, List[Callable]] = {e: [] for e in self.HOOK_EVENTS}

    def add_hook(self, event: str, callback: Callable) -> None:
        """
        Add a hook callback for migration events.

        Args:
            event: "pre_migrate" or "post_migrate"
            callback: Called with (unit, connection)
        """
        if event not in self._hooks:
            raise ValueError(f"Unknown hook event: {event}")
        self._hooks[event].append(callback)

    def _run_hooks(self, event: str, *args: Any) -> None:
        for callback in self._hooks.get(event, []):
            try:
                callback(*args)
            except Exception as e:
                logger.warning(f"Hook {getattr(callback, '__name__', callback)} failed: {e}")

    def _compute_pending(
        self,
        applied: Set[SchemaVersion],
        target_version: Optional[Union[str, SchemaVersion]] = None,
    ) -> List[MigrationUnit]:
        pending = [
            unit
            for unit in self.registry.get_all_migrations()
            if unit.version not in applied
        ]
        if target_version is not None:
            target = SchemaVersion.parse(target_version)
            pending = [unit for unit in pending if unit.version <= target]
        return pending

    def get_pending_migrations(
        self, target_version: Optional[Union[str, SchemaVersion]] = None
    ) -> List[MigrationUnit]:
        """Get units registered but not yet recorded as applied."""
        self.ledger.ensure_storage()
        return self._compute_pending(self.ledger.applied_versions(), target_version)

    def needs_migration(self) -> bool:
        """Check if there are pending migrations."""
        return len(self.get_pending_migrations()) > 0

    def migrate(
        self,
        connection: Any,
        target_version: Optional[Union[str, SchemaVersion]] = None,
        dry_run: bool = False,
    ) -> MigrationReport:
        """
        Apply all pending migrations.

        Args:
            connection: Database connection lent for the duration of the pass
            target_version: Only apply units up to and including this version
            dry_run: Log what would be applied without changing anything

        Returns:
            MigrationReport for the pass

        Raises:
            RegistrationError: If target_version is malformed (before any
                database access)
            MigrationFailedError: If storage setup, a unit, or a ledger write fails
        """
        self.state = RunnerState.NOT_STARTED
        target = None
        if target_version is not None:
            target = SchemaVersion.parse(target_version)
        started = time.perf_counter()
        applied: List[str] = []

        with migration_span("migrate", dry_run=dry_run) as span:
            try:
                with ExitStack() as stack:
                    try:
                        stack.enter_context(self.ledger.lock())
                        self.ledger.ensure_storage()
                        self.state = RunnerState.STORAGE_ENSURED

                        self.state = RunnerState.DIFFING
                        already_applied = self.ledger.applied_versions()
                    except Exception as e:
                        raise self._failure(None, "storage", e, applied) from e

                    pending = self._compute_pending(already_applied, target)
                    pending_versions = [str(u.version) for u in pending]
                    span.set_attribute("migration.pending_count", len(pending))

                    if not pending:
                        logger.info("No pending migrations")
                    elif dry_run:
                        for unit in pending:
                            logger.info(
                                f"[DRY RUN] Would apply migration {unit.version}: "
                                f"{unit.description}"
                            )
                    else:
                        logger.info(f"Found {len(pending)} pending migrations")
                        for unit in pending:
                            self._apply_one(unit, connection, applied)
            except MigrationFailedError:
                self.metrics.record_pass(len(applied), success=False)
                raise

            self.state = RunnerState.DONE
            self.metrics.record_pass(len(applied), success=True)

        return MigrationReport(
            applied=applied,
            pending=pending_versions,
            dry_run=dry_run,
            state=self.state,
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    def _apply_one(
        self, unit: MigrationUnit, connection: Any, applied: List[str]
    ) -> None:
        version = str(unit.version)
        self.state = RunnerState.APPLYING
        logger.info(
            f"Applying migration {version}: {unit.description}",
            extra={"migration_version": version},
        )

        with migration_span("apply", version=version, name=unit.name or None):

            self._run_hooks("pre_migrate", unit, connection)

            try:
                with self.metrics.time_unit(version):
                    outcome = unit.apply(connection)
            except Exception as e:
                raise self._failure(unit.version, "apply", e, applied) from e

            if outcome is False:
                raise self._failure(unit.version, "apply", None, applied)

            try:
                self.ledger.record_applied(
                    unit.version,
                    self.clock(),
                    description=unit.description,
                    checksum=unit.checksum,
                )
                self.ledger.commit()
            except Exception as e:
                raise self._failure(unit.version, "record", e, applied) from e

            self._run_hooks("post_migrate", unit, connection)

        applied.append(version)
        self.metrics.record_unit_applied(version)
        logger.info(f"Successfully applied migration {version}")

    def _failure(
        self,
        version: Optional[SchemaVersion],
        stage: str,
        cause: Optional[BaseException],
        applied: List[str],
    ) -> MigrationFailedError:
        """Roll back the open transaction and build the error for the caller."""
        self.state = RunnerState.FAILED
        label = str(version) if version is not None else None

        try:
            self.ledger.rollback()
        except Exception as e:
            logger.warning(f"Rollback after failed migration step raised: {e}")

        if stage == "storage":
            message = f"Could not prepare migration ledger: {cause}"
        elif stage == "record":
            message = (
                f"Migration {label} applied but could not be recorded: {cause}. "
                "It will be re-applied on the next run."
            )
        elif cause is None:
            message = f"Migration {label} reported failure"
        else:
            message = f"Migration {label} failed: {cause}"

        logger.error(
            message,
            extra={"migration_version": label, "stage": stage, "applied": list(applied)},
        )
        self.metrics.record_unit_failed(label, stage)
        return MigrationFailedError(
            message, version=label, cause=cause, stage=stage, applied=applied
        )

    def verify_checksums(self) -> List[str]:
        """
        Compare recorded checksums against the registered units.

        Returns:
            Versions whose body changed after being applied
        """
        mismatched = []
        for entry in self.ledger.get_version_history():
            unit = self.registry.get_migration(entry.version)
            if unit is None:
                logger.warning(
                    f"Ledger records version {entry.version}, which is not registered"
                )
                continue
            if entry.checksum and unit.checksum and entry.checksum != unit.checksum:
                logger.warning(
                    f"Migration {entry.version} changed since it was applied "
                    f"(recorded {entry.checksum}, now {unit.checksum})"
                )
                mismatched.append(str(entry.version))
        return mismatched

    def get_status(self) -> Dict[str, Any]:
        """
        Get migration status information.

        Returns:
            Dict with current version, pending migrations, and history
        """
        self.ledger.ensure_storage()
        history = self.ledger.get_version_history()
        applied = {entry.version for entry in history}
        pending = self._compute_pending(applied)
        current = max(applied, default=None)
        latest = self.registry.latest_version()

        return {
            "current_version": str(current) if current else None,
            "latest_version": str(latest) if latest else None,
            "pending_count": len(pending),
            "pending_versions": [str(u.version) for u in pending],
            "applied_count": len(history),
            "history": [
                {
                    "version": str(entry.version),
                    "applied_at": entry.applied_at.isoformat(),
                    "description": entry.description,
                }
                for entry in history
            ],
            "needs_migration": len(pending) > 0,
            "checksum_mismatches": self.verify_checksums(),
        }


def apply_migrations(
    connection: Any,
    registry: Optional[MigrationRegistry] = None,
    backend: Optional[str] = None,
    schema: str = "public",
    ledger_table: Optional[str] = None,
    advisory_lock: bool = True,
    target_version: Optional[str] = None,
    dry_run: bool = False,
) -> MigrationReport:
    """
    Run one migration pass against a connection.

    Args:
        connection: sqlite3 or psycopg connection
        registry: Units to apply (the service's registry by default)
        backend: "sqlite" or "postgresql" (inferred from the connection if omitted)
        schema: PostgreSQL schema holding the ledger
        ledger_table: Ledger table name
        advisory_lock: Hold a PostgreSQL advisory lock for the pass
        target_version: Only apply units up to this version
        dry_run: Log without applying

    Returns:
        MigrationReport for the pass
    """
    if registry is None:
        from keypool.storage.migrations.versions import build_registry

        registry = build_registry()

    ledger = create_ledger(
        connection,
        backend=backend,
        schema=schema,
        table_name=ledger_table,
        advisory_lock=advisory_lock,
    )
    runner = MigrationRunner(registry, ledger)
    return runner.migrate(connection, target_version=target_version, dry_run=dry_run)
