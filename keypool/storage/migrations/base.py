"""
Keypool Migration Framework - Base Classes.

Provides version identifiers, migration units and the migration registry.
"""

import functools
import hashlib
import inspect
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union

from keypool.exceptions import DuplicateVersionError, RegistrationError

logger = logging.getLogger(__name__)

# "1.2.0", "v1.2.0", "1.2.0-rc1", "1.2.0rc1", "1.2.0-rc.1"; not "1.2.0.1"
_VERSION_STRING = re.compile(
    r"^[vV]?(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)"
    r"(?:[-+]?(?P<label>[0-9A-Za-z]+(?:\.[0-9A-Za-z]+)*))?$"
)

# "V1_2_0_AddKeyValidationResult", "v1_2_0b_fix_index"
_VERSION_NAME = re.compile(
    r"^[vV](?P<major>\d+)_(?P<minor>\d+)_(?P<patch>\d+)"
    r"(?P<label>[A-Za-z][0-9A-Za-z]*)?(?:_(?P<rest>.+))?$"
)

ApplyFunction = Callable[[Any], Any]


@functools.total_ordering
@dataclass(frozen=True)
class SchemaVersion:
    """
    Totally ordered schema version identifier.

    Attributes:
        major: Major version number
        minor: Minor version number
        patch: Patch version number
        label: Optional disambiguating label ("" when absent)

    An unlabelled version sorts before a labelled one with the same
    numbers; labels compare lexicographically.
    """

    major: int
    minor: int
    patch: int
    label: str = ""

    @classmethod
    def parse(cls, value: Union[str, "SchemaVersion"]) -> "SchemaVersion":
        """
        Parse a version string or a declared migration name.

        Args:
            value: "1.2.0", "1.2.0-rc1" or a name like "V1_2_0_AddKeyValidationResult"

        Returns:
            Parsed SchemaVersion

        Raises:
            RegistrationError: If the value is not a recognizable version
        """
        if isinstance(value, SchemaVersion):
            return value
        if not isinstance(value, str):
            raise RegistrationError(f"Invalid version identifier: {value!r}")

        text = value.strip()
        match = _VERSION_STRING.match(text) or _VERSION_NAME.match(text)
        if not match:
            raise RegistrationError(
                f"Invalid version identifier: {value!r}", version=str(value)
            )

        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor")),
            patch=int(match.group("patch")),
            label=match.group("label") or "",
        )

    def _sort_key(self) -> tuple:
        return (self.major, self.minor, self.patch, self.label != "", self.label)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SchemaVersion):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.patch}"
        return f"{base}-{self.label}" if self.label else base


def describe_name(name: str) -> str:
    """Turn a declared migration name into a human-readable description."""
    match = _VERSION_NAME.match(name)
    rest = match.group("rest") if match else name
    if not rest:
        return ""
    if "_" in rest:
        words = [w for w in rest.split("_") if w]
    else:
        words = re.sub(r"(?<!^)(?=[A-Z][a-z])", " ", rest).split()
    if not words:
        return ""
    sentence = " ".join(w.lower() for w in words)
    return sentence[0].upper() + sentence[1:]


def compute_checksum(func: ApplyFunction) -> str:
    """Compute checksum of a migration body for drift detection."""
    try:
        source = inspect.getsource(func)
    except (OSError, TypeError):
        source = getattr(func, "__qualname__", repr(func))
    return hashlib.sha256(source.encode()).hexdigest()[:16]


@dataclass(frozen=True)
class MigrationUnit:
    """
    One versioned schema change.

    Attributes:
        version: Version identifier used for ordering and ledger entries
        description: Human-readable description of the change
        apply: Function taking a database connection. Raising or returning
            False means the change failed.
        name: Declared name of the unit
        checksum: Hash of the apply function source

    Units must be idempotent: the runner may re-apply a unit whose schema
    effect landed but whose ledger entry did not.
    """

    version: SchemaVersion
    description: str
    apply: ApplyFunction = field(compare=False, repr=False)
    name: str = ""
    checksum: Optional[str] = field(default=None, compare=False)

    @classmethod
    def from_function(
        cls,
        func: ApplyFunction,
        version: Optional[str] = None,
        description: Optional[str] = None,
    ) -> "MigrationUnit":
        """
        Build a unit from a plain function.

        The version is parsed from the function name when not given,
        e.g. ``V1_2_0_AddKeyValidationResult`` becomes 1.2.0.
        """
        name = getattr(func, "__name__", "")
        parsed = SchemaVersion.parse(version if version is not None else name)

        if description is None:
            doc = inspect.getdoc(func)
            description = doc.splitlines()[0] if doc else describe_name(name)

        return cls(
            version=parsed,
            description=description,
            apply=func,
            name=name,
            checksum=compute_checksum(func),
        )


def migration(
    version: Optional[str] = None,
    description: Optional[str] = None,
) -> Callable[[ApplyFunction], MigrationUnit]:
    """
    Decorator that turns a function into a MigrationUnit.

    Example:
        @migration()
        def V1_3_0_AddGroupWeight(connection):
            ensure_table(connection, table_shape(Group))
    """

    def decorator(func: ApplyFunction) -> MigrationUnit:
        return MigrationUnit.from_function(func, version, description)

    return decorator


class MigrationRegistry:
    """
    Ordered collection of migration units.

    Built explicitly during process initialization and handed to the
    runner. Registering two units with the same version fails immediately.
    """

    def __init__(self, units: Iterable[MigrationUnit] = ()) -> None:
        self._units: List[MigrationUnit] = []
        self._by_version: Dict[SchemaVersion, MigrationUnit] = {}
        for unit in units:
            self.register(unit)

    def register(self, unit: MigrationUnit) -> MigrationUnit:
        """
        Register a migration unit.

        Args:
            unit: The unit to register

        Returns:
            The unit (for chaining)

        Raises:
            RegistrationError: If the unit carries no valid version
            DuplicateVersionError: If the version is already registered
        """
        if not isinstance(getattr(unit, "version", None), SchemaVersion):
            raise RegistrationError(
                f"Migration {getattr(unit, 'name', unit)!r} must have a version"
            )

        existing = self._by_version.get(unit.version)
        if existing is not None:
            raise DuplicateVersionError(
                f"Duplicate migration version {unit.version}: "
                f"{existing.name or existing.description!r} and "
                f"{unit.name or unit.description!r}",
                version=str(unit.version),
            )

        self._units.append(unit)
        self._by_version[unit.version] = unit
        logger.debug(f"Registered migration {unit.version} ({unit.name})")
        return unit

    def get_migration(
        self, version: Union[str, SchemaVersion]
    ) -> Optional[MigrationUnit]:
        """Get a registered unit by version, or None."""
        return self._by_version.get(SchemaVersion.parse(version))

    def get_all_migrations(self) -> List[MigrationUnit]:
        """Get all units in ascending version order."""
        return sorted(self._units, key=lambda u: u.version)

    def latest_version(self) -> Optional[SchemaVersion]:
        """Highest registered version, or None for an empty registry."""
        return max(self._by_version, default=None)

    def __len__(self) -> int:
        return len(self._units)

    def __iter__(self) -> Iterator[MigrationUnit]:
        return iter(self.get_all_migrations())

    def __contains__(self, version: object) -> bool:
        if isinstance(version, MigrationUnit):
            version = version.version
        try:
            return SchemaVersion.parse(version) in self._by_version  # type: ignore[arg-type]
        except RegistrationError:
            return False
