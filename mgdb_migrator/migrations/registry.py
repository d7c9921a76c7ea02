"""Registry of migration steps ordered by version.

Migrations are defined like:

    Migration(
        version="0.0.1",               # required, identifies the step
        up=async_fn(db, logger),       # required, migrates upwards
        down=async_fn(db, logger),     # required, migrates downwards
        name="Something",              # optional display name
    )

The registry always holds a synthetic zero migration at index 0 so that
"nothing applied" is a resolvable position like any other version.
"""

from __future__ import annotations

import dataclasses
import functools
import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from mgdb_migrator.core.errors import NotFoundError, ValidationError
from mgdb_migrator.core.versioning import Version, VersionScheme

logger = logging.getLogger(__name__)

StepFunction = Callable[[Any, Callable[..., None]], Awaitable[Any]]


def _as_coroutine_function(fn: Callable[..., Any]) -> StepFunction:
    """Wrap fn so calling it always yields an awaitable."""
    if inspect.iscoroutinefunction(fn):
        return fn

    @functools.wraps(fn)
    async def wrapper(db: Any, log: Callable[..., None]) -> Any:
        result = fn(db, log)
        if inspect.isawaitable(result):
            result = await result
        return result

    return wrapper


async def _noop(db: Any, log: Callable[..., None]) -> None:
    return None


@dataclass(frozen=True)
class Migration:
    """A single migration step.

    Attributes:
        version: Version identifier, unique within a registry
        up: Called as up(db, logger) to migrate forward
        down: Called as down(db, logger) to migrate backward
        name: Optional display name
    """

    version: Version
    up: StepFunction
    down: StepFunction
    name: str = ""

    def __post_init__(self) -> None:
        if not callable(self.up):
            raise ValidationError("Migration must supply an up function.")
        if not callable(self.down):
            raise ValidationError("Migration must supply a down function.")
        if self.name is None:
            object.__setattr__(self, "name", "")
        elif not isinstance(self.name, str):
            raise ValidationError("Migration name must be a string.")
        object.__setattr__(self, "up", _as_coroutine_function(self.up))
        object.__setattr__(self, "down", _as_coroutine_function(self.down))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Migration":
        """Build a migration from a dict with version/up/down/name keys."""
        unknown = set(data) - {"version", "up", "down", "name"}
        if unknown:
            raise ValidationError(f"Unknown migration fields: {sorted(unknown)}")
        for field_name in ("up", "down"):
            if field_name not in data:
                raise ValidationError(f"Migration must supply a {field_name} function.")
        if "version" not in data:
            raise ValidationError("Migration must supply a version.")
        return cls(
            version=data["version"],
            up=data["up"],
            down=data["down"],
            name=data.get("name") or "",
        )

    @property
    def label(self) -> str:
        """Version followed by the name in parentheses when one is set."""
        return f"{self.version} ({self.name})" if self.name else str(self.version)


class MigrationRegistry:
    """Ordered, duplicate-free collection of migrations.

    Usage:
        registry = MigrationRegistry(get_scheme("integer"))
        registry.add(Migration(version=1, up=up_v1, down=down_v1))
        registry.find_index(1)  # -> 1, index 0 is the zero migration
    """

    def __init__(self, scheme: VersionScheme) -> None:
        self.scheme = scheme
        self._zero = Migration(version=scheme.zero, up=_noop, down=_noop)
        self._migrations: list[Migration] = [self._zero]

    def add(self, migration: Migration | Mapping[str, Any]) -> Migration:
        """Validate and register a migration, keeping the list sorted.

        Returns:
            The registered migration with its version normalized.

        Raises:
            ValidationError: Bad version, version <= zero, or duplicate version
        """
        if isinstance(migration, Mapping):
            migration = Migration.from_mapping(migration)
        elif not isinstance(migration, Migration):
            raise ValidationError(
                f"Expected a Migration or mapping, got {type(migration).__name__}"
            )

        try:
            version = self.scheme.normalize(migration.version)
        except ValidationError as e:
            raise ValidationError(
                f"Migration must supply a valid {self.scheme.name} version: {e}"
            ) from e

        if self.scheme.compare(version, self.scheme.zero) <= 0:
            raise ValidationError(
                f"Migration version must be greater than {self.scheme.zero}"
            )

        key = self.scheme.key(version)
        if any(self.scheme.key(m.version) == key for m in self._migrations):
            raise ValidationError(f"Migration version {version} is already registered")

        if version != migration.version:
            migration = dataclasses.replace(migration, version=version)

        self._migrations.append(migration)
        self._migrations.sort(key=lambda m: self.scheme.key(m.version))
        logger.debug("Registered migration %s", migration.label)
        return migration

    def list(self) -> list[Migration]:
        """Registered migrations in ascending order, excluding zero."""
        return list(self._migrations[1:])

    def reset(self) -> None:
        """Drop every migration except the zero migration."""
        self._migrations = [self._zero]

    def find_index(self, version: Any) -> int:
        """Position of the exact version, 0 being the zero migration.

        Raises:
            NotFoundError: If the version was never registered
        """
        key = self.scheme.key(self.scheme.normalize(version))
        for idx, migration in enumerate(self._migrations):
            if self.scheme.key(migration.version) == key:
                return idx
        raise NotFoundError(f"Migration version {version} not found")

    def latest(self) -> Version:
        """Highest registered version, or zero when nothing is registered."""
        return self._migrations[-1].version

    def __getitem__(self, idx: int) -> Migration:
        return self._migrations[idx]

    def __len__(self) -> int:
        return len(self._migrations) - 1
