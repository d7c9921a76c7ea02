"""Exception hierarchy for the migration runner.

Every error raised by the package derives from MigrationError so callers can
catch the whole family in one place. Validation and configuration problems
are raised before the control record is locked; step failures are raised
after the lock is released and progress has been persisted.
"""

from __future__ import annotations

from typing import Any


class MigrationError(Exception):
    """Base class for all migration errors."""


class ValidationError(MigrationError, ValueError):
    """Raised for malformed versions or migrations."""


class NotFoundError(MigrationError, LookupError):
    """Raised when a version is not present in the registry."""


class DirectionError(MigrationError):
    """Raised when the target is on the wrong side of the current version."""


class ConfigurationError(MigrationError):
    """Raised when the migrator is used before it has been configured."""


class LockContentionError(MigrationError):
    """Raised when another run already holds the control lock."""


class StepTimeoutError(MigrationError, TimeoutError):
    """Raised when a migration step exceeds the configured timeout."""

    def __init__(self, version: Any, direction: str, timeout: float) -> None:
        super().__init__(
            f"Migration {direction}() on version {version} timed out after {timeout}s"
        )
        self.version = version
        self.direction = direction
        self.timeout = timeout


class StepExecutionError(MigrationError):
    """Raised when a step fails during a run.

    Attributes:
        from_version: Version the database was at before the failed step
        to_version: Version the failed step was migrating to
        direction: "up" or "down"
        cause: The underlying exception
    """

    def __init__(
        self,
        from_version: Any,
        to_version: Any,
        direction: str,
        cause: BaseException,
    ) -> None:
        super().__init__(
            f"Encountered an error while migrating from {from_version} "
            f"to {to_version}: {cause}"
        )
        self.from_version = from_version
        self.to_version = to_version
        self.direction = direction
        self.cause = cause
