"""Migrator options and log sink resolution.

Options are an explicit value passed to the Migrator; there is no shared
module-level instance. Override individual fields with merged():

    options = MigratorOptions(db=ConnectionSettings("mongodb://localhost/app"))
    quiet = options.merged(log=False, timeout=30)
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from mgdb_migrator.core.errors import ConfigurationError

if TYPE_CHECKING:
    from mgdb_migrator.core.db.control_store import ControlStore
    from mgdb_migrator.core.db.mongo_client import ConnectionSettings
    from mgdb_migrator.core.versioning import VersionScheme

# Called as sink(level, *parts) with a syslog level name
LogSink = Callable[..., None]

SYSLOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "alert": logging.CRITICAL,
}

DEFAULT_COLLECTION = "migrations"

_migrator_logger = logging.getLogger("mgdb_migrator.migrator")


def logging_sink(level: str, *parts: Any) -> None:
    """Forward (level, *parts) to the stdlib logger."""
    _migrator_logger.log(
        SYSLOG_LEVELS.get(level, logging.INFO),
        " ".join(str(part) for part in parts),
    )


def null_sink(level: str, *parts: Any) -> None:
    return None


@dataclass(frozen=True)
class MigratorOptions:
    """Configuration for a Migrator.

    Attributes:
        log: False disables logging entirely
        logger: Custom sink called as logger(level, *parts)
        log_if_latest: Log "already at version" when there is nothing to do
        collection_name: Collection holding the control record
        timeout: Per-step timeout in seconds, None for unbounded
        db: ConnectionSettings to connect with, or an open database handle
        version_scheme: "semver" or "integer"
        skip_if_locked: Return quietly instead of raising LockContentionError
        control_store: Store to use instead of the db's collection
    """

    log: bool = True
    logger: Optional[LogSink] = None
    log_if_latest: bool = True
    collection_name: str = DEFAULT_COLLECTION
    timeout: Optional[float] = None
    db: Union["ConnectionSettings", Any, None] = None
    version_scheme: Union[str, "VersionScheme"] = "semver"
    skip_if_locked: bool = False
    control_store: Optional["ControlStore"] = None

    def __post_init__(self) -> None:
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout}")
        if not self.collection_name:
            raise ConfigurationError("collection_name cannot be empty")
        if self.logger is not None and not callable(self.logger):
            raise ConfigurationError("logger must be callable")

    def merged(self, **overrides: Any) -> "MigratorOptions":
        """Copy of these options with the given fields replaced."""
        known = {f.name for f in dataclasses.fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigurationError(f"Unknown migrator options: {sorted(unknown)}")
        return dataclasses.replace(self, **overrides)


def resolve_logger(options: MigratorOptions) -> LogSink:
    """Pick the log sink for options.

    log=False wins over a custom logger; otherwise a custom logger wins over
    the stdlib forwarding sink.
    """
    if not options.log:
        return null_sink
    if options.logger is not None:
        return options.logger
    return logging_sink
