"""Versioned schema and data migrations for MongoDB.

This package provides a migration runner that:
- Keeps the applied version in a control record inside the database
- Runs registered up/down steps in version order to reach any target
- Locks the control record so only one process migrates at a time
- Persists progress after every step so a failed run can be resumed

Usage:
    from mgdb_migrator import ConnectionSettings, Migration, Migrator, MigratorOptions

    migrator = Migrator(MigratorOptions(db=ConnectionSettings("mongodb://localhost/app")))
    await migrator.configure()
    migrator.add(Migration(version="0.0.1", up=up_fn, down=down_fn, name="Add index"))
    await migrator.up("latest")
"""

from mgdb_migrator.core.config import LogSink, MigratorOptions
from mgdb_migrator.core.db.control_store import ControlRecord, ControlStore, MongoControlStore
from mgdb_migrator.core.db.mongo_client import ConnectionSettings
from mgdb_migrator.core.db.redis_control_store import RedisControlStore
from mgdb_migrator.core.errors import (
    ConfigurationError,
    DirectionError,
    LockContentionError,
    MigrationError,
    NotFoundError,
    StepExecutionError,
    StepTimeoutError,
    ValidationError,
)
from mgdb_migrator.core.versioning import LATEST, IntegerScheme, SemVerScheme, get_scheme
from mgdb_migrator.migrations.migration_manager import Migrator
from mgdb_migrator.migrations.registry import Migration, MigrationRegistry

__all__ = [
    "LATEST",
    "ConfigurationError",
    "ConnectionSettings",
    "ControlRecord",
    "ControlStore",
    "DirectionError",
    "IntegerScheme",
    "LockContentionError",
    "LogSink",
    "Migration",
    "MigrationError",
    "MigrationRegistry",
    "Migrator",
    "MigratorOptions",
    "MongoControlStore",
    "NotFoundError",
    "RedisControlStore",
    "SemVerScheme",
    "StepExecutionError",
    "StepTimeoutError",
    "ValidationError",
    "get_scheme",
]
