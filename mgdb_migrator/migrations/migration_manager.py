"""Migration execution engine.

The Migrator drives a database from its recorded version to a target
version by running the registered steps in between, one at a time:

1. Validates the target and resolves it in the registry
2. Takes the lock on the control record
3. Runs each step's up() or down() in order, with an optional timeout
4. Persists the new version after every successful step
5. Releases the lock, on success and failure alike

A failing step stops the run. The control record keeps the version of the
last step that succeeded, so retrying resumes from there.

Usage:
    from mgdb_migrator import ConnectionSettings, Migrator, MigratorOptions

    migrator = Migrator(MigratorOptions(version_scheme="integer"))
    await migrator.configure(db=ConnectionSettings("mongodb://localhost/app"))

    migrator.add(Migration(version=1, up=add_index, down=drop_index))
    await migrator.up("latest")
    version = await migrator.get_version()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional

from mgdb_migrator.core.config import MigratorOptions, resolve_logger
from mgdb_migrator.core.db.control_store import ControlRecord, ControlStore, MongoControlStore
from mgdb_migrator.core.db.mongo_client import ConnectionSettings, MongoConnection
from mgdb_migrator.core.errors import (
    ConfigurationError,
    DirectionError,
    LockContentionError,
    MigrationError,
    StepExecutionError,
    StepTimeoutError,
    ValidationError,
)
from mgdb_migrator.core.versioning import LATEST, Version, get_scheme
from mgdb_migrator.migrations.registry import Migration, MigrationRegistry

logger = logging.getLogger(__name__)

UP = "up"
DOWN = "down"


class Migrator:
    """Registers migrations and runs them against one database.

    Instances are independent: share one by passing it around, there is no
    module-level default.
    """

    def __init__(self, options: Optional[MigratorOptions] = None) -> None:
        self.options = options or MigratorOptions()
        self.scheme = get_scheme(self.options.version_scheme)
        self.registry = MigrationRegistry(self.scheme)
        self.db: Any = None
        self._log = resolve_logger(self.options)
        self._connection: Optional[MongoConnection] = None
        self._store: Optional[ControlStore] = None

    async def configure(
        self,
        options: Optional[MigratorOptions] = None,
        **overrides: Any,
    ) -> None:
        """Apply options and connect.

        Args:
            options: Replacement options; defaults to the current ones
            **overrides: Individual option fields to change

        Raises:
            ConfigurationError: If no database is available or the version
                scheme changes after migrations were registered
        """
        opts = options or self.options
        if overrides:
            opts = opts.merged(**overrides)

        scheme = get_scheme(opts.version_scheme)
        if scheme.name != self.scheme.name:
            if len(self.registry):
                raise ConfigurationError(
                    f"Cannot switch version scheme from {self.scheme.name} to "
                    f"{scheme.name} with migrations registered"
                )
            self.scheme = scheme
            self.registry = MigrationRegistry(scheme)

        if opts.db is None and self.db is None:
            raise ConfigurationError("Option db cannot be None")

        if isinstance(opts.db, ConnectionSettings):
            self._close_connection()
            self._connection = MongoConnection.open(opts.db)
            self.db = self._connection.db
        elif opts.db is not None and opts.db is not self.db:
            self._close_connection()
            self.db = opts.db

        self.options = opts
        self._log = resolve_logger(opts)
        self._store = opts.control_store or MongoControlStore(
            self.db[opts.collection_name], self.scheme.zero
        )
        logger.debug(
            "Migrator configured (collection=%s, scheme=%s)",
            opts.collection_name,
            self.scheme.name,
        )

    @property
    def configured(self) -> bool:
        return self._store is not None

    def add(self, migration: Migration | Mapping[str, Any]) -> Migration:
        """Register a migration. See MigrationRegistry.add."""
        return self.registry.add(migration)

    async def up(self, version: Any = LATEST) -> None:
        """Migrate forward to version, or to the highest registered one."""
        await self._migrate(UP, version)

    async def down(self, version: Any) -> None:
        """Migrate backward to version; the zero version undoes everything."""
        await self._migrate(DOWN, version)

    async def migrate_to(self, version: Any, rerun: bool = False) -> None:
        """Migrate to version in whichever direction it lies.

        Args:
            version: A version or "latest"
            rerun: Re-run the up() of version without changing the
                recorded version
        """
        if rerun:
            await self._migrate(UP, version, rerun=True)
            return
        if version == LATEST:
            await self.up(LATEST)
            return

        target = self.scheme.normalize(version)
        current = await self.get_version()
        if self.scheme.compare(target, current) < 0:
            await self.down(target)
        else:
            await self.up(target)

    async def get_version(self) -> Version:
        """Version recorded in the control record."""
        record = await self._require_store().get()
        return self.scheme.normalize(record.version)

    def get_migrations(self) -> list[Migration]:
        """Registered migrations in ascending order."""
        return self.registry.list()

    def get_number_of_migrations(self) -> int:
        return len(self.registry)

    async def unlock(self) -> None:
        """Clear the lock left behind by a crashed run. Use with care."""
        await self._require_store().force_unlock()
        self._log("warning", "Control record forcibly unlocked.")

    async def reset(self) -> None:
        """Forget all migrations and delete the control collection.

        Intended for tests and development only.
        """
        self.registry.reset()
        if self._store is not None:
            await self._store.delete_all()

    async def close(self, force: bool = False) -> None:
        """Release the connection.

        Connections opened by configure() are always closed. With force,
        the client behind a caller-provided database is closed as well.
        """
        if self._connection is not None:
            self._close_connection()
        elif force and self.db is not None:
            client = getattr(self.db, "client", None)
            if client is not None:
                client.close()
        self.db = None
        self._store = None

    def _close_connection(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def _require_store(self) -> ControlStore:
        if self._store is None:
            raise ConfigurationError(
                "Migrator has not been configured. Call configure(...) first"
            )
        return self._store

    def _resolve_target(self, direction: str, version: Any) -> Version:
        if version == LATEST:
            if direction != UP:
                raise ValidationError(f"'{LATEST}' is only a valid target for up")
            return self.registry.latest()
        return self.scheme.normalize(version)

    def _check_direction(self, direction: str, current: Version, target: Version) -> None:
        cmp = self.scheme.compare(current, target)
        if direction == UP and cmp > 0:
            raise DirectionError(f"Cannot migrate up from {current} to {target}")
        if direction == DOWN and cmp < 0:
            raise DirectionError(f"Cannot migrate down from {current} to {target}")

    async def _migrate(self, direction: str, version: Any, rerun: bool = False) -> None:
        if version != LATEST:
            version = self.scheme.normalize(version)
        store = self._require_store()

        if not len(self.registry):
            self._log("warning", "No pending migrations.")
            return

        target = self._resolve_target(direction, version)
        end_idx = self.registry.find_index(target)

        if not rerun:
            # Early answer for the common mistake; re-checked under the lock
            peek = await store.get()
            self._check_direction(direction, self.scheme.normalize(peek.version), target)

        record = await store.acquire_lock()
        if record is None:
            if self.options.skip_if_locked:
                self._log("info", "Not migrating, control is locked.")
                return
            raise LockContentionError("Not migrating, control is locked.")

        # Written back on unlock; advanced after every persisted step
        progress = _RunProgress(record.version)
        try:
            progress.version = self.scheme.normalize(record.version)
            if rerun:
                await self._rerun(end_idx)
            else:
                await self._execute(store, direction, target, end_idx, progress)
        except BaseException:
            try:
                await store.release_lock(progress.version)
            except Exception as release_error:
                self._log(
                    "error",
                    f"Failed to unlock control record at version {progress.version}: "
                    f"{release_error}",
                )
            raise
        await store.release_lock(progress.version)

    async def _rerun(self, idx: int) -> None:
        migration = self.registry[idx]
        self._log("info", f"Rerunning version {migration.version}")
        try:
            await self._run_step(migration, UP)
        except StepTimeoutError:
            self._log("error", f"Encountered an error while rerunning {migration.version}")
            raise
        except Exception as e:
            self._log("error", f"Encountered an error while rerunning {migration.version}")
            raise StepExecutionError(migration.version, migration.version, UP, e) from e
        self._log("info", "Finished migrating.")

    async def _execute(
        self,
        store: ControlStore,
        direction: str,
        target: Version,
        end_idx: int,
        progress: "_RunProgress",
    ) -> None:
        """Run the steps between progress.version and target."""
        current = progress.version
        if self.scheme.compare(current, target) == 0:
            if self.options.log_if_latest:
                self._log("info", f"Not migrating, already at version {target}")
            return

        start_idx = self.registry.find_index(current)
        self._check_direction(direction, current, target)

        self._log(
            "info",
            f"Migrating from version {self.registry[start_idx].version} "
            f"-> {self.registry[end_idx].version}",
        )

        if direction == UP:
            transitions = [(i, i + 1, i + 1) for i in range(start_idx, end_idx)]
        else:
            transitions = [(i, i - 1, i) for i in range(start_idx, end_idx, -1)]

        for src_idx, dest_idx, step_idx in transitions:
            prev_version = self.registry[src_idx].version
            dest_version = self.registry[dest_idx].version
            try:
                await self._run_step(self.registry[step_idx], direction)
            except StepTimeoutError:
                self._log_failure(prev_version, dest_version)
                raise
            except Exception as e:
                self._log_failure(prev_version, dest_version)
                raise StepExecutionError(prev_version, dest_version, direction, e) from e

            # The step is done even if recording it fails below
            progress.version = dest_version
            await self._persist(store, dest_version)

        self._log("info", "Finished migrating.")

    async def _run_step(self, migration: Migration, direction: str) -> None:
        self._log("info", f"Running {direction}() on version {migration.label}")
        step = getattr(migration, direction)
        timeout = self.options.timeout
        if timeout is None:
            await step(self.db, self._log)
            return

        task = asyncio.ensure_future(step(self.db, self._log))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task not in done:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise StepTimeoutError(migration.version, direction, timeout)
        # Re-raises the step's own exception, TimeoutError included
        task.result()

    async def _persist(self, store: ControlStore, version: Version) -> ControlRecord:
        record = await store.set(version, True)
        if record is None:
            raise MigrationError(f"Control record update to version {version} was not acknowledged")
        return record

    def _log_failure(self, prev_version: Version, dest_version: Version) -> None:
        self._log(
            "error",
            f"Encountered an error while migrating from {prev_version} to {dest_version}",
        )


class _RunProgress:
    """Last version known to be reached by the current run."""

    def __init__(self, version: Any) -> None:
        self.version = version
