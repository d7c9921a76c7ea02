"""Shared pytest fixtures for migrator tests.

This file provides common fixtures used across all test modules:
- An in-memory database standing in for motor
- A log sink that records messages
- Step recorders that build migrations and log their calls
- Configured migrators for both version schemes
"""

from typing import Any, Callable, List, Optional, Tuple

import pytest
import pytest_asyncio

from mgdb_migrator import Migration, Migrator, MigratorOptions
from tests.fixtures.mock_collection import MockDatabase

COLLECTION = "_migration"


class LogRecorder:
    """Log sink capturing (level, message) pairs."""

    def __init__(self):
        self.records: List[Tuple[str, str]] = []

    def __call__(self, level: str, *parts: Any) -> None:
        self.records.append((level, " ".join(str(p) for p in parts)))

    def messages(self, level: Optional[str] = None) -> List[str]:
        return [msg for lvl, msg in self.records if level is None or lvl == level]


class StepRecorder:
    """Builds migrations whose up/down append to a shared call log."""

    def __init__(self):
        self.calls: List[Tuple[str, Any]] = []

    def migration(
        self,
        version: Any,
        fail_up: bool = False,
        fail_down: bool = False,
        up_hook: Optional[Callable] = None,
    ) -> Migration:
        async def up(db, log):
            self.calls.append(("up", version))
            if up_hook is not None:
                await up_hook(db, log)
            if fail_up:
                raise RuntimeError(f"up {version} exploded")

        async def down(db, log):
            self.calls.append(("down", version))
            if fail_down:
                raise RuntimeError(f"down {version} exploded")

        return Migration(version=version, up=up, down=down, name=f"v{version}")

    def reset(self) -> None:
        self.calls.clear()


@pytest.fixture
def mock_db() -> MockDatabase:
    """Create a fresh MockDatabase for each test."""
    db = MockDatabase()
    yield db
    db.reset()


@pytest.fixture
def log_recorder() -> LogRecorder:
    return LogRecorder()


@pytest.fixture
def steps() -> StepRecorder:
    recorder = StepRecorder()
    yield recorder
    recorder.reset()


@pytest_asyncio.fixture
async def migrator(mock_db, log_recorder) -> Migrator:
    """Integer-scheme migrator configured against the mock database."""
    m = Migrator(
        MigratorOptions(
            logger=log_recorder,
            collection_name=COLLECTION,
            version_scheme="integer",
        )
    )
    await m.configure(db=mock_db)
    yield m
    await m.reset()
    await m.close()


@pytest_asyncio.fixture
async def semver_migrator(mock_db, log_recorder) -> Migrator:
    m = Migrator(MigratorOptions(logger=log_recorder, collection_name=COLLECTION))
    await m.configure(db=mock_db)
    yield m
    await m.reset()
    await m.close()
