"""Control record persistence.

The control record is the single document holding the current version and
the run lock:

    {_id: "control", version: <version>, locked: <bool>, lockedAt: <datetime>}

All writes go through single-document atomic operations. Taking the lock is
a conditional update that only matches an unlocked record, so concurrent
callers cannot both win it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

logger = logging.getLogger(__name__)

CONTROL_ID = "control"


@dataclass(frozen=True)
class ControlRecord:
    """Snapshot of the persisted control record."""

    version: Any
    locked: bool
    locked_at: Optional[datetime] = None
    id: str = CONTROL_ID

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "ControlRecord":
        return cls(
            version=doc["version"],
            locked=bool(doc.get("locked", False)),
            locked_at=doc.get("lockedAt"),
            id=doc.get("_id", CONTROL_ID),
        )


class ControlStore(Protocol):
    """Storage backend for the control record."""

    async def get(self) -> ControlRecord:
        """Fetch the record, creating it at zero/unlocked if absent."""

    async def set(self, version: Any, locked: bool) -> Optional[ControlRecord]:
        """Write version and locked together, None if not acknowledged."""

    async def acquire_lock(self) -> Optional[ControlRecord]:
        """Lock the record if unlocked; None when someone else holds it."""

    async def release_lock(self, version: Any) -> Optional[ControlRecord]:
        """Unconditionally unlock, recording version."""

    async def force_unlock(self) -> None:
        """Clear the lock without touching the version."""

    async def delete_all(self) -> None:
        """Remove the record and everything stored next to it."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MongoControlStore:
    """ControlStore backed by a motor collection.

    Usage:
        store = MongoControlStore(db["migrations"], zero="0.0.0")
        record = await store.get()
    """

    def __init__(self, collection: Any, zero: Any) -> None:
        self.collection = collection
        self.zero = zero

    async def get(self) -> ControlRecord:
        try:
            doc = await self._upsert_control()
        except DuplicateKeyError:
            # Lost an insert race; the record exists now
            logger.debug("Control record created concurrently, re-reading")
            doc = await self._upsert_control()
        return ControlRecord.from_document(doc)

    async def _upsert_control(self) -> Mapping[str, Any]:
        return await self.collection.find_one_and_update(
            {"_id": CONTROL_ID},
            {"$setOnInsert": {"version": self.zero, "locked": False}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    async def set(self, version: Any, locked: bool) -> Optional[ControlRecord]:
        if not isinstance(locked, bool):
            raise TypeError(f"locked must be a bool, got {type(locked).__name__}")

        result = await self.collection.update_one(
            {"_id": CONTROL_ID},
            {"$set": {"version": version, "locked": locked}},
            upsert=True,
        )
        if not result.acknowledged:
            logger.warning("Control record write for version %s not acknowledged", version)
            return None
        return ControlRecord(version=version, locked=locked)

    async def acquire_lock(self) -> Optional[ControlRecord]:
        await self.get()
        doc = await self.collection.find_one_and_update(
            {"_id": CONTROL_ID, "locked": False},
            {"$set": {"locked": True, "lockedAt": _utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            return None
        return ControlRecord.from_document(doc)

    async def release_lock(self, version: Any) -> Optional[ControlRecord]:
        return await self.set(version, False)

    async def force_unlock(self) -> None:
        await self.collection.update_one(
            {"_id": CONTROL_ID},
            {"$set": {"locked": False}},
        )

    async def delete_all(self) -> None:
        result = await self.collection.delete_many({})
        logger.debug("Deleted %s documents from control collection", result.deleted_count)
