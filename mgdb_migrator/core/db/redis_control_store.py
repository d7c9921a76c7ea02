"""Redis-backed control record store.

Keeps the control record in a Redis hash so the run lock can be shared by
services that do not all talk to the same MongoDB deployment. Steps still
receive the document database; only the version and lock live here.

Layout:
    <namespace>:control -> {version, locked ("0" | "1"), lockedAt (ISO-8601)}

Usage:
    client = redis_from_env()
    store = RedisControlStore(client, zero="0.0.0")
    options = MigratorOptions(db=settings, control_store=store)
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as redis

from mgdb_migrator.core.db.control_store import CONTROL_ID, ControlRecord

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "migrations"

# Flip locked 0 -> 1 only if currently unlocked; returns the version or nil
_ACQUIRE_LOCK_SCRIPT = """
if redis.call('HGET', KEYS[1], 'locked') == '0' then
    redis.call('HSET', KEYS[1], 'locked', '1', 'lockedAt', ARGV[1])
    return redis.call('HGET', KEYS[1], 'version')
end
return false
"""


def _get_redis_url() -> str:
    """Get Redis connection URL from environment."""
    return (
        os.environ.get("MIGRATE_REDIS_URL")
        or os.environ.get("REDIS_URL")
        or "redis://localhost:6379/0"
    )


def redis_from_env() -> redis.Redis:
    """Create a Redis client from MIGRATE_REDIS_URL / REDIS_URL."""
    return redis.Redis.from_url(
        _get_redis_url(),
        decode_responses=True,
        socket_connect_timeout=5.0,
        max_connections=10,
    )


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class RedisControlStore:
    """ControlStore backed by a Redis hash."""

    def __init__(
        self,
        client: redis.Redis,
        zero: Any,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        self.client = client
        self.zero = zero
        self.namespace = namespace
        self.key = f"{namespace}:{CONTROL_ID}"
        self._acquire = client.register_script(_ACQUIRE_LOCK_SCRIPT)

    def _record(self, fields: dict[Any, Any]) -> ControlRecord:
        fields = {_text(k): _text(v) for k, v in fields.items()}
        locked_at = fields.get("lockedAt")
        return ControlRecord(
            version=fields["version"],
            locked=fields.get("locked") == "1",
            locked_at=datetime.fromisoformat(locked_at) if locked_at else None,
        )

    async def get(self) -> ControlRecord:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.hsetnx(self.key, "version", str(self.zero))
            pipe.hsetnx(self.key, "locked", "0")
            pipe.hgetall(self.key)
            results = await pipe.execute()
        return self._record(results[-1])

    async def set(self, version: Any, locked: bool) -> Optional[ControlRecord]:
        if not isinstance(locked, bool):
            raise TypeError(f"locked must be a bool, got {type(locked).__name__}")
        await self.client.hset(
            self.key,
            mapping={"version": str(version), "locked": "1" if locked else "0"},
        )
        return ControlRecord(version=version, locked=locked)

    async def acquire_lock(self) -> Optional[ControlRecord]:
        await self.get()
        locked_at = datetime.now(timezone.utc)
        version = await self._acquire(keys=[self.key], args=[locked_at.isoformat()])
        if version is None:
            return None
        return ControlRecord(version=_text(version), locked=True, locked_at=locked_at)

    async def release_lock(self, version: Any) -> Optional[ControlRecord]:
        return await self.set(version, False)

    async def force_unlock(self) -> None:
        await self.client.hset(self.key, "locked", "0")

    async def delete_all(self) -> None:
        deleted = 0
        async for key in self.client.scan_iter(match=f"{self.namespace}:*"):
            deleted += await self.client.delete(key)
        logger.debug("Deleted %s keys under %s:*", deleted, self.namespace)
