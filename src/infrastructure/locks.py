"""
Redis-based distributed lock.

Serialises seat-affecting operations on one ride across API processes
(``lock:ride:<id>``).  It sits in front of the guarded seat UPDATEs; the
UPDATEs alone keep the seat invariant, the lock keeps competing requests
from burning a transaction just to lose the race.

Implementation uses SET NX EX for acquire and a Lua script for
atomic check-and-delete on release.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

_RELEASE_LUA = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquired(Exception):
    """Raised when the lock stays held by someone else past all retries."""

    def __init__(self, key: str):
        super().__init__(f"Could not acquire lock: {key}")
        self.key = key


class DistributedLock:
    def __init__(
        self,
        client: aioredis.Redis,
        key: str,
        ttl_seconds: int = 10,
        retry_attempts: int = 0,
        retry_delay: float = 0.05,
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try to acquire once. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def acquire_with_retry(self) -> bool:
        """Acquire, polling up to ``retry_attempts`` extra times."""
        for attempt in range(self.retry_attempts + 1):
            if await self.acquire():
                return True
            if attempt < self.retry_attempts:
                await asyncio.sleep(self.retry_delay)
        logger.warning(
            "Lock %s still held after %d attempts", self.key, self.retry_attempts + 1
        )
        return False

    async def release(self) -> None:
        """Release only if we still own the lock (atomic via Lua)."""
        await self.redis.eval(_RELEASE_LUA, 1, self.key, self.token)

    # context-manager support
    async def __aenter__(self):
        if not await self.acquire_with_retry():
            raise LockNotAcquired(self.key)
        return self

    async def __aexit__(self, *args):
        await self.release()


def ride_lock(
    client: aioredis.Redis,
    ride_id: int,
    ttl_seconds: int = 10,
    retry_attempts: int = 20,
    retry_delay: float = 0.05,
) -> DistributedLock:
    return DistributedLock(
        client,
        f"ride:{ride_id}",
        ttl_seconds=ttl_seconds,
        retry_attempts=retry_attempts,
        retry_delay=retry_delay,
    )
