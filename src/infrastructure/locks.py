"""
Redis-based distributed lock.

Used by the expiry scheduler so that only one process sweeps overdue
bookings at a time.  Correctness of the sweep does not depend on it (every
forced transition is a conditional write), it only avoids duplicate work
and duplicate log noise when several API processes run the loop.

Acquire is ``SET NX EX``; release is an atomic check-and-delete in Lua so
a lock whose TTL lapsed mid-sweep is never released by its former owner.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis


class LockNotAcquired(RuntimeError):
    """Another process holds the lock."""


class DistributedLock:
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self, client: aioredis.Redis, name: str, ttl_seconds: int = 60
    ):
        self.redis = client
        self.key = f"towdispatch:lock:{name}"
        self.ttl = ttl_seconds
        self.token = uuid.uuid4().hex

    async def acquire(self) -> bool:
        """Try once, without waiting. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def release(self) -> bool:
        """Release only if we still own the lock. Returns True if deleted."""
        return bool(await self.redis.eval(self.RELEASE_SCRIPT, 1, self.key, self.token))

    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()
