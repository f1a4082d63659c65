"""
Redis-based Distributed Locking.

Closes the same-tournament race between concurrent advancement jobs: two
workers that both see a fully decided round must not both create the next
one. The database row lock and unique constraints back this up, but the
Redis lock keeps the second worker from doing any work at all.

Lock keys:
- lock:tournament:{id}:bracket  # round creation / finalization
"""

import asyncio
import hashlib
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncGenerator, Optional
from uuid import uuid4

import redis.asyncio as redis

from bracket.logging_config import get_logger

logger = get_logger(__name__)


class LockType(Enum):
    """Lock granularity types."""

    BRACKET = "bracket"


@dataclass
class LockInfo:
    """Lock metadata."""

    lock_key: str
    owner_id: str
    acquired_at: float
    expires_at: float
    lock_type: LockType


class DistributedLockError(Exception):
    """Base lock error."""

    pass


class LockAcquisitionError(DistributedLockError):
    """Failed to acquire lock within timeout."""

    pass


class DistributedLockManager:
    """
    Redis-based Distributed Lock Manager.

    Redis commands:
    - SET NX PX: atomic acquire with expiry (no deadlock on crashed holders)
    - GET + DEL (Lua): atomic owner-checked release
    """

    # Lua script for atomic lock release with owner verification
    RELEASE_LOCK_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        default_lock_timeout_ms: int = 30000,
        default_acquire_timeout_ms: int = 5000,
        retry_interval_ms: int = 50,
    ):
        self.redis = redis_client
        self.default_lock_timeout_ms = default_lock_timeout_ms
        self.default_acquire_timeout_ms = default_acquire_timeout_ms
        self.retry_interval_ms = retry_interval_ms

        # Instance ID for lock ownership
        self._instance_id = str(uuid4())

        self._release_script = None

    async def _ensure_scripts(self) -> None:
        """Register Lua scripts if not already done."""
        if self._release_script is None:
            self._release_script = self.redis.register_script(self.RELEASE_LOCK_SCRIPT)

    def _make_lock_key(self, tournament_id: int, lock_type: LockType) -> str:
        return f"lock:tournament:{tournament_id}:{lock_type.value}"

    def _make_owner_token(self) -> str:
        """Unique token per acquisition: instance, timestamp, random suffix."""
        raw = f"{self._instance_id}:{time.time_ns()}:{uuid4().hex[:8]}"
        return hashlib.sha256(raw.encode()).hexdigest()[:32]

    async def acquire(
        self,
        tournament_id: int,
        lock_type: LockType,
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> LockInfo:
        """
        Acquire distributed lock.

        Retries SET NX PX every ``retry_interval_ms`` until
        ``acquire_timeout_ms`` elapses.

        Raises:
            LockAcquisitionError: If lock cannot be acquired within timeout
        """
        await self._ensure_scripts()

        lock_timeout = lock_timeout_ms or self.default_lock_timeout_ms
        acquire_timeout = acquire_timeout_ms or self.default_acquire_timeout_ms

        lock_key = self._make_lock_key(tournament_id, lock_type)
        owner_token = self._make_owner_token()

        start_time = time.monotonic() * 1000

        while True:
            acquired = await self.redis.set(
                lock_key,
                owner_token,
                nx=True,
                px=lock_timeout,
            )

            if acquired:
                now = time.time()
                return LockInfo(
                    lock_key=lock_key,
                    owner_id=owner_token,
                    acquired_at=now,
                    expires_at=now + (lock_timeout / 1000),
                    lock_type=lock_type,
                )

            elapsed = (time.monotonic() * 1000) - start_time
            if elapsed >= acquire_timeout:
                logger.warning(
                    "lock_acquisition_timeout",
                    lock_key=lock_key,
                    acquire_timeout_ms=acquire_timeout,
                )
                raise LockAcquisitionError(
                    f"Failed to acquire lock {lock_key} within {acquire_timeout}ms. "
                    f"Lock is held by another process."
                )

            await asyncio.sleep(self.retry_interval_ms / 1000)

    async def release(self, lock_info: LockInfo) -> bool:
        """
        Release distributed lock.

        Returns:
            True if lock was released, False if not held (expired or stolen)
        """
        await self._ensure_scripts()

        result = await self._release_script(
            keys=[lock_info.lock_key],
            args=[lock_info.owner_id],
        )

        if result != 1:
            logger.warning("lock_expired_before_release", lock_key=lock_info.lock_key)
        return result == 1

    @asynccontextmanager
    async def lock(
        self,
        tournament_id: int,
        lock_type: LockType,
        lock_timeout_ms: Optional[int] = None,
        acquire_timeout_ms: Optional[int] = None,
    ) -> AsyncGenerator[LockInfo, None]:
        """
        Context manager for automatic lock acquire/release.

        ```python
        async with lock_manager.lock(12, LockType.BRACKET):
            await create_next_round(...)
        ```
        """
        lock_info = await self.acquire(
            tournament_id,
            lock_type,
            lock_timeout_ms,
            acquire_timeout_ms,
        )
        try:
            yield lock_info
        finally:
            await self.release(lock_info)

