"""Distributed lock tests."""

import pytest

from bracket.tournament.distributed_lock import (
    DistributedLockManager,
    LockAcquisitionError,
    LockType,
)


@pytest.fixture
def manager(mock_redis):
    return DistributedLockManager(
        mock_redis,
        default_lock_timeout_ms=1000,
        default_acquire_timeout_ms=100,
        retry_interval_ms=10,
    )


class TestDistributedLock:
    @pytest.mark.asyncio
    async def test_bracket_lock_key(self, manager, mock_redis):
        async with manager.lock(12, LockType.BRACKET) as info:
            assert info.lock_key == "lock:tournament:12:bracket"
            assert await mock_redis.get(info.lock_key) == info.owner_id

        assert await mock_redis.exists("lock:tournament:12:bracket") == 0

    @pytest.mark.asyncio
    async def test_second_acquire_times_out(self, manager):
        async with manager.lock(12, LockType.BRACKET):
            with pytest.raises(LockAcquisitionError):
                await manager.acquire(12, LockType.BRACKET)

    @pytest.mark.asyncio
    async def test_other_tournaments_independent(self, manager):
        async with manager.lock(12, LockType.BRACKET):
            async with manager.lock(13, LockType.BRACKET) as info:
                assert info.lock_key == "lock:tournament:13:bracket"

    @pytest.mark.asyncio
    async def test_release_only_by_owner(self, manager, mock_redis):
        info = await manager.acquire(12, LockType.BRACKET)
        await mock_redis.set(info.lock_key, "someone-else")

        assert await manager.release(info) is False
        assert await mock_redis.get(info.lock_key) == "someone-else"

    @pytest.mark.asyncio
    async def test_released_after_error(self, manager, mock_redis):
        with pytest.raises(RuntimeError):
            async with manager.lock(12, LockType.BRACKET):
                raise RuntimeError("pairing failed")

        assert await mock_redis.exists("lock:tournament:12:bracket") == 0
