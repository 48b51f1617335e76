"""Tests for per-swap locking."""

import asyncio

import pytest

from htlcbridge.utils.locks import LockTimeoutError, SwapLockRegistry


class TestSwapLockRegistry:
    """Tests for SwapLockRegistry."""

    @pytest.mark.asyncio
    async def test_serializes_same_swap(self):
        locks = SwapLockRegistry()
        order = []

        async def worker(name):
            async with locks.lock("swap-1", operation=name):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_different_swaps_run_concurrently(self):
        locks = SwapLockRegistry()
        inside = asyncio.Event()

        async def holder():
            async with locks.lock("swap-1"):
                await asyncio.wait_for(inside.wait(), timeout=1)

        async def other():
            async with locks.lock("swap-2"):
                inside.set()

        await asyncio.gather(holder(), other())

    @pytest.mark.asyncio
    async def test_timeout(self):
        locks = SwapLockRegistry(timeout=0.01)

        async with locks.lock("swap-1"):
            with pytest.raises(LockTimeoutError):
                async with locks.lock("swap-1"):
                    pass

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_is_locked(self):
        locks = SwapLockRegistry()

        async with locks.lock("swap-1"):
            assert locks.is_locked("swap-1")
        assert not locks.is_locked("swap-1")

    @pytest.mark.asyncio
    async def test_lock_dropped_when_idle(self):
        locks = SwapLockRegistry()

        async def worker():
            async with locks.lock("swap-1"):
                await asyncio.sleep(0.01)

        await asyncio.gather(worker(), worker(), worker())

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        locks = SwapLockRegistry()

        with pytest.raises(RuntimeError):
            async with locks.lock("swap-1"):
                raise RuntimeError("boom")

        async with locks.lock("swap-1", timeout=0.1):
            pass
