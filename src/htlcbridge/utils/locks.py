"""Per-swap locking.

Serializes every mutating operation on one swap id so that complete,
refund and reconciliation never interleave for the same swap.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

logger = logging.getLogger(__name__)


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


class SwapLockRegistry:
    """Keyed registry of asyncio locks, one per swap id.

    A swap's lock is dropped once nobody holds or waits for it, so the
    registry only grows with the number of swaps in flight.

    Example:
        locks = SwapLockRegistry()
        async with locks.lock(swap_id, operation="complete"):
            # Exclusive access to this swap
            ...
    """

    def __init__(self, timeout: Optional[float] = 30.0):
        """Initialize the registry.

        Args:
            timeout: Default maximum wait for a lock (None = wait forever)
        """
        self.timeout = timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def get_lock(self, swap_id: str) -> asyncio.Lock:
        """Get or create the lock for a swap."""
        lock = self._locks.get(swap_id)
        if lock is None:
            lock = self._locks[swap_id] = asyncio.Lock()
        return lock

    def _release_user(self, swap_id: str) -> None:
        remaining = self._users.get(swap_id, 1) - 1
        if remaining <= 0:
            self._users.pop(swap_id, None)
            self._locks.pop(swap_id, None)
        else:
            self._users[swap_id] = remaining

    @asynccontextmanager
    async def lock(
        self,
        swap_id: str,
        timeout: Optional[float] = None,
        operation: str = "swap_operation",
    ) -> AsyncIterator[None]:
        """Hold the swap's lock for the duration of the block.

        Raises:
            LockTimeoutError: If the lock is not acquired in time
        """
        lock = self.get_lock(swap_id)
        self._users[swap_id] = self._users.get(swap_id, 0) + 1
        timeout = self.timeout if timeout is None else timeout

        try:
            if timeout:
                await asyncio.wait_for(lock.acquire(), timeout=timeout)
            else:
                await lock.acquire()
        except asyncio.TimeoutError:
            self._release_user(swap_id)
            logger.warning(f"Lock timeout for swap {swap_id} after {timeout}s: {operation}")
            raise LockTimeoutError(
                f"Could not acquire lock for swap {swap_id} within {timeout}s"
            )
        except BaseException:
            self._release_user(swap_id)
            raise

        logger.debug(f"Lock acquired for swap {swap_id}: {operation}")
        try:
            yield
        finally:
            lock.release()
            self._release_user(swap_id)
            logger.debug(f"Lock released for swap {swap_id}: {operation}")

    def is_locked(self, swap_id: str) -> bool:
        lock = self._locks.get(swap_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
