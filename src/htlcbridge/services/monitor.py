"""Expiry monitor.

Watches locked swaps and refunds them once their timelock passes.
Swaps are registered when the coordinator publishes a locked event and,
at startup, from the registry. They stop being watched when the
coordinator publishes a terminal event for them.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from htlcbridge.errors import AlreadySettled, BridgeError, ChainUnavailable, TimelockNotExpired
from htlcbridge.ledger.models import SwapStatus
from htlcbridge.ledger.repository import SwapRegistry
from htlcbridge.services.coordinator import SwapCoordinator
from htlcbridge.services.events import SwapEvent, SwapEventType
from htlcbridge.utils.locks import LockTimeoutError

logger = logging.getLogger(__name__)


class ExpiryMonitor:
    """Periodic refund of expired swaps."""

    def __init__(
        self,
        coordinator: SwapCoordinator,
        registry: SwapRegistry,
        interval: float = 30,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize monitor.

        Args:
            coordinator: Coordinator used to refund
            registry: Swap registry
            interval: Seconds between scans
            clock: Unix time source (defaults to the coordinator's)
        """
        self.coordinator = coordinator
        self.registry = registry
        self.interval = interval
        self.clock = clock or coordinator.clock
        self._watched: dict[str, int] = {}
        self._task: Optional[asyncio.Task] = None
        self._running = False

        coordinator.events.subscribe(self._on_locked, types=[SwapEventType.LOCKED])
        coordinator.events.subscribe(
            self._on_settled,
            types=[SwapEventType.COMPLETED, SwapEventType.REFUNDED, SwapEventType.FAILED],
        )

    @property
    def watched(self) -> dict[str, int]:
        """Swap id -> timelock of swaps being watched."""
        return dict(self._watched)

    async def _on_locked(self, event: SwapEvent) -> None:
        if event.timelock is not None:
            self.watch(event.swap_id, event.timelock)

    async def _on_settled(self, event: SwapEvent) -> None:
        self.unwatch(event.swap_id)

    def watch(self, swap_id: str, timelock: int) -> None:
        self._watched[swap_id] = timelock

    def unwatch(self, swap_id: str) -> None:
        self._watched.pop(swap_id, None)

    async def load_pending(self) -> int:
        """Watch every locked swap in the registry."""
        for record in await self.registry.list_by_status(SwapStatus.LOCKED):
            self.watch(record.id, record.timelock)
        logger.info(f"Expiry monitor watching {len(self._watched)} locked swaps")
        return len(self._watched)

    async def _refund(self, swap_id: str) -> bool:
        """Refund one expired swap; True once it has reached a terminal state."""
        try:
            record = await self.coordinator.refund(swap_id)
            logger.info(f"Expired swap {swap_id} settled as {SwapStatus(record.status).value}")
        except AlreadySettled:
            logger.debug(f"Swap {swap_id} settled before auto-refund")
        except TimelockNotExpired:
            # Clock skew between our clock and the chain's; try next cycle
            return False
        except (ChainUnavailable, LockTimeoutError) as e:
            logger.warning(f"Auto-refund of {swap_id} deferred: {e}")
            return False
        self.unwatch(swap_id)
        return True

    async def scan_once(self) -> int:
        """Refund every watched swap whose timelock has passed.

        A swap whose refund fails stays watched and is retried next cycle.

        Returns:
            Number of swaps settled
        """
        now = int(self.clock())
        due = [swap_id for swap_id, timelock in self._watched.items() if timelock <= now]

        settled = 0
        if due:
            logger.info(f"Refunding {len(due)} expired swaps")
            results = await asyncio.gather(
                *(self._refund(swap_id) for swap_id in due), return_exceptions=True
            )
            for swap_id, result in zip(due, results):
                if isinstance(result, BaseException):
                    logger.error(
                        f"Auto-refund of {swap_id} failed, retrying next cycle: "
                        f"{type(result).__name__}: {result}"
                    )
                elif result:
                    settled += 1

        await self._expire_initiated(now)
        return settled

    async def _expire_initiated(self, now: int) -> None:
        for record in await self.registry.list_by_status(SwapStatus.INITIATED, expired_at=now):
            try:
                expired = await self.coordinator.expire_initiated(record.id)
            except (ChainUnavailable, LockTimeoutError) as e:
                logger.warning(f"Expiry of unconfirmed swap {record.id} deferred: {e}")
                continue
            except BridgeError as e:
                logger.debug(f"Could not expire {record.id}: {e}")
                continue
            if SwapStatus(expired.status) == SwapStatus.LOCKED:
                logger.warning(f"Swap {record.id} source lock found on-chain; refunding next cycle")
            else:
                logger.warning(f"Swap {record.id} expired before its source lock was confirmed")

    async def run(self) -> None:
        """Run the monitor loop until stopped."""
        logger.info(f"Starting expiry monitor (interval: {self.interval}s)")
        self._running = True
        while self._running:
            try:
                await self.scan_once()
            except Exception as e:
                logger.error(f"Expiry monitor error: {e}")
            await asyncio.sleep(self.interval)

    async def start(self) -> None:
        await self.load_pending()
        self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Expiry monitor stopped")
