"""Swap lifecycle events.

The coordinator publishes an event on every status change; listeners (the
expiry monitor, notifiers) subscribe to the bus. A failing listener is
logged and never affects the swap.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional

logger = logging.getLogger(__name__)


class SwapEventType(str, Enum):
    INITIATED = "swap_initiated"
    LOCKED = "swap_locked"
    COMPLETED = "swap_completed"
    REFUNDED = "swap_refunded"
    FAILED = "swap_failed"


@dataclass
class SwapEvent:
    type: SwapEventType
    swap_id: str
    timelock: Optional[int] = None
    data: dict = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


Listener = Callable[[SwapEvent], Awaitable[None]]


class SwapEventBus:
    """In-process publish/subscribe for swap events."""

    def __init__(self):
        self._listeners: list[tuple[Listener, Optional[frozenset]]] = []

    def subscribe(
        self,
        listener: Listener,
        types: Optional[Iterable[SwapEventType]] = None,
    ) -> None:
        """Register an async listener, optionally for some event types only."""
        self._listeners.append((listener, frozenset(types) if types else None))

    def unsubscribe(self, listener: Listener) -> None:
        self._listeners = [(l, t) for l, t in self._listeners if l is not listener]

    async def publish(self, event: SwapEvent) -> None:
        for listener, types in list(self._listeners):
            if types is not None and event.type not in types:
                continue
            try:
                await listener(event)
            except Exception as e:
                logger.error(f"Listener {listener!r} failed on {event.type.value}: {e}")
