"""Tests for the swap event bus."""

import pytest

from htlcbridge.services.events import SwapEvent, SwapEventBus, SwapEventType


class TestSwapEventBus:
    """Tests for publish/subscribe."""

    @pytest.mark.asyncio
    async def test_type_filter(self):
        bus = SwapEventBus()
        seen = []

        async def listener(event):
            seen.append(event.type)

        bus.subscribe(listener, [SwapEventType.LOCKED])
        await bus.publish(SwapEvent(SwapEventType.INITIATED, "0x01"))
        await bus.publish(SwapEvent(SwapEventType.LOCKED, "0x01"))

        assert seen == [SwapEventType.LOCKED]

    @pytest.mark.asyncio
    async def test_failing_listener_isolated(self):
        bus = SwapEventBus()
        seen = []

        async def broken(event):
            raise RuntimeError("boom")

        async def listener(event):
            seen.append(event.swap_id)

        bus.subscribe(broken)
        bus.subscribe(listener)
        await bus.publish(SwapEvent(SwapEventType.COMPLETED, "0x02"))

        assert seen == ["0x02"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = SwapEventBus()
        seen = []

        async def listener(event):
            seen.append(event)

        bus.subscribe(listener)
        bus.unsubscribe(listener)
        await bus.publish(SwapEvent(SwapEventType.FAILED, "0x03"))

        assert seen == []
