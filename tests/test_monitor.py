"""Tests for the expiry monitor."""

import asyncio
from decimal import Decimal

import pytest

from htlcbridge.chains import Chain
from htlcbridge.errors import ChainUnavailable, ValidationError
from htlcbridge.ledger.models import SwapStatus
from htlcbridge.services.coordinator import SwapRequest


def _request(accounts, **overrides) -> SwapRequest:
    params = dict(
        from_chain=Chain.POLYGON,
        to_chain=Chain.STELLAR,
        from_token="MATIC",
        to_token="XLM",
        amount=Decimal("100"),
        initiator=accounts.alice_polygon,
        recipient=accounts.bob_stellar,
    )
    params.update(overrides)
    return SwapRequest(**params)


class TestExpiryMonitor:
    """Tests for automatic refunds."""

    @pytest.mark.asyncio
    async def test_watches_locked_swaps(self, coordinator, monitor, accounts):
        result = await coordinator.initiate(_request(accounts))

        assert monitor.watched == {result.swap.id: result.swap.timelock}

    @pytest.mark.asyncio
    async def test_nothing_due_before_timelock(self, coordinator, monitor, accounts, clock):
        await coordinator.initiate(_request(accounts))
        clock.advance(3599)

        assert await monitor.scan_once() == 0
        assert len(monitor.watched) == 1

    @pytest.mark.asyncio
    async def test_refunds_expired_swap(self, coordinator, monitor, ledgers, accounts, clock):
        result = await coordinator.initiate(_request(accounts))
        clock.advance(3600)

        assert await monitor.scan_once() == 1

        swap = await coordinator.get_status(result.swap.id)
        assert swap.status == SwapStatus.REFUNDED
        assert monitor.watched == {}
        assert ledgers[Chain.POLYGON].balance_of(accounts.alice_polygon, "MATIC") == Decimal("1000")

    @pytest.mark.asyncio
    async def test_completed_swap_dropped(self, coordinator, monitor, accounts, clock):
        result = await coordinator.initiate(_request(accounts))
        await coordinator.complete(result.swap.id, result.secret)
        clock.advance(3600)

        assert await monitor.scan_once() == 0
        assert monitor.watched == {}

    @pytest.mark.asyncio
    async def test_chain_outage_retried_next_cycle(
        self, coordinator, monitor, ledgers, accounts, clock
    ):
        result = await coordinator.initiate(_request(accounts))
        clock.advance(3600)
        for _ in range(3):
            ledgers[Chain.POLYGON].fail_next("status", ChainUnavailable("down"))

        assert await monitor.scan_once() == 0
        assert result.swap.id in monitor.watched

        assert await monitor.scan_once() == 1
        assert monitor.watched == {}

    @pytest.mark.asyncio
    async def test_refunds_many_concurrently(self, coordinator, monitor, ledgers, accounts, clock):
        for ledger in ledgers.values():
            ledger.latency = 0.01
        ids = []
        for i in range(3):
            result = await coordinator.initiate(_request(accounts, amount=Decimal(10 + i)))
            ids.append(result.swap.id)
        clock.advance(3600)

        assert await monitor.scan_once() == 3
        for swap_id in ids:
            assert (await coordinator.get_status(swap_id)).status == SwapStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_load_pending(self, coordinator, monitor, registry, clock, accounts):
        result = await coordinator.initiate(_request(accounts))
        monitor._watched.clear()

        assert await monitor.load_pending() == 1
        assert monitor.watched == {result.swap.id: result.swap.timelock}

    @pytest.mark.asyncio
    async def test_expires_unconfirmed_initiated_swap(
        self, coordinator, monitor, registry, ledgers, accounts, clock
    ):
        ledgers[Chain.POLYGON].fail_next("lock", ChainUnavailable("lost reply"))
        with pytest.raises(ChainUnavailable):
            await coordinator.initiate(_request(accounts))
        (swap,) = await registry.list_by_address(accounts.alice_polygon)

        await monitor.scan_once()
        assert (await registry.require(swap.id)).status == SwapStatus.INITIATED

        clock.advance(3600)
        await monitor.scan_once()
        assert (await registry.require(swap.id)).status == SwapStatus.FAILED

    @pytest.mark.asyncio
    async def test_start_and_stop(self, coordinator, monitor, accounts, clock):
        result = await coordinator.initiate(_request(accounts))
        clock.advance(3600)

        await monitor.start()
        for _ in range(100):
            if (await coordinator.get_status(result.swap.id)).status == SwapStatus.REFUNDED:
                break
            await asyncio.sleep(0.01)
        await monitor.stop()

        assert (await coordinator.get_status(result.swap.id)).status == SwapStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_settled_swap_unwatched_at_once(self, coordinator, monitor, accounts):
        result = await coordinator.initiate(_request(accounts))

        await coordinator.complete(result.swap.id, result.secret)

        assert monitor.watched == {}

    @pytest.mark.asyncio
    async def test_rejected_refund_stays_watched(
        self, coordinator, monitor, ledgers, accounts, clock
    ):
        result = await coordinator.initiate(_request(accounts))
        clock.advance(3600)
        ledgers[Chain.POLYGON].fail_next("refund", ValidationError("rejected by node"))

        assert await monitor.scan_once() == 0
        assert result.swap.id in monitor.watched
        assert (await coordinator.get_status(result.swap.id)).status == SwapStatus.LOCKED

        assert await monitor.scan_once() == 1
        assert monitor.watched == {}
        assert (await coordinator.get_status(result.swap.id)).status == SwapStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_expired_swap_withdrawn_on_chain_completes(
        self, coordinator, monitor, ledgers, accounts, clock
    ):
        result = await coordinator.initiate(_request(accounts))
        await ledgers[Chain.STELLAR].withdraw(result.swap.dest_lock_id, result.secret)
        await ledgers[Chain.POLYGON].withdraw(result.swap.source_lock_id, result.secret)
        clock.advance(3600)

        assert await monitor.scan_once() == 1

        swap = await coordinator.get_status(result.swap.id)
        assert swap.status == SwapStatus.COMPLETED
        assert swap.secret == result.secret
        assert monitor.watched == {}
        assert all("refund" not in ledger.calls for ledger in ledgers.values())

    @pytest.mark.asyncio
    async def test_scan_during_completion_leaves_it_completed(
        self, coordinator, monitor, ledgers, accounts, clock, monkeypatch
    ):
        result = await coordinator.initiate(_request(accounts))
        source = ledgers[Chain.POLYGON]
        withdraw = source.withdraw
        scans = []

        async def withdraw_then_expire(lock_id, secret):
            ref = await withdraw(lock_id, secret)
            clock.advance(3600)
            scans.append(asyncio.create_task(monitor.scan_once()))
            await asyncio.sleep(0)
            return ref

        monkeypatch.setattr(source, "withdraw", withdraw_then_expire)

        swap = await coordinator.complete(result.swap.id, result.secret)
        await scans[0]

        assert swap.status == SwapStatus.COMPLETED
        assert (await coordinator.get_status(result.swap.id)).status == SwapStatus.COMPLETED
        assert all("refund" not in ledger.calls for ledger in ledgers.values())
        assert monitor.watched == {}

    @pytest.mark.asyncio
    async def test_recovers_lock_whose_reply_was_lost(
        self, coordinator, monitor, registry, ledgers, accounts, clock
    ):
        source = ledgers[Chain.POLYGON]
        source.lose_reply("lock", ChainUnavailable("connection reset"))
        with pytest.raises(ChainUnavailable):
            await coordinator.initiate(_request(accounts))
        (swap,) = await registry.list_by_address(accounts.alice_polygon)
        assert source.balance_of(accounts.alice_polygon, "MATIC") == Decimal("900")
        clock.advance(3600)

        await monitor.scan_once()

        swap = await registry.require(swap.id)
        assert swap.status == SwapStatus.LOCKED
        assert swap.source_lock_id in source.locks
        assert swap.id in monitor.watched

        assert await monitor.scan_once() == 1
        assert (await registry.require(swap.id)).status == SwapStatus.REFUNDED
        assert source.balance_of(accounts.alice_polygon, "MATIC") == Decimal("1000")
