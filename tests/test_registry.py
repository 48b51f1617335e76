"""Tests for the swap registry and history export."""

import asyncio
import csv
import io
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from htlcbridge.chains import Chain
from htlcbridge.errors import AlreadySettled, SwapNotFound, ValidationError
from htlcbridge.ledger.export import CSV_COLUMNS, export_records
from htlcbridge.ledger.models import SwapRecord, SwapStatus
from htlcbridge.ledger.repository import SwapFilter

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_record(n: int, **overrides) -> SwapRecord:
    params = dict(
        id="0x" + f"{n:064x}",
        status=SwapStatus.LOCKED,
        from_chain=Chain.POLYGON,
        to_chain=Chain.STELLAR,
        from_token="MATIC",
        to_token="XLM",
        from_amount=Decimal("100"),
        to_amount=Decimal("708.3333333"),
        initiator="0x" + "a1" * 20,
        recipient="GRECIPIENT",
        hashlock="0x" + "11" * 32,
        timelock=1_700_003_600 + n,
        created_at=BASE_TIME + timedelta(minutes=n),
    )
    params.update(overrides)
    return SwapRecord(**params)


class TestSwapRegistry:
    """Tests for storing and transitioning swaps."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, registry):
        await registry.create(make_record(1))

        record = await registry.get(make_record(1).id)

        assert record.status == SwapStatus.LOCKED
        assert record.from_amount == Decimal("100")
        assert record.to_amount == Decimal("708.3333333")
        assert record.from_chain == Chain.POLYGON

    @pytest.mark.asyncio
    async def test_duplicate_id(self, registry):
        await registry.create(make_record(1))

        with pytest.raises(ValidationError):
            await registry.create(make_record(1))

    @pytest.mark.asyncio
    async def test_require_missing(self, registry):
        assert await registry.get("0xmissing") is None
        with pytest.raises(SwapNotFound):
            await registry.require("0xmissing")

    @pytest.mark.asyncio
    async def test_secret_set_once(self, registry):
        record = await registry.create(make_record(1))
        await registry.update(record.id, secret="0x" + "22" * 32)

        # Same value is idempotent
        await registry.update(record.id, secret="0x" + "22" * 32)
        with pytest.raises(ValidationError):
            await registry.update(record.id, secret="0x" + "33" * 32)

    @pytest.mark.asyncio
    async def test_update_rejects_status(self, registry):
        record = await registry.create(make_record(1))

        with pytest.raises(ValueError):
            await registry.update(record.id, status=SwapStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_transition(self, registry):
        record = await registry.create(make_record(1))

        updated = await registry.transition(
            record.id, SwapStatus.LOCKED, SwapStatus.COMPLETED, secret="0x" + "22" * 32
        )

        assert updated.status == SwapStatus.COMPLETED
        assert updated.secret == "0x" + "22" * 32

    @pytest.mark.asyncio
    async def test_transition_from_terminal(self, registry):
        record = await registry.create(make_record(1, status=SwapStatus.REFUNDED))

        with pytest.raises(AlreadySettled):
            await registry.transition(record.id, SwapStatus.LOCKED, SwapStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_transition_wrong_state(self, registry):
        record = await registry.create(make_record(1, status=SwapStatus.INITIATED))

        with pytest.raises(ValidationError):
            await registry.transition(record.id, SwapStatus.LOCKED, SwapStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_concurrent_transitions_one_wins(self, registry):
        record = await registry.create(make_record(1))

        outcomes = await asyncio.gather(
            registry.transition(record.id, SwapStatus.LOCKED, SwapStatus.COMPLETED),
            registry.transition(record.id, SwapStatus.LOCKED, SwapStatus.REFUNDED),
            return_exceptions=True,
        )

        assert sum(isinstance(o, AlreadySettled) for o in outcomes) == 1
        assert sum(isinstance(o, SwapRecord) for o in outcomes) == 1


class TestListing:
    """Tests for history queries."""

    @pytest.mark.asyncio
    async def test_by_address_newest_first(self, registry):
        for n in (1, 3, 2):
            await registry.create(make_record(n))
        await registry.create(make_record(4, initiator="0x" + "ff" * 20))

        records = await registry.list_by_address("0x" + "A1" * 20)

        assert [r.id for r in records] == [make_record(n).id for n in (3, 2, 1)]

    @pytest.mark.asyncio
    async def test_recipient_matches(self, registry):
        await registry.create(make_record(1))

        assert len(await registry.list_by_address("GRECIPIENT")) == 1

    @pytest.mark.asyncio
    async def test_filters(self, registry):
        await registry.create(make_record(1))
        await registry.create(make_record(2, status=SwapStatus.COMPLETED))
        await registry.create(
            make_record(3, from_chain=Chain.ETHEREUM, from_token="ETH")
        )
        address = "0x" + "a1" * 20

        completed = await registry.list_by_address(address, SwapFilter(status=SwapStatus.COMPLETED))
        ethereum = await registry.list_by_address(address, SwapFilter(chain=Chain.ETHEREUM))
        recent = await registry.list_by_address(
            address, SwapFilter(since=BASE_TIME + timedelta(minutes=2))
        )

        assert [r.id for r in completed] == [make_record(2).id]
        assert [r.id for r in ethereum] == [make_record(3).id]
        assert [r.id for r in recent] == [make_record(3).id, make_record(2).id]

    @pytest.mark.asyncio
    async def test_by_status_expired(self, registry):
        await registry.create(make_record(1))
        await registry.create(make_record(2))
        await registry.create(make_record(3, status=SwapStatus.COMPLETED))

        expired = await registry.list_by_status(SwapStatus.LOCKED, expired_at=1_700_003_601)

        assert [r.id for r in expired] == [make_record(1).id]

    @pytest.mark.asyncio
    async def test_stats(self, registry):
        await registry.create(make_record(1))
        await registry.create(make_record(2, status=SwapStatus.COMPLETED))
        await registry.create(make_record(3, status=SwapStatus.COMPLETED, from_amount=Decimal("5.5")))
        await registry.create(make_record(4, status=SwapStatus.REFUNDED))
        await registry.create(make_record(5, status=SwapStatus.FAILED))

        stats = await registry.get_stats("0x" + "a1" * 20)

        assert stats.total == 5
        assert stats.completed == 2
        assert stats.pending == 1
        assert stats.refunded == 1
        assert stats.failed == 1
        assert stats.to_dict()["completed_volume"] == {"polygon:MATIC": "105.5"}


class TestExport:
    """Tests for CSV and JSON export."""

    def test_csv_columns_and_values(self):
        record = make_record(1, source_tx_ref="0xsrc", dest_tx_ref="abc")

        rows = list(csv.DictReader(io.StringIO(export_records([record], "csv"))))

        assert list(rows[0].keys()) == CSV_COLUMNS
        assert rows[0]["id"] == record.id
        assert rows[0]["status"] == "locked"
        assert rows[0]["fromAmount"] == "100"
        assert rows[0]["toAmount"] == "708.3333333"
        assert rows[0]["recipient"] == "GRECIPIENT"
        assert rows[0]["timestamp"] == "2024-01-01T00:01:00+00:00"
        assert rows[0]["sourceTxRef"] == "0xsrc"
        assert rows[0]["destTxRef"] == "abc"

    def test_csv_empty_refs(self):
        rows = list(csv.DictReader(io.StringIO(export_records([make_record(1)], "CSV"))))

        assert rows[0]["sourceTxRef"] == ""

    def test_json(self):
        data = json.loads(export_records([make_record(1), make_record(2)], "json"))

        assert [item["id"] for item in data] == [make_record(1).id, make_record(2).id]
        assert data[0]["fromChain"] == "polygon"

    def test_unsupported_format(self):
        with pytest.raises(ValidationError):
            export_records([], "xlsx")
