"""Swap history export to CSV and JSON."""

import csv
import io
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable

from htlcbridge.errors import ValidationError
from htlcbridge.ledger.models import SwapRecord


class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"


CSV_COLUMNS = [
    "id",
    "status",
    "fromChain",
    "toChain",
    "fromToken",
    "toToken",
    "fromAmount",
    "toAmount",
    "recipient",
    "timestamp",
    "sourceTxRef",
    "destTxRef",
]


def _timestamp(value: datetime) -> str:
    # SQLite drops tzinfo; stored values are always UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def record_to_row(record: SwapRecord) -> dict:
    """Flatten a swap into the export column layout."""
    return {
        "id": record.id,
        "status": record.status.value,
        "fromChain": record.from_chain.value,
        "toChain": record.to_chain.value,
        "fromToken": record.from_token,
        "toToken": record.to_token,
        "fromAmount": format(record.from_amount, "f"),
        "toAmount": format(record.to_amount, "f"),
        "recipient": record.recipient,
        "timestamp": _timestamp(record.created_at),
        "sourceTxRef": record.source_tx_ref or "",
        "destTxRef": record.dest_tx_ref or "",
    }


def to_csv(records: Iterable[SwapRecord]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for record in records:
        writer.writerow(record_to_row(record))
    return buffer.getvalue()


def to_json(records: Iterable[SwapRecord]) -> str:
    return json.dumps([record_to_row(r) for r in records], indent=2)


def export_records(records: Iterable[SwapRecord], fmt: "ExportFormat | str") -> str:
    """Render swaps in the requested format.

    Raises:
        ValidationError: If the format is not supported
    """
    try:
        fmt = fmt if isinstance(fmt, ExportFormat) else ExportFormat(str(fmt).lower())
    except ValueError as e:
        raise ValidationError(f"Unsupported export format: {fmt}") from e

    if fmt == ExportFormat.CSV:
        return to_csv(records)
    return to_json(records)
