"""Swap registry: models, database and repository."""

from htlcbridge.ledger.database import close_db, init_db, session_scope
from htlcbridge.ledger.export import ExportFormat, export_records
from htlcbridge.ledger.models import SwapRecord, SwapStatus
from htlcbridge.ledger.repository import SwapFilter, SwapRegistry, SwapStats

__all__ = [
    # Models
    "SwapRecord",
    "SwapStatus",
    # Database
    "close_db",
    "init_db",
    "session_scope",
    # Repository
    "SwapFilter",
    "SwapRegistry",
    "SwapStats",
    # Export
    "ExportFormat",
    "export_records",
]
