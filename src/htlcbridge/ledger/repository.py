"""Swap registry: durable storage of swap records."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from htlcbridge.chains import Chain
from htlcbridge.errors import AlreadySettled, SwapNotFound, ValidationError
from htlcbridge.ledger.database import session_scope
from htlcbridge.ledger.models import SwapRecord, SwapStatus

logger = logging.getLogger(__name__)

# Fields that may be updated without a status transition
MUTABLE_FIELDS = frozenset(
    {
        "source_lock_id",
        "dest_lock_id",
        "source_tx_ref",
        "dest_tx_ref",
        "error_message",
        "secret",
    }
)


@dataclass
class SwapFilter:
    """Optional filters for listing swaps."""

    status: Optional[SwapStatus] = None
    chain: Optional[Chain] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None


@dataclass
class SwapStats:
    """Aggregate swap counts for an address."""

    total: int = 0
    completed: int = 0
    pending: int = 0
    refunded: int = 0
    failed: int = 0
    completed_volume: dict[str, Decimal] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "completed": self.completed,
            "pending": self.pending,
            "refunded": self.refunded,
            "failed": self.failed,
            "completed_volume": {k: str(v) for k, v in self.completed_volume.items()},
        }


class SwapRegistry:
    """Repository for swap records.

    Each call runs in its own short transaction; no session is held open
    across chain calls.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, record: SwapRecord) -> SwapRecord:
        """Insert a new swap.

        Raises:
            ValidationError: If a swap with the same id already exists
        """
        try:
            async with session_scope(self.session_factory) as session:
                session.add(record)
                await session.flush()
        except IntegrityError as e:
            raise ValidationError(f"Duplicate swap {record.id}", swap_id=record.id) from e

        logger.debug(f"Stored swap {record.id} ({record.status.value})")
        return record

    async def get(self, swap_id: str) -> Optional[SwapRecord]:
        """Get a swap by id."""
        async with self.session_factory() as session:
            return await session.get(SwapRecord, swap_id)

    async def require(self, swap_id: str) -> SwapRecord:
        """Get a swap by id or raise SwapNotFound."""
        record = await self.get(swap_id)
        if record is None:
            raise SwapNotFound(f"Swap {swap_id} not found", swap_id=swap_id)
        return record

    async def update(self, swap_id: str, **fields) -> SwapRecord:
        """Update non-status fields of a swap.

        The secret can be set once and never changed.
        """
        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")

        async with session_scope(self.session_factory) as session:
            record = await session.get(SwapRecord, swap_id)
            if record is None:
                raise SwapNotFound(f"Swap {swap_id} not found", swap_id=swap_id)

            secret = fields.get("secret")
            if secret is not None and record.secret is not None and record.secret != secret:
                raise ValidationError("Swap secret is already set", swap_id=swap_id)

            for name, value in fields.items():
                setattr(record, name, value)
            await session.flush()
            return record

    async def transition(
        self,
        swap_id: str,
        expected: SwapStatus,
        target: SwapStatus,
        **fields,
    ) -> SwapRecord:
        """Compare-and-set a status transition.

        The UPDATE only matches while the row still has the expected status,
        so of two concurrent transitions out of the same state exactly one
        succeeds.

        Raises:
            AlreadySettled: If the swap is already terminal
            ValidationError: If the swap is in another non-terminal state
            SwapNotFound: If the swap does not exist
        """
        async with session_scope(self.session_factory) as session:
            stmt = (
                update(SwapRecord)
                .where(SwapRecord.id == swap_id, SwapRecord.status == expected)
                .values(status=target, **fields)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            changed = result.rowcount

        if changed:
            logger.info(f"Swap {swap_id}: {expected.value} -> {target.value}")
            return await self.require(swap_id)

        current = await self.require(swap_id)
        if current.is_terminal:
            raise AlreadySettled(
                f"Swap {swap_id} is already {current.status.value}", swap_id=swap_id
            )
        raise ValidationError(
            f"Swap {swap_id} is {current.status.value}, expected {expected.value}",
            swap_id=swap_id,
        )

    async def list_by_address(
        self,
        address: str,
        filters: Optional[SwapFilter] = None,
    ) -> list[SwapRecord]:
        """List swaps where the address is initiator or recipient, newest first."""
        needle = address.lower()
        stmt = select(SwapRecord).where(
            or_(
                func.lower(SwapRecord.initiator) == needle,
                func.lower(SwapRecord.recipient) == needle,
            )
        )
        if filters:
            if filters.status is not None:
                stmt = stmt.where(SwapRecord.status == filters.status)
            if filters.chain is not None:
                stmt = stmt.where(
                    or_(
                        SwapRecord.from_chain == filters.chain,
                        SwapRecord.to_chain == filters.chain,
                    )
                )
            if filters.since is not None:
                stmt = stmt.where(SwapRecord.created_at >= filters.since)
            if filters.until is not None:
                stmt = stmt.where(SwapRecord.created_at <= filters.until)
        stmt = stmt.order_by(SwapRecord.created_at.desc(), SwapRecord.id)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_by_status(
        self,
        status: SwapStatus,
        expired_at: Optional[int] = None,
    ) -> list[SwapRecord]:
        """List swaps in a status, optionally only those with timelock <= expired_at."""
        stmt = select(SwapRecord).where(SwapRecord.status == status)
        if expired_at is not None:
            stmt = stmt.where(SwapRecord.timelock <= expired_at)
        stmt = stmt.order_by(SwapRecord.timelock)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_stats(self, address: str) -> SwapStats:
        """Aggregate counts and completed volume for an address."""
        stats = SwapStats()
        for record in await self.list_by_address(address):
            stats.total += 1
            status = SwapStatus(record.status)
            if status == SwapStatus.COMPLETED:
                stats.completed += 1
                key = f"{record.from_chain.value}:{record.from_token}"
                stats.completed_volume[key] = (
                    stats.completed_volume.get(key, Decimal("0")) + record.from_amount
                )
            elif status == SwapStatus.REFUNDED:
                stats.refunded += 1
            elif status == SwapStatus.FAILED:
                stats.failed += 1
            else:
                stats.pending += 1
        return stats
