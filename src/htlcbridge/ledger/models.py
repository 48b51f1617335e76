"""SQLAlchemy models for the swap registry."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from htlcbridge.chains import Chain


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class SwapStatus(str, Enum):
    """Status of a swap.

    initiated -> locked -> completed | refunded, or failed before any
    funds were locked. Terminal states are final.
    """

    INITIATED = "initiated"
    LOCKED = "locked"
    COMPLETED = "completed"
    REFUNDED = "refunded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {SwapStatus.COMPLETED, SwapStatus.REFUNDED, SwapStatus.FAILED}
)


class DecimalString(TypeDecorator):
    """Exact decimal stored as its plain string form."""

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return format(Decimal(value), "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


def _enum_column(enum_cls: type[Enum], length: int = 20) -> SAEnum:
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
    )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SwapRecord(Base):
    """Persistent record of one cross-chain swap."""

    __tablename__ = "swaps"

    id: Mapped[str] = mapped_column(String(66), primary_key=True)
    status: Mapped[SwapStatus] = mapped_column(
        _enum_column(SwapStatus), default=SwapStatus.INITIATED, nullable=False
    )

    from_chain: Mapped[Chain] = mapped_column(_enum_column(Chain), nullable=False)
    to_chain: Mapped[Chain] = mapped_column(_enum_column(Chain), nullable=False)
    from_token: Mapped[str] = mapped_column(String(20), nullable=False)
    to_token: Mapped[str] = mapped_column(String(20), nullable=False)
    from_amount: Mapped[Decimal] = mapped_column(DecimalString(), nullable=False)
    to_amount: Mapped[Decimal] = mapped_column(DecimalString(), nullable=False)

    initiator: Mapped[str] = mapped_column(String(128), nullable=False)
    recipient: Mapped[str] = mapped_column(String(128), nullable=False)

    hashlock: Mapped[str] = mapped_column(String(66), nullable=False)
    secret: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    timelock: Mapped[int] = mapped_column(Integer, nullable=False)

    source_lock_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    dest_lock_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    source_tx_ref: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    dest_tx_ref: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    routing_method: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    quote_confidence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_swaps_initiator", "initiator"),
        Index("ix_swaps_recipient", "recipient"),
        Index("ix_swaps_status_timelock", "status", "timelock"),
    )

    @property
    def is_terminal(self) -> bool:
        return SwapStatus(self.status).is_terminal

    def involves(self, address: str) -> bool:
        """Whether an address is the initiator or recipient of this swap."""
        needle = address.lower()
        return needle in (self.initiator.lower(), self.recipient.lower())

    def __repr__(self) -> str:
        return f"<SwapRecord {self.id[:10]} {self.status.value}>"
