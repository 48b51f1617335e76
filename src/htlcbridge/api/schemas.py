"""Request and response contracts for the HTTP API."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from htlcbridge.chains import Chain
from htlcbridge.ledger.models import SwapRecord
from htlcbridge.quotes.base import Quote


class QuoteRequestBody(BaseModel):
    """Request to price a swap."""

    from_chain: Chain
    to_chain: Chain
    from_token: str = Field(..., min_length=1, max_length=20)
    to_token: str = Field(..., min_length=1, max_length=20)
    amount: Decimal = Field(..., gt=0, description="Amount of source token")
    slippage_bps: int = Field(default=100, ge=0, le=5000)

    @field_validator("from_token", "to_token")
    @classmethod
    def normalize_token(cls, v: str) -> str:
        return v.strip().upper()


class FeesResponse(BaseModel):
    bridge_fee: str
    gas_fee: str
    dest_fee: str
    total: str


class QuoteResponse(BaseModel):
    """A priced swap."""

    from_chain: str
    to_chain: str
    from_token: str
    to_token: str
    from_amount: str
    to_amount: str
    min_received: str
    effective_rate: str
    fees: FeesResponse
    estimated_time_seconds: int
    confidence: int
    routing_method: str
    min_amount: str
    max_amount: str
    route_details: dict = Field(default_factory=dict)

    @classmethod
    def from_quote(cls, quote: Quote) -> "QuoteResponse":
        return cls(
            from_chain=quote.from_chain.value,
            to_chain=quote.to_chain.value,
            from_token=quote.from_token,
            to_token=quote.to_token,
            from_amount=str(quote.from_amount),
            to_amount=str(quote.to_amount),
            min_received=str(quote.min_received),
            effective_rate=str(quote.effective_rate),
            fees=FeesResponse(
                bridge_fee=str(quote.fees.bridge_fee),
                gas_fee=str(quote.fees.gas_fee),
                dest_fee=str(quote.fees.dest_fee),
                total=str(quote.fees.total),
            ),
            estimated_time_seconds=quote.estimated_time_seconds,
            confidence=quote.confidence,
            routing_method=quote.routing_method.value,
            min_amount=str(quote.min_amount),
            max_amount=str(quote.max_amount),
            route_details=quote.route_details,
        )


class SwapRequestBody(QuoteRequestBody):
    """Request to start a swap."""

    initiator: str = Field(..., min_length=10, max_length=100)
    recipient: str = Field(..., min_length=10, max_length=100)
    timelock_seconds: Optional[int] = Field(default=None, ge=3600, le=86400)


class SwapResponse(BaseModel):
    """A swap as stored by the coordinator."""

    id: str
    status: str
    from_chain: str
    to_chain: str
    from_token: str
    to_token: str
    from_amount: str
    to_amount: str
    initiator: str
    recipient: str
    hashlock: str
    timelock: int
    secret: Optional[str] = None
    source_lock_id: Optional[str] = None
    dest_lock_id: Optional[str] = None
    source_tx_ref: Optional[str] = None
    dest_tx_ref: Optional[str] = None
    routing_method: Optional[str] = None
    quote_confidence: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: SwapRecord) -> "SwapResponse":
        return cls(
            id=record.id,
            status=record.status.value,
            from_chain=record.from_chain.value,
            to_chain=record.to_chain.value,
            from_token=record.from_token,
            to_token=record.to_token,
            from_amount=str(record.from_amount),
            to_amount=str(record.to_amount),
            initiator=record.initiator,
            recipient=record.recipient,
            hashlock=record.hashlock,
            timelock=record.timelock,
            secret=record.secret,
            source_lock_id=record.source_lock_id,
            dest_lock_id=record.dest_lock_id,
            source_tx_ref=record.source_tx_ref,
            dest_tx_ref=record.dest_tx_ref,
            routing_method=record.routing_method,
            quote_confidence=record.quote_confidence,
            error_message=record.error_message,
            created_at=record.created_at,
            completed_at=record.completed_at,
        )


class SwapInitiatedResponse(BaseModel):
    """Result of starting a swap. The secret is shown only here."""

    swap: SwapResponse
    secret: str
    quote: QuoteResponse


class CompleteRequestBody(BaseModel):
    secret: str = Field(..., min_length=64, max_length=66, description="Hex preimage")


class SwapListResponse(BaseModel):
    address: str
    count: int
    swaps: list[SwapResponse]


class TokenResponse(BaseModel):
    symbol: str
    decimals: int
    address: Optional[str] = None


class ChainResponse(BaseModel):
    id: str
    name: str
    kind: str
    native_symbol: str
    chain_id: Optional[int] = None
    explorer_url: str
    confirmation_delay_seconds: int
    available: bool
    tokens: list[TokenResponse]
