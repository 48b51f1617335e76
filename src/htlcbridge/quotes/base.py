"""Quote types and pricing-source interfaces."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from htlcbridge.chains import Chain

logger = logging.getLogger(__name__)


class RoutingMethod(str, Enum):
    """Pricing tier that produced a quote."""

    AGGREGATOR = "aggregator"
    ORACLE = "oracle"
    STATIC_FALLBACK = "static-fallback"


# Confidence (0-100) reported for each tier
CONFIDENCE = {
    RoutingMethod.AGGREGATOR: 95,
    RoutingMethod.ORACLE: 85,
    RoutingMethod.STATIC_FALLBACK: 70,
}


@dataclass
class QuoteRequest:
    """Request to price a swap."""

    from_chain: Chain
    to_chain: Chain
    from_token: str
    to_token: str
    amount: Decimal
    slippage_bps: int = 100


@dataclass
class FeeBreakdown:
    """Fees for a swap.

    bridge_fee is in source-token units, gas_fee in source-chain native
    units and dest_fee in destination-chain native units.
    """

    bridge_fee: Decimal
    gas_fee: Decimal
    dest_fee: Decimal

    @property
    def total(self) -> Decimal:
        return self.bridge_fee + self.gas_fee + self.dest_fee


@dataclass
class Quote:
    """A priced swap."""

    from_chain: Chain
    to_chain: Chain
    from_token: str
    to_token: str
    from_amount: Decimal
    to_amount: Decimal
    fees: FeeBreakdown
    estimated_time_seconds: int
    confidence: int
    routing_method: RoutingMethod
    min_received: Decimal
    min_amount: Decimal
    max_amount: Decimal
    route_details: dict = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @property
    def effective_rate(self) -> Decimal:
        """Destination units per source unit."""
        if self.from_amount == 0:
            return Decimal("0")
        return self.to_amount / self.from_amount


@dataclass
class AggregatorQuote:
    """Raw answer from a routing aggregator."""

    to_amount: Decimal
    estimated_gas: int
    route: list = field(default_factory=list)


@dataclass
class OraclePrice:
    """A USD price reported by an oracle."""

    price: Decimal
    timestamp: int
    is_valid: bool


class RoutingAggregator(ABC):
    """DEX routing aggregator for same-chain pricing."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def get_swap_quote(
        self,
        chain: Chain,
        from_token: str,
        to_token: str,
        amount: Decimal,
        slippage_bps: int,
    ) -> AggregatorQuote:
        """Quote a same-chain swap.

        Raises:
            PriceUnavailable: If the aggregator cannot price the pair
        """
        pass

    async def close(self) -> None:
        return None


class PriceOracle(ABC):
    """Source of USD token prices."""

    @abstractmethod
    async def get_price(self, token: str) -> Optional[OraclePrice]:
        """Latest price for a token symbol, or None if the token is unknown.

        Raises:
            PriceUnavailable: If the oracle cannot be read
        """
        pass
