"""Swap pricing: aggregator, oracle and static fallback tiers."""

from htlcbridge.quotes.base import (
    CONFIDENCE,
    FeeBreakdown,
    OraclePrice,
    PriceOracle,
    Quote,
    QuoteRequest,
    RoutingAggregator,
    RoutingMethod,
)
from htlcbridge.quotes.engine import QuoteEngine

__all__ = [
    "CONFIDENCE",
    "FeeBreakdown",
    "OraclePrice",
    "PriceOracle",
    "Quote",
    "QuoteEngine",
    "QuoteRequest",
    "RoutingAggregator",
    "RoutingMethod",
]
