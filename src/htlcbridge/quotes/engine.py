"""Quote engine.

Prices a swap by trying, in order:
1. the routing aggregator (same EVM chain only)
2. the price oracle (both prices valid and fresh)
3. the static fallback price table

A tier that cannot price falls through to the next; if none can,
PriceUnavailable is raised.
"""

import logging
import time
from decimal import ROUND_DOWN, Decimal
from typing import Callable, Optional

from htlcbridge.adapters.base import ChainAdapter
from htlcbridge.chains import Chain, get_chain, get_token
from htlcbridge.config import Settings, get_settings
from htlcbridge.errors import (
    BridgeError,
    ChainUnavailable,
    PriceUnavailable,
    SameTokenError,
    ValidationError,
)
from htlcbridge.quotes.base import (
    CONFIDENCE,
    FeeBreakdown,
    PriceOracle,
    Quote,
    QuoteRequest,
    RoutingAggregator,
    RoutingMethod,
)

logger = logging.getLogger(__name__)

BPS = Decimal("10000")


class QuoteEngine:
    """Computes swap quotes with a deterministic fallback chain."""

    def __init__(
        self,
        adapters: dict[Chain, ChainAdapter],
        settings: Optional[Settings] = None,
        aggregator: Optional[RoutingAggregator] = None,
        oracle: Optional[PriceOracle] = None,
        fallback_prices: Optional[dict[str, Decimal]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.adapters = adapters
        self.settings = settings or get_settings()
        self.aggregator = aggregator
        self.oracle = oracle
        self.fallback_prices = {
            key.lower(): Decimal(value)
            for key, value in (
                fallback_prices if fallback_prices is not None else self.settings.fallback_prices
            ).items()
        }
        self.clock = clock

    def validate(self, request: QuoteRequest) -> None:
        """Check a request before pricing.

        Raises:
            SameTokenError: If source and destination token are the same
            ValidationError: For bad amounts or unsupported chains/tokens
        """
        if request.from_token.upper() == request.to_token.upper():
            raise SameTokenError(f"Cannot swap {request.from_token} to itself")

        try:
            request.from_chain = Chain(request.from_chain)
            request.to_chain = Chain(request.to_chain)
        except ValueError as e:
            raise ValidationError(f"Unsupported chain: {e}") from e

        amount = Decimal(request.amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        if amount < self.settings.min_swap_amount:
            raise ValidationError(f"Amount below minimum {self.settings.min_swap_amount}")
        if amount > self.settings.max_swap_amount:
            raise ValidationError(f"Amount above maximum {self.settings.max_swap_amount}")
        if not 0 <= request.slippage_bps < 10000:
            raise ValidationError("Slippage must be between 0 and 10000 bps")

        for chain, token in (
            (request.from_chain, request.from_token),
            (request.to_chain, request.to_token),
        ):
            if chain not in self.adapters:
                raise ValidationError(f"Chain {Chain(chain).value} is not available")
            if get_token(chain, token) is None:
                raise ValidationError(f"{token} is not supported on {chain.value}")

    async def get_quote(self, request: QuoteRequest) -> Quote:
        """Price a swap.

        Raises:
            SameTokenError, ValidationError, PriceUnavailable
        """
        self.validate(request)
        amount = Decimal(request.amount)

        result = None
        for method, tier in (
            (RoutingMethod.AGGREGATOR, self._quote_aggregator),
            (RoutingMethod.ORACLE, self._quote_oracle),
            (RoutingMethod.STATIC_FALLBACK, self._quote_static),
        ):
            try:
                result = await tier(request, amount)
            except (PriceUnavailable, ChainUnavailable) as e:
                logger.warning(f"{method.value} pricing failed, falling back: {e}")
                continue
            if result is not None:
                to_amount, details = result
                break
        else:
            raise PriceUnavailable(
                f"No price for {request.from_token} -> {request.to_token}"
            )

        to_decimals = get_chain(request.to_chain).tokens[request.to_token.upper()].decimals
        to_amount = to_amount.quantize(Decimal(1).scaleb(-to_decimals), rounding=ROUND_DOWN)
        slippage = Decimal(request.slippage_bps) / BPS
        min_received = (to_amount * (1 - slippage)).quantize(
            Decimal(1).scaleb(-to_decimals), rounding=ROUND_DOWN
        )

        fees = await self._fees(request.from_chain, request.to_chain, amount)

        quote = Quote(
            from_chain=request.from_chain,
            to_chain=request.to_chain,
            from_token=request.from_token.upper(),
            to_token=request.to_token.upper(),
            from_amount=amount,
            to_amount=to_amount,
            fees=fees,
            estimated_time_seconds=self._estimated_time(request.from_chain, request.to_chain),
            confidence=CONFIDENCE[method],
            routing_method=method,
            min_received=min_received,
            min_amount=self.settings.min_swap_amount,
            max_amount=self.settings.max_swap_amount,
            route_details=details,
            timestamp=self.clock(),
        )
        logger.info(
            f"Quote {amount} {quote.from_token}@{quote.from_chain.value} -> "
            f"{to_amount} {quote.to_token}@{quote.to_chain.value} via {method.value}"
        )
        return quote

    # ------------------------------------------------------------------
    # Pricing tiers; each returns (to_amount, details) or None to skip
    # ------------------------------------------------------------------

    async def _quote_aggregator(self, request: QuoteRequest, amount: Decimal):
        if self.aggregator is None:
            return None
        if request.from_chain != request.to_chain or not get_chain(request.from_chain).is_evm:
            return None

        quote = await self.aggregator.get_swap_quote(
            request.from_chain,
            request.from_token,
            request.to_token,
            amount,
            request.slippage_bps,
        )
        return quote.to_amount, {
            "aggregator": self.aggregator.name,
            "estimated_gas": quote.estimated_gas,
        }

    async def _quote_oracle(self, request: QuoteRequest, amount: Decimal):
        if self.oracle is None:
            return None

        from_price = await self.oracle.get_price(request.from_token)
        to_price = await self.oracle.get_price(request.to_token)
        now = self.clock()
        for token, price in ((request.from_token, from_price), (request.to_token, to_price)):
            if price is None or not price.is_valid or price.price <= 0:
                raise PriceUnavailable(f"Oracle has no valid price for {token}")
            if now - price.timestamp > self.settings.oracle_max_age_seconds:
                raise PriceUnavailable(f"Oracle price for {token} is stale")

        return amount * from_price.price / to_price.price, {
            "from_price": str(from_price.price),
            "to_price": str(to_price.price),
        }

    def _fallback_price(self, chain: Chain, token: str) -> Optional[Decimal]:
        return self.fallback_prices.get(
            f"{chain.value}:{token}".lower(),
            self.fallback_prices.get(token.lower()),
        )

    async def _quote_static(self, request: QuoteRequest, amount: Decimal):
        from_price = self._fallback_price(request.from_chain, request.from_token)
        to_price = self._fallback_price(request.to_chain, request.to_token)
        if not from_price or not to_price:
            raise PriceUnavailable(
                f"No fallback price for {request.from_token} or {request.to_token}"
            )
        return amount * from_price / to_price, {
            "from_price": str(from_price),
            "to_price": str(to_price),
        }

    # ------------------------------------------------------------------
    # Fees and timing
    # ------------------------------------------------------------------

    async def _fees(self, from_chain: Chain, to_chain: Chain, amount: Decimal) -> FeeBreakdown:
        bps = Decimal(self.settings.get_bridge_fee_bps(from_chain.value))
        bridge_fee = amount * bps / BPS

        try:
            gas_fee = await self.adapters[from_chain].estimate_lock_fee()
        except BridgeError as e:
            logger.warning(f"Lock fee estimate failed on {from_chain.value}: {e}")
            gas_fee = self.settings.fallback_gas_fee

        return FeeBreakdown(
            bridge_fee=bridge_fee,
            gas_fee=gas_fee,
            dest_fee=get_chain(to_chain).dest_fee,
        )

    def _estimated_time(self, from_chain: Chain, to_chain: Chain) -> int:
        return (
            self.settings.base_swap_time_seconds
            + get_chain(from_chain).confirmation_delay_seconds
            + get_chain(to_chain).confirmation_delay_seconds
        )
