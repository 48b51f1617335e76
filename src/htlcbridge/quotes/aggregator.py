"""1inch DEX aggregator integration.

API docs: https://portal.1inch.dev/documentation/apis/swap/introduction
"""

import logging
from decimal import Decimal
from typing import Optional

import httpx

from htlcbridge.chains import Chain, TokenConfig, get_chain, get_token
from htlcbridge.errors import PriceUnavailable
from htlcbridge.quotes.base import AggregatorQuote, RoutingAggregator

logger = logging.getLogger(__name__)

ONEINCH_API_V6 = "https://api.1inch.dev/swap/v6.0"

# 1inch address for a chain's native coin
NATIVE_TOKEN_ADDRESS = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"


class OneInchAggregator(RoutingAggregator):
    """Prices same-chain EVM swaps through the 1inch quote endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = ONEINCH_API_V6,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize 1inch aggregator.

        Args:
            api_key: 1inch API key (required for production)
            base_url: API base without chain id
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return "1inch"

    def _get_headers(self) -> dict:
        """Get API headers with authorization."""
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def _token_address(token: TokenConfig) -> str:
        return NATIVE_TOKEN_ADDRESS if token.is_native else token.address

    async def get_swap_quote(
        self,
        chain: Chain,
        from_token: str,
        to_token: str,
        amount: Decimal,
        slippage_bps: int,
    ) -> AggregatorQuote:
        config = get_chain(chain)
        if not config.is_evm:
            raise PriceUnavailable(f"1inch does not support {config.chain.value}")

        src = get_token(chain, from_token)
        dst = get_token(chain, to_token)
        if src is None or dst is None:
            raise PriceUnavailable(f"1inch: {from_token}/{to_token} not listed on {config.chain.value}")

        amount_units = int(amount * (Decimal(10) ** src.decimals))

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(
                    f"{self.base_url}/{config.chain_id}/quote",
                    headers=self._get_headers(),
                    params={
                        "src": self._token_address(src),
                        "dst": self._token_address(dst),
                        "amount": str(amount_units),
                        "includeGas": "true",
                        "includeProtocols": "true",
                    },
                )
        except httpx.HTTPError as e:
            raise PriceUnavailable(f"1inch request failed: {e}") from e

        if response.status_code != 200:
            logger.warning(f"1inch API error: {response.status_code} - {response.text[:200]}")
            raise PriceUnavailable(f"1inch returned HTTP {response.status_code}")

        data = response.json()
        raw_amount = data.get("dstAmount") or data.get("toAmount")
        if not raw_amount:
            raise PriceUnavailable("1inch response has no destination amount")

        to_amount = Decimal(raw_amount) / (Decimal(10) ** dst.decimals)
        logger.debug(f"1inch quote on {config.chain.value}: {amount} {from_token} -> {to_amount} {to_token}")

        return AggregatorQuote(
            to_amount=to_amount,
            estimated_gas=int(data.get("gas", 0) or 0),
            route=data.get("protocols", []),
        )
