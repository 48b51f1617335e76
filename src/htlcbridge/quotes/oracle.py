"""Price oracles.

OnChainPriceOracle reads a deployed price-feed contract; SimulatedOracle
serves fixed prices for dry-run mode and tests.
"""

import logging
import time
from decimal import Decimal
from typing import Callable, Optional

import httpx
from eth_abi import decode
from web3 import Web3

from htlcbridge.errors import PriceUnavailable
from htlcbridge.quotes.base import OraclePrice, PriceOracle

logger = logging.getLogger(__name__)

ORACLE_DECIMALS = 8

ORACLE_ABI = [
    {
        "name": "getLatestPrice",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "symbol", "type": "string"}],
        "outputs": [
            {"name": "price", "type": "uint256"},
            {"name": "updatedAt", "type": "uint256"},
        ],
    },
]


class OnChainPriceOracle(PriceOracle):
    """Reads USD prices (8 decimals) keyed by token symbol via eth_call."""

    def __init__(
        self,
        rpc_url: str,
        oracle_address: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rpc_url = rpc_url
        self.oracle_address = Web3.to_checksum_address(oracle_address)
        self.timeout = timeout
        self._transport = transport
        self._contract = Web3().eth.contract(address=self.oracle_address, abi=ORACLE_ABI)

    async def get_price(self, token: str) -> Optional[OraclePrice]:
        data = self._contract.encode_abi("getLatestPrice", args=[token.upper()])
        payload = {
            "jsonrpc": "2.0",
            "method": "eth_call",
            "params": [{"to": self.oracle_address, "data": data}, "latest"],
            "id": 1,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.rpc_url, json=payload)
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPError as e:
            raise PriceUnavailable(f"Oracle RPC failed: {e}") from e

        if "error" in result:
            # Reverts for unknown symbols
            logger.debug(f"Oracle has no price for {token}: {result['error']}")
            return None

        raw = bytes.fromhex((result.get("result") or "0x")[2:])
        if not raw:
            return None
        price, updated_at = decode(["uint256", "uint256"], raw)
        return OraclePrice(
            price=Decimal(price) / (Decimal(10) ** ORACLE_DECIMALS),
            timestamp=int(updated_at),
            is_valid=price > 0,
        )


class SimulatedOracle(PriceOracle):
    """Oracle with settable prices."""

    def __init__(
        self,
        prices: Optional[dict[str, Decimal]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.clock = clock
        self._prices: dict[str, OraclePrice] = {}
        for symbol, price in (prices or {}).items():
            self.set_price(symbol, price)

    def set_price(
        self,
        token: str,
        price: Decimal,
        timestamp: Optional[int] = None,
        is_valid: bool = True,
    ) -> None:
        self._prices[token.upper()] = OraclePrice(
            price=Decimal(price),
            timestamp=int(self.clock()) if timestamp is None else timestamp,
            is_valid=is_valid,
        )

    async def get_price(self, token: str) -> Optional[OraclePrice]:
        return self._prices.get(token.upper())
