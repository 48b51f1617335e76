"""Supported chains and their token registries.

Two ledger kinds are bridged:
- smart-contract chains (Ethereum, Polygon) holding swaps in an HTLC contract
- the Stellar claimable-balance ledger
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from stellar_sdk import StrKey
from web3 import Web3


class Chain(str, Enum):
    """Chain identifier."""

    ETHEREUM = "ethereum"
    POLYGON = "polygon"
    STELLAR = "stellar"


class ChainKind(str, Enum):
    """How a chain holds hash-time-locked value."""

    SMART_CONTRACT = "smart_contract"
    CLAIMABLE_BALANCE = "claimable_balance"


@dataclass
class TokenConfig:
    """A token on one chain.

    For EVM chains ``address`` is the ERC-20 contract (None for the native
    coin); for Stellar it is the asset issuer (None for XLM).
    """

    symbol: str
    decimals: int
    address: Optional[str] = None

    @property
    def is_native(self) -> bool:
        return self.address is None


@dataclass
class ChainConfig:
    """Static configuration for a chain."""

    chain: Chain
    name: str
    kind: ChainKind
    native_symbol: str
    decimals: int
    explorer_url: str
    confirmation_delay_seconds: int
    # Fee charged for the destination-leg lock, in native units
    dest_fee: Decimal
    chain_id: Optional[int] = None
    tokens: dict[str, TokenConfig] = field(default_factory=dict)

    @property
    def is_evm(self) -> bool:
        return self.kind == ChainKind.SMART_CONTRACT


CHAINS: dict[Chain, ChainConfig] = {
    Chain.ETHEREUM: ChainConfig(
        chain=Chain.ETHEREUM,
        name="Ethereum",
        kind=ChainKind.SMART_CONTRACT,
        native_symbol="ETH",
        decimals=18,
        explorer_url="https://etherscan.io",
        confirmation_delay_seconds=60,
        dest_fee=Decimal("0.002"),
        chain_id=1,
        tokens={
            "ETH": TokenConfig("ETH", 18),
            "USDC": TokenConfig("USDC", 6, "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"),
            "USDT": TokenConfig("USDT", 6, "0xdAC17F958D2ee523a2206206994597C13D831ec7"),
            "DAI": TokenConfig("DAI", 18, "0x6B175474E89094C44Da98b954EedeAC495271d0F"),
        },
    ),
    Chain.POLYGON: ChainConfig(
        chain=Chain.POLYGON,
        name="Polygon",
        kind=ChainKind.SMART_CONTRACT,
        native_symbol="MATIC",
        decimals=18,
        explorer_url="https://polygonscan.com",
        confirmation_delay_seconds=30,
        dest_fee=Decimal("0.001"),
        chain_id=137,
        tokens={
            "MATIC": TokenConfig("MATIC", 18),
            "USDC": TokenConfig("USDC", 6, "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359"),
            "USDT": TokenConfig("USDT", 6, "0xc2132D05D31c914a87C6611C10748AEb04B58e8F"),
            "DAI": TokenConfig("DAI", 18, "0x8f3Cf7ad23Cd3CaDbD9735AFf958023239c6A063"),
        },
    ),
    Chain.STELLAR: ChainConfig(
        chain=Chain.STELLAR,
        name="Stellar",
        kind=ChainKind.CLAIMABLE_BALANCE,
        native_symbol="XLM",
        decimals=7,
        explorer_url="https://stellar.expert/explorer/public",
        confirmation_delay_seconds=5,
        dest_fee=Decimal("0.00001"),
        tokens={
            "XLM": TokenConfig("XLM", 7),
            "USDC": TokenConfig(
                "USDC", 7, "GA5ZSEJYB37JRC5AVCIA5MOP4RHTM335X2KGX3IHOJAPP5RE34K4KZVN"
            ),
        },
    ),
}


def get_chain(chain: "Chain | str") -> ChainConfig:
    """Get configuration for a chain.

    Raises:
        KeyError: If the chain is not supported
    """
    return CHAINS[Chain(chain)]


def get_all_chains() -> list[ChainConfig]:
    """Get all supported chain configurations."""
    return list(CHAINS.values())


def get_token(chain: "Chain | str", symbol: str) -> Optional[TokenConfig]:
    """Get a token on a chain, or None if it is not supported there."""
    return get_chain(chain).tokens.get(symbol.upper())


def is_valid_address(chain: "Chain | str", address: str) -> bool:
    """Check that an address is well formed for the chain."""
    if not address:
        return False
    config = get_chain(chain)
    if config.is_evm:
        return Web3.is_address(address)
    return StrKey.is_valid_ed25519_public_key(address)


def normalize_address(chain: "Chain | str", address: str) -> str:
    """Canonical form of an address: lower-case hex for EVM, unchanged otherwise."""
    if get_chain(chain).is_evm:
        return address.lower()
    return address
