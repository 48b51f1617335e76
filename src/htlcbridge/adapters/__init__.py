"""Chain adapters for hash-time-locked escrow.

Adapters:
- EVMHTLCAdapter: HTLC smart contract on Ethereum / Polygon
- StellarClaimableBalanceAdapter: claimable balances on Stellar
- SimulatedLedger: in-memory ledger for dry-run mode and tests
"""

from htlcbridge.adapters.base import ChainAdapter, OnChainStatus, TxRef
from htlcbridge.adapters.factory import create_adapters
from htlcbridge.adapters.simulated import SimulatedLedger

__all__ = [
    "ChainAdapter",
    "OnChainStatus",
    "SimulatedLedger",
    "TxRef",
    "create_adapters",
]
