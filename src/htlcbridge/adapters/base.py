"""Base interfaces for chain adapters.

Every ledger that takes part in a swap is driven through the same
hash-time-lock contract:

1. lock: sender escrows an amount claimable by the recipient with the
   preimage of a hashlock, until an absolute timelock
2. withdraw: recipient claims before the timelock by revealing the preimage
3. refund: sender reclaims at or after the timelock
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from htlcbridge.chains import Chain, ChainConfig, get_chain, is_valid_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TxRef:
    """Reference to a submitted ledger transaction."""
    chain: Chain
    tx_hash: str
    lock_id: Optional[str] = None


@dataclass(frozen=True)
class OnChainStatus:
    """Settlement state of one on-chain lock.

    All three flags False means the lock is gone but the outcome is unknown
    to this adapter.
    """
    locked: bool
    withdrawn: bool = False
    refunded: bool = False
    preimage: Optional[str] = None

    @property
    def settled(self) -> bool:
        return self.withdrawn or self.refunded


class ChainAdapter(ABC):
    """Abstract base class for chain adapters.

    Each chain has its own implementation.
    """

    def __init__(self, chain: Chain):
        self.chain = Chain(chain)

    @property
    def config(self) -> ChainConfig:
        return get_chain(self.chain)

    @abstractmethod
    async def lock(
        self,
        sender: str,
        recipient: str,
        token: str,
        amount: Decimal,
        hashlock: str,
        timelock: int,
    ) -> TxRef:
        """Escrow funds under a hashlock and timelock.

        Args:
            sender: Account that funds the lock
            recipient: Account that may withdraw with the preimage
            token: Token symbol on this chain
            amount: Amount in token units
            hashlock: 0x-prefixed SHA-256 of the secret
            timelock: Absolute Unix seconds

        Returns:
            TxRef whose lock_id identifies the lock

        Raises:
            InsufficientFunds, InvalidRecipient, ChainUnavailable
        """
        pass

    @abstractmethod
    async def withdraw(self, lock_id: str, secret: str) -> TxRef:
        """Claim a lock for its recipient by revealing the preimage.

        Raises:
            SecretMismatch, AlreadySettled, TimelockExpired, ChainUnavailable
        """
        pass

    @abstractmethod
    async def refund(self, lock_id: str) -> TxRef:
        """Return an expired lock to its sender.

        Raises:
            TimelockNotExpired, AlreadySettled, ChainUnavailable
        """
        pass

    @abstractmethod
    async def get_onchain_status(self, lock_id: str) -> OnChainStatus:
        """Read the settlement state of a lock."""
        pass

    @abstractmethod
    async def find_lock(
        self, sender: str, recipient: str, hashlock: str, timelock: int
    ) -> Optional[str]:
        """Search the ledger for a lock created with these terms.

        Used when a lock's submission reply was lost, so its id is unknown.

        Returns:
            The lock id, or None if no such lock exists
        """
        pass

    @abstractmethod
    async def estimate_lock_fee(self) -> Decimal:
        """Estimated fee for a lock transaction in native units."""
        pass

    def validate_address(self, address: str) -> bool:
        """Validate an address for this chain."""
        return is_valid_address(self.chain, address)

    async def close(self) -> None:
        """Release network resources."""
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(chain={self.chain.value})"
