"""Base interfaces for transaction signing.

Signing flow:
1. Adapter builds the unsigned transaction
2. Signer signs it with the key of the sending address
3. Adapter submits the signed transaction to the ledger

Signers never hand out private keys.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from stellar_sdk import TransactionEnvelope

from htlcbridge.chains import Chain

logger = logging.getLogger(__name__)


class SignerType(str, Enum):
    """Type of signing backend."""
    LOCAL = "local"           # Private key in memory (hot wallet)
    WALLET = "wallet"         # External user wallet


class TransactionSigner(ABC):
    """Abstract base class for signing backends."""

    def __init__(self, signer_type: SignerType):
        self.signer_type = signer_type

    @abstractmethod
    def address_for(self, chain: Chain) -> Optional[str]:
        """Default sending address on a chain, or None if no key is held."""
        pass

    @abstractmethod
    def can_sign(self, chain: Chain, address: str) -> bool:
        """Whether this signer holds the key for an address."""
        pass

    @abstractmethod
    async def sign_evm_transaction(self, chain: Chain, sender: str, tx: dict) -> bytes:
        """Sign an EVM transaction dict.

        Args:
            chain: EVM chain the transaction is for
            sender: Address whose key signs
            tx: Transaction fields (to, data, value, gas, nonce, chainId, fees)

        Returns:
            Raw signed transaction bytes ready for eth_sendRawTransaction

        Raises:
            KeyNotFoundError: If no key is held for sender
        """
        pass

    @abstractmethod
    async def sign_stellar_envelope(
        self, sender: str, envelope: TransactionEnvelope
    ) -> TransactionEnvelope:
        """Add the sender's signature to a Stellar transaction envelope.

        Raises:
            KeyNotFoundError: If no key is held for sender
        """
        pass

    async def health_check(self) -> bool:
        """Check if the signing backend is available."""
        return True

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(type={self.signer_type.value})"


class SigningError(Exception):
    """Exception raised when signing fails."""
    pass


class KeyNotFoundError(SigningError):
    """Exception raised when signing key is not found."""
    pass
