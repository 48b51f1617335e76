"""Local signing backend.

Uses in-memory private keys for signing. Suitable for:
- Development/testing
- The bridge hot wallet that funds destination legs

WARNING: Private keys are stored in memory. Use an external signer for
production with significant funds.
"""

import logging
import os
from typing import Optional

from eth_account import Account
from stellar_sdk import Keypair, TransactionEnvelope

from htlcbridge.chains import Chain, get_chain
from htlcbridge.crypto import decrypt_key
from htlcbridge.signing.base import KeyNotFoundError, SignerType, TransactionSigner

logger = logging.getLogger(__name__)

ENV_PREFIX = "HOT_WALLET_PRIVATE_KEY_"


class LocalSigner(TransactionSigner):
    """Local signing backend using in-memory private keys.

    Keys are loaded from environment variables:
    - HOT_WALLET_PRIVATE_KEY_{CHAIN}: Chain-specific key (hex for EVM chains,
      an S... seed for Stellar)
    - HOT_WALLET_PRIVATE_KEY: Default key for EVM chains

    Values may be Fernet-encrypted with MASTER_KEY.
    """

    def __init__(self, master_key: Optional[str] = None, load_env: bool = True):
        super().__init__(SignerType.LOCAL)
        self._master_key = master_key
        # lower-case EVM address -> hex private key
        self._evm_keys: dict[str, str] = {}
        self._stellar_keys: dict[str, Keypair] = {}
        self._defaults: dict[Chain, str] = {}
        if load_env:
            self._load_keys()

    def _load_keys(self):
        """Load private keys from environment."""
        default_key = os.environ.get("HOT_WALLET_PRIVATE_KEY")

        for chain in Chain:
            value = os.environ.get(f"{ENV_PREFIX}{chain.name}")
            if not value and get_chain(chain).is_evm:
                value = default_key
            if not value:
                continue
            key = decrypt_key(value, self._master_key)
            if get_chain(chain).is_evm:
                address = self.add_evm_key(key)
            else:
                address = self.add_stellar_secret(key)
            self._defaults[chain] = address
            logger.info(f"Loaded hot wallet key for {chain.value}: {address}")

    def add_evm_key(self, private_key: str) -> str:
        """Register an EVM private key and return its address."""
        account = Account.from_key(private_key)
        self._evm_keys[account.address.lower()] = private_key
        return account.address

    def add_stellar_secret(self, secret_seed: str) -> str:
        """Register a Stellar secret seed and return its public key."""
        keypair = Keypair.from_secret(secret_seed)
        self._stellar_keys[keypair.public_key] = keypair
        return keypair.public_key

    def address_for(self, chain: Chain) -> Optional[str]:
        return self._defaults.get(Chain(chain))

    def can_sign(self, chain: Chain, address: str) -> bool:
        if get_chain(chain).is_evm:
            return address.lower() in self._evm_keys
        return address in self._stellar_keys

    async def sign_evm_transaction(self, chain: Chain, sender: str, tx: dict) -> bytes:
        private_key = self._evm_keys.get(sender.lower())
        if private_key is None:
            raise KeyNotFoundError(f"No signing key found for {sender} on {Chain(chain).value}")
        signed = Account.sign_transaction(tx, private_key)
        return bytes(signed.raw_transaction)

    async def sign_stellar_envelope(
        self, sender: str, envelope: TransactionEnvelope
    ) -> TransactionEnvelope:
        keypair = self._stellar_keys.get(sender)
        if keypair is None:
            raise KeyNotFoundError(f"No signing key found for {sender} on stellar")
        envelope.sign(keypair)
        return envelope

    async def health_check(self) -> bool:
        """Check if any keys are loaded."""
        return bool(self._evm_keys or self._stellar_keys)
