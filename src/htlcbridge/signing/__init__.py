"""Transaction signing services.

- LocalSigner: hot-wallet keys held in memory
"""

from htlcbridge.signing.base import (
    KeyNotFoundError,
    SignerType,
    SigningError,
    TransactionSigner,
)
from htlcbridge.signing.local import LocalSigner

__all__ = [
    "KeyNotFoundError",
    "LocalSigner",
    "SignerType",
    "SigningError",
    "TransactionSigner",
]
