"""Domain errors raised by adapters, the quote engine and the coordinator.

Every error carries a short machine-readable ``code`` that the HTTP layer
returns alongside the message.
"""

from typing import Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""

    code = "bridge_error"
    retryable = False

    def __init__(self, message: str = "", swap_id: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.swap_id = swap_id

    def to_dict(self) -> dict:
        data = {"error": self.code, "message": self.message}
        if self.swap_id:
            data["swap_id"] = self.swap_id
        return data


class ValidationError(BridgeError):
    """Malformed or unsupported input."""

    code = "validation_error"


class SameTokenError(ValidationError):
    """Source and destination token are the same."""

    code = "same_token"


class ChainUnavailable(BridgeError):
    """Ledger RPC unreachable, timed out or returned a transport error."""

    code = "chain_unavailable"
    retryable = True


class InsufficientFunds(BridgeError):
    """Locking account cannot cover the amount."""

    code = "insufficient_funds"


class InvalidRecipient(BridgeError):
    """Address is not valid on the target chain."""

    code = "invalid_recipient"


class InvalidSecret(BridgeError):
    """Secret does not hash to the swap's hashlock."""

    code = "invalid_secret"


class SecretMismatch(InvalidSecret):
    """Preimage rejected by the on-chain lock."""

    code = "secret_mismatch"


class TimelockNotExpired(BridgeError):
    """Refund attempted before the timelock."""

    code = "timelock_not_expired"


class TimelockExpired(BridgeError):
    """Withdraw attempted at or after the timelock."""

    code = "timelock_expired"


class AlreadySettled(BridgeError):
    """Lock or swap already withdrawn or refunded."""

    code = "already_settled"


class SwapNotFound(BridgeError):
    """No swap with the given id."""

    code = "swap_not_found"


class LockNotFound(BridgeError):
    """No on-chain lock with the given id."""

    code = "lock_not_found"


class TransactionReverted(BridgeError):
    """Transaction was mined but reverted on-chain."""

    code = "transaction_reverted"


class PriceUnavailable(BridgeError):
    """No pricing tier could produce a quote."""

    code = "price_unavailable"
    retryable = True
