"""In-memory HTLC ledger for dry-run mode and tests.

Holds real balances and enforces the same rules as the on-chain contracts:
hashlock verification, timelock checks and single settlement.
"""

import asyncio
import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

from htlcbridge.adapters.base import ChainAdapter, OnChainStatus, TxRef
from htlcbridge.chains import Chain, get_token, normalize_address
from htlcbridge.crypto import secret_hex, verify_secret
from htlcbridge.errors import (
    AlreadySettled,
    InsufficientFunds,
    InvalidRecipient,
    LockNotFound,
    SecretMismatch,
    TimelockExpired,
    TimelockNotExpired,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass
class SimulatedLock:
    """One escrow entry."""
    lock_id: str
    sender: str
    recipient: str
    token: str
    amount: Decimal
    hashlock: str
    timelock: int
    withdrawn: bool = False
    refunded: bool = False
    preimage: Optional[str] = None


class SimulatedLedger(ChainAdapter):
    """Simulated chain adapter with HTLC semantics.

    Args:
        chain: Chain this ledger stands in for
        clock: Returns the ledger time in Unix seconds
        lock_fee: Value returned by estimate_lock_fee
        latency: Seconds each call sleeps before running
        default_balance: Balance an account starts with when first seen
    """

    def __init__(
        self,
        chain: Chain,
        clock: Callable[[], float] = time.time,
        lock_fee: Decimal = Decimal("0.0005"),
        latency: float = 0.0,
        default_balance: Decimal = Decimal("0"),
    ):
        super().__init__(chain)
        self.clock = clock
        self.lock_fee = lock_fee
        self.latency = latency
        self.default_balance = Decimal(default_balance)
        self.locks: dict[str, SimulatedLock] = {}
        self._balances: dict[tuple[str, str], Decimal] = {}
        self._faults: dict[str, list[Exception]] = {}
        self._lost_replies: dict[str, list[Exception]] = {}
        self._nonce = 0
        self.calls: list[str] = []

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def fund(self, address: str, token: str, amount: Decimal) -> None:
        key = (normalize_address(self.chain, address), token.upper())
        self._balances[key] = self.balance_of(address, token) + Decimal(amount)

    def balance_of(self, address: str, token: str) -> Decimal:
        key = (normalize_address(self.chain, address), token.upper())
        return self._balances.get(key, self.default_balance)

    def fail_next(self, operation: str, error: Exception) -> None:
        """Make the next call of an operation raise an error."""
        self._faults.setdefault(operation, []).append(error)

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if self.latency:
            await asyncio.sleep(self.latency)
        pending = self._faults.get(operation)
        if pending:
            raise pending.pop(0)

    def lose_reply(self, operation: str, error: Exception) -> None:
        """Make the next call of an operation take effect, then raise an error.

        Stands in for a transaction that lands on-chain while its reply is lost.
        """
        self._lost_replies.setdefault(operation, []).append(error)

    def _reply(self, operation: str, result: TxRef) -> TxRef:
        pending = self._lost_replies.get(operation)
        if pending:
            raise pending.pop(0)
        return result

    def _tx_hash(self) -> str:
        return "0x" + secrets.token_hex(32)

    def _get(self, lock_id: str) -> SimulatedLock:
        entry = self.locks.get(lock_id)
        if entry is None:
            raise LockNotFound(f"No lock {lock_id} on {self.chain.value}")
        return entry

    # ------------------------------------------------------------------
    # ChainAdapter
    # ------------------------------------------------------------------

    async def lock(
        self,
        sender: str,
        recipient: str,
        token: str,
        amount: Decimal,
        hashlock: str,
        timelock: int,
    ) -> TxRef:
        await self._enter("lock")

        if not self.validate_address(recipient):
            raise InvalidRecipient(f"Invalid {self.chain.value} recipient: {recipient}")
        if get_token(self.chain, token) is None:
            raise ValidationError(f"{token} is not supported on {self.chain.value}")
        if amount <= 0:
            raise ValidationError("Lock amount must be positive")
        if timelock <= self.clock():
            raise ValidationError("Timelock must be in the future")

        if self.balance_of(sender, token) < amount:
            raise InsufficientFunds(
                f"{sender} has {self.balance_of(sender, token)} {token}, needs {amount}"
            )

        self._nonce += 1
        lock_id = "0x" + hashlib.sha256(
            f"{self.chain.value}|{sender}|{recipient}|{token}|{amount}|"
            f"{hashlock}|{timelock}|{self._nonce}".encode()
        ).hexdigest()

        self.fund(sender, token, -amount)
        self.locks[lock_id] = SimulatedLock(
            lock_id=lock_id,
            sender=sender,
            recipient=recipient,
            token=token.upper(),
            amount=amount,
            hashlock=hashlock.lower(),
            timelock=timelock,
        )

        logger.info(
            f"[SIMULATED] {self.chain.value} lock {lock_id[:10]}: "
            f"{amount} {token} {sender} -> {recipient}"
        )
        return self._reply("lock", TxRef(self.chain, self._tx_hash(), lock_id))

    async def withdraw(self, lock_id: str, secret: str) -> TxRef:
        await self._enter("withdraw")
        entry = self._get(lock_id)

        if entry.withdrawn or entry.refunded:
            raise AlreadySettled(f"Lock {lock_id} already settled")
        if not verify_secret(secret, entry.hashlock):
            raise SecretMismatch(f"Preimage does not match lock {lock_id}")
        if self.clock() >= entry.timelock:
            raise TimelockExpired(f"Lock {lock_id} expired")

        entry.withdrawn = True
        entry.preimage = secret_hex(secret)
        self.fund(entry.recipient, entry.token, entry.amount)

        logger.info(f"[SIMULATED] {self.chain.value} withdraw {lock_id[:10]}")
        return self._reply("withdraw", TxRef(self.chain, self._tx_hash(), lock_id))

    async def refund(self, lock_id: str) -> TxRef:
        await self._enter("refund")
        entry = self._get(lock_id)

        if entry.withdrawn or entry.refunded:
            raise AlreadySettled(f"Lock {lock_id} already settled")
        if self.clock() < entry.timelock:
            raise TimelockNotExpired(f"Lock {lock_id} not expired")

        entry.refunded = True
        self.fund(entry.sender, entry.token, entry.amount)

        logger.info(f"[SIMULATED] {self.chain.value} refund {lock_id[:10]}")
        return self._reply("refund", TxRef(self.chain, self._tx_hash(), lock_id))

    async def get_onchain_status(self, lock_id: str) -> OnChainStatus:
        await self._enter("status")
        entry = self._get(lock_id)
        return OnChainStatus(
            locked=not (entry.withdrawn or entry.refunded),
            withdrawn=entry.withdrawn,
            refunded=entry.refunded,
            preimage=entry.preimage,
        )

    async def find_lock(
        self, sender: str, recipient: str, hashlock: str, timelock: int
    ) -> Optional[str]:
        await self._enter("find_lock")
        sender = normalize_address(self.chain, sender)
        recipient = normalize_address(self.chain, recipient)
        for entry in self.locks.values():
            if (
                normalize_address(self.chain, entry.sender) == sender
                and normalize_address(self.chain, entry.recipient) == recipient
                and entry.hashlock == hashlock.lower()
                and entry.timelock == timelock
            ):
                return entry.lock_id
        return None

    async def estimate_lock_fee(self) -> Decimal:
        await self._enter("estimate_fee")
        return self.lock_fee
