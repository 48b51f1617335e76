"""Stellar claimable-balance adapter.

Stellar has no hash predicate on claimable balances, so the hashlock is
enforced by this adapter:

- lock creates a claimable balance with two claimants: the recipient,
  claimable before the timelock, and the locking account, claimable from
  the timelock on. The creating transaction carries the hashlock as its
  hash memo.
- withdraw checks the preimage against that memo, then claims for the
  recipient with the preimage as the claim transaction's hash memo, which
  publishes the secret on the ledger.
- refund claims for the locking account after the timelock.

Transactions are built with stellar-sdk and submitted to Horizon over httpx.
"""

import base64
import logging
import time
from decimal import ROUND_DOWN, Decimal
from typing import Callable, Optional

import httpx
from stellar_sdk import (
    Account,
    Asset,
    Claimant,
    ClaimPredicate,
    TransactionBuilder,
    TransactionEnvelope,
)
from stellar_sdk import xdr as stellar_xdr

from htlcbridge.adapters.base import ChainAdapter, OnChainStatus, TxRef
from htlcbridge.chains import Chain, TokenConfig, get_token
from htlcbridge.crypto import secret_hex, verify_secret
from htlcbridge.errors import (
    AlreadySettled,
    BridgeError,
    ChainUnavailable,
    InsufficientFunds,
    InvalidRecipient,
    LockNotFound,
    SecretMismatch,
    TimelockExpired,
    TimelockNotExpired,
    TransactionReverted,
    ValidationError,
)
from htlcbridge.signing.base import SigningError, TransactionSigner

logger = logging.getLogger(__name__)

STROOP = Decimal("0.0000001")
BASE_FEE_STROOPS = 100
TX_TIMEOUT_SECONDS = 300
HISTORY_PAGE_LIMIT = 200

# Horizon result codes mapped to typed errors
INSUFFICIENT_CODES = {"op_underfunded", "op_low_reserve", "tx_insufficient_balance"}
MISSING_CODES = {"op_does_not_exist"}


def format_amount(amount: Decimal) -> str:
    """Stellar amounts carry at most 7 decimal places."""
    return format(Decimal(amount).quantize(STROOP, rounding=ROUND_DOWN), "f")


class StellarClaimableBalanceAdapter(ChainAdapter):
    """Adapter for hash-time-locked claimable balances on Stellar."""

    def __init__(
        self,
        horizon_url: str,
        network_passphrase: str,
        signer: TransactionSigner,
        base_fee: int = BASE_FEE_STROOPS,
        fallback_fee: Decimal = Decimal("0.00001"),
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(Chain.STELLAR)
        self.horizon_url = horizon_url.rstrip("/")
        self.network_passphrase = network_passphrase
        self.signer = signer
        self.base_fee = base_fee
        self.fallback_fee = fallback_fee
        self.timeout = timeout
        self.clock = clock
        self._transport = transport
        # Settlement journal: balance id -> "withdrawn" | "refunded"
        self.journal: dict[str, str] = {}
        self._hashlocks: dict[str, str] = {}
        self._preimages: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Horizon
    # ------------------------------------------------------------------

    async def _get(self, path: str, params: Optional[dict] = None) -> Optional[dict]:
        """GET a Horizon resource; None on 404."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(f"{self.horizon_url}{path}", params=params)
        except httpx.HTTPError as e:
            raise ChainUnavailable(f"Horizon GET {path} failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ChainUnavailable(f"Horizon GET {path}: HTTP {response.status_code}")
        return response.json()

    async def _submit(self, envelope: TransactionEnvelope) -> dict:
        """Submit a signed envelope, mapping Horizon result codes to errors."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.horizon_url}/transactions",
                    data={"tx": envelope.to_xdr()},
                )
        except httpx.HTTPError as e:
            raise ChainUnavailable(f"Horizon submit failed: {e}") from e

        if response.status_code == 200:
            return response.json()
        if response.status_code != 400:
            raise ChainUnavailable(f"Horizon submit: HTTP {response.status_code}")

        extras = response.json().get("extras", {})
        codes = extras.get("result_codes", {})
        op_codes = set(codes.get("operations") or [])
        tx_code = codes.get("transaction", "")
        all_codes = op_codes | {tx_code}

        if all_codes & INSUFFICIENT_CODES:
            raise InsufficientFunds(f"Stellar rejected transaction: {sorted(all_codes)}")
        if all_codes & MISSING_CODES:
            raise AlreadySettled(f"Claimable balance no longer exists: {sorted(all_codes)}")
        if "op_cannot_claim" in all_codes:
            raise TransactionReverted("Claim predicate not satisfied")
        if tx_code in ("tx_bad_seq", "tx_too_late"):
            raise ChainUnavailable(f"Stellar transaction not applied: {tx_code}")
        raise TransactionReverted(f"Stellar transaction failed: {sorted(all_codes)}")

    async def _load_account(self, address: str) -> dict:
        account = await self._get(f"/accounts/{address}")
        if account is None:
            raise InsufficientFunds(f"Stellar account {address} does not exist")
        return account

    def _asset(self, token: TokenConfig) -> Asset:
        if token.is_native:
            return Asset.native()
        return Asset(token.symbol, token.address)

    @staticmethod
    def _available(account: dict, token: TokenConfig) -> Decimal:
        for balance in account.get("balances", []):
            if token.is_native and balance.get("asset_type") == "native":
                return Decimal(balance["balance"])
            if (
                not token.is_native
                and balance.get("asset_code") == token.symbol
                and balance.get("asset_issuer") == token.address
            ):
                return Decimal(balance["balance"])
        return Decimal("0")

    def _builder(self, account: dict) -> TransactionBuilder:
        source = Account(account["account_id"], int(account["sequence"]))
        return TransactionBuilder(
            source_account=source,
            network_passphrase=self.network_passphrase,
            base_fee=self.base_fee,
        )

    async def _sign(self, sender: str, envelope: TransactionEnvelope) -> TransactionEnvelope:
        try:
            return await self.signer.sign_stellar_envelope(sender, envelope)
        except SigningError as e:
            raise BridgeError(f"Cannot sign for {sender}: {e}") from e

    @staticmethod
    def balance_id_from_result(result_xdr: str) -> str:
        """Extract the created balance id from a transaction result."""
        result = stellar_xdr.TransactionResult.from_xdr(result_xdr)
        op_result = result.result.results[0]
        balance_id = op_result.tr.create_claimable_balance_result.balance_id
        return balance_id.to_xdr_bytes().hex()

    # ------------------------------------------------------------------
    # Claimable balance reads
    # ------------------------------------------------------------------

    async def _get_balance(self, lock_id: str) -> Optional[dict]:
        return await self._get(f"/claimable_balances/{lock_id}")

    @staticmethod
    def _parse_claimants(balance: dict) -> tuple[str, str, int]:
        """Return (recipient, locker, timelock) from a balance's claimants."""
        recipient = locker = None
        timelock = None
        for claimant in balance.get("claimants", []):
            predicate = claimant.get("predicate", {})
            if "abs_before_epoch" in predicate or "abs_before" in predicate:
                recipient = claimant["destination"]
                timelock = int(predicate.get("abs_before_epoch") or 0)
            elif "not" in predicate:
                locker = claimant["destination"]
                inner = predicate["not"]
                timelock = timelock or int(inner.get("abs_before_epoch") or 0)
        if not (recipient and locker and timelock):
            raise ValidationError(f"Claimable balance {balance.get('id')} is not an HTLC")
        return recipient, locker, timelock

    async def _get_hashlock(self, lock_id: str) -> str:
        if lock_id in self._hashlocks:
            return self._hashlocks[lock_id]

        page = await self._get(
            f"/claimable_balances/{lock_id}/transactions",
            params={"order": "asc", "limit": 1},
        )
        records = (page or {}).get("_embedded", {}).get("records", [])
        if not records or records[0].get("memo_type") != "hash":
            raise ValidationError(f"Claimable balance {lock_id} has no hashlock memo")
        hashlock = "0x" + base64.b64decode(records[0]["memo"]).hex()
        self._hashlocks[lock_id] = hashlock
        return hashlock

    async def _claim_outcome(self, lock_id: str) -> Optional[tuple[str, Optional[str]]]:
        """Derive how a vanished balance was claimed from its Horizon history.

        The first transaction created the balance; the last one claimed it.
        A claim carrying a hash memo that opens the hashlock was a withdraw;
        a claim by the creating account was a refund.

        Returns:
            ("withdrawn", preimage) or ("refunded", None), or None when the
            history shows no claim
        """
        page = await self._get(
            f"/claimable_balances/{lock_id}/transactions",
            params={"order": "asc", "limit": HISTORY_PAGE_LIMIT},
        )
        records = [
            r for r in (page or {}).get("_embedded", {}).get("records", [])
            if r.get("successful", True)
        ]
        if len(records) < 2:
            return None

        creation, claim = records[0], records[-1]
        if creation.get("memo_type") == "hash":
            self._hashlocks.setdefault(
                lock_id, "0x" + base64.b64decode(creation["memo"]).hex()
            )
        hashlock = self._hashlocks.get(lock_id)

        if claim.get("memo_type") == "hash" and hashlock:
            preimage = "0x" + base64.b64decode(claim["memo"]).hex()
            if verify_secret(preimage, hashlock):
                return "withdrawn", preimage
        if claim.get("source_account") == creation.get("source_account"):
            return "refunded", None
        return "withdrawn", None

    async def _settled_outcome(self, lock_id: str) -> Optional[str]:
        """Journal entry for a vanished balance, filled from history if needed."""
        if lock_id not in self.journal:
            outcome = await self._claim_outcome(lock_id)
            if outcome is None:
                return None
            self.journal[lock_id], preimage = outcome
            if preimage:
                self._preimages[lock_id] = preimage
        return self.journal[lock_id]

    async def _settled_or_missing(self, lock_id: str) -> BridgeError:
        outcome = await self._settled_outcome(lock_id)
        if outcome:
            return AlreadySettled(f"Lock {lock_id} already {outcome}")
        return LockNotFound(f"No claimable balance {lock_id}")

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
        if not self.validate_address(recipient):
            raise InvalidRecipient(f"Invalid Stellar recipient: {recipient}")
        token_config = get_token(self.chain, token)
        if token_config is None:
            raise ValidationError(f"{token} is not supported on Stellar")
        amount = Decimal(format_amount(amount))
        if amount <= 0:
            raise ValidationError("Lock amount must be positive")
        if timelock <= self.clock():
            raise ValidationError("Timelock must be in the future")

        account = await self._load_account(sender)
        available = self._available(account, token_config)
        if available < amount:
            raise InsufficientFunds(f"{sender} has {available} {token}, needs {amount}")

        before = ClaimPredicate.predicate_before_absolute_time(timelock)
        claimants = [
            Claimant(destination=recipient, predicate=before),
            Claimant(
                destination=sender,
                predicate=ClaimPredicate.predicate_not(
                    ClaimPredicate.predicate_before_absolute_time(timelock)
                ),
            ),
        ]
        envelope = (
            self._builder(account)
            .append_create_claimable_balance_op(
                asset=self._asset(token_config),
                amount=format_amount(amount),
                claimants=claimants,
            )
            .add_hash_memo(bytes.fromhex(hashlock[2:] if hashlock.startswith("0x") else hashlock))
            .set_timeout(TX_TIMEOUT_SECONDS)
            .build()
        )
        envelope = await self._sign(sender, envelope)
        result = await self._submit(envelope)

        lock_id = self.balance_id_from_result(result["result_xdr"])
        self._hashlocks[lock_id] = hashlock.lower()

        logger.info(f"Stellar lock {lock_id[:12]}: {amount} {token} -> {recipient}")
        return TxRef(self.chain, result["hash"], lock_id)

    async def withdraw(self, lock_id: str, secret: str) -> TxRef:
        balance = await self._get_balance(lock_id)
        if balance is None:
            raise await self._settled_or_missing(lock_id)

        recipient, _, timelock = self._parse_claimants(balance)
        if not verify_secret(secret, await self._get_hashlock(lock_id)):
            raise SecretMismatch(f"Preimage does not match lock {lock_id}")
        if self.clock() >= timelock:
            raise TimelockExpired(f"Lock {lock_id} expired")

        preimage = secret_hex(secret)
        account = await self._load_account(recipient)
        envelope = (
            self._builder(account)
            .append_claim_claimable_balance_op(balance_id=lock_id)
            .add_hash_memo(bytes.fromhex(preimage[2:]))
            .set_timeout(TX_TIMEOUT_SECONDS)
            .build()
        )
        envelope = await self._sign(recipient, envelope)
        try:
            result = await self._submit(envelope)
        except TransactionReverted as e:
            raise TimelockExpired(f"Lock {lock_id} can no longer be claimed: {e}") from e

        self.journal[lock_id] = "withdrawn"
        self._preimages[lock_id] = preimage
        logger.info(f"Stellar withdraw {lock_id[:12]}: {result['hash']}")
        return TxRef(self.chain, result["hash"], lock_id)

    async def refund(self, lock_id: str) -> TxRef:
        balance = await self._get_balance(lock_id)
        if balance is None:
            raise await self._settled_or_missing(lock_id)

        _, locker, timelock = self._parse_claimants(balance)
        if self.clock() < timelock:
            raise TimelockNotExpired(f"Lock {lock_id} not expired")

        account = await self._load_account(locker)
        envelope = (
            self._builder(account)
            .append_claim_claimable_balance_op(balance_id=lock_id)
            .set_timeout(TX_TIMEOUT_SECONDS)
            .build()
        )
        envelope = await self._sign(locker, envelope)
        try:
            result = await self._submit(envelope)
        except TransactionReverted as e:
            raise TimelockNotExpired(f"Lock {lock_id} not yet refundable: {e}") from e

        self.journal[lock_id] = "refunded"
        logger.info(f"Stellar refund {lock_id[:12]}: {result['hash']}")
        return TxRef(self.chain, result["hash"], lock_id)

    async def get_onchain_status(self, lock_id: str) -> OnChainStatus:
        balance = await self._get_balance(lock_id)
        if balance is not None:
            return OnChainStatus(locked=True)

        outcome = await self._settled_outcome(lock_id)
        return OnChainStatus(
            locked=False,
            withdrawn=outcome == "withdrawn",
            refunded=outcome == "refunded",
            preimage=self._preimages.get(lock_id),
        )

    async def find_lock(
        self, sender: str, recipient: str, hashlock: str, timelock: int
    ) -> Optional[str]:
        """Search open balances sponsored by the sender and claimable by the recipient."""
        page = await self._get(
            "/claimable_balances",
            params={"sponsor": sender, "claimant": recipient, "limit": HISTORY_PAGE_LIMIT},
        )
        for balance in (page or {}).get("_embedded", {}).get("records", []):
            try:
                to, locker, expiry = self._parse_claimants(balance)
                if (to, locker, expiry) != (recipient, sender, timelock):
                    continue
                if await self._get_hashlock(balance["id"]) == hashlock.lower():
                    return balance["id"]
            except ValidationError as e:
                logger.debug(f"Skipping claimable balance {balance.get('id')}: {e}")
        return None

    async def estimate_lock_fee(self) -> Decimal:
        """Last ledger base fee from Horizon fee stats, or the fixed fallback."""
        try:
            stats = await self._get("/fee_stats")
        except BridgeError as e:
            logger.warning(f"Stellar fee stats unavailable, using fallback: {e}")
            return self.fallback_fee
        if not stats:
            return self.fallback_fee
        stroops = int(stats.get("last_ledger_base_fee", self.base_fee))
        return Decimal(stroops) * STROOP
