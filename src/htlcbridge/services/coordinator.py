"""Swap coordinator: the cross-chain HTLC state machine.

Swap flow:
1. initiate: quote, generate secret and hashlock, persist, lock the source
   leg (initiator -> counterparty) and the destination leg
   (counterparty -> recipient) under the same hashlock and timelock
2. complete: before the timelock, reveal the secret to withdraw the
   destination leg, then the source leg
3. refund: at or after the timelock, return every still-locked leg

Every mutating operation on a swap runs under that swap's lock, and the
terminal transition is a compare-and-set in the registry, so a swap is
never both completed and refunded.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from htlcbridge.adapters.base import ChainAdapter, OnChainStatus
from htlcbridge.chains import Chain, is_valid_address, normalize_address
from htlcbridge.config import Settings, get_settings
from htlcbridge.crypto import (
    derive_swap_id,
    generate_secret,
    hashlock as compute_hashlock,
    secret_hex,
    verify_secret,
)
from htlcbridge.errors import (
    AlreadySettled,
    BridgeError,
    ChainUnavailable,
    InvalidRecipient,
    InvalidSecret,
    TimelockExpired,
    TimelockNotExpired,
    ValidationError,
)
from htlcbridge.ledger.export import export_records
from htlcbridge.ledger.models import SwapRecord, SwapStatus
from htlcbridge.ledger.repository import SwapFilter, SwapRegistry, SwapStats
from htlcbridge.quotes.base import Quote, QuoteRequest
from htlcbridge.quotes.engine import QuoteEngine
from htlcbridge.services.events import SwapEvent, SwapEventBus, SwapEventType
from htlcbridge.utils.locks import SwapLockRegistry

logger = logging.getLogger(__name__)

MIN_TIMELOCK_SECONDS = 3600
MAX_TIMELOCK_SECONDS = 86400


@dataclass
class SwapRequest:
    """Request to start a swap."""

    from_chain: Chain
    to_chain: Chain
    from_token: str
    to_token: str
    amount: Decimal
    initiator: str
    recipient: str
    slippage_bps: int = 100
    timelock_seconds: Optional[int] = None


@dataclass
class SwapInitiation:
    """Result of initiate.

    The secret is returned to the initiator only; the registry stores it
    once it is revealed by complete.
    """

    swap: SwapRecord
    secret: str
    quote: Quote


class SwapCoordinator:
    """Drives swaps through initiated -> locked -> completed | refunded."""

    def __init__(
        self,
        registry: SwapRegistry,
        adapters: dict[Chain, ChainAdapter],
        quote_engine: QuoteEngine,
        settings: Optional[Settings] = None,
        locks: Optional[SwapLockRegistry] = None,
        events: Optional[SwapEventBus] = None,
        counterparties: Optional[dict[Chain, str]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.adapters = adapters
        self.quote_engine = quote_engine
        self.settings = settings or get_settings()
        self.locks = locks or SwapLockRegistry(timeout=self.settings.swap_lock_timeout)
        self.events = events or SwapEventBus()
        self.clock = clock
        if counterparties is None:
            counterparties = {
                chain: self.settings.get_counterparty_address(chain.value)
                for chain in adapters
            }
        self.counterparties = {Chain(c): a for c, a in counterparties.items() if a}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _adapter(self, chain: Chain) -> ChainAdapter:
        adapter = self.adapters.get(Chain(chain))
        if adapter is None:
            raise ValidationError(f"Chain {Chain(chain).value} is not available")
        return adapter

    def _now(self) -> int:
        return int(self.clock())

    async def _chain_call(self, adapter: ChainAdapter, operation: str, *args, retry: bool = True):
        """Call an adapter with a timeout, retrying ChainUnavailable with backoff.

        Timeouts surface as ChainUnavailable.
        """
        attempts = max(1, self.settings.chain_retry_attempts) if retry else 1
        error: Optional[ChainUnavailable] = None

        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(
                    getattr(adapter, operation)(*args),
                    timeout=self.settings.chain_call_timeout,
                )
            except asyncio.TimeoutError:
                error = ChainUnavailable(
                    f"{adapter.chain.value} {operation} timed out after "
                    f"{self.settings.chain_call_timeout}s"
                )
            except ChainUnavailable as e:
                error = e

            if attempt < attempts:
                delay = self.settings.chain_retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f"{adapter.chain.value} {operation} failed "
                    f"(attempt {attempt}/{attempts}), retrying in {delay}s: {error}"
                )
                await asyncio.sleep(delay)

        raise error

    async def _settle_leg(
        self, adapter: ChainAdapter, lock_id: str, operation: str, *args
    ) -> Optional[str]:
        """Withdraw or refund one leg; returns the tx hash.

        A leg already settled the same way (by an earlier attempt whose reply
        was lost) counts as success and returns None.
        """
        try:
            ref = await self._chain_call(adapter, operation, lock_id, *args)
            return ref.tx_hash
        except AlreadySettled:
            status = await self._chain_call(adapter, "get_onchain_status", lock_id)
            done = status.withdrawn if operation == "withdraw" else status.refunded
            if done:
                logger.info(f"{adapter.chain.value} lock {lock_id[:10]} already settled by {operation}")
                return None
            raise

    @staticmethod
    def _require_locked(record: SwapRecord) -> None:
        status = SwapStatus(record.status)
        if status.is_terminal:
            raise AlreadySettled(f"Swap {record.id} is already {status.value}", swap_id=record.id)
        if status != SwapStatus.LOCKED:
            raise ValidationError(f"Swap {record.id} is {status.value}, not locked", swap_id=record.id)

    async def _publish(self, event_type: SwapEventType, record: SwapRecord, **data) -> None:
        await self.events.publish(
            SwapEvent(type=event_type, swap_id=record.id, timelock=record.timelock, data=data)
        )

    def _legs(self, record: SwapRecord) -> list[tuple[str, ChainAdapter, str]]:
        legs = []
        if record.source_lock_id:
            legs.append(("source", self._adapter(record.from_chain), record.source_lock_id))
        if record.dest_lock_id:
            legs.append(("dest", self._adapter(record.to_chain), record.dest_lock_id))
        return legs

    # ------------------------------------------------------------------
    # Initiate
    # ------------------------------------------------------------------

    def _validate_request(self, request: SwapRequest) -> QuoteRequest:
        quote_request = QuoteRequest(
            from_chain=request.from_chain,
            to_chain=request.to_chain,
            from_token=request.from_token,
            to_token=request.to_token,
            amount=Decimal(request.amount),
            slippage_bps=request.slippage_bps,
        )
        self.quote_engine.validate(quote_request)
        request.from_chain = quote_request.from_chain
        request.to_chain = quote_request.to_chain

        if request.from_chain == request.to_chain:
            raise ValidationError("Source and destination chain must differ")
        if not is_valid_address(request.from_chain, request.initiator):
            raise ValidationError(
                f"Invalid {request.from_chain.value} initiator address: {request.initiator}"
            )
        if not is_valid_address(request.to_chain, request.recipient):
            raise InvalidRecipient(
                f"Invalid {request.to_chain.value} recipient address: {request.recipient}"
            )
        for chain in (request.from_chain, request.to_chain):
            if chain not in self.counterparties:
                raise ValidationError(f"No counterparty account configured for {chain.value}")
        return quote_request

    def _timelock(self, requested: Optional[int]) -> int:
        duration = requested or self.settings.swap_timelock_seconds
        duration = min(max(duration, MIN_TIMELOCK_SECONDS), MAX_TIMELOCK_SECONDS)
        return self._now() + duration

    async def initiate(self, request: SwapRequest) -> SwapInitiation:
        """Start a swap and lock both legs.

        Raises:
            ValidationError, SameTokenError, InvalidRecipient: Bad request
            PriceUnavailable: No quote could be produced
            InsufficientFunds, ChainUnavailable: A lock failed
        """
        quote_request = self._validate_request(request)
        quote = await self.quote_engine.get_quote(quote_request)

        from_chain, to_chain = request.from_chain, request.to_chain
        initiator = normalize_address(from_chain, request.initiator)
        recipient = normalize_address(to_chain, request.recipient)

        secret = generate_secret()
        lock_hash = compute_hashlock(secret)
        timelock = self._timelock(request.timelock_seconds)

        swap_id = derive_swap_id(
            {
                "initiator": initiator,
                "recipient": recipient,
                "from_chain": from_chain,
                "to_chain": to_chain,
                "from_token": quote.from_token,
                "to_token": quote.to_token,
                "from_amount": quote.from_amount,
                "to_amount": quote.to_amount,
                "hashlock": lock_hash,
                "timelock": timelock,
            }
        )

        record = SwapRecord(
            id=swap_id,
            status=SwapStatus.INITIATED,
            from_chain=from_chain,
            to_chain=to_chain,
            from_token=quote.from_token,
            to_token=quote.to_token,
            from_amount=quote.from_amount,
            to_amount=quote.to_amount,
            initiator=initiator,
            recipient=recipient,
            hashlock=lock_hash,
            timelock=timelock,
            routing_method=quote.routing_method.value,
            quote_confidence=quote.confidence,
            created_at=datetime.fromtimestamp(self.clock(), tz=timezone.utc),
        )
        await self.registry.create(record)
        logger.info(
            f"Swap {swap_id} initiated: {quote.from_amount} {quote.from_token}@{from_chain.value} "
            f"-> {quote.to_amount} {quote.to_token}@{to_chain.value}, timelock {timelock}"
        )
        await self._publish(SwapEventType.INITIATED, record)

        async with self.locks.lock(swap_id, operation="initiate"):
            record = await self._lock_legs(record, quote)

        await self._publish(SwapEventType.LOCKED, record)
        return SwapInitiation(swap=record, secret=secret_hex(secret), quote=quote)

    async def _lock_legs(self, record: SwapRecord, quote: Quote) -> SwapRecord:
        source_adapter = self._adapter(record.from_chain)
        dest_adapter = self._adapter(record.to_chain)

        # Locks are not retried: a resent lock could escrow funds twice
        try:
            source = await self._chain_call(
                source_adapter,
                "lock",
                record.initiator,
                self.counterparties[record.from_chain],
                record.from_token,
                record.from_amount,
                record.hashlock,
                record.timelock,
                retry=False,
            )
        except ChainUnavailable as e:
            # Outcome unknown; left initiated until the monitor expires it
            await self.registry.update(record.id, error_message=f"source lock: {e}")
            logger.error(f"Swap {record.id} source lock outcome unknown: {e}")
            raise
        except BridgeError as e:
            record = await self.registry.transition(
                record.id,
                SwapStatus.INITIATED,
                SwapStatus.FAILED,
                error_message=f"source lock: {e}",
            )
            logger.error(f"Swap {record.id} failed, source lock rejected: {e}")
            await self._publish(SwapEventType.FAILED, record, reason=str(e))
            raise

        await self.registry.update(
            record.id, source_lock_id=source.lock_id, source_tx_ref=source.tx_hash
        )

        try:
            dest = await self._chain_call(
                dest_adapter,
                "lock",
                self.counterparties[record.to_chain],
                record.recipient,
                record.to_token,
                record.to_amount,
                record.hashlock,
                record.timelock,
                retry=False,
            )
        except BridgeError as e:
            # Source funds are escrowed: refundable after the timelock
            record = await self.registry.transition(
                record.id,
                SwapStatus.INITIATED,
                SwapStatus.LOCKED,
                error_message=f"destination lock: {e}",
            )
            logger.error(
                f"Swap {record.id} destination lock failed; source leg will be "
                f"refunded after timelock: {e}"
            )
            await self._publish(SwapEventType.LOCKED, record, partial=True)
            raise

        record = await self.registry.transition(
            record.id,
            SwapStatus.INITIATED,
            SwapStatus.LOCKED,
            dest_lock_id=dest.lock_id,
            dest_tx_ref=dest.tx_hash,
        )
        logger.info(f"Swap {record.id} locked on both chains")
        return record

    # ------------------------------------------------------------------
    # Complete / refund
    # ------------------------------------------------------------------

    async def complete(self, swap_id: str, secret: str) -> SwapRecord:
        """Reveal the secret and withdraw both legs.

        Raises:
            SwapNotFound, AlreadySettled, InvalidSecret, TimelockExpired,
            ValidationError, ChainUnavailable
        """
        async with self.locks.lock(swap_id, operation="complete"):
            record = await self.registry.require(swap_id)
            self._require_locked(record)

            if record.dest_lock_id is None:
                raise ValidationError(
                    f"Swap {swap_id} destination leg was never locked; it can only be refunded",
                    swap_id=swap_id,
                )
            if self._now() >= record.timelock:
                raise TimelockExpired(f"Swap {swap_id} timelock has passed", swap_id=swap_id)
            if not verify_secret(secret, record.hashlock):
                raise InvalidSecret(f"Secret does not match swap {swap_id}", swap_id=swap_id)

            secret = secret_hex(secret)
            dest_tx = await self._settle_leg(
                self._adapter(record.to_chain), record.dest_lock_id, "withdraw", secret
            )
            # The secret is public on the destination chain from here on
            record = await self.registry.update(
                swap_id, secret=secret, dest_tx_ref=dest_tx or record.dest_tx_ref
            )

            source_tx = await self._settle_leg(
                self._adapter(record.from_chain), record.source_lock_id, "withdraw", secret
            )

            record = await self.registry.transition(
                swap_id,
                SwapStatus.LOCKED,
                SwapStatus.COMPLETED,
                source_tx_ref=source_tx or record.source_tx_ref,
                completed_at=datetime.fromtimestamp(self.clock(), tz=timezone.utc),
                error_message=None,
            )

        await self._publish(SwapEventType.COMPLETED, record)
        return record

    async def refund(self, swap_id: str) -> SwapRecord:
        """Refund every still-locked leg of an expired swap.

        Legs already settled on-chain are read, not refunded, and the swap
        ends in the state those legs imply: completed when every leg was
        withdrawn, refunded otherwise.

        Raises:
            SwapNotFound, AlreadySettled, TimelockNotExpired, ChainUnavailable
        """
        async with self.locks.lock(swap_id, operation="refund"):
            record = await self.registry.require(swap_id)
            self._require_locked(record)

            if self._now() < record.timelock:
                raise TimelockNotExpired(
                    f"Swap {swap_id} refundable from {record.timelock}", swap_id=swap_id
                )

            tx_refs = {}
            statuses: dict[str, OnChainStatus] = {}
            for leg, adapter, lock_id in self._legs(record):
                status = await self._chain_call(adapter, "get_onchain_status", lock_id)
                if status.locked:
                    try:
                        ref = await self._chain_call(adapter, "refund", lock_id)
                        tx_refs[f"{leg}_tx_ref"] = ref.tx_hash
                        status = OnChainStatus(locked=False, refunded=True)
                    except AlreadySettled:
                        status = await self._chain_call(adapter, "get_onchain_status", lock_id)
                else:
                    logger.info(f"Swap {swap_id} {leg} leg already settled on-chain")
                if not status.settled:
                    raise ChainUnavailable(
                        f"Swap {swap_id} {leg} leg outcome unknown on {adapter.chain.value}",
                        swap_id=swap_id,
                    )
                statuses[leg] = status

            record = await self._close_from_chain(record, statuses, **tx_refs)

        await self._publish_settled(record)
        return record

    async def expire_initiated(self, swap_id: str) -> SwapRecord:
        """Resolve a swap stuck in initiated after its timelock.

        Only happens when the source lock's outcome was never confirmed. The
        source chain is searched for the lock first: if it landed, the swap
        moves to locked so its escrow gets refunded, otherwise it fails.

        Raises:
            SwapNotFound, AlreadySettled, TimelockNotExpired, ChainUnavailable
        """
        async with self.locks.lock(swap_id, operation="expire"):
            record = await self.registry.require(swap_id)
            if SwapStatus(record.status) != SwapStatus.INITIATED:
                raise AlreadySettled(f"Swap {swap_id} is {record.status.value}", swap_id=swap_id)
            if self._now() < record.timelock:
                raise TimelockNotExpired(f"Swap {swap_id} not expired", swap_id=swap_id)

            source_lock_id = record.source_lock_id or await self._find_leg(
                record, record.from_chain, record.initiator,
                self.counterparties.get(Chain(record.from_chain)),
            )
            if source_lock_id is None:
                record = await self.registry.transition(
                    swap_id,
                    SwapStatus.INITIATED,
                    SwapStatus.FAILED,
                    error_message=record.error_message or "source lock never confirmed",
                )
                event_type, data = SwapEventType.FAILED, {"reason": record.error_message}
            else:
                dest_lock_id = record.dest_lock_id or await self._find_leg(
                    record, record.to_chain,
                    self.counterparties.get(Chain(record.to_chain)), record.recipient,
                )
                record = await self.registry.transition(
                    swap_id,
                    SwapStatus.INITIATED,
                    SwapStatus.LOCKED,
                    source_lock_id=source_lock_id,
                    dest_lock_id=dest_lock_id,
                    error_message=None if dest_lock_id else (
                        "source lock recovered on-chain; destination never locked"
                    ),
                )
                logger.warning(f"Swap {swap_id} lock recovered on-chain after its reply was lost")
                event_type, data = SwapEventType.LOCKED, {
                    "partial": dest_lock_id is None, "recovered": True,
                }

        await self._publish(event_type, record, **data)
        return record

    async def _find_leg(
        self, record: SwapRecord, chain: Chain, sender: Optional[str], recipient: str
    ) -> Optional[str]:
        if not sender:
            return None
        return await self._chain_call(
            self._adapter(chain), "find_lock", sender, recipient, record.hashlock, record.timelock
        )

    # ------------------------------------------------------------------
    # Status and reconciliation
    # ------------------------------------------------------------------

    async def get_status(self, swap_id: str, reconcile: bool = False) -> SwapRecord:
        """Read a swap, optionally repairing it from on-chain state.

        Raises:
            SwapNotFound
        """
        record = await self.registry.require(swap_id)
        if not reconcile or SwapStatus(record.status) != SwapStatus.LOCKED:
            return record

        async with self.locks.lock(swap_id, operation="reconcile"):
            return await self._reconcile(swap_id)

    async def _reconcile(self, swap_id: str) -> SwapRecord:
        record = await self.registry.require(swap_id)
        if SwapStatus(record.status) != SwapStatus.LOCKED:
            return record

        legs = self._legs(record)
        statuses: dict[str, OnChainStatus] = {}
        try:
            for leg, adapter, lock_id in legs:
                statuses[leg] = await self._chain_call(adapter, "get_onchain_status", lock_id)
        except BridgeError as e:
            logger.warning(f"Cannot reconcile swap {swap_id}: {e}")
            return record

        if not statuses or any(s.locked for s in statuses.values()):
            dest = statuses.get("dest")
            if dest and dest.withdrawn and dest.preimage and not record.secret:
                if verify_secret(dest.preimage, record.hashlock):
                    record = await self.registry.update(swap_id, secret=secret_hex(dest.preimage))
            return record

        if any(not s.settled for s in statuses.values()):
            logger.warning(f"Swap {swap_id}: legs gone but outcome unknown, leaving locked")
            return record

        record = await self._close_from_chain(record, statuses)
        logger.info(f"Reconciled swap {swap_id}: {SwapStatus(record.status).value} on-chain")
        await self._publish_settled(record, reconciled=True)
        return record

    async def _close_from_chain(
        self, record: SwapRecord, statuses: dict[str, OnChainStatus], **fields
    ) -> SwapRecord:
        """Move a locked swap to the terminal state its settled legs imply.

        Completed needs the destination leg and every other leg withdrawn.
        Any refunded leg makes the swap refunded; when the legs disagree the
        mismatch is recorded on the swap.
        """
        fields["completed_at"] = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        if not record.secret:
            for status in statuses.values():
                if status.preimage and verify_secret(status.preimage, record.hashlock):
                    fields["secret"] = secret_hex(status.preimage)
                    break

        if "dest" in statuses and all(s.withdrawn for s in statuses.values()):
            target = SwapStatus.COMPLETED
            fields["error_message"] = None
        else:
            target = SwapStatus.REFUNDED
            if any(s.withdrawn for s in statuses.values()):
                outcome = ", ".join(
                    f"{leg} {'withdrawn' if s.withdrawn else 'refunded'}"
                    for leg, s in statuses.items()
                )
                fields["error_message"] = f"legs settled differently: {outcome}"
                logger.error(f"Swap {record.id} legs settled differently: {outcome}")

        return await self.registry.transition(
            record.id, SwapStatus.LOCKED, target, **fields
        )

    async def _publish_settled(self, record: SwapRecord, **data) -> None:
        if SwapStatus(record.status) == SwapStatus.COMPLETED:
            await self._publish(SwapEventType.COMPLETED, record, **data)
        else:
            await self._publish(SwapEventType.REFUNDED, record, **data)

    async def reconcile_pending(self) -> int:
        """Reconcile every locked swap against the chains; returns repairs made."""
        repaired = 0
        for record in await self.registry.list_by_status(SwapStatus.LOCKED):
            try:
                updated = await self.get_status(record.id, reconcile=True)
            except BridgeError as e:
                logger.warning(f"Reconciliation of {record.id} failed: {e}")
                continue
            if SwapStatus(updated.status) != SwapStatus.LOCKED:
                repaired += 1
        if repaired:
            logger.info(f"Startup reconciliation repaired {repaired} swaps")
        return repaired

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def list_swaps(
        self, address: str, filters: Optional[SwapFilter] = None
    ) -> list[SwapRecord]:
        """Swaps where the address is initiator or recipient, newest first."""
        return await self.registry.list_by_address(address, filters)

    async def get_stats(self, address: str) -> SwapStats:
        return await self.registry.get_stats(address)

    async def export_history(self, address: str, fmt: str = "csv") -> str:
        """Export an address's swaps as CSV or JSON."""
        return export_records(await self.list_swaps(address), fmt)
