"""Builds the service graph from settings."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from eth_account import Account
from stellar_sdk import Keypair

from htlcbridge.adapters.base import ChainAdapter
from htlcbridge.adapters.factory import create_adapters
from htlcbridge.chains import Chain, get_chain
from htlcbridge.config import Settings, get_settings
from htlcbridge.ledger.database import get_session_factory
from htlcbridge.ledger.repository import SwapRegistry
from htlcbridge.quotes.aggregator import OneInchAggregator
from htlcbridge.quotes.base import PriceOracle, RoutingAggregator
from htlcbridge.quotes.engine import QuoteEngine
from htlcbridge.quotes.oracle import OnChainPriceOracle
from htlcbridge.services.coordinator import SwapCoordinator
from htlcbridge.services.events import SwapEventBus
from htlcbridge.services.monitor import ExpiryMonitor
from htlcbridge.signing.base import TransactionSigner
from htlcbridge.utils.locks import SwapLockRegistry

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Wired application services."""

    settings: Settings
    registry: SwapRegistry
    adapters: dict[Chain, ChainAdapter]
    quote_engine: QuoteEngine
    coordinator: SwapCoordinator
    monitor: ExpiryMonitor

    async def close(self) -> None:
        await self.monitor.stop()
        for adapter in self.adapters.values():
            await adapter.close()


def _counterparties(
    settings: Settings,
    adapters: dict[Chain, ChainAdapter],
    signer: Optional[TransactionSigner],
) -> dict[Chain, str]:
    """Resolve the bridge account per chain.

    Falls back to the signer's address, and in dry-run to a fresh address.
    """
    counterparties = {}
    for chain in adapters:
        address = settings.get_counterparty_address(chain.value)
        if not address and signer is not None:
            address = signer.address_for(chain)
        if not address and settings.dry_run:
            if get_chain(chain).is_evm:
                address = Account.create().address
            else:
                address = Keypair.random().public_key
            logger.info(f"DRY-RUN: generated {chain.value} counterparty {address}")
        if address:
            counterparties[chain] = address
        else:
            logger.warning(f"No counterparty for {chain.value}; swaps touching it will be rejected")
    return counterparties


def _aggregator(settings: Settings) -> Optional[RoutingAggregator]:
    if settings.dry_run or not settings.oneinch_api_key:
        return None
    return OneInchAggregator(
        api_key=settings.oneinch_api_key,
        base_url=settings.oneinch_api_url,
        timeout=settings.chain_call_timeout,
    )


def _oracle(settings: Settings) -> Optional[PriceOracle]:
    if settings.dry_run:
        return None
    for chain in Chain:
        address = settings.get_oracle_address(chain.value)
        if address:
            logger.info(f"Using price oracle {address} on {chain.value}")
            return OnChainPriceOracle(
                rpc_url=settings.get_rpc_url(chain.value),
                oracle_address=address,
                timeout=settings.chain_call_timeout,
            )
    return None


def create_services(
    settings: Optional[Settings] = None,
    signer: Optional[TransactionSigner] = None,
    clock: Callable[[], float] = time.time,
) -> Services:
    """Create registry, adapters, quote engine, coordinator and monitor."""
    settings = settings or get_settings()

    if signer is None and not settings.dry_run:
        from htlcbridge.signing.local import LocalSigner

        signer = LocalSigner(master_key=settings.master_key)

    registry = SwapRegistry(get_session_factory())
    adapters = create_adapters(settings, signer=signer, clock=clock)
    quote_engine = QuoteEngine(
        adapters,
        settings=settings,
        aggregator=_aggregator(settings),
        oracle=_oracle(settings),
        clock=clock,
    )
    coordinator = SwapCoordinator(
        registry,
        adapters,
        quote_engine,
        settings=settings,
        locks=SwapLockRegistry(timeout=settings.swap_lock_timeout),
        events=SwapEventBus(),
        counterparties=_counterparties(settings, adapters, signer),
        clock=clock,
    )
    monitor = ExpiryMonitor(
        coordinator, registry, interval=settings.monitor_interval_seconds, clock=clock
    )
    return Services(
        settings=settings,
        registry=registry,
        adapters=adapters,
        quote_engine=quote_engine,
        coordinator=coordinator,
        monitor=monitor,
    )
