"""Pytest configuration and fixtures."""

import os
from dataclasses import dataclass
from decimal import Decimal

import pytest
import pytest_asyncio
from stellar_sdk import Keypair

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "true"
os.environ["DRY_RUN"] = "true"

from htlcbridge.adapters.simulated import SimulatedLedger
from htlcbridge.chains import Chain
from htlcbridge.config import Settings
from htlcbridge.ledger.database import create_engine, create_session_factory, init_db
from htlcbridge.ledger.repository import SwapRegistry
from htlcbridge.quotes.engine import QuoteEngine
from htlcbridge.services.coordinator import SwapCoordinator
from htlcbridge.services.events import SwapEventBus
from htlcbridge.services.monitor import ExpiryMonitor
from htlcbridge.utils.locks import SwapLockRegistry

START_TIME = 1_700_000_000


class FakeClock:
    """Controllable Unix clock shared by ledgers and the coordinator."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class Accounts:
    """Addresses used across tests."""

    alice_polygon: str
    alice_ethereum: str
    bob_stellar: str
    bob_polygon: str
    bridge_polygon: str
    bridge_ethereum: str
    bridge_stellar: str


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def accounts() -> Accounts:
    return Accounts(
        alice_polygon="0x" + "a1" * 20,
        alice_ethereum="0x" + "a2" * 20,
        bob_stellar=Keypair.random().public_key,
        bob_polygon="0x" + "b1" * 20,
        bridge_polygon="0x" + "c1" * 20,
        bridge_ethereum="0x" + "c2" * 20,
        bridge_stellar=Keypair.random().public_key,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        dry_run=True,
        chain_retry_attempts=3,
        chain_retry_backoff_seconds=0,
        chain_call_timeout=5,
        swap_lock_timeout=5,
        swap_timelock_seconds=3600,
        monitor_interval_seconds=0.01,
    )


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed engine so concurrent sessions see the same database."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path}/swaps.db")
    await init_db(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def registry(db_engine) -> SwapRegistry:
    return SwapRegistry(create_session_factory(db_engine))


@pytest.fixture
def ledgers(clock, accounts) -> dict[Chain, SimulatedLedger]:
    ledgers = {chain: SimulatedLedger(chain, clock=clock) for chain in Chain}
    ledgers[Chain.POLYGON].fund(accounts.alice_polygon, "MATIC", Decimal("1000"))
    ledgers[Chain.POLYGON].fund(accounts.alice_polygon, "USDC", Decimal("1000"))
    ledgers[Chain.POLYGON].fund(accounts.bridge_polygon, "MATIC", Decimal("100000"))
    ledgers[Chain.ETHEREUM].fund(accounts.alice_ethereum, "ETH", Decimal("10"))
    ledgers[Chain.ETHEREUM].fund(accounts.bridge_ethereum, "ETH", Decimal("100"))
    ledgers[Chain.STELLAR].fund(accounts.bridge_stellar, "XLM", Decimal("1000000"))
    ledgers[Chain.STELLAR].fund(accounts.bridge_stellar, "USDC", Decimal("100000"))
    return ledgers


@pytest.fixture
def quote_engine(ledgers, settings, clock) -> QuoteEngine:
    return QuoteEngine(ledgers, settings=settings, clock=clock)


@pytest.fixture
def events() -> SwapEventBus:
    return SwapEventBus()


@pytest.fixture
def coordinator(registry, ledgers, quote_engine, settings, events, accounts, clock):
    """Coordinator wired to simulated ledgers."""
    return SwapCoordinator(
        registry,
        ledgers,
        quote_engine,
        settings=settings,
        locks=SwapLockRegistry(timeout=settings.swap_lock_timeout),
        events=events,
        counterparties={
            Chain.POLYGON: accounts.bridge_polygon,
            Chain.ETHEREUM: accounts.bridge_ethereum,
            Chain.STELLAR: accounts.bridge_stellar,
        },
        clock=clock,
    )


@pytest.fixture
def monitor(coordinator, registry, clock) -> ExpiryMonitor:
    return ExpiryMonitor(coordinator, registry, interval=0.01, clock=clock)
