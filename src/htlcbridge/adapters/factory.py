"""Factory for creating chain adapters.

Dry-run mode (the default) gives every chain a SimulatedLedger; otherwise
EVM chains with a configured HTLC contract get an EVMHTLCAdapter and
Stellar gets the claimable-balance adapter.
"""

import logging
import time
from typing import Callable, Optional

from htlcbridge.adapters.base import ChainAdapter
from htlcbridge.chains import Chain, get_chain
from htlcbridge.config import Settings, get_settings
from htlcbridge.signing.base import TransactionSigner

logger = logging.getLogger(__name__)


def create_adapters(
    settings: Optional[Settings] = None,
    signer: Optional[TransactionSigner] = None,
    clock: Callable[[], float] = time.time,
) -> dict[Chain, ChainAdapter]:
    """Create one adapter per usable chain."""
    settings = settings or get_settings()
    adapters: dict[Chain, ChainAdapter] = {}

    if settings.dry_run:
        from htlcbridge.adapters.simulated import SimulatedLedger

        for chain in Chain:
            adapters[chain] = SimulatedLedger(
                chain, clock=clock, default_balance=settings.dry_run_balance
            )
        logger.info("DRY-RUN: using simulated ledgers for all chains")
        return adapters

    if signer is None:
        from htlcbridge.signing.local import LocalSigner

        signer = LocalSigner(master_key=settings.master_key)

    for chain in Chain:
        if get_chain(chain).is_evm:
            htlc_address = settings.get_htlc_address(chain.value)
            if not htlc_address:
                logger.warning(f"No HTLC contract configured for {chain.value} - chain disabled")
                continue

            from htlcbridge.adapters.evm import EVMHTLCAdapter

            adapters[chain] = EVMHTLCAdapter(
                chain=chain,
                rpc_url=settings.get_rpc_url(chain.value),
                htlc_address=htlc_address,
                signer=signer,
                gas_limit=settings.htlc_gas_limit,
                log_lookback_blocks=settings.htlc_log_lookback_blocks,
                fallback_fee=settings.fallback_gas_fee,
                timeout=settings.chain_call_timeout,
            )
        else:
            from htlcbridge.adapters.stellar import StellarClaimableBalanceAdapter

            adapters[chain] = StellarClaimableBalanceAdapter(
                horizon_url=settings.stellar_horizon_url,
                network_passphrase=settings.stellar_network_passphrase,
                signer=signer,
                timeout=settings.chain_call_timeout,
                clock=clock,
            )

    logger.info(f"Chain adapters: {', '.join(c.value for c in adapters)}")
    return adapters
