"""Supported chains endpoint."""

from fastapi import APIRouter, Depends

from htlcbridge.api.deps import get_services
from htlcbridge.api.schemas import ChainResponse, TokenResponse
from htlcbridge.chains import get_all_chains
from htlcbridge.services.factory import Services

router = APIRouter(prefix="/api/v1", tags=["Chains"])


@router.get("/chains", response_model=list[ChainResponse])
async def list_chains(services: Services = Depends(get_services)):
    """List supported chains and whether an adapter is running for each."""
    return [
        ChainResponse(
            id=config.chain.value,
            name=config.name,
            kind=config.kind.value,
            native_symbol=config.native_symbol,
            chain_id=config.chain_id,
            explorer_url=config.explorer_url,
            confirmation_delay_seconds=config.confirmation_delay_seconds,
            available=config.chain in services.adapters,
            tokens=[
                TokenResponse(symbol=t.symbol, decimals=t.decimals, address=t.address)
                for t in config.tokens.values()
            ],
        )
        for config in get_all_chains()
    ]
