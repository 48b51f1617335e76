"""Quote endpoint."""

from fastapi import APIRouter, Depends

from htlcbridge.api.deps import get_quote_engine
from htlcbridge.api.schemas import QuoteRequestBody, QuoteResponse
from htlcbridge.quotes.base import QuoteRequest
from htlcbridge.quotes.engine import QuoteEngine

router = APIRouter(prefix="/api/v1", tags=["Quotes"])


@router.post("/quotes", response_model=QuoteResponse)
async def get_quote(body: QuoteRequestBody, engine: QuoteEngine = Depends(get_quote_engine)):
    """Price a cross-chain swap."""
    quote = await engine.get_quote(
        QuoteRequest(
            from_chain=body.from_chain,
            to_chain=body.to_chain,
            from_token=body.from_token,
            to_token=body.to_token,
            amount=body.amount,
            slippage_bps=body.slippage_bps,
        )
    )
    return QuoteResponse.from_quote(quote)
