"""Swap lifecycle and history endpoints."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from htlcbridge.api.deps import get_coordinator
from htlcbridge.api.schemas import (
    CompleteRequestBody,
    QuoteResponse,
    SwapInitiatedResponse,
    SwapListResponse,
    SwapRequestBody,
    SwapResponse,
)
from htlcbridge.chains import Chain
from htlcbridge.ledger.export import ExportFormat
from htlcbridge.ledger.models import SwapStatus
from htlcbridge.ledger.repository import SwapFilter
from htlcbridge.services.coordinator import SwapCoordinator, SwapRequest

router = APIRouter(prefix="/api/v1/swaps", tags=["Swaps"])

EXPORT_MEDIA_TYPES = {
    ExportFormat.CSV: "text/csv",
    ExportFormat.JSON: "application/json",
}


@router.post("", response_model=SwapInitiatedResponse, status_code=201)
async def initiate_swap(
    body: SwapRequestBody, coordinator: SwapCoordinator = Depends(get_coordinator)
):
    """Start a swap and lock both legs.

    The returned secret is the only copy; it must be kept until completion.
    """
    result = await coordinator.initiate(
        SwapRequest(
            from_chain=body.from_chain,
            to_chain=body.to_chain,
            from_token=body.from_token,
            to_token=body.to_token,
            amount=body.amount,
            initiator=body.initiator,
            recipient=body.recipient,
            slippage_bps=body.slippage_bps,
            timelock_seconds=body.timelock_seconds,
        )
    )
    return SwapInitiatedResponse(
        swap=SwapResponse.from_record(result.swap),
        secret=result.secret,
        quote=QuoteResponse.from_quote(result.quote),
    )


@router.get("", response_model=SwapListResponse)
async def list_swaps(
    address: str = Query(..., min_length=10, max_length=100),
    status: Optional[SwapStatus] = None,
    chain: Optional[Chain] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    coordinator: SwapCoordinator = Depends(get_coordinator),
):
    """Swaps where the address is initiator or recipient, newest first."""
    records = await coordinator.list_swaps(
        address, SwapFilter(status=status, chain=chain, since=since, until=until)
    )
    return SwapListResponse(
        address=address,
        count=len(records),
        swaps=[SwapResponse.from_record(r) for r in records],
    )


@router.get("/export")
async def export_swaps(
    address: str = Query(..., min_length=10, max_length=100),
    format: ExportFormat = ExportFormat.CSV,
    coordinator: SwapCoordinator = Depends(get_coordinator),
):
    """Download an address's swap history."""
    content = await coordinator.export_history(address, format)
    return PlainTextResponse(
        content,
        media_type=EXPORT_MEDIA_TYPES[format],
        headers={"Content-Disposition": f"attachment; filename=swaps.{format.value}"},
    )


@router.get("/stats")
async def swap_stats(
    address: str = Query(..., min_length=10, max_length=100),
    coordinator: SwapCoordinator = Depends(get_coordinator),
):
    stats = await coordinator.get_stats(address)
    return {"address": address, **stats.to_dict()}


@router.get("/{swap_id}", response_model=SwapResponse)
async def get_swap(
    swap_id: str,
    reconcile: bool = False,
    coordinator: SwapCoordinator = Depends(get_coordinator),
):
    """Swap status, optionally reconciled against the chains."""
    record = await coordinator.get_status(swap_id, reconcile=reconcile)
    return SwapResponse.from_record(record)


@router.post("/{swap_id}/complete", response_model=SwapResponse)
async def complete_swap(
    swap_id: str,
    body: CompleteRequestBody,
    coordinator: SwapCoordinator = Depends(get_coordinator),
):
    """Reveal the secret and withdraw both legs."""
    record = await coordinator.complete(swap_id, body.secret)
    return SwapResponse.from_record(record)


@router.post("/{swap_id}/refund", response_model=SwapResponse)
async def refund_swap(swap_id: str, coordinator: SwapCoordinator = Depends(get_coordinator)):
    """Refund an expired swap."""
    record = await coordinator.refund(swap_id)
    return SwapResponse.from_record(record)
