"""Health check endpoints."""

from fastapi import APIRouter, Depends

from htlcbridge.api.deps import get_services
from htlcbridge.services.factory import Services

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "htlcbridge"}


@router.get("/health/detailed")
async def detailed_health(services: Services = Depends(get_services)):
    """Detailed health check with configuration info."""
    return {
        "status": "healthy",
        "service": "htlcbridge",
        "version": "0.1.0",
        "chains": sorted(chain.value for chain in services.adapters),
        "watched_swaps": len(services.monitor.watched),
        "config": services.settings.get_safe_dict(),
    }
