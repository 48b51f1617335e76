"""FastAPI dependencies."""

from fastapi import HTTPException, Request

from htlcbridge.quotes.engine import QuoteEngine
from htlcbridge.services.coordinator import SwapCoordinator
from htlcbridge.services.factory import Services


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return services


def get_coordinator(request: Request) -> SwapCoordinator:
    return get_services(request).coordinator


def get_quote_engine(request: Request) -> QuoteEngine:
    return get_services(request).quote_engine
