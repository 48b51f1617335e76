"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from htlcbridge.config import get_settings
from htlcbridge.errors import (
    AlreadySettled,
    BridgeError,
    ChainUnavailable,
    InsufficientFunds,
    InvalidRecipient,
    InvalidSecret,
    PriceUnavailable,
    SwapNotFound,
    TimelockExpired,
    TimelockNotExpired,
    ValidationError,
)
from htlcbridge.ledger.database import close_db, init_db
from htlcbridge.services.factory import Services, create_services
from htlcbridge.utils.locks import LockTimeoutError

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS = [
    (SwapNotFound, 404),
    (ValidationError, 400),
    (AlreadySettled, 409),
    (TimelockNotExpired, 409),
    (TimelockExpired, 409),
    (InvalidSecret, 409),
    (InsufficientFunds, 422),
    (InvalidRecipient, 422),
    (ChainUnavailable, 503),
    (PriceUnavailable, 503),
]


def status_for(error: BridgeError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Services injected through create_app are used as-is; otherwise they are
    built from settings, reconciled and the expiry monitor started.
    """
    owned = getattr(app.state, "services", None) is None
    if owned:
        await init_db()
        services = create_services()
        await services.coordinator.reconcile_pending()
        await services.monitor.start()
        app.state.services = services
    yield
    if owned:
        await app.state.services.close()
        await close_db()


async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content=exc.to_dict())


async def lock_timeout_handler(request: Request, exc: LockTimeoutError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": "swap_busy", "message": str(exc)})


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = services.settings if services else get_settings()

    app = FastAPI(
        title="HTLC Bridge API",
        description="Cross-chain atomic swap coordinator",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BridgeError, bridge_error_handler)
    app.add_exception_handler(LockTimeoutError, lock_timeout_handler)

    # Register routes
    from htlcbridge.api.routes import chains, health, quotes, swaps

    app.include_router(health.router, tags=["Health"])
    app.include_router(chains.router)
    app.include_router(quotes.router)
    app.include_router(swaps.router)

    return app
