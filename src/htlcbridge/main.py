"""Process entry point: HTTP API plus the expiry monitor in one event loop."""

import asyncio
import logging
import signal
from typing import Optional

import uvicorn

from htlcbridge.api.app import create_app
from htlcbridge.config import Settings, get_settings
from htlcbridge.ledger.database import close_db, init_db
from htlcbridge.services.factory import Services, create_services

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format=LOG_FORMAT,
    )


class Application:
    """Owns the service graph for the lifetime of the process."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.services: Optional[Services] = None
        self._stop = asyncio.Event()

    async def _boot(self) -> Services:
        await init_db()
        services = create_services(self.settings)

        # Swaps settled on-chain while the process was down are repaired
        # before the monitor starts refunding anything
        repaired = await services.coordinator.reconcile_pending()
        if repaired:
            logger.info(f"Reconciled {repaired} swaps at startup")
        await services.monitor.start()
        return services

    async def run(self):
        configure_logging(self.settings)
        logger.info(f"Starting HTLC bridge ({self.settings.environment})")
        if self.settings.dry_run:
            logger.warning("DRY_RUN enabled: all legs settle on simulated ledgers")

        self.services = await self._boot()
        server_task = asyncio.create_task(self._serve(self.services))

        await self._stop.wait()
        server_task.cancel()
        await asyncio.gather(server_task, return_exceptions=True)
        await self._teardown()

    async def _serve(self, services: Services):
        server = uvicorn.Server(
            uvicorn.Config(
                create_app(services),
                host=self.settings.api_host,
                port=self.settings.api_port,
                log_level="debug" if self.settings.debug else "info",
            )
        )
        logger.info(f"API listening on {self.settings.api_host}:{self.settings.api_port}")
        try:
            await server.serve()
        except asyncio.CancelledError:
            logger.info("API server stopped")
        except Exception as e:
            logger.error(f"API server crashed: {e}")
            raise

    async def _teardown(self):
        if self.services:
            await self.services.close()
        await close_db()
        logger.info("Shutdown complete")

    def stop(self):
        logger.info("Stop requested")
        self._stop.set()


def main():
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    app = Application()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.stop)

    try:
        loop.run_until_complete(app.run())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        loop.close()


if __name__ == "__main__":
    main()
