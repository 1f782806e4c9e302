"""
MarketPulse live market data plane
Process entry point: python -m marketpulse.main
"""

import asyncio
import signal
import sys
from typing import Optional

import structlog

from marketpulse.core.config import Settings, get_settings
from marketpulse.core.exceptions import MarketPulseException
from marketpulse.core.logging import configure_logging
from marketpulse.services.market_data_plane import init_plane, shutdown_plane

logger = structlog.get_logger(__name__)

STATUS_INTERVAL = 60.0


class PlaneRunner:
    """Runs the plane until a shutdown signal arrives, then always shuts it down"""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.shutdown_event = asyncio.Event()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                signal.signal(sig, lambda s, f: self.request_shutdown(s))

    def request_shutdown(self, sig: Optional[int] = None) -> None:
        logger.info("Shutdown signal received", signal=sig)
        self.shutdown_event.set()

    async def run(self) -> None:
        self.install_signal_handlers()
        plane = await init_plane(self.settings)
        try:
            while not self.shutdown_event.is_set():
                status = plane.get_status()
                logger.info(
                    "Market data plane status",
                    ws_state=status["ws_state"],
                    market_phase=status["market_phase"],
                    subscribed=status["subscribed_count"],
                    counts=status["counts"],
                )
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=STATUS_INTERVAL)
                except asyncio.TimeoutError:
                    continue
        finally:
            await shutdown_plane(plane)


def main() -> int:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    logger.info("Starting market data plane", version=settings.VERSION, environment=settings.ENVIRONMENT)

    try:
        asyncio.run(PlaneRunner(settings).run())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except MarketPulseException as e:
        logger.error("Fatal error", **e.to_dict())
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
