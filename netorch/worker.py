"""
Network Monitoring Worker

Runs the periodic health, discovery, usage and QoS compliance monitors
outside the API process.
"""
import asyncio
import logging
import signal

from netorch.config import settings
from netorch.logging import configure_logging
from netorch.services.orchestrator import build_orchestrator
from netorch.services.scheduler import CancellationToken

logger = logging.getLogger(__name__)


async def run(token: CancellationToken) -> None:
    orchestrator = build_orchestrator(settings)
    await orchestrator.start_monitoring(token)
    try:
        await token.wait()
    finally:
        await orchestrator.close()


async def main():
    """Entry point for the monitoring worker."""
    configure_logging()
    token = CancellationToken()

    loop = asyncio.get_running_loop()

    def handle_signal():
        logger.info("Received shutdown signal")
        token.cancel()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal)

    await run(token)
    logger.info("Network monitoring worker stopped")


if __name__ == "__main__":
    asyncio.run(main())
