"""Run the soundtrace background service: ``python -m soundtrace``."""

import asyncio
import logging
import signal

from soundtrace.infrastructure.lifecycle import lifespan

logger = logging.getLogger("soundtrace")


async def _serve() -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    async with lifespan():
        logger.info("app.waiting_for_shutdown_signal")
        await stop_event.wait()
        logger.info("app.shutdown_signal_received")


def main() -> None:
    """Console entry point."""
    asyncio.run(_serve())


if __name__ == "__main__":
    main()
