#!/usr/bin/env python3
"""
Place Refresh Worker - runs the background refresh scheduler as a standalone process.

    python -m placecache.worker

Stops cleanly on SIGINT/SIGTERM.
"""
import asyncio
import logging
import signal
import sys

from .core.config import settings
from .core.database import SessionLocal, init_db
from .services import scheduler
from .services.place_refresh import PlaceRefreshJob
from .services.providers import GeoapifyProvider

logger = logging.getLogger(__name__)


async def run_worker() -> int:
    init_db()

    job = PlaceRefreshJob(GeoapifyProvider(), session_factory=SessionLocal)
    stop_event = asyncio.Event()

    def _handle_signal(signum):
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, _handle_signal, signum)

    if scheduler.start_scheduler(job) is None:
        logger.error("Scheduler is disabled (SCHEDULER_ENABLED=false), nothing to do")
        return 1

    try:
        await stop_event.wait()
    finally:
        scheduler.stop_scheduler()

    logger.info("Place refresh worker stopped")
    return 0


def main() -> int:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info(f"Starting {settings.APP_NAME} refresh worker")

    try:
        return asyncio.run(run_worker())
    except Exception as e:
        logger.exception(f"Refresh worker crashed: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
