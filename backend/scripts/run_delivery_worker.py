"""Run the delivery worker as a standalone polling loop.

For deployments without Celery beat. Stops cleanly on SIGINT/SIGTERM after
the job in flight finishes.

Usage:
    python scripts/run_delivery_worker.py
"""

import asyncio
import signal

from ventushub.config import get_settings
from ventushub.db.session import async_session_factory, engine
from ventushub.integrations.channels.factory import ChannelRegistry
from ventushub.main import setup_logging
from ventushub.services.delivery_worker import DeliveryWorker


async def run():
    settings = get_settings()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    worker = DeliveryWorker(async_session_factory, ChannelRegistry(settings), settings)
    try:
        await worker.run(stop)
    finally:
        await engine.dispose()


def main():
    setup_logging()
    asyncio.run(run())


if __name__ == "__main__":
    main()
