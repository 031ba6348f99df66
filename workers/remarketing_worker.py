"""
Standalone remarketing worker.

Runs the scheduler outside the API process. ``--once`` runs a single tick
and exits, which is what cron-style deployments want.
"""
import argparse
import asyncio
import signal

from leadrelay.core.config import settings
from leadrelay.core.logging import configure_structlog, get_structlog_logger
from leadrelay.db.session import dispose_engine, get_sessionmaker
from leadrelay.services.locks import NullLock, RedisLock
from leadrelay.services.redis import close_redis_pool, init_redis_pool
from leadrelay.services.repository import SqlStore
from leadrelay.services.scheduler import RemarketingScheduler

configure_structlog()
logger = get_structlog_logger(__name__)


async def worker_main(once: bool = False) -> None:
    logger.info("remarketing_worker.starting", once=once)

    lock = RedisLock(await init_redis_pool()) if settings.scheduler_lock_enabled else NullLock()
    scheduler = RemarketingScheduler(SqlStore(get_sessionmaker()), lock=lock)

    try:
        if once:
            stats = await scheduler.run_tick()
            logger.info("remarketing_worker.completed", sent=stats.sent, failed=stats.failed)
            return

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        scheduler.start()
        await stop.wait()
        await scheduler.stop()
    finally:
        if settings.scheduler_lock_enabled:
            await close_redis_pool()
        await dispose_engine()
        logger.info("remarketing_worker.stopped")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the remarketing scheduler")
    parser.add_argument("--once", action="store_true", help="run a single tick and exit")
    args = parser.parse_args()
    asyncio.run(worker_main(once=args.once))


if __name__ == "__main__":
    main()
