"""
Process host for the ingest consumers.

Runs the watchlist and positions consumers side by side over one shared
stop event. Startup fails fast when the store or Redis is unreachable;
shutdown gives in-flight messages a grace period before cancelling.
"""
import asyncio
import logging
import signal
import sys
from typing import Awaitable, Callable, List, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from stockservice.core.config import settings
from stockservice.core.database import check_db, close_db
from stockservice.core.logging import setup_logging
from stockservice.core.metrics import metrics
from stockservice.core.redis import create_stream_redis
from stockservice.repositories.sql import SqlCatalogRepository
from stockservice.stream_consumers.base import BaseStreamConsumer
from stockservice.stream_consumers.positions_consumer import PositionsConsumer
from stockservice.stream_consumers.watchlist_consumer import WatchlistConsumer

logger = logging.getLogger(__name__)


class StartupError(Exception):
    """A dependency was unreachable when the host started."""


class ConsumerHost:
    def __init__(
        self,
        repo=None,
        redis_factory: Callable[[], Redis] = create_stream_redis,
        db_check: Callable[[], Awaitable[None]] = check_db,
        stop_event: Optional[asyncio.Event] = None,
        startup_timeout: Optional[float] = None,
        shutdown_grace: Optional[float] = None,
    ):
        self.repo = repo or SqlCatalogRepository()
        self.redis_factory = redis_factory
        self.db_check = db_check
        self.stop_event = stop_event or asyncio.Event()
        self.startup_timeout = startup_timeout or settings.STARTUP_TIMEOUT_SECONDS
        self.shutdown_grace = shutdown_grace or settings.SHUTDOWN_GRACE_SECONDS
        self.consumers: List[BaseStreamConsumer] = []
        self.tasks: List[asyncio.Task] = []
        self.metrics_redis: Optional[Redis] = None
        self.failed = False

    async def check_connectivity(self) -> None:
        """Verify the store and Redis respond within the startup timeout."""
        try:
            await asyncio.wait_for(self.db_check(), timeout=self.startup_timeout)
        except Exception as e:
            raise StartupError(f"store unreachable: {e!r}") from e

        redis = self.redis_factory()
        try:
            await asyncio.wait_for(redis.ping(), timeout=self.startup_timeout)
        except Exception as e:
            raise StartupError(f"redis unreachable: {e!r}") from e
        finally:
            await redis.aclose()

        logger.info("Store and Redis reachable")

    def start(self) -> None:
        """Launch one task per consumer. Each gets its own Redis connection."""
        # One metrics connection for the process, closed only by stop()
        self.metrics_redis = self.redis_factory()
        metrics.set_redis(self.metrics_redis)

        self.consumers = [
            WatchlistConsumer(self.repo, redis=self.redis_factory(), stop_event=self.stop_event),
            PositionsConsumer(self.repo, redis=self.redis_factory(), stop_event=self.stop_event),
        ]
        self.tasks = [
            asyncio.create_task(consumer.start(), name=f"consumer:{consumer.stream_name}")
            for consumer in self.consumers
        ]
        logger.info(f"Started {len(self.tasks)} consumers")

    async def wait(self) -> None:
        """Block until stop is requested or any consumer exits on its own."""
        stop_waiter = asyncio.create_task(self.stop_event.wait())
        try:
            done, _ = await asyncio.wait(
                [stop_waiter, *self.tasks], return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            stop_waiter.cancel()

        for task in done:
            if task is stop_waiter or task.cancelled():
                continue
            exc = task.exception()
            if exc is not None:
                self.failed = True
                logger.error(f"{task.get_name()} crashed: {exc!r}; shutting down")
            elif not self.stop_event.is_set():
                self.failed = True
                logger.error(f"{task.get_name()} exited unexpectedly; shutting down")

    async def stop(self) -> None:
        """Signal every consumer, then cancel any still running after the grace period."""
        self.stop_event.set()
        if self.tasks:
            await self._stop_consumers()
        await self._close_metrics()

    async def _stop_consumers(self) -> None:
        _, pending = await asyncio.wait(self.tasks, timeout=self.shutdown_grace)
        if pending:
            logger.warning(
                f"{len(pending)} consumers still running after {self.shutdown_grace:.0f}s; cancelling"
            )
            for task in pending:
                task.cancel()

        results = await asyncio.gather(*self.tasks, return_exceptions=True)
        for task, result in zip(self.tasks, results):
            if isinstance(result, Exception):
                self.failed = True
                logger.error(f"{task.get_name()} ended with error: {result!r}")
        logger.info("All consumers stopped")

    async def _close_metrics(self) -> None:
        if self.metrics_redis is None:
            return
        if metrics.redis is self.metrics_redis:
            metrics.set_redis(None)
        try:
            await self.metrics_redis.aclose()
        except (RedisError, OSError) as e:
            logger.warning(f"Error closing metrics Redis connection: {e}")
        self.metrics_redis = None

    async def run(self) -> int:
        """Check connectivity, consume until stopped, and return an exit code."""
        await self.check_connectivity()
        self.start()
        await self.wait()
        await self.stop()
        return 1 if self.failed else 0


async def _serve() -> int:
    host = ConsumerHost()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, host.stop_event.set)

    try:
        return await host.run()
    finally:
        await close_db()


def main() -> None:
    setup_logging()
    logger.info(f"Starting {settings.APP_NAME} consumers ({settings.ENVIRONMENT})")
    try:
        code = asyncio.run(_serve())
    except StartupError as e:
        logger.error(f"Startup failed: {e}")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
