import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..crud import get_links_due_for_health_check
from ..models import Link, utcnow
from ..observability import HEALTH_CHECK_BATCH_SIZE
from .health_check import HealthChecker

logger = logging.getLogger(__name__)

BatchSource = Callable[[datetime, int], Awaitable[list[Link]]]


class HealthCheckScheduler:
    """Every `interval` seconds, probe up to `batch_size` active links that are due for a check."""

    def __init__(
        self,
        checker: HealthChecker,
        session_factory: async_sessionmaker[AsyncSession],
        interval: int = 300,
        batch_size: int = 100,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
        batch_source: Optional[BatchSource] = None,
    ):
        self.checker = checker
        self.session_factory = session_factory
        self.interval = interval
        self.batch_size = batch_size
        self.clock = clock
        self.sleep = sleep
        self.batch_source = batch_source or self._due_links

    async def _due_links(self, cutoff: datetime, limit: int) -> list[Link]:
        async with self.session_factory() as db:
            return await get_links_due_for_health_check(db, cutoff, limit)

    async def run_once(self) -> int:
        cutoff = self.clock() - timedelta(seconds=self.interval)
        links = await self.batch_source(cutoff, self.batch_size)
        HEALTH_CHECK_BATCH_SIZE.observe(len(links))
        logger.info(f"Checking health for {len(links)} links...")

        results = await asyncio.gather(
            *(self.checker.check(link.id, link.original_url) for link in links),
            return_exceptions=True,
        )
        for link, result in zip(links, results):
            if isinstance(result, Exception):
                logger.error(f"Health check failed for link {link.id}: {result}")

        logger.info("Health checks completed")
        return len(links)

    async def run_forever(self):
        logger.info("Health check scheduler started")
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in health check job: {e}")

            await self.sleep(self.interval)
