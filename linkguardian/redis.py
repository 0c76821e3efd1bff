import logging
from typing import Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class RedisClient:
    """Optional Redis connection. Every call degrades to a no-op when Redis is absent or failing."""

    def __init__(self, url: Optional[str]):
        self.url = url
        self.client: Optional[redis.Redis] = None

    async def connect(self):
        if not self.url:
            logger.info("REDIS_URL not set; running without Redis")
            return
        self.client = redis.from_url(self.url, encoding="utf-8", decode_responses=True)
        try:
            await self.client.ping()
        except redis.RedisError as e:
            logger.warning(f"Redis unavailable at startup: {e}")

    async def close(self):
        if self.client:
            await self.client.aclose()

    async def ping(self) -> bool:
        if not self.client:
            return False
        try:
            return bool(await self.client.ping())
        except redis.RedisError:
            return False

    async def incr_window(self, key: str, window: int) -> Optional[int]:
        """Increment a fixed-window counter, setting its TTL on first hit. None when Redis is unusable."""
        if not self.client:
            return None
        try:
            count = await self.client.incr(key)
            if count == 1:
                await self.client.expire(key, window)
            return count
        except redis.RedisError as e:
            logger.error(f"Redis counter error for {key}: {e}")
            return None
