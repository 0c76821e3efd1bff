import logging
import time
from typing import Optional

from fastapi import Request

from ..errors import RateLimitError
from ..observability import RATE_LIMITED_TOTAL
from ..redis import RedisClient
from ..security import hash_token
from ..utils import get_client_ip

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window limit per API key (or client IP when no key is sent).

    Limits default to API_RATE_LIMIT per API_RATE_WINDOW seconds.
    """

    def __init__(self, requests: Optional[int] = None, window: Optional[int] = None, scope: str = "api"):
        self.requests = requests
        self.window = window
        self.scope = scope

    async def __call__(self, request: Request):
        api_key = request.headers.get("X-API-Key")
        if api_key:
            subject = f"token:{hash_token(api_key)[:16]}"
        else:
            subject = f"ip:{get_client_ip(request)}"

        settings = request.app.state.settings
        requests = self.requests or settings.API_RATE_LIMIT
        window = self.window or settings.API_RATE_WINDOW
        await check_rate_limit(request.app.state.redis, subject, requests, window, self.scope)


async def check_rate_limit(
    redis_client: Optional[RedisClient],
    subject: str,
    limit: int,
    window: int,
    key_prefix: str,
):
    if redis_client is None:
        return

    current_window = int(time.time() / window)
    count = await redis_client.incr_window(f"rate:{key_prefix}:{subject}:{current_window}", window)

    # Graceful degradation: allow when Redis is down
    if count is None:
        return

    if count > limit:
        RATE_LIMITED_TOTAL.labels(scope=key_prefix).inc()
        logger.warning(f"Rate limit exceeded for {subject} on {key_prefix}")
        raise RateLimitError("Rate limit exceeded")
