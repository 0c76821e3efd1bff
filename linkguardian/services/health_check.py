"""
Destination URL probing.

A probe is one GET against the link's destination. Its outcome is classified
as HEALTHY, WARNING or ERROR, stored as a HealthCheck row, mirrored onto the
link, and an ERROR fans out a LINK_HEALTH_ISSUE notification to the people
responsible for the link. Probe failures of any kind become ERROR results;
they are never raised to the caller.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..crud import get_alert_recipients, get_link_by_id, record_health_check
from ..models import HealthCheck, HealthStatus, NotificationType, utcnow
from ..observability import HEALTH_CHECK_DURATION_SECONDS, HEALTH_CHECKS_TOTAL
from .notifications import NotificationDispatcher

logger = logging.getLogger(__name__)

SLOW_RESPONSE_MS = 5000
SLOW_RESPONSE_ERROR = "Slow response time"


@dataclass
class ProbeResult:
    status: HealthStatus
    checked_at: datetime
    status_code: Optional[int] = None
    response_time: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "status_code": self.status_code,
            "response_time": self.response_time,
            "error": self.error,
            "checked_at": self.checked_at,
        }


def classify(status_code: int, response_time_ms: int, slow_threshold_ms: int = SLOW_RESPONSE_MS) -> tuple[HealthStatus, Optional[str]]:
    if status_code >= 500:
        return HealthStatus.ERROR, f"HTTP {status_code}"
    if status_code >= 400:
        return HealthStatus.WARNING, f"HTTP {status_code}"
    if response_time_ms > slow_threshold_ms:
        return HealthStatus.WARNING, SLOW_RESPONSE_ERROR
    return HealthStatus.HEALTHY, None


def build_probe_client(timeout: float, max_redirects: int) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=True,
        max_redirects=max_redirects,
        headers={"User-Agent": "LinkGuardian-HealthCheck/1.0"},
    )


class HealthChecker:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        http_client: httpx.AsyncClient,
        notifier: Optional[NotificationDispatcher] = None,
        slow_threshold_ms: int = SLOW_RESPONSE_MS,
        clock: Callable[[], datetime] = utcnow,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self.session_factory = session_factory
        self.http_client = http_client
        self.notifier = notifier
        self.slow_threshold_ms = slow_threshold_ms
        self.clock = clock
        self.timer = timer

    async def probe(self, url: str) -> ProbeResult:
        start = self.timer()
        try:
            response = await self.http_client.get(url)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.warning(f"Health probe failed for {url}: {message}")
            return ProbeResult(HealthStatus.ERROR, checked_at=self.clock(), error=message)

        elapsed = self.timer() - start
        HEALTH_CHECK_DURATION_SECONDS.observe(elapsed)
        response_time = int(elapsed * 1000)

        status, error = classify(response.status_code, response_time, self.slow_threshold_ms)
        return ProbeResult(
            status,
            checked_at=self.clock(),
            status_code=response.status_code,
            response_time=response_time,
            error=error,
        )

    async def check(self, link_id: uuid.UUID, url: str) -> ProbeResult:
        result = await self.probe(url)
        HEALTH_CHECKS_TOTAL.labels(status=result.status.value).inc()

        async with self.session_factory() as db:
            await record_health_check(
                db,
                link_id,
                HealthCheck(
                    link_id=link_id,
                    url=url,
                    status=result.status.value,
                    status_code=result.status_code,
                    response_time=result.response_time,
                    error=result.error,
                    checked_at=result.checked_at,
                ),
            )

        if result.status == HealthStatus.ERROR:
            await self.send_health_alert(link_id, url, result.error)

        return result

    async def send_health_alert(self, link_id: uuid.UUID, url: str, error: Optional[str]):
        if self.notifier is None:
            return
        try:
            async with self.session_factory() as db:
                link = await get_link_by_id(db, link_id)
                if link is None:
                    return
                recipients = await get_alert_recipients(db, link)

            if not recipients:
                return

            await self.notifier.notify_many(
                [user.id for user in recipients],
                NotificationType.LINK_HEALTH_ISSUE.value,
                "Link Health Alert",
                f"Link {link.short_code} is experiencing issues: {error}",
                {
                    "linkId": str(link.id),
                    "shortCode": link.short_code,
                    "originalUrl": url,
                    "error": error,
                },
            )
        except Exception:
            logger.exception(f"Failed to send health alert for link {link_id}")
