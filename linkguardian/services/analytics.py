import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..crud import create_click, get_click_stats
from ..models import Click, Link
from ..utils import anonymize_ip, get_client_ip, parse_user_agent
from .geolocation import GeoIPService

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(days=30)


class ClickTracker:
    def __init__(self, geoip: Optional[GeoIPService] = None):
        self.geoip = geoip

    async def track(self, db: AsyncSession, link: Link, request: Request) -> Click:
        user_agent = request.headers.get("User-Agent") or ""
        ip = get_client_ip(request)
        agent = parse_user_agent(user_agent)
        location = await self.geoip.lookup(ip) if self.geoip else None

        click = Click(
            link_id=link.id,
            ip_address=anonymize_ip(ip),
            user_agent=user_agent or None,
            referer=request.headers.get("Referer"),
            country=location.get("country") if location else None,
            city=location.get("city") if location else None,
            browser=agent.get("browser"),
            os=agent.get("os"),
            device=agent.get("device"),
        )
        return await create_click(db, click)


async def link_analytics(
    db: AsyncSession,
    link_id: uuid.UUID,
    now: datetime,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> dict:
    end = end or now
    start = start or end - DEFAULT_WINDOW
    stats = await get_click_stats(db, link_id, start, end)

    def buckets(rows):
        return [{"value": value, "count": count} for value, count in rows]

    return {
        "link_id": link_id,
        "start": start,
        "end": end,
        "total_clicks": stats["total_clicks"],
        "unique_visitors": stats["unique_visitors"],
        "clicks_over_time": [{"date": day, "clicks": clicks} for day, clicks in stats["clicks_over_time"]],
        "top_countries": buckets(stats["top_countries"]),
        "top_browsers": buckets(stats["top_browsers"]),
        "top_devices": buckets(stats["top_devices"]),
        "top_referrers": buckets(stats["top_referrers"]),
    }
