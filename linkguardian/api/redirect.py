import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..crud import get_branding, get_link_by_short_code, increment_click_count
from ..database import get_db
from ..dependencies import get_click_tracker, get_pages, get_settings
from ..errors import NotFoundError
from ..models import utcnow
from ..observability import CLICK_TRACKING_FAILURES, REDIRECT_TOTAL
from ..pages import PageRenderer
from ..schemas import DataResponse, LinkPreview
from ..services.analytics import ClickTracker
from ..services.rate_limiter import check_rate_limit
from ..services.redirect import Outcome, resolve
from ..utils import get_client_ip

logger = logging.getLogger(__name__)

router = APIRouter(tags=["redirect"])


async def redirect_rate_limit(request: Request):
    settings = request.app.state.settings
    await check_rate_limit(
        request.app.state.redis,
        f"ip:{get_client_ip(request)}",
        settings.REDIRECT_RATE_LIMIT,
        settings.REDIRECT_RATE_WINDOW,
        "redirect",
    )


@router.get("/{short_code}/preview", response_model=DataResponse[LinkPreview])
async def preview_link(
    short_code: str,
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    link = await get_link_by_short_code(db, short_code)
    if not link:
        raise NotFoundError("Link not found")

    return DataResponse(
        data=LinkPreview(
            short_code=link.short_code,
            short_url=f"{settings.DEFAULT_SHORT_DOMAIN}/{link.short_code}",
            original_url=link.original_url,
            title=link.title,
            description=link.description,
            is_active=link.is_active,
            has_password=bool(link.password_hash),
            expires_at=link.expires_at,
            max_clicks=link.max_clicks,
            current_clicks=link.current_clicks,
            created_at=link.created_at,
        )
    )


@router.get("/{short_code}", dependencies=[Depends(redirect_rate_limit)])
async def redirect_to_url(
    short_code: str,
    request: Request,
    password: Optional[str] = Query(None),
    pages: PageRenderer = Depends(get_pages),
    tracker: ClickTracker = Depends(get_click_tracker),
    db: AsyncSession = Depends(get_db),
):
    resolution = await resolve(db, short_code, password, utcnow())
    REDIRECT_TOTAL.labels(outcome=resolution.outcome.value).inc()

    if resolution.outcome == Outcome.NOT_FOUND:
        return pages.not_found()

    link = resolution.link
    if resolution.outcome != Outcome.REDIRECT:
        branding = await get_branding(db, link.organization_id) if link.organization_id else None
        if resolution.outcome == Outcome.EXPIRED:
            return pages.expired(resolution.message, branding)
        return pages.password_required(link, resolution.error, branding)

    target_url = link.original_url
    link_id = link.id

    if link.enable_tracking:
        try:
            await tracker.track(db, link, request)
        except Exception:
            # A lost click must never block the redirect
            await db.rollback()
            CLICK_TRACKING_FAILURES.inc()
            logger.exception(f"Click tracking failed for {short_code}")

    await increment_click_count(db, link_id)
    return RedirectResponse(url=target_url, status_code=302)
