import logging
import math
import uuid
from datetime import datetime
from typing import Literal, Optional
from urllib.parse import urlparse

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ...config import PLAN_LINK_LIMITS, Settings
from ...crud import (
    count_user_links,
    create_link,
    delete_link,
    get_health_checks,
    get_link_by_short_code,
    get_manageable_link,
    get_membership,
    get_visible_link,
    list_links,
    update_link,
)
from ...database import get_db
from ...dependencies import Principal, get_health_checker, get_settings, require_scope
from ...errors import ConflictError, ForbiddenError, NotFoundError
from ...models import HealthStatus, Link, utcnow
from ...schemas import (
    BulkItemError,
    BulkItemResult,
    BulkLinkCreate,
    BulkResult,
    BulkSummary,
    DataResponse,
    HealthCheckRecord,
    HealthCheckResult,
    LinkAnalytics,
    LinkCreate,
    LinkPage,
    LinkResponse,
    LinkUpdate,
    Pagination,
)
from ...security import hash_password
from ...services.analytics import link_analytics
from ...services.health_check import HealthChecker
from ...services.rate_limiter import RateLimiter
from ...utils import generate_short_code

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/links", tags=["links"], dependencies=[Depends(RateLimiter(scope="api"))])

SHORT_CODE_ATTEMPTS = 5
NON_NULLABLE_FIELDS = ("original_url", "tags", "enable_tracking", "is_active")
# Paths served ahead of the redirect catch-all
RESERVED_SHORT_CODES = frozenset({"api", "docs", "health", "metrics", "openapi.json", "redoc"})


def to_response(link: Link, settings: Settings) -> LinkResponse:
    return LinkResponse(
        id=link.id,
        short_code=link.short_code,
        short_url=f"{settings.DEFAULT_SHORT_DOMAIN}/{link.short_code}",
        original_url=link.original_url,
        title=link.title,
        description=link.description,
        tags=link.tags or [],
        is_active=link.is_active,
        health_status=link.health_status,
        last_health_check=link.last_health_check,
        expires_at=link.expires_at,
        max_clicks=link.max_clicks,
        current_clicks=link.current_clicks,
        enable_tracking=link.enable_tracking,
        has_password=bool(link.password_hash),
        organization_id=link.organization_id,
        created_at=link.created_at,
        updated_at=link.updated_at,
    )


def is_valid_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


async def _allocate_short_code(db: AsyncSession, requested: Optional[str]) -> str:
    if requested:
        if requested in RESERVED_SHORT_CODES:
            raise ConflictError("Short code is reserved")
        if await get_link_by_short_code(db, requested):
            raise ConflictError("Short code already exists")
        return requested

    # Retry loop for random collision
    for _ in range(SHORT_CODE_ATTEMPTS):
        short_code = generate_short_code()
        if short_code in RESERVED_SHORT_CODES:
            continue
        if not await get_link_by_short_code(db, short_code):
            return short_code
    raise ConflictError("Could not generate unique short code")


async def _check_plan_limit(db: AsyncSession, principal: Principal, adding: int = 1):
    plan = principal.user.plan
    limit = PLAN_LINK_LIMITS.get(plan)
    if limit is None:
        return
    if await count_user_links(db, principal.user.id) + adding > limit:
        raise ForbiddenError(f"Link limit reached for {plan} plan")


async def _initial_health_check(checker: HealthChecker, link_id: uuid.UUID, url: str):
    try:
        await checker.check(link_id, url)
    except Exception:
        logger.exception(f"Initial health check failed for link {link_id}")


@router.get("", response_model=LinkPage)
async def get_links(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=200),
    status_filter: Optional[Literal["active", "inactive"]] = Query(None, alias="status"),
    health_status: Optional[HealthStatus] = Query(None, alias="healthStatus"),
    organization_id: Optional[uuid.UUID] = Query(None, alias="organizationId"),
    principal: Principal = Depends(require_scope("read")),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    if organization_id and not await get_membership(db, organization_id, principal.user.id):
        raise ForbiddenError("Not a member of this organization")

    links, total = await list_links(
        db,
        principal.user.id,
        organization_id=organization_id,
        search=search,
        is_active=None if status_filter is None else status_filter == "active",
        health_status=health_status.value if health_status else None,
        offset=(page - 1) * limit,
        limit=limit,
    )
    total_pages = math.ceil(total / limit) if total else 0

    return LinkPage(
        data=[to_response(link, settings) for link in links],
        pagination=Pagination(
            total=total,
            page=page,
            limit=limit,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        ),
    )


@router.post("", response_model=DataResponse[LinkResponse], status_code=status.HTTP_201_CREATED)
async def shorten_link(
    link_in: LinkCreate,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_scope("write")),
    settings: Settings = Depends(get_settings),
    checker: HealthChecker = Depends(get_health_checker),
    db: AsyncSession = Depends(get_db),
):
    if link_in.organization_id and not await get_membership(db, link_in.organization_id, principal.user.id):
        raise ForbiddenError("Not a member of this organization")

    await _check_plan_limit(db, principal)
    short_code = await _allocate_short_code(db, link_in.short_code)

    new_link = Link(
        user_id=principal.user.id,
        organization_id=link_in.organization_id,
        short_code=short_code,
        original_url=link_in.original_url,
        title=link_in.title,
        description=link_in.description,
        tags=link_in.tags,
        expires_at=link_in.expires_at,
        max_clicks=link_in.max_clicks,
        password_hash=hash_password(link_in.password) if link_in.password else None,
        enable_tracking=link_in.enable_tracking,
    )

    try:
        created_link = await create_link(db, new_link)
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Short code already exists")

    if settings.HEALTH_CHECK_ON_CREATE:
        background_tasks.add_task(_initial_health_check, checker, created_link.id, created_link.original_url)

    return DataResponse(data=to_response(created_link, settings))


@router.post("/bulk", response_model=DataResponse[BulkResult], status_code=status.HTTP_201_CREATED)
async def create_bulk_links(
    bulk_in: BulkLinkCreate,
    principal: Principal = Depends(require_scope("write")),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    await _check_plan_limit(db, principal, adding=len(bulk_in.links))

    results: list[BulkItemResult] = []
    errors: list[BulkItemError] = []

    for index, item in enumerate(bulk_in.links):
        if not is_valid_url(item.original_url):
            errors.append(BulkItemError(index=index, error="Invalid URL format"))
            continue
        try:
            short_code = await _allocate_short_code(db, item.short_code)
            link = await create_link(
                db,
                Link(
                    user_id=principal.user.id,
                    short_code=short_code,
                    original_url=item.original_url,
                    title=item.title,
                    description=item.description,
                    tags=item.tags,
                ),
            )
        except ConflictError as e:
            errors.append(BulkItemError(index=index, error=e.message))
            continue
        except IntegrityError:
            await db.rollback()
            errors.append(BulkItemError(index=index, error="Short code already exists"))
            continue
        results.append(BulkItemResult(index=index, link=to_response(link, settings)))

    return DataResponse(
        data=BulkResult(
            results=results,
            errors=errors,
            summary=BulkSummary(total=len(bulk_in.links), successful=len(results), failed=len(errors)),
        )
    )


@router.get("/{link_id}", response_model=DataResponse[LinkResponse])
async def get_link(
    link_id: uuid.UUID,
    principal: Principal = Depends(require_scope("read")),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    link = await get_visible_link(db, link_id, principal.user.id)
    if not link:
        raise NotFoundError("Link not found")
    return DataResponse(data=to_response(link, settings))


@router.put("/{link_id}", response_model=DataResponse[LinkResponse])
async def edit_link(
    link_id: uuid.UUID,
    link_in: LinkUpdate,
    principal: Principal = Depends(require_scope("write")),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    link = await get_manageable_link(db, link_id, principal.user.id)
    if not link:
        raise NotFoundError("Link not found or access denied")

    values = link_in.model_dump(exclude_unset=True)
    # Explicit nulls only clear nullable columns
    for field in NON_NULLABLE_FIELDS:
        if field in values and values[field] is None:
            values.pop(field)
    if "password" in values:
        password = values.pop("password")
        values["password_hash"] = hash_password(password) if password else None

    link = await update_link(db, link, values)
    return DataResponse(data=to_response(link, settings))


@router.delete("/{link_id}", response_model=DataResponse[dict])
async def remove_link(
    link_id: uuid.UUID,
    principal: Principal = Depends(require_scope("write")),
    db: AsyncSession = Depends(get_db),
):
    link = await get_manageable_link(db, link_id, principal.user.id)
    if not link:
        raise NotFoundError("Link not found or access denied")

    await delete_link(db, link)
    return DataResponse(data={"id": str(link_id), "deleted": True})


@router.post("/{link_id}/health", response_model=HealthCheckResult)
async def check_link_health(
    link_id: uuid.UUID,
    principal: Principal = Depends(require_scope("write")),
    checker: HealthChecker = Depends(get_health_checker),
    db: AsyncSession = Depends(get_db),
):
    link = await get_visible_link(db, link_id, principal.user.id)
    if not link:
        raise NotFoundError("Link not found")

    result = await checker.check(link.id, link.original_url)
    return HealthCheckResult(**result.to_dict())


@router.get("/{link_id}/health-checks", response_model=DataResponse[list[HealthCheckRecord]])
async def list_health_checks(
    link_id: uuid.UUID,
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_scope("read")),
    db: AsyncSession = Depends(get_db),
):
    link = await get_visible_link(db, link_id, principal.user.id)
    if not link:
        raise NotFoundError("Link not found")

    checks = await get_health_checks(db, link.id, limit)
    return DataResponse(data=[HealthCheckRecord.model_validate(check) for check in checks])


@router.get("/{link_id}/analytics", response_model=DataResponse[LinkAnalytics])
async def get_link_analytics(
    link_id: uuid.UUID,
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    principal: Principal = Depends(require_scope("read")),
    db: AsyncSession = Depends(get_db),
):
    link = await get_visible_link(db, link_id, principal.user.id)
    if not link:
        raise NotFoundError("Link not found")

    analytics = await link_analytics(db, link.id, utcnow(), start, end)
    return DataResponse(data=LinkAnalytics(**analytics))
