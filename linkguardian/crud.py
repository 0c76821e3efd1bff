import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    ELEVATED_ROLES,
    ApiToken,
    Branding,
    Click,
    HealthCheck,
    Link,
    Notification,
    OrganizationMember,
    User,
    utcnow,
)


# User / organization
async def get_user(db: AsyncSession, user_id: uuid.UUID) -> Optional[User]:
    return await db.get(User, user_id)


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def create_user(db: AsyncSession, user: User) -> User:
    db.add(user)
    await db.commit()
    return user


async def get_membership(db: AsyncSession, organization_id: uuid.UUID, user_id: uuid.UUID) -> Optional[OrganizationMember]:
    result = await db.execute(
        select(OrganizationMember).where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.user_id == user_id,
            OrganizationMember.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def get_branding(db: AsyncSession, organization_id: uuid.UUID) -> Optional[Branding]:
    result = await db.execute(select(Branding).where(Branding.organization_id == organization_id))
    return result.scalar_one_or_none()


async def get_alert_recipients(db: AsyncSession, link: Link) -> list[User]:
    """Link owner plus active OWNER/ADMIN members of the link's organization, each once."""
    recipients: dict[uuid.UUID, User] = {}

    owner = await db.get(User, link.user_id)
    if owner:
        recipients[owner.id] = owner

    if link.organization_id:
        result = await db.execute(
            select(User)
            .join(OrganizationMember, OrganizationMember.user_id == User.id)
            .where(
                OrganizationMember.organization_id == link.organization_id,
                OrganizationMember.role.in_(ELEVATED_ROLES),
                OrganizationMember.is_active.is_(True),
            )
        )
        for user in result.scalars():
            recipients.setdefault(user.id, user)

    return list(recipients.values())


# Link CRUD
async def create_link(db: AsyncSession, link: Link) -> Link:
    db.add(link)
    await db.commit()
    await db.refresh(link)
    return link


async def get_link_by_short_code(db: AsyncSession, short_code: str) -> Optional[Link]:
    result = await db.execute(select(Link).where(Link.short_code == short_code))
    return result.scalar_one_or_none()


async def get_link_by_id(db: AsyncSession, link_id: uuid.UUID) -> Optional[Link]:
    result = await db.execute(select(Link).where(Link.id == link_id))
    return result.scalar_one_or_none()


def _member_org_ids(user_id: uuid.UUID, roles: Optional[tuple] = None):
    stmt = select(OrganizationMember.organization_id).where(
        OrganizationMember.user_id == user_id,
        OrganizationMember.is_active.is_(True),
    )
    if roles:
        stmt = stmt.where(OrganizationMember.role.in_(roles))
    return stmt


async def get_visible_link(db: AsyncSession, link_id: uuid.UUID, user_id: uuid.UUID) -> Optional[Link]:
    result = await db.execute(
        select(Link).where(
            Link.id == link_id,
            or_(Link.user_id == user_id, Link.organization_id.in_(_member_org_ids(user_id))),
        )
    )
    return result.scalar_one_or_none()


async def get_manageable_link(db: AsyncSession, link_id: uuid.UUID, user_id: uuid.UUID) -> Optional[Link]:
    result = await db.execute(
        select(Link).where(
            Link.id == link_id,
            or_(Link.user_id == user_id, Link.organization_id.in_(_member_org_ids(user_id, ELEVATED_ROLES))),
        )
    )
    return result.scalar_one_or_none()


async def count_user_links(db: AsyncSession, user_id: uuid.UUID) -> int:
    result = await db.execute(select(func.count()).select_from(Link).where(Link.user_id == user_id))
    return result.scalar_one()


async def list_links(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    organization_id: Optional[uuid.UUID] = None,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    health_status: Optional[str] = None,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[Link], int]:
    if organization_id:
        conditions = [Link.organization_id == organization_id]
    else:
        conditions = [Link.user_id == user_id]

    if search:
        # Wildcards in the search term match literally
        escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        conditions.append(
            or_(
                Link.title.ilike(pattern, escape="\\"),
                Link.original_url.ilike(pattern, escape="\\"),
                Link.short_code.ilike(pattern, escape="\\"),
            )
        )
    if is_active is not None:
        conditions.append(Link.is_active.is_(is_active))
    if health_status:
        conditions.append(Link.health_status == health_status)

    total = (await db.execute(select(func.count()).select_from(Link).where(*conditions))).scalar_one()
    result = await db.execute(
        select(Link).where(*conditions).order_by(Link.created_at.desc()).offset(offset).limit(limit)
    )
    return list(result.scalars()), total


async def update_link(db: AsyncSession, link: Link, values: dict) -> Link:
    for field, value in values.items():
        setattr(link, field, value)
    await db.commit()
    await db.refresh(link)
    return link


async def delete_link(db: AsyncSession, link: Link):
    # Children first so the delete also cascades on backends without FK enforcement
    await db.execute(delete(Click).where(Click.link_id == link.id))
    await db.execute(delete(HealthCheck).where(HealthCheck.link_id == link.id))
    await db.execute(delete(Link).where(Link.id == link.id))
    await db.commit()


async def increment_click_count(db: AsyncSession, link_id: uuid.UUID):
    await db.execute(
        update(Link)
        .where(Link.id == link_id)
        .values(current_clicks=Link.current_clicks + 1)
    )
    await db.commit()


async def create_click(db: AsyncSession, click: Click) -> Click:
    db.add(click)
    await db.commit()
    return click


# Health checks
async def record_health_check(db: AsyncSession, link_id: uuid.UUID, check: HealthCheck) -> HealthCheck:
    """Append *check* and mirror its status onto the link in one commit."""
    await db.execute(
        update(Link)
        .where(Link.id == link_id)
        .values(health_status=check.status, last_health_check=check.checked_at)
    )
    db.add(check)
    await db.commit()
    return check


async def get_links_due_for_health_check(db: AsyncSession, cutoff: datetime, limit: int) -> list[Link]:
    result = await db.execute(
        select(Link)
        .where(
            Link.is_active.is_(True),
            or_(Link.last_health_check.is_(None), Link.last_health_check < cutoff),
        )
        .order_by(Link.last_health_check.asc().nulls_first())
        .limit(limit)
    )
    return list(result.scalars())


async def get_health_checks(db: AsyncSession, link_id: uuid.UUID, limit: int = 20) -> list[HealthCheck]:
    result = await db.execute(
        select(HealthCheck)
        .where(HealthCheck.link_id == link_id)
        .order_by(HealthCheck.checked_at.desc())
        .limit(limit)
    )
    return list(result.scalars())


# Analytics
async def _top_values(db: AsyncSession, column, conditions: list, limit: int = 10) -> list[tuple]:
    result = await db.execute(
        select(column, func.count().label("count"))
        .where(*conditions, column.is_not(None))
        .group_by(column)
        .order_by(func.count().desc())
        .limit(limit)
    )
    return [(value, count) for value, count in result.all()]


async def get_click_stats(db: AsyncSession, link_id: uuid.UUID, start: datetime, end: datetime) -> dict:
    conditions = [Click.link_id == link_id, Click.timestamp >= start, Click.timestamp <= end]

    total = (await db.execute(select(func.count()).select_from(Click).where(*conditions))).scalar_one()
    unique = (
        await db.execute(select(func.count(func.distinct(Click.ip_address))).where(*conditions))
    ).scalar_one()

    day = func.date(Click.timestamp)
    per_day = await db.execute(
        select(day.label("day"), func.count().label("clicks")).where(*conditions).group_by(day).order_by(day)
    )

    return {
        "total_clicks": total,
        "unique_visitors": unique,
        "clicks_over_time": [(str(d), c) for d, c in per_day.all()],
        "top_countries": await _top_values(db, Click.country, conditions),
        "top_browsers": await _top_values(db, Click.browser, conditions),
        "top_devices": await _top_values(db, Click.device, conditions),
        "top_referrers": await _top_values(db, Click.referer, conditions),
    }


# API tokens
async def get_api_token_by_hash(db: AsyncSession, token_hash: str) -> Optional[ApiToken]:
    result = await db.execute(
        select(ApiToken).where(ApiToken.token_hash == token_hash, ApiToken.is_active.is_(True))
    )
    return result.scalar_one_or_none()


async def create_api_token(db: AsyncSession, api_token: ApiToken) -> ApiToken:
    db.add(api_token)
    await db.commit()
    await db.refresh(api_token)
    return api_token


async def list_api_tokens(db: AsyncSession, user_id: uuid.UUID) -> list[ApiToken]:
    result = await db.execute(
        select(ApiToken).where(ApiToken.user_id == user_id).order_by(ApiToken.created_at.desc())
    )
    return list(result.scalars())


async def deactivate_api_token(db: AsyncSession, token_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    result = await db.execute(
        update(ApiToken)
        .where(ApiToken.id == token_id, ApiToken.user_id == user_id)
        .values(is_active=False)
    )
    await db.commit()
    return result.rowcount > 0


async def touch_api_token(db: AsyncSession, token_id: uuid.UUID):
    await db.execute(update(ApiToken).where(ApiToken.id == token_id).values(last_used_at=utcnow()))
    await db.commit()


# Notifications
async def create_notification(db: AsyncSession, notification: Notification) -> Notification:
    db.add(notification)
    await db.commit()
    return notification


async def mark_notification_sent(db: AsyncSession, notification_id: uuid.UUID, sent_at: datetime):
    await db.execute(update(Notification).where(Notification.id == notification_id).values(sent_at=sent_at))
    await db.commit()
