"""
Short-code resolution.

Gates are evaluated in a fixed order and the first failing one decides the
outcome: active flag, expiry date, click limit, then password. An expired
link that is also password protected therefore reports "expired" and never
prompts for the password.
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..crud import get_link_by_short_code
from ..models import Link
from ..security import verify_password
from ..utils import as_utc

DEACTIVATED_MESSAGE = "This link has been deactivated"
EXPIRED_MESSAGE = "This link has expired"
CLICK_LIMIT_MESSAGE = "This link has reached its click limit"
INCORRECT_PASSWORD = "Incorrect password"


class Outcome(str, enum.Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    PASSWORD_REQUIRED = "password_required"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class Resolution:
    outcome: Outcome
    link: Optional[Link] = None
    message: Optional[str] = None
    error: Optional[str] = None


def evaluate_gates(link: Link, password: Optional[str], now: datetime) -> Resolution:
    if not link.is_active:
        return Resolution(Outcome.EXPIRED, link, message=DEACTIVATED_MESSAGE)

    expires_at = as_utc(link.expires_at)
    if expires_at is not None and now > expires_at:
        return Resolution(Outcome.EXPIRED, link, message=EXPIRED_MESSAGE)

    if link.max_clicks is not None and link.current_clicks >= link.max_clicks:
        return Resolution(Outcome.EXPIRED, link, message=CLICK_LIMIT_MESSAGE)

    if link.password_hash:
        if not password:
            return Resolution(Outcome.PASSWORD_REQUIRED, link)
        if not verify_password(password, link.password_hash):
            return Resolution(Outcome.PASSWORD_REQUIRED, link, error=INCORRECT_PASSWORD)

    return Resolution(Outcome.REDIRECT, link)


async def resolve(db: AsyncSession, short_code: str, password: Optional[str], now: datetime) -> Resolution:
    link = await get_link_by_short_code(db, short_code)
    if link is None:
        return Resolution(Outcome.NOT_FOUND)
    return evaluate_gates(link, password, now)
