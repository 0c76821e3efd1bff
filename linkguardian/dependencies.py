"""
FastAPI dependency providers: app-scoped services from `app.state` and
API-key authentication.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings
from .crud import get_api_token_by_hash, get_user, touch_api_token
from .database import get_db
from .errors import AuthenticationError, ForbiddenError
from .models import ApiToken, User, utcnow
from .pages import PageRenderer
from .security import hash_token
from .services.analytics import ClickTracker
from .services.health_check import HealthChecker
from .utils import as_utc


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_health_checker(request: Request) -> HealthChecker:
    return request.app.state.health_checker


def get_click_tracker(request: Request) -> ClickTracker:
    return request.app.state.click_tracker


def get_pages(request: Request) -> PageRenderer:
    return request.app.state.pages


@dataclass
class Principal:
    user: User
    token: ApiToken

    def has_scope(self, scope: str) -> bool:
        scopes = self.token.scopes or []
        return "admin" in scopes or scope in scopes


async def get_principal(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    if not x_api_key:
        raise AuthenticationError("API key required")

    token = await get_api_token_by_hash(db, hash_token(x_api_key))
    if token is None:
        raise AuthenticationError("Invalid API key")

    expires_at = as_utc(token.expires_at)
    if expires_at is not None and expires_at < utcnow():
        raise AuthenticationError("API key expired")

    user = await get_user(db, token.user_id)
    if user is None:
        raise AuthenticationError("Invalid API key")

    await touch_api_token(db, token.id)
    return Principal(user=user, token=token)


def require_scope(scope: str):
    async def dependency(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.has_scope(scope):
            raise ForbiddenError(f"API key lacks the '{scope}' scope")
        return principal

    return dependency
