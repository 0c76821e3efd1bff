from typing import AsyncGenerator
from unittest.mock import AsyncMock

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from linkguardian.config import Settings
from linkguardian.main import create_app
from linkguardian.models import ApiToken, Plan, User
from linkguardian.security import generate_api_token, hash_token
from linkguardian.services.health_check import HealthChecker


@pytest.fixture
def settings(tmp_path) -> Settings:
    # A file database so the app and the checker can use separate connections
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        REDIS_URL=None,
        ENVIRONMENT="development",
        LOG_LEVEL="WARNING",
        HEALTH_CHECK_ENABLED=False,
        HEALTH_CHECK_ON_CREATE=False,
        GEOIP_CITY_DB=str(tmp_path / "missing.mmdb"),
        DEFAULT_SHORT_DOMAIN="http://lg.test",
    )


@pytest.fixture
def probe_responses() -> dict:
    """Destination URL -> status code served by the mocked probe transport (default 200)."""
    return {}


@pytest.fixture
def notifier() -> AsyncMock:
    mock = AsyncMock()
    mock.notify_many.return_value = []
    return mock


@pytest.fixture
async def app(settings, probe_responses, notifier):
    application = create_app(settings)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(probe_responses.get(str(request.url), 200))

    async with application.router.lifespan_context(application):
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as probe_client:
            application.state.health_checker = HealthChecker(
                application.state.session_factory, probe_client, notifier=notifier
            )
            yield application


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
async def db(app):
    async with app.state.session_factory() as session:
        yield session


@pytest.fixture
def make_user(app):
    async def factory(email: str, plan: str = Plan.FREE.value, scopes=("read", "write", "admin")):
        """Create a user with one API key; returns (user, plaintext key)."""
        plaintext = generate_api_token()
        async with app.state.session_factory() as session:
            user = User(email=email, name=email.split("@")[0], plan=plan)
            session.add(user)
            await session.flush()
            session.add(ApiToken(user_id=user.id, name="test", token_hash=hash_token(plaintext), scopes=list(scopes)))
            await session.commit()
        return user, plaintext

    return factory


@pytest.fixture
async def user_and_key(make_user):
    return await make_user("owner@example.com")


@pytest.fixture
def user(user_and_key) -> User:
    return user_and_key[0]


@pytest.fixture
def auth_headers(user_and_key) -> dict:
    return {"X-API-Key": user_and_key[1]}
