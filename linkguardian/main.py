"""
Application factory.

Run with: uvicorn linkguardian.main:create_app --factory
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI

from .api import health, redirect
from .api.v1 import links, tokens
from .config import Settings
from .database import create_engine, create_session_factory, create_tables
from .errors import register_error_handlers
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware
from .observability import PrometheusMiddleware, metrics_endpoint
from .pages import PageRenderer
from .redis import RedisClient
from .services.analytics import ClickTracker
from .services.email import build_email_provider
from .services.geolocation import GeoIPService
from .services.health_check import HealthChecker, build_probe_client
from .services.notifications import NotificationDispatcher
from .services.scheduler import HealthCheckScheduler
from .services.slack import SlackWebhookProvider

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings

    # Startup logic
    engine = create_engine(settings.DATABASE_URL)
    session_factory = create_session_factory(engine)
    if settings.is_development:
        await create_tables(engine)

    redis_client = RedisClient(settings.REDIS_URL)
    await redis_client.connect()

    probe_client = build_probe_client(settings.HEALTH_CHECK_TIMEOUT, settings.HEALTH_CHECK_MAX_REDIRECTS)
    notify_client = httpx.AsyncClient(timeout=settings.NOTIFICATION_TIMEOUT)

    dispatcher = NotificationDispatcher(
        session_factory,
        email=build_email_provider(settings, notify_client),
        chat=SlackWebhookProvider(settings.SLACK_WEBHOOK_URL, notify_client) if settings.SLACK_WEBHOOK_URL else None,
    )
    checker = HealthChecker(
        session_factory,
        probe_client,
        notifier=dispatcher,
        slow_threshold_ms=settings.HEALTH_CHECK_SLOW_THRESHOLD_MS,
    )
    geoip = GeoIPService(settings.GEOIP_CITY_DB)

    app.state.started_at = time.monotonic()
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.redis = redis_client
    app.state.notifier = dispatcher
    app.state.health_checker = checker
    app.state.click_tracker = ClickTracker(geoip)
    app.state.pages = PageRenderer(settings.APP_NAME, settings.APP_URL)

    task = None
    if settings.HEALTH_CHECK_ENABLED:
        scheduler = HealthCheckScheduler(
            checker,
            session_factory,
            interval=settings.HEALTH_CHECK_INTERVAL,
            batch_size=settings.HEALTH_CHECK_BATCH_SIZE,
        )
        task = asyncio.create_task(scheduler.run_forever())

    logger.info(f"{settings.APP_NAME} started ({settings.ENVIRONMENT})")
    yield

    # Shutdown logic
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    await probe_client.aclose()
    await notify_client.aclose()
    geoip.close()
    await redis_client.close()
    await engine.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        description="Short links with destination health monitoring",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    register_error_handlers(app)

    app.add_route("/metrics", metrics_endpoint)

    app.include_router(health.router)
    app.include_router(links.router, prefix="/api/v1")
    app.include_router(tokens.router, prefix="/api/v1")
    # Catch-all /{short_code} routes go last
    app.include_router(redirect.router)

    return app
