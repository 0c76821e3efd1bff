import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..models import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


async def database_ok(request: Request) -> bool:
    try:
        async with request.app.state.session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database health check failed: {e}")
        return False


@router.get("")
async def health(request: Request):
    db_ok = await database_ok(request)
    redis_client = request.app.state.redis
    if redis_client.client is None:
        redis_status = "disabled"
    else:
        redis_status = "healthy" if await redis_client.ping() else "unhealthy"

    body = {
        "status": "healthy" if db_ok else "unhealthy",
        "timestamp": utcnow().isoformat(),
        "services": {
            "database": "healthy" if db_ok else "unhealthy",
            "redis": redis_status,
        },
    }
    return JSONResponse(body, status_code=200 if db_ok else 503)


@router.get("/ready")
async def ready(request: Request):
    if await database_ok(request):
        return {"status": "ready"}
    return JSONResponse({"status": "not ready"}, status_code=503)


@router.get("/live")
async def live(request: Request):
    return {"status": "alive", "uptime": round(time.monotonic() - request.app.state.started_at, 3)}
