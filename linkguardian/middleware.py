import logging
import time
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from .logging_config import request_id_var
from .utils import get_client_ip

logger = logging.getLogger("linkguardian.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags every request with an X-Request-ID and logs one line per response."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        token = request_id_var.set(request_id)
        request.state.request_id = request_id
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
            response.headers["X-Request-ID"] = request_id

            logger.info(
                f"{request.method} {request.url.path} {response.status_code}",
                extra={
                    "fields": {
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": response.status_code,
                        "duration_ms": duration_ms,
                        "ip": get_client_ip(request),
                        "user_agent": request.headers.get("User-Agent"),
                    }
                },
            )
            return response
        finally:
            request_id_var.reset(token)
