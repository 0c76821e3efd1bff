import time

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Metrics definitions
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"]
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)

REDIRECT_TOTAL = Counter("redirect_total", "Redirect resolutions by outcome", ["outcome"])
CLICK_TRACKING_FAILURES = Counter("click_tracking_failures_total", "Click records that failed to persist")
HEALTH_CHECKS_TOTAL = Counter("health_checks_total", "Link health probes by resulting status", ["status"])
HEALTH_CHECK_DURATION_SECONDS = Histogram(
    "health_check_duration_seconds",
    "Destination probe duration in seconds",
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0]
)
HEALTH_CHECK_BATCH_SIZE = Histogram(
    "health_check_batch_size",
    "Links probed per scheduler tick",
    buckets=[0, 1, 10, 25, 50, 100]
)
NOTIFICATIONS_TOTAL = Counter("notifications_total", "Notification deliveries", ["channel", "outcome"])
RATE_LIMITED_TOTAL = Counter("rate_limited_total", "Total rate limited requests", ["scope"])


def metric_path(path: str) -> str:
    """Collapse ids and short codes so label cardinality stays bounded."""
    if path.startswith("/api/v1/links/"):
        rest = path[len("/api/v1/links/"):]
        if rest == "bulk":
            return "/api/v1/links/bulk"
        parts = rest.split("/", 1)
        return "/api/v1/links/{id}" + (f"/{parts[1]}" if len(parts) > 1 else "")
    if path.startswith("/api/v1/tokens/"):
        return "/api/v1/tokens/{id}"
    if path.startswith(("/api/", "/health", "/metrics")) or path == "/":
        return path
    if path.endswith("/preview"):
        return "/{code}/preview"
    if len(path) > 1 and "/" not in path[1:]:  # Root redirect /{code}
        return "/{code}"
    return path


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()

        response = await call_next(request)

        process_time = time.perf_counter() - start_time
        path = metric_path(request.url.path)

        HTTP_REQUESTS_TOTAL.labels(method=request.method, path=path, status=str(response.status_code)).inc()
        HTTP_REQUEST_DURATION_SECONDS.labels(method=request.method, path=path).observe(process_time)

        return response


def metrics_endpoint(request: Request):
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
