"""Unit tests for AppError hierarchy and the rate limiter."""

from unittest.mock import AsyncMock

import pytest

from linkguardian.errors import (
    AppError,
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from linkguardian.services.rate_limiter import check_rate_limit


class TestAppErrorSubclasses:
    @pytest.mark.parametrize(
        "cls, status_code, error_code",
        [
            (ValidationError, 400, "validation_error"),
            (AuthenticationError, 401, "authentication_error"),
            (ForbiddenError, 403, "forbidden"),
            (NotFoundError, 404, "not_found"),
            (ConflictError, 409, "conflict"),
            (RateLimitError, 429, "rate_limit_exceeded"),
        ],
    )
    def test_codes(self, cls, status_code, error_code):
        e = cls("boom")
        assert isinstance(e, AppError)
        assert e.status_code == status_code
        assert e.error_code == error_code
        assert e.message == "boom"


class TestAppErrorToDict:
    def test_basic(self):
        assert NotFoundError("Link not found").to_dict() == {"message": "Link not found", "code": "not_found"}

    def test_with_details(self):
        e = ValidationError("bad", details={"field": "originalUrl"})
        assert e.to_dict()["details"] == {"field": "originalUrl"}


class TestRateLimit:
    @pytest.mark.asyncio
    async def test_without_redis_allows(self):
        await check_rate_limit(None, "ip:1.2.3.4", 1, 60, "redirect")

    @pytest.mark.asyncio
    async def test_under_limit(self):
        redis_client = AsyncMock()
        redis_client.incr_window.return_value = 5
        await check_rate_limit(redis_client, "ip:1.2.3.4", 5, 60, "redirect")

        key, window = redis_client.incr_window.await_args.args
        assert key.startswith("rate:redirect:ip:1.2.3.4:")
        assert window == 60

    @pytest.mark.asyncio
    async def test_over_limit(self):
        redis_client = AsyncMock()
        redis_client.incr_window.return_value = 6
        with pytest.raises(RateLimitError):
            await check_rate_limit(redis_client, "ip:1.2.3.4", 5, 60, "redirect")

    @pytest.mark.asyncio
    async def test_redis_failure_allows(self):
        redis_client = AsyncMock()
        redis_client.incr_window.return_value = None
        await check_rate_limit(redis_client, "token:abc", 1, 60, "api")
