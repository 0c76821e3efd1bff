from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient

from linkguardian.models import Plan

DESTINATION = "https://destination.example.com/page"


async def create_link(client: AsyncClient, headers: dict, **fields) -> dict:
    payload = {"originalUrl": DESTINATION, **fields}
    response = await client.post("/api/v1/links", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["services"] == {"database": "healthy", "redis": "disabled"}


@pytest.mark.asyncio
async def test_liveness_and_readiness(client: AsyncClient):
    live = await client.get("/health/live")
    assert live.status_code == 200
    assert live.json()["status"] == "alive"
    assert live.json()["uptime"] >= 0

    ready = await client.get("/health/ready")
    assert ready.status_code == 200
    assert ready.json() == {"status": "ready"}


@pytest.mark.asyncio
async def test_metrics_exposed(client: AsyncClient):
    await client.get("/health")
    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text


@pytest.mark.asyncio
async def test_request_id_header(client: AsyncClient):
    response = await client.get("/health/live", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.asyncio
async def test_missing_api_key(client: AsyncClient):
    response = await client.get("/api/v1/links")
    assert response.status_code == 401
    assert response.json() == {
        "success": False,
        "error": {"message": "API key required", "code": "authentication_error"},
        "path": "/api/v1/links",
        "method": "GET",
    }


@pytest.mark.asyncio
async def test_invalid_api_key(client: AsyncClient):
    response = await client.get("/api/v1/links", headers={"X-API-Key": "lg_nope"})
    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Invalid API key"


@pytest.mark.asyncio
async def test_read_only_key_cannot_create(make_user, client: AsyncClient):
    _, key = await make_user("reader@example.com", scopes=("read",))
    headers = {"X-API-Key": key}

    response = await client.post("/api/v1/links", json={"originalUrl": DESTINATION}, headers=headers)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "forbidden"

    response = await client.get("/api/v1/links", headers=headers)
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_write_only_key_cannot_read(make_user, client: AsyncClient):
    _, key = await make_user("writer@example.com", scopes=("write",))
    headers = {"X-API-Key": key}

    link = await create_link(client, headers)

    paths = ["/api/v1/links", f"/api/v1/links/{link['id']}", f"/api/v1/links/{link['id']}/analytics", "/api/v1/tokens"]
    for path in paths:
        response = await client.get(path, headers=headers)
        assert response.status_code == 403, path
        assert response.json()["error"]["message"] == "API key lacks the 'read' scope"


@pytest.mark.asyncio
async def test_create_short_link(client: AsyncClient, auth_headers):
    data = await create_link(client, auth_headers, shortCode="docs1", title="Docs", tags=["team"])

    assert data["shortCode"] == "docs1"
    assert data["shortUrl"] == "http://lg.test/docs1"
    assert data["originalUrl"] == DESTINATION
    assert data["healthStatus"] == "UNKNOWN"
    assert data["currentClicks"] == 0
    assert data["hasPassword"] is False
    assert data["tags"] == ["team"]

    response = await client.get(f"/api/v1/links/{data['id']}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["data"]["title"] == "Docs"


@pytest.mark.asyncio
async def test_random_short_code(client: AsyncClient, auth_headers):
    data = await create_link(client, auth_headers)
    assert len(data["shortCode"]) == 6
    assert data["shortCode"].isalnum()


@pytest.mark.asyncio
async def test_duplicate_short_code(client: AsyncClient, auth_headers):
    await create_link(client, auth_headers, shortCode="taken")

    response = await client.post(
        "/api/v1/links", json={"originalUrl": DESTINATION, "shortCode": "taken"}, headers=auth_headers
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "conflict"


@pytest.mark.asyncio
@pytest.mark.parametrize("short_code", ["health", "metrics", "docs", "redoc", "api"])
async def test_reserved_short_code(client: AsyncClient, auth_headers, short_code):
    response = await client.post(
        "/api/v1/links", json={"originalUrl": DESTINATION, "shortCode": short_code}, headers=auth_headers
    )
    assert response.status_code == 409
    assert response.json()["error"]["message"] == "Short code is reserved"

    response = await client.get("/health")
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_invalid_payload(client: AsyncClient, auth_headers):
    response = await client.post("/api/v1/links", json={"originalUrl": "not-a-url"}, headers=auth_headers)
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "validation_error"
    assert body["error"]["message"].startswith("Validation error")


@pytest.mark.asyncio
async def test_destination_stored_as_entered(client: AsyncClient, auth_headers):
    data = await create_link(client, auth_headers, originalUrl="https://example.com", shortCode="bare")
    assert data["originalUrl"] == "https://example.com"

    response = await client.put(
        f"/api/v1/links/{data['id']}", json={"originalUrl": "https://Example.com/Path"}, headers=auth_headers
    )
    assert response.json()["data"]["originalUrl"] == "https://Example.com/Path"

    response = await client.get("/bare")
    assert response.status_code == 302
    assert response.headers["location"] == "https://Example.com/Path"


@pytest.mark.asyncio
async def test_expiry_must_be_in_future(client: AsyncClient, auth_headers):
    response = await client.post(
        "/api/v1/links",
        json={"originalUrl": DESTINATION, "expiresAt": "2000-01-01T00:00:00Z"},
        headers=auth_headers,
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_list_links(client: AsyncClient, auth_headers):
    await create_link(client, auth_headers, shortCode="alpha", title="Alpha page")
    await create_link(client, auth_headers, shortCode="beta", title="Beta page")
    await create_link(client, auth_headers, shortCode="gamma", title="Gamma page")

    response = await client.get("/api/v1/links?limit=2", headers=auth_headers)
    assert response.status_code == 200
    body = response.json()
    assert len(body["data"]) == 2
    assert body["pagination"] == {
        "total": 3,
        "page": 1,
        "limit": 2,
        "totalPages": 2,
        "hasNext": True,
        "hasPrev": False,
    }

    response = await client.get("/api/v1/links?search=beta", headers=auth_headers)
    assert [link["shortCode"] for link in response.json()["data"]] == ["beta"]

    response = await client.get("/api/v1/links?status=inactive", headers=auth_headers)
    assert response.json()["pagination"]["total"] == 0


@pytest.mark.asyncio
async def test_search_matches_wildcards_literally(client: AsyncClient, auth_headers):
    await create_link(client, auth_headers, shortCode="sale", title="50% off")
    await create_link(client, auth_headers, shortCode="top", title="Top 50 list")
    await create_link(client, auth_headers, shortCode="snake", title="snake_case guide")

    response = await client.get("/api/v1/links", params={"search": "50%"}, headers=auth_headers)
    assert [link["shortCode"] for link in response.json()["data"]] == ["sale"]

    response = await client.get("/api/v1/links", params={"search": "e_c"}, headers=auth_headers)
    assert [link["shortCode"] for link in response.json()["data"]] == ["snake"]


@pytest.mark.asyncio
async def test_update_link(client: AsyncClient, auth_headers):
    link = await create_link(client, auth_headers, title="Before")

    response = await client.put(
        f"/api/v1/links/{link['id']}",
        json={"title": "After", "isActive": False, "password": "secret"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["title"] == "After"
    assert data["isActive"] is False
    assert data["hasPassword"] is True
    assert data["originalUrl"] == DESTINATION

    response = await client.put(f"/api/v1/links/{link['id']}", json={"password": None}, headers=auth_headers)
    assert response.json()["data"]["hasPassword"] is False


@pytest.mark.asyncio
async def test_delete_link(client: AsyncClient, auth_headers):
    link = await create_link(client, auth_headers)

    response = await client.delete(f"/api/v1/links/{link['id']}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["data"]["deleted"] is True

    response = await client.get(f"/api/v1/links/{link['id']}", headers=auth_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_links_are_private(make_user, client: AsyncClient, auth_headers):
    link = await create_link(client, auth_headers)
    _, other_key = await make_user("other@example.com")

    response = await client.get(f"/api/v1/links/{link['id']}", headers={"X-API-Key": other_key})
    assert response.status_code == 404

    response = await client.delete(f"/api/v1/links/{link['id']}", headers={"X-API-Key": other_key})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_plan_link_limit(client: AsyncClient, auth_headers):
    for i in range(10):
        await create_link(client, auth_headers, shortCode=f"code{i}")

    response = await client.post("/api/v1/links", json={"originalUrl": DESTINATION}, headers=auth_headers)
    assert response.status_code == 403
    assert "FREE" in response.json()["error"]["message"]


@pytest.mark.asyncio
async def test_bulk_create(make_user, client: AsyncClient):
    _, key = await make_user("bulk@example.com", plan=Plan.PRO.value)
    headers = {"X-API-Key": key}
    await create_link(client, headers, shortCode="exists")

    response = await client.post(
        "/api/v1/links/bulk",
        json={
            "links": [
                {"originalUrl": "https://one.example.com/"},
                {"originalUrl": "ftp://nope"},
                {"originalUrl": "https://two.example.com/", "shortCode": "exists"},
            ]
        },
        headers=headers,
    )
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["summary"] == {"total": 3, "successful": 1, "failed": 2}
    assert data["results"][0]["index"] == 0
    assert {e["index"]: e["error"] for e in data["errors"]} == {
        1: "Invalid URL format",
        2: "Short code already exists",
    }


@pytest.mark.asyncio
async def test_on_demand_health_check_error(client: AsyncClient, auth_headers, probe_responses, notifier, user):
    probe_responses[DESTINATION] = 503
    link = await create_link(client, auth_headers, shortCode="flaky")

    response = await client.post(f"/api/v1/links/{link['id']}/health", headers=auth_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ERROR"
    assert body["statusCode"] == 503
    assert body["error"] == "HTTP 503"
    assert "checkedAt" in body

    notifier.notify_many.assert_awaited_once()
    recipients, type_, title, message, payload = notifier.notify_many.await_args.args
    assert recipients == [user.id]
    assert type_ == "LINK_HEALTH_ISSUE"
    assert message == "Link flaky is experiencing issues: HTTP 503"
    assert payload["shortCode"] == "flaky"

    response = await client.get(f"/api/v1/links/{link['id']}", headers=auth_headers)
    assert response.json()["data"]["healthStatus"] == "ERROR"

    response = await client.get(f"/api/v1/links/{link['id']}/health-checks", headers=auth_headers)
    checks = response.json()["data"]
    assert len(checks) == 1
    assert checks[0]["url"] == DESTINATION
    assert checks[0]["statusCode"] == 503


@pytest.mark.asyncio
async def test_on_demand_health_check_warning(client: AsyncClient, auth_headers, probe_responses, notifier):
    probe_responses[DESTINATION] = 404
    link = await create_link(client, auth_headers)

    response = await client.post(f"/api/v1/links/{link['id']}/health", headers=auth_headers)
    assert response.json()["status"] == "WARNING"
    assert response.json()["error"] == "HTTP 404"
    notifier.notify_many.assert_not_awaited()


@pytest.mark.asyncio
async def test_link_analytics(client: AsyncClient, auth_headers):
    link = await create_link(client, auth_headers, shortCode="stats")
    chrome = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    for ip in ("203.0.113.7", "203.0.113.9", "198.51.100.1"):
        response = await client.get(
            "/stats",
            headers={"User-Agent": chrome, "X-Forwarded-For": ip, "Referer": "https://news.example.com/"},
        )
        assert response.status_code == 302

    response = await client.get(f"/api/v1/links/{link['id']}/analytics", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["totalClicks"] == 3
    # Anonymized to /24, so the first two collapse into one visitor
    assert data["uniqueVisitors"] == 2
    assert data["topBrowsers"] == [{"value": "Chrome", "count": 3}]
    assert data["topDevices"] == [{"value": "Desktop", "count": 3}]
    assert data["topReferrers"] == [{"value": "https://news.example.com/", "count": 3}]
    assert sum(day["clicks"] for day in data["clicksOverTime"]) == 3


@pytest.mark.asyncio
async def test_token_lifecycle(client: AsyncClient, auth_headers):
    response = await client.post(
        "/api/v1/tokens", json={"name": "ci reader", "scopes": ["read"]}, headers=auth_headers
    )
    assert response.status_code == 201
    created = response.json()["data"]
    assert created["token"].startswith("lg_")
    assert created["scopes"] == ["read"]
    reader = {"X-API-Key": created["token"]}

    assert (await client.get("/api/v1/links", headers=reader)).status_code == 200
    assert (await client.post("/api/v1/links", json={"originalUrl": DESTINATION}, headers=reader)).status_code == 403
    assert (await client.post("/api/v1/tokens", json={"name": "x1", "scopes": ["read"]}, headers=reader)).status_code == 403

    response = await client.get("/api/v1/tokens", headers=auth_headers)
    listed = response.json()["data"]
    assert len(listed) == 2
    assert all("token" not in t for t in listed)

    response = await client.delete(f"/api/v1/tokens/{created['id']}", headers=auth_headers)
    assert response.status_code == 200
    assert (await client.get("/api/v1/links", headers=reader)).status_code == 401


@pytest.mark.asyncio
async def test_rate_limited(app, client: AsyncClient, auth_headers):
    app.state.redis = AsyncMock()
    app.state.redis.incr_window.return_value = 10_000

    response = await client.get("/api/v1/links", headers=auth_headers)
    assert response.status_code == 429
    assert response.json()["error"]["code"] == "rate_limit_exceeded"

    response = await client.get("/anything")
    assert response.status_code == 429
