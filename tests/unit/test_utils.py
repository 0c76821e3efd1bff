from datetime import datetime, timezone

import pytest
from starlette.requests import Request

from linkguardian.observability import metric_path
from linkguardian.security import TOKEN_PREFIX, generate_api_token, hash_password, hash_token, verify_password
from linkguardian.utils import ALPHABET, anonymize_ip, as_utc, generate_short_code, get_client_ip, parse_user_agent


def make_request(headers: dict, client=("10.0.0.5", 5555)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": client,
    }
    return Request(scope)


class TestShortCode:
    def test_length_and_alphabet(self):
        code = generate_short_code()
        assert len(code) == 6
        assert set(code) <= set(ALPHABET)

    def test_custom_length(self):
        assert len(generate_short_code(10)) == 10


class TestClientIp:
    def test_forwarded_for_takes_first_hop(self):
        request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        assert get_client_ip(request) == "203.0.113.7"

    def test_cloudflare_header_wins(self):
        request = make_request({"CF-Connecting-IP": "198.51.100.2", "X-Forwarded-For": "203.0.113.7"})
        assert get_client_ip(request) == "198.51.100.2"

    def test_falls_back_to_peer(self):
        assert get_client_ip(make_request({})) == "10.0.0.5"

    def test_no_peer(self):
        assert get_client_ip(make_request({}, client=None)) is None


class TestAnonymizeIp:
    @pytest.mark.parametrize(
        "ip, expected",
        [
            ("203.0.113.77", "203.0.113.0"),
            ("2001:db8:85a3:8d3:1319:8a2e:370:7348", "2001:db8:85a3:8d3::"),
            (None, None),
            ("", None),
        ],
    )
    def test_anonymize(self, ip, expected):
        assert anonymize_ip(ip) == expected


class TestUserAgent:
    def test_desktop_chrome(self):
        ua = (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        )
        assert parse_user_agent(ua) == {"browser": "Chrome", "os": "Windows", "device": "Desktop"}

    def test_mobile_safari(self):
        ua = (
            "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
            "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
        )
        parsed = parse_user_agent(ua)
        assert parsed["device"] == "Mobile"
        assert parsed["os"] == "iOS"

    def test_empty(self):
        assert parse_user_agent("") == {}


def test_as_utc():
    naive = datetime(2026, 1, 1, 12, 0)
    assert as_utc(naive).tzinfo == timezone.utc
    aware = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert as_utc(aware) is aware
    assert as_utc(None) is None


class TestSecurity:
    def test_password_roundtrip(self):
        hashed = hash_password("abc")
        assert hashed != "abc"
        assert verify_password("abc", hashed)
        assert not verify_password("abd", hashed)

    def test_malformed_hash(self):
        assert verify_password("abc", "not-a-hash") is False

    def test_api_token(self):
        token = generate_api_token()
        assert token.startswith(TOKEN_PREFIX)
        assert hash_token(token) == hash_token(token)
        assert len(hash_token(token)) == 64
        assert hash_token(token) != hash_token(generate_api_token())


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/abc123", "/{code}"),
        ("/abc123/preview", "/{code}/preview"),
        ("/api/v1/links", "/api/v1/links"),
        ("/api/v1/links/bulk", "/api/v1/links/bulk"),
        ("/api/v1/links/5f0c/health", "/api/v1/links/{id}/health"),
        ("/api/v1/tokens/5f0c", "/api/v1/tokens/{id}"),
        ("/health/ready", "/health/ready"),
        ("/metrics", "/metrics"),
    ],
)
def test_metric_path(path, expected):
    assert metric_path(path) == expected
