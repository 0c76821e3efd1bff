import secrets
import string
from datetime import datetime, timezone
from typing import Optional

from fastapi import Request
from ua_parser import parse

ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase

# Proxy headers in priority order
CLIENT_IP_HEADERS = (
    "CF-Connecting-IP",
    "True-Client-IP",
    "X-Forwarded-For",
    "X-Real-IP",
    "X-Client-IP",
)


def generate_short_code(length: int = 6) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def get_client_ip(request: Request) -> Optional[str]:
    for header in CLIENT_IP_HEADERS:
        value = request.headers.get(header)
        if value:
            ip = value.split(",")[0].strip()
            if ip:
                return ip
    return request.client.host if request.client else None


def anonymize_ip(ip: Optional[str]) -> Optional[str]:
    if not ip:
        return None
    if "." in ip and ":" not in ip:
        parts = ip.split(".")
        if len(parts) == 4:
            return f"{parts[0]}.{parts[1]}.{parts[2]}.0"
        return ip
    if ":" in ip:
        parts = ip.split(":")
        return ":".join(parts[:4]) + "::"
    return ip


def parse_user_agent(user_agent: Optional[str]) -> dict:
    if not user_agent:
        return {}

    result = parse(user_agent)
    browser = result.user_agent.family if result.user_agent else "Unknown"
    os_name = result.os.family if result.os else "Unknown"

    lowered = user_agent.lower()
    if "tablet" in lowered or "ipad" in lowered:
        device = "Tablet"
    elif "mobile" in lowered:
        device = "Mobile"
    else:
        device = "Desktop"

    return {"browser": browser, "os": os_name, "device": device}
