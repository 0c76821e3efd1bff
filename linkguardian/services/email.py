import logging
from pathlib import Path
from typing import Optional

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from ..models import Notification, NotificationType, User

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "emails"

TYPE_CLASSES = {
    NotificationType.LINK_HEALTH_ISSUE.value: "error",
    NotificationType.HIGH_TRAFFIC.value: "warning",
    NotificationType.LINK_EXPIRED.value: "warning",
    NotificationType.PLAN_LIMIT_REACHED.value: "warning",
    NotificationType.SUBSCRIPTION_UPDATED.value: "info",
    NotificationType.TEAM_MEMBER_ADDED.value: "success",
}


class ResendEmailProvider:
    """Sends notification emails through the Resend HTTP API."""

    def __init__(
        self,
        api_key: str,
        http_client: httpx.AsyncClient,
        from_email: str,
        app_name: str,
        app_url: str,
        template_dir: Path = TEMPLATE_DIR,
    ):
        self._api_key = api_key
        self._http = http_client
        self._from_email = from_email
        self._app_name = app_name
        self._app_url = app_url
        self._jinja = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )

    def render(self, user: User, notification: Notification) -> str:
        template = self._jinja.get_template("notification.html")
        return template.render(
            app_name=self._app_name,
            app_url=self._app_url,
            user=user,
            notification=notification,
            type_label=notification.type.replace("_", " "),
            type_class=TYPE_CLASSES.get(notification.type, "info"),
            data=notification.data or {},
        )

    async def send(self, user: User, notification: Notification) -> bool:
        if not self._api_key or not user.email:
            return False

        payload = {
            "from": self._from_email,
            "to": [user.email],
            "subject": f"{self._app_name} - {notification.title}",
            "html": self.render(user, notification),
        }
        response = await self._http.post(
            RESEND_API_URL,
            json=payload,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        if response.status_code in (200, 201, 202):
            logger.info(f"Email notification sent to {user.email}")
            return True

        logger.error(f"Email notification to {user.email} rejected: HTTP {response.status_code} {response.text[:200]}")
        return False


def build_email_provider(settings, http_client: httpx.AsyncClient) -> Optional[ResendEmailProvider]:
    if not settings.RESEND_API_KEY:
        return None
    return ResendEmailProvider(
        api_key=settings.RESEND_API_KEY,
        http_client=http_client,
        from_email=settings.SUPPORT_EMAIL,
        app_name=settings.APP_NAME,
        app_url=settings.APP_URL,
    )
