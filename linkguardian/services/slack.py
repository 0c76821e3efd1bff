import logging
from typing import Any

import httpx

from ..models import Notification

logger = logging.getLogger(__name__)


def build_slack_message(notification: Notification) -> dict[str, Any]:
    message: dict[str, Any] = {
        "text": notification.title,
        "blocks": [
            {"type": "header", "text": {"type": "plain_text", "text": notification.title}},
            {"type": "section", "text": {"type": "mrkdwn", "text": notification.message}},
            {
                "type": "context",
                "elements": [
                    {"type": "mrkdwn", "text": f"*Time:* {notification.created_at.strftime('%Y-%m-%d %H:%M:%S UTC')}"}
                ],
            },
        ],
    }

    data = notification.data or {}
    if data.get("linkId"):
        message["blocks"].append(
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": f"*Link:* {data.get('shortCode') or 'N/A'}\n*URL:* {data.get('originalUrl') or 'N/A'}",
                },
            }
        )
    return message


class SlackWebhookProvider:
    def __init__(self, webhook_url: str, http_client: httpx.AsyncClient):
        self._webhook_url = webhook_url
        self._http = http_client

    async def send(self, notification: Notification) -> bool:
        if not self._webhook_url:
            return False

        response = await self._http.post(self._webhook_url, json=build_slack_message(notification))
        if response.status_code in (200, 204):
            logger.info("Slack notification sent")
            return True

        logger.warning(f"Slack webhook rejected notification: HTTP {response.status_code} {response.text[:200]}")
        return False
