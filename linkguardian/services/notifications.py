"""
Notification fan-out.

Every notification is persisted first, then offered to the email and chat
channels. A failing channel is logged and never stops the other one or the
final mark-sent.
"""

import asyncio
import logging
import uuid
from typing import Callable, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..crud import create_notification, get_user, mark_notification_sent
from ..models import Notification, User, utcnow
from ..observability import NOTIFICATIONS_TOTAL
from .email import ResendEmailProvider
from .slack import SlackWebhookProvider

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        email: Optional[ResendEmailProvider] = None,
        chat: Optional[SlackWebhookProvider] = None,
        clock: Callable = utcnow,
    ):
        self.session_factory = session_factory
        self.email = email
        self.chat = chat
        self.clock = clock

    async def notify(
        self,
        user_id: uuid.UUID,
        type: str,
        title: str,
        message: str,
        payload: Optional[dict] = None,
    ) -> Optional[Notification]:
        async with self.session_factory() as db:
            notification = await create_notification(
                db,
                Notification(
                    user_id=user_id,
                    type=type,
                    title=title,
                    message=message,
                    data=payload,
                    created_at=self.clock(),
                ),
            )

            user = await get_user(db, user_id)
            if user is None:
                logger.warning(f"Notification {notification.id} has no recipient; user {user_id} not found")
                return notification

            await self._send_email(user, notification)
            await self._send_chat(notification)

            sent_at = self.clock()
            await mark_notification_sent(db, notification.id, sent_at)
            notification.sent_at = sent_at
            return notification

    async def notify_many(
        self,
        user_ids: Iterable[uuid.UUID],
        type: str,
        title: str,
        message: str,
        payload: Optional[dict] = None,
    ) -> list[Notification]:
        user_ids = list(user_ids)
        results = await asyncio.gather(
            *(self.notify(user_id, type, title, message, payload) for user_id in user_ids),
            return_exceptions=True,
        )

        sent = []
        for user_id, result in zip(user_ids, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to send notification to user {user_id}: {result}")
            elif result is not None:
                sent.append(result)
        return sent

    async def _send_email(self, user: User, notification: Notification):
        if self.email is None:
            return
        try:
            ok = await self.email.send(user, notification)
            NOTIFICATIONS_TOTAL.labels(channel="email", outcome="sent" if ok else "skipped").inc()
        except Exception as e:
            NOTIFICATIONS_TOTAL.labels(channel="email", outcome="failed").inc()
            logger.error(f"Failed to send email notification {notification.id}: {e}")

    async def _send_chat(self, notification: Notification):
        if self.chat is None:
            return
        try:
            ok = await self.chat.send(notification)
            NOTIFICATIONS_TOTAL.labels(channel="slack", outcome="sent" if ok else "skipped").inc()
        except Exception as e:
            NOTIFICATIONS_TOTAL.labels(channel="slack", outcome="failed").inc()
            logger.error(f"Failed to send Slack notification {notification.id}: {e}")
