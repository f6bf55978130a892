"""
Notification Dispatcher - best-effort user alerts.

Notifications are written outside the ledger transaction; a failed alert never
undoes a committed balance change.
"""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from app.db.models import Notification
from app.models.domain import NotificationMessage

logger = get_logger(__name__)


class NotificationDispatcher(Protocol):
    """Anything that can deliver a user-facing alert."""

    async def notify(self, message: NotificationMessage) -> None:
        """Deliver one notification. May raise; callers treat failures as non-fatal."""
        ...


class DatabaseNotificationDispatcher:
    """Writes notifications rows using its own session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def notify(self, message: NotificationMessage) -> None:
        async with self.session_factory() as session:
            session.add(
                Notification(
                    user_id=message.user_id,
                    type=message.type,
                    title=message.title,
                    message=message.message,
                    link=message.link,
                )
            )
            await session.commit()

        logger.info("notification_created", user_id=str(message.user_id), type=message.type)


class LoggingNotificationDispatcher:
    """Logs notifications instead of storing them (notifications disabled)."""

    async def notify(self, message: NotificationMessage) -> None:
        logger.info(
            "notification_skipped",
            user_id=str(message.user_id),
            type=message.type,
            title=message.title,
        )


async def dispatch_safely(
    notifier: NotificationDispatcher | None, message: NotificationMessage
) -> None:
    """Send a notification, logging and swallowing any delivery failure."""
    if notifier is None:
        return
    try:
        await notifier.notify(message)
    except Exception as e:
        logger.warning(
            "notification_failed",
            user_id=str(message.user_id),
            type=message.type,
            error=str(e),
        )
