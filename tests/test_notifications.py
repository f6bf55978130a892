"""
Tests for notification dispatchers.
"""

from uuid import uuid4

from sqlalchemy import select

from app.db.models import Notification
from app.models.domain import NotificationMessage
from app.services.notifications import (
    DatabaseNotificationDispatcher,
    LoggingNotificationDispatcher,
    dispatch_safely,
)
from conftest import FakeNotifier


def message(user_id=None) -> NotificationMessage:
    return NotificationMessage(
        user_id=user_id or uuid4(),
        type="system",
        title="Payment Successful",
        message="5000 credits were added to your account.",
        link="/profile/credits",
    )


class TestDatabaseNotificationDispatcher:
    """Tests for the notifications table writer."""

    async def test_writes_row(self, session_factory, user):
        await DatabaseNotificationDispatcher(session_factory).notify(message(user.id))

        async with session_factory() as session:
            rows = (await session.execute(select(Notification))).scalars().all()

        assert len(rows) == 1
        assert rows[0].user_id == user.id
        assert rows[0].title == "Payment Successful"
        assert rows[0].link == "/profile/credits"
        assert not rows[0].is_read


class TestDispatchSafely:
    """Tests for best-effort delivery."""

    async def test_delivers(self):
        notifier = FakeNotifier()

        await dispatch_safely(notifier, message())

        assert notifier.titles() == ["Payment Successful"]

    async def test_failure_is_swallowed(self):
        await dispatch_safely(FakeNotifier(fail=True), message())

    async def test_no_notifier(self):
        await dispatch_safely(None, message())

    async def test_logging_dispatcher(self):
        await dispatch_safely(LoggingNotificationDispatcher(), message())
