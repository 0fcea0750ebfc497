"""Notifier boundary: delivers one engine event to a user.

The engine decides WHEN to notify (at most once per event, see MatchLedger);
notifiers only deliver. Every channel goes through its own guarded dependency.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import UUID

from backend.app.db.repositories import NotificationRepository, UserRepository
from backend.app.models.common import NotificationKind
from backend.app.notifications.email import EmailSender
from backend.app.resilience.guard import GuardedDependency

logger = logging.getLogger(__name__)


@dataclass
class NotificationPayload:
    """What to tell the user. Email fields are optional; without them only in-app is sent."""

    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)
    email_subject: str | None = None
    email_html: str | None = None


class Notifier(Protocol):
    """Protocol for notification delivery."""

    async def notify(
        self, user_id: UUID, kind: NotificationKind, payload: NotificationPayload
    ) -> None:
        """Deliver a notification.

        Raises:
            Exception: Delivery failed (caller decides whether to retry later)
        """
        ...


class InAppNotifier:
    """Writes a notification row for the user."""

    def __init__(self, notifications: NotificationRepository, store: GuardedDependency) -> None:
        self._notifications = notifications
        self._store = store

    async def notify(
        self, user_id: UUID, kind: NotificationKind, payload: NotificationPayload
    ) -> None:
        await self._store.call(
            lambda: self._notifications.add_notification(
                user_id, kind, payload.title, payload.body, payload.data
            ),
            operation="add_notification",
        )


class EmailNotifier:
    """Emails the user at their account address when the payload carries an email."""

    def __init__(
        self,
        users: UserRepository,
        sender: EmailSender,
        store: GuardedDependency,
        mail: GuardedDependency,
    ) -> None:
        self._users = users
        self._sender = sender
        self._store = store
        self._mail = mail

    async def notify(
        self, user_id: UUID, kind: NotificationKind, payload: NotificationPayload
    ) -> None:
        if payload.email_subject is None or payload.email_html is None:
            return

        user = await self._store.call(lambda: self._users.get_user(user_id), operation="get_user")
        if user is None:
            logger.warning(
                f"No user record for {user_id}, skipping email",
                extra={"structured": {"user_id": str(user_id), "kind": kind.value}},
            )
            return

        subject = payload.email_subject
        html_body = payload.email_html
        await self._mail.call(
            lambda: self._sender.send(user.email, subject, html_body), operation="send_email"
        )


class CompositeNotifier:
    """Fans one event out to several channels.

    The event counts as delivered if at least one channel succeeds; channel
    failures are logged. If every channel fails, the last error is raised.
    """

    def __init__(self, channels: list[Notifier]) -> None:
        if not channels:
            raise ValueError("CompositeNotifier needs at least one channel")
        self._channels = channels

    async def notify(
        self, user_id: UUID, kind: NotificationKind, payload: NotificationPayload
    ) -> None:
        last_error: Exception | None = None
        delivered = 0

        for channel in self._channels:
            try:
                await channel.notify(user_id, kind, payload)
                delivered += 1
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Notification channel {type(channel).__name__} failed: {e}",
                    extra={
                        "structured": {
                            "user_id": str(user_id),
                            "kind": kind.value,
                            "channel": type(channel).__name__,
                            "error": type(e).__name__,
                        }
                    },
                )

        if delivered == 0 and last_error is not None:
            raise last_error
