from typing import Protocol
from uuid import UUID

import structlog


logger = structlog.get_logger(__name__)


class Notifier(Protocol):
    def send(self, user_id: UUID, subject: str, body: str) -> None: ...


class LogNotifier:
    """Default sender: writes the notification to the log."""

    def send(self, user_id: UUID, subject: str, body: str) -> None:
        logger.info("notification", user_id=str(user_id), subject=subject, body=body)


def notify(notifier: Notifier, user_id: UUID, subject: str, body: str) -> None:
    """Fire-and-forget; a failing sender never breaks the calling operation."""
    try:
        notifier.send(user_id, subject, body)
    except Exception:
        logger.exception("notification_failed", user_id=str(user_id), subject=subject)
