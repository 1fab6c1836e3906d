"""
Notification delivery boundary.

The engine only *requests* notifications; the caller hands them to a
Notifier after the transition has committed. Delivery problems are logged
and dropped, never propagated, so a committed decision is never undone by
a failing mail server.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Tuple

from placement_engine.schemas.schemas import Notification, NotificationKind

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Delivers one notification to one user."""

    @abstractmethod
    def notify(self, user_id: str, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        ...


class LoggingNotifier(Notifier):
    """Writes notifications to the log. Default when nothing else is wired."""

    def notify(self, user_id: str, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        logger.info(f"Notify {user_id}: {kind.value} {payload}")


class CollectingNotifier(Notifier):
    """Keeps delivered notifications in memory (tests, batch export)."""

    def __init__(self):
        self.sent: List[Tuple[str, NotificationKind, Dict[str, Any]]] = []

    def notify(self, user_id: str, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        self.sent.append((user_id, kind, dict(payload)))


def dispatch_notifications(notifications: Iterable[Notification], notifier: Notifier) -> int:
    """
    Deliver notifications one by one.

    Returns:
        Number delivered successfully
    """
    delivered = 0
    for note in notifications:
        try:
            notifier.notify(note.user_id, note.kind, note.payload)
            delivered += 1
        except Exception as e:
            logger.error(f"Failed to deliver {note.kind.value} to {note.user_id}: {e}")
    return delivered


def get_notifier() -> Notifier:
    return LoggingNotifier()
