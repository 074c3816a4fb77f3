"""
Transient user notifications.

Intents report their outcome here instead of raising; the CLI prints
whatever is pending after each command.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Deque, List, Optional

from config import settings
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class Notification:
    """A single transient message."""
    level: str                         # 'info', 'success' or 'error'
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Notifier:
    """Keeps the most recent notifications and forwards them to listeners."""

    def __init__(self, history: Optional[int] = None):
        self._messages: Deque[Notification] = deque(maxlen=history or settings.NOTIFICATION_HISTORY)
        self._listeners: List[Callable[[Notification], None]] = []

    def subscribe(self, listener: Callable[[Notification], None]) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def info(self, message: str) -> Notification:
        return self._emit("info", message)

    def success(self, message: str) -> Notification:
        return self._emit("success", message)

    def error(self, message: str) -> Notification:
        return self._emit("error", message)

    def drain(self) -> List[Notification]:
        """Return and forget every pending notification."""
        pending = list(self._messages)
        self._messages.clear()
        return pending

    @property
    def messages(self) -> List[Notification]:
        return list(self._messages)

    def _emit(self, level: str, message: str) -> Notification:
        notification = Notification(level=level, message=message)
        self._messages.append(notification)

        if level == "error":
            logger.warning(f"Notification: {message}")
        else:
            logger.info(f"Notification: {message}")

        for listener in list(self._listeners):
            listener(notification)
        return notification
