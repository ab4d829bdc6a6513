from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List

from ....logging_config import logger


LEVELS = ("info", "success", "warning", "error")
DEFAULT_TITLE = "Synopsis"


@dataclass(frozen=True)
class Notification:
    level: str
    message: str
    title: str = DEFAULT_TITLE
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "title": self.title,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }


class NotificationFeed:
    """Bounded per-conversation feed of user-facing synopsis messages."""

    def __init__(self, maxlen: int = 50) -> None:
        self._maxlen = maxlen
        self._lock = threading.Lock()
        self._feeds: Dict[str, Deque[Notification]] = {}

    def notify(self, conversation_id: str, level: str, message: str, title: str = DEFAULT_TITLE) -> Notification:
        notification = Notification(level=level if level in LEVELS else "info", message=message, title=title)
        with self._lock:
            feed = self._feeds.setdefault(conversation_id, deque(maxlen=self._maxlen))
            feed.append(notification)
        logger.info(
            "synopsis notification",
            extra={"conversation_id": conversation_id, "level": notification.level, "text": message},
        )
        return notification

    def recent(self, conversation_id: str, limit: int = 20) -> List[Notification]:
        with self._lock:
            feed = list(self._feeds.get(conversation_id, ()))
        return feed[-limit:] if limit > 0 else feed

    def clear(self, conversation_id: str) -> None:
        with self._lock:
            self._feeds.pop(conversation_id, None)


__all__ = ["LEVELS", "Notification", "NotificationFeed"]
