"""Ephemeral user-facing status messages.

Entries expire after a fixed delay, are kept in insertion order and are never
persisted. Subscribers (the SSE route) get each new entry on an asyncio queue.
"""

import asyncio
import logging
import time
from typing import Callable, Literal, Optional

from pydantic import BaseModel, Field

from .conversation.models import new_id

logger = logging.getLogger(__name__)

Severity = Literal["info", "success", "warning", "error"]

DEFAULT_TTL_SECONDS = 5.0


class Notification(BaseModel):
    id: str = Field(default_factory=new_id)
    message: str
    severity: Severity = "info"
    created_at: float
    expires_at: float


class NotificationSink:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: list[Notification] = []
        self._subscribers: list[asyncio.Queue] = []

    def notify(self, message: str, severity: Severity = "info") -> Notification:
        now = self._clock()
        entry = Notification(
            message=message,
            severity=severity,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        self._prune(now)
        self._entries.append(entry)
        if severity == "error":
            logger.warning("Notification: %s", message)
        else:
            logger.info("Notification: %s", message)
        for queue in list(self._subscribers):
            queue.put_nowait(entry)
        return entry

    def _prune(self, now: float) -> None:
        self._entries = [e for e in self._entries if e.expires_at > now]

    def active(self) -> list[Notification]:
        self._prune(self._clock())
        return list(self._entries)

    def dismiss(self, notification_id: str) -> bool:
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.id != notification_id]
        return len(self._entries) < before

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        try:
            self._subscribers.remove(queue)
        except ValueError:
            pass


_sink: Optional[NotificationSink] = None


def get_sink() -> NotificationSink:
    global _sink
    if _sink is None:
        from .config import get_config

        _sink = NotificationSink(ttl_seconds=get_config().notification_ttl_seconds)
    return _sink


def reset_sink() -> None:
    global _sink
    _sink = None
