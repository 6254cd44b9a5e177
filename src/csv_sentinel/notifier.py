"""Publish/subscribe notifier for component lifecycle notifications.

Components publish a ``Notification`` on a dotted topic (``backup.completed``,
``monitor.error``, ...). Subscribers register for an exact topic, a prefix
(``backup.*``) or everything (``*``) and are called in subscription order. A
failing subscriber is logged and skipped; it never affects the publisher or
the remaining subscribers.

Handlers may be plain callables or coroutine functions.

Example:
--------
>>> notifier = Notifier()
>>> notifier.subscribe("backup.*", lambda n: print(n.topic, n.payload))
>>> await notifier.publish("backup.completed", backup_id="bookstores_1700000000000_ab12cd34")
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
import inspect
import logging
from typing import Any, Awaitable, Callable, Union

from .utils import utc_now

__all__ = ["Notification", "Notifier", "NotificationHandler"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    """One published notification."""

    topic: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)


NotificationHandler = Callable[[Notification], Union[None, Awaitable[None]]]


def _matches(pattern: str, topic: str) -> bool:
    if pattern == "*":
        return True
    if pattern.endswith(".*"):
        return topic.startswith(pattern[:-1])
    return pattern == topic


class Notifier:
    """Ordered publish/subscribe channel with per-subscriber failure isolation."""

    def __init__(self, history_size: int = 1000):
        self._subscribers: list[tuple[str, NotificationHandler]] = []
        self._history: deque[str] = deque(maxlen=history_size)

    def subscribe(self, pattern: str, handler: NotificationHandler) -> Callable[[], None]:
        """Register a handler for a topic pattern.

        Args:
            pattern: Exact topic, ``prefix.*`` or ``*``
            handler: Callable or coroutine function receiving the Notification

        Returns:
            Function that removes this subscription
        """
        entry = (pattern, handler)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    async def publish(self, topic: str, **payload: Any) -> Notification:
        """Deliver a notification to every matching subscriber in order."""
        notification = Notification(topic=topic, payload=payload)
        self._history.append(topic)

        for pattern, handler in list(self._subscribers):
            if not _matches(pattern, topic):
                continue
            try:
                result = handler(notification)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Subscriber for '{pattern}' failed on '{topic}': {e}")

        logger.debug(f"Published {topic}")
        return notification

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def topic_history(self) -> list[str]:
        """Most recently published topics, oldest first."""
        return list(self._history)
