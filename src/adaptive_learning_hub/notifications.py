"""Single-slot transient notifications consumed by the UI shell."""

import time
from collections.abc import Callable
from typing import Literal

import structlog
from pydantic import BaseModel

logger = structlog.get_logger()

NotificationType = Literal["success", "error", "info"]


class Notification(BaseModel):
    message: str
    type: NotificationType = "info"
    expires_at: float


NotificationListener = Callable[[Notification], None]


class NotificationService:
    """Holds at most one notification; a new one replaces the current one.

    Args:
        ttl_seconds: Lifetime of a notification before it expires.
        clock: Monotonic clock, replaceable in tests.
    """

    def __init__(self, ttl_seconds: float = 4.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._current: Notification | None = None
        self._listeners: list[NotificationListener] = []

    @property
    def current(self) -> Notification | None:
        """The active notification, or None once it has expired."""
        if self._current is not None and self._clock() >= self._current.expires_at:
            self._current = None
        return self._current

    def show(self, message: str, type: NotificationType = "info") -> Notification:
        notification = Notification(
            message=message,
            type=type,
            expires_at=self._clock() + self.ttl_seconds,
        )
        self._current = notification
        logger.info("notification_shown", type=type, message=message)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("notification_listener_error")
        return notification

    def clear(self) -> None:
        self._current = None

    def subscribe(self, listener: NotificationListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: NotificationListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
