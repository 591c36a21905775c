"""In-process broadcast channel for session notifications."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Mapping

from instrukt_ai_logging import get_logger

from whatsrelay.core.events import NotificationPayload, NotificationType
from whatsrelay.core.task_registry import TaskRegistry

logger = get_logger(__name__)

NotificationHandler = Callable[[NotificationType, NotificationPayload], Awaitable[object] | object]


class NotificationChannel:
    """Write-only sink for core components, broadcast to observers.

    publish() never blocks and never raises: sync handlers run inline, async
    handlers run as tracked background tasks, and handler errors are logged.
    """

    def __init__(self, task_registry: TaskRegistry | None = None) -> None:
        self._handlers: dict[NotificationType, list[NotificationHandler]] = {}
        self._wildcard: list[NotificationHandler] = []
        self._tasks = task_registry or TaskRegistry()

    def subscribe(self, event: NotificationType, handler: NotificationHandler) -> None:
        """Subscribe a handler to one notification type."""
        self._handlers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: NotificationHandler) -> None:
        """Subscribe a handler to every notification."""
        self._wildcard.append(handler)

    def unsubscribe(self, handler: NotificationHandler) -> None:
        if handler in self._wildcard:
            self._wildcard.remove(handler)
        for handlers in self._handlers.values():
            if handler in handlers:
                handlers.remove(handler)

    def clear(self) -> None:
        """Clear all registered handlers (primarily for tests)."""
        self._handlers.clear()
        self._wildcard.clear()

    def publish(self, event: NotificationType, payload: Mapping[str, object]) -> None:
        """Broadcast a notification to all subscribers."""
        data: NotificationPayload = dict(payload)
        handlers = [*self._handlers.get(event, []), *self._wildcard]
        if not handlers:
            logger.debug("No observers for notification: %s", event)
            return

        for handler in handlers:
            try:
                result = handler(event, data)
            except Exception as exc:  # noqa: BLE001 - observer failures must not reach publishers
                logger.error("Notification handler failed for %s: %s", event, exc, exc_info=True)
                continue
            if asyncio.iscoroutine(result):
                self._tasks.spawn(self._await_handler(event, result), name=f"notify-{event}")

    @staticmethod
    async def _await_handler(event: NotificationType, pending: Awaitable[object]) -> None:
        try:
            await pending
        except Exception as exc:  # noqa: BLE001 - observer failures must not reach publishers
            logger.error("Notification handler failed for %s: %s", event, exc, exc_info=True)
