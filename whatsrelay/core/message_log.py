"""In-memory log of relayed messages, newest first."""

from __future__ import annotations

from typing import Optional

from instrukt_ai_logging import get_logger

from whatsrelay.config import config
from whatsrelay.core.events import NotificationEvents, NotificationPayload
from whatsrelay.core.notification_channel import NotificationChannel
from whatsrelay.utils import now_iso

logger = get_logger(__name__)

MessageRecord = dict[str, object]  # guard: loose-dict - records are returned as JSON

STATUS_SENT = "sent"
STATUS_FAILED = "failed"
STATUS_PENDING = "pending"


class MessageLog:
    """Bounded message history.

    Keeps at most `limit` records; the oldest are dropped first. Not
    persisted: a restart starts with an empty log.
    """

    def __init__(self, limit: Optional[int] = None) -> None:
        self.limit = limit if limit is not None else config.messages.log_limit
        self._messages: list[MessageRecord] = []

    def __len__(self) -> int:
        return len(self._messages)

    def attach(self, channel: NotificationChannel) -> None:
        """Record every send reported on the channel."""
        channel.subscribe(NotificationEvents.MESSAGE_SENT, self._on_message_sent)

    def _on_message_sent(self, _event: str, payload: NotificationPayload) -> None:
        self.log_message(
            {
                "id": payload.get("id"),
                "phone_number": payload.get("to"),
                "status": payload.get("status") or STATUS_SENT,
                "backend": payload.get("backend"),
                "timestamp": payload.get("timestamp"),
            }
        )

    def log_message(self, message: MessageRecord) -> MessageRecord:
        """Add a record, or merge into the record already logged under the same id."""
        message_id = message.get("id")
        existing = self._find(str(message_id)) if message_id else None
        if existing is not None:
            existing.update({k: v for k, v in message.items() if v is not None})
            return existing

        record = dict(message)
        record["timestamp"] = record.get("timestamp") or now_iso()
        self._messages.insert(0, record)
        if len(self._messages) > self.limit:
            del self._messages[self.limit :]
        logger.info("Message logged: %s - %s", record.get("phone_number"), record.get("status"))
        return record

    def get_messages(self, limit: int = 50) -> list[MessageRecord]:
        return self._messages[: max(limit, 0)]

    def _find(self, message_id: str) -> Optional[MessageRecord]:
        for message in self._messages:
            if message.get("id") == message_id:
                return message
        return None

    def get_stats(self) -> dict[str, int]:
        statuses = [m.get("status") for m in self._messages]
        return {
            "total": len(statuses),
            "sent": statuses.count(STATUS_SENT),
            "failed": statuses.count(STATUS_FAILED),
            "pending": statuses.count(STATUS_PENDING),
        }
