"""Notification names and payload shapes.

Notifications are written by backends and the orchestrator to the
notification channel and consumed by external observers (WebSocket clients,
the message log). Core behavior never depends on them being delivered.
"""

from typing import Literal

from typing_extensions import NotRequired, TypedDict

NotificationType = Literal[
    "status_changed",
    "qr_code",
    "authenticated",
    "auth_failure",
    "backend_switched",
    "init_failed",
    "degraded_mode",
    "message_sent",
    "message_received",
]


class NotificationEvents:
    """Standard whatsrelay notifications."""

    # Session lifecycle
    STATUS_CHANGED: Literal["status_changed"] = "status_changed"
    QR_CODE: Literal["qr_code"] = "qr_code"
    AUTHENTICATED: Literal["authenticated"] = "authenticated"
    AUTH_FAILURE: Literal["auth_failure"] = "auth_failure"

    # Failover
    BACKEND_SWITCHED: Literal["backend_switched"] = "backend_switched"
    INIT_FAILED: Literal["init_failed"] = "init_failed"
    DEGRADED_MODE: Literal["degraded_mode"] = "degraded_mode"

    # Traffic
    MESSAGE_SENT: Literal["message_sent"] = "message_sent"
    MESSAGE_RECEIVED: Literal["message_received"] = "message_received"


class StatusPayload(TypedDict):
    is_ready: bool
    backend: str
    timestamp: str
    reason: NotRequired[str | None]
    limited: NotRequired[bool]
    message: NotRequired[str]


class QrPayload(TypedDict):
    qr: str
    backend: str
    timestamp: str


class BackendSwitchedPayload(TypedDict):
    from_kind: str
    to_kind: str
    reason: str
    timestamp: str


class DegradedModePayload(TypedDict):
    message: str
    attempt_count: int
    timestamp: str


class InitFailedPayload(TypedDict):
    backend: str
    error: str
    timestamp: str


class MessageSentPayload(TypedDict):
    id: str
    to: str
    backend: str
    status: str
    timestamp: str


NotificationPayload = dict[str, object]  # guard: loose-dict - observers receive JSON-shaped payloads.
