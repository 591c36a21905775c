"""Base backend interface for the WhatsApp session."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, ClassVar, Mapping, Optional

from instrukt_ai_logging import get_logger

from whatsrelay.core.errors import BackendTeardownFailed
from whatsrelay.core.events import (
    InitFailedPayload,
    MessageSentPayload,
    NotificationEvents,
    NotificationPayload,
    NotificationType,
    QrPayload,
    StatusPayload,
)
from whatsrelay.core.models import BackendKind, ClientInfo, ConnectionSnapshot, RestartAck, SendResult, SessionState
from whatsrelay.core.notification_channel import NotificationChannel
from whatsrelay.core.phone import PhoneNumberPolicy
from whatsrelay.core.task_registry import TaskRegistry
from whatsrelay.utils import now_iso

logger = get_logger(__name__)

FailureListener = Callable[["BaseBackend", str], None]


class BaseBackend(ABC):
    """Abstract base class for every backend variant.

    A backend owns its connection handle, its ready flag, its pairing payload
    and its SessionState. The orchestrator only ever reads these through the
    methods below, never caches them.

    Deferred work (retries, reconnects, settle delays) goes through
    `_call_later`, which binds the callback to this instance and its current
    generation: once the instance is shut down or the session is reset the
    callback silently does nothing.
    """

    KIND: ClassVar[BackendKind]
    supports_attachments: ClassVar[bool] = False

    def __init__(
        self,
        channel: NotificationChannel,
        task_registry: TaskRegistry,
        phone_policy: PhoneNumberPolicy,
    ) -> None:
        self.channel = channel
        self.tasks = task_registry
        self.phone_policy = phone_policy
        self.state = SessionState.UNINITIALIZED
        self._ready = False
        self._pairing_payload: str | None = None
        self._pairing_waiter: asyncio.Event | None = None
        self._failure_listeners: list[FailureListener] = []
        self._closed = False
        self._generation = 0

    # ==================== Lifecycle ====================

    @abstractmethod
    async def initialize(self) -> None:
        """Begin establishing the session.

        Returns once setup has been issued; readiness is reported later through
        notifications. Unrecoverable setup errors signal failure to listeners
        and raise BackendInitializationFailed.
        """

    @abstractmethod
    async def force_restart(self) -> RestartAck:
        """Tear the connection down and schedule reinitialization."""

    async def shutdown(self) -> None:
        """Release the connection for good; used when the backend is superseded.

        Raises:
            BackendTeardownFailed: closing the connection failed. Callers log it.
        """
        self._closed = True
        self._generation += 1
        self._ready = False
        self._pairing_payload = None
        self._wake_pairing_waiter()
        try:
            await self._teardown()
        except Exception as exc:
            raise BackendTeardownFailed(f"{self.KIND.value} teardown failed: {exc}") from exc

    async def _teardown(self) -> None:
        """Close the underlying connection. Nothing to close by default."""

    @property
    def closed(self) -> bool:
        return self._closed

    # ==================== Messaging ====================

    @abstractmethod
    async def send_message(self, recipient: str, text: str) -> str:
        """Send a text message.

        Returns:
            Backend-assigned message id
        """

    @abstractmethod
    async def send_message_with_attachment(
        self,
        recipient: str,
        text: str,
        file_path: Optional[str] = None,
    ) -> SendResult:
        """Send text with an optional file; a missing file degrades to text only."""

    @abstractmethod
    async def generate_qr(self) -> str:
        """Force a fresh pairing challenge and return its payload."""

    # ==================== Status ====================

    def is_ready(self) -> bool:
        return self._ready

    def get_qr_code(self) -> Optional[str]:
        return self._pairing_payload

    def handle_webhook(self, payload: dict[str, object]) -> bool:  # guard: loose-dict - bridge webhook body.
        """Feed an inbound bridge webhook to the connection. Returns False if not accepted."""
        return False

    @abstractmethod
    async def check_connection(self) -> ConnectionSnapshot:
        """Connection snapshot. Never raises."""

    @abstractmethod
    async def get_client_info(self) -> ClientInfo:
        """Account identity when ready, a not-ready result otherwise. Never raises."""

    # ==================== Failure listeners ====================

    def add_failure_listener(self, listener: FailureListener) -> None:
        self._failure_listeners.append(listener)

    def remove_failure_listener(self, listener: FailureListener) -> None:
        if listener in self._failure_listeners:
            self._failure_listeners.remove(listener)

    def _signal_failure(self, error: str) -> None:
        """Report an unrecoverable setup failure to listeners and observers."""
        if self._closed:
            return
        self.state = SessionState.FAILED
        self._ready = False
        logger.error("%s backend initialization failed: %s", self.KIND.value, error)
        self._publish(
            NotificationEvents.INIT_FAILED,
            InitFailedPayload(backend=self.KIND.value, error=error, timestamp=now_iso()),
        )
        for listener in list(self._failure_listeners):
            try:
                listener(self, error)
            except Exception:  # noqa: BLE001 - a broken listener must not hide the failure from others
                logger.error("Failure listener raised for %s backend", self.KIND.value, exc_info=True)

    # ==================== Helpers ====================

    def _publish(self, event: NotificationType, payload: Mapping[str, object] | None = None, **fields: object) -> None:
        """Publish unless closed. Payloads are stamped with this backend and the current time."""
        if self._closed:
            return
        data: NotificationPayload = {"backend": self.KIND.value, "timestamp": now_iso()}
        data.update(payload or {})
        data.update(fields)
        self.channel.publish(event, data)

    def _message_sent(self, message_id: str, recipient: str) -> None:
        self._publish(
            NotificationEvents.MESSAGE_SENT,
            MessageSentPayload(id=message_id, to=recipient, backend=self.KIND.value, status="sent", timestamp=now_iso()),
        )

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    def _call_later(
        self,
        delay: float,
        callback: Callable[[], Awaitable[object] | object],
        name: str,
    ) -> None:
        generation = self._generation

        def _guarded() -> Awaitable[object] | object:
            if not self._is_current(generation):
                logger.debug("Skipping stale %s callback for %s backend", name, self.KIND.value)
                return None
            return callback()

        self.tasks.call_later(delay, _guarded, name=f"{self.KIND.value}-{name}")

    def _set_ready(
        self,
        ready: bool,
        reason: Optional[str] = None,
        *,
        limited: bool = False,
        message: Optional[str] = None,
    ) -> None:
        self._ready = ready
        if ready:
            self.state = SessionState.READY
            self._pairing_payload = None
            self._wake_pairing_waiter()
        else:
            self.state = SessionState.DISCONNECTED
        payload = StatusPayload(is_ready=ready, backend=self.KIND.value, timestamp=now_iso(), reason=reason)
        if limited:
            payload["limited"] = True
        if message:
            payload["message"] = message
        self._publish(NotificationEvents.STATUS_CHANGED, payload)

    def _set_pairing(self, qr: str) -> None:
        self.state = SessionState.PAIRING_PENDING
        self._pairing_payload = qr
        self._publish(NotificationEvents.QR_CODE, QrPayload(qr=qr, backend=self.KIND.value, timestamp=now_iso()))
        self._wake_pairing_waiter()

    def _wake_pairing_waiter(self) -> None:
        if self._pairing_waiter is not None:
            self._pairing_waiter.set()
