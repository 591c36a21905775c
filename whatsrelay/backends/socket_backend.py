"""Lightweight backend: socket-engine bridge session, text only."""

from __future__ import annotations

from typing import Optional

from instrukt_ai_logging import get_logger

from whatsrelay.backends.client_backend import ClientBackend
from whatsrelay.config import SocketBackendConfig, config
from whatsrelay.constants import LOGOUT_REASON, SOCKET_CHAT_SUFFIX, STATE_CONNECTED, STATE_DISCONNECTED
from whatsrelay.core.errors import AttachmentUnsupported, BackendInitializationFailed
from whatsrelay.core.models import BackendKind, ConnectionSnapshot, RestartAck, SendResult, SessionState
from whatsrelay.core.notification_channel import NotificationChannel
from whatsrelay.core.phone import PhoneNumberPolicy
from whatsrelay.core.task_registry import TaskRegistry
from whatsrelay.transport.bridge_client import BridgeSessionClient
from whatsrelay.transport.session_client import SessionClientFactory

logger = get_logger(__name__)


class SocketBackend(ClientBackend):
    """Secondary backend. Reconnects on unexpected disconnects, no attachments."""

    KIND = BackendKind.SECONDARY
    CHAT_SUFFIX = SOCKET_CHAT_SUFFIX
    PLATFORM = "socket"
    supports_attachments = False

    def __init__(
        self,
        channel: NotificationChannel,
        task_registry: TaskRegistry,
        phone_policy: PhoneNumberPolicy,
        settings: SocketBackendConfig | None = None,
        client_factory: SessionClientFactory | None = None,
    ) -> None:
        settings = settings or config.socket
        super().__init__(
            channel,
            task_registry,
            phone_policy,
            settings,
            client_factory
            or (lambda: BridgeSessionClient(settings, platform=self.PLATFORM, task_registry=self.tasks)),
        )

    async def initialize(self) -> None:
        logger.info("Initializing socket WhatsApp client...")
        self.state = SessionState.INITIALIZING
        try:
            client = self._build_client()
            await client.start()
        except Exception as exc:
            self._signal_failure(str(exc))
            raise BackendInitializationFailed(f"Socket backend failed to initialize: {exc}") from exc
        logger.info("Socket WhatsApp client initialized")

    async def _reinitialize(self) -> None:
        try:
            await self.initialize()
        except BackendInitializationFailed as exc:
            logger.error("Socket client reinitialization failed: %s", exc)

    def _on_disconnected(self, reason: str) -> None:
        should_reconnect = reason != LOGOUT_REASON
        logger.warning("Socket connection closed due to %s, reconnecting: %s", reason, should_reconnect)
        self._set_ready(False, reason=reason)
        if should_reconnect:
            self._call_later(self.settings.reconnect_delay_s, self._reconnect, name="reconnect")

    async def _reconnect(self) -> None:
        await self._reset_session()
        await self._reinitialize()

    async def _restart_session(self) -> None:
        await self._reset_session()
        await self.initialize()

    async def force_restart(self) -> RestartAck:
        logger.info("Force restarting socket WhatsApp client...")
        await self._reset_session()
        self._call_later(self.settings.restart_delay_s, self._reinitialize, name="restart")
        return RestartAck(message="Restart initiated")

    async def send_message_with_attachment(
        self,
        recipient: str,
        text: str,
        file_path: Optional[str] = None,
    ) -> SendResult:
        if file_path:
            raise AttachmentUnsupported("Socket backend cannot send attachments")
        message_id = await self.send_message(recipient, text)
        return SendResult(message_id=message_id, attachment_delivered=False)

    async def check_connection(self) -> ConnectionSnapshot:
        if self._client is None:
            return ConnectionSnapshot(connected=False, error="Client not initialized")
        return ConnectionSnapshot(
            connected=self._ready,
            state=STATE_CONNECTED if self._ready else STATE_DISCONNECTED,
        )
