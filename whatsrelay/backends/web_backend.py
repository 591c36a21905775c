"""Full-featured backend: browser-engine bridge session with retry and recreate."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

from instrukt_ai_logging import get_logger

from whatsrelay.backends.client_backend import ClientBackend
from whatsrelay.config import WebBackendConfig, config
from whatsrelay.constants import LOGOUT_REASON, NAVIGATION_REASON, STATE_CONNECTED, WEB_CHAT_SUFFIX
from whatsrelay.core.errors import BackendInitializationFailed, SendFailed
from whatsrelay.core.models import BackendKind, ConnectionSnapshot, RestartAck, SendResult, SessionState
from whatsrelay.core.notification_channel import NotificationChannel
from whatsrelay.core.phone import PhoneNumberPolicy
from whatsrelay.core.task_registry import TaskRegistry
from whatsrelay.transport.bridge_client import BridgeSessionClient
from whatsrelay.transport.session_client import SessionClient, SessionClientFactory

logger = get_logger(__name__)


class WebBackend(ClientBackend):
    """Primary backend.

    Supports attachments. Client start is retried with a fresh client between
    attempts; authentication failures and unexpected disconnects schedule
    their own retry rounds. Retry exhaustion is reported as an
    initialization failure.
    """

    KIND = BackendKind.PRIMARY
    CHAT_SUFFIX = WEB_CHAT_SUFFIX
    PLATFORM = "web"
    supports_attachments = True

    _TERMINAL_REASONS = frozenset({LOGOUT_REASON, NAVIGATION_REASON})

    def __init__(
        self,
        channel: NotificationChannel,
        task_registry: TaskRegistry,
        phone_policy: PhoneNumberPolicy,
        settings: WebBackendConfig | None = None,
        client_factory: SessionClientFactory | None = None,
    ) -> None:
        settings = settings or config.web
        super().__init__(
            channel,
            task_registry,
            phone_policy,
            settings,
            client_factory
            or (lambda: BridgeSessionClient(settings, platform=self.PLATFORM, task_registry=self.tasks)),
        )
        self.settings: WebBackendConfig = settings

    # ==================== Lifecycle ====================

    async def initialize(self) -> None:
        logger.info("Initializing web WhatsApp client...")
        self.state = SessionState.INITIALIZING
        try:
            await self._recreate_client()
        except Exception as exc:
            self._signal_failure(str(exc))
            raise BackendInitializationFailed(f"Web backend could not create its client: {exc}") from exc
        self._spawn_retry(self.settings.init_retries, self.settings.init_retry_delay_s)

    async def _recreate_client(self) -> SessionClient:
        previous, self._client = self._client, None
        await self._close_client(previous)
        return self._build_client()

    def _spawn_retry(self, max_retries: int, delay: float) -> None:
        generation = self._generation
        self.tasks.spawn(self._initialize_with_retry(generation, max_retries, delay), name="primary-init-retry")

    async def _initialize_with_retry(self, generation: int, max_retries: int, delay: float) -> None:
        for attempt in range(1, max_retries + 1):
            if not self._is_current(generation):
                return
            client = self._client
            if client is None:
                return
            self.state = SessionState.INITIALIZING
            logger.info("Attempt %d/%d to initialize web WhatsApp client...", attempt, max_retries)
            try:
                await client.start()
                logger.info("Web WhatsApp client initialized")
                return
            except Exception as exc:  # noqa: BLE001 - every start error counts as a failed attempt
                logger.warning("Attempt %d failed: %s", attempt, exc)

            if attempt == max_retries:
                break

            logger.info("Retrying in %.1f seconds...", delay)
            await asyncio.sleep(delay)
            if not self._is_current(generation):
                return
            try:
                await self._recreate_client()
            except Exception as exc:  # noqa: BLE001 - factory errors end the retry round
                logger.error("Recreating web WhatsApp client failed: %s", exc)
                break

        if self._is_current(generation):
            self._signal_failure(f"Failed to initialize WhatsApp client after {max_retries} attempts")

    async def _restart_with_retry(self, max_retries: int, delay: float) -> None:
        try:
            await self._recreate_client()
        except Exception as exc:  # noqa: BLE001 - reported as an initialization failure
            self._signal_failure(str(exc))
            return
        self._spawn_retry(max_retries, delay)

    def _on_auth_failure(self, reason: str) -> None:
        super()._on_auth_failure(reason)
        self._call_later(
            self.settings.auth_retry_delay_s,
            lambda: self._restart_with_retry(self.settings.auth_retries, self.settings.auth_retry_interval_s),
            name="auth-retry",
        )

    def _on_disconnected(self, reason: str) -> None:
        logger.warning("Web WhatsApp client disconnected: %s", reason)
        self._set_ready(False, reason=reason)
        if reason in self._TERMINAL_REASONS:
            logger.info("Disconnect reason %s is terminal; not reconnecting", reason)
            return
        self._call_later(self.settings.reconnect_delay_s, self._reconnect, name="reconnect")

    def _reconnect(self) -> None:
        logger.info("Attempting to reconnect after disconnection...")
        self._spawn_retry(self.settings.reconnect_retries, self.settings.init_retry_delay_s)

    async def _restart_session(self) -> None:
        await self._reset_session()
        await self._restart_with_retry(self.settings.init_retries, self.settings.init_retry_delay_s)

    async def force_restart(self) -> RestartAck:
        logger.info("Force restarting web WhatsApp client...")
        await self._reset_session()
        self._call_later(
            self.settings.restart_delay_s,
            lambda: self._restart_with_retry(self.settings.init_retries, self.settings.init_retry_delay_s),
            name="restart",
        )
        return RestartAck(message="Restart initiated")

    # ==================== Messaging ====================

    async def send_message_with_attachment(
        self,
        recipient: str,
        text: str,
        file_path: Optional[str] = None,
    ) -> SendResult:
        client = self._require_ready()
        chat_id = self.phone_policy.chat_id(recipient, self.CHAT_SUFFIX)
        has_file = bool(file_path) and Path(str(file_path)).exists()
        try:
            if has_file:
                message_id = await client.send_file(chat_id, str(file_path), caption=text)
            else:
                message_id = await client.send_text(chat_id, text)
        except Exception as exc:
            logger.error("Error sending message with attachment: %s", exc)
            raise SendFailed(f"Failed to send message with attachment: {exc}") from exc

        if has_file and self.settings.cleanup_attachments:
            self.tasks.call_later(
                self.settings.attachment_cleanup_delay_s,
                lambda: Path(str(file_path)).unlink(missing_ok=True),
                name="attachment-cleanup",
            )

        logger.info("Message with attachment sent to %s (attachment=%s)", recipient, has_file)
        self._message_sent(message_id, recipient)
        return SendResult(message_id=message_id, attachment_delivered=has_file)

    # ==================== Status ====================

    async def check_connection(self) -> ConnectionSnapshot:
        client = self._client
        if client is None:
            return ConnectionSnapshot(connected=False, error="Client not initialized")
        try:
            state = await client.get_state()
        except Exception as exc:  # noqa: BLE001 - connection checks never raise
            return ConnectionSnapshot(connected=False, error=str(exc))
        return ConnectionSnapshot(connected=state == STATE_CONNECTED, state=state)
