"""Shared behavior for backends driven by a session client."""

from __future__ import annotations

import asyncio
from abc import abstractmethod
from typing import ClassVar

from instrukt_ai_logging import get_logger

from whatsrelay.backends.base_backend import BaseBackend
from whatsrelay.config import BridgeConfig
from whatsrelay.core.errors import (
    AlreadyConnected,
    BackendInitializationFailed,
    NoPairingAvailable,
    NotReady,
    SendFailed,
)
from whatsrelay.core.events import NotificationEvents
from whatsrelay.core.models import ClientInfo, SessionState
from whatsrelay.core.notification_channel import NotificationChannel
from whatsrelay.core.phone import PhoneNumberPolicy
from whatsrelay.core.task_registry import TaskRegistry
from whatsrelay.transport.session_client import ClientEvent, SessionClient, SessionClientFactory

logger = get_logger(__name__)


class ClientBackend(BaseBackend):
    """Backend whose connection is a SessionClient.

    Events from a client that is no longer this backend's current client are
    dropped, so a recreated or torn-down client cannot move state.
    """

    CHAT_SUFFIX: ClassVar[str]
    PLATFORM: ClassVar[str]

    def __init__(
        self,
        channel: NotificationChannel,
        task_registry: TaskRegistry,
        phone_policy: PhoneNumberPolicy,
        settings: BridgeConfig,
        client_factory: SessionClientFactory,
    ) -> None:
        super().__init__(channel, task_registry, phone_policy)
        self.settings = settings
        self._client_factory = client_factory
        self._client: SessionClient | None = None

    # ==================== Client handling ====================

    def _build_client(self) -> SessionClient:
        client = self._client_factory()
        bound = client

        def _on_event(event: ClientEvent) -> None:
            if self._closed or bound is not self._client:
                logger.debug("Dropping %s event from stale %s client", event.type, self.PLATFORM)
                return
            self._handle_client_event(event)

        client.on(_on_event)
        self._client = client
        return client

    async def _close_client(self, client: SessionClient | None) -> None:
        """Best-effort close of a client that is being replaced."""
        if client is None:
            return
        try:
            await client.close()
        except Exception as exc:  # noqa: BLE001 - teardown is best-effort
            logger.warning("Closing %s client failed (ignored): %s", self.PLATFORM, exc)

    async def _reset_session(self) -> None:
        """Drop the current session so a fresh one can be started."""
        self._generation += 1
        self._ready = False
        self._pairing_payload = None
        self.state = SessionState.UNINITIALIZED
        client, self._client = self._client, None
        await self._close_client(client)

    async def _teardown(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.close()

    def _handle_client_event(self, event: ClientEvent) -> None:
        if event.type == "qr" and event.qr:
            logger.info("Pairing code received from %s client", self.PLATFORM)
            self._set_pairing(event.qr)
        elif event.type == "authenticated":
            logger.info("%s client authenticated", self.PLATFORM)
            self.state = SessionState.AUTHENTICATED
            self._publish(NotificationEvents.AUTHENTICATED)
        elif event.type == "ready":
            logger.info("%s client is ready", self.PLATFORM)
            self._set_ready(True)
        elif event.type == "auth_failure":
            self._on_auth_failure(event.reason or "authentication failed")
        elif event.type == "disconnected":
            self._on_disconnected(event.reason or "unknown")
        elif event.type == "message":
            self._publish(
                NotificationEvents.MESSAGE_RECEIVED,
                sender=event.sender,
                body=event.body,
                received_at=event.timestamp,
            )

    def _on_auth_failure(self, reason: str) -> None:
        logger.error("%s client authentication failed: %s", self.PLATFORM, reason)
        self._publish(NotificationEvents.AUTH_FAILURE, error=reason)

    @abstractmethod
    def _on_disconnected(self, reason: str) -> None:
        """React to a dropped connection."""

    @abstractmethod
    async def _restart_session(self) -> None:
        """Tear down and start a fresh session (used for pairing)."""

    # ==================== Messaging ====================

    def _require_ready(self) -> SessionClient:
        if not self._ready or self._client is None:
            raise NotReady()
        return self._client

    async def send_message(self, recipient: str, text: str) -> str:
        client = self._require_ready()
        chat_id = self.phone_policy.chat_id(recipient, self.CHAT_SUFFIX)
        try:
            message_id = await client.send_text(chat_id, text)
        except Exception as exc:
            logger.error("Error sending message via %s client: %s", self.PLATFORM, exc)
            raise SendFailed(f"Failed to send message: {exc}") from exc

        logger.info("Message sent to %s: %s...", recipient, text[:50])
        self._message_sent(message_id, recipient)
        return message_id

    # ==================== Pairing ====================

    async def generate_qr(self) -> str:
        if self._ready:
            raise AlreadyConnected()

        waiter = asyncio.Event()
        self._pairing_waiter = waiter
        self._pairing_payload = None
        try:
            try:
                await self._restart_session()
            except BackendInitializationFailed as exc:
                raise NoPairingAvailable(f"Could not restart the session for pairing: {exc}") from exc
            try:
                await asyncio.wait_for(waiter.wait(), timeout=self.settings.qr_timeout_s)
            except asyncio.TimeoutError:
                raise NoPairingAvailable(
                    f"No pairing code received within {self.settings.qr_timeout_s:g}s"
                ) from None
        finally:
            if self._pairing_waiter is waiter:
                self._pairing_waiter = None

        if self._ready or not self._pairing_payload:
            raise NoPairingAvailable("Session authenticated without issuing a new pairing code")
        return self._pairing_payload

    # ==================== Status ====================

    def handle_webhook(self, payload: dict[str, object]) -> bool:  # guard: loose-dict - bridge webhook body.
        handler = getattr(self._client, "handle_webhook", None)
        if self._closed or handler is None:
            return False
        handler(payload)
        return True

    async def get_client_info(self) -> ClientInfo:
        client = self._client
        if not self._ready or client is None:
            return ClientInfo(status="not_ready", error="Client not initialized")
        try:
            identity = client.identity
        except Exception as exc:  # noqa: BLE001 - status queries never raise
            return ClientInfo(status="error", error=str(exc))
        if identity is None:
            return ClientInfo(status="ready", platform=self.PLATFORM)
        return ClientInfo(
            status="ready",
            name=identity.name,
            id=identity.id,
            platform=identity.platform or self.PLATFORM,
        )
