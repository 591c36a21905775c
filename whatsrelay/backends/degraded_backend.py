"""Terminal backend used when every real backend has failed."""

from __future__ import annotations

from typing import Optional

from instrukt_ai_logging import get_logger

from whatsrelay.backends.base_backend import BaseBackend
from whatsrelay.config import DegradedBackendConfig, config
from whatsrelay.core.errors import ServiceUnavailable
from whatsrelay.core.models import BackendKind, ClientInfo, ConnectionSnapshot, RestartAck, SendResult, SessionState
from whatsrelay.core.notification_channel import NotificationChannel
from whatsrelay.core.phone import PhoneNumberPolicy
from whatsrelay.core.task_registry import TaskRegistry
from whatsrelay.utils import now_iso

logger = get_logger(__name__)

_MESSAGING_UNAVAILABLE = "WhatsApp messaging is not available in degraded mode."
_PAIRING_UNAVAILABLE = "QR code generation is not available in degraded mode."


class DegradedBackend(BaseBackend):
    """Answers status queries; fails every send and pairing request."""

    KIND = BackendKind.DEGRADED
    supports_attachments = False

    def __init__(
        self,
        channel: NotificationChannel,
        task_registry: TaskRegistry,
        phone_policy: PhoneNumberPolicy,
        settings: DegradedBackendConfig | None = None,
    ) -> None:
        super().__init__(channel, task_registry, phone_policy)
        self.settings = settings or config.degraded

    @property
    def hint(self) -> str:
        return self.settings.remediation_hint

    async def initialize(self) -> None:
        logger.info("Initializing degraded WhatsApp service (status only)...")
        self.state = SessionState.INITIALIZING
        self._call_later(self.settings.settle_delay_s, self._settle, name="settle")

    def _settle(self) -> None:
        logger.info("Degraded WhatsApp service ready (limited functionality)")
        self._set_ready(
            True,
            limited=True,
            message="Running in degraded mode - pairing and messaging unavailable",
        )

    async def force_restart(self) -> RestartAck:
        logger.info("Restarting degraded service...")
        self._generation += 1
        self._ready = False
        self.state = SessionState.UNINITIALIZED
        self._call_later(self.settings.restart_delay_s, self.initialize, name="restart")
        return RestartAck(message="Degraded service restarted", note=self.hint)

    async def send_message(self, recipient: str, text: str) -> str:
        raise ServiceUnavailable(_MESSAGING_UNAVAILABLE, self.hint)

    async def send_message_with_attachment(
        self,
        recipient: str,
        text: str,
        file_path: Optional[str] = None,
    ) -> SendResult:
        raise ServiceUnavailable(_MESSAGING_UNAVAILABLE, self.hint)

    async def generate_qr(self) -> str:
        raise ServiceUnavailable(_PAIRING_UNAVAILABLE, self.hint)

    async def check_connection(self) -> ConnectionSnapshot:
        return ConnectionSnapshot(
            connected=False,
            state="LIMITED",
            message="No WhatsApp connection available",
            recommendation=self.hint,
        )

    async def get_client_info(self) -> ClientInfo:
        return ClientInfo(
            status="limited",
            platform="degraded",
            message="Degraded service - WhatsApp functionality unavailable",
            recommendation=self.hint,
            timestamp=now_iso(),
        )
