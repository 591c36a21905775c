"""Failover orchestrator - one logical WhatsApp session over interchangeable backends."""

from __future__ import annotations

from typing import Callable, Optional

from instrukt_ai_logging import get_logger

from whatsrelay.backends import BaseBackend, create_backend
from whatsrelay.config import FailoverConfig, config
from whatsrelay.core.errors import BackendTeardownFailed, NoActiveBackend
from whatsrelay.core.events import BackendSwitchedPayload, DegradedModePayload, NotificationEvents
from whatsrelay.core.models import (
    FALLBACK_ORDER,
    BackendKind,
    ClientInfo,
    ConnectionSnapshot,
    RestartAck,
    SendResult,
    ServiceInfo,
    Transitioning,
)
from whatsrelay.core.notification_channel import NotificationChannel
from whatsrelay.core.task_registry import TaskRegistry
from whatsrelay.utils import now_iso

logger = get_logger(__name__)

BackendFactory = Callable[[BackendKind], BaseBackend]


class FailoverOrchestrator:
    """Owns the active backend slot and moves it forward on failure.

    Callers use the same operations as on a backend. Exactly one backend sits
    in the slot at a time; a fallback builds a new instance and replaces the
    slot, it never mutates the old one.

    Failure signals are bound to the backend instance that raised them: each
    instance gets its own one-shot listener, and signals from an instance that
    is no longer in the slot are ignored.
    """

    def __init__(
        self,
        *,
        channel: NotificationChannel | None = None,
        task_registry: TaskRegistry | None = None,
        settings: FailoverConfig | None = None,
        backend_factory: BackendFactory | None = None,
    ) -> None:
        self.tasks = task_registry or TaskRegistry()
        self.channel = channel or NotificationChannel(self.tasks)
        self.settings = settings or config.failover
        self._backend_factory = backend_factory or self._create_backend
        self.active_backend_kind = BackendKind.PRIMARY
        self.attempt_count = 0
        self._backend: BaseBackend | None = None
        self._transition: Transitioning | None = None
        self._restart_generation = 0

    def _create_backend(self, kind: BackendKind) -> BaseBackend:
        return create_backend(kind, self.channel, self.tasks)

    @property
    def backend(self) -> Optional[BaseBackend]:
        """Backend currently in the slot."""
        return self._backend

    # ==================== Lifecycle ====================

    async def initialize(self) -> None:
        """Select the primary backend and start it.

        Returns once the backend's initialize() has been issued; readiness
        arrives later as notifications.
        """
        if self._backend is not None:
            logger.warning("WhatsApp service already initialized (%s); skipping", self.active_backend_kind.value)
            return

        logger.info("Initializing WhatsApp service...")
        self.active_backend_kind = BackendKind.PRIMARY
        backend = self._backend_factory(BackendKind.PRIMARY)
        self._install(backend)
        await self._start_backend(backend)

    def _install(self, backend: BaseBackend) -> None:
        self._backend = backend
        backend.add_failure_listener(self._one_shot_listener())

    def _one_shot_listener(self) -> Callable[[BaseBackend, str], None]:
        fired = False

        def _on_failure(failed: BaseBackend, reason: str) -> None:
            nonlocal fired
            if fired:
                return
            fired = True
            failed.remove_failure_listener(_on_failure)
            if failed is not self._backend:
                logger.debug("Ignoring failure from superseded %s backend", failed.KIND.value)
                return
            self.tasks.spawn(self._fall_back(failed, reason), name="failover")

        return _on_failure

    async def _start_backend(self, backend: BaseBackend) -> None:
        try:
            await backend.initialize()
        except Exception as exc:  # noqa: BLE001 - any setup error moves to the next backend
            logger.error("%s backend failed to initialize: %s", backend.KIND.value, exc)
            await self._fall_back(backend, f"{backend.KIND.value} initialization failed: {exc}")

    def _next_kind(self, current: BackendKind) -> BackendKind:
        if self.attempt_count + 1 >= self.settings.max_attempts:
            return BackendKind.DEGRADED
        index = FALLBACK_ORDER.index(current)
        return FALLBACK_ORDER[min(index + 1, len(FALLBACK_ORDER) - 1)]

    async def _fall_back(self, failed: BaseBackend, reason: str) -> None:
        """Replace the failed backend with the next one in priority order."""
        if failed is not self._backend:
            logger.debug("Fallback requested for superseded %s backend; ignoring", failed.KIND.value)
            return

        current = self.active_backend_kind
        if current is BackendKind.DEGRADED:
            logger.warning("Already running degraded; no further fallback (%s)", reason)
            return

        target = self._next_kind(current)
        if self._transition is not None and self._transition.target is target:
            logger.debug("Fallback to %s already in progress; ignoring duplicate signal", target.value)
            return

        logger.warning("Falling back from %s to %s: %s", current.value, target.value, reason)
        self._transition = Transitioning(target)
        generation = self._restart_generation
        try:
            await self._teardown(failed)
            if generation != self._restart_generation or failed is not self._backend:
                logger.info("Fallback to %s abandoned; service was restarted meanwhile", target.value)
                return
            replacement = self._backend_factory(target)
            self._install(replacement)
            self.attempt_count += 1
            self.active_backend_kind = target
        finally:
            self._transition = None

        self.channel.publish(
            NotificationEvents.BACKEND_SWITCHED,
            BackendSwitchedPayload(from_kind=current.value, to_kind=target.value, reason=reason, timestamp=now_iso()),
        )
        if target is BackendKind.DEGRADED:
            self.channel.publish(
                NotificationEvents.DEGRADED_MODE,
                DegradedModePayload(
                    message="Running in degraded mode - WhatsApp functionality limited",
                    attempt_count=self.attempt_count,
                    timestamp=now_iso(),
                ),
            )
        await self._start_backend(replacement)

    async def _teardown(self, backend: BaseBackend) -> None:
        try:
            await backend.shutdown()
        except BackendTeardownFailed as exc:
            logger.warning("Cleanup error (ignored): %s", exc)

    async def force_restart(self) -> RestartAck:
        """Discard the current backend and start over from the primary."""
        previous = self._backend
        logger.info(
            "Force restarting WhatsApp service (was %s)...",
            self.active_backend_kind.value if previous else "idle",
        )
        self._restart_generation += 1
        generation = self._restart_generation
        self.active_backend_kind = BackendKind.PRIMARY
        self.attempt_count = 0
        self._backend = None
        self._transition = None
        if previous is not None:
            self.tasks.spawn(self._teardown(previous), name="restart-teardown")

        def _initialize_if_current() -> object:
            if generation != self._restart_generation:
                return None
            return self.initialize()

        self.tasks.call_later(self.settings.restart_delay_s, _initialize_if_current, name="restart-initialize")
        return RestartAck(
            message="Restart initiated",
            note="Will try the primary backend first, then fall back if needed",
        )

    async def shutdown(self) -> None:
        """Release the active backend and cancel scheduled work."""
        self._restart_generation += 1
        backend, self._backend = self._backend, None
        if backend is not None:
            await self._teardown(backend)
        await self.tasks.shutdown()

    # ==================== Delegated operations ====================

    def _require_backend(self) -> BaseBackend:
        if self._backend is None:
            raise NoActiveBackend()
        return self._backend

    async def send_message(self, recipient: str, text: str) -> str:
        return await self._require_backend().send_message(recipient, text)

    async def send_message_with_attachment(
        self,
        recipient: str,
        text: str,
        file_path: Optional[str] = None,
    ) -> SendResult:
        backend = self._require_backend()
        if not backend.supports_attachments:
            if file_path:
                logger.warning("%s backend does not support attachments, sending text only", backend.KIND.value)
            message_id = await backend.send_message(recipient, text)
            return SendResult(message_id=message_id, attachment_delivered=False, attachment_dropped=bool(file_path))
        return await backend.send_message_with_attachment(recipient, text, file_path)

    async def generate_qr(self) -> str:
        return await self._require_backend().generate_qr()

    def handle_webhook(self, payload: dict[str, object]) -> bool:  # guard: loose-dict - bridge webhook body.
        backend = self._backend
        return backend.handle_webhook(payload) if backend is not None else False

    # ==================== Status ====================

    def is_ready(self) -> bool:
        backend = self._backend
        if backend is None:
            return False
        try:
            return bool(backend.is_ready())
        except Exception:  # noqa: BLE001 - readiness checks never raise
            logger.error("Error checking service readiness", exc_info=True)
            return False

    def get_qr_code(self) -> Optional[str]:
        backend = self._backend
        if backend is None:
            return None
        try:
            return backend.get_qr_code()
        except Exception:  # noqa: BLE001 - status reads never raise
            logger.error("Error reading pairing code", exc_info=True)
            return None

    async def check_connection(self) -> ConnectionSnapshot:
        backend = self._backend
        if backend is None:
            return ConnectionSnapshot(connected=False, error="No service initialized")
        try:
            snapshot = await backend.check_connection()
        except Exception as exc:  # noqa: BLE001 - connection checks never raise
            snapshot = ConnectionSnapshot(connected=False, error=str(exc))
        snapshot.backend = backend.KIND.value
        return snapshot

    async def get_client_info(self) -> ClientInfo:
        backend = self._backend
        if backend is None:
            return ClientInfo(status="not_ready", error="No service initialized")
        try:
            info = await backend.get_client_info()
        except Exception as exc:  # noqa: BLE001 - status queries never raise
            info = ClientInfo(status="error", error=str(exc))
        info.backend = backend.KIND.value
        info.attempt_count = self.attempt_count
        return info

    def get_service_info(self) -> ServiceInfo:
        return ServiceInfo(
            active_backend_kind=self.active_backend_kind,
            is_ready=self.is_ready(),
            attempt_count=self.attempt_count,
            max_attempts=self.settings.max_attempts,
        )
