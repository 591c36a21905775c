"""Backends - interchangeable implementations of the WhatsApp session."""

from whatsrelay.backends.base_backend import BaseBackend
from whatsrelay.backends.degraded_backend import DegradedBackend
from whatsrelay.backends.socket_backend import SocketBackend
from whatsrelay.backends.web_backend import WebBackend
from whatsrelay.config import Config, config
from whatsrelay.core.models import BackendKind
from whatsrelay.core.notification_channel import NotificationChannel
from whatsrelay.core.phone import PhoneNumberPolicy
from whatsrelay.core.task_registry import TaskRegistry

BACKENDS: dict[BackendKind, type[BaseBackend]] = {
    BackendKind.PRIMARY: WebBackend,
    BackendKind.SECONDARY: SocketBackend,
    BackendKind.DEGRADED: DegradedBackend,
}


def create_backend(
    kind: BackendKind,
    channel: NotificationChannel,
    task_registry: TaskRegistry,
    cfg: Config | None = None,
) -> BaseBackend:
    """Build a fresh backend instance of the given kind from configuration."""
    cfg = cfg or config
    settings_by_kind = {
        BackendKind.PRIMARY: cfg.web,
        BackendKind.SECONDARY: cfg.socket,
        BackendKind.DEGRADED: cfg.degraded,
    }
    phone_policy = PhoneNumberPolicy.from_config(cfg.phone)
    return BACKENDS[kind](channel, task_registry, phone_policy, settings=settings_by_kind[kind])  # type: ignore[call-arg]


__all__ = ["BACKENDS", "BaseBackend", "DegradedBackend", "SocketBackend", "WebBackend", "create_backend"]
