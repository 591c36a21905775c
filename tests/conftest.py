"""Pytest configuration for whatsrelay tests."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

import pytest

import instrukt_ai_logging

from whatsrelay.config import (
    DegradedBackendConfig,
    FailoverConfig,
    SocketBackendConfig,
    WebBackendConfig,
)
from whatsrelay.core.notification_channel import NotificationChannel
from whatsrelay.core.phone import PhoneNumberPolicy
from whatsrelay.core.task_registry import TaskRegistry
from whatsrelay.transport.session_client import ClientEvent, ClientIdentity


def _noop_configure_logging(*_args, **_kwargs):  # type: ignore[no-untyped-def]
    return None


instrukt_ai_logging.configure_logging = _noop_configure_logging  # type: ignore[assignment]
logging.getLogger("whatsrelay").handlers.clear()
logging.getLogger().handlers.clear()


def pytest_collection_modifyitems(config, items):
    """Set per-marker timeouts: unit=1s."""
    for item in items:
        if "unit" in item.keywords:
            item.add_marker(pytest.mark.timeout(1))


class FakeSessionClient:
    """In-memory SessionClient. Tests drive it by emitting lifecycle events."""

    def __init__(
        self,
        *,
        start_error: Optional[Exception] = None,
        identity: Optional[ClientIdentity] = None,
        state: str = "CONNECTED",
    ) -> None:
        self.handlers: list[Callable[[ClientEvent], None]] = []
        self.start_error = start_error
        self.send_error: Optional[Exception] = None
        self.close_error: Optional[Exception] = None
        self.close_gate: Optional[asyncio.Event] = None
        self.on_start: Optional[Callable[["FakeSessionClient"], None]] = None
        self.state = state
        self.start_calls = 0
        self.closed = False
        self.sent: list[tuple[str, str]] = []
        self.files: list[tuple[str, str, Optional[str]]] = []
        self.webhooks: list[dict[str, object]] = []  # guard: loose-dict - webhook bodies
        self._identity = identity

    def on(self, handler: Callable[[ClientEvent], None]) -> None:
        self.handlers.append(handler)

    def emit(self, event_type: str, **fields: str) -> None:
        for handler in list(self.handlers):
            handler(ClientEvent(type=event_type, **fields))  # type: ignore[arg-type]

    async def start(self) -> None:
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error
        if self.on_start is not None:
            self.on_start(self)

    async def close(self) -> None:
        self.closed = True
        if self.close_gate is not None:
            await self.close_gate.wait()
        if self.close_error is not None:
            raise self.close_error

    async def get_state(self) -> str:
        return self.state

    async def send_text(self, chat_id: str, text: str) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((chat_id, text))
        return f"msg-{len(self.sent)}"

    async def send_file(self, chat_id: str, file_path: str, caption: Optional[str] = None) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.files.append((chat_id, file_path, caption))
        return f"file-{len(self.files)}"

    @property
    def identity(self) -> Optional[ClientIdentity]:
        return self._identity

    def handle_webhook(self, payload: dict[str, object]) -> None:  # guard: loose-dict - webhook body
        self.webhooks.append(payload)


class ClientFactory:
    """Client factory that records every client it builds."""

    def __init__(self, make: Optional[Callable[[], FakeSessionClient]] = None) -> None:
        self._make = make or FakeSessionClient
        self.clients: list[FakeSessionClient] = []

    def __call__(self) -> FakeSessionClient:
        client = self._make()
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeSessionClient:
        return self.clients[-1]


class RecordingChannel(NotificationChannel):
    """Notification channel that keeps every published notification."""

    def __init__(self, task_registry: TaskRegistry | None = None) -> None:
        super().__init__(task_registry)
        self.published: list[tuple[str, dict[str, object]]] = []  # guard: loose-dict - payloads

    def publish(self, event, payload):  # type: ignore[no-untyped-def]
        self.published.append((event, payload))
        super().publish(event, payload)

    def events(self, name: str) -> list[dict[str, object]]:  # guard: loose-dict - payloads
        return [payload for event, payload in self.published if event == name]


FAST = 0.01


def fast_web_settings(**overrides: object) -> WebBackendConfig:
    values: dict[str, object] = {  # guard: loose-dict - dataclass kwargs
        "url": "http://bridge.test",
        "qr_timeout_s": 0.2,
        "restart_delay_s": FAST,
        "init_retries": 3,
        "init_retry_delay_s": FAST,
        "auth_retry_delay_s": FAST,
        "auth_retries": 2,
        "auth_retry_interval_s": FAST,
        "reconnect_delay_s": FAST,
        "reconnect_retries": 2,
        "attachment_cleanup_delay_s": FAST,
    }
    values.update(overrides)
    return WebBackendConfig(**values)  # type: ignore[arg-type]


def fast_socket_settings(**overrides: object) -> SocketBackendConfig:
    values: dict[str, object] = {  # guard: loose-dict - dataclass kwargs
        "url": "http://bridge.test",
        "qr_timeout_s": 0.2,
        "restart_delay_s": FAST,
        "reconnect_delay_s": FAST,
    }
    values.update(overrides)
    return SocketBackendConfig(**values)  # type: ignore[arg-type]


def fast_degraded_settings() -> DegradedBackendConfig:
    return DegradedBackendConfig(settle_delay_s=FAST, restart_delay_s=FAST, remediation_hint="Start the bridge.")


def fast_failover_settings(max_attempts: int = 2) -> FailoverConfig:
    return FailoverConfig(max_attempts=max_attempts, restart_delay_s=FAST)


@pytest.fixture
def task_registry() -> TaskRegistry:
    return TaskRegistry()


@pytest.fixture
def channel(task_registry: TaskRegistry) -> RecordingChannel:
    return RecordingChannel(task_registry)


@pytest.fixture
def phone_policy() -> PhoneNumberPolicy:
    return PhoneNumberPolicy()


async def eventually(predicate: Callable[[], bool], timeout: float = 0.5) -> None:
    """Yield to the loop until predicate() holds; fail after timeout seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
