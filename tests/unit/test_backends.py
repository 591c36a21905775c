"""Unit tests for the backend factory."""

from pathlib import Path

import pytest

from whatsrelay.backends import BACKENDS, create_backend
from whatsrelay.backends.degraded_backend import DegradedBackend
from whatsrelay.backends.socket_backend import SocketBackend
from whatsrelay.backends.web_backend import WebBackend
from whatsrelay.config import load_config
from whatsrelay.core.models import FALLBACK_ORDER, BackendKind


def test_every_fallback_kind_has_a_backend():
    assert set(BACKENDS) == set(FALLBACK_ORDER)


@pytest.mark.parametrize(
    ("kind", "backend_type", "attachments"),
    [
        (BackendKind.PRIMARY, WebBackend, True),
        (BackendKind.SECONDARY, SocketBackend, False),
        (BackendKind.DEGRADED, DegradedBackend, False),
    ],
)
def test_create_backend_builds_fresh_instances(channel, task_registry, kind, backend_type, attachments):
    first = create_backend(kind, channel, task_registry)
    second = create_backend(kind, channel, task_registry)

    assert isinstance(first, backend_type)
    assert first is not second
    assert first.supports_attachments is attachments
    assert first.is_ready() is False


def test_create_backend_uses_given_config(channel, task_registry, tmp_path: Path):
    path = tmp_path / "config.yml"
    path.write_text(
        "web:\n  url: http://bridge.local\nphone:\n  default_country_code: '44'\n  national_number_length: 10\n",
        encoding="utf-8",
    )
    cfg = load_config(path)

    backend = create_backend(BackendKind.PRIMARY, channel, task_registry, cfg)

    assert backend.settings.url == "http://bridge.local"
    assert backend.phone_policy.normalize("7700 900123") == "447700900123"
