"""Unit tests for the degraded backend."""

import pytest

from tests.conftest import eventually, fast_degraded_settings
from whatsrelay.backends.degraded_backend import DegradedBackend
from whatsrelay.core.errors import ServiceUnavailable
from whatsrelay.core.events import NotificationEvents
from whatsrelay.core.phone import PhoneNumberPolicy


@pytest.fixture
def backend(channel, task_registry) -> DegradedBackend:
    return DegradedBackend(channel, task_registry, PhoneNumberPolicy(), settings=fast_degraded_settings())


@pytest.mark.asyncio
async def test_becomes_ready_after_settle_delay(backend, channel):
    await backend.initialize()
    assert backend.is_ready() is False

    await eventually(backend.is_ready)

    status = channel.events(NotificationEvents.STATUS_CHANGED)[-1]
    assert status["is_ready"] is True
    assert status["limited"] is True
    assert status["backend"] == "degraded"


@pytest.mark.asyncio
async def test_send_and_pairing_fail_with_hint(backend):
    await backend.initialize()

    with pytest.raises(ServiceUnavailable) as excinfo:
        await backend.send_message("15551234567", "x")
    assert excinfo.value.hint == "Start the bridge."

    with pytest.raises(ServiceUnavailable):
        await backend.send_message_with_attachment("15551234567", "x", "/tmp/report.pdf")
    with pytest.raises(ServiceUnavailable):
        await backend.generate_qr()


@pytest.mark.asyncio
async def test_status_queries_describe_limited_mode(backend):
    snapshot = await backend.check_connection()
    info = await backend.get_client_info()

    assert snapshot.connected is False
    assert snapshot.state == "LIMITED"
    assert snapshot.recommendation == "Start the bridge."
    assert info.status == "limited"
    assert backend.get_qr_code() is None


@pytest.mark.asyncio
async def test_force_restart_settles_again(backend):
    await backend.initialize()
    await eventually(backend.is_ready)

    ack = await backend.force_restart()

    assert ack.note == "Start the bridge."
    assert backend.is_ready() is False
    await eventually(backend.is_ready)


@pytest.mark.asyncio
async def test_shutdown_before_settle_stays_not_ready(backend, channel):
    await backend.initialize()
    await backend.shutdown()

    with pytest.raises(AssertionError):
        await eventually(backend.is_ready, timeout=0.05)
    assert channel.events(NotificationEvents.STATUS_CHANGED) == []
