"""Unit tests for the HTTP bridge session client."""

from __future__ import annotations

import base64
import json
from pathlib import Path

import httpx
import pytest

from tests.conftest import eventually
from whatsrelay.config import BridgeConfig
from whatsrelay.core.task_registry import TaskRegistry
from whatsrelay.transport.bridge_client import BridgeSessionClient
from whatsrelay.transport.session_client import ClientEvent


class _Bridge:
    """Scripted bridge: answers session, QR and send endpoints."""

    def __init__(self) -> None:
        self.status = "STARTING"
        self.qr = "QR-RAW"
        self.me: dict[str, str] | None = {"id": "15550001111@c.us", "pushName": "MedLab"}
        self.start_status = 201
        self.html_replies = 0
        self.send_response: dict[str, object] = {"id": {"_serialized": "true_15551234567@c.us_ABC"}}  # guard: loose-dict
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/api/sessions/default/start":
            return httpx.Response(self.start_status, json={})
        if path == "/api/sessions/default/stop":
            return httpx.Response(201, json={})
        if path == "/api/sessions/default" and self.html_replies:
            self.html_replies -= 1
            return httpx.Response(200, text="<html>bad gateway</html>", headers={"content-type": "text/html"})
        if path == "/api/sessions/default":
            return httpx.Response(200, json={"name": "default", "status": self.status, "me": self.me})
        if path == "/api/default/auth/qr":
            return httpx.Response(200, json={"value": self.qr})
        if path in ("/api/sendText", "/api/sendFile"):
            return httpx.Response(201, json=self.send_response)
        return httpx.Response(404, json={"error": "not found"})

    def paths(self) -> list[str]:
        return [f"{r.method} {r.url.path}" for r in self.requests]

    def body(self, path: str) -> dict[str, object]:  # guard: loose-dict - request JSON
        request = next(r for r in reversed(self.requests) if r.url.path == path)
        return json.loads(request.content)


@pytest.fixture
def bridge() -> _Bridge:
    return _Bridge()


def _client(
    bridge: _Bridge,
    task_registry: TaskRegistry | None = None,
    **overrides: object,
) -> tuple[BridgeSessionClient, list[ClientEvent]]:
    settings = BridgeConfig(url="http://bridge.test", api_key="secret", poll_interval_s=60.0)
    for key, value in overrides.items():
        setattr(settings, key, value)
    client = BridgeSessionClient(
        settings,
        platform="web",
        transport=httpx.MockTransport(bridge),
        task_registry=task_registry,
    )
    events: list[ClientEvent] = []
    client.on(events.append)
    return client, events


def test_requires_bridge_url():
    with pytest.raises(ValueError):
        BridgeSessionClient(BridgeConfig(url=""), platform="web")


@pytest.mark.asyncio
async def test_start_posts_session_and_emits_qr(bridge):
    bridge.status = "SCAN_QR_CODE"
    client, events = _client(bridge)

    await client.start()
    await client.close()

    assert bridge.paths()[:3] == [
        "POST /api/sessions/default/start",
        "GET /api/sessions/default",
        "GET /api/default/auth/qr",
    ]
    assert bridge.requests[0].headers["X-Api-Key"] == "secret"
    assert [(e.type, e.qr) for e in events] == [("qr", "QR-RAW")]


@pytest.mark.asyncio
async def test_start_accepts_already_running_session(bridge):
    bridge.start_status = 422
    bridge.status = "WORKING"
    client, events = _client(bridge)

    await client.start()
    await client.close()

    assert [e.type for e in events] == ["authenticated", "ready"]
    assert client.identity is not None
    assert client.identity.id == "15550001111@c.us"
    assert client.identity.name == "MedLab"


@pytest.mark.asyncio
async def test_start_raises_on_bridge_error(bridge):
    bridge.start_status = 500
    client, _events = _client(bridge)

    with pytest.raises(httpx.HTTPStatusError):
        await client.start()
    await client.close()


@pytest.mark.asyncio
async def test_same_qr_is_emitted_once(bridge):
    bridge.status = "SCAN_QR_CODE"
    client, events = _client(bridge)

    await client.start()
    await client.poll_once()
    bridge.qr = "QR-NEXT"
    await client.poll_once()
    await client.close()

    assert [e.qr for e in events] == ["QR-RAW", "QR-NEXT"]


@pytest.mark.asyncio
async def test_logout_after_working_emits_disconnected(bridge):
    bridge.status = "WORKING"
    client, events = _client(bridge)
    await client.start()

    bridge.status = "SCAN_QR_CODE"
    await client.poll_once()
    await client.close()

    assert [(e.type, e.reason) for e in events][2:4] == [("disconnected", "LOGOUT"), ("qr", None)]
    assert client.identity is None


@pytest.mark.asyncio
async def test_failed_before_working_is_auth_failure(bridge):
    client, events = _client(bridge)
    await client.start()

    bridge.status = "FAILED"
    await client.poll_once()
    await client.poll_once()
    await client.close()

    assert [e.type for e in events] == ["auth_failure"]


@pytest.mark.asyncio
async def test_stopped_after_working_emits_disconnected(bridge):
    bridge.status = "WORKING"
    client, events = _client(bridge)
    await client.start()

    bridge.status = "STOPPED"
    await client.poll_once()
    await client.close()

    assert (events[-1].type, events[-1].reason) == ("disconnected", "STOPPED")


@pytest.mark.asyncio
async def test_send_text_returns_serialized_id(bridge):
    client, _events = _client(bridge)
    await client.start()

    message_id = await client.send_text("15551234567@c.us", "hello")
    await client.close()

    assert message_id == "true_15551234567@c.us_ABC"
    assert bridge.body("/api/sendText") == {"session": "default", "chatId": "15551234567@c.us", "text": "hello"}


@pytest.mark.asyncio
async def test_send_text_reads_key_id(bridge):
    bridge.send_response = {"key": {"id": "3EB0ABC"}}
    client, _events = _client(bridge)
    await client.start()

    assert await client.send_text("15551234567@s.whatsapp.net", "hi") == "3EB0ABC"
    await client.close()


@pytest.mark.asyncio
async def test_send_file_posts_base64_payload(bridge, tmp_path: Path):
    report = tmp_path / "report.pdf"
    report.write_bytes(b"%PDF-1.4")
    client, _events = _client(bridge)
    await client.start()

    await client.send_file("15551234567@c.us", str(report), caption="Your report")
    await client.close()

    body = bridge.body("/api/sendFile")
    assert body["caption"] == "Your report"
    assert body["file"] == {
        "mimetype": "application/pdf",
        "filename": "report.pdf",
        "data": base64.b64encode(b"%PDF-1.4").decode("ascii"),
    }


@pytest.mark.asyncio
async def test_send_file_missing_path_raises(bridge, tmp_path: Path):
    client, _events = _client(bridge)
    await client.start()

    with pytest.raises(FileNotFoundError):
        await client.send_file("15551234567@c.us", str(tmp_path / "missing.pdf"))
    await client.close()


@pytest.mark.asyncio
async def test_get_state_maps_bridge_status(bridge):
    client, _events = _client(bridge)
    await client.start()

    bridge.status = "WORKING"
    assert await client.get_state() == "CONNECTED"
    bridge.status = "SCAN_QR_CODE"
    assert await client.get_state() == "PAIRING"
    bridge.status = "FAILED"
    assert await client.get_state() == "DISCONNECTED"
    await client.close()


@pytest.mark.asyncio
async def test_close_stops_session_and_is_idempotent(bridge):
    client, _events = _client(bridge)
    await client.start()

    await client.close()
    await client.close()

    assert bridge.paths().count("POST /api/sessions/default/stop") == 1
    with pytest.raises(RuntimeError):
        await client.send_text("15551234567@c.us", "after close")


def test_webhook_message_becomes_event(bridge):
    client, events = _client(bridge)

    client.handle_webhook({"event": "message", "payload": {"from": "15551234567@c.us", "body": "STOP"}})
    client.handle_webhook({"event": "message", "payload": {"from": "me", "body": "x", "fromMe": True}})
    client.handle_webhook({"event": "session.status", "payload": {}})

    assert [(e.type, e.sender, e.body) for e in events] == [("message", "15551234567@c.us", "STOP")]


@pytest.mark.asyncio
async def test_non_json_status_reply_does_not_stop_polling(bridge):
    client, events = _client(bridge, poll_interval_s=0.01)
    await client.start()

    bridge.html_replies = 1
    bridge.status = "WORKING"
    await eventually(lambda: "ready" in [e.type for e in events])
    await client.close()

    assert bridge.html_replies == 0
    assert [e.type for e in events] == ["authenticated", "ready"]


@pytest.mark.asyncio
async def test_poll_loop_survives_unexpected_errors(bridge):
    client, _events = _client(bridge, poll_interval_s=0.01)
    await client.start()
    calls = 0

    async def flaky_poll() -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise KeyError("unexpected")

    client.poll_once = flaky_poll  # type: ignore[method-assign]
    await eventually(lambda: calls >= 3)
    await client.close()


@pytest.mark.asyncio
async def test_poller_is_tracked_by_task_registry(bridge):
    registry = TaskRegistry()
    client, _events = _client(bridge, task_registry=registry)

    await client.start()
    assert registry.task_count() == 1

    await client.close()
    await eventually(lambda: registry.task_count() == 0)
