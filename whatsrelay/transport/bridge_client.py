"""Session client for a WAHA-compatible WhatsApp HTTP bridge.

The bridge runs the actual WhatsApp session (browser engine or socket engine);
this client starts and stops the bridge session, polls its status and
translates status changes into lifecycle events.
"""

from __future__ import annotations

import asyncio
import base64
import mimetypes
from pathlib import Path
from typing import Optional

import httpx
from instrukt_ai_logging import get_logger

from whatsrelay.config import BridgeConfig
from whatsrelay.constants import LOGOUT_REASON, STATE_CONNECTED, STATE_DISCONNECTED
from whatsrelay.core.task_registry import TaskRegistry
from whatsrelay.transport.session_client import ClientEvent, ClientEventHandler, ClientIdentity

logger = get_logger(__name__)

# Bridge session statuses
STATUS_STARTING = "STARTING"
STATUS_SCAN_QR = "SCAN_QR_CODE"
STATUS_WORKING = "WORKING"
STATUS_FAILED = "FAILED"
STATUS_STOPPED = "STOPPED"
STATUS_UNREACHABLE = "UNREACHABLE"

_STATE_BY_STATUS = {
    STATUS_WORKING: STATE_CONNECTED,
    STATUS_SCAN_QR: "PAIRING",
    STATUS_STARTING: "OPENING",
}


class BridgeSessionClient:
    """Drive one bridge session over HTTP."""

    def __init__(
        self,
        bridge: BridgeConfig,
        *,
        platform: str,
        transport: httpx.AsyncBaseTransport | None = None,
        task_registry: TaskRegistry | None = None,
    ) -> None:
        if not bridge.url:
            raise ValueError("Bridge URL is not configured")
        self._bridge = bridge
        self._platform = platform
        self._transport = transport
        self._tasks = task_registry or TaskRegistry()
        self._http: httpx.AsyncClient | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._handlers: list[ClientEventHandler] = []
        self._status: str | None = None
        self._last_qr: str | None = None
        self._identity: ClientIdentity | None = None

    @property
    def identity(self) -> Optional[ClientIdentity]:
        return self._identity

    @property
    def _session_url(self) -> str:
        return f"/api/sessions/{self._bridge.session}"

    def on(self, handler: ClientEventHandler) -> None:
        self._handlers.append(handler)

    def _emit(self, event: ClientEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:  # noqa: BLE001 - one handler must not starve the others
                logger.error("Bridge event handler failed for %s", event.type, exc_info=True)

    def _headers(self) -> dict[str, str]:
        if not self._bridge.api_key:
            return {}
        return {"X-Api-Key": self._bridge.api_key}

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("Bridge session is not started")
        return self._http

    async def _post_json(
        self,
        path: str,
        payload: dict[str, object] | None = None,  # guard: loose-dict - bridge payloads are dynamic by message type.
    ) -> dict[str, object]:  # guard: loose-dict - bridge responses are unstructured JSON.
        response = await self._client().post(path, json=payload or {})
        response.raise_for_status()
        if not response.content:
            return {}
        data = response.json()
        return data if isinstance(data, dict) else {}

    async def _get_json(self, path: str, params: dict[str, str] | None = None) -> dict[str, object]:  # guard: loose-dict
        response = await self._client().get(path, params=params)
        response.raise_for_status()
        data = response.json()
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _extract_message_id(data: dict[str, object]) -> str:  # guard: loose-dict - bridge response payload.
        raw_id = data.get("id")
        if isinstance(raw_id, dict):
            raw_id = raw_id.get("_serialized") or raw_id.get("id")
        if raw_id is None:
            key = data.get("key")
            if isinstance(key, dict):
                raw_id = key.get("id")
        if raw_id is None:
            raise RuntimeError("Bridge response missing message id")
        return str(raw_id)

    async def start(self) -> None:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self._bridge.url,
                headers=self._headers(),
                timeout=self._bridge.request_timeout_s,
                transport=self._transport,
            )
        response = await self._http.post(f"{self._session_url}/start", json={})
        # 422/409: the bridge already runs this session
        if response.status_code not in (409, 422):
            response.raise_for_status()
        logger.info("Bridge session %s started on %s", self._bridge.session, self._bridge.url)

        await self.poll_once()
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = self._tasks.spawn(self._poll_loop(), name=f"bridge-poll-{self._platform}")

    async def close(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        http = self._http
        if http is None:
            return
        self._http = None
        self._status = None
        try:
            response = await http.post(f"{self._session_url}/stop", json={})
            response.raise_for_status()
        finally:
            await http.aclose()

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._bridge.poll_interval_s)
            try:
                await self.poll_once()
            except Exception as exc:  # noqa: BLE001 - polling continues through unexpected replies
                logger.error("Bridge status poll crashed: %s", exc, exc_info=True)

    async def poll_once(self) -> None:
        """Fetch the bridge session status and emit events for the change."""
        try:
            data = await self._get_json(self._session_url)
            status = str(data.get("status") or STATUS_STOPPED)
        except (httpx.HTTPError, RuntimeError, ValueError) as exc:
            # ValueError: non-JSON body, e.g. a proxy error page
            logger.warning("Bridge status poll failed: %s", exc)
            data = {}
            status = STATUS_UNREACHABLE

        previous = self._status
        self._status = status

        if status == STATUS_SCAN_QR:
            if previous == STATUS_WORKING:
                self._identity = None
                self._emit(ClientEvent(type="disconnected", reason=LOGOUT_REASON))
            await self._refresh_qr()
            return

        if status == STATUS_WORKING:
            if previous != STATUS_WORKING:
                self._last_qr = None
                self._identity = self._parse_identity(data.get("me"))
                self._emit(ClientEvent(type="authenticated"))
                self._emit(ClientEvent(type="ready"))
            return

        if status in (STATUS_FAILED, STATUS_STOPPED, STATUS_UNREACHABLE):
            if previous == STATUS_WORKING:
                self._emit(ClientEvent(type="disconnected", reason=status))
            elif status == STATUS_FAILED and previous != STATUS_FAILED:
                self._emit(ClientEvent(type="auth_failure", reason="Bridge session failed before authentication"))

    async def _refresh_qr(self) -> None:
        try:
            data = await self._get_json(f"/api/{self._bridge.session}/auth/qr", params={"format": "raw"})
        except (httpx.HTTPError, RuntimeError, ValueError) as exc:
            logger.warning("Bridge QR fetch failed: %s", exc)
            return
        qr = data.get("value")
        if isinstance(qr, str) and qr and qr != self._last_qr:
            self._last_qr = qr
            self._emit(ClientEvent(type="qr", qr=qr))

    def _parse_identity(self, raw: object) -> ClientIdentity | None:
        if not isinstance(raw, dict) or not raw.get("id"):
            return None
        name = raw.get("pushName")
        return ClientIdentity(id=str(raw["id"]), name=str(name) if name else None, platform=self._platform)

    def handle_webhook(self, payload: dict[str, object]) -> None:  # guard: loose-dict - webhook body is provider-defined.
        """Translate a bridge webhook "message" event into a client event."""
        if payload.get("event") != "message":
            return
        message = payload.get("payload")
        if not isinstance(message, dict) or message.get("fromMe"):
            return
        self._emit(
            ClientEvent(
                type="message",
                sender=str(message.get("from") or ""),
                body=str(message.get("body") or "[Media]"),
                timestamp=str(message.get("timestamp") or ""),
            )
        )

    async def get_state(self) -> str:
        data = await self._get_json(self._session_url)
        status = str(data.get("status") or STATUS_STOPPED)
        return _STATE_BY_STATUS.get(status, STATE_DISCONNECTED)

    async def send_text(self, chat_id: str, text: str) -> str:
        payload: dict[str, object] = {  # guard: loose-dict - outbound bridge request payload.
            "session": self._bridge.session,
            "chatId": chat_id,
            "text": text,
        }
        response = await self._post_json("/api/sendText", payload)
        return self._extract_message_id(response)

    async def send_file(self, chat_id: str, file_path: str, caption: Optional[str] = None) -> str:
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        payload: dict[str, object] = {  # guard: loose-dict - media payload shape is provider-defined.
            "session": self._bridge.session,
            "chatId": chat_id,
            "file": {
                "mimetype": mime_type,
                "filename": path.name,
                "data": base64.b64encode(await asyncio.to_thread(path.read_bytes)).decode("ascii"),
            },
        }
        if caption:
            payload["caption"] = caption
        response = await self._post_json("/api/sendFile", payload)
        return self._extract_message_id(response)
