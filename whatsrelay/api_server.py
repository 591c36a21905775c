"""API server for HTTP/WebSocket access.

Thin glue over the failover orchestrator: every route maps to one
orchestrator call, message log access, or template lookup.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional
from uuid import uuid4

import uvicorn
from fastapi import Body, FastAPI, File, Form, Query, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from instrukt_ai_logging import get_logger

from whatsrelay import __version__
from whatsrelay.api_models import (
    ErrorResponseDTO,
    HealthDTO,
    MessageStatsDTO,
    NotificationEventDTO,
    QrCodeDTO,
    SendMessageRequest,
    SendMessageResponseDTO,
    SendReportResponseDTO,
    StatusDTO,
    TemplateDTO,
)
from whatsrelay.config import ApiConfig, config
from whatsrelay.constants import ALLOWED_UPLOAD_PREFIXES, ALLOWED_UPLOAD_TYPES
from whatsrelay.core.errors import (
    AlreadyConnected,
    InvalidRecipient,
    NoActiveBackend,
    NoPairingAvailable,
    NotReady,
    RelayError,
    ServiceUnavailable,
)
from whatsrelay.core.events import NotificationEvents, NotificationPayload
from whatsrelay.core.failover import FailoverOrchestrator
from whatsrelay.core.message_log import STATUS_FAILED, STATUS_SENT, MessageLog
from whatsrelay.core.models import asdict_exclude_none
from whatsrelay.core.templates import DEFAULT_TEMPLATE, TEMPLATES, get_template, process_template
from whatsrelay.utils import now_iso

logger = get_logger(__name__)

API_WS_SEND_TIMEOUT_S = 2.0
API_STARTUP_POLL_S = 0.1
API_STARTUP_RETRIES = 50
UPLOAD_CHUNK_BYTES = 1024 * 1024

_STATUS_BY_ERROR: tuple[tuple[type[RelayError], int], ...] = (
    (NotReady, 503),
    (NoActiveBackend, 503),
    (ServiceUnavailable, 503),
    (AlreadyConnected, 409),
    (NoPairingAvailable, 409),
    (InvalidRecipient, 400),
)


def error_response(exc: Exception) -> JSONResponse:
    """Map an exception to the standard `{success: false, error}` body."""
    status_code = 500
    code: Optional[str] = None
    hint: Optional[str] = None
    if isinstance(exc, RelayError):
        code = exc.code
        for error_type, mapped in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                status_code = mapped
                break
    if isinstance(exc, ServiceUnavailable):
        hint = exc.hint
    body = ErrorResponseDTO(error=str(exc), code=code, hint=hint)
    return JSONResponse(body.model_dump(exclude_none=True), status_code=status_code)


def _bad_request(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(ErrorResponseDTO(error=message).model_dump(exclude_none=True), status_code=status_code)


def _is_allowed_upload(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    return content_type in ALLOWED_UPLOAD_TYPES or content_type.startswith(ALLOWED_UPLOAD_PREFIXES)


class APIServer:
    """HTTP + WebSocket server in front of the failover orchestrator."""

    def __init__(
        self,
        orchestrator: FailoverOrchestrator,
        message_log: MessageLog | None = None,
        settings: ApiConfig | None = None,
        lab_name: str | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.task_registry = orchestrator.tasks
        self.message_log = message_log or MessageLog()
        self.settings = settings or config.api
        self.lab_name = lab_name or config.messages.lab_name
        self.uploads_dir = Path(self.settings.uploads_dir)
        self.app = FastAPI(title="whatsrelay API", version=__version__)
        self.server: uvicorn.Server | None = None
        self.server_task: asyncio.Task[object] | None = None
        self._ws_clients: set[WebSocket] = set()
        self._setup_routes()

        orchestrator.channel.subscribe_all(self._handle_notification)

    # ==================== Helpers ====================

    def _template_data(
        self,
        patient_name: Optional[str],
        test_name: Optional[str],
        report_date: Optional[str],
        doctor_name: Optional[str],
    ) -> dict[str, Optional[str]]:
        return {
            "patient_name": patient_name,
            "test_name": test_name,
            "report_date": report_date,
            "doctor_name": doctor_name,
            "lab_name": self.lab_name,
        }

    def _log_failure(self, phone_number: str, text: str, exc: Exception, **extra: object) -> None:
        self.message_log.log_message(
            {
                "id": f"failed-{uuid4()}",
                "phone_number": phone_number,
                "message": text,
                "status": STATUS_FAILED,
                "error": str(exc),
                **extra,
            }
        )

    async def _save_upload(self, report: UploadFile) -> Path | JSONResponse:
        """Validate and persist an uploaded report. Returns an error response on rejection."""
        if not _is_allowed_upload(report.content_type):
            return _bad_request("Only PDF and image files are allowed")
        limit = self.settings.max_upload_bytes
        if report.size is not None and report.size > limit:
            return _bad_request("File too large", status_code=413)

        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        filename = Path(report.filename or "report").name
        path = self.uploads_dir / f"{uuid4()}-{filename}"
        written = 0
        with path.open("wb") as out:
            while chunk := await report.read(UPLOAD_CHUNK_BYTES):
                written += len(chunk)
                if written > limit:
                    break
                out.write(chunk)
        if written > limit:
            path.unlink(missing_ok=True)
            return _bad_request("File too large", status_code=413)
        logger.debug("Saved uploaded report to %s (%d bytes)", path, written)
        return path

    # ==================== Routes ====================

    def _setup_routes(self) -> None:
        """Set up all HTTP endpoints."""

        @self.app.get("/health")
        async def health() -> HealthDTO:  # pyright: ignore
            """Health check endpoint."""
            return HealthDTO(timestamp=now_iso())

        @self.app.get("/api/status")
        async def status() -> StatusDTO:  # pyright: ignore
            return StatusDTO(whatsapp_connected=self.orchestrator.is_ready(), timestamp=now_iso())

        @self.app.post("/api/send-message", response_model=None)
        async def send_message(  # pyright: ignore
            request: SendMessageRequest,
        ) -> SendMessageResponseDTO | JSONResponse:
            """Fill the template and send it as a text message."""
            if not request.phone_number or not request.message:
                return _bad_request("Phone number and message are required")

            processed = process_template(
                request.message,
                self._template_data(request.patient_name, request.test_name, request.report_date, request.doctor_name),
            )
            try:
                message_id = await self.orchestrator.send_message(request.phone_number, processed)
            except Exception as exc:
                logger.error("Error sending message: %s", exc)
                self._log_failure(request.phone_number, processed, exc, patient_name=request.patient_name)
                return error_response(exc)

            self.message_log.log_message(
                {
                    "id": message_id,
                    "phone_number": request.phone_number,
                    "message": processed,
                    "status": STATUS_SENT,
                    "patient_name": request.patient_name,
                    "test_name": request.test_name,
                }
            )
            return SendMessageResponseDTO(message_id=message_id, processed_message=processed)

        @self.app.post("/api/send-report", response_model=None)
        async def send_report(  # pyright: ignore
            phone_number: Optional[str] = Form(None),
            message: Optional[str] = Form(None),
            patient_name: Optional[str] = Form(None),
            test_name: Optional[str] = Form(None),
            report_date: Optional[str] = Form(None),
            doctor_name: Optional[str] = Form(None),
            report: Optional[UploadFile] = File(None),
        ) -> SendReportResponseDTO | JSONResponse:
            """Send a templated message with an optional PDF or image report."""
            if not phone_number or not message:
                return _bad_request("Phone number and message are required")

            file_path: Path | None = None
            if report is not None and report.filename:
                saved = await self._save_upload(report)
                if isinstance(saved, JSONResponse):
                    return saved
                file_path = saved

            processed = process_template(
                message,
                self._template_data(patient_name, test_name, report_date, doctor_name),
            )
            delivered = False
            try:
                result = await self.orchestrator.send_message_with_attachment(
                    phone_number,
                    processed,
                    str(file_path) if file_path else None,
                )
                delivered = result.attachment_delivered
            except Exception as exc:
                logger.error("Error sending report: %s", exc)
                self._log_failure(phone_number, processed, exc, has_attachment=file_path is not None)
                return error_response(exc)
            finally:
                # Delivered files are removed by the backend after the send settles
                if file_path is not None and not delivered:
                    file_path.unlink(missing_ok=True)

            self.message_log.log_message(
                {
                    "id": result.message_id,
                    "phone_number": phone_number,
                    "message": processed,
                    "status": STATUS_SENT,
                    "patient_name": patient_name,
                    "test_name": test_name,
                    "has_attachment": result.attachment_delivered,
                }
            )
            if result.attachment_dropped:
                logger.warning("Report for %s sent without its attachment", phone_number)
            return SendReportResponseDTO(
                message_id=result.message_id,
                processed_message=processed,
                attachment_sent=result.attachment_delivered,
                attachment_dropped=result.attachment_dropped,
            )

        @self.app.get("/api/messages")
        async def list_messages(  # pyright: ignore
            limit: int = Query(50, ge=0),
        ) -> list[dict[str, object]]:  # guard: loose-dict - API boundary
            return self.message_log.get_messages(limit)

        @self.app.get("/api/messages/stats")
        async def message_stats() -> MessageStatsDTO:  # pyright: ignore
            return MessageStatsDTO(**self.message_log.get_stats())

        @self.app.get("/api/templates/{name}")
        async def template(name: str) -> TemplateDTO:  # pyright: ignore
            resolved = name if name in TEMPLATES else DEFAULT_TEMPLATE
            return TemplateDTO(name=resolved, template=get_template(resolved))

        @self.app.post("/api/generate-qr", response_model=None)
        async def generate_qr() -> QrCodeDTO | JSONResponse:  # pyright: ignore
            try:
                qr = await self.orchestrator.generate_qr()
            except Exception as exc:
                logger.error("QR generation failed: %s", exc)
                return error_response(exc)
            return QrCodeDTO(qr=qr)

        @self.app.get("/api/whatsapp/qr")
        async def current_qr() -> QrCodeDTO:  # pyright: ignore
            return QrCodeDTO(qr=self.orchestrator.get_qr_code())

        @self.app.get("/api/whatsapp/info")
        async def client_info() -> dict[str, object]:  # pyright: ignore  # guard: loose-dict - API boundary
            return asdict_exclude_none(await self.orchestrator.get_client_info())

        @self.app.get("/api/whatsapp/service-info")
        async def service_info() -> dict[str, object]:  # pyright: ignore  # guard: loose-dict - API boundary
            return asdict_exclude_none(self.orchestrator.get_service_info())

        @self.app.get("/api/whatsapp/connection")
        async def connection() -> dict[str, object]:  # pyright: ignore  # guard: loose-dict - API boundary
            return asdict_exclude_none(await self.orchestrator.check_connection())

        @self.app.post("/api/whatsapp/restart", response_model=None)
        async def restart() -> dict[str, object] | JSONResponse:  # pyright: ignore  # guard: loose-dict
            try:
                ack = await self.orchestrator.force_restart()
            except Exception as exc:
                logger.error("Restart failed: %s", exc, exc_info=True)
                return error_response(exc)
            return asdict_exclude_none(ack)

        @self.app.post("/api/bridge/webhook")
        async def bridge_webhook(  # pyright: ignore
            payload: dict[str, object] = Body(...),  # guard: loose-dict - bridge webhook body
        ) -> dict[str, bool]:
            """Inbound events pushed by the WhatsApp bridge."""
            return {"accepted": self.orchestrator.handle_webhook(payload)}

        @self.app.websocket("/ws")
        async def websocket_endpoint(  # pyright: ignore
            websocket: WebSocket,
        ) -> None:
            """WebSocket endpoint for push updates."""
            await self._handle_websocket(websocket)

    # ==================== WebSocket ====================

    def _current_status(self) -> NotificationEventDTO:
        info = self.orchestrator.get_service_info()
        backend = info.active_backend_kind.value if info.active_backend_kind else None
        return NotificationEventDTO(
            event=NotificationEvents.STATUS_CHANGED,
            data={"is_ready": info.is_ready, "backend": backend, "timestamp": now_iso()},
        )

    async def _handle_websocket(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._ws_clients.add(websocket)
        logger.info("WebSocket client connected")
        try:
            await websocket.send_json(self._current_status().model_dump())
            while True:
                # Clients only listen; inbound frames are ignored
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info("WebSocket client disconnected")
        except Exception as e:
            logger.error("WebSocket error: %s", e, exc_info=True)
        finally:
            self._ws_clients.discard(websocket)

    def _handle_notification(self, event: str, payload: NotificationPayload) -> None:
        if not self._ws_clients:
            return
        self._broadcast_payload(event, NotificationEventDTO(event=event, data=payload).model_dump())

    def _broadcast_payload(self, event: str, payload: dict[str, object]) -> None:  # guard: loose-dict - WS payload
        """Send a WS payload to all connected clients."""
        for ws in list(self._ws_clients):

            async def _send_with_timeout(client: WebSocket = ws) -> None:
                try:
                    await asyncio.wait_for(client.send_json(payload), timeout=API_WS_SEND_TIMEOUT_S)
                except TimeoutError:
                    logger.warning("WebSocket send timeout, removing client")
                    self._ws_clients.discard(client)
                    await self._close_ws(client)
                except (OSError, ConnectionError, RuntimeError) as exc:
                    logger.info("WebSocket connection lost: %s", exc)
                    self._ws_clients.discard(client)
                    await self._close_ws(client)

            self.task_registry.spawn(_send_with_timeout(), name=f"ws-broadcast-{event}")

    async def _close_ws(self, websocket: WebSocket) -> None:
        """Close a WebSocket connection, ignoring errors from an already dead socket."""
        try:
            await asyncio.wait_for(websocket.close(), timeout=1.0)
        except (TimeoutError, OSError, RuntimeError) as exc:
            logger.debug("Ignoring WebSocket close error: %s", exc)

    # ==================== Lifecycle ====================

    async def start(self, host: str | None = None, port: int | None = None) -> None:
        """Start uvicorn in a background task and wait until it is listening."""
        if self.server_task and not self.server_task.done():
            logger.warning("API server already running; skipping start")
            return

        server_config = uvicorn.Config(
            self.app,
            host=host or self.settings.host,
            port=port or self.settings.port,
            log_level="warning",
        )
        self.server = uvicorn.Server(server_config)
        server = self.server
        # Avoid uvicorn's signal handling; main() owns SIGINT/SIGTERM.
        serve_coro = server._serve() if hasattr(server, "_serve") else server.serve()
        self.server_task = asyncio.create_task(serve_coro)

        for _ in range(API_STARTUP_RETRIES):
            if server.started:
                break
            if self.server_task.done():
                exc = self.server_task.exception()
                raise RuntimeError("API server exited during startup") from exc
            await asyncio.sleep(API_STARTUP_POLL_S)
        if not server.started:
            raise TimeoutError("API server failed to start within timeout")

        logger.info("API server listening on %s:%s", server_config.host, server_config.port)

    async def stop(self) -> None:
        """Stop the API server."""
        logger.info("API server stopping")
        self.orchestrator.channel.unsubscribe(self._handle_notification)
        for ws in list(self._ws_clients):
            await self._close_ws(ws)
        self._ws_clients.clear()

        if self.server is not None:
            self.server.should_exit = True
        if self.server_task is not None:
            try:
                await asyncio.wait_for(self.server_task, timeout=5.0)
            except TimeoutError:
                logger.warning("API server did not stop within timeout; cancelling")
                self.server_task.cancel()
        logger.info("API server stopped")
