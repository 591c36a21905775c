"""API request/response models for API server."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class SendMessageRequest(BaseModel):  # type: ignore[explicit-any]
    """Request to send a templated notification.

    phone_number and message are checked by the route so that a missing value
    answers 400 with the standard error body.
    """

    model_config = ConfigDict(frozen=True)

    phone_number: str | None = None
    message: str | None = None
    patient_name: str | None = None
    test_name: str | None = None
    report_date: str | None = None
    doctor_name: str | None = None


class SendMessageResponseDTO(BaseModel):  # type: ignore[explicit-any]
    model_config = ConfigDict(frozen=True)

    success: Literal[True] = True
    message_id: str
    processed_message: str


class SendReportResponseDTO(SendMessageResponseDTO):  # type: ignore[explicit-any]
    """Send result for a report; attachment_dropped means only the text went out."""

    attachment_sent: bool
    attachment_dropped: bool = False


class ErrorResponseDTO(BaseModel):  # type: ignore[explicit-any]
    model_config = ConfigDict(frozen=True)

    success: Literal[False] = False
    error: str
    code: str | None = None
    hint: str | None = None


class StatusDTO(BaseModel):  # type: ignore[explicit-any]
    model_config = ConfigDict(frozen=True)

    status: Literal["online"] = "online"
    whatsapp_connected: bool
    timestamp: str


class HealthDTO(BaseModel):  # type: ignore[explicit-any]
    model_config = ConfigDict(frozen=True)

    status: Literal["healthy"] = "healthy"
    timestamp: str


class MessageStatsDTO(BaseModel):  # type: ignore[explicit-any]
    model_config = ConfigDict(frozen=True)

    total: int = Field(..., ge=0)
    sent: int = Field(..., ge=0)
    failed: int = Field(..., ge=0)
    pending: int = Field(..., ge=0)


class TemplateDTO(BaseModel):  # type: ignore[explicit-any]
    model_config = ConfigDict(frozen=True)

    name: str
    template: str


class QrCodeDTO(BaseModel):  # type: ignore[explicit-any]
    """Pairing payload; qr is None when no challenge is pending."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    qr: str | None = None


class NotificationEventDTO(BaseModel):  # type: ignore[explicit-any]
    """WebSocket push: current status on connect, then every notification."""

    model_config = ConfigDict(frozen=True)

    event: str
    data: dict[str, object]  # guard: loose-dict - notification payload
