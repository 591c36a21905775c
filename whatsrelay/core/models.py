"""Data models shared by backends, the orchestrator and the API."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Optional

from whatsrelay.utils import now_iso


def asdict_exclude_none(obj: object) -> dict[str, object]:
    """Convert dataclass to dict, recursively excluding None values."""
    if isinstance(obj, dict):
        return {k: v for k, v in obj.items() if v is not None}

    result: dict[str, object] = asdict(obj)  # type: ignore[call-overload]  # asdict accepts dataclass instances

    def _exclude_none(data: object) -> object:
        if isinstance(data, dict):
            return {k: _exclude_none(v) for k, v in data.items() if v is not None}  # type: ignore[misc]
        if isinstance(data, list):
            return [_exclude_none(item) for item in data]
        if isinstance(data, Enum):
            return data.value
        return data

    return _exclude_none(result)  # type: ignore[return-value]


class BackendKind(str, Enum):
    """Backend variants in fallback priority order."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    DEGRADED = "degraded"


FALLBACK_ORDER: tuple[BackendKind, ...] = (BackendKind.PRIMARY, BackendKind.SECONDARY, BackendKind.DEGRADED)


class SessionState(str, Enum):
    """Per-backend session lifecycle."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    PAIRING_PENDING = "pairing_pending"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


@dataclass(frozen=True)
class Transitioning:
    """Orchestrator is mid-fallback towards target."""

    target: BackendKind


@dataclass
class SendResult:
    """Outcome of an attachment send.

    attachment_dropped is set when the active backend could not carry the
    attachment and only the text went out.
    """

    message_id: str
    attachment_delivered: bool
    attachment_dropped: bool = False


@dataclass
class ConnectionSnapshot:
    connected: bool
    state: Optional[str] = None
    timestamp: str = field(default_factory=now_iso)
    error: Optional[str] = None
    message: Optional[str] = None
    recommendation: Optional[str] = None
    backend: Optional[str] = None


@dataclass
class ClientInfo:
    """Identity of the account behind the session, or why it is unavailable."""

    status: str  # "ready", "not_ready", "error" or "limited"
    name: Optional[str] = None
    id: Optional[str] = None
    platform: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None
    recommendation: Optional[str] = None
    timestamp: Optional[str] = None
    backend: Optional[str] = None
    attempt_count: Optional[int] = None


@dataclass
class RestartAck:
    message: str
    note: Optional[str] = None


@dataclass
class ServiceInfo:
    active_backend_kind: Optional[BackendKind]
    is_ready: bool
    attempt_count: int
    max_attempts: int
