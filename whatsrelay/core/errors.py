"""Error taxonomy for backends and the failover orchestrator.

Setup and teardown errors (`BackendInitializationFailed`, `BackendTeardownFailed`)
are absorbed by the orchestrator and turned into fallback transitions or log
entries. Everything raised from send and pairing operations reaches the caller.
"""


class RelayError(Exception):
    """Base exception for whatsrelay errors."""

    code = "relay_error"


class NotReady(RelayError):
    """The active backend has no open, authenticated connection."""

    code = "not_ready"

    def __init__(self, message: str = "WhatsApp client is not ready") -> None:
        super().__init__(message)


class NoActiveBackend(RelayError):
    """No backend has been selected yet."""

    code = "no_active_backend"

    def __init__(self, message: str = "No WhatsApp service is ready") -> None:
        super().__init__(message)


class AlreadyConnected(RelayError):
    """Pairing requested while the session is already connected."""

    code = "already_connected"

    def __init__(self, message: str = "WhatsApp is already connected") -> None:
        super().__init__(message)


class NoPairingAvailable(RelayError):
    """No fresh pairing challenge arrived while generating a QR code."""

    code = "no_pairing_available"


class AttachmentUnsupported(RelayError):
    """The backend cannot deliver attachments."""

    code = "attachment_unsupported"


class ServiceUnavailable(RelayError):
    """Raised by the degraded backend for every send and pairing operation."""

    code = "service_unavailable"

    def __init__(self, message: str, hint: str) -> None:
        super().__init__(f"{message} {hint}".strip())
        self.hint = hint


class BackendInitializationFailed(RelayError):
    """A backend could not set up its session."""

    code = "backend_initialization_failed"


class BackendTeardownFailed(RelayError):
    """Closing a backend connection failed. Always logged, never propagated."""

    code = "backend_teardown_failed"


class InvalidRecipient(RelayError, ValueError):
    """Recipient identifier has no usable digits."""

    code = "invalid_recipient"


class SendFailed(RelayError):
    """The session client rejected or failed an outbound message."""

    code = "send_failed"
