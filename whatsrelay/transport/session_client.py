"""Session client contract that backends drive.

A session client owns one connection to the WhatsApp network (in practice: one
session of an external bridge process). Backends treat it as an opaque
capability provider and only react to the lifecycle events it emits.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Literal, Optional, Protocol, runtime_checkable

ClientEventType = Literal["qr", "authenticated", "ready", "auth_failure", "disconnected", "message"]


@dataclass
class ClientEvent:
    """Lifecycle event emitted by a session client."""

    type: ClientEventType
    qr: Optional[str] = None
    reason: Optional[str] = None
    sender: Optional[str] = None
    body: Optional[str] = None
    timestamp: Optional[str] = None


@dataclass
class ClientIdentity:
    """Account the session is linked to."""

    id: str
    name: Optional[str] = None
    platform: Optional[str] = None


ClientEventHandler = Callable[[ClientEvent], None]


@runtime_checkable
class SessionClient(Protocol):
    """Capabilities every session client provides."""

    def on(self, handler: ClientEventHandler) -> None:
        """Register a handler for every lifecycle event of this client."""
        ...

    async def start(self) -> None:
        """Open the session. Raises when the session cannot be started."""
        ...

    async def close(self) -> None:
        """Tear the session down locally. Idempotent."""
        ...

    async def get_state(self) -> str:
        """Live connection state, "CONNECTED" when usable."""
        ...

    async def send_text(self, chat_id: str, text: str) -> str:
        """Send a text message and return the network message id."""
        ...

    async def send_file(self, chat_id: str, file_path: str, caption: Optional[str] = None) -> str:
        """Send a media message and return the network message id."""
        ...

    @property
    def identity(self) -> Optional[ClientIdentity]:
        """Linked account, known once the session is ready."""
        ...


SessionClientFactory = Callable[[], SessionClient]
