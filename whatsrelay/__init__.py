"""whatsrelay - WhatsApp notification relay with backend failover."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("whatsrelay")
except PackageNotFoundError:
    # Source checkout without installed metadata
    __version__ = "0.0.0"

__all__ = ["__version__"]
