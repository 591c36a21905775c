"""whatsrelay logging configuration.

whatsrelay uses the shared InstruktAI logging standard (`instrukt_ai_logging`).
Logs land in the canonical per-app location managed by that library; query them
with `instruktai-python-logs whatsrelay --since 10m`.
"""

from __future__ import annotations

import os
from typing import Optional

from instrukt_ai_logging import configure_logging


def setup_logging(level: Optional[str] = None) -> None:
    """Configure whatsrelay logging.

    Args:
        level: Optional override for `WHATSRELAY_LOG_LEVEL`.
    """
    if level:
        os.environ["WHATSRELAY_LOG_LEVEL"] = level

    configure_logging("whatsrelay")
