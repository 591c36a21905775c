"""whatsrelay service entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import os
import signal
import sys

from instrukt_ai_logging import get_logger

from whatsrelay.api_server import APIServer
from whatsrelay.config import config
from whatsrelay.core.failover import FailoverOrchestrator
from whatsrelay.core.message_log import MessageLog
from whatsrelay.logging_config import setup_logging

logger = get_logger(__name__)

DEFAULT_LOG_LEVEL = "INFO"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="whatsrelay", description="WhatsApp notification relay")
    parser.add_argument("--host", default=config.api.host, help="Bind address (default: %(default)s)")
    parser.add_argument("--port", type=int, default=config.api.port, help="Bind port (default: %(default)s)")
    parser.add_argument(
        "--log-level",
        default=os.getenv("WHATSRELAY_LOG_LEVEL", DEFAULT_LOG_LEVEL),
        help="Log level (default: %(default)s)",
    )
    return parser.parse_args(argv)


async def run(host: str, port: int) -> None:
    """Serve the API and keep the WhatsApp session alive until a shutdown signal."""
    orchestrator = FailoverOrchestrator()
    message_log = MessageLog()
    message_log.attach(orchestrator.channel)
    api = APIServer(orchestrator, message_log)
    shutdown_event = asyncio.Event()

    def signal_handler(signum: int, _frame: object) -> None:
        """Handle termination signals."""
        logger.info("Received %s signal...", signal.Signals(signum).name)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        await api.start(host, port)
        await orchestrator.initialize()
        await shutdown_event.wait()
    finally:
        try:
            await api.stop()
        except Exception as e:
            logger.error("Error during API server stop: %s", e)
        await orchestrator.shutdown()


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(level=args.log_level)
    logger.info("Starting whatsrelay on %s:%s", args.host, args.port)
    try:
        asyncio.run(run(args.host, args.port))
    except KeyboardInterrupt:
        logger.info("Received interrupt signal...")
    except Exception as e:
        logger.error("Unexpected error: %s", e, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
