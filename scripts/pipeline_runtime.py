"""Common runtime helpers for archiver scripts."""

from __future__ import annotations

import asyncio
import signal

from msgvault.config.logging_config import get_logger, setup_logging
from msgvault.config.settings import Settings

logger = get_logger(__name__)


def create_shutdown_event() -> asyncio.Event:
    return asyncio.Event()


def install_signal_handlers(
    stop_event: asyncio.Event, loop: asyncio.AbstractEventLoop | None = None
) -> None:
    """Register SIGTERM/SIGINT handlers for graceful shutdown."""

    target_loop = loop or asyncio.get_running_loop()

    def _handler(signum: signal.Signals) -> None:
        logger.info("shutdown_signal_received", signal=signum.name)
        stop_event.set()

    for signum in (signal.SIGTERM, signal.SIGINT):
        target_loop.add_signal_handler(signum, _handler, signum)


def initialize_logging(settings: Settings, *, json_logs: bool = False) -> None:
    """Initialize structlog-based logging for scripts."""

    use_json = json_logs or settings.json_logs
    setup_logging(log_level=settings.log_level, json_logs=use_json)
    logger.info("logging_initialized", level=settings.log_level, json_logs=use_json)


__all__ = [
    "create_shutdown_event",
    "initialize_logging",
    "install_signal_handlers",
]
