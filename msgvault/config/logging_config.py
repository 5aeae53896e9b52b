"""structlog setup shared by the archiver and the operator CLI.

Log lines go to stderr so operator reports on stdout stay clean. Console
rendering is for interactive use, JSON lines for the long-running archiver.
Every module obtains its logger through :func:`get_logger` and logs
snake_case event names with keyword context.
"""

import logging
import sys
from typing import Any, Final

import structlog
from structlog.types import EventDict, Processor

APP_NAME: Final[str] = "msgvault"
MAX_LOGGED_TEXT_CHARS: Final[int] = 200


def add_app_context(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict["app"] = APP_NAME
    return event_dict


def scrub_payloads(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Keep attachment bytes and long message bodies out of log lines.

    Bytes values are replaced by their length; strings longer than
    ``MAX_LOGGED_TEXT_CHARS`` are cut and marked.
    """
    for key, value in event_dict.items():
        if key == "event":
            continue
        if isinstance(value, bytes | bytearray):
            event_dict[key] = f"<{len(value)} bytes>"
        elif isinstance(value, str) and len(value) > MAX_LOGGED_TEXT_CHARS:
            event_dict[key] = value[:MAX_LOGGED_TEXT_CHARS] + "...(truncated)"
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        add_app_context,
        scrub_payloads,
    ]


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
) -> None:
    """Route stdlib logging and structlog through one processor chain.

    Args:
        log_level: Level name; unknown names fall back to INFO
        json_logs: Render JSON lines instead of the console format
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=numeric_level,
    )

    processors = _shared_processors()
    if json_logs:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Module logger; call with ``__name__``.

    Example:
        >>> get_logger(__name__).info("message_archived", message_id="ABC123")
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def bind_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)
