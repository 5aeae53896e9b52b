"""Replay of newline-delimited JSON transport events into the service.

Each line is one JSON object::

    {"type": "message", "event": {...}, "is_outgoing": false,
     "media_base64": "..."}
    {"type": "deletion", "payload": {"id": "...", "remoteJid": "..."}}

Lines without ``type`` are treated as message events when they carry an
``id`` and ``chat_id`` at the top level.
"""

from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from msgvault.config.logging_config import get_logger
from msgvault.domain.models import InboundMessageEvent
from msgvault.workers.archival_service import ArchivalService

logger = get_logger(__name__)


@dataclass(slots=True)
class ReplayResult:
    """Counts from one replay run."""

    messages_accepted: int = 0
    messages_rejected: int = 0
    deletions_queued: int = 0
    invalid_lines: int = 0


def dispatch_record(
    service: ArchivalService, record: dict[str, Any], result: ReplayResult
) -> None:
    kind = record.get("type") or "message"
    if kind == "deletion":
        result.deletions_queued += service.on_deletion(record.get("payload"))
        return

    if kind != "message":
        result.invalid_lines += 1
        logger.warning("replay_unknown_record_type", type=kind)
        return

    raw_event = record.get("event", record)
    try:
        event = InboundMessageEvent.model_validate(raw_event)
    except PydanticValidationError as exc:
        result.invalid_lines += 1
        logger.warning("replay_invalid_event", errors=exc.error_count())
        return

    media_bytes = None
    encoded = record.get("media_base64")
    if encoded:
        try:
            media_bytes = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("replay_invalid_media", message_id=event.id)

    accepted = service.on_message(
        event,
        is_outgoing=bool(record.get("is_outgoing", False)),
        media_bytes=media_bytes,
    )
    if accepted:
        result.messages_accepted += 1
    else:
        result.messages_rejected += 1


def replay_line(
    service: ArchivalService, line: str, result: ReplayResult, line_number: int = 0
) -> None:
    if not line.strip():
        return
    try:
        record = json.loads(line)
    except json.JSONDecodeError as exc:
        result.invalid_lines += 1
        logger.warning("replay_line_invalid_json", line=line_number, error=str(exc))
        return
    if not isinstance(record, dict):
        result.invalid_lines += 1
        return
    dispatch_record(service, record, result)


def replay_lines(service: ArchivalService, lines: Iterable[str]) -> ReplayResult:
    """Feed every JSON line to the service; bad lines are skipped."""
    result = ReplayResult()
    for line_number, line in enumerate(lines, start=1):
        replay_line(service, line, result, line_number)

    logger.info(
        "replay_completed",
        messages_accepted=result.messages_accepted,
        messages_rejected=result.messages_rejected,
        deletions_queued=result.deletions_queued,
        invalid_lines=result.invalid_lines,
    )
    return result


__all__ = ["ReplayResult", "dispatch_record", "replay_line", "replay_lines"]
