"""Human-readable rendering of recovery results and deletion listings."""

from __future__ import annotations

from datetime import datetime, tzinfo
from typing import Final

from msgvault.domain.archive_constants import DELETION_PREVIEW_CHARS
from msgvault.domain.models import (
    DeletionPage,
    DeletionRecord,
    RecoveryResult,
    RecoveryStatus,
)

TIME_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S %Z"

_STATUS_LINES: Final[dict[RecoveryStatus, str]] = {
    RecoveryStatus.RECOVERED: "Status: recovered",
    RecoveryStatus.EXPIRED: "Status: expired",
    RecoveryStatus.NOT_FOUND: "Status: not found",
}


def short_id(jid: str) -> str:
    """Drop the server part of a chat or sender identifier."""
    return jid.split("@", 1)[0]


def format_relative_age(then: datetime, now: datetime) -> str:
    """Render an age as ``Just now``, ``5m ago``, ``3h ago`` or ``2d ago``."""
    elapsed = max((now - then).total_seconds(), 0)
    minutes = int(elapsed // 60)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"


def text_preview(body: str, limit: int = DELETION_PREVIEW_CHARS) -> str:
    if len(body) <= limit:
        return body
    return body[:limit] + "..."


def _format_time(value: datetime, tz: tzinfo) -> str:
    return value.astimezone(tz).strftime(TIME_FORMAT)


def format_recovery_report(result: RecoveryResult, tz: tzinfo) -> str:
    """Operator-facing summary of a recovery attempt.

    Example:
        Message Recovery
        Deletion ID: del_1718000000000_a1b2c3
        Sender: 15550001
        ...
        Status: recovered
    """
    record = result.record
    if record is None:
        return f"{result.message}\n{_STATUS_LINES[result.status]}"

    lines = [
        "Message Recovery",
        f"Deletion ID: {record.id}",
        f"Sender: {short_id(record.sender)}",
        f"Chat: {short_id(record.chat_id)}",
        f"Original Time: {_format_time(record.original_timestamp, tz)}",
        f"Deleted Time: {_format_time(record.deleted_timestamp, tz)}",
    ]
    if result.text:
        lines.append(f'Recovered Text: "{result.text}"')
    if record.has_media:
        media_type = record.media_type or "media"
        if result.media_bytes is not None:
            lines.append(f"Recovered Media: {media_type}")
        else:
            lines.append(f"Media Unavailable: {media_type}")
    lines.append(result.message)
    lines.append(_STATUS_LINES[result.status])
    return "\n".join(lines)


def _format_entry(index: int, record: DeletionRecord, now: datetime) -> list[str]:
    lines = [
        f"{index}. {record.id}",
        f"   {short_id(record.sender)} - "
        f"{format_relative_age(record.deleted_timestamp, now)}",
    ]
    if record.message_body:
        lines.append(f'   "{text_preview(record.message_body)}"')
    if record.has_media:
        lines.append(f"   Media: {record.media_type or 'unknown'}")
    return lines


def format_deletion_list(page: DeletionPage, now: datetime) -> str:
    if page.total == 0:
        return "No deleted messages detected"

    lines = [
        "Deleted Messages",
        f"Total: {page.total} | Filtered: {page.filtered}",
        f"Showing: {len(page.records)}",
    ]
    if page.filter is not None:
        lines.append(f"Filter: {page.filter.value}")

    for index, record in enumerate(page.records, start=1):
        lines.append("")
        lines.extend(_format_entry(index, record, now))
    return "\n".join(lines)


def format_redelivery_text(result: RecoveryResult) -> str:
    sender = short_id(result.record.sender) if result.record else "unknown"
    return f"Recovered message from {sender}:\n{result.text}"


__all__ = [
    "format_deletion_list",
    "format_recovery_report",
    "format_redelivery_text",
    "format_relative_age",
    "short_id",
    "text_preview",
]
