"""Category partition functions shared by the archive and the media vault.

Archive partitions live at ``<messages>/<YYYY>/<MM>/<category>/<DD>.jsonl``
where the day is computed in the configured timezone. Vault files live at
``<media>/<media-category>/<chat-category>/``. Both derive the chat category
from the same identifier-shape rules.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import date, datetime, timedelta, tzinfo
from pathlib import Path
from typing import Final

from msgvault.domain.archive_constants import (
    LEGACY_PARTITION_SUFFIX,
    PARTITION_SUFFIX,
)
from msgvault.domain.models import ChatCategory, MediaCategory

NEWSLETTER_SUFFIX: Final[str] = "@newsletter"
BROADCAST_SUFFIX: Final[str] = "@broadcast"
STATUS_CHAT_ID: Final[str] = "status@broadcast"
STATUS_MARKER: Final[str] = "@status"
GROUP_SUFFIX: Final[str] = "@g.us"

# Deletion lookups search partitions in this order.
SEARCH_PRIORITY: Final[tuple[ChatCategory, ...]] = (
    ChatCategory.INDIVIDUAL,
    ChatCategory.GROUP,
    ChatCategory.STATUS,
    ChatCategory.BROADCAST,
    ChatCategory.NEWSLETTER,
)


def classify_chat(chat_id: str | None, *, is_broadcast: bool = False) -> ChatCategory:
    """Derive the chat category from the shape of a chat identifier.

    Example:
        >>> classify_chat("1203630@g.us")
        <ChatCategory.GROUP: 'group'>
        >>> classify_chat("status@broadcast")
        <ChatCategory.STATUS: 'status'>
    """
    chat = chat_id or ""
    if NEWSLETTER_SUFFIX in chat:
        return ChatCategory.NEWSLETTER
    if chat == STATUS_CHAT_ID or STATUS_MARKER in chat:
        return ChatCategory.STATUS
    if BROADCAST_SUFFIX in chat:
        return ChatCategory.BROADCAST
    if GROUP_SUFFIX in chat:
        return ChatCategory.GROUP
    if is_broadcast:
        return ChatCategory.BROADCAST
    return ChatCategory.INDIVIDUAL


def partition_day(timestamp: datetime, tz: tzinfo) -> date:
    """Return the calendar day a timestamp falls on in the archive timezone."""
    return timestamp.astimezone(tz).date()


def archive_partition_dir(
    messages_root: Path, day: date, category: ChatCategory
) -> Path:
    return messages_root / f"{day.year:04d}" / f"{day.month:02d}" / category.value


def archive_partition_path(
    messages_root: Path, day: date, category: ChatCategory, *, legacy: bool = False
) -> Path:
    """Return the partition file for a (day, category) pair."""
    suffix = LEGACY_PARTITION_SUFFIX if legacy else PARTITION_SUFFIX
    directory = archive_partition_dir(messages_root, day, category)
    return directory / f"{day.day:02d}{suffix}"


def media_partition_dir(
    media_root: Path, category: MediaCategory, chat_category: ChatCategory
) -> Path:
    return media_root / category.value / chat_category.value


def recent_days(today: date, count: int) -> Iterator[date]:
    """Yield ``count`` days ending today, newest first."""
    for offset in range(max(count, 0)):
        yield today - timedelta(days=offset)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield every day between ``start`` and ``end`` inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


__all__ = [
    "SEARCH_PRIORITY",
    "archive_partition_dir",
    "archive_partition_path",
    "classify_chat",
    "iter_days",
    "media_partition_dir",
    "partition_day",
    "recent_days",
]
