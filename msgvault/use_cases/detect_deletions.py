"""Detect deletions use case.

Correlates deletion notifications with archived messages and vault media,
then persists a deletion record for every notification that matches.
Notifications with no archived counterpart are logged and counted, never
turned into records.
"""

from __future__ import annotations

import asyncio
import secrets
import string
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, Final

from msgvault.adapters.deletion_log import DeletionLog
from msgvault.adapters.media_vault import MediaVault
from msgvault.adapters.partition_archive import PartitionArchive
from msgvault.adapters.storage_context import StorageContext
from msgvault.config.logging_config import get_logger
from msgvault.domain.archive_constants import (
    DEFAULT_DELETION_BATCH_SIZE,
    DEFAULT_DELETION_LOOKBACK_DAYS,
    DEFAULT_DELETION_POLL_INTERVAL_MS,
    DEFAULT_DELETION_QUEUE_MAX_SIZE,
    DEFAULT_MEDIA_MATCH_WINDOW_SECONDS,
)
from msgvault.domain.exceptions import StorageError
from msgvault.domain.models import (
    ArchivedMessage,
    ContentType,
    DeletionEvent,
    DeletionRecord,
    MediaCategory,
    MediaMatch,
    MediaRecord,
)
from msgvault.observability.metrics import DELETIONS_PROCESSED_TOTAL
from msgvault.observability.tracing import correlation_scope
from msgvault.services.media_classifier import category_for_content_type

logger = get_logger(__name__)

DELETION_ID_PREFIX: Final[str] = "del"
_BASE36_ALPHABET: Final[str] = string.digits + string.ascii_lowercase
_DELETION_ID_SUFFIX_CHARS: Final[int] = 6

# View-once photos and videos are stored apart from their regular category.
_VIEW_ONCE_CONTENT: Final[frozenset[ContentType]] = frozenset(
    {ContentType.IMAGE, ContentType.VIDEO}
)


def new_deletion_id(now: datetime) -> str:
    """Build a ``del_<epoch-ms>_<6 base36 chars>`` identifier."""
    suffix = "".join(
        secrets.choice(_BASE36_ALPHABET) for _ in range(_DELETION_ID_SUFFIX_CHARS)
    )
    return f"{DELETION_ID_PREFIX}_{int(now.timestamp() * 1000)}_{suffix}"


def _event_from_key(item: Mapping[str, Any]) -> DeletionEvent | None:
    key = item.get("key")
    source = key if isinstance(key, Mapping) else item
    message_id = source.get("id") or source.get("message_id")
    if not message_id:
        return None
    chat_id = source.get("remoteJid") or source.get("chat_id")
    return DeletionEvent(message_id=str(message_id), chat_id=chat_id)


def parse_deletion_events(payload: Any) -> list[DeletionEvent]:
    """Normalize every accepted deletion notification shape.

    Accepts a single key ``{id, remoteJid}``, a list of keys, or a wrapper
    ``{keys: [...]}`` / ``{messages: [...]}``. Entries may also nest the key
    under ``key``. Entries without an id are skipped.
    """
    if isinstance(payload, DeletionEvent):
        return [payload]

    items: list[Any]
    if isinstance(payload, Mapping):
        wrapped = payload.get("keys") or payload.get("messages")
        items = list(wrapped) if isinstance(wrapped, list) else [payload]
    elif isinstance(payload, list):
        items = payload
    else:
        return []

    events: list[DeletionEvent] = []
    for item in items:
        if isinstance(item, DeletionEvent):
            events.append(item)
            continue
        if not isinstance(item, Mapping):
            continue
        event = _event_from_key(item)
        if event is None:
            logger.debug("deletion_key_without_id", entry=str(item)[:200])
            continue
        events.append(event)
    return events


class DeletionDetector:
    """Turns deletion notifications into persisted deletion records."""

    def __init__(
        self,
        context: StorageContext,
        archive: PartitionArchive,
        vault: MediaVault,
        deletion_log: DeletionLog,
        *,
        lookback_days: int = DEFAULT_DELETION_LOOKBACK_DAYS,
        match_window_seconds: float = DEFAULT_MEDIA_MATCH_WINDOW_SECONDS,
        require_media_link: bool = False,
        batch_size: int = DEFAULT_DELETION_BATCH_SIZE,
        poll_interval_ms: int = DEFAULT_DELETION_POLL_INTERVAL_MS,
        queue_max_size: int = DEFAULT_DELETION_QUEUE_MAX_SIZE,
    ) -> None:
        self._context = context
        self._archive = archive
        self._vault = vault
        self._deletion_log = deletion_log
        self._lookback_days = lookback_days
        self._match_window_seconds = match_window_seconds
        self._require_media_link = require_media_link
        self._batch_size = batch_size
        self._poll_interval = poll_interval_ms / 1000
        self._queue: asyncio.Queue[DeletionEvent] = asyncio.Queue(
            maxsize=queue_max_size
        )
        self._listeners: list[Callable[[DeletionRecord], None]] = []

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def add_listener(self, listener: Callable[[DeletionRecord], None]) -> None:
        """Call ``listener`` with every deletion record once it is persisted."""
        self._listeners.append(listener)

    def enqueue(self, payload: Any) -> int:
        """Queue every deletion in a notification payload.

        Returns:
            Number of deletions accepted; the rest were rejected by a full queue
        """
        accepted = 0
        for event in parse_deletion_events(payload):
            try:
                self._queue.put_nowait(event)
            except asyncio.QueueFull:
                DELETIONS_PROCESSED_TOTAL.labels(outcome="rejected").inc()
                logger.warning(
                    "deletion_queue_full",
                    message_id=event.message_id,
                    chat_id=event.chat_id,
                )
                continue
            accepted += 1
        return accepted

    def process_pending(self, batch_size: int | None = None) -> list[DeletionRecord]:
        """Handle up to ``batch_size`` queued deletions."""
        records: list[DeletionRecord] = []
        for _ in range(batch_size or self._batch_size):
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            record = self.handle_deletion(event)
            if record is not None:
                records.append(record)
        return records

    async def run(self, stop_event: asyncio.Event) -> None:
        """Process queued deletions in small batches until stopped."""
        logger.info(
            "deletion_consumer_started",
            batch_size=self._batch_size,
            poll_interval_seconds=self._poll_interval,
        )
        while not stop_event.is_set():
            try:
                self.process_pending()
            except Exception:
                logger.exception("deletion_loop_error")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._poll_interval)
            except TimeoutError:
                continue

        while not self._queue.empty():
            self.process_pending()
        logger.info("deletion_consumer_stopped")

    def handle_deletion(self, event: DeletionEvent) -> DeletionRecord | None:
        """Correlate one deletion notification.

        Returns:
            The persisted record, or None when nothing archived matches or
            the record could not be written
        """
        with correlation_scope("deletion", chat_id=event.chat_id):
            message = self._archive.find_message(
                event.message_id, lookback_days=self._lookback_days
            )
            if message is None:
                DELETIONS_PROCESSED_TOTAL.labels(outcome="unmatched").inc()
                logger.info(
                    "deletion_unmatched",
                    message_id=event.message_id,
                    chat_id=event.chat_id,
                )
                return None

            media_record, media_match = self._resolve_media(message)
            now = self._context.now()
            record = DeletionRecord(
                id=new_deletion_id(now),
                message_id=message.id,
                sender=message.sender_id,
                chat_id=event.chat_id or message.chat_id,
                category=message.category,
                content_type=message.content_type,
                original_timestamp=message.timestamp,
                deleted_timestamp=now,
                message_body=message.body,
                has_media=message.has_media,
                media_type=self._media_type(message, media_record),
                media_unique_id=self._media_unique_id(message, media_record),
                media_match=media_match,
            )

            try:
                self._deletion_log.append(record)
            except StorageError as exc:
                DELETIONS_PROCESSED_TOTAL.labels(outcome="persist_failed").inc()
                logger.error(
                    "deletion_record_persist_failed",
                    message_id=message.id,
                    error=str(exc),
                )
                return None

            DELETIONS_PROCESSED_TOTAL.labels(outcome="recorded").inc()
            logger.info(
                "deletion_recorded",
                deletion_id=record.id,
                message_id=message.id,
                chat_id=record.chat_id,
                has_media=record.has_media,
                media_match=media_match.value,
            )
            self._notify(record)
            return record

    def _notify(self, record: DeletionRecord) -> None:
        for listener in self._listeners:
            try:
                listener(record)
            except Exception:
                logger.exception("deletion_listener_failed", deletion_id=record.id)

    def _resolve_media(
        self, message: ArchivedMessage
    ) -> tuple[MediaRecord | None, MediaMatch]:
        if not message.has_media:
            return None, MediaMatch.NONE

        if message.media_link is not None:
            linked = self._vault.get_record(message.media_link.unique_id)
            return linked, MediaMatch.LINKED

        exact = self._vault.find_record_by_message_id(message.id)
        if exact is not None:
            return exact, MediaMatch.EXACT

        if self._require_media_link:
            return None, MediaMatch.NONE

        return self._match_heuristically(message)

    def _match_heuristically(
        self, message: ArchivedMessage
    ) -> tuple[MediaRecord | None, MediaMatch]:
        """Same sender, same category, closest timestamp inside the window.

        Two near-simultaneous attachments from one sender can be confused;
        when more than one qualifies the choice is logged.
        """
        category = category_for_content_type(message.content_type)
        if category is None:
            return None, MediaMatch.NONE

        categories = [category]
        if message.content_type in _VIEW_ONCE_CONTENT:
            categories.append(MediaCategory.VIEW_ONCE)

        candidates: list[MediaRecord] = []
        for candidate_category in categories:
            candidates.extend(
                self._vault.find_media_near(
                    sender_id=message.sender_id,
                    category=candidate_category,
                    timestamp=message.timestamp,
                    window_seconds=self._match_window_seconds,
                )
            )
        if not candidates:
            return None, MediaMatch.NONE

        candidates.sort(
            key=lambda record: abs(
                (record.message_timestamp - message.timestamp).total_seconds()
            )
        )
        chosen = candidates[0]
        if len(candidates) > 1:
            logger.warning(
                "media_correlation_ambiguous",
                message_id=message.id,
                candidates=len(candidates),
                chosen=chosen.unique_id,
            )
        return chosen, MediaMatch.HEURISTIC

    @staticmethod
    def _media_type(
        message: ArchivedMessage, media_record: MediaRecord | None
    ) -> str | None:
        if not message.has_media:
            return None
        if message.media_link is not None:
            return message.media_link.mimetype
        if media_record is not None:
            return media_record.mimetype
        return message.content_type.value

    @staticmethod
    def _media_unique_id(
        message: ArchivedMessage, media_record: MediaRecord | None
    ) -> str | None:
        if message.media_link is not None:
            return message.media_link.unique_id
        return media_record.unique_id if media_record else None


__all__ = ["DeletionDetector", "new_deletion_id", "parse_deletion_events"]
