"""Archive messages use case.

Inbound events go into a bounded in-memory queue and are flushed to day and
category partitions in FIFO batches by a dedicated consumer.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta

from pydantic import ValidationError as PydanticValidationError

from msgvault.adapters.partition_archive import PartitionArchive
from msgvault.adapters.storage_context import StorageContext
from msgvault.config.logging_config import get_logger
from msgvault.domain.archive_constants import (
    DEFAULT_ARCHIVE_BATCH_SIZE,
    DEFAULT_ARCHIVE_DEDUPE_WINDOW,
    DEFAULT_ARCHIVE_FLUSH_INTERVAL_MS,
    DEFAULT_ARCHIVE_QUEUE_MAX_SIZE,
    DEFAULT_DELETION_LOOKBACK_DAYS,
    DEFAULT_SEARCH_LIMIT,
    DEFAULT_SEARCH_LOOKBACK_DAYS,
)
from msgvault.domain.exceptions import StorageError
from msgvault.domain.models import (
    ArchivedMessage,
    ArchiveStats,
    FlushResult,
    InboundMessageEvent,
    MediaLink,
    MediaRecord,
    QueueStats,
)
from msgvault.domain.partitioning import iter_days
from msgvault.observability.metrics import (
    ARCHIVE_EVENTS_DROPPED_TOTAL,
    ARCHIVE_EVENTS_ENQUEUED_TOTAL,
    ARCHIVE_EVENTS_REJECTED_TOTAL,
    ARCHIVE_FLUSH_DURATION_SECONDS,
    ARCHIVE_MESSAGES_WRITTEN_TOTAL,
    ARCHIVE_QUEUE_DEPTH,
    ARCHIVE_WRITE_FAILURES_TOTAL,
)
from msgvault.observability.tracing import correlation_scope
from msgvault.services.content_extractor import build_archived_message

logger = get_logger(__name__)


@dataclass(slots=True)
class QueuedEvent:
    """One pending archive write."""

    event: InboundMessageEvent
    is_outgoing: bool
    media_link: MediaLink | None
    enqueued_at: datetime


class ArchiveWriter:
    """Ingestion queue and partition writer."""

    def __init__(
        self,
        context: StorageContext,
        archive: PartitionArchive,
        *,
        batch_size: int = DEFAULT_ARCHIVE_BATCH_SIZE,
        flush_interval_ms: int = DEFAULT_ARCHIVE_FLUSH_INTERVAL_MS,
        queue_max_size: int = DEFAULT_ARCHIVE_QUEUE_MAX_SIZE,
        dedupe_window: int = DEFAULT_ARCHIVE_DEDUPE_WINDOW,
        lookback_days: int = DEFAULT_DELETION_LOOKBACK_DAYS,
    ) -> None:
        self._context = context
        self._archive = archive
        self._batch_size = batch_size
        self._flush_interval = flush_interval_ms / 1000
        self._capacity = queue_max_size
        self._dedupe_window = dedupe_window
        self._lookback_days = lookback_days
        self._queue: asyncio.Queue[QueuedEvent] = asyncio.Queue(maxsize=queue_max_size)
        self._enqueue_times: deque[datetime] = deque()
        self._recent_ids: OrderedDict[str, None] = OrderedDict()

    @property
    def archive(self) -> PartitionArchive:
        return self._archive

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def enqueue(
        self,
        event: InboundMessageEvent,
        is_outgoing: bool = False,
        media_record: MediaRecord | None = None,
    ) -> bool:
        """Queue an event for archiving without blocking.

        Returns:
            False if the queue is full and the event was rejected
        """
        item = QueuedEvent(
            event=event,
            is_outgoing=is_outgoing,
            media_link=media_record.to_link() if media_record else None,
            enqueued_at=self._context.now(),
        )
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            ARCHIVE_EVENTS_REJECTED_TOTAL.labels(reason="queue_full").inc()
            logger.warning(
                "archive_queue_full",
                message_id=event.id,
                chat_id=event.chat_id,
                capacity=self._capacity,
            )
            return False

        self._enqueue_times.append(item.enqueued_at)
        ARCHIVE_EVENTS_ENQUEUED_TOTAL.inc()
        ARCHIVE_QUEUE_DEPTH.set(self._queue.qsize())
        return True

    def flush(self, batch_size: int | None = None) -> FlushResult:
        """Write up to ``batch_size`` queued events in FIFO order."""
        limit = batch_size or self._batch_size
        result = FlushResult()
        if self._queue.empty():
            return result

        with correlation_scope("flush"), ARCHIVE_FLUSH_DURATION_SECONDS.time():
            for _ in range(limit):
                try:
                    item = self._queue.get_nowait()
                except asyncio.QueueEmpty:
                    break
                self._enqueue_times.popleft()
                result.items_processed += 1
                self._write_item(item, result)

            ARCHIVE_QUEUE_DEPTH.set(self._queue.qsize())
            logger.debug(
                "archive_batch_flushed",
                processed=result.items_processed,
                archived=result.messages_archived,
                remaining=self._queue.qsize(),
            )
        return result

    def drain(self) -> FlushResult:
        """Flush until the queue is empty."""
        total = FlushResult()
        while not self._queue.empty():
            batch = self.flush()
            total.items_processed += batch.items_processed
            total.messages_archived += batch.messages_archived
            total.events_dropped += batch.events_dropped
            total.duplicates_skipped += batch.duplicates_skipped
            total.write_failures += batch.write_failures
        return total

    async def run(self, stop_event: asyncio.Event) -> None:
        """Flush on the configured interval until ``stop_event`` is set."""
        logger.info(
            "archive_consumer_started",
            batch_size=self._batch_size,
            flush_interval_seconds=self._flush_interval,
            capacity=self._capacity,
        )
        while not stop_event.is_set():
            try:
                self.flush()
            except Exception:
                logger.exception("archive_flush_loop_error")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._flush_interval)
            except TimeoutError:
                continue

        drained = self.drain()
        logger.info(
            "archive_consumer_stopped", drained=drained.items_processed
        )

    def queue_stats(self) -> QueueStats:
        return QueueStats(
            queue_size=self._queue.qsize(),
            capacity=self._capacity,
            oldest_enqueued_at=self._enqueue_times[0] if self._enqueue_times else None,
        )

    def attach_media_link(self, message_id: str, media_record: MediaRecord) -> bool:
        """Link vault media to an already archived message.

        Only the partition holding the message is rewritten.
        """
        located = self._archive.locate(message_id, lookback_days=self._lookback_days)
        if located is None:
            logger.warning("media_link_target_missing", message_id=message_id)
            return False

        path, _ = located
        link = media_record.to_link()
        messages = [
            message.model_copy(update={"media_link": link, "has_media": True})
            if message.id == message_id
            else message
            for message in self._archive.read_partition(path)
        ]
        try:
            self._archive.rewrite_partition(path, messages)
        except StorageError as exc:
            logger.error(
                "media_link_attach_failed", message_id=message_id, error=str(exc)
            )
            return False

        logger.info(
            "media_link_attached",
            message_id=message_id,
            unique_id=media_record.unique_id,
            partition=str(path),
        )
        return True

    def search_messages(
        self,
        *,
        chat_id: str | None = None,
        sender_id: str | None = None,
        has_media: bool | None = None,
        text: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> list[ArchivedMessage]:
        """Search archived messages, newest first.

        Without explicit bounds the last 30 days are searched.
        """
        end_day = self._context.day_of(end) if end else self._context.today()
        if start is not None:
            start_day = self._context.day_of(start)
        else:
            start_day = end_day - timedelta(days=DEFAULT_SEARCH_LOOKBACK_DAYS - 1)
        needle = text.lower() if text else None

        matches: list[ArchivedMessage] = []
        for message in self._archive.iter_messages(iter_days(start_day, end_day)):
            if chat_id and message.chat_id != chat_id:
                continue
            if sender_id and message.sender_id != sender_id:
                continue
            if has_media is not None and message.has_media != has_media:
                continue
            if needle and needle not in message.body.lower():
                continue
            if start and message.timestamp < start:
                continue
            if end and message.timestamp > end:
                continue
            matches.append(message)

        matches.sort(key=lambda message: message.timestamp, reverse=True)
        return matches[:limit]

    def chat_history(
        self, chat_id: str, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> list[ArchivedMessage]:
        return self.search_messages(chat_id=chat_id, limit=limit)

    def archive_stats(self) -> ArchiveStats:
        stats = ArchiveStats()
        chats: set[str] = set()
        for path in self._archive.iter_partition_files():
            stats.partitions += 1
            for message in self._archive.read_partition(path):
                stats.total_messages += 1
                chats.add(message.chat_id)
                _bump(stats.by_content_type, message.content_type.value)
                _bump(stats.by_category, message.category.value)
                _bump(stats.by_day, self._context.day_of(message.timestamp).isoformat())
                oldest, newest = stats.oldest_message, stats.newest_message
                if oldest is None or message.timestamp < oldest:
                    stats.oldest_message = message.timestamp
                if newest is None or message.timestamp > newest:
                    stats.newest_message = message.timestamp
        stats.total_chats = len(chats)
        return stats

    def _write_item(self, item: QueuedEvent, result: FlushResult) -> None:
        event = item.event
        if event.id in self._recent_ids:
            result.duplicates_skipped += 1
            ARCHIVE_EVENTS_DROPPED_TOTAL.labels(reason="duplicate").inc()
            logger.info("archive_duplicate_skipped", message_id=event.id)
            return

        try:
            message = build_archived_message(
                event,
                is_outgoing=item.is_outgoing,
                media_link=item.media_link,
                archived_at=self._context.now(),
            )
        except PydanticValidationError as exc:
            result.events_dropped += 1
            ARCHIVE_EVENTS_DROPPED_TOTAL.labels(reason="invalid").inc()
            logger.warning(
                "archive_event_dropped",
                message_id=event.id,
                chat_id=event.chat_id,
                reason="invalid",
                error=str(exc),
            )
            return
        if message is None:
            result.events_dropped += 1
            ARCHIVE_EVENTS_DROPPED_TOTAL.labels(reason="empty").inc()
            logger.info(
                "archive_event_dropped",
                message_id=event.id,
                chat_id=event.chat_id,
                reason="no_extractable_content",
            )
            return

        try:
            path = self._archive.append(message)
        except StorageError as exc:
            result.write_failures += 1
            ARCHIVE_WRITE_FAILURES_TOTAL.inc()
            logger.error(
                "archive_write_failed", message_id=message.id, error=str(exc)
            )
            return

        self._remember(message.id)
        result.messages_archived += 1
        ARCHIVE_MESSAGES_WRITTEN_TOTAL.labels(category=message.category.value).inc()
        logger.debug(
            "message_archived",
            message_id=message.id,
            category=message.category.value,
            content_type=message.content_type.value,
            partition=str(path),
        )

    def _remember(self, message_id: str) -> None:
        if self._dedupe_window <= 0:
            return
        self._recent_ids[message_id] = None
        while len(self._recent_ids) > self._dedupe_window:
            self._recent_ids.popitem(last=False)


def _bump(counter: dict[str, int], key: str) -> None:
    counter[key] = counter.get(key, 0) + 1


__all__ = ["ArchiveWriter", "QueuedEvent"]
