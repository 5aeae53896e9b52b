"""Archival service: wires the archive, vault, detector and sweeper together.

The transport layer calls :meth:`ArchivalService.on_message` and
:meth:`ArchivalService.on_deletion`; :meth:`ArchivalService.run` drives the
archive consumer, the deletion consumer and the retention schedule as tasks
on one event loop.
"""

from __future__ import annotations

import asyncio
from typing import Any

from msgvault.adapters.deletion_log import DeletionLog
from msgvault.adapters.media_vault import MediaVault
from msgvault.adapters.partition_archive import PartitionArchive
from msgvault.adapters.storage_context import Clock, StorageContext
from msgvault.config.logging_config import get_logger
from msgvault.config.settings import Settings
from msgvault.domain.exceptions import MediaTooLargeError
from msgvault.domain.protocols import MessageTransportProtocol
from msgvault.domain.models import (
    InboundMessageEvent,
    MediaCategory,
    MediaContext,
    MediaRecord,
    PipelineStats,
)
from msgvault.services.content_extractor import describe_media
from msgvault.use_cases.archive_messages import ArchiveWriter
from msgvault.use_cases.detect_deletions import DeletionDetector
from msgvault.use_cases.recover_messages import RecoveryEngine
from msgvault.use_cases.sweep_retention import RetentionSweeper
from msgvault.workers.deletion_forwarder import DeletionForwarder

logger = get_logger(__name__)


class ArchivalService:
    """Single-process archival pipeline."""

    def __init__(
        self,
        context: StorageContext,
        *,
        writer: ArchiveWriter,
        vault: MediaVault,
        detector: DeletionDetector,
        recovery: RecoveryEngine,
        sweeper: RetentionSweeper,
        deletion_log: DeletionLog,
        forwarder: DeletionForwarder | None = None,
    ) -> None:
        self.context = context
        self.writer = writer
        self.vault = vault
        self.detector = detector
        self.recovery = recovery
        self.sweeper = sweeper
        self.deletion_log = deletion_log
        self.forwarder = forwarder
        if forwarder is not None:
            detector.add_listener(forwarder.submit)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        context: StorageContext | None = None,
        clock: Clock | None = None,
        transport: MessageTransportProtocol | None = None,
    ) -> ArchivalService:
        """Build every component from settings.

        Deletions are forwarded automatically only when
        ``settings.deletion_forward_to`` is set and a ``transport`` is given.
        """
        context = context or StorageContext.from_settings(settings, clock=clock)
        archive = PartitionArchive(context)
        vault = MediaVault(context, max_file_size=settings.max_media_size)
        deletion_log = DeletionLog(context)

        writer = ArchiveWriter(
            context,
            archive,
            batch_size=settings.archive_batch_size,
            flush_interval_ms=settings.archive_flush_interval_ms,
            queue_max_size=settings.archive_queue_max_size,
            dedupe_window=settings.archive_dedupe_window,
            lookback_days=settings.deletion_lookback_days,
        )
        detector = DeletionDetector(
            context,
            archive,
            vault,
            deletion_log,
            lookback_days=settings.deletion_lookback_days,
            match_window_seconds=settings.media_match_window_seconds,
            require_media_link=settings.require_media_link,
            batch_size=settings.deletion_batch_size,
            poll_interval_ms=settings.deletion_poll_interval_ms,
            queue_max_size=settings.deletion_queue_max_size,
        )
        recovery = RecoveryEngine(
            context,
            archive,
            vault,
            deletion_log,
            lookback_days=settings.deletion_lookback_days,
        )
        sweeper = RetentionSweeper(
            context,
            archive,
            vault,
            retention_days=settings.retention_days,
            warmup_seconds=settings.sweep_warmup_seconds,
            interval_hours=settings.sweep_interval_hours,
        )
        forwarder = None
        if settings.deletion_forward_to and transport is not None:
            forwarder = DeletionForwarder(
                recovery,
                transport,
                settings.deletion_forward_to,
                poll_interval_ms=settings.deletion_poll_interval_ms,
            )
        elif settings.deletion_forward_to:
            logger.warning(
                "deletion_forwarding_disabled",
                reason="no_transport",
                forward_to=settings.deletion_forward_to,
            )

        return cls(
            context,
            writer=writer,
            vault=vault,
            detector=detector,
            recovery=recovery,
            sweeper=sweeper,
            deletion_log=deletion_log,
            forwarder=forwarder,
        )

    def start(self) -> None:
        """Prepare storage; must be called before events are accepted."""
        self.vault.initialize()
        logger.info("archival_service_started", data_dir=str(self.context.data_dir))

    def on_message(
        self,
        event: InboundMessageEvent,
        is_outgoing: bool = False,
        media_bytes: bytes | None = None,
    ) -> bool:
        """Store any attachment, then queue the message for archiving.

        An attachment the vault refuses does not stop the message itself
        from being archived. When the queue rejects the message, its
        attachment is removed from the vault again.

        Returns:
            False if the archive queue rejected the event
        """
        media_record = None
        if media_bytes is not None:
            media_record = self._store_attachment(event, media_bytes)

        accepted = self.writer.enqueue(event, is_outgoing, media_record)
        if not accepted and media_record is not None:
            # The vault holds media only for messages that reach the archive.
            self.vault.delete_media_file(media_record.unique_id)
        return accepted

    def on_deletion(self, payload: Any) -> int:
        """Queue a deletion notification in any accepted wire shape."""
        return self.detector.enqueue(payload)

    async def run(self, stop_event: asyncio.Event, *, sweep: bool = True) -> None:
        """Run the consumers (and the retention schedule) until stopped."""
        # Deletions drain after the archive so queued messages can still match,
        # and forwarding drains after deletions.
        deletions_stop = asyncio.Event()
        archive_task = asyncio.create_task(
            self.writer.run(stop_event), name="archive-consumer"
        )
        archive_task.add_done_callback(lambda _: deletions_stop.set())
        deletion_task = asyncio.create_task(
            self.detector.run(deletions_stop), name="deletion-consumer"
        )
        tasks = [archive_task, deletion_task]
        if self.forwarder is not None:
            forward_stop = asyncio.Event()
            deletion_task.add_done_callback(lambda _: forward_stop.set())
            tasks.append(
                asyncio.create_task(
                    self.forwarder.run(forward_stop), name="deletion-forwarder"
                )
            )
        if sweep:
            tasks.append(
                asyncio.create_task(self.sweeper.run(stop_event), name="retention")
            )

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for task, result in zip(tasks, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "archival_task_failed", task=task.get_name(), error=str(result)
                )
        logger.info("archival_service_stopped")

    def stats(self) -> PipelineStats:
        return PipelineStats(
            archive=self.writer.archive_stats(),
            vault=self.vault.vault_stats(),
            archive_queue=self.writer.queue_stats(),
            pending_deletions=self.detector.pending,
            deletions_logged=len(self.deletion_log.list()),
        )

    def _store_attachment(
        self, event: InboundMessageEvent, media_bytes: bytes
    ) -> MediaRecord | None:
        descriptor = describe_media(event)
        if descriptor is None:
            logger.warning("media_without_descriptor", message_id=event.id)
            return None

        context = MediaContext(
            message_id=event.id,
            chat_id=event.chat_id,
            sender_id=event.author,
            message_timestamp=event.timestamp,
            mimetype=descriptor.mimetype,
            filename=descriptor.filename,
            caption=descriptor.caption,
            content_type=descriptor.content_type,
            category_override=MediaCategory.VIEW_ONCE if descriptor.view_once else None,
            is_broadcast=event.is_broadcast,
        )
        try:
            return self.vault.store_media(media_bytes, context)
        except MediaTooLargeError:
            return None


__all__ = ["ArchivalService"]
