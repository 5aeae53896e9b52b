"""Recover messages use case.

Reconstructs deleted content from the archive and the media vault. Recovery
is read-only and idempotent: asking twice for the same deletion id yields
the same answer until the retention sweep removes the underlying data.
"""

from __future__ import annotations

from datetime import timedelta

from msgvault.adapters.deletion_log import DeletionLog
from msgvault.adapters.media_vault import MediaVault
from msgvault.adapters.partition_archive import PartitionArchive
from msgvault.adapters.storage_context import StorageContext
from msgvault.config.logging_config import get_logger
from msgvault.domain.archive_constants import (
    DEFAULT_DELETION_LOOKBACK_DAYS,
    DEFAULT_LIST_DELETED_LIMIT,
    RECENT_DELETION_WINDOW_HOURS,
)
from msgvault.domain.models import (
    ArchivedMessage,
    DeletionFilter,
    DeletionPage,
    DeletionRecord,
    RecoveryResult,
    RecoveryStatus,
    StoredMedia,
)
from msgvault.domain.protocols import MessageTransportProtocol
from msgvault.observability.metrics import RECOVERIES_TOTAL
from msgvault.observability.tracing import correlation_scope
from msgvault.services.report_formatter import format_redelivery_text

logger = get_logger(__name__)


class RecoveryEngine:
    """Answers recovery requests and deletion listings."""

    def __init__(
        self,
        context: StorageContext,
        archive: PartitionArchive,
        vault: MediaVault,
        deletion_log: DeletionLog,
        *,
        lookback_days: int = DEFAULT_DELETION_LOOKBACK_DAYS,
    ) -> None:
        self._context = context
        self._archive = archive
        self._vault = vault
        self._deletion_log = deletion_log
        self._lookback_days = lookback_days

    def recover(self, deletion_id: str) -> RecoveryResult:
        """Rebuild the content behind a deletion record.

        Args:
            deletion_id: Identifier from the deletion log

        Returns:
            Result with status ``recovered``, ``expired`` (archived text or
            correlated media no longer exists) or ``not_found`` (unknown id)
        """
        with correlation_scope("recovery", deletion_id=deletion_id):
            record = self._deletion_log.get(deletion_id)
            if record is None:
                return self._finish(
                    RecoveryResult(
                        deletion_id=deletion_id,
                        status=RecoveryStatus.NOT_FOUND,
                        message=f"No deletion record with id {deletion_id}",
                    )
                )

            message = self._find_archived(record)
            if message is None:
                return self._finish(
                    RecoveryResult(
                        deletion_id=deletion_id,
                        status=RecoveryStatus.EXPIRED,
                        message="Archived message has expired",
                        record=record,
                    )
                )

            result = RecoveryResult(
                deletion_id=deletion_id,
                status=RecoveryStatus.RECOVERED,
                message="Recovery complete",
                record=record,
                text=message.body or None,
            )
            if not record.has_media:
                return self._finish(result)

            stored = self._find_media(record)
            if stored is not None:
                result.media_bytes = stored.data
                result.media_mimetype = stored.record.mimetype
                result.media_filename = stored.record.original_name
            elif record.media_unique_id is not None:
                result.status = RecoveryStatus.EXPIRED
                result.message = "Archived media has expired"
            else:
                result.message = "Recovery complete; media was never captured"
            return self._finish(result)

    def list_deleted(
        self,
        limit: int = DEFAULT_LIST_DELETED_LIMIT,
        filter: DeletionFilter | None = None,
    ) -> DeletionPage:
        """Newest-first page of deletion records, optionally filtered."""
        records = self._deletion_log.list()
        filtered = [record for record in records if self._matches(record, filter)]
        filtered.sort(key=lambda record: record.deleted_timestamp, reverse=True)
        return DeletionPage(
            total=len(records),
            filtered=len(filtered),
            limit=limit,
            filter=filter,
            records=filtered[: max(limit, 0)],
        )

    async def redeliver(
        self,
        result: RecoveryResult,
        chat_id: str,
        transport: MessageTransportProtocol,
    ) -> bool:
        """Send recovered text and media back through the transport.

        Returns:
            True if everything available was sent
        """
        if result.text is None and result.media_bytes is None:
            logger.info(
                "redelivery_skipped_no_content", deletion_id=result.deletion_id
            )
            return False

        try:
            if result.text is not None:
                await transport.send_text(chat_id, format_redelivery_text(result))
            if result.media_bytes is not None:
                await transport.send_media(
                    chat_id,
                    result.media_bytes,
                    mimetype=result.media_mimetype or "application/octet-stream",
                    filename=result.media_filename,
                )
        except Exception:
            logger.exception(
                "redelivery_failed", deletion_id=result.deletion_id, chat_id=chat_id
            )
            return False

        logger.info(
            "redelivery_sent",
            deletion_id=result.deletion_id,
            chat_id=chat_id,
            with_media=result.media_bytes is not None,
        )
        return True

    def _find_archived(self, record: DeletionRecord) -> ArchivedMessage | None:
        day = self._context.day_of(record.original_timestamp)
        message = self._archive.find_in_partition(
            record.message_id, day, record.category
        )
        if message is not None:
            return message
        return self._archive.find_message(
            record.message_id, lookback_days=self._lookback_days
        )

    def _find_media(self, record: DeletionRecord) -> StoredMedia | None:
        if record.media_unique_id is not None:
            return self._vault.get_media_file(record.media_unique_id)
        return self._vault.get_media_by_message_id(record.message_id)

    def _matches(self, record: DeletionRecord, filter: DeletionFilter | None) -> bool:
        if filter is DeletionFilter.MEDIA:
            return record.has_media
        if filter is DeletionFilter.TEXT:
            return not record.has_media and bool(record.message_body)
        if filter is DeletionFilter.RECENT:
            window = timedelta(hours=RECENT_DELETION_WINDOW_HOURS)
            return record.deleted_timestamp > self._context.now() - window
        return True

    @staticmethod
    def _finish(result: RecoveryResult) -> RecoveryResult:
        RECOVERIES_TOTAL.labels(status=result.status.value).inc()
        logger.info(
            "recovery_completed",
            deletion_id=result.deletion_id,
            status=result.status.value,
            has_text=result.text is not None,
            has_media=result.media_bytes is not None,
        )
        return result


__all__ = ["RecoveryEngine"]
