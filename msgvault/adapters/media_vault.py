"""Media vault: per-message binary storage with a JSON metadata index.

Files live at ``<media>/<category>/<chat-category>/<unique_id>.<ext>``.
The SHA-256 digest is stored for identification only. Every call to
:meth:`MediaVault.store_media` writes a new file and a new index entry, even
for byte-identical content, so each message keeps its own copy.
"""

from __future__ import annotations

import hashlib
import json
import os
import re
import secrets
import tempfile
from collections.abc import Iterable, Iterator
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Any, Final

from pydantic import ValidationError as PydanticValidationError

from msgvault.adapters.storage_context import StorageContext
from msgvault.config.logging_config import get_logger
from msgvault.domain.archive_constants import (
    DEFAULT_SEARCH_LIMIT,
    METADATA_INDEX_FILENAME,
)
from msgvault.domain.exceptions import MediaTooLargeError, VaultNotInitializedError
from msgvault.domain.models import (
    ChatCategory,
    MediaCategory,
    MediaContext,
    MediaRecord,
    StoredMedia,
    VaultStats,
)
from msgvault.domain.partitioning import classify_chat, media_partition_dir
from msgvault.observability.metrics import MEDIA_REJECTED_TOTAL, MEDIA_STORED_TOTAL
from msgvault.services.media_classifier import get_file_extension, get_media_category
from msgvault.services.size_parser import format_size

logger = get_logger(__name__)

_UNSAFE_ID_CHARS: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9_-]")
_MESSAGE_ID_PREFIX_CHARS: Final[int] = 32


def _safe_id(message_id: str) -> str:
    cleaned = _UNSAFE_ID_CHARS.sub("_", message_id)
    return cleaned[:_MESSAGE_ID_PREFIX_CHARS] or "unknown"


def _safe_original_name(filename: str | None, extension: str) -> str:
    """Last path component of a sender-supplied file name."""
    name = PurePosixPath((filename or "").replace("\\", "/")).name
    if name in ("", ".", ".."):
        return f"file.{extension}"
    return name


class MediaVault:
    """Filesystem media store with an in-memory index mirrored to disk."""

    def __init__(self, context: StorageContext, *, max_file_size: int) -> None:
        self._context = context
        self._max_file_size = max_file_size
        self._index: dict[str, MediaRecord] = {}
        self._initialized = False

    @property
    def root(self) -> Path:
        return self._context.media_root

    @property
    def index_path(self) -> Path:
        return self.root / METADATA_INDEX_FILENAME

    @property
    def max_file_size(self) -> int:
        return self._max_file_size

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Create the category tree and load the metadata index."""
        for category in MediaCategory:
            for chat_category in ChatCategory:
                media_partition_dir(self.root, category, chat_category).mkdir(
                    parents=True, exist_ok=True
                )
        self._load_index()
        self._initialized = True
        logger.info(
            "media_vault_initialized",
            root=str(self.root),
            records=len(self._index),
            max_file_size=format_size(self._max_file_size),
        )

    def category_dirs(self) -> list[Path]:
        """Top-level category directories walked by the retention sweeper."""
        return [self.root / category.value for category in MediaCategory]

    def records(self) -> list[MediaRecord]:
        return list(self._index.values())

    # Storage ----------------------------------------------------------

    def store_media(self, data: bytes, context: MediaContext) -> MediaRecord | None:
        """Write an attachment for one message and index it.

        Args:
            data: Attachment bytes
            context: Message the attachment belongs to

        Returns:
            New media record, or None if the file could not be written

        Raises:
            VaultNotInitializedError: If :meth:`initialize` was not called
            MediaTooLargeError: If the attachment exceeds the size limit
        """
        if not self._initialized:
            raise VaultNotInitializedError("Media vault not initialized")

        size_bytes = len(data)
        if size_bytes > self._max_file_size:
            MEDIA_REJECTED_TOTAL.labels(reason="too_large").inc()
            logger.warning(
                "media_rejected_too_large",
                message_id=context.message_id,
                size=format_size(size_bytes),
                limit=format_size(self._max_file_size),
            )
            raise MediaTooLargeError(size_bytes, self._max_file_size)

        content_hash = hashlib.sha256(data).hexdigest()
        if context.category_override is not None:
            category = context.category_override
        else:
            category = get_media_category(context.mimetype, context.content_type)
        chat_category = classify_chat(
            context.chat_id, is_broadcast=context.is_broadcast
        )
        extension = get_file_extension(context.mimetype, context.filename)

        unique_id = (
            f"{_safe_id(context.message_id)}_{secrets.token_hex(6)}_{content_hash[:8]}"
        )
        filename = f"{unique_id}.{extension}"
        directory = media_partition_dir(self.root, category, chat_category)
        path = directory / filename

        try:
            directory.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            MEDIA_REJECTED_TOTAL.labels(reason="io_error").inc()
            logger.error(
                "media_write_failed",
                message_id=context.message_id,
                path=str(path),
                error=str(exc),
            )
            return None

        record = MediaRecord(
            unique_id=unique_id,
            filename=filename,
            original_name=_safe_original_name(context.filename, extension),
            category=category,
            chat_category=chat_category,
            mimetype=context.mimetype or "application/octet-stream",
            size_bytes=size_bytes,
            content_hash=content_hash,
            path=str(path),
            relative_path=str(path.relative_to(self.root)),
            message_id=context.message_id,
            chat_id=context.chat_id,
            sender_id=context.sender_id or context.chat_id,
            message_timestamp=context.message_timestamp,
            caption=context.caption,
            created_at=self._context.now(),
        )
        self._index[unique_id] = record
        self._save_index()

        MEDIA_STORED_TOTAL.labels(category=category.value).inc()
        logger.info(
            "media_stored",
            unique_id=unique_id,
            message_id=context.message_id,
            category=category.value,
            chat_category=chat_category.value,
            size=format_size(size_bytes),
        )
        return record

    # Retrieval --------------------------------------------------------

    def get_media_file(self, unique_id: str) -> StoredMedia | None:
        record = self._index.get(unique_id)
        if record is None:
            return None
        return self._read(record)

    def get_record(self, unique_id: str) -> MediaRecord | None:
        """Index entry for a unique id, only while its file still exists."""
        record = self._index.get(unique_id)
        if record is None or not Path(record.path).exists():
            return None
        return record

    def find_record_by_message_id(self, message_id: str) -> MediaRecord | None:
        """Newest index entry for a message id whose file still exists.

        Index entries whose file has disappeared are passed over, so a swept
        file reads as "not found" even before the index is reconciled.
        """
        if not message_id:
            return None

        candidates = sorted(
            (r for r in self._index.values() if r.message_id == message_id),
            key=lambda record: record.created_at,
            reverse=True,
        )
        for record in candidates:
            if Path(record.path).exists():
                return record
        return None

    def get_media_by_message_id(self, message_id: str) -> StoredMedia | None:
        """Return the newest stored attachment for a message id, if any."""
        record = self.find_record_by_message_id(message_id)
        stored = self._read(record) if record is not None else None
        if stored is None:
            logger.debug("media_not_found_for_message", message_id=message_id)
        return stored

    def find_media_near(
        self,
        *,
        sender_id: str,
        category: MediaCategory,
        timestamp: datetime,
        window_seconds: float,
    ) -> list[MediaRecord]:
        """Records from a sender in a category within a time window.

        Sorted by distance from ``timestamp``, closest first. Only records
        whose file still exists are returned.
        """
        matches: list[tuple[float, MediaRecord]] = []
        for record in self._index.values():
            if record.sender_id != sender_id or record.category is not category:
                continue
            delta = abs((record.message_timestamp - timestamp).total_seconds())
            if delta > window_seconds:
                continue
            if not Path(record.path).exists():
                continue
            matches.append((delta, record))
        matches.sort(key=lambda item: item[0])
        return [record for _, record in matches]

    def search_media(
        self,
        *,
        category: MediaCategory | None = None,
        mimetype: str | None = None,
        chat_id: str | None = None,
        sender_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> list[MediaRecord]:
        """Filter the index; newest first."""
        results: list[MediaRecord] = []
        for record in self._index.values():
            if category is not None and record.category is not category:
                continue
            if mimetype and record.mimetype != mimetype:
                continue
            if chat_id and record.chat_id != chat_id:
                continue
            if sender_id and record.sender_id != sender_id:
                continue
            if date_from and record.message_timestamp < date_from:
                continue
            if date_to and record.message_timestamp > date_to:
                continue
            if min_size is not None and record.size_bytes < min_size:
                continue
            if max_size is not None and record.size_bytes > max_size:
                continue
            results.append(record)

        results.sort(key=lambda record: record.created_at, reverse=True)
        return results[:limit]

    def vault_stats(self) -> VaultStats:
        stats = VaultStats()
        for record in self._index.values():
            stats.total_files += 1
            stats.total_size_bytes += record.size_bytes
            category = record.category.value
            stats.by_category[category] = stats.by_category.get(category, 0) + 1
            stats.by_mimetype[record.mimetype] = (
                stats.by_mimetype.get(record.mimetype, 0) + 1
            )
            if stats.oldest_file is None or record.created_at < stats.oldest_file:
                stats.oldest_file = record.created_at
            if stats.newest_file is None or record.created_at > stats.newest_file:
                stats.newest_file = record.created_at
        return stats

    # Maintenance ------------------------------------------------------

    def delete_media_file(self, unique_id: str) -> bool:
        record = self._index.get(unique_id)
        if record is None:
            return False

        try:
            Path(record.path).unlink(missing_ok=True)
        except OSError as exc:
            logger.error(
                "media_delete_failed", unique_id=unique_id, error=str(exc)
            )
            return False

        del self._index[unique_id]
        self._save_index()
        logger.info("media_deleted", unique_id=unique_id, filename=record.filename)
        return True

    def reconcile_index(self) -> int:
        """Index-driven cleanup: drop entries whose backing file is gone."""
        missing = [
            unique_id
            for unique_id, record in self._index.items()
            if not Path(record.path).exists()
        ]
        for unique_id in missing:
            del self._index[unique_id]
        if missing:
            self._save_index()
        logger.info("media_index_reconciled", removed=len(missing))
        return len(missing)

    def forget_paths(self, paths: Iterable[Path]) -> int:
        """Drop index entries pointing at the given files."""
        removed_paths = {Path(path).resolve() for path in paths}
        if not removed_paths:
            return 0

        stale = [
            unique_id
            for unique_id, record in self._index.items()
            if Path(record.path).resolve() in removed_paths
        ]
        for unique_id in stale:
            del self._index[unique_id]
        if stale:
            self._save_index()
        return len(stale)

    def cleanup_orphaned_files(self) -> int:
        """Remove files under the category tree that no index entry tracks."""
        tracked = {Path(record.path).resolve() for record in self._index.values()}
        removed = 0
        for path in self._iter_files():
            if path.resolve() in tracked:
                continue
            try:
                path.unlink()
            except OSError as exc:
                logger.warning(
                    "media_orphan_remove_failed", path=str(path), error=str(exc)
                )
                continue
            removed += 1
        logger.info("media_orphans_removed", removed=removed)
        return removed

    def export_metadata(self, output_path: Path) -> int:
        payload = {
            "exported_at": self._context.now().isoformat(),
            "total_files": len(self._index),
            "files": [
                record.model_dump(mode="json") for record in self._index.values()
            ],
        }
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        logger.info("media_metadata_exported", path=str(output_path))
        return len(self._index)

    # Internal helpers -------------------------------------------------

    def _iter_files(self) -> Iterator[Path]:
        for category_dir in self.category_dirs():
            if not category_dir.exists():
                continue
            for path in category_dir.rglob("*"):
                if path.is_file():
                    yield path

    def _read(self, record: MediaRecord) -> StoredMedia | None:
        path = Path(record.path)
        if not path.exists():
            return None
        try:
            return StoredMedia(data=path.read_bytes(), record=record)
        except OSError as exc:
            logger.error(
                "media_read_failed", unique_id=record.unique_id, error=str(exc)
            )
            return None

    def _load_index(self) -> None:
        self._index = {}
        if not self.index_path.exists():
            return

        try:
            raw: Any = json.loads(self.index_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning(
                "media_index_load_failed", path=str(self.index_path), error=str(exc)
            )
            return

        if not isinstance(raw, dict):
            logger.warning("media_index_unexpected_format", path=str(self.index_path))
            return

        for unique_id, entry in raw.items():
            try:
                self._index[unique_id] = MediaRecord.model_validate(entry)
            except PydanticValidationError:
                logger.warning("media_index_entry_invalid", unique_id=unique_id)

    def _save_index(self) -> bool:
        payload = {
            unique_id: record.model_dump(mode="json")
            for unique_id, record in self._index.items()
        }
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.root, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(payload, handle, indent=2)
                os.replace(tmp_name, self.index_path)
            except Exception:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            logger.error(
                "media_index_save_failed", path=str(self.index_path), error=str(exc)
            )
            return False
        return True


__all__ = ["MediaVault"]
