"""Day/category partitioned message archive on the local filesystem.

Each partition is an append-only JSON Lines file. Partitions written by the
older whole-file layout (a JSON array per ``DD.json``) are still read.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
from collections.abc import Iterable, Iterator
from datetime import date
from pathlib import Path
from typing import Any, Final

from pydantic import ValidationError as PydanticValidationError

from msgvault.adapters.storage_context import StorageContext
from msgvault.config.logging_config import get_logger
from msgvault.domain.archive_constants import LEGACY_PARTITION_SUFFIX
from msgvault.domain.exceptions import StorageError
from msgvault.domain.models import ArchivedMessage, ChatCategory
from msgvault.domain.partitioning import (
    SEARCH_PRIORITY,
    archive_partition_path,
    recent_days,
)

logger = get_logger(__name__)

_YEAR_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\d{4}$")
_MONTH_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\d{2}$")
_DAY_FILE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^(\d{2})\.jsonl?$")


class PartitionArchive:
    """Filesystem store for archived messages."""

    def __init__(self, context: StorageContext) -> None:
        self._context = context

    @property
    def root(self) -> Path:
        return self._context.messages_root

    def partition_for(self, message: ArchivedMessage) -> Path:
        """Partition file a message belongs in, by timestamp and category."""
        day = self._context.day_of(message.timestamp)
        return archive_partition_path(self.root, day, message.category)

    def append(self, message: ArchivedMessage) -> Path:
        """Append one record to its partition.

        Raises:
            StorageError: If the partition cannot be written
        """
        path = self.partition_for(message)
        line = message.model_dump_json() + "\n"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as handle:
                handle.write(line)
        except OSError as exc:
            raise StorageError(f"Failed to append to {path}: {exc}") from exc
        return path

    def read_partition(self, path: Path) -> list[ArchivedMessage]:
        """Read a partition file, skipping anything unreadable."""
        if not path.exists():
            return []

        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning("partition_read_failed", path=str(path), error=str(exc))
            return []

        if path.suffix == LEGACY_PARTITION_SUFFIX:
            return self._parse_legacy(path, raw)
        return self._parse_lines(path, raw)

    def read_day(self, day: date, category: ChatCategory) -> list[ArchivedMessage]:
        messages = self.read_partition(archive_partition_path(self.root, day, category))
        legacy_path = archive_partition_path(self.root, day, category, legacy=True)
        if legacy_path.exists():
            messages = self.read_partition(legacy_path) + messages
        return messages

    def find_in_partition(
        self, message_id: str, day: date, category: ChatCategory
    ) -> ArchivedMessage | None:
        """O(1) partition lookup when the day and category are known."""
        for message in self.read_day(day, category):
            if message.id == message_id:
                return message
        return None

    def find_recent(
        self,
        message_id: str,
        *,
        lookback_days: int,
        categories: Iterable[ChatCategory] = SEARCH_PRIORITY,
    ) -> ArchivedMessage | None:
        """Probe the most recent day partitions in priority order."""
        ordered = tuple(categories)
        for day in recent_days(self._context.today(), lookback_days):
            for category in ordered:
                found = self.find_in_partition(message_id, day, category)
                if found is not None:
                    return found
        return None

    def find_anywhere(self, message_id: str) -> tuple[Path, ArchivedMessage] | None:
        """Walk every partition, newest first. Last resort only."""
        logger.info("archive_full_walk_started", message_id=message_id)
        for path in self.iter_partition_files(newest_first=True):
            for message in self.read_partition(path):
                if message.id == message_id:
                    return path, message
        return None

    def find_message(
        self, message_id: str, *, lookback_days: int
    ) -> ArchivedMessage | None:
        found = self.find_recent(message_id, lookback_days=lookback_days)
        if found is not None:
            return found
        located = self.find_anywhere(message_id)
        return located[1] if located else None

    def locate(
        self, message_id: str, *, lookback_days: int
    ) -> tuple[Path, ArchivedMessage] | None:
        """Find a message together with the partition file that holds it."""
        for day in recent_days(self._context.today(), lookback_days):
            for category in SEARCH_PRIORITY:
                for legacy in (False, True):
                    path = archive_partition_path(
                        self.root, day, category, legacy=legacy
                    )
                    for message in self.read_partition(path):
                        if message.id == message_id:
                            return path, message
        return self.find_anywhere(message_id)

    def rewrite_partition(self, path: Path, messages: list[ArchivedMessage]) -> None:
        """Atomically replace a partition's contents.

        Raises:
            StorageError: If the partition cannot be replaced
        """
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    if path.suffix == LEGACY_PARTITION_SUFFIX:
                        json.dump(
                            [m.model_dump(mode="json") for m in messages],
                            handle,
                            indent=2,
                        )
                    else:
                        for message in messages:
                            handle.write(message.model_dump_json() + "\n")
                os.replace(tmp_name, path)
            except Exception:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise StorageError(f"Failed to rewrite {path}: {exc}") from exc

    def iter_partition_files(self, *, newest_first: bool = False) -> Iterator[Path]:
        """Yield every partition file under the archive root."""
        if not self.root.exists():
            return

        for year_dir in sorted(self.root.iterdir(), reverse=newest_first):
            if not year_dir.is_dir() or not _YEAR_PATTERN.match(year_dir.name):
                continue
            for month_dir in sorted(year_dir.iterdir(), reverse=newest_first):
                if not month_dir.is_dir() or not _MONTH_PATTERN.match(month_dir.name):
                    continue
                day_files: list[Path] = []
                for category_dir in month_dir.iterdir():
                    if not category_dir.is_dir():
                        continue
                    day_files.extend(
                        path
                        for path in category_dir.iterdir()
                        if path.is_file() and _DAY_FILE_PATTERN.match(path.name)
                    )
                day_files.sort(key=lambda path: path.name, reverse=newest_first)
                yield from day_files

    def iter_messages(
        self,
        days: Iterable[date],
        categories: Iterable[ChatCategory] = SEARCH_PRIORITY,
    ) -> Iterator[ArchivedMessage]:
        ordered = tuple(categories)
        for day in days:
            for category in ordered:
                yield from self.read_day(day, category)

    # Parsing helpers --------------------------------------------------

    def _parse_lines(self, path: Path, raw: str) -> list[ArchivedMessage]:
        messages: list[ArchivedMessage] = []
        skipped = 0
        for line in raw.splitlines():
            if not line.strip():
                continue
            parsed = self._parse_record(line_json=line)
            if parsed is None:
                skipped += 1
                continue
            messages.append(parsed)

        if skipped:
            logger.warning(
                "partition_lines_skipped",
                path=str(path),
                skipped=skipped,
                kept=len(messages),
            )
        return messages

    def _parse_legacy(self, path: Path, raw: str) -> list[ArchivedMessage]:
        try:
            payload: Any = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("partition_corrupted", path=str(path), error=str(exc))
            return []

        if isinstance(payload, dict) and isinstance(payload.get("messages"), list):
            payload = payload["messages"]
        if not isinstance(payload, list):
            logger.warning("partition_unexpected_format", path=str(path))
            return []

        messages: list[ArchivedMessage] = []
        for item in payload:
            try:
                messages.append(ArchivedMessage.model_validate(item))
            except PydanticValidationError:
                logger.warning("partition_record_invalid", path=str(path))
        return messages

    @staticmethod
    def _parse_record(*, line_json: str) -> ArchivedMessage | None:
        try:
            return ArchivedMessage.model_validate_json(line_json)
        except PydanticValidationError:
            return None


__all__ = ["PartitionArchive"]
