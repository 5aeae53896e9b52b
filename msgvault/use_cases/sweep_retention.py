"""Retention sweep use case.

Walks the archive and vault trees on disk and removes every file whose
modification time is older than the retention window. The sweep is driven
by the filesystem, not by the vault index; index entries for removed media
are dropped afterwards.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Iterator
from datetime import datetime, timedelta
from pathlib import Path

from msgvault.adapters.media_vault import MediaVault
from msgvault.adapters.partition_archive import PartitionArchive
from msgvault.adapters.storage_context import StorageContext
from msgvault.config.logging_config import get_logger
from msgvault.domain.archive_constants import (
    DEFAULT_RETENTION_DAYS,
    DEFAULT_SWEEP_INTERVAL_HOURS,
    DEFAULT_SWEEP_WARMUP_SECONDS,
)
from msgvault.domain.models import SweepResult
from msgvault.observability.metrics import RETENTION_FILES_REMOVED_TOTAL

logger = get_logger(__name__)


def _iter_files(root: Path) -> Iterator[Path]:
    if not root.exists():
        return
    for path in root.rglob("*"):
        if path.is_file():
            yield path


class RetentionSweeper:
    """Enforces the retention window on the archive and the media vault."""

    def __init__(
        self,
        context: StorageContext,
        archive: PartitionArchive,
        vault: MediaVault,
        *,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        warmup_seconds: float = DEFAULT_SWEEP_WARMUP_SECONDS,
        interval_hours: float = DEFAULT_SWEEP_INTERVAL_HOURS,
    ) -> None:
        self._context = context
        self._archive = archive
        self._vault = vault
        self._retention = timedelta(days=retention_days)
        self._warmup_seconds = warmup_seconds
        self._interval_seconds = interval_hours * 3600

    @property
    def retention(self) -> timedelta:
        return self._retention

    def cutoff(self, now: datetime | None = None) -> float:
        """Epoch seconds before which a file is expired."""
        current = now or self._context.now()
        return (current - self._retention).timestamp()

    def sweep_messages(self, now: datetime | None = None) -> SweepResult:
        cutoff = self.cutoff(now)
        result = SweepResult()
        root = self._archive.root

        for path in _iter_files(root):
            if self._remove_if_expired(path, cutoff, result):
                result.messages_removed += 1

        self._prune_empty_dirs(root)
        RETENTION_FILES_REMOVED_TOTAL.labels(store="messages").inc(
            result.messages_removed
        )
        return result

    def sweep_media(self, now: datetime | None = None) -> SweepResult:
        """Filesystem-driven media sweep.

        Untracked files are treated like any other file, so orphans older
        than the window disappear in the same walk.
        """
        cutoff = self.cutoff(now)
        result = SweepResult()
        removed: list[Path] = []

        for category_dir in self._vault.category_dirs():
            for path in _iter_files(category_dir):
                if self._remove_if_expired(path, cutoff, result):
                    removed.append(path)

        result.media_removed = len(removed)
        result.index_entries_removed = self._vault.forget_paths(removed)
        RETENTION_FILES_REMOVED_TOTAL.labels(store="media").inc(result.media_removed)
        return result

    def sweep(self, now: datetime | None = None) -> SweepResult:
        """Run one full sweep over both stores."""
        messages = self.sweep_messages(now)
        media = self.sweep_media(now)
        result = SweepResult(
            messages_removed=messages.messages_removed,
            media_removed=media.media_removed,
            index_entries_removed=media.index_entries_removed,
            errors=messages.errors + media.errors,
        )
        logger.info(
            "retention_sweep_completed",
            retention_days=self._retention.days,
            messages_removed=result.messages_removed,
            media_removed=result.media_removed,
            index_entries_removed=result.index_entries_removed,
            errors=len(result.errors),
        )
        return result

    async def run(self, stop_event: asyncio.Event) -> None:
        """Sweep once after the warm-up, then on every interval."""
        logger.info(
            "retention_schedule_started",
            warmup_seconds=self._warmup_seconds,
            interval_seconds=self._interval_seconds,
        )
        if await _wait_or_stop(stop_event, self._warmup_seconds):
            return

        while True:
            try:
                self.sweep()
            except Exception:
                logger.exception("retention_sweep_failed")
            if await _wait_or_stop(stop_event, self._interval_seconds):
                break
        logger.info("retention_schedule_stopped")

    def _remove_if_expired(
        self, path: Path, cutoff: float, result: SweepResult
    ) -> bool:
        try:
            if path.stat().st_mtime >= cutoff:
                return False
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            result.errors.append(f"{path}: {exc}")
            logger.warning("retention_remove_failed", path=str(path), error=str(exc))
            return False
        return True

    def _prune_empty_dirs(self, root: Path) -> None:
        if not root.exists():
            return
        for dirpath, _dirnames, _filenames in os.walk(root, topdown=False):
            directory = Path(dirpath)
            if directory == root:
                continue
            try:
                if not any(directory.iterdir()):
                    directory.rmdir()
            except OSError as exc:
                logger.debug(
                    "retention_prune_skipped", path=str(directory), error=str(exc)
                )


async def _wait_or_stop(stop_event: asyncio.Event, seconds: float) -> bool:
    """Sleep up to ``seconds``; True if the stop event fired meanwhile."""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except TimeoutError:
        return False
    return True


__all__ = ["RetentionSweeper"]
