"""Append-only deletion log stored as JSON Lines.

The log lives outside the archive and vault trees, so retention sweeps
never touch it. Records are only ever appended; ``clear`` is the single
destructive operation and is operator-driven.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from msgvault.adapters.storage_context import StorageContext
from msgvault.config.logging_config import get_logger
from msgvault.domain.exceptions import StorageError
from msgvault.domain.models import DeletionRecord

logger = get_logger(__name__)


class DeletionLog:
    """Persistent store of deletion records."""

    def __init__(self, context: StorageContext) -> None:
        self._path = context.deletion_log_path

    @property
    def path(self) -> Path:
        return self._path

    def append(self, record: DeletionRecord) -> None:
        """Persist one deletion record.

        Raises:
            StorageError: If the log cannot be written
        """
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "a", encoding="utf-8") as handle:
                handle.write(record.model_dump_json() + "\n")
        except OSError as exc:
            raise StorageError(f"Failed to append deletion record: {exc}") from exc

    def list(self) -> list[DeletionRecord]:
        """All readable records in append order."""
        if not self._path.exists():
            return []

        try:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            logger.warning(
                "deletion_log_read_failed", path=str(self._path), error=str(exc)
            )
            return []

        records: list[DeletionRecord] = []
        skipped = 0
        for line in lines:
            if not line.strip():
                continue
            try:
                records.append(DeletionRecord.model_validate_json(line))
            except PydanticValidationError:
                skipped += 1

        if skipped:
            logger.warning(
                "deletion_log_lines_skipped", path=str(self._path), skipped=skipped
            )
        return records

    def get(self, deletion_id: str) -> DeletionRecord | None:
        for record in self.list():
            if record.id == deletion_id:
                return record
        return None

    def clear(self) -> int:
        """Remove every record and return how many there were."""
        count = len(self.list())
        try:
            self._path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to clear deletion log: {exc}") from exc
        logger.info("deletion_log_cleared", removed=count)
        return count


__all__ = ["DeletionLog"]
