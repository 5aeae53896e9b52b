"""Explicit storage context handed to every archival component."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, tzinfo
from pathlib import Path
from typing import TYPE_CHECKING

import pytz

from msgvault.domain.archive_constants import (
    DELETION_LOG_FILENAME,
    DELETIONS_DIRNAME,
    MEDIA_DIRNAME,
    MESSAGES_DIRNAME,
)
from msgvault.domain.partitioning import partition_day

if TYPE_CHECKING:
    from msgvault.config.settings import Settings

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True)
class StorageContext:
    """Storage roots, partition timezone and clock for one vault instance.

    Components receive this object instead of reaching for globals, so tests
    can point several isolated vaults at temporary directories and drive
    them with a fixed clock.
    """

    data_dir: Path
    timezone: str = "UTC"
    clock: Clock = field(default=utc_now)

    @classmethod
    def from_settings(
        cls, settings: Settings, *, clock: Clock | None = None
    ) -> StorageContext:
        return cls(
            data_dir=Path(settings.data_dir),
            timezone=settings.tz_default,
            clock=clock or utc_now,
        )

    @property
    def messages_root(self) -> Path:
        return self.data_dir / MESSAGES_DIRNAME

    @property
    def media_root(self) -> Path:
        return self.data_dir / MEDIA_DIRNAME

    @property
    def deletion_log_path(self) -> Path:
        return self.data_dir / DELETIONS_DIRNAME / DELETION_LOG_FILENAME

    @property
    def tzinfo(self) -> tzinfo:
        return pytz.timezone(self.timezone)

    def now(self) -> datetime:
        current = self.clock()
        if current.tzinfo is None:
            return current.replace(tzinfo=UTC)
        return current

    def today(self) -> date:
        return partition_day(self.now(), self.tzinfo)

    def day_of(self, timestamp: datetime) -> date:
        return partition_day(timestamp, self.tzinfo)


__all__ = ["Clock", "StorageContext", "utc_now"]
