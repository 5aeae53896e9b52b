"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import pytz

from msgvault.adapters.deletion_log import DeletionLog
from msgvault.adapters.media_vault import MediaVault
from msgvault.adapters.partition_archive import PartitionArchive
from msgvault.adapters.storage_context import StorageContext
from msgvault.domain.models import InboundMessageEvent, MediaContext
from msgvault.use_cases.archive_messages import ArchiveWriter
from msgvault.use_cases.detect_deletions import DeletionDetector
from msgvault.use_cases.recover_messages import RecoveryEngine
from msgvault.use_cases.sweep_retention import RetentionSweeper

FIXED_NOW = datetime(2024, 6, 10, 12, 0, tzinfo=pytz.UTC)
GROUP_CHAT = "120363041234567890@g.us"
SENDER = "15550001111@s.whatsapp.net"
TEST_MAX_MEDIA_SIZE = 5 * 1024 * 1024


class FakeClock:
    """Controllable clock for storage contexts."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingTransport:
    """Transport double that records what would have been sent."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.texts: list[tuple[str, str]] = []
        self.media: list[tuple[str, bytes, str, str | None]] = []

    async def send_text(self, chat_id: str, text: str) -> None:
        if self.fail:
            raise ConnectionError("transport offline")
        self.texts.append((chat_id, text))

    async def send_media(
        self,
        chat_id: str,
        data: bytes,
        *,
        mimetype: str,
        filename: str | None = None,
        caption: str | None = None,
    ) -> None:
        self.media.append((chat_id, data, mimetype, filename))


def make_event(
    message_id: str = "ABC123",
    *,
    chat_id: str = GROUP_CHAT,
    sender_id: str | None = SENDER,
    timestamp: datetime = FIXED_NOW,
    payload: dict[str, Any] | None = None,
    **kwargs: Any,
) -> InboundMessageEvent:
    """Helper to create an inbound event with a text payload by default."""
    return InboundMessageEvent(
        id=message_id,
        chat_id=chat_id,
        sender_id=sender_id,
        timestamp=timestamp,
        payload={"conversation": "hello"} if payload is None else payload,
        **kwargs,
    )


def make_media_context(
    message_id: str = "IMG1",
    *,
    mimetype: str = "image/jpeg",
    timestamp: datetime = FIXED_NOW,
    **kwargs: Any,
) -> MediaContext:
    return MediaContext(
        message_id=message_id,
        chat_id=kwargs.pop("chat_id", GROUP_CHAT),
        sender_id=kwargs.pop("sender_id", SENDER),
        message_timestamp=timestamp,
        mimetype=mimetype,
        **kwargs,
    )


def set_tree_mtime(root: Path, when: datetime) -> None:
    """Stamp every file under ``root`` with the given modification time."""
    epoch = when.timestamp()
    for path in root.rglob("*"):
        if path.is_file():
            os.utime(path, (epoch, epoch))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(FIXED_NOW)


@pytest.fixture
def storage_context(tmp_path: Path, clock: FakeClock) -> StorageContext:
    """Isolated storage roots under a temporary directory."""
    return StorageContext(data_dir=tmp_path / "data", timezone="UTC", clock=clock)


@pytest.fixture
def archive(storage_context: StorageContext) -> PartitionArchive:
    return PartitionArchive(storage_context)


@pytest.fixture
def vault(storage_context: StorageContext) -> MediaVault:
    media_vault = MediaVault(storage_context, max_file_size=TEST_MAX_MEDIA_SIZE)
    media_vault.initialize()
    return media_vault


@pytest.fixture
def deletion_log(storage_context: StorageContext) -> DeletionLog:
    return DeletionLog(storage_context)


@pytest.fixture
def writer(storage_context: StorageContext, archive: PartitionArchive) -> ArchiveWriter:
    return ArchiveWriter(storage_context, archive, batch_size=10, queue_max_size=100)


@pytest.fixture
def detector(
    storage_context: StorageContext,
    archive: PartitionArchive,
    vault: MediaVault,
    deletion_log: DeletionLog,
) -> DeletionDetector:
    return DeletionDetector(storage_context, archive, vault, deletion_log)


@pytest.fixture
def recovery(
    storage_context: StorageContext,
    archive: PartitionArchive,
    vault: MediaVault,
    deletion_log: DeletionLog,
) -> RecoveryEngine:
    return RecoveryEngine(storage_context, archive, vault, deletion_log)


@pytest.fixture
def sweeper(
    storage_context: StorageContext, archive: PartitionArchive, vault: MediaVault
) -> RetentionSweeper:
    return RetentionSweeper(storage_context, archive, vault, retention_days=3)
