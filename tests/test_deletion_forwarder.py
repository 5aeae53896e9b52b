"""Tests for automatic deletion forwarding."""

import asyncio
from pathlib import Path

import pytest
from structlog.testing import capture_logs

from msgvault.adapters.storage_context import StorageContext
from msgvault.config.settings import Settings
from msgvault.domain.models import DeletionEvent
from msgvault.use_cases.archive_messages import ArchiveWriter
from msgvault.use_cases.detect_deletions import DeletionDetector
from msgvault.use_cases.recover_messages import RecoveryEngine
from msgvault.workers.archival_service import ArchivalService
from msgvault.workers.deletion_forwarder import DeletionForwarder
from tests.conftest import GROUP_CHAT, RecordingTransport, make_event

OWNER_CHAT = "15559990000@s.whatsapp.net"


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def forwarder(
    recovery: RecoveryEngine,
    detector: DeletionDetector,
    transport: RecordingTransport,
) -> DeletionForwarder:
    deletion_forwarder = DeletionForwarder(recovery, transport, OWNER_CHAT)
    detector.add_listener(deletion_forwarder.submit)
    return deletion_forwarder


def test_recorded_deletion_is_forwarded(
    writer: ArchiveWriter,
    detector: DeletionDetector,
    forwarder: DeletionForwarder,
    transport: RecordingTransport,
) -> None:
    """Test that a recorded deletion is queued and re-delivered to the owner."""
    writer.enqueue(make_event("ABC123"))
    writer.flush()

    detector.handle_deletion(DeletionEvent(message_id="ABC123", chat_id=GROUP_CHAT))
    assert forwarder.pending == 1

    sent = asyncio.run(forwarder.forward_pending())

    assert sent == 1
    assert forwarder.pending == 0
    assert len(transport.texts) == 1
    chat_id, text = transport.texts[0]
    assert chat_id == OWNER_CHAT
    assert text.endswith("hello")


def test_unmatched_deletion_is_not_forwarded(
    detector: DeletionDetector, forwarder: DeletionForwarder
) -> None:
    detector.handle_deletion(DeletionEvent(message_id="NOPE"))

    assert forwarder.pending == 0


def test_forward_failure_is_logged_and_counted_as_unsent(
    writer: ArchiveWriter,
    detector: DeletionDetector,
    recovery: RecoveryEngine,
) -> None:
    forwarder = DeletionForwarder(recovery, RecordingTransport(fail=True), OWNER_CHAT)
    detector.add_listener(forwarder.submit)
    writer.enqueue(make_event("ABC123"))
    writer.flush()
    detector.handle_deletion(DeletionEvent(message_id="ABC123"))

    with capture_logs() as logs:
        sent = asyncio.run(forwarder.forward_pending())

    assert sent == 0
    assert any(entry["event"] == "redelivery_failed" for entry in logs)


def test_full_forward_queue_rejects(
    writer: ArchiveWriter, detector: DeletionDetector, recovery: RecoveryEngine
) -> None:
    forwarder = DeletionForwarder(
        recovery, RecordingTransport(), OWNER_CHAT, queue_max_size=1
    )
    writer.enqueue(make_event("A"))
    writer.enqueue(make_event("B"))
    writer.flush()
    first = detector.handle_deletion(DeletionEvent(message_id="A"))
    second = detector.handle_deletion(DeletionEvent(message_id="B"))

    assert forwarder.submit(first) is True
    assert forwarder.submit(second) is False


def test_service_forwards_when_configured(
    tmp_path: Path, storage_context: StorageContext
) -> None:
    """Test that the running service forwards deletions before it stops."""
    settings = Settings(
        config_dir=tmp_path / "no-config", deletion_forward_to=OWNER_CHAT
    )
    transport = RecordingTransport()
    service = ArchivalService.from_settings(
        settings, context=storage_context, transport=transport
    )
    service.start()
    service.on_message(make_event("FWD1"))

    async def scenario() -> None:
        stop_event = asyncio.Event()
        task = asyncio.create_task(service.run(stop_event, sweep=False))
        await asyncio.sleep(0.01)
        service.on_deletion({"id": "FWD1", "remoteJid": GROUP_CHAT})
        stop_event.set()
        await task

    asyncio.run(scenario())

    assert [chat for chat, _ in transport.texts] == [OWNER_CHAT]
    assert service.forwarder is not None
    assert service.forwarder.pending == 0


def test_service_without_transport_does_not_forward(
    tmp_path: Path, storage_context: StorageContext
) -> None:
    settings = Settings(
        config_dir=tmp_path / "no-config", deletion_forward_to=OWNER_CHAT
    )

    with capture_logs() as logs:
        service = ArchivalService.from_settings(settings, context=storage_context)

    assert service.forwarder is None
    assert any(entry["event"] == "deletion_forwarding_disabled" for entry in logs)
