"""Tests for deletion detection and correlation."""

import asyncio
import re
from datetime import timedelta

import pytest
from structlog.testing import capture_logs

from msgvault.adapters.deletion_log import DeletionLog
from msgvault.adapters.media_vault import MediaVault
from msgvault.adapters.partition_archive import PartitionArchive
from msgvault.adapters.storage_context import StorageContext
from msgvault.domain.models import DeletionEvent, MediaCategory, MediaMatch
from msgvault.use_cases.archive_messages import ArchiveWriter
from msgvault.use_cases.detect_deletions import (
    DeletionDetector,
    new_deletion_id,
    parse_deletion_events,
)
from tests.conftest import (
    FIXED_NOW,
    GROUP_CHAT,
    FakeClock,
    make_event,
    make_media_context,
)

IMAGE_PAYLOAD = {"imageMessage": {"mimetype": "image/jpeg"}}


def test_new_deletion_id_shape() -> None:
    deletion_id = new_deletion_id(FIXED_NOW)
    assert re.fullmatch(r"del_\d{13}_[0-9a-z]{6}", deletion_id)
    assert deletion_id.startswith(f"del_{int(FIXED_NOW.timestamp() * 1000)}_")


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"id": "A", "remoteJid": GROUP_CHAT}, [("A", GROUP_CHAT)]),
        (
            [{"id": "A"}, {"id": "B", "remoteJid": "x@g.us"}],
            [("A", None), ("B", "x@g.us")],
        ),
        ({"keys": [{"id": "A", "remoteJid": "c"}]}, [("A", "c")]),
        ({"messages": [{"key": {"id": "A", "remoteJid": "c"}}]}, [("A", "c")]),
        ([{"remoteJid": "c"}, "junk"], []),
        (None, []),
    ],
)
def test_parse_deletion_events_accepts_wire_shapes(
    payload: object, expected: list[tuple[str, str | None]]
) -> None:
    events = parse_deletion_events(payload)
    assert [(event.message_id, event.chat_id) for event in events] == expected


def test_deletion_correlates_archived_text(
    writer: ArchiveWriter,
    detector: DeletionDetector,
    deletion_log: DeletionLog,
    clock: FakeClock,
) -> None:
    """Test that a matching deletion produces a persisted record."""
    writer.enqueue(make_event("ABC123"))
    writer.flush()
    clock.advance(minutes=10)

    record = detector.handle_deletion(
        DeletionEvent(message_id="ABC123", chat_id=GROUP_CHAT)
    )

    assert record is not None
    assert record.message_body == "hello"
    assert record.original_timestamp == FIXED_NOW
    assert record.deleted_timestamp == FIXED_NOW + timedelta(minutes=10)
    assert record.has_media is False
    assert record.media_match is MediaMatch.NONE
    assert deletion_log.get(record.id) == record


def test_unmatched_deletion_creates_no_record(
    detector: DeletionDetector, deletion_log: DeletionLog
) -> None:
    """Test that deletion events alone never fabricate records."""
    with capture_logs() as logs:
        record = detector.handle_deletion(DeletionEvent(message_id="UNKNOWN"))

    assert record is None
    assert deletion_log.list() == []
    assert any(entry["event"] == "deletion_unmatched" for entry in logs)


def test_deletion_found_by_full_walk(
    writer: ArchiveWriter, detector: DeletionDetector
) -> None:
    writer.enqueue(make_event("OLD1", timestamp=FIXED_NOW - timedelta(days=20)))
    writer.flush()

    record = detector.handle_deletion(DeletionEvent(message_id="OLD1"))
    assert record is not None
    assert record.message_id == "OLD1"


def test_media_linked_at_archive_time(
    writer: ArchiveWriter, detector: DeletionDetector, vault: MediaVault
) -> None:
    media = vault.store_media(b"jpeg", make_media_context("IMG1"))
    writer.enqueue(make_event("IMG1", payload=IMAGE_PAYLOAD), media_record=media)
    writer.flush()

    record = detector.handle_deletion(DeletionEvent(message_id="IMG1"))

    assert record is not None and media is not None
    assert record.media_match is MediaMatch.LINKED
    assert record.media_unique_id == media.unique_id
    assert record.media_type == "image/jpeg"


def test_media_found_by_exact_message_id(
    writer: ArchiveWriter, detector: DeletionDetector, vault: MediaVault
) -> None:
    writer.enqueue(make_event("IMG2", payload=IMAGE_PAYLOAD))
    writer.flush()
    media = vault.store_media(b"jpeg", make_media_context("IMG2"))

    record = detector.handle_deletion(DeletionEvent(message_id="IMG2"))

    assert record is not None and media is not None
    assert record.media_match is MediaMatch.EXACT
    assert record.media_unique_id == media.unique_id


def test_media_heuristic_picks_closest_and_logs_ambiguity(
    writer: ArchiveWriter, detector: DeletionDetector, vault: MediaVault
) -> None:
    """Test the sender/category/time-window fallback."""
    writer.enqueue(make_event("IMG3", payload=IMAGE_PAYLOAD))
    writer.flush()
    closest = vault.store_media(
        b"a",
        make_media_context("SRV-A", timestamp=FIXED_NOW + timedelta(seconds=3)),
    )
    vault.store_media(
        b"b",
        make_media_context("SRV-B", timestamp=FIXED_NOW - timedelta(seconds=30)),
    )

    with capture_logs() as logs:
        record = detector.handle_deletion(DeletionEvent(message_id="IMG3"))

    assert record is not None and closest is not None
    assert record.media_match is MediaMatch.HEURISTIC
    assert record.media_unique_id == closest.unique_id
    assert any(entry["event"] == "media_correlation_ambiguous" for entry in logs)


def test_heuristic_disabled_requires_link(
    storage_context: StorageContext,
    archive: PartitionArchive,
    vault: MediaVault,
    deletion_log: DeletionLog,
    writer: ArchiveWriter,
) -> None:
    detector = DeletionDetector(
        storage_context, archive, vault, deletion_log, require_media_link=True
    )
    writer.enqueue(make_event("IMG4", payload=IMAGE_PAYLOAD))
    writer.flush()
    vault.store_media(b"a", make_media_context("OTHER"))

    record = detector.handle_deletion(DeletionEvent(message_id="IMG4"))

    assert record is not None
    assert record.media_match is MediaMatch.NONE
    assert record.media_unique_id is None
    assert record.media_type == "image"


def test_heuristic_outside_window_finds_nothing(
    writer: ArchiveWriter, detector: DeletionDetector, vault: MediaVault
) -> None:
    writer.enqueue(make_event("IMG5", payload=IMAGE_PAYLOAD))
    writer.flush()
    vault.store_media(
        b"a", make_media_context("LATE", timestamp=FIXED_NOW + timedelta(seconds=90))
    )

    record = detector.handle_deletion(DeletionEvent(message_id="IMG5"))

    assert record is not None
    assert record.media_match is MediaMatch.NONE


def test_view_once_media_matched_heuristically(
    writer: ArchiveWriter, detector: DeletionDetector, vault: MediaVault
) -> None:
    writer.enqueue(make_event("VO1", payload=IMAGE_PAYLOAD))
    writer.flush()
    media = vault.store_media(
        b"once",
        make_media_context("VO-SRV", category_override=MediaCategory.VIEW_ONCE),
    )

    record = detector.handle_deletion(DeletionEvent(message_id="VO1"))

    assert record is not None and media is not None
    assert record.media_unique_id == media.unique_id


def test_deletion_queue_processes_in_batches(
    writer: ArchiveWriter, detector: DeletionDetector, deletion_log: DeletionLog
) -> None:
    """Test that queued deletions are handled two at a time by default."""
    for index in range(3):
        writer.enqueue(make_event(f"Q{index}"))
    writer.flush()

    accepted = detector.enqueue({"keys": [{"id": f"Q{i}"} for i in range(3)]})
    assert accepted == 3

    assert len(detector.process_pending()) == 2
    assert detector.pending == 1
    assert len(detector.process_pending()) == 1
    assert len(deletion_log.list()) == 3


def test_deletion_queue_full_rejects(
    storage_context: StorageContext,
    archive: PartitionArchive,
    vault: MediaVault,
    deletion_log: DeletionLog,
) -> None:
    detector = DeletionDetector(
        storage_context, archive, vault, deletion_log, queue_max_size=1
    )
    assert detector.enqueue([{"id": "A"}, {"id": "B"}]) == 1


def test_deletion_consumer_drains_on_stop(
    writer: ArchiveWriter, detector: DeletionDetector, deletion_log: DeletionLog
) -> None:
    writer.enqueue(make_event("RUN1"))
    writer.flush()
    detector.enqueue({"id": "RUN1"})

    async def scenario() -> None:
        stop_event = asyncio.Event()
        stop_event.set()
        await detector.run(stop_event)

    asyncio.run(scenario())
    assert [record.message_id for record in deletion_log.list()] == ["RUN1"]
