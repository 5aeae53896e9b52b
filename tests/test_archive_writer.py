"""Tests for the archive writer use case."""

import asyncio
from datetime import timedelta

import pytest
from prometheus_client import REGISTRY
from structlog.testing import capture_logs

from msgvault.adapters.partition_archive import PartitionArchive
from msgvault.adapters.storage_context import StorageContext
from msgvault.domain.exceptions import StorageError
from msgvault.domain.models import ChatCategory, QuotedRef
from msgvault.use_cases import archive_messages
from msgvault.use_cases.archive_messages import ArchiveWriter
from tests.conftest import FIXED_NOW, FakeClock, make_event, make_media_context


def _rejected_count() -> float:
    value = REGISTRY.get_sample_value(
        "msgvault_archive_events_rejected_total", {"reason": "queue_full"}
    )
    return value or 0.0


def test_flush_archives_into_implied_partition(
    writer: ArchiveWriter, archive: PartitionArchive
) -> None:
    """Test that a flushed event lands in its day/category partition."""
    assert writer.enqueue(make_event("ABC123")) is True

    result = writer.flush()

    assert result.messages_archived == 1
    found = archive.find_in_partition("ABC123", FIXED_NOW.date(), ChatCategory.GROUP)
    assert found is not None
    assert found.body == "hello"


def test_flush_respects_batch_size_and_fifo_order(
    writer: ArchiveWriter, archive: PartitionArchive
) -> None:
    for index in range(5):
        writer.enqueue(make_event(f"M{index}", payload={"conversation": str(index)}))

    first = writer.flush(batch_size=3)
    assert first.items_processed == 3
    assert writer.pending == 2

    writer.flush()
    messages = archive.read_day(FIXED_NOW.date(), ChatCategory.GROUP)
    assert [message.id for message in messages] == ["M0", "M1", "M2", "M3", "M4"]


def test_enqueue_rejects_when_queue_full(
    storage_context: StorageContext, archive: PartitionArchive
) -> None:
    """Test that a full queue rejects observably instead of blocking."""
    writer = ArchiveWriter(storage_context, archive, queue_max_size=2)
    before = _rejected_count()

    assert writer.enqueue(make_event("A")) is True
    assert writer.enqueue(make_event("B")) is True
    with capture_logs() as logs:
        assert writer.enqueue(make_event("C")) is False

    assert _rejected_count() == before + 1
    assert any(entry["event"] == "archive_queue_full" for entry in logs)
    assert writer.queue_stats().queue_size == 2


def test_empty_event_is_dropped_and_logged(writer: ArchiveWriter) -> None:
    writer.enqueue(make_event("EMPTY", payload={}))

    with capture_logs() as logs:
        result = writer.flush()

    assert result.events_dropped == 1
    assert result.messages_archived == 0
    assert any(entry["event"] == "archive_event_dropped" for entry in logs)


def test_duplicate_delivery_yields_single_record(
    writer: ArchiveWriter, archive: PartitionArchive
) -> None:
    """Test that the same event id is never archived twice."""
    writer.enqueue(make_event("DUP1"))
    writer.enqueue(make_event("DUP1"))

    result = writer.flush()

    assert result.messages_archived == 1
    assert result.duplicates_skipped == 1
    messages = archive.read_day(FIXED_NOW.date(), ChatCategory.GROUP)
    assert [message.id for message in messages] == ["DUP1"]


def test_write_failure_does_not_block_other_items(
    writer: ArchiveWriter, archive: PartitionArchive, mocker
) -> None:
    """Test that one failing partition write leaves the rest of the batch intact."""
    original_append = archive.append

    def flaky_append(message):
        if message.id == "BAD":
            raise StorageError("disk full")
        return original_append(message)

    mocker.patch.object(archive, "append", side_effect=flaky_append)
    writer.enqueue(make_event("GOOD1"))
    writer.enqueue(make_event("BAD"))
    writer.enqueue(make_event("GOOD2"))

    result = writer.flush()

    assert result.write_failures == 1
    assert result.messages_archived == 2


def test_queue_stats_reports_oldest_item(
    writer: ArchiveWriter, clock: FakeClock
) -> None:
    writer.enqueue(make_event("A"))
    clock.advance(seconds=5)
    writer.enqueue(make_event("B"))

    stats = writer.queue_stats()
    assert stats.queue_size == 2
    assert stats.capacity == 100
    assert stats.oldest_enqueued_at == FIXED_NOW


def test_enqueue_with_media_record_links_message(
    writer: ArchiveWriter, archive: PartitionArchive, vault
) -> None:
    record = vault.store_media(b"jpeg-bytes", make_media_context("IMG1"))
    event = make_event("IMG1", payload={"imageMessage": {"mimetype": "image/jpeg"}})

    writer.enqueue(event, media_record=record)
    writer.flush()

    message = archive.find_message("IMG1", lookback_days=3)
    assert message is not None
    assert message.media_link is not None
    assert message.media_link.unique_id == record.unique_id


def test_attach_media_link_rewrites_partition(
    writer: ArchiveWriter, archive: PartitionArchive, vault
) -> None:
    """Test the late media-link attachment path."""
    writer.enqueue(make_event("LATE1", payload={"imageMessage": {}}))
    writer.enqueue(make_event("OTHER"))
    writer.flush()
    record = vault.store_media(b"late", make_media_context("LATE1"))

    assert writer.attach_media_link("LATE1", record) is True
    assert writer.attach_media_link("MISSING", record) is False

    messages = {m.id: m for m in archive.read_day(FIXED_NOW.date(), ChatCategory.GROUP)}
    assert messages["LATE1"].media_link is not None
    assert messages["OTHER"].media_link is None


def test_search_messages_and_chat_history(writer: ArchiveWriter) -> None:
    writer.enqueue(make_event("S1", payload={"conversation": "Deploy today"}))
    writer.enqueue(
        make_event(
            "S2",
            timestamp=FIXED_NOW - timedelta(days=2),
            payload={"conversation": "deploy tomorrow"},
        )
    )
    writer.enqueue(
        make_event(
            "S3",
            chat_id="15550009999@s.whatsapp.net",
            payload={"conversation": "hi"},
        )
    )
    writer.flush()

    found = writer.search_messages(text="deploy")
    assert [message.id for message in found] == ["S1", "S2"]
    assert [m.id for m in writer.chat_history("15550009999@s.whatsapp.net")] == ["S3"]
    assert writer.search_messages(text="deploy", limit=1)[0].id == "S1"


def test_archive_stats(writer: ArchiveWriter) -> None:
    writer.enqueue(make_event("T1"))
    writer.enqueue(make_event("T2", chat_id="15550009999@s.whatsapp.net"))
    writer.flush()

    stats = writer.archive_stats()
    assert stats.total_messages == 2
    assert stats.total_chats == 2
    assert stats.by_category == {"group": 1, "individual": 1}
    assert stats.by_day == {"2024-06-10": 2}


def test_run_consumer_drains_on_stop(
    writer: ArchiveWriter, archive: PartitionArchive
) -> None:
    """Test that the async consumer flushes pending items before exiting."""
    for index in range(25):
        writer.enqueue(make_event(f"R{index}"))

    async def scenario() -> None:
        stop_event = asyncio.Event()
        stop_event.set()
        await writer.run(stop_event)

    asyncio.run(scenario())

    assert writer.pending == 0
    assert len(archive.read_day(FIXED_NOW.date(), ChatCategory.GROUP)) == 25


@pytest.mark.parametrize("batch_size", [1, 4])
def test_drain_empties_queue(writer: ArchiveWriter, batch_size: int) -> None:
    for index in range(6):
        writer.enqueue(make_event(f"D{index}"))

    while writer.pending:
        writer.flush(batch_size=batch_size)

    assert writer.queue_stats().oldest_enqueued_at is None


def _numeric_quote_payload() -> dict:
    return {
        "extendedTextMessage": {
            "text": "replying",
            "contextInfo": {
                "stanzaId": 4242,
                "participant": 15550002222,
                "quotedMessage": {"conversation": "original"},
            },
        }
    }


def test_numeric_quote_ids_are_archived_as_strings(
    writer: ArchiveWriter, archive: PartitionArchive
) -> None:
    """Test that non-string quoted ids from the wire do not break a flush."""
    writer.enqueue(make_event("REPLY1", payload=_numeric_quote_payload()))

    result = writer.drain()

    assert result.messages_archived == 1
    found = archive.find_in_partition("REPLY1", FIXED_NOW.date(), ChatCategory.GROUP)
    assert found is not None
    assert found.quoted_ref is not None
    assert found.quoted_ref.message_id == "4242"
    assert found.quoted_ref.sender_id == "15550002222"


def test_invalid_event_does_not_block_rest_of_batch(
    mocker, writer: ArchiveWriter, archive: PartitionArchive
) -> None:
    """Test that one event failing validation is dropped and the drain goes on."""
    real_build = archive_messages.build_archived_message

    def build(event, **kwargs):
        if event.id == "BAD":
            QuotedRef.model_validate({"message_id": ["not", "a", "string"]})
        return real_build(event, **kwargs)

    mocker.patch.object(archive_messages, "build_archived_message", side_effect=build)
    writer.enqueue(make_event("BAD"))
    for index in range(3):
        writer.enqueue(make_event(f"OK{index}"))

    with capture_logs() as logs:
        result = writer.drain()

    assert writer.pending == 0
    assert result.events_dropped == 1
    assert result.messages_archived == 3
    messages = archive.read_day(FIXED_NOW.date(), ChatCategory.GROUP)
    assert [message.id for message in messages] == ["OK0", "OK1", "OK2"]
    dropped = [e for e in logs if e["event"] == "archive_event_dropped"]
    assert dropped[0]["reason"] == "invalid"
    assert dropped[0]["message_id"] == "BAD"
