"""Domain models for the message vault.

All persisted models use Pydantic v2 for validation and serialization.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


def ensure_utc(value: Any) -> Any:
    """Coerce epoch seconds and naive datetimes to aware UTC datetimes."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return datetime.fromtimestamp(float(value), tz=UTC)
    if isinstance(value, str) and value.replace(".", "", 1).isdigit():
        return datetime.fromtimestamp(float(value), tz=UTC)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    return value


class ChatCategory(str, Enum):
    """Message-type partition derived from the chat identifier."""

    INDIVIDUAL = "individual"
    GROUP = "group"
    STATUS = "status"
    BROADCAST = "broadcast"
    NEWSLETTER = "newsletter"


class ContentType(str, Enum):
    """Kind of content carried by an archived message."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"
    SYSTEM = "system"
    REACTION = "reaction"
    POLL = "poll"
    LOCATION = "location"
    CONTACT = "contact"


MEDIA_CONTENT_TYPES: frozenset[ContentType] = frozenset(
    {
        ContentType.IMAGE,
        ContentType.VIDEO,
        ContentType.AUDIO,
        ContentType.DOCUMENT,
        ContentType.STICKER,
    }
)


class MediaCategory(str, Enum):
    """Top-level vault directory for a stored attachment."""

    IMAGES = "images"
    VIDEOS = "videos"
    AUDIO = "audio"
    DOCUMENTS = "documents"
    STICKERS = "stickers"
    VIEW_ONCE = "view-once"


class MediaMatch(str, Enum):
    """How a deletion record was tied to vault media."""

    LINKED = "linked"
    EXACT = "exact"
    HEURISTIC = "heuristic"
    NONE = "none"


class RecoveryStatus(str, Enum):
    """Outcome of a recovery request."""

    RECOVERED = "recovered"
    EXPIRED = "expired"
    NOT_FOUND = "not_found"


class DeletionFilter(str, Enum):
    """Filters accepted by the deletion listing."""

    MEDIA = "media"
    TEXT = "text"
    RECENT = "recent"


class InboundMessageEvent(BaseModel):
    """Message event as handed over by the transport layer."""

    id: str = Field(..., min_length=1, description="Stable message id from source")
    chat_id: str = Field(..., description="Chat (remote) identifier")
    sender_id: str | None = Field(
        default=None, description="Author id; defaults to chat id for direct chats"
    )
    timestamp: datetime = Field(..., description="Message time as UTC datetime")
    payload: dict[str, Any] = Field(
        default_factory=dict, description="Typed message payload keyed by shape"
    )
    body: str | None = Field(default=None, description="Raw body fallback")
    is_broadcast: bool = Field(default=False, description="Broadcast list flag")
    stub_type: int | None = Field(
        default=None, description="System stub type for group/system events"
    )

    @field_validator("timestamp", mode="before")
    @classmethod
    def _ensure_timestamp(cls, value: Any) -> Any:
        return ensure_utc(value)

    @property
    def author(self) -> str:
        return self.sender_id or self.chat_id


class DeletionEvent(BaseModel):
    """Deletion notification for a previously delivered message."""

    message_id: str = Field(..., min_length=1)
    chat_id: str | None = None


class QuotedRef(BaseModel):
    """Reference to the message a reply quoted."""

    message_id: str | None = None
    sender_id: str | None = None
    body: str = ""


class MediaLink(BaseModel):
    """Pointer from an archived message to its vault record."""

    unique_id: str
    filename: str
    category: MediaCategory
    mimetype: str
    size_bytes: int
    relative_path: str


class ArchivedMessage(BaseModel):
    """Archived message record, one per non-empty inbound event."""

    id: str
    chat_id: str
    sender_id: str
    timestamp: datetime
    category: ChatCategory
    content_type: ContentType
    body: str
    has_media: bool = False
    media_link: MediaLink | None = None
    quoted_ref: QuotedRef | None = None
    mentions: list[str] = Field(default_factory=list)
    is_outgoing: bool = False
    archived_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))

    @field_validator("timestamp", "archived_at", mode="before")
    @classmethod
    def _ensure_timezone(cls, value: Any) -> Any:
        return ensure_utc(value)


class MediaContext(BaseModel):
    """Describes the message an attachment belongs to."""

    message_id: str = Field(..., min_length=1)
    chat_id: str
    sender_id: str | None = None
    message_timestamp: datetime
    mimetype: str | None = None
    filename: str | None = None
    caption: str | None = None
    content_type: ContentType | None = None
    category_override: MediaCategory | None = None
    is_broadcast: bool = False

    @field_validator("message_timestamp", mode="before")
    @classmethod
    def _ensure_timestamp(cls, value: Any) -> Any:
        return ensure_utc(value)


class MediaRecord(BaseModel):
    """Vault index entry, keyed by a per-message unique id."""

    unique_id: str
    filename: str
    original_name: str
    category: MediaCategory
    chat_category: ChatCategory
    mimetype: str
    size_bytes: int
    content_hash: str = Field(..., description="SHA-256 hex digest, never a key")
    path: str
    relative_path: str
    message_id: str
    chat_id: str
    sender_id: str
    message_timestamp: datetime
    caption: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))

    @field_validator("message_timestamp", "created_at", mode="before")
    @classmethod
    def _ensure_timezone(cls, value: Any) -> Any:
        return ensure_utc(value)

    def to_link(self) -> MediaLink:
        return MediaLink(
            unique_id=self.unique_id,
            filename=self.filename,
            category=self.category,
            mimetype=self.mimetype,
            size_bytes=self.size_bytes,
            relative_path=self.relative_path,
        )


class DeletionRecord(BaseModel):
    """Correlation of a deletion notification to archived content."""

    id: str
    message_id: str
    sender: str
    chat_id: str
    category: ChatCategory
    content_type: ContentType
    original_timestamp: datetime
    deleted_timestamp: datetime
    message_body: str = ""
    has_media: bool = False
    media_type: str | None = None
    media_unique_id: str | None = None
    media_match: MediaMatch = MediaMatch.NONE

    @field_validator("original_timestamp", "deleted_timestamp", mode="before")
    @classmethod
    def _ensure_timezone(cls, value: Any) -> Any:
        return ensure_utc(value)


@dataclass(slots=True)
class StoredMedia:
    """Attachment bytes together with their index entry."""

    data: bytes
    record: MediaRecord


@dataclass(slots=True)
class RecoveryResult:
    """Reconstructed content for a deletion record."""

    deletion_id: str
    status: RecoveryStatus
    message: str
    record: DeletionRecord | None = None
    text: str | None = None
    media_bytes: bytes | None = None
    media_mimetype: str | None = None
    media_filename: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is RecoveryStatus.RECOVERED


class FlushResult(BaseModel):
    """Result of one archive flush cycle."""

    items_processed: int = 0
    messages_archived: int = 0
    events_dropped: int = 0
    duplicates_skipped: int = 0
    write_failures: int = 0


class SweepResult(BaseModel):
    """Result of a retention sweep."""

    messages_removed: int = 0
    media_removed: int = 0
    index_entries_removed: int = 0
    errors: list[str] = Field(default_factory=list)


class QueueStats(BaseModel):
    """Snapshot of an in-memory ingestion queue."""

    queue_size: int
    capacity: int
    oldest_enqueued_at: datetime | None = None


class ArchiveStats(BaseModel):
    """Aggregate view over every readable archive partition."""

    total_messages: int = 0
    total_chats: int = 0
    partitions: int = 0
    by_content_type: dict[str, int] = Field(default_factory=dict)
    by_category: dict[str, int] = Field(default_factory=dict)
    by_day: dict[str, int] = Field(default_factory=dict)
    oldest_message: datetime | None = None
    newest_message: datetime | None = None


class VaultStats(BaseModel):
    """Aggregate view over the media vault index."""

    total_files: int = 0
    total_size_bytes: int = 0
    by_category: dict[str, int] = Field(default_factory=dict)
    by_mimetype: dict[str, int] = Field(default_factory=dict)
    oldest_file: datetime | None = None
    newest_file: datetime | None = None


class PipelineStats(BaseModel):
    """Combined archive, vault and queue statistics."""

    archive: ArchiveStats
    vault: VaultStats
    archive_queue: QueueStats
    pending_deletions: int = 0
    deletions_logged: int = 0


class DeletionPage(BaseModel):
    """Filtered, newest-first page of deletion records."""

    total: int
    filtered: int
    limit: int
    filter: DeletionFilter | None = None
    records: list[DeletionRecord] = Field(default_factory=list)
