"""Constants for archival, retention and deletion correlation."""

from typing import Final

# Retention
DEFAULT_RETENTION_DAYS: Final[int] = 3
DEFAULT_SWEEP_WARMUP_SECONDS: Final[int] = 10 * 60
DEFAULT_SWEEP_INTERVAL_HOURS: Final[int] = 24

# Archive queue
DEFAULT_ARCHIVE_BATCH_SIZE: Final[int] = 10
DEFAULT_ARCHIVE_FLUSH_INTERVAL_MS: Final[int] = 500
DEFAULT_ARCHIVE_QUEUE_MAX_SIZE: Final[int] = 10_000
DEFAULT_ARCHIVE_DEDUPE_WINDOW: Final[int] = 50_000

# Deletion handling
DEFAULT_DELETION_LOOKBACK_DAYS: Final[int] = 3
DEFAULT_DELETION_BATCH_SIZE: Final[int] = 2
DEFAULT_DELETION_POLL_INTERVAL_MS: Final[int] = 300
DEFAULT_DELETION_QUEUE_MAX_SIZE: Final[int] = 1_000
DEFAULT_FORWARD_QUEUE_MAX_SIZE: Final[int] = 100
DEFAULT_MEDIA_MATCH_WINDOW_SECONDS: Final[int] = 60
DEFAULT_LIST_DELETED_LIMIT: Final[int] = 20
RECENT_DELETION_WINDOW_HOURS: Final[int] = 24
DELETION_PREVIEW_CHARS: Final[int] = 40

# Search
DEFAULT_SEARCH_LOOKBACK_DAYS: Final[int] = 30
DEFAULT_SEARCH_LIMIT: Final[int] = 50

# Media vault
DEFAULT_MAX_MEDIA_SIZE: Final[str] = "50MB"
METADATA_INDEX_FILENAME: Final[str] = "metadata.json"

# On-disk layout
MESSAGES_DIRNAME: Final[str] = "messages"
MEDIA_DIRNAME: Final[str] = "media"
DELETIONS_DIRNAME: Final[str] = "deletions"
DELETION_LOG_FILENAME: Final[str] = "deletion_log.jsonl"
PARTITION_SUFFIX: Final[str] = ".jsonl"
LEGACY_PARTITION_SUFFIX: Final[str] = ".json"
