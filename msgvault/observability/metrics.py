"""Prometheus metrics for the archival pipeline.

Counters cover every place where the pipeline continues silently (dropped
events, failed writes, rejected enqueues) so that those paths stay
observable. The HTTP exporter is opt-in and started by long-running
entry points only.
"""

from __future__ import annotations

import os
import threading
from typing import Final

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from msgvault.config.logging_config import get_logger

logger = get_logger(__name__)

ARCHIVE_EVENTS_ENQUEUED_TOTAL: Final[Counter] = Counter(
    "msgvault_archive_events_enqueued_total",
    "Message events accepted by the archive queue",
)

ARCHIVE_EVENTS_REJECTED_TOTAL: Final[Counter] = Counter(
    "msgvault_archive_events_rejected_total",
    "Message events rejected before reaching the archive",
    labelnames=("reason",),
)

ARCHIVE_EVENTS_DROPPED_TOTAL: Final[Counter] = Counter(
    "msgvault_archive_events_dropped_total",
    "Dequeued message events that produced no archive record",
    labelnames=("reason",),
)

ARCHIVE_MESSAGES_WRITTEN_TOTAL: Final[Counter] = Counter(
    "msgvault_archive_messages_written_total",
    "Archived messages appended to partitions",
    labelnames=("category",),
)

ARCHIVE_WRITE_FAILURES_TOTAL: Final[Counter] = Counter(
    "msgvault_archive_write_failures_total",
    "Partition writes that failed",
)

ARCHIVE_QUEUE_DEPTH: Final[Gauge] = Gauge(
    "msgvault_archive_queue_depth",
    "Message events waiting in the archive queue",
)

ARCHIVE_FLUSH_DURATION_SECONDS: Final[Histogram] = Histogram(
    "msgvault_archive_flush_duration_seconds",
    "Duration of archive flush cycles in seconds",
)

MEDIA_STORED_TOTAL: Final[Counter] = Counter(
    "msgvault_media_stored_total",
    "Attachments written to the media vault",
    labelnames=("category",),
)

MEDIA_REJECTED_TOTAL: Final[Counter] = Counter(
    "msgvault_media_rejected_total",
    "Attachments the media vault refused to store",
    labelnames=("reason",),
)

RETENTION_FILES_REMOVED_TOTAL: Final[Counter] = Counter(
    "msgvault_retention_files_removed_total",
    "Files removed by the retention sweeper",
    labelnames=("store",),
)

DELETIONS_PROCESSED_TOTAL: Final[Counter] = Counter(
    "msgvault_deletions_processed_total",
    "Deletion notifications processed by outcome",
    labelnames=("outcome",),
)

DELETIONS_FORWARDED_TOTAL: Final[Counter] = Counter(
    "msgvault_deletions_forwarded_total",
    "Recorded deletions re-delivered to the forwarding chat, by outcome",
    labelnames=("outcome",),
)

RECOVERIES_TOTAL: Final[Counter] = Counter(
    "msgvault_recoveries_total",
    "Recovery requests by status",
    labelnames=("status",),
)

_EXPORTER_LOCK = threading.Lock()
_EXPORTER_STARTED = False
_DEFAULT_METRICS_PORT: Final[int] = 9000
_METRICS_PORT_ENV: Final[str] = "METRICS_PORT"


def _resolve_metrics_port(port: int | None) -> int:
    if port is not None:
        return port
    port_raw = os.getenv(_METRICS_PORT_ENV)
    try:
        return int(port_raw) if port_raw else _DEFAULT_METRICS_PORT
    except ValueError:
        logger.warning("invalid_metrics_port", port=port_raw)
        return _DEFAULT_METRICS_PORT


def ensure_metrics_exporter(port: int | None = None) -> None:
    """Start the Prometheus HTTP exporter once per process."""

    global _EXPORTER_STARTED
    with _EXPORTER_LOCK:
        if _EXPORTER_STARTED:
            return

        resolved_port = _resolve_metrics_port(port)
        try:
            start_http_server(resolved_port)
        except OSError as exc:
            logger.error(
                "metrics_exporter_start_failed",
                port=resolved_port,
                error=str(exc),
            )
            raise

        _EXPORTER_STARTED = True
        logger.info("metrics_exporter_started", port=resolved_port)


__all__ = [
    "ARCHIVE_EVENTS_DROPPED_TOTAL",
    "ARCHIVE_EVENTS_ENQUEUED_TOTAL",
    "ARCHIVE_EVENTS_REJECTED_TOTAL",
    "ARCHIVE_FLUSH_DURATION_SECONDS",
    "ARCHIVE_MESSAGES_WRITTEN_TOTAL",
    "ARCHIVE_QUEUE_DEPTH",
    "ARCHIVE_WRITE_FAILURES_TOTAL",
    "DELETIONS_FORWARDED_TOTAL",
    "DELETIONS_PROCESSED_TOTAL",
    "MEDIA_REJECTED_TOTAL",
    "MEDIA_STORED_TOTAL",
    "RECOVERIES_TOTAL",
    "RETENTION_FILES_REMOVED_TOTAL",
    "ensure_metrics_exporter",
]
