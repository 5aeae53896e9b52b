"""Operator commands for the message vault.

Usage examples:
    python scripts/vault_admin.py recover del_1718000000000_a1b2c3
    python scripts/vault_admin.py list-deleted 10 media
    python scripts/vault_admin.py sweep
    python scripts/vault_admin.py stats
    python scripts/vault_admin.py ingest events.jsonl
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from scripts import pipeline_runtime
from msgvault.config.logging_config import get_logger
from msgvault.config.settings import get_settings
from msgvault.domain.archive_constants import DEFAULT_LIST_DELETED_LIMIT
from msgvault.domain.models import DeletionFilter
from msgvault.services.report_formatter import (
    format_deletion_list,
    format_recovery_report,
)
from msgvault.services.size_parser import format_size
from msgvault.workers.archival_service import ArchivalService
from msgvault.workers.event_replay import replay_lines

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Message vault operator commands")
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    recover = subparsers.add_parser("recover", help="Recover a deleted message")
    recover.add_argument("deletion_id")
    recover.add_argument(
        "--media-dir",
        type=Path,
        default=None,
        help="Write recovered media into this directory",
    )

    list_deleted = subparsers.add_parser("list-deleted", help="List deletions")
    list_deleted.add_argument(
        "limit", nargs="?", type=int, default=DEFAULT_LIST_DELETED_LIMIT
    )
    list_deleted.add_argument(
        "filter",
        nargs="?",
        choices=[item.value for item in DeletionFilter],
        default=None,
    )

    subparsers.add_parser("sweep", help="Run the retention sweep now")
    subparsers.add_parser(
        "reconcile", help="Drop stale index entries and untracked media files"
    )
    subparsers.add_parser("stats", help="Show archive, vault and queue statistics")

    ingest = subparsers.add_parser("ingest", help="Replay JSONL events")
    ingest.add_argument("path", nargs="?", default="-")

    export = subparsers.add_parser("export-metadata", help="Export the vault index")
    export.add_argument("output", type=Path)

    subparsers.add_parser("clear-deletions", help="Empty the deletion log")
    return parser.parse_args(argv)


def _media_target(media_dir: Path, filename: str | None, deletion_id: str) -> Path:
    """Output path for recovered media, always directly inside ``media_dir``."""
    name = Path(filename or "").name
    if name in ("", ".", ".."):
        name = f"{deletion_id}.bin"
    root = media_dir.resolve()
    target = (root / name).resolve()
    if target.parent != root:
        raise ValueError(f"Refusing to write media outside {root}: {filename!r}")
    return target


def _cmd_recover(service: ArchivalService, args: argparse.Namespace) -> int:
    result = service.recovery.recover(args.deletion_id)
    print(format_recovery_report(result, service.context.tzinfo))

    if result.media_bytes is not None and args.media_dir is not None:
        args.media_dir.mkdir(parents=True, exist_ok=True)
        try:
            target = _media_target(
                args.media_dir, result.media_filename, args.deletion_id
            )
        except ValueError as exc:
            print(f"Media not written: {exc}")
            return 1
        target.write_bytes(result.media_bytes)
        print(f"Media written to {target}")
    return 0 if result.succeeded else 1


def _cmd_list_deleted(service: ArchivalService, args: argparse.Namespace) -> int:
    deletion_filter = DeletionFilter(args.filter) if args.filter else None
    page = service.recovery.list_deleted(limit=args.limit, filter=deletion_filter)
    print(format_deletion_list(page, service.context.now()))
    return 0


def _cmd_sweep(service: ArchivalService, args: argparse.Namespace) -> int:
    result = service.sweeper.sweep()
    print(
        f"Removed {result.messages_removed} partition files, "
        f"{result.media_removed} media files "
        f"({result.index_entries_removed} index entries)"
    )
    for error in result.errors:
        print(f"  error: {error}")
    return 0 if not result.errors else 1


def _cmd_reconcile(service: ArchivalService, args: argparse.Namespace) -> int:
    stale = service.vault.reconcile_index()
    orphans = service.vault.cleanup_orphaned_files()
    print(f"Dropped {stale} stale index entries, removed {orphans} orphaned files")
    return 0


def _cmd_stats(service: ArchivalService, args: argparse.Namespace) -> int:
    stats = service.stats()
    print("Archive")
    print(f"  messages: {stats.archive.total_messages}")
    print(f"  chats: {stats.archive.total_chats}")
    print(f"  partitions: {stats.archive.partitions}")
    for category, count in sorted(stats.archive.by_category.items()):
        print(f"  {category}: {count}")
    print("Vault")
    print(f"  files: {stats.vault.total_files}")
    print(f"  size: {format_size(stats.vault.total_size_bytes)}")
    for category, count in sorted(stats.vault.by_category.items()):
        print(f"  {category}: {count}")
    print("Deletions")
    print(f"  logged: {stats.deletions_logged}")
    return 0


def _cmd_ingest(service: ArchivalService, args: argparse.Namespace) -> int:
    if args.path == "-":
        result = replay_lines(service, sys.stdin)
    else:
        with open(args.path, encoding="utf-8") as handle:
            result = replay_lines(service, handle)

    flushed = service.writer.drain()
    recorded = 0
    while service.detector.pending:
        recorded += len(service.detector.process_pending())

    print(
        f"Archived {flushed.messages_archived} messages "
        f"(dropped {flushed.events_dropped}, duplicates {flushed.duplicates_skipped}, "
        f"failed {flushed.write_failures}); recorded {recorded} deletions; "
        f"{result.invalid_lines} invalid lines"
    )
    return 0 if flushed.write_failures == 0 else 1


def _cmd_export_metadata(service: ArchivalService, args: argparse.Namespace) -> int:
    count = service.vault.export_metadata(args.output)
    print(f"Exported {count} records to {args.output}")
    return 0


def _cmd_clear_deletions(service: ArchivalService, args: argparse.Namespace) -> int:
    removed = service.deletion_log.clear()
    print(f"Cleared {removed} deletion records")
    return 0


COMMANDS = {
    "recover": _cmd_recover,
    "list-deleted": _cmd_list_deleted,
    "sweep": _cmd_sweep,
    "reconcile": _cmd_reconcile,
    "stats": _cmd_stats,
    "ingest": _cmd_ingest,
    "export-metadata": _cmd_export_metadata,
    "clear-deletions": _cmd_clear_deletions,
}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    settings = get_settings()
    pipeline_runtime.initialize_logging(settings, json_logs=args.json_logs)

    service = ArchivalService.from_settings(settings)
    service.start()

    return COMMANDS[args.command](service, args)


if __name__ == "__main__":
    raise SystemExit(main())
