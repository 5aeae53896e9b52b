"""Entry point for the long-running archival service."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import TextIO

sys.path.insert(0, str(Path(__file__).parent.parent))

from scripts import pipeline_runtime
from msgvault.config.logging_config import get_logger
from msgvault.config.settings import get_settings
from msgvault.observability.metrics import ensure_metrics_exporter
from msgvault.workers.archival_service import ArchivalService
from msgvault.workers.event_replay import ReplayResult, replay_line

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the archival service")
    parser.add_argument(
        "--events",
        default=None,
        help="Newline-delimited JSON events to consume ('-' for stdin)",
    )
    parser.add_argument(
        "--run-once",
        action="store_true",
        help="Stop after the event input is exhausted and the queues drain",
    )
    parser.add_argument(
        "--no-sweep",
        action="store_true",
        help="Do not schedule retention sweeps",
    )
    parser.add_argument(
        "--metrics",
        action="store_true",
        help="Start the Prometheus exporter",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    return parser.parse_args(argv)


async def pump_events(service: ArchivalService, stream: TextIO) -> ReplayResult:
    """Read events line by line without blocking the event loop."""
    result = ReplayResult()
    line_number = 0
    while True:
        line = await asyncio.to_thread(stream.readline)
        if not line:
            break
        line_number += 1
        replay_line(service, line, result, line_number)
    logger.info(
        "event_input_exhausted",
        lines=line_number,
        messages_accepted=result.messages_accepted,
        deletions_queued=result.deletions_queued,
    )
    return result


async def run_service(
    service: ArchivalService,
    *,
    events: TextIO | None,
    run_once: bool,
    sweep: bool,
) -> None:
    stop_event = pipeline_runtime.create_shutdown_event()
    pipeline_runtime.install_signal_handlers(stop_event)

    consumer = asyncio.create_task(service.run(stop_event, sweep=sweep))
    if events is not None:
        await pump_events(service, events)
        if run_once:
            stop_event.set()
    elif run_once:
        stop_event.set()
    await consumer


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    settings = get_settings()
    pipeline_runtime.initialize_logging(settings, json_logs=args.json_logs)

    service = ArchivalService.from_settings(settings)
    service.start()

    if args.metrics:
        try:
            ensure_metrics_exporter(settings.metrics_port)
        except OSError:
            return 1

    events: TextIO | None = None
    if args.events == "-":
        events = sys.stdin
    elif args.events:
        events = open(args.events, encoding="utf-8")

    try:
        asyncio.run(
            run_service(
                service,
                events=events,
                run_once=args.run_once,
                sweep=not args.no_sweep,
            )
        )
    finally:
        if events is not None and events is not sys.stdin:
            events.close()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
