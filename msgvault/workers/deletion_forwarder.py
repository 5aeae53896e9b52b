"""Automatic re-delivery of detected deletions to a fixed chat.

The detector calls :meth:`DeletionForwarder.submit` from its synchronous
batch loop; the queued deletions are recovered and sent by :meth:`run` on
the event loop, so a slow transport never holds up deletion matching.
"""

from __future__ import annotations

import asyncio

from msgvault.config.logging_config import get_logger
from msgvault.domain.archive_constants import (
    DEFAULT_DELETION_POLL_INTERVAL_MS,
    DEFAULT_FORWARD_QUEUE_MAX_SIZE,
)
from msgvault.domain.models import DeletionRecord, RecoveryStatus
from msgvault.domain.protocols import MessageTransportProtocol
from msgvault.observability.metrics import DELETIONS_FORWARDED_TOTAL
from msgvault.use_cases.recover_messages import RecoveryEngine

logger = get_logger(__name__)


class DeletionForwarder:
    """Recovers each recorded deletion and sends it to ``target_chat_id``."""

    def __init__(
        self,
        recovery: RecoveryEngine,
        transport: MessageTransportProtocol,
        target_chat_id: str,
        *,
        poll_interval_ms: int = DEFAULT_DELETION_POLL_INTERVAL_MS,
        queue_max_size: int = DEFAULT_FORWARD_QUEUE_MAX_SIZE,
    ) -> None:
        self._recovery = recovery
        self._transport = transport
        self.target_chat_id = target_chat_id
        self._poll_interval = poll_interval_ms / 1000
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_max_size)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(self, record: DeletionRecord) -> bool:
        """Queue a recorded deletion; False when the queue is full."""
        try:
            self._queue.put_nowait(record.id)
        except asyncio.QueueFull:
            DELETIONS_FORWARDED_TOTAL.labels(outcome="queue_full").inc()
            logger.warning("deletion_forward_queue_full", deletion_id=record.id)
            return False
        return True

    async def forward(self, deletion_id: str) -> bool:
        result = self._recovery.recover(deletion_id)
        if result.status is RecoveryStatus.NOT_FOUND:
            DELETIONS_FORWARDED_TOTAL.labels(outcome="not_found").inc()
            return False

        sent = await self._recovery.redeliver(
            result, self.target_chat_id, self._transport
        )
        DELETIONS_FORWARDED_TOTAL.labels(outcome="sent" if sent else "failed").inc()
        return sent

    async def forward_pending(self) -> int:
        """Forward everything queued so far; returns how many were sent."""
        sent = 0
        while True:
            try:
                deletion_id = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return sent
            try:
                if await self.forward(deletion_id):
                    sent += 1
            except Exception:
                logger.exception("deletion_forward_error", deletion_id=deletion_id)

    async def run(self, stop_event: asyncio.Event) -> None:
        logger.info("deletion_forwarder_started", target_chat_id=self.target_chat_id)
        while not stop_event.is_set():
            await self.forward_pending()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._poll_interval)
            except TimeoutError:
                continue

        drained = await self.forward_pending()
        logger.info("deletion_forwarder_stopped", drained=drained)


__all__ = ["DeletionForwarder"]
