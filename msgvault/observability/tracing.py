"""Correlation identifiers for archive flushes, deletions and recoveries."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Final
from uuid import uuid4

from msgvault.config.logging_config import bind_context, unbind_context

CORRELATION_ID_KEY: Final[str] = "correlation_id"


def new_correlation_id(kind: str) -> str:
    """Short id such as ``flush-3f2a9c1b7d40`` naming the operation kind."""
    return f"{kind}-{uuid4().hex[:12]}"


@contextmanager
def correlation_scope(
    kind: str = "op", existing_id: str | None = None, **context: Any
) -> Iterator[str]:
    """Bind a correlation id, plus any extra keys, for the lifetime of the block.

    Every log entry emitted inside carries the bound keys, so all lines of
    one flush batch or one deletion can be grouped.
    """
    correlation_id = existing_id or new_correlation_id(kind)
    bound = {CORRELATION_ID_KEY: correlation_id, **context}
    bind_context(**bound)
    try:
        yield correlation_id
    finally:
        unbind_context(*bound)


__all__ = ["CORRELATION_ID_KEY", "correlation_scope", "new_correlation_id"]
