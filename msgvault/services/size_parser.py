"""Size configuration parsing and human-readable formatting."""

from __future__ import annotations

import re
from typing import Final

from msgvault.domain.exceptions import InvalidSizeFormatError

SIZE_UNITS: Final[dict[str, int]] = {
    "B": 1,
    "KB": 1024,
    "MB": 1024**2,
    "GB": 1024**3,
}

_SIZE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(\d+(?:\.\d+)?)\s*(B|KB|MB|GB)$", re.IGNORECASE
)


def parse_size(value: int | str) -> int:
    """Parse a byte count or a ``<number><unit>`` string into bytes.

    Args:
        value: Bare integer (bytes), digit string, or e.g. ``"50MB"``

    Returns:
        Size in bytes

    Raises:
        InvalidSizeFormatError: If the value is not a recognized size

    Example:
        >>> parse_size("50MB")
        52428800
        >>> parse_size(1024)
        1024
    """
    if isinstance(value, bool):
        raise InvalidSizeFormatError(value)

    if isinstance(value, int):
        if value < 0:
            raise InvalidSizeFormatError(value)
        return value

    if not isinstance(value, str):
        raise InvalidSizeFormatError(value)

    raw = value.strip()
    if raw.isdigit():
        return int(raw)

    match = _SIZE_PATTERN.match(raw)
    if not match:
        raise InvalidSizeFormatError(value)

    number = float(match.group(1))
    unit = match.group(2).upper()
    return int(number * SIZE_UNITS[unit])


def format_size(size_bytes: int) -> str:
    """Render a byte count with two decimals and the largest fitting unit.

    Example:
        >>> format_size(2 * 1024 * 1024)
        '2.00 MB'
    """
    units = ["B", "KB", "MB", "GB"]
    size = float(size_bytes)
    unit_index = 0
    while size >= 1024 and unit_index < len(units) - 1:
        size /= 1024
        unit_index += 1
    return f"{size:.2f} {units[unit_index]}"


__all__ = ["SIZE_UNITS", "format_size", "parse_size"]
