"""Tests for size configuration parsing."""

import pytest

from msgvault.domain.exceptions import InvalidSizeFormatError
from msgvault.services.size_parser import format_size, parse_size


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (1024, 1024),
        ("2048", 2048),
        ("512B", 512),
        ("10KB", 10 * 1024),
        ("50MB", 50 * 1024 * 1024),
        ("50mb", 50 * 1024 * 1024),
        ("1 GB", 1024**3),
        ("1.5MB", int(1.5 * 1024 * 1024)),
        ("  20 kb  ", 20 * 1024),
    ],
)
def test_parse_size_accepts_bytes_and_units(raw: int | str, expected: int) -> None:
    """Test bare byte counts and <number><unit> strings."""
    assert parse_size(raw) == expected


@pytest.mark.parametrize("raw", ["", "MB", "10TB", "ten MB", "-5MB", -1, True, 1.5])
def test_parse_size_rejects_invalid_values(raw: object) -> None:
    """Test that malformed sizes raise a dedicated error."""
    with pytest.raises(InvalidSizeFormatError) as exc_info:
        parse_size(raw)  # type: ignore[arg-type]
    assert exc_info.value.raw_value == raw


def test_format_size() -> None:
    assert format_size(2 * 1024 * 1024) == "2.00 MB"
    assert format_size(512) == "512.00 B"
