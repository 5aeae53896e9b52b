"""Tests for media categorization helpers."""

import pytest

from msgvault.domain.models import ContentType, MediaCategory
from msgvault.services.media_classifier import (
    category_for_content_type,
    get_file_extension,
    get_media_category,
)


@pytest.mark.parametrize(
    ("mimetype", "content_type", "expected"),
    [
        ("image/jpeg", None, MediaCategory.IMAGES),
        ("image/webp", None, MediaCategory.STICKERS),
        ("image/webp", ContentType.IMAGE, MediaCategory.IMAGES),
        ("image/png", ContentType.STICKER, MediaCategory.STICKERS),
        ("video/mp4", None, MediaCategory.VIDEOS),
        ("audio/ogg; codecs=opus", None, MediaCategory.AUDIO),
        ("application/pdf", None, MediaCategory.DOCUMENTS),
        (None, None, MediaCategory.DOCUMENTS),
    ],
)
def test_get_media_category(
    mimetype: str | None, content_type: ContentType | None, expected: MediaCategory
) -> None:
    assert get_media_category(mimetype, content_type) is expected


def test_get_file_extension_prefers_original_name() -> None:
    """Test extension order: file name, then mimetype, then bin."""
    assert get_file_extension("application/pdf", "Report.PDF") == "pdf"
    assert get_file_extension("image/jpeg") == "jpg"
    assert get_file_extension("audio/ogg; codecs=opus") == "ogg"
    assert get_file_extension(None) == "bin"
    assert get_file_extension("application/x-unknown-thing") == "bin"


def test_category_for_content_type() -> None:
    assert category_for_content_type(ContentType.IMAGE) is MediaCategory.IMAGES
    assert category_for_content_type(ContentType.TEXT) is None
