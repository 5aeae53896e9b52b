"""Media categorization and file extension helpers."""

from __future__ import annotations

import mimetypes
from pathlib import PurePath
from typing import Final

from msgvault.domain.models import ContentType, MediaCategory

DEFAULT_EXTENSION: Final[str] = "bin"

# mimetypes.guess_extension picks odd aliases for a few common types.
_PREFERRED_EXTENSIONS: Final[dict[str, str]] = {
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "audio/ogg": "ogg",
    "audio/ogg; codecs=opus": "ogg",
    "audio/mpeg": "mp3",
    "video/mp4": "mp4",
    "application/octet-stream": DEFAULT_EXTENSION,
}

_CONTENT_TYPE_CATEGORIES: Final[dict[ContentType, MediaCategory]] = {
    ContentType.IMAGE: MediaCategory.IMAGES,
    ContentType.VIDEO: MediaCategory.VIDEOS,
    ContentType.AUDIO: MediaCategory.AUDIO,
    ContentType.DOCUMENT: MediaCategory.DOCUMENTS,
    ContentType.STICKER: MediaCategory.STICKERS,
}


def get_media_category(
    mimetype: str | None, content_type: ContentType | None = None
) -> MediaCategory:
    """Classify an attachment into a vault category.

    A declared sticker always lands in ``stickers``; ``image/webp`` that was
    not declared as a plain image is treated as a sticker as well.
    """
    if content_type is ContentType.STICKER:
        return MediaCategory.STICKERS

    if not mimetype:
        return MediaCategory.DOCUMENTS

    normalized = mimetype.lower()
    if normalized.startswith("image/"):
        if normalized == "image/webp" and content_type is not ContentType.IMAGE:
            return MediaCategory.STICKERS
        return MediaCategory.IMAGES
    if normalized.startswith("video/"):
        return MediaCategory.VIDEOS
    if normalized.startswith("audio/"):
        return MediaCategory.AUDIO
    return MediaCategory.DOCUMENTS


def category_for_content_type(content_type: ContentType) -> MediaCategory | None:
    """Vault category an archived content type would be stored under."""
    return _CONTENT_TYPE_CATEGORIES.get(content_type)


def get_file_extension(mimetype: str | None, filename: str | None = None) -> str:
    """Pick a file extension from the original name, then the mimetype."""
    if filename:
        suffix = PurePath(filename).suffix.lstrip(".")
        if suffix.isascii() and suffix.isalnum():
            return suffix.lower()

    if not mimetype:
        return DEFAULT_EXTENSION

    normalized = mimetype.lower().strip()
    preferred = _PREFERRED_EXTENSIONS.get(normalized)
    if preferred:
        return preferred

    guessed = mimetypes.guess_extension(normalized.split(";")[0].strip())
    if guessed:
        return guessed.lstrip(".")
    return DEFAULT_EXTENSION


__all__ = [
    "category_for_content_type",
    "get_file_extension",
    "get_media_category",
]
