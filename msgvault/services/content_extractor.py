"""Content extraction from typed transport payloads.

Maps every known payload shape to a body string and a content type. Shapes
that are present but unrecognized fall back to a synthetic placeholder; only
payloads with no content at all yield ``None``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Final

from msgvault.domain.models import (
    ArchivedMessage,
    ContentType,
    InboundMessageEvent,
    MediaLink,
    QuotedRef,
)
from msgvault.domain.partitioning import NEWSLETTER_SUFFIX, classify_chat

VIEW_ONCE_KEYS: Final[tuple[str, ...]] = (
    "viewOnceMessage",
    "viewOnceMessageV2",
    "viewOnceMessageV2Extension",
)

POLL_KEYS: Final[tuple[str, ...]] = (
    "pollCreationMessage",
    "pollCreationMessageV2",
    "pollCreationMessageV3",
)

_MEDIA_KEYS: Final[dict[str, ContentType]] = {
    "stickerMessage": ContentType.STICKER,
    "imageMessage": ContentType.IMAGE,
    "videoMessage": ContentType.VIDEO,
    "audioMessage": ContentType.AUDIO,
    "documentMessage": ContentType.DOCUMENT,
}

_DEFAULT_MIMETYPES: Final[dict[ContentType, str]] = {
    ContentType.STICKER: "image/webp",
    ContentType.IMAGE: "image/jpeg",
    ContentType.VIDEO: "video/mp4",
    ContentType.AUDIO: "audio/ogg",
    ContentType.DOCUMENT: "application/octet-stream",
}

PLACEHOLDER_SYSTEM_MESSAGE: Final[str] = "[System Message]"
PLACEHOLDER_SYSTEM_EVENT: Final[str] = "[System Event]"
PLACEHOLDER_BROADCAST: Final[str] = "[Broadcast Message]"


@dataclass(slots=True)
class ExtractedContent:
    """Body and metadata pulled out of a payload."""

    body: str
    content_type: ContentType
    has_media: bool = False
    quoted_ref: QuotedRef | None = None
    mentions: list[str] = field(default_factory=list)


@dataclass(slots=True)
class MediaDescriptor:
    """What the payload says about its attachment."""

    content_type: ContentType
    mimetype: str
    filename: str | None
    caption: str | None
    view_once: bool = False


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def unwrap_view_once(payload: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    """Return the inner payload of a view-once wrapper and whether one existed."""
    for key in VIEW_ONCE_KEYS:
        wrapper = _as_dict(payload.get(key))
        inner = _as_dict(wrapper.get("message"))
        if inner:
            return inner, True
    return payload, False


def _has_typed_content(payload: dict[str, Any]) -> bool:
    return any(value not in (None, "", {}, []) for value in payload.values())


def _extract_quoted_body(quoted: dict[str, Any]) -> str:
    if quoted.get("conversation"):
        return str(quoted["conversation"])
    text = _as_dict(quoted.get("extendedTextMessage")).get("text")
    if text:
        return str(text)
    for key in ("imageMessage", "videoMessage"):
        caption = _as_dict(quoted.get(key)).get("caption")
        if caption:
            return str(caption)
    return ""


def _extract_context(payload: dict[str, Any]) -> tuple[QuotedRef | None, list[str]]:
    context = _as_dict(_as_dict(payload.get("extendedTextMessage")).get("contextInfo"))
    if not context:
        return None, []

    mentions = [str(jid) for jid in context.get("mentionedJid") or [] if jid]
    quoted_payload = _as_dict(context.get("quotedMessage"))
    if not quoted_payload:
        return None, mentions

    stanza_id = context.get("stanzaId")
    participant = context.get("participant")
    quoted = QuotedRef(
        message_id=str(stanza_id) if stanza_id is not None else None,
        sender_id=str(participant) if participant is not None else None,
        body=_extract_quoted_body(quoted_payload),
    )
    return quoted, mentions


def _extract_primary(payload: dict[str, Any]) -> tuple[str, ContentType]:
    image = _as_dict(payload.get("imageMessage"))
    video = _as_dict(payload.get("videoMessage"))
    document = _as_dict(payload.get("documentMessage"))

    if payload.get("conversation"):
        return str(payload["conversation"]), ContentType.TEXT
    extended_text = _as_dict(payload.get("extendedTextMessage")).get("text")
    if extended_text:
        return str(extended_text), ContentType.TEXT
    if image.get("caption"):
        return str(image["caption"]), ContentType.IMAGE
    if video.get("caption"):
        return str(video["caption"]), ContentType.VIDEO
    if document.get("caption"):
        return str(document["caption"]), ContentType.DOCUMENT
    if "audioMessage" in payload:
        return "[Audio Message]", ContentType.AUDIO
    if "stickerMessage" in payload:
        return "[Sticker]", ContentType.STICKER
    if "locationMessage" in payload:
        location = _as_dict(payload["locationMessage"])
        latitude = location.get("degreesLatitude")
        longitude = location.get("degreesLongitude")
        return f"Location: {latitude}, {longitude}", ContentType.LOCATION
    if "contactMessage" in payload:
        contact = _as_dict(payload["contactMessage"])
        return str(contact.get("displayName") or "Contact"), ContentType.CONTACT
    if "imageMessage" in payload:
        return "[Image]", ContentType.IMAGE
    if "videoMessage" in payload:
        return "[Video]", ContentType.VIDEO
    if "documentMessage" in payload:
        title = document.get("title") or document.get("fileName") or "[Document]"
        return str(title), ContentType.DOCUMENT
    return "", ContentType.TEXT


def _extract_fallback(
    event: InboundMessageEvent, payload: dict[str, Any]
) -> tuple[str, ContentType] | None:
    if "protocolMessage" in payload:
        return PLACEHOLDER_SYSTEM_MESSAGE, ContentType.SYSTEM
    if "reactionMessage" in payload:
        reaction = _as_dict(payload["reactionMessage"]).get("text") or ""
        return f"[Reaction: {reaction}]", ContentType.REACTION
    for key in POLL_KEYS:
        if key in payload:
            name = _as_dict(payload[key]).get("name") or ""
            return f"[Poll: {name}]", ContentType.POLL
    if event.stub_type is not None:
        return PLACEHOLDER_SYSTEM_EVENT, ContentType.SYSTEM
    if event.is_broadcast or NEWSLETTER_SUFFIX in event.chat_id:
        return PLACEHOLDER_BROADCAST, ContentType.SYSTEM
    if _has_typed_content(payload):
        return PLACEHOLDER_SYSTEM_EVENT, ContentType.SYSTEM
    return None


def extract_content(event: InboundMessageEvent) -> ExtractedContent | None:
    """Extract the archivable body of an event.

    Returns:
        Extracted content, or None when the event carries nothing at all
    """
    payload, _ = unwrap_view_once(event.payload)

    body, content_type = _extract_primary(payload)
    if not body and event.body:
        body = event.body

    if not body:
        fallback = _extract_fallback(event, payload)
        if fallback is None:
            return None
        body, content_type = fallback

    quoted_ref, mentions = _extract_context(payload)
    has_media = any(key in payload for key in _MEDIA_KEYS)

    return ExtractedContent(
        body=body,
        content_type=content_type,
        has_media=has_media,
        quoted_ref=quoted_ref,
        mentions=mentions,
    )


def describe_media(event: InboundMessageEvent) -> MediaDescriptor | None:
    """Describe the attachment declared by a payload, stickers first."""
    payload, view_once = unwrap_view_once(event.payload)
    for key, content_type in _MEDIA_KEYS.items():
        if key not in payload:
            continue
        media = _as_dict(payload[key])
        mimetype = media.get("mimetype") or _DEFAULT_MIMETYPES[content_type]
        filename = media.get("fileName")
        if not filename and content_type is ContentType.STICKER:
            filename = "sticker.webp"
        return MediaDescriptor(
            content_type=content_type,
            mimetype=str(mimetype),
            filename=str(filename) if filename else None,
            caption=media.get("caption"),
            view_once=view_once,
        )
    return None


def build_archived_message(
    event: InboundMessageEvent,
    *,
    is_outgoing: bool = False,
    media_link: MediaLink | None = None,
    archived_at: datetime | None = None,
) -> ArchivedMessage | None:
    """Turn an inbound event into an archive record, or None if it is empty."""
    content = extract_content(event)
    if content is None:
        return None

    extra: dict[str, Any] = {}
    if archived_at is not None:
        extra["archived_at"] = archived_at

    return ArchivedMessage(
        id=event.id,
        chat_id=event.chat_id,
        sender_id=event.author,
        timestamp=event.timestamp,
        category=classify_chat(event.chat_id, is_broadcast=event.is_broadcast),
        content_type=content.content_type,
        body=content.body,
        has_media=content.has_media or media_link is not None,
        media_link=media_link,
        quoted_ref=content.quoted_ref,
        mentions=content.mentions,
        is_outgoing=is_outgoing,
        **extra,
    )


__all__ = [
    "ExtractedContent",
    "MediaDescriptor",
    "build_archived_message",
    "describe_media",
    "extract_content",
    "unwrap_view_once",
]
