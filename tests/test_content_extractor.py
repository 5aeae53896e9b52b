"""Tests for payload content extraction."""

from typing import Any

import pytest

from msgvault.domain.models import ChatCategory, ContentType
from msgvault.services.content_extractor import (
    build_archived_message,
    describe_media,
    extract_content,
)
from tests.conftest import make_event


@pytest.mark.parametrize(
    ("payload", "body", "content_type"),
    [
        ({"conversation": "hello"}, "hello", ContentType.TEXT),
        ({"extendedTextMessage": {"text": "see link"}}, "see link", ContentType.TEXT),
        ({"imageMessage": {"caption": "beach"}}, "beach", ContentType.IMAGE),
        ({"imageMessage": {}}, "[Image]", ContentType.IMAGE),
        ({"videoMessage": {}}, "[Video]", ContentType.VIDEO),
        ({"audioMessage": {"seconds": 4}}, "[Audio Message]", ContentType.AUDIO),
        ({"stickerMessage": {}}, "[Sticker]", ContentType.STICKER),
        (
            {"documentMessage": {"fileName": "report.pdf"}},
            "report.pdf",
            ContentType.DOCUMENT,
        ),
        ({"documentMessage": {}}, "[Document]", ContentType.DOCUMENT),
        (
            {"locationMessage": {"degreesLatitude": 52.37, "degreesLongitude": 4.89}},
            "Location: 52.37, 4.89",
            ContentType.LOCATION,
        ),
        ({"contactMessage": {"displayName": "Ann"}}, "Ann", ContentType.CONTACT),
        ({"contactMessage": {}}, "Contact", ContentType.CONTACT),
        ({"protocolMessage": {"type": 0}}, "[System Message]", ContentType.SYSTEM),
        ({"reactionMessage": {"text": "👍"}}, "[Reaction: 👍]", ContentType.REACTION),
        (
            {"pollCreationMessage": {"name": "Lunch?"}},
            "[Poll: Lunch?]",
            ContentType.POLL,
        ),
        ({"someFutureMessage": {"x": 1}}, "[System Event]", ContentType.SYSTEM),
    ],
)
def test_extract_content_known_shapes(
    payload: dict[str, Any], body: str, content_type: ContentType
) -> None:
    """Test that every known payload shape maps to a body and content type."""
    content = extract_content(make_event(payload=payload))
    assert content is not None
    assert content.body == body
    assert content.content_type is content_type


def test_extract_content_unwraps_view_once() -> None:
    """Test that view-once wrappers are unwrapped before extraction."""
    payload = {"viewOnceMessageV2": {"message": {"imageMessage": {"caption": "once"}}}}
    content = extract_content(make_event(payload=payload))
    assert content is not None
    assert content.body == "once"
    assert content.has_media is True


def test_extract_content_uses_raw_body_fallback() -> None:
    content = extract_content(make_event(payload={}, body="raw text"))
    assert content is not None
    assert content.body == "raw text"


def test_extract_content_stub_and_broadcast_placeholders() -> None:
    """Test placeholders for stub events and empty broadcast messages."""
    stub = extract_content(make_event(payload={}, stub_type=20))
    assert stub is not None
    assert stub.body == "[System Event]"

    broadcast = extract_content(
        make_event(payload={}, chat_id="120363000000@newsletter")
    )
    assert broadcast is not None
    assert broadcast.body == "[Broadcast Message]"


def test_extract_content_empty_event_returns_none() -> None:
    """Test that genuinely empty events yield nothing."""
    assert extract_content(make_event(payload={})) is None
    assert extract_content(make_event(payload={"conversation": ""})) is None


def test_extract_content_quoted_reference_and_mentions() -> None:
    """Test that reply context is captured."""
    payload = {
        "extendedTextMessage": {
            "text": "agreed @15550002222",
            "contextInfo": {
                "stanzaId": "ORIG1",
                "participant": "15550002222@s.whatsapp.net",
                "quotedMessage": {"conversation": "shall we ship?"},
                "mentionedJid": ["15550002222@s.whatsapp.net"],
            },
        }
    }
    content = extract_content(make_event(payload=payload))
    assert content is not None
    assert content.quoted_ref is not None
    assert content.quoted_ref.message_id == "ORIG1"
    assert content.quoted_ref.body == "shall we ship?"
    assert content.mentions == ["15550002222@s.whatsapp.net"]


def test_describe_media_prefers_sticker_and_defaults_mimetype() -> None:
    descriptor = describe_media(make_event(payload={"stickerMessage": {}}))
    assert descriptor is not None
    assert descriptor.content_type is ContentType.STICKER
    assert descriptor.mimetype == "image/webp"
    assert descriptor.filename == "sticker.webp"

    assert describe_media(make_event()) is None


def test_describe_media_flags_view_once() -> None:
    payload = {
        "viewOnceMessage": {"message": {"videoMessage": {"mimetype": "video/mp4"}}}
    }
    descriptor = describe_media(make_event(payload=payload))
    assert descriptor is not None
    assert descriptor.view_once is True
    assert descriptor.content_type is ContentType.VIDEO


def test_build_archived_message_fields() -> None:
    """Test that archive records carry identity, category and author."""
    message = build_archived_message(
        make_event("ABC123", sender_id=None, chat_id="15550003333@s.whatsapp.net"),
        is_outgoing=True,
    )
    assert message is not None
    assert message.id == "ABC123"
    assert message.category is ChatCategory.INDIVIDUAL
    assert message.sender_id == "15550003333@s.whatsapp.net"
    assert message.is_outgoing is True
    assert message.has_media is False

    assert build_archived_message(make_event(payload={})) is None
