from __future__ import annotations

import json
from pathlib import Path

import pytest

from inbox.models import ButtonContent, ImageContent, MessageType, TextContent
from inbox.payload import PayloadError, load_feed_file, parse_message_payload, parse_page_payload


def _payload(**overrides: object) -> dict[str, object]:
    raw: dict[str, object] = {
        "id": "msg_1",
        "avatar": "https://example.com/a.png",
        "nickname": "Alice",
        "timestamp": 1_700_000_000,
        "summary": "See you tomorrow",
        "type": "friend",
        "isRead": False,
        "unreadCount": 2,
    }
    raw.update(overrides)
    return raw


def test_missing_content_and_pin_fall_back_to_defaults() -> None:
    message = parse_message_payload(_payload())
    assert message.content == TextContent("See you tomorrow")
    assert message.is_pinned is False
    assert message.message_type is MessageType.FRIEND
    assert message.unread_count == 2
    assert message.remark is None


def test_content_variants() -> None:
    image = parse_message_payload(
        _payload(content={"type": "image", "text": "Sunset", "imageURL": "https://example.com/s.jpg"})
    )
    assert image.content == ImageContent(text="Sunset", image_url="https://example.com/s.jpg")
    assert image.content.kind == "image"

    button = parse_message_payload(
        _payload(
            type="promotion",
            isPinned=True,
            content={"type": "button", "text": "Gift", "buttonText": "Claim", "buttonAction": "claim_gift"},
        )
    )
    assert button.content == ButtonContent(text="Gift", button_text="Claim", action="claim_gift")
    assert button.is_pinned is True


def test_invalid_payloads_raise() -> None:
    with pytest.raises(PayloadError):
        parse_message_payload(_payload(type="unknown"))
    with pytest.raises(PayloadError):
        parse_message_payload(_payload(content={"type": "image", "text": "no url"}))
    bad = _payload()
    del bad["nickname"]
    with pytest.raises(PayloadError):
        parse_message_payload(bad)


def test_page_payload_and_feed_files(tmp_path: Path) -> None:
    page = parse_page_payload({"messages": [_payload()], "hasMore": True, "totalCount": 30})
    assert page.has_more is True
    assert page.total_count == 30

    listing = tmp_path / "feed.json"
    listing.write_text(json.dumps([_payload(), _payload(id="msg_2")]), encoding="utf-8")
    assert [msg.message_id for msg in load_feed_file(listing)] == ["msg_1", "msg_2"]

    paged = tmp_path / "page.json"
    paged.write_text(json.dumps({"messages": [_payload()], "hasMore": False}), encoding="utf-8")
    assert len(load_feed_file(paged)) == 1

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(PayloadError):
        load_feed_file(broken)
