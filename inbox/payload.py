from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import json
from pathlib import Path
from typing import Any

from inbox.models import ButtonContent, ImageContent, Message, MessageContent, MessageType, TextContent


class PayloadError(ValueError):
    pass


@dataclass(slots=True)
class FeedPage:
    messages: list[Message]
    has_more: bool
    total_count: int | None = None


def _require(raw: dict[str, Any], key: str) -> Any:
    if key not in raw or raw[key] is None:
        raise PayloadError(f"Missing field '{key}' in message payload")
    return raw[key]


def parse_content(raw: dict[str, Any] | None, summary: str) -> MessageContent:
    if not raw:
        return TextContent(summary)

    kind = str(raw.get("type", "text"))
    text = str(raw.get("text", summary))
    if kind == "text":
        return TextContent(text)
    if kind == "image":
        image_url = raw.get("imageURL") or raw.get("image_url")
        if not image_url:
            raise PayloadError("Image content requires an image URL")
        return ImageContent(text=text, image_url=str(image_url))
    if kind == "button":
        button_text = raw.get("buttonText") or raw.get("button_text")
        action = raw.get("buttonAction") or raw.get("action")
        if not button_text or not action:
            raise PayloadError("Button content requires button text and an action")
        return ButtonContent(text=text, button_text=str(button_text), action=str(action))
    raise PayloadError(f"Unknown content type: {kind}")


def parse_message_payload(raw: dict[str, Any]) -> Message:
    summary = str(_require(raw, "summary"))
    try:
        message_type = MessageType(str(_require(raw, "type")))
    except ValueError as exc:
        raise PayloadError(f"Unknown message type: {raw.get('type')}") from exc

    try:
        timestamp = datetime.fromtimestamp(float(_require(raw, "timestamp")))
    except (TypeError, ValueError, OverflowError) as exc:
        raise PayloadError(f"Invalid timestamp: {raw.get('timestamp')}") from exc

    return Message(
        message_id=str(_require(raw, "id")),
        avatar=str(raw.get("avatar", "")),
        nickname=str(_require(raw, "nickname")),
        timestamp=timestamp,
        summary=summary,
        message_type=message_type,
        content=parse_content(raw.get("content"), summary),
        is_read=bool(raw.get("isRead", False)),
        unread_count=max(0, int(raw.get("unreadCount", 0) or 0)),
        is_pinned=bool(raw.get("isPinned") or False),
    )


def parse_page_payload(raw: dict[str, Any]) -> FeedPage:
    items = raw.get("messages")
    if not isinstance(items, list):
        raise PayloadError("Page payload requires a 'messages' list")
    total = raw.get("totalCount")
    return FeedPage(
        messages=[parse_message_payload(item) for item in items],
        has_more=bool(raw.get("hasMore", False)),
        total_count=int(total) if total is not None else None,
    )


def load_feed_file(path: str | Path) -> list[Message]:
    """Read a JSON feed dump: either a bare list of messages or a page object."""
    file_path = Path(path)
    try:
        decoded = json.loads(file_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise PayloadError(f"{file_path.name} is not valid JSON: {exc}") from exc

    if isinstance(decoded, list):
        return [parse_message_payload(item) for item in decoded]
    if isinstance(decoded, dict):
        return parse_page_payload(decoded).messages
    raise PayloadError(f"{file_path.name} must hold a list or a page object")
