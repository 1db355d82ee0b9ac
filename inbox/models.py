from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union


class MessageType(str, Enum):
    FRIEND = "friend"
    SYSTEM = "system"
    LIVE = "live"
    COMMENT = "comment"
    PROMOTION = "promotion"


class MessageEvent(str, Enum):
    RECEIVED = "received"
    DISPLAYED = "displayed"
    CLICKED = "clicked"
    READ = "read"
    BUTTON_CLICKED = "button_clicked"


@dataclass(frozen=True, slots=True)
class TextContent:
    text: str
    kind: str = field(default="text", init=False)


@dataclass(frozen=True, slots=True)
class ImageContent:
    text: str
    image_url: str
    kind: str = field(default="image", init=False)


@dataclass(frozen=True, slots=True)
class ButtonContent:
    text: str
    button_text: str
    action: str
    kind: str = field(default="button", init=False)


MessageContent = Union[TextContent, ImageContent, ButtonContent]


@dataclass(slots=True)
class Message:
    message_id: str
    avatar: str
    nickname: str
    timestamp: datetime
    summary: str
    message_type: MessageType
    content: MessageContent
    is_read: bool = False
    unread_count: int = 0
    is_pinned: bool = False
    remark: str | None = None

    @property
    def display_name(self) -> str:
        """Remark when one is set, otherwise the original nickname."""
        if self.remark:
            return self.remark
        return self.nickname


@dataclass(frozen=True, slots=True)
class MessageState:
    message_id: str
    is_read: bool
    unread_count: int
    is_pinned: bool
    updated_at: datetime


@dataclass(frozen=True, slots=True)
class Remark:
    message_id: str
    nickname: str
    remark: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True, slots=True)
class EventRecord:
    event_id: str
    event: MessageEvent
    message_id: str
    message_type: MessageType
    timestamp: datetime


def _percent(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    return numerator / denominator * 100


@dataclass(slots=True)
class TypeStats:
    received: int = 0
    displayed: int = 0
    clicked: int = 0
    read: int = 0

    @property
    def recall_rate(self) -> float:
        return _percent(self.clicked, self.received)

    @property
    def ctr(self) -> float:
        return _percent(self.clicked, self.displayed)

    def to_dict(self) -> dict[str, int]:
        return {
            "received": self.received,
            "displayed": self.displayed,
            "clicked": self.clicked,
            "read": self.read,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, object]) -> TypeStats:
        return cls(
            received=int(raw.get("received", 0) or 0),
            displayed=int(raw.get("displayed", 0) or 0),
            clicked=int(raw.get("clicked", 0) or 0),
            read=int(raw.get("read", 0) or 0),
        )


@dataclass(slots=True)
class DailyStats:
    date_string: str
    total_received: int = 0
    total_displayed: int = 0
    total_clicked: int = 0
    total_read: int = 0
    unread_count: int = 0
    type_stats: dict[str, TypeStats] = field(default_factory=dict)

    @property
    def ctr(self) -> float:
        return _percent(self.total_clicked, self.total_displayed)

    @property
    def read_rate(self) -> float:
        return _percent(self.total_read, self.total_received)

    def apply(self, event: MessageEvent, message_type: MessageType) -> None:
        per_type = self.type_stats.setdefault(message_type.value, TypeStats())
        if event is MessageEvent.RECEIVED:
            self.total_received += 1
            self.unread_count += 1
            per_type.received += 1
        elif event is MessageEvent.DISPLAYED:
            self.total_displayed += 1
            per_type.displayed += 1
        elif event in (MessageEvent.CLICKED, MessageEvent.BUTTON_CLICKED):
            self.total_clicked += 1
            per_type.clicked += 1
        elif event is MessageEvent.READ:
            self.total_read += 1
            self.unread_count = max(0, self.unread_count - 1)
            per_type.read += 1

    def copy(self) -> DailyStats:
        return DailyStats(
            date_string=self.date_string,
            total_received=self.total_received,
            total_displayed=self.total_displayed,
            total_clicked=self.total_clicked,
            total_read=self.total_read,
            unread_count=self.unread_count,
            type_stats={key: TypeStats(**value.to_dict()) for key, value in self.type_stats.items()},
        )
