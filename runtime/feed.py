from __future__ import annotations

from pathlib import Path
import threading
from typing import Protocol, Sequence

from inbox.models import Message
from inbox.payload import FeedPage, load_feed_file


class FeedError(RuntimeError):
    pass


class FeedSource(Protocol):
    def fetch_page(self, page: int) -> FeedPage: ...


class StaticFeedSource:
    """Pages over a fixed list of messages, newest items first as supplied."""

    def __init__(self, messages: Sequence[Message], page_size: int = 10) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.page_size = page_size
        self._items = list(messages)
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: str | Path, page_size: int = 10) -> StaticFeedSource:
        return cls(load_feed_file(path), page_size=page_size)

    def prepend(self, message: Message) -> None:
        with self._lock:
            self._items.insert(0, message)

    def fetch_page(self, page: int) -> FeedPage:
        if page < 0:
            raise FeedError(f"Invalid page index: {page}")
        with self._lock:
            start = page * self.page_size
            if start >= len(self._items):
                return FeedPage(messages=[], has_more=False, total_count=len(self._items))
            end = min(start + self.page_size, len(self._items))
            return FeedPage(
                messages=list(self._items[start:end]),
                has_more=end < len(self._items),
                total_count=len(self._items),
            )
