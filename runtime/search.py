from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Sequence

from inbox.models import Message


@dataclass(frozen=True, slots=True)
class HighlightSpan:
    text: str
    is_highlighted: bool


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    # Filtering and highlighting share this pattern so they agree on every match.
    return re.compile(re.escape(keyword), re.IGNORECASE)


def matches_query(message: Message, query: str) -> bool:
    pattern = _keyword_pattern(query)
    return any(
        pattern.search(text) is not None
        for text in (message.display_name, message.summary, message.content.text)
    )


def filter_messages(messages: Sequence[Message], query: str) -> list[Message]:
    if not query:
        return list(messages)
    return [message for message in messages if matches_query(message, query)]


def highlight_spans(text: str, keyword: str) -> list[HighlightSpan]:
    """Split ``text`` around every case-insensitive, non-overlapping ``keyword`` hit."""
    if not keyword:
        return [HighlightSpan(text, False)]

    spans: list[HighlightSpan] = []
    cursor = 0
    for match in _keyword_pattern(keyword).finditer(text):
        if match.start() > cursor:
            spans.append(HighlightSpan(text[cursor : match.start()], False))
        spans.append(HighlightSpan(match.group(0), True))
        cursor = match.end()

    if cursor < len(text):
        spans.append(HighlightSpan(text[cursor:], False))
    return spans or [HighlightSpan(text, False)]
