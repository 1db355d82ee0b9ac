from __future__ import annotations

from datetime import datetime

from inbox.models import Message, MessageType, TextContent
from runtime.search import HighlightSpan, filter_messages, highlight_spans


def test_highlight_splits_every_occurrence() -> None:
    assert highlight_spans("test test", "test") == [
        HighlightSpan("test", True),
        HighlightSpan(" ", False),
        HighlightSpan("test", True),
    ]


def test_highlight_is_case_insensitive_and_keeps_original_text() -> None:
    assert highlight_spans("Hello, hello!", "HELLO") == [
        HighlightSpan("Hello", True),
        HighlightSpan(", ", False),
        HighlightSpan("hello", True),
        HighlightSpan("!", False),
    ]


def test_highlight_overlapping_candidates_take_first_match() -> None:
    assert highlight_spans("aaa", "aa") == [HighlightSpan("aa", True), HighlightSpan("a", False)]


def test_highlight_without_match_or_keyword() -> None:
    assert highlight_spans("nothing here", "zzz") == [HighlightSpan("nothing here", False)]
    assert highlight_spans("nothing here", "") == [HighlightSpan("nothing here", False)]


def test_highlight_escapes_regex_characters() -> None:
    assert highlight_spans("price (50%)", "(50%)") == [
        HighlightSpan("price ", False),
        HighlightSpan("(50%)", True),
    ]


def _message(nickname: str, summary: str) -> Message:
    return Message(
        message_id=nickname,
        avatar="",
        nickname=nickname,
        timestamp=datetime(2025, 3, 10, 8, 0, 0),
        summary=summary,
        message_type=MessageType.FRIEND,
        content=TextContent(summary),
    )


def test_filter_and_highlight_agree_on_matches() -> None:
    messages = [_message("Straße Cafe", "open late"), _message("Strasse Bar", "closed")]

    for query in ("STRASSE", "straße", "cafe"):
        matched = filter_messages(messages, query)
        for message in messages:
            highlighted = any(span.is_highlighted for span in highlight_spans(message.display_name, query))
            highlighted = highlighted or any(
                span.is_highlighted for span in highlight_spans(message.summary, query)
            )
            assert (message in matched) == highlighted

    assert [message.nickname for message in filter_messages(messages, "STRASSE")] == ["Strasse Bar"]
