from __future__ import annotations

from datetime import datetime
from pathlib import Path

from inbox.models import Message, MessageType, TextContent
from inbox.storage.sqlite_store import InboxDatabase, RemarkStore
from runtime.remark_editor import RemarkEditor


def _message(remark: str | None = None) -> Message:
    return Message(
        message_id="msg_7",
        avatar="",
        nickname="Bob",
        timestamp=datetime(2025, 3, 10, 8, 0, 0),
        summary="hi",
        message_type=MessageType.FRIEND,
        content=TextContent("hi"),
        remark=remark,
    )


def test_editor_prefers_saved_remark(tmp_path: Path) -> None:
    remarks = RemarkStore(InboxDatabase(tmp_path / "inbox.sqlite"))
    assert RemarkEditor.for_message(_message(), remarks).remark == ""
    assert RemarkEditor.for_message(_message(remark="Local"), remarks).remark == "Local"

    remarks.set_remark("msg_7", "Bob", "Stored")
    assert RemarkEditor.for_message(_message(remark="Local"), remarks).remark == "Stored"
    assert RemarkEditor("msg_7", "Bob", remarks).remark == "Stored"


def test_editor_save_writes_store(tmp_path: Path) -> None:
    remarks = RemarkStore(InboxDatabase(tmp_path / "inbox.sqlite"))
    editor = RemarkEditor.for_message(_message(), remarks)
    assert editor.has_changes() is False

    editor.remark = "Teammate"
    assert editor.has_changes() is True
    assert editor.has_changes("Teammate") is False
    assert editor.save() == "Teammate"
    assert editor.has_changes() is False

    record = remarks.get_remark_record("msg_7")
    assert record is not None
    assert (record.nickname, record.remark) == ("Bob", "Teammate")
