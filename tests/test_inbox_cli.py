from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from inbox.analytics import EventLedger
from inbox.models import MessageEvent
from inbox.storage.analytics_store import AnalyticsStore
from inbox.storage.migrations import SCHEMA_VERSION
from inbox.storage.sqlite_store import InboxDatabase, MessageStateStore, RemarkStore
from scripts.inbox_cli import app

runner = CliRunner()


def _write_feed(path: Path) -> Path:
    payload = [
        {
            "id": "msg_1",
            "avatar": "",
            "nickname": "Alice",
            "timestamp": 1_741_600_000,
            "summary": "Lunch today?",
            "type": "friend",
            "isRead": False,
            "unreadCount": 2,
        },
        {
            "id": "msg_2",
            "avatar": "",
            "nickname": "Shop",
            "timestamp": 1_741_500_000,
            "summary": "Weekend sale",
            "type": "promotion",
            "isRead": True,
            "unreadCount": 0,
            "content": {"type": "button", "text": "Sale", "buttonText": "Open", "buttonAction": "open_sale"},
        },
    ]
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_migrate_reports_schema_version(tmp_path: Path) -> None:
    db = tmp_path / "inbox.sqlite"
    result = runner.invoke(app, ["migrate", "--db", str(db)])
    assert result.exit_code == 0, result.output
    assert f"Schema version {SCHEMA_VERSION}" in result.output


def test_seed_then_update_commands(tmp_path: Path) -> None:
    db = tmp_path / "inbox.sqlite"
    feed = _write_feed(tmp_path / "feed.json")

    result = runner.invoke(app, ["seed", str(feed), "--db", str(db)])
    assert result.exit_code == 0, result.output
    assert "Seeded state for 2 messages" in result.output

    assert runner.invoke(app, ["mark-read", "msg_1", "--db", str(db)]).exit_code == 0
    pinned = runner.invoke(app, ["pin", "msg_2", "--db", str(db)])
    assert "Pinned msg_2" in pinned.output
    assert runner.invoke(app, ["remark", "msg_1", "Alice", "Ally", "--db", str(db)]).exit_code == 0

    database = InboxDatabase(db)
    first = MessageStateStore(database).get_state("msg_1")
    second = MessageStateStore(database).get_state("msg_2")
    assert first is not None and (first.is_read, first.unread_count) == (True, 0)
    assert second is not None and second.is_pinned is True
    assert RemarkStore(database).get_remark("msg_1") == "Ally"


def test_list_and_stats(tmp_path: Path) -> None:
    db = tmp_path / "inbox.sqlite"
    feed = _write_feed(tmp_path / "feed.json")

    listed = runner.invoke(app, ["list", str(feed), "--db", str(db), "--query", "sale"])
    assert listed.exit_code == 0, listed.output
    assert "Weekend" in listed.output
    assert "Lunch" not in listed.output
    assert "Unread: 2" in listed.output

    stats = runner.invoke(app, ["stats", "--db", str(db)])
    assert stats.exit_code == 0, stats.output
    assert "Overview" in stats.output
    assert "Promotions" in stats.output


def test_seed_rejects_bad_feed(tmp_path: Path) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text("[{\"id\": \"x\"}]", encoding="utf-8")
    result = runner.invoke(app, ["seed", str(bad), "--db", str(tmp_path / "inbox.sqlite")])
    assert result.exit_code == 1


def test_watch_prints_list_after_push_window(tmp_path: Path) -> None:
    feed = _write_feed(tmp_path / "feed.json")
    result = runner.invoke(app, ["watch", str(feed), "--seconds", "0.2", "--db", str(tmp_path / "inbox.sqlite")])
    assert result.exit_code == 0, result.output
    assert "Unread:" in result.output


def test_mark_read_records_one_read_event(tmp_path: Path) -> None:
    db = tmp_path / "inbox.sqlite"

    first = runner.invoke(app, ["mark-read", "msg_9", "--type", "system", "--db", str(db)])
    assert first.exit_code == 0, first.output
    assert "Marked msg_9 as read" in first.output
    again = runner.invoke(app, ["mark-read", "msg_9", "--type", "system", "--db", str(db)])
    assert "already read" in again.output

    ledger = EventLedger(AnalyticsStore(InboxDatabase(db)))
    assert ledger.total_stats.total_read == 1
    assert ledger.total_stats.type_stats["system"].read == 1
    assert [record.event for record in ledger.events_for("msg_9")] == [MessageEvent.READ]


def test_remark_goes_through_editor(tmp_path: Path) -> None:
    db = tmp_path / "inbox.sqlite"

    saved = runner.invoke(app, ["remark", "msg_1", "Alice", "Ally", "--db", str(db)])
    assert "Remark for msg_1 saved" in saved.output
    unchanged = runner.invoke(app, ["remark", "msg_1", "Someone else", "Ally", "--db", str(db)])
    assert "Remark for msg_1 unchanged" in unchanged.output

    record = RemarkStore(InboxDatabase(db)).get_remark_record("msg_1")
    assert record is not None and (record.nickname, record.remark) == ("Alice", "Ally")
