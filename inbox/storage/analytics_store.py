from __future__ import annotations

from datetime import datetime
import json
import sqlite3
import time
from typing import Sequence

from inbox.models import DailyStats, EventRecord, MessageEvent, MessageType, TypeStats
from inbox.storage.sqlite_store import InboxDatabase

SCOPE_TODAY = "today"
SCOPE_TOTAL = "total"
SCOPE_WEEKLY = "weekly"


class AnalyticsStore:
    def __init__(self, database: InboxDatabase) -> None:
        self.database = database

    def save_event(
        self,
        record: EventRecord,
        today: DailyStats,
        total: DailyStats,
    ) -> None:
        """Append the event and persist today, lifetime and today's weekly slot in one transaction."""
        with self.database.connect() as conn:
            conn.execute(
                """
                INSERT INTO analytics_event(id, event, message_id, message_type, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    record.event_id,
                    record.event.value,
                    record.message_id,
                    record.message_type.value,
                    record.timestamp.timestamp(),
                ),
            )
            conn.execute(
                "DELETE FROM analytics_daily WHERE scope = ? AND date_string != ?",
                (SCOPE_TODAY, today.date_string),
            )
            _upsert_rows(
                conn,
                [
                    (SCOPE_TODAY, today),
                    (SCOPE_TOTAL, total),
                    (SCOPE_WEEKLY, today),
                ],
            )
            conn.commit()

    def save_weekly(self, rows: Sequence[DailyStats]) -> None:
        if not rows:
            return
        with self.database.connect() as conn:
            _upsert_rows(conn, [(SCOPE_WEEKLY, row) for row in rows])
            conn.commit()

    def load_today(self, date_string: str) -> DailyStats | None:
        return self._load_one(SCOPE_TODAY, date_string)

    def load_total(self) -> DailyStats | None:
        return self._load_one(SCOPE_TOTAL, SCOPE_TOTAL)

    def load_weekly(self, window_days: int) -> list[DailyStats]:
        with self.database.connect() as conn:
            # Only the newest window survives a reload.
            conn.execute(
                """
                DELETE FROM analytics_daily
                WHERE scope = ? AND date_string NOT IN (
                    SELECT date_string FROM analytics_daily
                    WHERE scope = ?
                    ORDER BY date_string DESC
                    LIMIT ?
                )
                """,
                (SCOPE_WEEKLY, SCOPE_WEEKLY, window_days),
            )
            conn.commit()
            rows = conn.execute(
                """
                SELECT * FROM analytics_daily
                WHERE scope = ?
                ORDER BY date_string DESC
                """,
                (SCOPE_WEEKLY,),
            ).fetchall()
        return [_stats_from_row(row) for row in rows]

    def clear(self) -> None:
        with self.database.connect() as conn:
            conn.execute("DELETE FROM analytics_daily")
            conn.execute("DELETE FROM analytics_event")
            conn.commit()

    def fetch_events(self, message_id: str) -> list[EventRecord]:
        with self.database.connect() as conn:
            rows = conn.execute(
                """
                SELECT id, event, message_id, message_type, timestamp
                FROM analytics_event
                WHERE message_id = ?
                ORDER BY timestamp ASC, rowid ASC
                """,
                (message_id,),
            ).fetchall()
        return [
            EventRecord(
                event_id=str(row["id"]),
                event=MessageEvent(str(row["event"])),
                message_id=str(row["message_id"]),
                message_type=MessageType(str(row["message_type"])),
                timestamp=datetime.fromtimestamp(float(row["timestamp"])),
            )
            for row in rows
        ]

    def count_events(self) -> int:
        with self.database.connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM analytics_event").fetchone()
        if not row:
            return 0
        return int(row["count"])

    def _load_one(self, scope: str, date_string: str) -> DailyStats | None:
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT * FROM analytics_daily WHERE scope = ? AND date_string = ?",
                (scope, date_string),
            ).fetchone()
        return _stats_from_row(row) if row else None


def _upsert_rows(conn: sqlite3.Connection, rows: Sequence[tuple[str, DailyStats]]) -> None:
    now = time.time()
    conn.executemany(
        """
        INSERT OR REPLACE INTO analytics_daily(
            scope, date_string, total_received, total_displayed, total_clicked,
            total_read, unread_count, type_stats, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                scope,
                stats.date_string,
                stats.total_received,
                stats.total_displayed,
                stats.total_clicked,
                stats.total_read,
                stats.unread_count,
                json.dumps({key: value.to_dict() for key, value in stats.type_stats.items()}),
                now,
            )
            for scope, stats in rows
        ],
    )


def _stats_from_row(row: sqlite3.Row) -> DailyStats:
    try:
        raw_types = json.loads(str(row["type_stats"] or "{}"))
    except json.JSONDecodeError:
        raw_types = {}
    if not isinstance(raw_types, dict):
        raw_types = {}
    return DailyStats(
        date_string=str(row["date_string"]),
        total_received=int(row["total_received"]),
        total_displayed=int(row["total_displayed"]),
        total_clicked=int(row["total_clicked"]),
        total_read=int(row["total_read"]),
        unread_count=int(row["unread_count"]),
        type_stats={
            str(key): TypeStats.from_dict(value)
            for key, value in raw_types.items()
            if isinstance(value, dict)
        },
    )
