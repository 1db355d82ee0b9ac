from __future__ import annotations

from datetime import datetime, timedelta
import logging
import sqlite3
import threading
from typing import Callable
import uuid

from inbox.models import DailyStats, EventRecord, Message, MessageEvent, MessageType, TypeStats
from inbox.storage.analytics_store import AnalyticsStore

logger = logging.getLogger(__name__)

TOTAL_KEY = "total"
WEEK_KEY = "week"


def date_key(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d")


class EventLedger:
    """Append-only event log with today, weekly and lifetime funnel counters.

    ``record`` applies an event to today's row and the lifetime row under one
    lock and persists the event together with both rows, so a concurrent
    reader sees either none or all of an update. When the calendar day changes
    a zeroed row replaces today's; the previous day stays in the weekly buffer
    exactly as it was last written.
    """

    def __init__(
        self,
        store: AnalyticsStore,
        *,
        window_days: int = 7,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.store = store
        self.window_days = max(1, window_days)
        self._clock = clock
        self._lock = threading.RLock()
        self.persist_failures = 0

        today = date_key(self._clock())
        self._today = store.load_today(today) or DailyStats(today)
        self._total = store.load_total() or DailyStats(TOTAL_KEY)
        self._weekly: dict[str, DailyStats] = {
            row.date_string: row for row in store.load_weekly(self.window_days)
        }
        self.backfill_weekly()

    def record(self, event: MessageEvent, message_id: str, message_type: MessageType) -> EventRecord:
        with self._lock:
            now = self._clock()
            record = EventRecord(
                event_id=uuid.uuid4().hex,
                event=event,
                message_id=message_id,
                message_type=message_type,
                timestamp=now,
            )
            self._roll_over(date_key(now))
            self._today.apply(event, message_type)
            self._total.apply(event, message_type)
            self._weekly[self._today.date_string] = self._today.copy()

            try:
                self.store.save_event(record, self._today, self._total)
            except sqlite3.Error:
                self.persist_failures += 1
                logger.warning("Failed to persist %s event for %s", event.value, message_id, exc_info=True)

        logger.debug("Tracked %s - %s - %s", event.value, message_type.value, message_id)
        return record

    def track_received(self, message: Message) -> EventRecord:
        return self.record(MessageEvent.RECEIVED, message.message_id, message.message_type)

    def track_displayed(self, message: Message) -> EventRecord:
        return self.record(MessageEvent.DISPLAYED, message.message_id, message.message_type)

    def track_clicked(self, message: Message) -> EventRecord:
        return self.record(MessageEvent.CLICKED, message.message_id, message.message_type)

    def track_read(self, message: Message) -> EventRecord:
        return self.record(MessageEvent.READ, message.message_id, message.message_type)

    def track_button_clicked(self, message: Message, action: str) -> EventRecord:
        logger.debug("Button action %s on %s", action, message.message_id)
        return self.record(MessageEvent.BUTTON_CLICKED, message.message_id, message.message_type)

    @property
    def today_stats(self) -> DailyStats:
        with self._lock:
            current = date_key(self._clock())
            if self._today.date_string != current:
                return DailyStats(current)
            return self._today.copy()

    @property
    def total_stats(self) -> DailyStats:
        with self._lock:
            return self._total.copy()

    @property
    def weekly_stats(self) -> list[DailyStats]:
        """Weekly buffer, most recent day first."""
        with self._lock:
            ordered = sorted(self._weekly.values(), key=lambda row: row.date_string, reverse=True)
            return [row.copy() for row in ordered[: self.window_days]]

    def weekly_summary(self) -> DailyStats:
        summary = DailyStats(WEEK_KEY)
        for row in self.weekly_stats:
            summary.total_received += row.total_received
            summary.total_displayed += row.total_displayed
            summary.total_clicked += row.total_clicked
            summary.total_read += row.total_read
            summary.unread_count += row.unread_count
            for key, value in row.type_stats.items():
                merged = summary.type_stats.setdefault(key, TypeStats())
                merged.received += value.received
                merged.displayed += value.displayed
                merged.clicked += value.clicked
                merged.read += value.read
        return summary

    def events_for(self, message_id: str) -> list[EventRecord]:
        return self.store.fetch_events(message_id)

    def backfill_weekly(self) -> bool:
        """Fill the weekly buffer with one row per recent day; first run only."""
        with self._lock:
            if self._weekly:
                return False
            now = self._clock()
            rows: list[DailyStats] = []
            for offset in range(self.window_days):
                key = date_key(now - timedelta(days=offset))
                if key == self._today.date_string:
                    rows.append(self._today.copy())
                else:
                    rows.append(DailyStats(key))
            self._weekly = {row.date_string: row for row in rows}
            self.store.save_weekly(rows)
            logger.info("Backfilled weekly stats for %s days", len(rows))
            return True

    def reset(self) -> None:
        with self._lock:
            self.store.clear()
            self._today = DailyStats(date_key(self._clock()))
            self._total = DailyStats(TOTAL_KEY)
            self._weekly = {}
            self.backfill_weekly()
        logger.info("Analytics reset")

    def _roll_over(self, current: str) -> None:
        if self._today.date_string == current:
            return
        logger.info("Day rolled over from %s to %s", self._today.date_string, current)
        self._today = DailyStats(current)
