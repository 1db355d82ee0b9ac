from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
import logging
from pathlib import Path
import sqlite3
import threading
import time
from typing import Iterable, Iterator

from inbox.models import Message, MessageState, Remark
from inbox.storage.migrations import MigrationError, SchemaMigrator

logger = logging.getLogger(__name__)


class InboxDatabase:
    """Handle on the on-disk store; migrates the schema when opened."""

    def __init__(self, db_path: str | Path, migrator: SchemaMigrator | None = None) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.migrator = migrator or SchemaMigrator()
        self.schema_version = self._initialize()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.execute("PRAGMA busy_timeout=30000;")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _initialize(self) -> int:
        try:
            with self.connect() as conn:
                conn.execute("PRAGMA journal_mode=WAL;")
                return self.migrator.migrate(conn)
        except MigrationError:
            raise
        except sqlite3.Error as exc:
            raise MigrationError(0, f"unable to open {self.db_path} ({exc})") from exc


def _to_datetime(raw: object) -> datetime:
    if raw is None:
        return datetime.fromtimestamp(0)
    return datetime.fromtimestamp(float(raw))


class MessageStateStore:
    """Durable read/unread/pinned flags keyed by message id.

    Writes are serialized through one lock per store. Every write is a single
    upsert statement, so a reader never sees half of a multi-field update and
    the convenience setters merge into the existing row instead of replacing it.
    """

    def __init__(self, database: InboxDatabase) -> None:
        self.database = database
        self._write_lock = threading.Lock()

    def set_state(self, message_id: str, is_read: bool, unread_count: int, is_pinned: bool) -> None:
        with self._write_lock, self.database.connect() as conn:
            conn.execute(
                """
                INSERT INTO message_state(message_id, is_read, unread_count, is_pinned, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(message_id) DO UPDATE SET
                    is_read = excluded.is_read,
                    unread_count = excluded.unread_count,
                    is_pinned = excluded.is_pinned,
                    updated_at = excluded.updated_at
                """,
                (message_id, int(is_read), int(unread_count), int(is_pinned), time.time()),
            )
            conn.commit()
        logger.debug("Saved state for %s (read=%s unread=%s pinned=%s)", message_id, is_read, unread_count, is_pinned)

    def set_read_state(self, message_id: str, is_read: bool, unread_count: int) -> None:
        with self._write_lock, self.database.connect() as conn:
            conn.execute(
                """
                INSERT INTO message_state(message_id, is_read, unread_count, is_pinned, updated_at)
                VALUES (?, ?, ?, 0, ?)
                ON CONFLICT(message_id) DO UPDATE SET
                    is_read = excluded.is_read,
                    unread_count = excluded.unread_count,
                    updated_at = excluded.updated_at
                """,
                (message_id, int(is_read), int(unread_count), time.time()),
            )
            conn.commit()
        logger.debug("Saved read state for %s (read=%s unread=%s)", message_id, is_read, unread_count)

    def set_pinned(self, message_id: str, is_pinned: bool) -> None:
        with self._write_lock, self.database.connect() as conn:
            conn.execute(
                """
                INSERT INTO message_state(message_id, is_read, unread_count, is_pinned, updated_at)
                VALUES (?, 0, 0, ?, ?)
                ON CONFLICT(message_id) DO UPDATE SET
                    is_pinned = excluded.is_pinned,
                    updated_at = excluded.updated_at
                """,
                (message_id, int(is_pinned), time.time()),
            )
            conn.commit()
        logger.debug("Saved pinned=%s for %s", is_pinned, message_id)

    def batch_set_state(self, messages: Iterable[Message]) -> int:
        rows = [
            (msg.message_id, int(msg.is_read), int(msg.unread_count), int(msg.is_pinned), time.time())
            for msg in messages
        ]
        if not rows:
            return 0

        with self._write_lock, self.database.connect() as conn:
            conn.executemany(
                """
                INSERT INTO message_state(message_id, is_read, unread_count, is_pinned, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(message_id) DO UPDATE SET
                    is_read = excluded.is_read,
                    unread_count = excluded.unread_count,
                    is_pinned = excluded.is_pinned,
                    updated_at = excluded.updated_at
                """,
                rows,
            )
            conn.commit()
        logger.debug("Seeded state for %s messages", len(rows))
        return len(rows)

    def get_state(self, message_id: str) -> MessageState | None:
        with self.database.connect() as conn:
            row = conn.execute(
                """
                SELECT message_id, is_read, unread_count, COALESCE(is_pinned, 0) AS is_pinned, updated_at
                FROM message_state
                WHERE message_id = ?
                """,
                (message_id,),
            ).fetchone()
        return _state_from_row(row) if row else None

    def get_all_states(self) -> dict[str, MessageState]:
        with self.database.connect() as conn:
            rows = conn.execute(
                """
                SELECT message_id, is_read, unread_count, COALESCE(is_pinned, 0) AS is_pinned, updated_at
                FROM message_state
                """
            ).fetchall()
        return {str(row["message_id"]): _state_from_row(row) for row in rows}


def _state_from_row(row: sqlite3.Row) -> MessageState:
    return MessageState(
        message_id=str(row["message_id"]),
        is_read=bool(row["is_read"]),
        unread_count=int(row["unread_count"] or 0),
        is_pinned=bool(row["is_pinned"]),
        updated_at=_to_datetime(row["updated_at"]),
    )


class RemarkStore:
    def __init__(self, database: InboxDatabase) -> None:
        self.database = database
        self._write_lock = threading.Lock()

    def set_remark(self, message_id: str, nickname: str, remark: str) -> None:
        now = time.time()
        # created_at and the nickname snapshot belong to the first insert.
        with self._write_lock, self.database.connect() as conn:
            conn.execute(
                """
                INSERT INTO message_remark(message_id, nickname, remark, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(message_id) DO UPDATE SET
                    remark = excluded.remark,
                    updated_at = excluded.updated_at
                """,
                (message_id, nickname, remark, now, now),
            )
            conn.commit()
        logger.debug("Saved remark for %s", message_id)

    def get_remark(self, message_id: str) -> str | None:
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT remark FROM message_remark WHERE message_id = ?",
                (message_id,),
            ).fetchone()
        if not row or row["remark"] is None:
            return None
        return str(row["remark"])

    def get_remark_record(self, message_id: str) -> Remark | None:
        with self.database.connect() as conn:
            row = conn.execute(
                """
                SELECT message_id, nickname, remark, created_at, updated_at
                FROM message_remark
                WHERE message_id = ?
                """,
                (message_id,),
            ).fetchone()
        if not row:
            return None
        return Remark(
            message_id=str(row["message_id"]),
            nickname=str(row["nickname"] or ""),
            remark=str(row["remark"] or ""),
            created_at=_to_datetime(row["created_at"]),
            updated_at=_to_datetime(row["updated_at"]),
        )

    def get_all_remarks(self) -> dict[str, str]:
        with self.database.connect() as conn:
            rows = conn.execute(
                "SELECT message_id, remark FROM message_remark WHERE remark IS NOT NULL"
            ).fetchall()
        return {str(row["message_id"]): str(row["remark"]) for row in rows}
