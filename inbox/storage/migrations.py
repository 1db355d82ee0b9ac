from __future__ import annotations

from dataclasses import dataclass
import logging
import sqlite3
from typing import Callable, Sequence

logger = logging.getLogger(__name__)


class MigrationError(RuntimeError):
    def __init__(self, step: int, message: str) -> None:
        super().__init__(f"Schema migration step {step} failed: {message}")
        self.step = step


@dataclass(frozen=True, slots=True)
class MigrationStep:
    version: int
    description: str
    apply: Callable[[sqlite3.Connection], None]


def column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return any(row[1] == column for row in rows)


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,),
    ).fetchone()
    return row is not None


def _execute_all(conn: sqlite3.Connection, statements: Sequence[str]) -> None:
    # One execute per statement; executescript would commit the open transaction.
    for statement in statements:
        conn.execute(statement)


def _create_state_and_remark_tables(conn: sqlite3.Connection) -> None:
    _execute_all(
        conn,
        (
            """
            CREATE TABLE IF NOT EXISTS message_state (
                message_id TEXT PRIMARY KEY,
                is_read INTEGER NOT NULL DEFAULT 0,
                unread_count INTEGER NOT NULL DEFAULT 0,
                updated_at REAL
            )
            """,
            """
            CREATE TABLE IF NOT EXISTS message_remark (
                message_id TEXT PRIMARY KEY,
                nickname TEXT,
                remark TEXT,
                created_at REAL,
                updated_at REAL
            )
            """,
        ),
    )


def _add_pinned_flag(conn: sqlite3.Connection) -> None:
    if column_exists(conn, "message_state", "is_pinned"):
        logger.info("message_state.is_pinned already present")
        return
    conn.execute("ALTER TABLE message_state ADD COLUMN is_pinned INTEGER NOT NULL DEFAULT 0")


def _create_analytics_tables(conn: sqlite3.Connection) -> None:
    _execute_all(
        conn,
        (
            """
            CREATE TABLE IF NOT EXISTS analytics_event (
                id TEXT PRIMARY KEY,
                event TEXT NOT NULL,
                message_id TEXT NOT NULL,
                message_type TEXT NOT NULL,
                timestamp REAL NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idx_analytics_event_message ON analytics_event(message_id, timestamp)",
            """
            CREATE TABLE IF NOT EXISTS analytics_daily (
                scope TEXT NOT NULL,
                date_string TEXT NOT NULL,
                total_received INTEGER NOT NULL DEFAULT 0,
                total_displayed INTEGER NOT NULL DEFAULT 0,
                total_clicked INTEGER NOT NULL DEFAULT 0,
                total_read INTEGER NOT NULL DEFAULT 0,
                unread_count INTEGER NOT NULL DEFAULT 0,
                type_stats TEXT NOT NULL DEFAULT '{}',
                updated_at REAL,
                PRIMARY KEY (scope, date_string)
            )
            """,
        ),
    )


STEPS: tuple[MigrationStep, ...] = (
    MigrationStep(1, "create message_state and message_remark", _create_state_and_remark_tables),
    MigrationStep(2, "add message_state.is_pinned", _add_pinned_flag),
    MigrationStep(3, "create analytics tables", _create_analytics_tables),
)

SCHEMA_VERSION = STEPS[-1].version


class SchemaMigrator:
    """Brings a SQLite file up to the target schema version.

    The current version lives in ``PRAGMA user_version``; a brand new file
    reports 0. Steps ``current + 1 .. target`` run in order and every step
    checks for existing structures, so re-running one is harmless. The new
    version is written only after all pending steps succeed.
    """

    def __init__(self, steps: Sequence[MigrationStep] = STEPS, target_version: int | None = None) -> None:
        self.steps = sorted(steps, key=lambda step: step.version)
        self.target_version = target_version if target_version is not None else self.steps[-1].version

    @staticmethod
    def current_version(conn: sqlite3.Connection) -> int:
        row = conn.execute("PRAGMA user_version").fetchone()
        return int(row[0]) if row else 0

    @staticmethod
    def _set_version(conn: sqlite3.Connection, version: int) -> None:
        conn.execute(f"PRAGMA user_version = {int(version)}")

    def migrate(self, conn: sqlite3.Connection) -> int:
        try:
            current = self.current_version(conn)
        except sqlite3.Error as exc:
            raise MigrationError(0, f"unable to read schema version ({exc})") from exc

        if current >= self.target_version:
            logger.debug("Schema at version %s, nothing to migrate", current)
            return current

        logger.info("Migrating schema from version %s to %s", current, self.target_version)
        for step in self.steps:
            if step.version <= current or step.version > self.target_version:
                continue
            try:
                # sqlite3 does not open a transaction for DDL on its own.
                if not conn.in_transaction:
                    conn.execute("BEGIN")
                step.apply(conn)
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise MigrationError(step.version, str(exc)) from exc
            logger.info("Applied schema step %s: %s", step.version, step.description)

        try:
            self._set_version(conn, self.target_version)
            conn.commit()
        except sqlite3.Error as exc:
            raise MigrationError(self.target_version, f"unable to record schema version ({exc})") from exc
        return self.target_version
