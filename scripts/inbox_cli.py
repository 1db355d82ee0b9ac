from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
import itertools
import logging
import sys
import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from rich.text import Text

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config.settings import get_settings
from inbox.analytics import EventLedger
from inbox.models import DailyStats, Message, MessageEvent, MessageType
from inbox.payload import PayloadError, load_feed_file
from inbox.storage.analytics_store import AnalyticsStore
from inbox.storage.migrations import MigrationError
from inbox.storage.sqlite_store import InboxDatabase, MessageStateStore, RemarkStore
from runtime.feed import StaticFeedSource
from runtime.message_list import LoadingState, MessageListSession
from runtime.push import PeriodicPushProducer, PushChannel
from runtime.remark_editor import RemarkEditor
from runtime.search import highlight_spans

app = typer.Typer(help="Inspect and update the local message state store.")
console = Console()

TYPE_LABELS = {
    "friend": "Friends",
    "system": "System",
    "live": "Live",
    "comment": "Comments",
    "promotion": "Promotions",
}


@dataclass(slots=True)
class Stores:
    database: InboxDatabase
    states: MessageStateStore
    remarks: RemarkStore
    ledger: EventLedger


def _configure_logging(log_level: str | None) -> None:
    level_name = (log_level or get_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        force=True,
    )


def _open_stores(db_path: Path | None) -> Stores:
    settings = get_settings()
    try:
        database = InboxDatabase(db_path or settings.sqlite_path)
    except MigrationError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    return Stores(
        database=database,
        states=MessageStateStore(database),
        remarks=RemarkStore(database),
        ledger=EventLedger(AnalyticsStore(database), window_days=settings.stats_window_days),
    )


def _highlight(text: str, keyword: str) -> Text:
    rendered = Text()
    for span in highlight_spans(text, keyword):
        rendered.append(span.text, style="bold magenta" if span.is_highlighted else None)
    return rendered


def _render_stats_row(table: Table, label: str, stats: DailyStats) -> None:
    table.add_row(
        label,
        str(stats.total_received),
        str(stats.total_displayed),
        str(stats.total_clicked),
        str(stats.total_read),
        str(stats.unread_count),
        f"{stats.ctr:.1f}%",
        f"{stats.read_rate:.1f}%",
    )


def _stats_table(title: str) -> Table:
    table = Table(title=title)
    table.add_column("Day")
    for column in ("Received", "Displayed", "Clicked", "Read", "Unread", "CTR", "Read Rate"):
        table.add_column(column, justify="right")
    return table


DB_OPTION = typer.Option(None, "--db", help="SQLite file to use instead of the configured one.")
LOG_OPTION = typer.Option(None, "--log-level", help="Logging level (DEBUG, INFO, WARNING); defaults to LOG_LEVEL.")


@app.command("migrate")
def migrate(db: Optional[Path] = DB_OPTION, log_level: Optional[str] = LOG_OPTION) -> None:
    _configure_logging(log_level)
    stores = _open_stores(db)
    console.print(f"Schema version {stores.database.schema_version} at {stores.database.db_path}")


@app.command("seed")
def seed(
    feed: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON feed dump."),
    db: Optional[Path] = DB_OPTION,
    log_level: Optional[str] = LOG_OPTION,
) -> None:
    _configure_logging(log_level)
    stores = _open_stores(db)
    try:
        messages = load_feed_file(feed)
    except PayloadError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    count = stores.states.batch_set_state(messages)
    console.print(f"Seeded state for {count} messages")


@app.command("list")
def list_messages(
    feed: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON feed dump."),
    pages: int = typer.Option(1, min=1, help="Pages to load."),
    query: str = typer.Option("", help="Case-insensitive search over name, summary and body."),
    db: Optional[Path] = DB_OPTION,
    log_level: Optional[str] = LOG_OPTION,
) -> None:
    _configure_logging(log_level)
    settings = get_settings()
    stores = _open_stores(db)
    try:
        source = StaticFeedSource.from_file(feed, page_size=settings.page_size)
    except PayloadError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    session = MessageListSession(source, stores.states, stores.remarks, stores.ledger)
    state = session.load_initial()
    if state is LoadingState.ERROR:
        console.print(f"[red]{session.error_message}[/red]")
        raise typer.Exit(code=1)
    if state is LoadingState.EMPTY:
        console.print("[dim]No messages.[/dim]")
        return
    for _ in range(pages - 1):
        if not session.load_more():
            break

    session.search_text = query
    _print_session(session, query)


@app.command("watch")
def watch(
    feed: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON feed dump."),
    seconds: float = typer.Option(10.0, min=0.1, help="How long to accept simulated pushes."),
    db: Optional[Path] = DB_OPTION,
    log_level: Optional[str] = LOG_OPTION,
) -> None:
    """Load the first page, then replay feed items as live pushes for a while."""
    _configure_logging(log_level)
    settings = get_settings()
    stores = _open_stores(db)
    try:
        source = StaticFeedSource.from_file(feed, page_size=settings.page_size)
    except PayloadError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    session = MessageListSession(source, stores.states, stores.remarks, stores.ledger)
    if session.load_initial() is LoadingState.ERROR:
        console.print(f"[red]{session.error_message}[/red]")
        raise typer.Exit(code=1)

    templates = source.fetch_page(0).messages
    if not templates:
        console.print("[dim]Nothing to replay.[/dim]")
        return
    counter = itertools.count(1)

    def _next_push() -> Message:
        index = next(counter)
        template = templates[(index - 1) % len(templates)]
        pushed = replace(
            template,
            message_id=f"push_{index}_{template.message_id}",
            timestamp=datetime.now(),
            is_read=False,
            unread_count=1,
        )
        source.prepend(pushed)
        return pushed

    channel = PushChannel()
    listener = session.subscribe(channel)
    producer = PeriodicPushProducer(channel, _next_push, interval=settings.push_interval_seconds)
    producer.start()
    try:
        time.sleep(seconds)
    finally:
        producer.stop()
        listener.stop()

    _print_session(session, "")


def _print_session(session: MessageListSession, query: str) -> None:
    table = Table(title="Messages")
    table.add_column("Pin")
    table.add_column("Id")
    table.add_column("Name")
    table.add_column("Summary")
    table.add_column("Type")
    table.add_column("Unread", justify="right")
    table.add_column("Time")
    for message in session.filtered_messages():
        table.add_row(
            "*" if message.is_pinned else "",
            message.message_id,
            _highlight(message.display_name, query),
            _highlight(message.summary, query),
            TYPE_LABELS.get(message.message_type.value, message.message_type.value),
            "" if message.is_read else str(message.unread_count),
            message.timestamp.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)
    console.print(f"Unread: {session.total_unread}  More pages: {str(session.has_more).lower()}")


@app.command("mark-read")
def mark_read(
    message_id: str = typer.Argument(...),
    message_type: MessageType = typer.Option(MessageType.FRIEND, "--type", help="Message type for the read event."),
    db: Optional[Path] = DB_OPTION,
    log_level: Optional[str] = LOG_OPTION,
) -> None:
    _configure_logging(log_level)
    stores = _open_stores(db)
    previous = stores.states.get_state(message_id)
    stores.states.set_read_state(message_id, True, 0)
    if previous is None or not previous.is_read:
        stores.ledger.record(MessageEvent.READ, message_id, message_type)
        console.print(f"Marked {message_id} as read")
    else:
        console.print(f"{message_id} was already read")


@app.command("pin")
def pin(
    message_id: str = typer.Argument(...),
    db: Optional[Path] = DB_OPTION,
    log_level: Optional[str] = LOG_OPTION,
) -> None:
    _configure_logging(log_level)
    stores = _open_stores(db)
    current = stores.states.get_state(message_id)
    pinned = not (current.is_pinned if current else False)
    stores.states.set_pinned(message_id, pinned)
    console.print(f"{'Pinned' if pinned else 'Unpinned'} {message_id}")


@app.command("remark")
def remark(
    message_id: str = typer.Argument(...),
    nickname: str = typer.Argument(..., help="Original display name."),
    text: str = typer.Argument(..., help="Remark; an empty string clears it."),
    db: Optional[Path] = DB_OPTION,
    log_level: Optional[str] = LOG_OPTION,
) -> None:
    _configure_logging(log_level)
    stores = _open_stores(db)
    editor = RemarkEditor(message_id, nickname, stores.remarks)
    editor.remark = text
    if not editor.has_changes():
        console.print(f"Remark for {message_id} unchanged")
        return
    editor.save()
    console.print(f"Remark for {message_id} saved")


@app.command("stats")
def stats(
    reset: bool = typer.Option(False, help="Clear all analytics before printing."),
    db: Optional[Path] = DB_OPTION,
    log_level: Optional[str] = LOG_OPTION,
) -> None:
    _configure_logging(log_level)
    stores = _open_stores(db)
    ledger = stores.ledger
    if reset:
        ledger.reset()
        console.print("[dim]Analytics reset.[/dim]")

    overview = _stats_table("Overview")
    _render_stats_row(overview, "Today", ledger.today_stats)
    _render_stats_row(overview, "This week", ledger.weekly_summary())
    _render_stats_row(overview, "Lifetime", ledger.total_stats)
    console.print(overview)

    weekly = _stats_table("Last Days")
    for row in ledger.weekly_stats:
        _render_stats_row(weekly, row.date_string, row)
    console.print(weekly)

    by_type = Table(title="By Message Type (lifetime)")
    by_type.add_column("Type")
    for column in ("Received", "Displayed", "Clicked", "Read", "Recall", "CTR"):
        by_type.add_column(column, justify="right")
    total = ledger.total_stats
    for key in sorted(total.type_stats):
        item = total.type_stats[key]
        by_type.add_row(
            TYPE_LABELS.get(key, key),
            str(item.received),
            str(item.displayed),
            str(item.clicked),
            str(item.read),
            f"{item.recall_rate:.1f}%",
            f"{item.ctr:.1f}%",
        )
    console.print(by_type)


if __name__ == "__main__":
    app()
