from __future__ import annotations

from dataclasses import replace
from enum import Enum
import logging
import sqlite3
import threading
from typing import Iterable, Sequence

from inbox.analytics import EventLedger
from inbox.models import ButtonContent, Message
from inbox.storage.sqlite_store import MessageStateStore, RemarkStore
from runtime.feed import FeedError, FeedSource
from runtime.push import PushChannel, PushListener
from runtime.search import HighlightSpan, filter_messages, highlight_spans

logger = logging.getLogger(__name__)


class LoadingState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    REFRESHING = "refreshing"
    LOADING_MORE = "loading_more"
    EMPTY = "empty"
    ERROR = "error"


def sort_messages(messages: Iterable[Message]) -> list[Message]:
    """Pinned first, then newest first; equal keys keep arrival order."""
    return sorted(messages, key=lambda msg: (not msg.is_pinned, -msg.timestamp.timestamp()))


def apply_persisted_state(
    messages: Sequence[Message],
    states: MessageStateStore,
    remarks: RemarkStore,
) -> list[Message]:
    state_by_id = states.get_all_states()
    remark_by_id = remarks.get_all_remarks()

    merged: list[Message] = []
    for message in messages:
        state = state_by_id.get(message.message_id)
        if state is not None:
            message = replace(
                message,
                is_read=state.is_read,
                unread_count=state.unread_count,
                is_pinned=state.is_pinned,
            )
        remark = remark_by_id.get(message.message_id)
        if remark is not None:
            message = replace(message, remark=remark)
        merged.append(message)
    return merged


class MessageListSession:
    """Canonical message list for one session.

    The backing collection is kept in arrival order; the sorted and filtered
    views are recomputed from it on demand. Persisted state is always applied
    on top of fetched pages, never the other way round.

    Loads can be superseded: ``refresh`` starts a new load generation and any
    page fetched under an older generation is dropped when it completes.

    State snapshots are read outside the lock. A mark-read or pin toggle that
    lands after a snapshot was taken bumps a per-id mutation counter, and those
    ids take their flags from the live entry when the snapshot is merged.
    """

    def __init__(
        self,
        feed: FeedSource,
        states: MessageStateStore,
        remarks: RemarkStore,
        ledger: EventLedger,
    ) -> None:
        self.feed = feed
        self.states = states
        self.remarks = remarks
        self.ledger = ledger

        self._lock = threading.RLock()
        self._messages: list[Message] = []
        self._generation = 0
        self._mutation_seq = 0
        self._mutated: dict[str, int] = {}
        self._first_load = True
        self._listener: PushListener | None = None

        self.loading_state = LoadingState.IDLE
        self.error_message: str | None = None
        self.has_more = True
        self.current_page = 0
        self.total_unread = 0
        self.search_text = ""
        self.write_failures = 0

    # Views

    @property
    def messages(self) -> list[Message]:
        with self._lock:
            return list(self._messages)

    @property
    def sorted_messages(self) -> list[Message]:
        with self._lock:
            return sort_messages(self._messages)

    def filtered_messages(self, query: str | None = None) -> list[Message]:
        keyword = self.search_text if query is None else query
        return filter_messages(self.sorted_messages, keyword)

    def highlighted(self, text: str, keyword: str | None = None) -> list[HighlightSpan]:
        return highlight_spans(text, self.search_text if keyword is None else keyword)

    def get_message(self, message_id: str) -> Message | None:
        with self._lock:
            index = self._index_of(message_id)
            return self._messages[index] if index is not None else None

    # Loading

    def load_initial(self) -> LoadingState:
        with self._lock:
            if not self._first_load:
                return self.loading_state
            self._first_load = False
            generation = self._begin(LoadingState.LOADING)
            since = self._mutation_seq

        try:
            page = self.feed.fetch_page(0)
        except FeedError as exc:
            with self._lock:
                if self._is_current(generation):
                    self._fail(str(exc))
                return self.loading_state

        merged = apply_persisted_state(page.messages, self.states, self.remarks)
        with self._lock:
            if not self._is_current(generation):
                return self.loading_state
            merged = self._overlay_mutated(merged, since)
            if not merged:
                self.loading_state = LoadingState.EMPTY
                return self.loading_state
            self._messages = []
            self._merge_into(merged)
            self.current_page = 0
            self.has_more = page.has_more
            self.loading_state = LoadingState.IDLE
            self._recompute_unread()
            displayed = list(self._messages)

        for message in displayed:
            self.ledger.track_displayed(message)
        return LoadingState.IDLE

    def refresh(self) -> LoadingState:
        with self._lock:
            self._first_load = False
            generation = self._begin(LoadingState.REFRESHING)
            since = self._mutation_seq

        try:
            page = self.feed.fetch_page(0)
        except FeedError as exc:
            with self._lock:
                if not self._is_current(generation):
                    return self.loading_state
                if self._messages:
                    logger.warning("Refresh failed, keeping %s messages: %s", len(self._messages), exc)
                    self.loading_state = LoadingState.IDLE
                else:
                    self._fail(str(exc))
                return self.loading_state

        merged = apply_persisted_state(page.messages, self.states, self.remarks)
        with self._lock:
            if not self._is_current(generation):
                return self.loading_state
            merged = self._overlay_mutated(merged, since)
            if not merged:
                self._messages = []
                self.loading_state = LoadingState.EMPTY
                self._recompute_unread()
                return self.loading_state
            self._messages = []
            self._merge_into(merged)
            self.current_page = 0
            self.has_more = page.has_more
            self.loading_state = LoadingState.IDLE
            self._recompute_unread()
            return self.loading_state

    def load_more(self) -> bool:
        """Fetch the next page; returns True when a page was appended."""
        with self._lock:
            if not self.has_more or self.loading_state in (
                LoadingState.LOADING,
                LoadingState.REFRESHING,
                LoadingState.LOADING_MORE,
            ):
                return False
            self.loading_state = LoadingState.LOADING_MORE
            generation = self._generation
            next_page = self.current_page + 1
            since = self._mutation_seq

        try:
            page = self.feed.fetch_page(next_page)
        except FeedError as exc:
            with self._lock:
                if self._is_current(generation):
                    logger.warning("Loading page %s failed: %s", next_page, exc)
                    self.loading_state = LoadingState.IDLE
            return False

        merged = apply_persisted_state(page.messages, self.states, self.remarks)
        with self._lock:
            if not self._is_current(generation):
                return False
            merged = self._overlay_mutated(merged, since)
            if merged:
                self._merge_into(merged)
                self.current_page = next_page
                self._recompute_unread()
            self.has_more = page.has_more
            self.loading_state = LoadingState.IDLE
            return bool(merged)

    def reset_to_empty(self) -> None:
        with self._lock:
            self._generation += 1
            self._messages = []
            self.loading_state = LoadingState.EMPTY
            self._recompute_unread()

    # Push

    def subscribe(self, channel: PushChannel) -> PushListener:
        if self._listener is not None:
            self._listener.stop()
        self._listener = PushListener(channel, self.handle_pushed_message)
        self._listener.start()
        return self._listener

    def handle_pushed_message(self, message: Message) -> Message:
        self.ledger.track_received(message)
        with self._lock:
            since = self._mutation_seq
            state = self.states.get_state(message.message_id)
            if state is not None:
                message = replace(
                    message,
                    is_read=state.is_read,
                    unread_count=state.unread_count,
                    is_pinned=state.is_pinned,
                )
            remark = self.remarks.get_remark(message.message_id)
            if remark is not None:
                message = replace(message, remark=remark)
            message = self._overlay_mutated([message], since)[0]

            index = self._index_of(message.message_id)
            if index is not None:
                del self._messages[index]
            self._messages.insert(0, message)
            self._recompute_unread()
        self.ledger.track_displayed(message)
        return message

    # Mutations

    def mark_as_read(self, message_id: str) -> bool:
        """Mark read in memory and write through; False if unknown or not persisted."""
        with self._lock:
            index = self._index_of(message_id)
            if index is None:
                return False
            previous = self._messages[index]
            updated = replace(previous, is_read=True, unread_count=0)
            self._messages[index] = updated
            self._note_mutation(message_id)
            self._recompute_unread()
            durable = self._write(self.states.set_read_state, message_id, True, 0)

        if not previous.is_read:
            self.ledger.track_read(updated)
        return durable

    def toggle_pinned(self, message_id: str) -> bool | None:
        """Flip the pinned flag; returns the new value or None for an unknown id."""
        with self._lock:
            index = self._index_of(message_id)
            if index is None:
                return None
            updated = replace(self._messages[index], is_pinned=not self._messages[index].is_pinned)
            self._messages[index] = updated
            self._note_mutation(message_id)
            self._write(self.states.set_pinned, message_id, updated.is_pinned)
            return updated.is_pinned

    def update_remark(self, message_id: str, remark: str) -> bool:
        with self._lock:
            index = self._index_of(message_id)
            if index is None:
                return False
            self._messages[index] = replace(self._messages[index], remark=remark)
            return True

    def open_message(self, message_id: str) -> Message | None:
        message = self.get_message(message_id)
        if message is not None:
            self.ledger.track_clicked(message)
        return message

    def click_button(self, message_id: str) -> str | None:
        message = self.get_message(message_id)
        if message is None or not isinstance(message.content, ButtonContent):
            return None
        self.ledger.track_button_clicked(message, message.content.action)
        return message.content.action

    # Internals

    def _note_mutation(self, message_id: str) -> None:
        self._mutation_seq += 1
        self._mutated[message_id] = self._mutation_seq

    def _overlay_mutated(self, messages: list[Message], since: int) -> list[Message]:
        """Give ids mutated after ``since`` the flags they hold now, not the snapshot's."""
        if self._mutation_seq == since:
            return messages

        overlaid: list[Message] = []
        for message in messages:
            if self._mutated.get(message.message_id, 0) > since:
                index = self._index_of(message.message_id)
                if index is not None:
                    live = self._messages[index]
                    message = replace(
                        message,
                        is_read=live.is_read,
                        unread_count=live.unread_count,
                        is_pinned=live.is_pinned,
                    )
                else:
                    state = self.states.get_state(message.message_id)
                    if state is not None:
                        message = replace(
                            message,
                            is_read=state.is_read,
                            unread_count=state.unread_count,
                            is_pinned=state.is_pinned,
                        )
                logger.debug("Kept live state for %s over a stale snapshot", message.message_id)
            overlaid.append(message)
        return overlaid

    def _begin(self, state: LoadingState) -> int:
        self._generation += 1
        self.loading_state = state
        self.error_message = None
        return self._generation

    def _is_current(self, generation: int) -> bool:
        if generation != self._generation:
            logger.debug("Discarding result of superseded load %s", generation)
            return False
        return True

    def _fail(self, message: str) -> None:
        self.error_message = message or "Failed to load messages, please retry"
        self.loading_state = LoadingState.ERROR
        logger.warning("Message list load failed: %s", self.error_message)

    def _index_of(self, message_id: str) -> int | None:
        for index, message in enumerate(self._messages):
            if message.message_id == message_id:
                return index
        return None

    def _merge_into(self, incoming: Iterable[Message]) -> None:
        for message in incoming:
            index = self._index_of(message.message_id)
            if index is None:
                self._messages.append(message)
            else:
                self._messages[index] = message

    def _recompute_unread(self) -> None:
        self.total_unread = sum(msg.unread_count for msg in self._messages if not msg.is_read)

    def _write(self, operation, *args: object) -> bool:
        try:
            operation(*args)
        except sqlite3.Error:
            self.write_failures += 1
            logger.warning("Write-through failed for %s", args[0], exc_info=True)
            return False
        return True
