from __future__ import annotations

import logging
from queue import Empty, Queue
import threading
from typing import Callable, Iterator

from inbox.models import Message

logger = logging.getLogger(__name__)

_CLOSED = object()


class ChannelClosedError(RuntimeError):
    pass


class PushChannel:
    """Thread-safe hand-off of pushed messages, one at a time, in arrival order."""

    def __init__(self) -> None:
        self._queue: Queue[object] = Queue()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def publish(self, message: Message) -> None:
        if self._closed.is_set():
            raise ChannelClosedError("push channel is closed")
        self._queue.put(message)

    def close(self) -> None:
        if not self._closed.is_set():
            self._closed.set()
            self._queue.put(_CLOSED)

    def get(self, timeout: float | None = None) -> Message | None:
        try:
            item = self._queue.get(timeout=timeout)
        except Empty:
            return None
        if item is _CLOSED:
            # Leave the marker for any other consumer.
            self._queue.put(_CLOSED)
            return None
        return item  # type: ignore[return-value]

    def __iter__(self) -> Iterator[Message]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                self._queue.put(_CLOSED)
                return
            yield item  # type: ignore[misc]


class PushListener:
    def __init__(self, channel: PushChannel, on_message: Callable[[Message], None]) -> None:
        self.channel = channel
        self.on_message = on_message
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="push-listener", daemon=True)
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread:
            self._thread.join(timeout=timeout)

    def stop(self, timeout: float | None = 2.0) -> None:
        self.channel.close()
        self.join(timeout=timeout)

    def _run(self) -> None:
        for message in self.channel:
            try:
                self.on_message(message)
            except Exception:
                logger.exception("Failed to handle pushed message %s", message.message_id)


class PeriodicPushProducer:
    """Publishes one message from ``factory`` every ``interval`` seconds until stopped."""

    def __init__(self, channel: PushChannel, factory: Callable[[], Message], interval: float = 5.0) -> None:
        self.channel = channel
        self.factory = factory
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self.stop()
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name="push-producer", daemon=True)
        self._thread.start()
        logger.info("Push producer started with interval %.1fs", self.interval)

    def stop(self, timeout: float | None = 2.0) -> None:
        if not self._thread:
            return
        self._stop.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Push producer stopped")

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            if self.channel.closed:
                return
            message = self.factory()
            try:
                self.channel.publish(message)
            except ChannelClosedError:
                logger.debug("Channel closed, dropping %s", message.message_id)
                return
            logger.debug("Pushed %s", message.message_id)
