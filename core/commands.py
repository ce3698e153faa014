# ============================================================
# Lithia - Interactive SQL Console
# core/commands.py - Commands and the Input -> Worker channel
# ============================================================

import queue
import threading
from dataclasses import dataclass
from typing import Optional, Union

from loguru import logger

from utils.helpers import mask_uri, truncate_string


@dataclass(frozen=True)
class Connect:
    uri: str

    def describe(self) -> str:
        return f"Connect({mask_uri(self.uri)})"


@dataclass(frozen=True)
class Query:
    sql: str
    uri: str

    def describe(self) -> str:
        return f"Query({truncate_string(self.sql, 60)!r} on {mask_uri(self.uri)})"


@dataclass(frozen=True)
class Disconnect:
    uri: str

    def describe(self) -> str:
        return f"Disconnect({mask_uri(self.uri)})"


Command = Union[Connect, Query, Disconnect]


class ChannelClosedError(RuntimeError):
    """The worker side of the channel is gone; commands can no longer be delivered."""


class CommandChannel:
    """
    Unbounded FIFO queue from the console loop to the database worker.

    send() never blocks. close() discards whatever has not been received
    yet; a blocked receive() notices within poll_interval and returns None.
    """

    def __init__(self, poll_interval: float = 0.1):
        self._queue: "queue.Queue[Command]" = queue.Queue()
        self._closed = threading.Event()
        self._close_lock = threading.Lock()
        self._poll_interval = poll_interval

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def pending(self) -> int:
        return self._queue.qsize()

    def send(self, command: Command) -> None:
        with self._close_lock:
            if self._closed.is_set():
                raise ChannelClosedError(f"cannot send {command.describe()}: channel closed")
            self._queue.put(command)
        logger.debug(f"Enqueued {command.describe()}")

    def receive(self) -> Optional[Command]:
        """Next command in FIFO order; None once the channel is closed."""
        while not self._closed.is_set():
            try:
                return self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                continue
        return None

    def task_done(self) -> None:
        """Acknowledge a received command as fully processed."""
        self._queue.task_done()

    def join(self) -> None:
        """Block until every sent command has been received and acknowledged."""
        self._queue.join()

    def close(self) -> int:
        """Close the channel. Returns the number of discarded commands."""
        with self._close_lock:
            if self._closed.is_set():
                return 0
            self._closed.set()
            discarded = 0
            while True:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    break
                self._queue.task_done()
                discarded += 1
        if discarded:
            logger.info(f"Channel closed, discarded {discarded} undelivered command(s)")
        else:
            logger.debug("Channel closed")
        return discarded
