# ============================================================
# Lithia - Interactive SQL Console
# ui/events.py - Terminal input events (keys + redraw ticks)
# ============================================================

import queue
import select
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Union

from prompt_toolkit.input import Input, create_input
from prompt_toolkit.key_binding import KeyPress
from prompt_toolkit.keys import Keys
from loguru import logger


class KeyKind(Enum):
    CHAR = "char"
    ENTER = "enter"
    BACKSPACE = "backspace"
    ESCAPE = "escape"
    INTERRUPT = "interrupt"


@dataclass(frozen=True)
class KeyEvent:
    kind: KeyKind
    char: str = ""

    @classmethod
    def of_char(cls, ch: str) -> "KeyEvent":
        return cls(KeyKind.CHAR, ch)


@dataclass(frozen=True)
class Tick:
    """No key arrived within the tick rate; time to redraw."""


Event = Union[KeyEvent, Tick]

TICK = Tick()
ENTER = KeyEvent(KeyKind.ENTER)
BACKSPACE = KeyEvent(KeyKind.BACKSPACE)
ESCAPE = KeyEvent(KeyKind.ESCAPE)
INTERRUPT = KeyEvent(KeyKind.INTERRUPT)

_SPECIAL_KEYS = {
    Keys.ControlM: ENTER,
    Keys.ControlJ: ENTER,
    Keys.ControlH: BACKSPACE,
    Keys.Escape: ESCAPE,
    Keys.ControlC: INTERRUPT,
}


def decode_key_press(key_press: KeyPress) -> Optional[KeyEvent]:
    """Map a prompt_toolkit KeyPress onto a console KeyEvent; None means ignore."""
    key = key_press.key
    if isinstance(key, Keys):
        if key == Keys.BracketedPaste:
            text = "".join(ch for ch in key_press.data if ch.isprintable())
            return KeyEvent.of_char(text) if text else None
        return _SPECIAL_KEYS.get(key)
    if len(key) == 1 and key.isprintable():
        return KeyEvent.of_char(key)
    return None


def keys_for(text: str) -> List[KeyEvent]:
    return [KeyEvent.of_char(ch) for ch in text]


class TerminalEvents:
    """
    Reads keys from the terminal on a background thread.

    next_event() blocks for at most tick_rate seconds and returns a Tick
    when nothing was typed, so the console redraws worker progress even
    while the operator is idle. POSIX terminals only (select on stdin).
    """

    def __init__(self, tick_rate: float = 0.25, terminal_input: Optional[Input] = None):
        self.tick_rate = tick_rate
        self._input = terminal_input
        self._queue: "queue.Queue[KeyEvent]" = queue.Queue()
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="lithia-key-reader",
        )

    def start(self) -> None:
        if self._input is None:
            self._input = create_input()
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread.is_alive():
            self._thread.join(timeout=1.0)

    def __enter__(self) -> "TerminalEvents":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

    def next_event(self) -> Event:
        try:
            return self._queue.get(timeout=self.tick_rate)
        except queue.Empty:
            return TICK

    def _run(self) -> None:
        terminal_input = self._input
        with terminal_input.raw_mode():
            while not self._stop_event.is_set():
                readable, _, _ = select.select([terminal_input.fileno()], [], [], 0.1)
                if readable:
                    key_presses = terminal_input.read_keys()
                else:
                    # A lone ESC is only reported once the input goes quiet
                    key_presses = terminal_input.flush_keys()
                for key_press in key_presses:
                    event = decode_key_press(key_press)
                    if event is not None:
                        self._queue.put(event)
                if terminal_input.closed:
                    logger.warning("Terminal input closed")
                    self._queue.put(INTERRUPT)
                    break


class ScriptedEvents:
    """Feeds a fixed list of events, then INTERRUPT forever."""

    def __init__(self, events: Iterable[Event]):
        self._events = list(events)
        self.consumed = 0

    def next_event(self) -> Event:
        if self.consumed < len(self._events):
            event = self._events[self.consumed]
            self.consumed += 1
            return event
        return INTERRUPT
