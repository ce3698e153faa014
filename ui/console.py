# ============================================================
# Lithia - Interactive SQL Console
# ui/console.py - Render / Input Loop (foreground thread)
# ============================================================
#
# Each cycle: snapshot the shared state (lock released right away),
# render it, block for the next event, then apply the key under the
# lock. Commands produced by a key are sent after the lock is
# released; the worker reports back only through the shared state.
# ============================================================

from functools import partial
from typing import Callable, Optional, Protocol, Tuple

from loguru import logger
from rich.console import Console
from rich.live import Live

from core.commands import ChannelClosedError, Command, CommandChannel, Connect, Disconnect, Query
from core.state import InputMode, QueryStatus, SharedState, State, StateSnapshot
from core.worker import DatabaseWorker
from ui.events import Event, KeyEvent, KeyKind, TerminalEvents, Tick
from ui.view import render
from utils.helpers import mask_uri

Renderer = Callable[[StateSnapshot], None]
KeyOutcome = Tuple[bool, Optional[Command]]


class EventSource(Protocol):
    def next_event(self) -> Event:
        ...


class FatalConsoleError(RuntimeError):
    """The console cannot continue (worker gone or state unusable)."""


class ConsoleApp:
    def __init__(
        self,
        state: SharedState,
        channel: CommandChannel,
        events: EventSource,
        renderer: Optional[Renderer] = None,
    ):
        self._state = state
        self._channel = channel
        self._events = events
        self._renderer = renderer

    def run(self) -> None:
        """Loop until the operator quits. Raises FatalConsoleError on channel loss."""
        logger.info("Console loop started")
        while True:
            snapshot = self._state.snapshot()
            if self._renderer is not None:
                self._renderer(snapshot)
            event = self._events.next_event()
            if not self.dispatch(event):
                break
        logger.info("Console loop finished")

    def dispatch(self, event: Event) -> bool:
        """Apply one event. Returns False when the console should exit."""
        if isinstance(event, Tick):
            return True
        if event.kind is KeyKind.INTERRUPT:
            logger.info("Interrupt received, quitting")
            return False

        keep_running, command = self._state.with_lock(partial(apply_key, event))
        if command is not None:
            self._send(command)
        return keep_running

    def _send(self, command: Command) -> None:
        try:
            self._channel.send(command)
        except ChannelClosedError as e:
            logger.critical(f"Cannot deliver {command.describe()}: {e}")
            raise FatalConsoleError(f"database worker is not running ({e})") from e


# ── Key handling (runs under the state lock) ──────────────────

def apply_key(event: KeyEvent, state: State) -> KeyOutcome:
    if state.input_mode is InputMode.NORMAL:
        return _normal_key(event, state)
    return _editing_key(event, state)


def _normal_key(event: KeyEvent, state: State) -> KeyOutcome:
    if event.kind is not KeyKind.CHAR:
        return True, None

    key = event.char
    if key == "c":
        state.input_mode = InputMode.EDITING_CONNECTION
    elif key == "e":
        state.input_mode = InputMode.EDITING_QUERY
    elif key == "q":
        return False, None
    elif key == "p":
        state.show_password = not state.show_password
    elif key == "d":
        return True, Disconnect(state.connection_input)
    return True, None


def _editing_key(event: KeyEvent, state: State) -> KeyOutcome:
    if event.kind is KeyKind.CHAR:
        state.append_char(event.char)
    elif event.kind is KeyKind.BACKSPACE:
        state.delete_char()
    elif event.kind is KeyKind.ESCAPE:
        state.input_mode = InputMode.NORMAL
    elif event.kind is KeyKind.ENTER:
        return True, _submit(state)
    return True, None


def _submit(state: State) -> Command:
    if state.input_mode is InputMode.EDITING_CONNECTION:
        command = Connect(state.connection_input)
        state.report_notice(f"Connecting to {mask_uri(state.connection_input)}...")
    else:
        command = Query(state.query_input, state.connection_input)
        state.query_status = QueryStatus.WAITING
        state.report_notice("Running query...")
    state.input_mode = InputMode.NORMAL
    return command


# ── Wiring ────────────────────────────────────────────────────

def run_console(connection: str, query: str, tick_rate: float, console: Optional[Console] = None) -> None:
    """Start the worker, take over the terminal and run the loop until quit."""
    console = console or Console()
    state = SharedState(connection_input=connection, query_input=query)
    channel = CommandChannel()
    worker = DatabaseWorker(state, channel)
    worker.start()

    try:
        with TerminalEvents(tick_rate=tick_rate) as events:
            with Live(
                render(state.snapshot()),
                console=console,
                screen=True,
                auto_refresh=False,
                transient=True,
            ) as live:
                app = ConsoleApp(
                    state,
                    channel,
                    events,
                    renderer=lambda snapshot: live.update(render(snapshot), refresh=True),
                )
                app.run()
    finally:
        worker.stop()
