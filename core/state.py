# ============================================================
# Lithia - Interactive SQL Console
# core/state.py - Shared State Store (single lock, two threads)
# ============================================================
#
# The console loop and the database worker both read and write the
# same State record. The only access path is SharedState.with_lock();
# render frames work from an immutable StateSnapshot taken under it.
# ============================================================

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Tuple, TypeVar

from loguru import logger

T = TypeVar("T")


class InputMode(Enum):
    NORMAL = "normal"
    EDITING_CONNECTION = "editing_connection"
    EDITING_QUERY = "editing_query"


class DbStatus(Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class QueryStatus(Enum):
    NOT_STARTED = "not_started"
    WAITING = "waiting"
    COMPLETE = "complete"
    FAILED = "failed"


class StatePoisonedError(RuntimeError):
    """Raised when the shared state was left mid-mutation by a failed update."""


@dataclass
class State:
    connection_input: str = ""
    query_input: str = ""
    input_mode: InputMode = InputMode.NORMAL
    db_status: DbStatus = DbStatus.DISCONNECTED
    query_status: QueryStatus = QueryStatus.NOT_STARTED
    connections: List[Tuple[str, DbStatus]] = field(default_factory=list)
    result_columns: List[str] = field(default_factory=list)
    result_rows: List[Tuple[Any, ...]] = field(default_factory=list)
    last_error: Optional[str] = None
    notice: Optional[str] = None
    show_password: bool = False

    # ── Buffer editing ────────────────────────────────────────

    def active_buffer(self) -> Optional[str]:
        """Name of the buffer receiving keystrokes, None in normal mode."""
        if self.input_mode is InputMode.EDITING_CONNECTION:
            return "connection_input"
        if self.input_mode is InputMode.EDITING_QUERY:
            return "query_input"
        return None

    def append_char(self, ch: str) -> None:
        name = self.active_buffer()
        if name is not None:
            setattr(self, name, getattr(self, name) + ch)

    def delete_char(self) -> None:
        name = self.active_buffer()
        if name is not None:
            setattr(self, name, getattr(self, name)[:-1])

    # ── Results ───────────────────────────────────────────────

    def replace_results(self, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> None:
        """Swap in a complete result set. Never merged with the previous one."""
        self.result_columns = [str(c) for c in columns]
        self.result_rows = [tuple(r) for r in rows]

    def report_error(self, message: str) -> None:
        self.last_error = message
        self.notice = None

    def report_notice(self, message: str) -> None:
        self.notice = message
        self.last_error = None


@dataclass(frozen=True)
class StateSnapshot:
    """Read-only copy of State for one render frame."""
    connection_input: str
    query_input: str
    input_mode: InputMode
    db_status: DbStatus
    query_status: QueryStatus
    connections: Tuple[Tuple[str, DbStatus], ...]
    result_columns: Tuple[str, ...]
    result_rows: Tuple[Tuple[Any, ...], ...]
    last_error: Optional[str]
    notice: Optional[str]
    show_password: bool

    @classmethod
    def of(cls, state: State) -> "StateSnapshot":
        return cls(
            connection_input=state.connection_input,
            query_input=state.query_input,
            input_mode=state.input_mode,
            db_status=state.db_status,
            query_status=state.query_status,
            connections=tuple(state.connections),
            result_columns=tuple(state.result_columns),
            result_rows=tuple(tuple(r) for r in state.result_rows),
            last_error=state.last_error,
            notice=state.notice,
            show_password=state.show_password,
        )


class SharedState:
    """
    Owner of the single State record.

    Every read and write goes through with_lock(fn). A mutation that raises
    leaves the record in an unknown state, so the store is poisoned and every
    later acquisition raises StatePoisonedError instead of handing out a
    possibly torn record.
    """

    def __init__(self, connection_input: str = "", query_input: str = ""):
        self._lock = threading.Lock()
        self._state = State(connection_input=connection_input, query_input=query_input)
        self._poisoned = False

    @property
    def poisoned(self) -> bool:
        return self._poisoned

    def with_lock(self, fn: Callable[[State], T]) -> T:
        with self._lock:
            if self._poisoned:
                raise StatePoisonedError("shared state is poisoned; refusing access")
            try:
                return fn(self._state)
            except BaseException as e:
                self._poisoned = True
                logger.critical(
                    f"State update failed in {threading.current_thread().name}: {e!r}"
                )
                raise

    def snapshot(self) -> StateSnapshot:
        return self.with_lock(StateSnapshot.of)
