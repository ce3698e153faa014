"""Test doubles shared across the suite."""

import threading
import time
from collections import deque
from typing import Dict, List, Set

from core.drivers import ConnectFailure, DatabaseDriver, PoolHandle, QueryFailure, QueryResult


class StubHandle(PoolHandle):
    def __init__(self, uri: str):
        super().__init__(uri)
        self.close_calls = 0

    def _close(self) -> None:
        self.close_calls += 1


class StubDriver(DatabaseDriver):
    """
    In-memory driver.

    - any uri containing "bad" fails to open
    - queued results are returned in order, else one row ("1",)
    - sql listed in failing_sql raises QueryFailure
    - sql listed in lost_sql breaks the handle, then raises QueryFailure
    - sql listed in gates blocks until the matching Event is set
    """

    name = "stub"

    def __init__(self):
        self.opened: List[str] = []
        self.executed: List[str] = []
        self.handles: Dict[str, StubHandle] = {}
        self.results = deque()
        self.failing_sql: Dict[str, str] = {}
        self.lost_sql: Set[str] = set()
        self.gates: Dict[str, threading.Event] = {}
        self.on_open = None

    def queue_result(self, columns, rows) -> None:
        self.results.append((list(columns), [tuple(r) for r in rows]))

    def open(self, uri: str) -> StubHandle:
        if self.on_open is not None:
            self.on_open(uri)
        if "bad" in uri:
            raise ConnectFailure(uri, "connection refused")
        self.opened.append(uri)
        handle = StubHandle(uri)
        self.handles[uri] = handle
        return handle

    def execute(self, handle: PoolHandle, sql: str) -> QueryResult:
        gate = self.gates.get(sql)
        if gate is not None:
            gate.wait(timeout=5)
        self.executed.append(sql)
        if sql in self.lost_sql:
            handle.mark_broken()
            raise QueryFailure(sql, "Lost connection to server during query")
        if sql in self.failing_sql:
            raise QueryFailure(sql, self.failing_sql[sql])
        if self.results:
            columns, rows = self.results.popleft()
        else:
            columns, rows = ["1"], [("1",)]
        return QueryResult(query=sql, columns=columns, rows=rows)


def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
