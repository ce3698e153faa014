# ============================================================
# Lithia - Interactive SQL Console
# core/worker.py - Database Worker (background thread + asyncio)
# ============================================================
#
# One daemon thread runs its own event loop and drains the command
# channel strictly in order. Blocking driver calls go through a
# single-thread executor, so at most one database operation is ever
# in flight. Outcomes are written back into SharedState under its
# lock; the worker never talks to the console directly.
# ============================================================

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Optional

from loguru import logger

from core.commands import ChannelClosedError, Command, CommandChannel, Connect, Disconnect, Query
from core.drivers import (
    ConnectFailure,
    DatabaseDriver,
    DriverError,
    QueryFailure,
    QueryResult,
    UsageOrderingError,
    driver_for_uri,
)
from core.registry import ConnectionRegistry
from core.state import DbStatus, QueryStatus, SharedState, State, StatePoisonedError
from utils.helpers import mask_uri, rows_summary


class DatabaseWorker:
    """
    Sole owner of database I/O and of the ConnectionRegistry.

    Driver failures are converted into state updates and never stop the
    worker. Only a poisoned state (or a bug escaping handle()) ends it; the
    channel is closed on the way out so the console sees ChannelClosedError.
    """

    def __init__(
        self,
        state: SharedState,
        channel: CommandChannel,
        driver_for: Callable[[str], DatabaseDriver] = driver_for_uri,
    ):
        self._state = state
        self._channel = channel
        self._driver_for = driver_for
        self._registry = ConnectionRegistry()
        self._drivers: Dict[str, DatabaseDriver] = {}
        self._db_executor: Optional[ThreadPoolExecutor] = None
        self._thread = threading.Thread(
            target=self._thread_main,
            daemon=True,
            name="lithia-db-worker",
        )
        self.fatal_error: Optional[BaseException] = None

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    # ── Lifecycle ─────────────────────────────────────────────

    def start(self) -> None:
        logger.info("Starting database worker")
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._channel.close()
        if self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(f"Database worker did not stop within {timeout}s")
        logger.info("Database worker stopped")

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def close(self) -> None:
        """Close every registered handle and the I/O executor."""
        self._registry.close_all()
        self._drivers.clear()
        if self._db_executor is not None:
            self._db_executor.shutdown(wait=True)
            self._db_executor = None

    def _thread_main(self) -> None:
        try:
            asyncio.run(self._run())
        except StatePoisonedError as e:
            self.fatal_error = e
            logger.critical(f"Database worker stopping, shared state unusable: {e}")
        except Exception as e:
            self.fatal_error = e
            logger.opt(exception=e).critical(f"Database worker crashed: {e}")
        finally:
            self._channel.close()

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while True:
                command = await loop.run_in_executor(None, self._channel.receive)
                if command is None:
                    logger.debug("Command channel closed, worker loop ending")
                    break
                try:
                    await self.handle(command)
                finally:
                    self._channel.task_done()
        finally:
            # Unblocks the pending receive() if we are leaving on an error
            self._channel.close()
            self.close()

    async def _in_db(self, fn, *args):
        if self._db_executor is None:
            self._db_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="lithia-db-io")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._db_executor, fn, *args)

    # ── Command handling ──────────────────────────────────────

    async def handle(self, command: Command) -> None:
        """Process one command to completion, state update included."""
        logger.info(f"Processing {command.describe()}")
        if isinstance(command, Connect):
            await self._connect(command)
        elif isinstance(command, Query):
            await self._query(command)
        elif isinstance(command, Disconnect):
            await self._disconnect(command)
        else:
            logger.warning(f"Ignoring unknown command: {command!r}")

    async def _connect(self, command: Connect) -> None:
        uri = command.uri
        try:
            driver = self._driver_for(uri)
            handle = await self._in_db(driver.open, uri)
        except DriverError as e:
            self._connect_failed(uri, e)
            return
        except Exception as e:
            self._connect_failed(uri, ConnectFailure(uri, f"{type(e).__name__}: {e}"))
            return

        self._registry.insert(uri, handle)
        self._drivers[uri] = driver
        statuses = self._registry.snapshot_statuses()
        logger.info(f"Connected to {mask_uri(uri)} ({len(statuses)} registered)")

        def apply(state: State) -> None:
            state.db_status = DbStatus.CONNECTED
            state.connections = statuses
            state.report_notice(f"Connected to {mask_uri(uri)}")

        self._state.with_lock(apply)

    def _connect_failed(self, uri: str, error: DriverError) -> None:
        logger.warning(str(error))
        statuses = self._registry.snapshot_statuses()

        def apply(state: State) -> None:
            state.db_status = DbStatus.DISCONNECTED
            state.connections = statuses
            state.report_error(str(error))

        self._state.with_lock(apply)

    async def _query(self, command: Query) -> None:
        handle = self._registry.get(command.uri)
        if handle is None:
            self._query_failed(command, UsageOrderingError(command.sql, command.uri))
            return

        driver = self._drivers[command.uri]
        try:
            result = await self._in_db(driver.execute, handle, command.sql)
        except DriverError as e:
            self._query_failed(command, e)
            return
        except Exception as e:
            self._query_failed(command, QueryFailure(command.sql, f"{type(e).__name__}: {e}"))
            return

        handle.mark_healthy()
        logger.info(f"{result!r} for {command.describe()}")
        statuses = self._registry.snapshot_statuses()
        db_status = self._registry.status_of(command.uri)
        summary = _summarize(result)

        def apply(state: State) -> None:
            state.replace_results(result.columns, result.rows)
            state.query_status = QueryStatus.COMPLETE
            state.db_status = db_status
            state.connections = statuses
            state.report_notice(summary)

        self._state.with_lock(apply)

    def _query_failed(self, command: Query, error: DriverError) -> None:
        if isinstance(error, UsageOrderingError):
            logger.warning(f"{command.describe()} rejected: {error}")
        else:
            logger.error(f"{command.describe()} failed: {error}")
        statuses = self._registry.snapshot_statuses()
        db_status = self._registry.status_of(command.uri)

        def apply(state: State) -> None:
            state.query_status = QueryStatus.FAILED
            state.db_status = db_status
            state.connections = statuses
            state.report_error(str(error))

        self._state.with_lock(apply)

    async def _disconnect(self, command: Disconnect) -> None:
        uri = command.uri
        self._drivers.pop(uri, None)
        removed = await self._in_db(self._registry.remove, uri)
        statuses = self._registry.snapshot_statuses()

        def apply(state: State) -> None:
            state.connections = statuses
            if removed:
                state.db_status = DbStatus.DISCONNECTED
                state.report_notice(f"Disconnected from {mask_uri(uri)}")
            else:
                state.report_notice(f"No open connection for {mask_uri(uri)}")

        self._state.with_lock(apply)


def _summarize(result: QueryResult) -> str:
    if result.returns_rows:
        return rows_summary(len(result.rows), result.execution_ms)
    row_word = "row" if result.affected_rows == 1 else "rows"
    return f"Query OK, {result.affected_rows} {row_word} affected ({result.execution_ms / 1000:.3f} sec)"


def submit_and_wait(worker: DatabaseWorker, channel: CommandChannel, *commands: Command) -> None:
    """Send commands to a running worker and block until all are processed."""
    for command in commands:
        channel.send(command)
    channel.join()
    if worker.fatal_error is not None:
        raise ChannelClosedError(f"database worker stopped: {worker.fatal_error}")
