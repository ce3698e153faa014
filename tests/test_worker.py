"""Tests for the database worker: command outcomes, ordering and shutdown."""

import asyncio
import threading

import pytest

from core.commands import ChannelClosedError, Connect, Disconnect, Query
from core.state import DbStatus, QueryStatus
from core.worker import DatabaseWorker, submit_and_wait
from helpers import wait_for


def run(worker, *commands):
    for command in commands:
        asyncio.run(worker.handle(command))


class TestConnect:
    def test_successful_connect_registers_uri(self, worker, shared_state):
        run(worker, Connect("db://good"))

        snapshot = shared_state.snapshot()
        assert snapshot.db_status is DbStatus.CONNECTED
        assert "db://good" in worker.registry
        assert snapshot.connections == (("db://good", DbStatus.CONNECTED),)
        assert snapshot.last_error is None
        assert "Connected to db://good" in snapshot.notice

    def test_failed_connect_leaves_registry_untouched(self, worker, shared_state):
        run(worker, Connect("db://bad"))

        snapshot = shared_state.snapshot()
        assert snapshot.db_status is DbStatus.DISCONNECTED
        assert "db://bad" not in worker.registry
        assert len(worker.registry) == 0
        assert "db://bad" in snapshot.last_error

    def test_failed_connect_after_success_reports_disconnected(self, worker, shared_state):
        run(worker, Connect("db://good"), Connect("db://bad"))

        snapshot = shared_state.snapshot()
        assert snapshot.db_status is DbStatus.DISCONNECTED
        assert list(worker.registry) == ["db://good"]
        assert snapshot.connections == (("db://good", DbStatus.CONNECTED),)

    def test_unexpected_driver_exception_is_a_connect_failure(self, worker, shared_state, driver):
        def explode(uri):
            raise TypeError("port must be int")

        driver.on_open = explode
        run(worker, Connect("db://good"), Query("SELECT 1", "db://good"))

        snapshot = shared_state.snapshot()
        assert snapshot.db_status is DbStatus.DISCONNECTED
        assert "db://good" not in worker.registry
        assert snapshot.query_status is QueryStatus.FAILED

    def test_reconnect_replaces_and_closes_previous_handle(self, worker, driver):
        run(worker, Connect("db://good"))
        first = driver.handles["db://good"]
        run(worker, Connect("db://good"))

        assert first.close_calls == 1
        assert worker.registry.get("db://good") is driver.handles["db://good"]
        assert len(worker.registry) == 1


class TestQuery:
    def test_connect_then_query_completes(self, worker, shared_state, driver):
        driver.queue_result(["1"], [("1",)])
        run(worker, Connect("db://good"), Query("SELECT 1", "db://good"))

        snapshot = shared_state.snapshot()
        assert snapshot.result_rows == (("1",),)
        assert snapshot.result_columns == ("1",)
        assert snapshot.query_status is QueryStatus.COMPLETE
        assert snapshot.notice == "1 row in set (0.000 sec)"

    def test_query_without_connect_is_rejected(self, worker, shared_state):
        shared_state.with_lock(lambda s: s.replace_results(["x"], [("old",)]))

        run(worker, Query("SELECT 1", "db://never-connected"))

        snapshot = shared_state.snapshot()
        assert snapshot.result_rows == (("old",),)
        assert snapshot.query_status is QueryStatus.FAILED
        assert "connect first" in snapshot.last_error

    def test_worker_keeps_going_after_rejected_query(self, worker, shared_state):
        run(
            worker,
            Query("SELECT 1", "db://never-connected"),
            Connect("db://good"),
            Query("SELECT 1", "db://good"),
        )

        snapshot = shared_state.snapshot()
        assert snapshot.query_status is QueryStatus.COMPLETE
        assert snapshot.last_error is None

    def test_second_query_replaces_results(self, worker, shared_state, driver):
        driver.queue_result(["a"], [(1,), (2,), (3,)])
        driver.queue_result(["b"], [("only",)])

        run(worker, Connect("db://good"), Query("q1", "db://good"), Query("q2", "db://good"))

        snapshot = shared_state.snapshot()
        assert snapshot.result_columns == ("b",)
        assert snapshot.result_rows == (("only",),)

    def test_failed_query_keeps_previous_rows(self, worker, shared_state, driver):
        driver.queue_result(["n"], [(42,)])
        driver.failing_sql["SELEC nope"] = "syntax error near 'SELEC'"

        run(worker, Connect("db://good"), Query("SELECT 42", "db://good"), Query("SELEC nope", "db://good"))

        snapshot = shared_state.snapshot()
        assert snapshot.result_rows == ((42,),)
        assert snapshot.query_status is QueryStatus.FAILED
        assert "syntax error" in snapshot.last_error
        assert snapshot.notice is None

    def test_statement_without_rows_clears_result_set(self, worker, shared_state, driver):
        driver.queue_result(["n"], [(1,)])
        driver.queue_result([], [])

        run(worker, Connect("db://good"), Query("SELECT 1", "db://good"), Query("DELETE FROM t", "db://good"))

        snapshot = shared_state.snapshot()
        assert snapshot.result_rows == ()
        assert snapshot.query_status is QueryStatus.COMPLETE
        assert snapshot.notice.startswith("Query OK, 0 rows affected")

    def test_lost_connection_reported_as_disconnected(self, worker, shared_state, driver):
        driver.lost_sql.add("SELECT sleep(60)")

        run(worker, Connect("db://good"), Query("SELECT sleep(60)", "db://good"))

        snapshot = shared_state.snapshot()
        assert snapshot.query_status is QueryStatus.FAILED
        assert snapshot.db_status is DbStatus.DISCONNECTED
        assert snapshot.connections == (("db://good", DbStatus.DISCONNECTED),)
        assert "Lost connection" in snapshot.last_error

    def test_successful_query_after_pool_recovers_reports_connected(self, worker, shared_state, driver):
        run(worker, Connect("db://good"))
        driver.handles["db://good"].mark_broken()

        run(worker, Query("SELECT 1", "db://good"))

        snapshot = shared_state.snapshot()
        assert snapshot.query_status is QueryStatus.COMPLETE
        assert snapshot.db_status is DbStatus.CONNECTED
        assert snapshot.connections == (("db://good", DbStatus.CONNECTED),)

    def test_closed_handle_stays_disconnected(self, worker, driver):
        run(worker, Connect("db://good"))
        handle = driver.handles["db://good"]
        handle.close()
        handle.mark_healthy()

        assert not handle.is_usable()
        assert worker.registry.status_of("db://good") is DbStatus.DISCONNECTED


class TestDisconnect:
    def test_disconnect_removes_and_closes(self, worker, shared_state, driver):
        run(worker, Connect("db://good"), Disconnect("db://good"))

        snapshot = shared_state.snapshot()
        assert "db://good" not in worker.registry
        assert driver.handles["db://good"].close_calls == 1
        assert snapshot.db_status is DbStatus.DISCONNECTED
        assert snapshot.connections == ()

    def test_disconnect_unknown_uri_is_harmless(self, worker, shared_state):
        run(worker, Connect("db://good"), Disconnect("db://other"))

        snapshot = shared_state.snapshot()
        assert snapshot.db_status is DbStatus.CONNECTED
        assert "No open connection" in snapshot.notice

    def test_query_after_disconnect_is_rejected(self, worker, shared_state):
        run(worker, Connect("db://good"), Disconnect("db://good"), Query("SELECT 1", "db://good"))

        assert shared_state.snapshot().query_status is QueryStatus.FAILED


class TestWorkerThread:
    def test_commands_processed_in_order(self, running_worker, channel, shared_state, driver):
        driver.queue_result(["v"], [("first",)])
        seen_at_open = []
        driver.on_open = lambda uri: seen_at_open.append(shared_state.snapshot())

        submit_and_wait(
            running_worker,
            channel,
            Connect("db://good"),
            Query("SELECT 'first'", "db://good"),
            Connect("db://second"),
        )

        assert driver.opened == ["db://good", "db://second"]
        # The query's update was fully applied before the second connect began
        second = seen_at_open[1]
        assert second.result_rows == (("first",),)
        assert second.query_status is QueryStatus.COMPLETE

    def test_long_query_blocks_later_commands(self, running_worker, channel, driver):
        gate = threading.Event()
        driver.gates["SELECT SLEEP(1)"] = gate

        channel.send(Connect("db://good"))
        channel.send(Query("SELECT SLEEP(1)", "db://good"))
        channel.send(Connect("db://later"))

        assert wait_for(lambda: driver.opened == ["db://good"])
        assert not wait_for(lambda: "db://later" in driver.opened, timeout=0.2)

        gate.set()
        channel.join()
        assert driver.opened == ["db://good", "db://later"]

    def test_stop_closes_registered_handles(self, shared_state, channel, driver):
        worker = DatabaseWorker(shared_state, channel, driver_for=lambda uri: driver)
        worker.start()
        submit_and_wait(worker, channel, Connect("db://good"))

        worker.stop(timeout=2.0)

        assert not worker.is_alive()
        assert driver.handles["db://good"].close_calls == 1
        assert channel.closed

    def test_poisoned_state_stops_worker_and_closes_channel(self, running_worker, channel, shared_state):
        with pytest.raises(ZeroDivisionError):
            shared_state.with_lock(lambda s: 1 / 0)

        channel.send(Connect("db://good"))

        assert wait_for(lambda: not running_worker.is_alive())
        assert channel.closed
        assert running_worker.fatal_error is not None
        with pytest.raises(ChannelClosedError):
            channel.send(Query("SELECT 1", "db://good"))
