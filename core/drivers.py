# ============================================================
# Lithia - Interactive SQL Console
# core/drivers.py - Database Drivers (open / execute / usable)
# ============================================================
#
# The worker only needs three things from a database:
#   driver.open(uri)          -> PoolHandle   (or ConnectFailure)
#   driver.execute(handle, sql) -> QueryResult (or QueryFailure)
#   handle.is_usable()        -> bool
# Everything here is blocking; the worker runs it off its event loop.
# ============================================================

import itertools
import sqlite3
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Tuple
from urllib.parse import unquote, urlsplit

import psycopg2
import psycopg2.pool
from mysql.connector import Error as MySQLError
from mysql.connector import errors as mysql_errors
from mysql.connector.pooling import MySQLConnectionPool
from loguru import logger

from config import console_config
from utils.helpers import mask_uri


# ── Errors ────────────────────────────────────────────────────

class DriverError(Exception):
    """Base class for failures reported by a database driver."""


class ConnectFailure(DriverError):
    def __init__(self, uri: str, reason: str):
        self.uri = uri
        self.reason = reason
        super().__init__(f"Could not connect to {mask_uri(uri)}: {reason}")


class QueryFailure(DriverError):
    def __init__(self, sql: str, reason: str):
        self.sql = sql
        self.reason = reason
        super().__init__(f"Query failed: {reason}")


class UsageOrderingError(QueryFailure):
    """A query was submitted for a URI that has no live connection."""

    def __init__(self, sql: str, uri: str):
        self.uri = uri
        super().__init__(sql, f"not connected to {mask_uri(uri)}; connect first")


# ── Results ───────────────────────────────────────────────────

class QueryResult:
    """Structured result from a successful query execution."""

    def __init__(
        self,
        query: str,
        columns: Optional[List[str]] = None,
        rows: Optional[List[Tuple]] = None,
        affected_rows: int = 0,
        execution_ms: int = 0,
    ):
        self.query = query
        self.columns = columns or []
        self.rows = rows or []
        self.affected_rows = affected_rows
        self.execution_ms = execution_ms

    @property
    def returns_rows(self) -> bool:
        return bool(self.columns)

    def __repr__(self):
        return f"<QueryResult rows={len(self.rows)} affected={self.affected_rows} time={self.execution_ms}ms>"


def _elapsed_ms(start_time: float) -> int:
    return int((time.time() - start_time) * 1000)


# ── URI parsing ───────────────────────────────────────────────

DEFAULT_PORTS = {
    "mysql": 3306,
    "mariadb": 3306,
    "postgres": 5432,
    "postgresql": 5432,
}


@dataclass(frozen=True)
class ConnectionParams:
    scheme: str
    host: str = "localhost"
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    path: str = ""


def parse_uri(uri: str) -> ConnectionParams:
    """
    Split a connection URI into its parts.

    sqlite URIs keep everything after 'sqlite://' as the file path:
    'sqlite://:memory:', 'sqlite://data.db', 'sqlite:///abs/data.db'.
    """
    scheme, sep, rest = uri.strip().partition("://")
    if not sep or not scheme:
        raise ConnectFailure(uri, "expected a URI of the form scheme://...")
    scheme = scheme.lower()

    if scheme == "sqlite":
        return ConnectionParams(scheme=scheme, host="", path=rest or ":memory:")

    try:
        parts = urlsplit(uri.strip())
        port = parts.port
    except ValueError as e:
        raise ConnectFailure(uri, str(e)) from e

    database = parts.path.lstrip("/") or None
    return ConnectionParams(
        scheme=scheme,
        host=parts.hostname or "localhost",
        port=port or DEFAULT_PORTS.get(scheme),
        user=unquote(parts.username) if parts.username else None,
        password=unquote(parts.password) if parts.password else None,
        database=unquote(database) if database else None,
    )


# ── Handles ───────────────────────────────────────────────────

class PoolHandle(ABC):
    """An opened connection or pool for one URI."""

    def __init__(self, uri: str):
        self.uri = uri
        self._closed = False
        self._broken = False

    def mark_broken(self) -> None:
        self._broken = True

    def mark_healthy(self) -> None:
        """A statement just succeeded, so the pool has a live connection again."""
        self._broken = False

    @property
    def closed(self) -> bool:
        return self._closed

    def is_usable(self) -> bool:
        return not self._closed and not self._broken

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._close()
        except Exception as e:
            logger.warning(f"Error while closing {mask_uri(self.uri)}: {e}")

    @abstractmethod
    def _close(self) -> None:
        ...


class MySQLPoolHandle(PoolHandle):
    def __init__(self, uri: str, pool: MySQLConnectionPool):
        super().__init__(uri)
        self.pool = pool

    def _close(self) -> None:
        # MySQLConnectionPool has no public close. _remove_connections() drops the
        # idle connections it holds and exists in every release from 8.0 through
        # 9.x (setup.py requires mysql-connector-python>=8.3.0).
        self.pool._remove_connections()


class PostgresPoolHandle(PoolHandle):
    def __init__(self, uri: str, pool: psycopg2.pool.ThreadedConnectionPool):
        super().__init__(uri)
        self.pool = pool

    def is_usable(self) -> bool:
        return super().is_usable() and not self.pool.closed

    def _close(self) -> None:
        self.pool.closeall()


class SQLiteHandle(PoolHandle):
    def __init__(self, uri: str, connection: sqlite3.Connection):
        super().__init__(uri)
        self.connection = connection

    def _close(self) -> None:
        self.connection.close()


# ── Drivers ───────────────────────────────────────────────────

class DatabaseDriver(ABC):
    name = "abstract"

    @abstractmethod
    def open(self, uri: str) -> PoolHandle:
        """Open a connection/pool for uri. Raises ConnectFailure."""

    @abstractmethod
    def execute(self, handle: PoolHandle, sql: str) -> QueryResult:
        """Run sql on handle. Raises QueryFailure."""


class MySQLDriver(DatabaseDriver):
    """
    MySQL / MariaDB through mysql-connector's connection pool.
    Each execute() borrows one pooled connection and returns it afterwards.
    """

    name = "mysql"
    _pool_ids = itertools.count(1)

    def __init__(self, pool_size: int = 5, connect_timeout: int = 10):
        self.pool_size = pool_size
        self.connect_timeout = connect_timeout

    def open(self, uri: str) -> MySQLPoolHandle:
        params = parse_uri(uri)
        config = {
            "host": params.host,
            "port": params.port,
            "user": params.user,
            "password": params.password or "",
            "autocommit": True,
            "connection_timeout": self.connect_timeout,
        }
        if params.database:
            config["database"] = params.database
        try:
            pool = MySQLConnectionPool(
                pool_name=f"lithia-{next(self._pool_ids)}",
                pool_size=self.pool_size,
                **config,
            )
        except MySQLError as e:
            raise ConnectFailure(uri, str(e)) from e
        logger.info(f"Opened MySQL pool ({self.pool_size}) for {mask_uri(uri)}")
        return MySQLPoolHandle(uri, pool)

    def execute(self, handle: MySQLPoolHandle, sql: str) -> QueryResult:
        query = sql.strip().rstrip(";").strip()
        start_time = time.time()
        try:
            cnx = handle.pool.get_connection()
        except MySQLError as e:
            handle.mark_broken()
            raise QueryFailure(sql, str(e)) from e

        try:
            cursor = cnx.cursor(buffered=True)
            try:
                cursor.execute(query)
                if cursor.description:
                    columns = [desc[0] for desc in cursor.description]
                    rows = [tuple(r) for r in cursor.fetchall()]
                    return QueryResult(
                        query=sql,
                        columns=columns,
                        rows=rows,
                        execution_ms=_elapsed_ms(start_time),
                    )
                cnx.commit()
                return QueryResult(
                    query=sql,
                    affected_rows=max(cursor.rowcount, 0),
                    execution_ms=_elapsed_ms(start_time),
                )
            finally:
                cursor.close()
        except (mysql_errors.OperationalError, mysql_errors.InterfaceError) as e:
            handle.mark_broken()
            raise QueryFailure(sql, str(e)) from e
        except MySQLError as e:
            raise QueryFailure(sql, str(e)) from e
        finally:
            _release_mysql_connection(handle, cnx)


def _release_mysql_connection(handle: MySQLPoolHandle, cnx) -> None:
    # Returning a connection resets its session, which raises again on a dead socket
    try:
        cnx.close()
    except MySQLError as e:
        logger.warning(f"Could not return connection to pool for {mask_uri(handle.uri)}: {e}")


class PostgresDriver(DatabaseDriver):
    """PostgreSQL through psycopg2's ThreadedConnectionPool."""

    name = "postgres"

    def __init__(self, pool_size: int = 5, connect_timeout: int = 10):
        self.pool_size = pool_size
        self.connect_timeout = connect_timeout

    def open(self, uri: str) -> PostgresPoolHandle:
        params = parse_uri(uri)
        try:
            pool = psycopg2.pool.ThreadedConnectionPool(
                1,
                self.pool_size,
                host=params.host,
                port=params.port,
                user=params.user,
                password=params.password,
                dbname=params.database,
                connect_timeout=self.connect_timeout,
            )
        except psycopg2.Error as e:
            raise ConnectFailure(uri, str(e).strip()) from e
        logger.info(f"Opened PostgreSQL pool (1..{self.pool_size}) for {mask_uri(uri)}")
        return PostgresPoolHandle(uri, pool)

    def execute(self, handle: PostgresPoolHandle, sql: str) -> QueryResult:
        start_time = time.time()
        try:
            conn = handle.pool.getconn()
        except psycopg2.Error as e:
            handle.mark_broken()
            raise QueryFailure(sql, str(e).strip()) from e

        discard = False
        try:
            with conn.cursor() as cur:
                cur.execute(sql)
                if cur.description:
                    columns = [desc[0] for desc in cur.description]
                    rows = [tuple(r) for r in cur.fetchall()]
                else:
                    columns, rows = [], []
                affected = max(cur.rowcount, 0)
            conn.commit()
            return QueryResult(
                query=sql,
                columns=columns,
                rows=rows,
                affected_rows=0 if columns else affected,
                execution_ms=_elapsed_ms(start_time),
            )
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            discard = True
            if conn.closed:
                handle.mark_broken()
            raise QueryFailure(sql, str(e).strip()) from e
        except psycopg2.Error as e:
            conn.rollback()
            raise QueryFailure(sql, str(e).strip()) from e
        finally:
            handle.pool.putconn(conn, close=discard)


class SQLiteDriver(DatabaseDriver):
    """sqlite3 file or in-memory database; one connection per URI."""

    name = "sqlite"

    def __init__(self, connect_timeout: int = 10):
        self.connect_timeout = connect_timeout

    def open(self, uri: str) -> SQLiteHandle:
        params = parse_uri(uri)
        try:
            # Opened on the worker's executor thread, used from the same one
            connection = sqlite3.connect(
                params.path,
                timeout=self.connect_timeout,
                check_same_thread=False,
            )
        except sqlite3.Error as e:
            raise ConnectFailure(uri, str(e)) from e
        logger.info(f"Opened SQLite database {params.path}")
        return SQLiteHandle(uri, connection)

    def execute(self, handle: SQLiteHandle, sql: str) -> QueryResult:
        start_time = time.time()
        try:
            cur = handle.connection.execute(sql)
            try:
                if cur.description:
                    columns = [desc[0] for desc in cur.description]
                    rows = [tuple(r) for r in cur.fetchall()]
                    return QueryResult(
                        query=sql,
                        columns=columns,
                        rows=rows,
                        execution_ms=_elapsed_ms(start_time),
                    )
                handle.connection.commit()
                return QueryResult(
                    query=sql,
                    affected_rows=max(cur.rowcount, 0),
                    execution_ms=_elapsed_ms(start_time),
                )
            finally:
                cur.close()
        except sqlite3.ProgrammingError as e:
            # Also raised for API misuse; only a closed database breaks the handle
            if "closed database" in str(e):
                handle.mark_broken()
            raise QueryFailure(sql, str(e)) from e
        except sqlite3.Error as e:
            raise QueryFailure(sql, str(e)) from e


def driver_for_uri(uri: str) -> DatabaseDriver:
    """Pick the driver for uri by its scheme. Raises ConnectFailure for unknown schemes."""
    scheme = parse_uri(uri).scheme
    if scheme in ("mysql", "mariadb"):
        return MySQLDriver(console_config.pool_size, console_config.connect_timeout)
    if scheme in ("postgres", "postgresql"):
        return PostgresDriver(console_config.pool_size, console_config.connect_timeout)
    if scheme == "sqlite":
        return SQLiteDriver(console_config.connect_timeout)
    raise ConnectFailure(uri, f"unsupported scheme '{scheme}' (use mysql, postgresql or sqlite)")
