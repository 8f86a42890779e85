"""
Query Executor - runs validated SQL against PostGIS.

Only a ValidatedStatement (statement plus an ACCEPT/REWRITE verdict for
that exact text) is accepted; anything else is a contract violation. Each
statement runs inside a read-only transaction with a statement timeout.
A client-side timer and an optional caller CancellationToken both cancel
the statement server-side through the connection's cancel request.

Rows come back as dicts (the pool configures dict_row) and are capped at
max_rows; one extra row is fetched to set the `truncated` flag. Column
type names and nullability are resolved from pg_type and pg_attribute in
the same transaction. `explain` plans a statement under the same guard
and returns the planner estimate, scan type and index use.

Nothing here retries. Errors map onto:
    QueryTimeoutError      - timeout fired (client timer or statement_timeout)
    QueryCancelledError    - caller cancelled
    DatabaseConnectionError - connection could not be obtained or was lost
    QueryExecutionError    - any other database error

Exports:
    CancellationToken: Caller-held handle to abort a running statement
    QueryExecutor: Execution adaptor
"""

import json
import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional

import psycopg
from psycopg import sql

from config import get_config
from core.models import ColumnMetadata, ExecutionPlan, QueryResult, ValidatedStatement
from exceptions import (
    DatabaseConnectionError,
    QueryCancelledError,
    QueryExecutionError,
    QueryTimeoutError,
    UnvalidatedStatementError,
)
from .connection_pool import ConnectionPoolManager

logger = logging.getLogger(__name__)


_COLUMN_METADATA_QUERY = """
    SELECT c.idx, t.typname, a.attnotnull
    FROM unnest(%s::oid[], %s::oid[], %s::int2[]) WITH ORDINALITY AS c(type_oid, relid, num, idx)
    LEFT JOIN pg_type t ON t.oid = c.type_oid
    LEFT JOIN pg_attribute a ON a.attrelid = c.relid AND a.attnum = c.num AND c.relid <> 0
    ORDER BY c.idx
"""


class CancellationToken:
    """
    Cooperative cancellation handle.

    The executor registers a callback while a statement runs; cancel()
    invokes it from whichever thread calls it.
    """

    def __init__(self):
        self._cancelled = threading.Event()
        self._callbacks: List[Callable[[], None]] = []
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        with self._lock:
            self._cancelled.set()
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback()

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback; returns a function that removes it."""
        with self._lock:
            self._callbacks.append(callback)

        def unregister():
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unregister


class QueryExecutor:
    """
    Execution adaptor bound to one connection id.

    Args:
        connection_id: Which database to run against (default from config)
        connection_provider: Object with connection(connection_id) context
            manager; defaults to ConnectionPoolManager
        max_rows: Default row cap
        timeout_seconds: Default statement timeout
    """

    def __init__(self, connection_id: Optional[str] = None, connection_provider=None,
                 max_rows: Optional[int] = None, timeout_seconds: Optional[float] = None):
        config = get_config()
        self.connection_id = connection_id or config.database.connection_id
        self.connection_provider = connection_provider or ConnectionPoolManager
        self.max_rows = max_rows if max_rows is not None else config.query.max_rows
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else config.query.timeout_seconds
        self.log_sql = config.debug_mode

    def execute(self, statement: ValidatedStatement, max_rows: Optional[int] = None,
                timeout: Optional[float] = None,
                cancel_token: Optional[CancellationToken] = None) -> QueryResult:
        """
        Execute a validated statement.

        Raises:
            UnvalidatedStatementError: statement is not a consistent ValidatedStatement
            QueryTimeoutError, QueryCancelledError, DatabaseConnectionError,
            QueryExecutionError
        """
        self._check_statement(statement)

        row_cap = self.max_rows if max_rows is None else max_rows
        timeout_seconds = self.timeout_seconds if timeout is None else timeout
        if row_cap < 0 or timeout_seconds <= 0:
            raise ValueError(f"Invalid bounds: max_rows={row_cap}, timeout={timeout_seconds}")

        if cancel_token is not None and cancel_token.cancelled:
            raise QueryCancelledError("Query cancelled before it started")

        effective_sql = statement.sql
        started = time.monotonic()
        logger.debug(f"Executing on '{self.connection_id}' (max_rows={row_cap}, timeout={timeout_seconds}s)")
        if self.log_sql:
            logger.debug(f"SQL: {effective_sql}")

        with self._guarded_connection(timeout_seconds, cancel_token) as conn:
            columns, rows = self._run(conn, effective_sql, statement.parameters, row_cap, timeout_seconds)

        truncated = len(rows) > row_cap
        rows = rows[:row_cap]
        duration_ms = (time.monotonic() - started) * 1000.0
        logger.info(
            f"✅ Query on '{self.connection_id}' returned {len(rows)} rows"
            f"{' (truncated)' if truncated else ''} in {duration_ms:.1f}ms"
        )
        return QueryResult(
            columns=columns,
            rows=rows,
            row_count=len(rows),
            truncated=truncated,
            duration_ms=duration_ms,
            sql=effective_sql,
        )

    def explain(self, statement: ValidatedStatement, timeout: Optional[float] = None) -> ExecutionPlan:
        """
        Planner estimate for a validated statement via EXPLAIN (FORMAT JSON).

        The statement is planned, not run; the same read-only transaction
        and timeout apply as for execute().
        """
        self._check_statement(statement)
        timeout_seconds = self.timeout_seconds if timeout is None else timeout
        if timeout_seconds <= 0:
            raise ValueError(f"Invalid timeout: {timeout_seconds}")

        effective_sql = statement.sql
        with self._guarded_connection(timeout_seconds) as conn:
            with conn.transaction():
                with conn.cursor() as cursor:
                    self._begin_read_only(cursor, timeout_seconds)
                    cursor.execute(f"EXPLAIN (FORMAT JSON) {effective_sql}",
                                   tuple(statement.parameters) if statement.parameters else None)
                    row = cursor.fetchone()

        if row is None:
            raise QueryExecutionError("EXPLAIN returned no plan", details={"connection_id": self.connection_id})
        document = next(iter(row.values())) if isinstance(row, dict) else row[0]
        if isinstance(document, (str, bytes)):
            document = json.loads(document)

        plan = ExecutionPlan.from_explain(document, effective_sql)
        logger.info(
            f"Plan on '{self.connection_id}': {plan.scan_type or 'no scan'}, "
            f"~{plan.estimated_rows} rows, cost {plan.estimated_cost:.2f}"
        )
        return plan

    @staticmethod
    def _check_statement(statement: ValidatedStatement) -> None:
        if not isinstance(statement, ValidatedStatement):
            raise UnvalidatedStatementError(
                f"Executor requires a ValidatedStatement, got {type(statement).__name__}"
            )
        if not statement.is_consistent():
            raise UnvalidatedStatementError(
                "Verdict does not allow this statement (rejected or belongs to different SQL)"
            )

    @contextmanager
    def _guarded_connection(self, timeout_seconds: float, cancel_token: Optional[CancellationToken] = None):
        """
        Borrow a connection with the client-side timeout armed.

        psycopg errors raised inside the block are mapped onto the
        pipeline's exception types.
        """
        state = {"timed_out": False}
        with self.connection_provider.connection(self.connection_id) as conn:
            timer = threading.Timer(timeout_seconds, self._on_timeout, args=(conn, state))
            unregister = None
            if cancel_token is not None:
                unregister = cancel_token.register(lambda: self._cancel(conn))
            timer.daemon = True
            timer.start()
            try:
                yield conn
            except psycopg.errors.QueryCanceled as e:
                if cancel_token is not None and cancel_token.cancelled and not state["timed_out"]:
                    logger.warning(f"Query on '{self.connection_id}' cancelled by caller")
                    raise QueryCancelledError("Query cancelled", details={"connection_id": self.connection_id}) from e
                logger.warning(f"⏱️ Query on '{self.connection_id}' exceeded {timeout_seconds}s")
                raise QueryTimeoutError(
                    f"Query exceeded timeout of {timeout_seconds}s",
                    details={"connection_id": self.connection_id, "timeout_seconds": timeout_seconds},
                ) from e
            except psycopg.OperationalError as e:
                logger.error(f"❌ Connection failure on '{self.connection_id}': {e}")
                raise DatabaseConnectionError(
                    f"Connection failure: {e}",
                    details={"connection_id": self.connection_id},
                ) from e
            except psycopg.Error as e:
                logger.error(f"❌ Query failed on '{self.connection_id}': {e}")
                raise QueryExecutionError(
                    f"Query failed: {e}",
                    details={"connection_id": self.connection_id, "sqlstate": e.sqlstate},
                ) from e
            finally:
                timer.cancel()
                if unregister is not None:
                    unregister()

    @staticmethod
    def _begin_read_only(cursor, timeout_seconds: float) -> None:
        timeout_ms = max(1, int(timeout_seconds * 1000))
        cursor.execute("SET TRANSACTION READ ONLY")
        cursor.execute(sql.SQL("SET LOCAL statement_timeout = {}").format(sql.Literal(timeout_ms)))

    def _run(self, conn, effective_sql: str, parameters, row_cap: int, timeout_seconds: float):
        with conn.transaction():
            with conn.cursor() as cursor:
                self._begin_read_only(cursor, timeout_seconds)
                cursor.execute(effective_sql, tuple(parameters) if parameters else None)

                description = cursor.description or []
                rows = [dict(row) for row in cursor.fetchmany(row_cap + 1)] if description else []
                columns = self._column_metadata(cursor, description)
        return columns, rows

    @staticmethod
    def _column_metadata(cursor, description) -> List[ColumnMetadata]:
        if not description:
            return []

        type_oids = [column.type_code for column in description]
        pgresult = cursor.pgresult
        if pgresult is not None:
            table_oids = [pgresult.ftable(i) for i in range(len(description))]
            table_cols = [pgresult.ftablecol(i) for i in range(len(description))]
        else:
            table_oids = [0] * len(description)
            table_cols = [0] * len(description)

        cursor.execute(_COLUMN_METADATA_QUERY, (type_oids, table_oids, table_cols))
        found: Dict[int, Dict[str, Any]] = {row["idx"]: row for row in cursor.fetchall()}

        columns = []
        for index, column in enumerate(description, start=1):
            info = found.get(index, {})
            not_null = info.get("attnotnull")
            columns.append(ColumnMetadata(
                name=column.name,
                type_name=info.get("typname") or "unknown",
                type_oid=column.type_code,
                nullable=None if not_null is None else not not_null,
            ))
        return columns

    def _on_timeout(self, conn, state: Dict[str, bool]) -> None:
        state["timed_out"] = True
        self._cancel(conn)

    def _cancel(self, conn) -> None:
        """Ask the server to cancel whatever the connection is running."""
        try:
            conn.cancel_safe()
        except psycopg.Error as e:
            logger.warning(f"Cancel request on '{self.connection_id}' failed: {e}")


__all__ = [
    'CancellationToken',
    'QueryExecutor',
]
