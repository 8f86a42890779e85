"""
Execution adaptor tests against a MagicMock psycopg connection.
"""

import json
from types import SimpleNamespace

import psycopg
import pytest

from core.models import CompiledStatement, ValidatedStatement, ValidationVerdict, VerdictOutcome
from core.sql.validator import SQLValidator
from exceptions import (
    DatabaseConnectionError,
    QueryCancelledError,
    QueryExecutionError,
    QueryTimeoutError,
    UnvalidatedStatementError,
)
from infrastructure.query_executor import CancellationToken, QueryExecutor


@pytest.fixture
def executor(fake_provider):
    return QueryExecutor(connection_id="default", connection_provider=fake_provider, max_rows=2, timeout_seconds=5)


@pytest.fixture
def validated():
    return SQLValidator().approve(CompiledStatement.from_text("SELECT id, name FROM countries LIMIT 10"))


def _prime_cursor(cursor, rows):
    cursor.description = [SimpleNamespace(name="id", type_code=23), SimpleNamespace(name="name", type_code=25)]
    cursor.pgresult = None
    cursor.fetchmany.return_value = rows
    cursor.fetchall.return_value = [
        {"idx": 1, "typname": "int4", "attnotnull": None},
        {"idx": 2, "typname": "text", "attnotnull": None},
    ]


class TestContract:
    def test_bare_string_rejected(self, executor):
        with pytest.raises(UnvalidatedStatementError):
            executor.execute("SELECT 1")

    def test_compiled_statement_rejected(self, executor):
        with pytest.raises(UnvalidatedStatementError):
            executor.execute(CompiledStatement.from_text("SELECT 1 LIMIT 1"))

    def test_verdict_for_other_text_rejected(self, executor):
        forged = ValidatedStatement(
            statement=CompiledStatement.from_text("DELETE FROM countries"),
            verdict=ValidationVerdict(outcome=VerdictOutcome.ACCEPT, sql="SELECT 1 LIMIT 1"),
        )
        with pytest.raises(UnvalidatedStatementError):
            executor.execute(forged)

    def test_nothing_runs_for_contract_violation(self, executor, fake_provider):
        with pytest.raises(UnvalidatedStatementError):
            executor.execute("DROP TABLE countries")
        assert fake_provider.requested == []


class TestExecution:
    def test_rows_and_metadata(self, executor, fake_provider, validated):
        _prime_cursor(fake_provider.cursor, [{"id": 1, "name": "France"}])
        result = executor.execute(validated)

        assert result.rows == [{"id": 1, "name": "France"}]
        assert result.row_count == 1
        assert result.truncated is False
        assert result.column_names == ["id", "name"]
        assert result.columns[1].type_name == "text"
        assert result.sql == validated.sql
        assert fake_provider.requested == ["default"]

    def test_runs_effective_sql_read_only(self, executor, fake_provider):
        _prime_cursor(fake_provider.cursor, [])
        statement = SQLValidator().approve(CompiledStatement.from_text("SELECT id, name FROM countries"))
        executor.execute(statement)

        executed = [call.args[0] for call in fake_provider.cursor.execute.call_args_list]
        assert executed[0] == "SET TRANSACTION READ ONLY"
        assert executed[2] == "SELECT id, name FROM countries LIMIT 100"

    def test_row_cap_sets_truncated(self, executor, fake_provider, validated):
        _prime_cursor(fake_provider.cursor, [{"id": i, "name": str(i)} for i in range(3)])
        result = executor.execute(validated)

        assert result.row_count == 2
        assert result.truncated is True
        fake_provider.cursor.fetchmany.assert_called_once_with(3)

    def test_parameters_passed_through(self, executor, fake_provider):
        _prime_cursor(fake_provider.cursor, [])
        statement = SQLValidator().approve(
            CompiledStatement.from_text("SELECT id, name FROM countries WHERE iso = %s LIMIT 5", ["FRA"])
        )
        executor.execute(statement)
        assert fake_provider.cursor.execute.call_args_list[2].args[1] == ("FRA",)


class TestFailures:
    def _fail_on_query(self, cursor, error):
        def execute(query, params=None):
            if isinstance(query, str) and query.startswith("SELECT"):
                raise error

        cursor.execute.side_effect = execute

    def test_timeout(self, executor, fake_provider, validated):
        self._fail_on_query(fake_provider.cursor, psycopg.errors.QueryCanceled("canceling statement"))
        with pytest.raises(QueryTimeoutError) as exc_info:
            executor.execute(validated)
        assert exc_info.value.retryable

    def test_connection_lost(self, executor, fake_provider, validated):
        self._fail_on_query(fake_provider.cursor, psycopg.OperationalError("server closed the connection"))
        with pytest.raises(DatabaseConnectionError):
            executor.execute(validated)

    def test_statement_error(self, executor, fake_provider, validated):
        self._fail_on_query(fake_provider.cursor, psycopg.errors.UndefinedTable("relation does not exist"))
        with pytest.raises(QueryExecutionError) as exc_info:
            executor.execute(validated)
        assert exc_info.value.details["sqlstate"] == "42P01"

    def test_cancelled_before_start(self, executor, fake_provider, validated):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(QueryCancelledError):
            executor.execute(validated, cancel_token=token)
        assert fake_provider.requested == []

    def test_cancelled_while_running(self, executor, fake_provider, validated):
        token = CancellationToken()

        def execute(query, params=None):
            if isinstance(query, str) and query.startswith("SELECT"):
                token.cancel()
                raise psycopg.errors.QueryCanceled("canceling statement due to user request")

        fake_provider.cursor.execute.side_effect = execute
        with pytest.raises(QueryCancelledError):
            executor.execute(validated, cancel_token=token)
        fake_provider.conn.cancel_safe.assert_called_once()

    def test_invalid_bounds(self, executor, validated):
        with pytest.raises(ValueError):
            executor.execute(validated, timeout=0)


class TestCancellationToken:
    def test_unregister_stops_callbacks(self):
        token = CancellationToken()
        calls = []
        unregister = token.register(lambda: calls.append("x"))
        unregister()
        token.cancel()
        assert token.cancelled
        assert calls == []


INDEXED_PLAN = [{"Plan": {
    "Node Type": "Limit", "Startup Cost": 0.28, "Total Cost": 8.3, "Plan Rows": 10,
    "Plans": [{
        "Node Type": "Index Scan", "Relation Name": "countries", "Schema": "public",
        "Index Name": "countries_pkey", "Startup Cost": 0.28, "Total Cost": 8.3, "Plan Rows": 10,
    }],
}}]


class TestExplain:
    def test_index_plan(self, executor, fake_provider, validated):
        fake_provider.cursor.fetchone.return_value = {"QUERY PLAN": INDEXED_PLAN}
        plan = executor.explain(validated)

        assert plan.uses_index is True
        assert plan.scan_type == "Index Scan"
        assert plan.index_names == ["countries_pkey"]
        assert plan.relations == ["public.countries"]
        assert plan.node_types == ["Limit", "Index Scan"]
        assert plan.estimated_rows == 10
        assert plan.estimated_cost == 8.3
        assert plan.sql == validated.sql

        executed = [call.args[0] for call in fake_provider.cursor.execute.call_args_list]
        assert executed[0] == "SET TRANSACTION READ ONLY"
        assert executed[2] == f"EXPLAIN (FORMAT JSON) {validated.sql}"

    def test_sequential_plan_from_text(self, executor, fake_provider, validated):
        document = [{"Plan": {"Node Type": "Seq Scan", "Relation Name": "countries", "Total Cost": 22.5, "Plan Rows": 1270}}]
        fake_provider.cursor.fetchone.return_value = (json.dumps(document),)
        plan = executor.explain(validated)

        assert plan.uses_index is False
        assert plan.scan_type == "Sequential Scan"
        assert plan.estimated_rows == 1270

    def test_parameters_passed_through(self, executor, fake_provider):
        fake_provider.cursor.fetchone.return_value = {"QUERY PLAN": INDEXED_PLAN}
        statement = SQLValidator().approve(
            CompiledStatement.from_text("SELECT id FROM countries WHERE iso = %s LIMIT 5", ["FRA"])
        )
        executor.explain(statement)
        assert fake_provider.cursor.execute.call_args_list[2].args[1] == ("FRA",)

    def test_unvalidated_not_explained(self, executor, fake_provider):
        with pytest.raises(UnvalidatedStatementError):
            executor.explain(CompiledStatement.from_text("SELECT 1 LIMIT 1"))
        assert fake_provider.requested == []

    def test_statement_error_mapped(self, executor, fake_provider, validated):
        def execute(query, params=None):
            if isinstance(query, str) and query.startswith("EXPLAIN"):
                raise psycopg.errors.UndefinedTable("relation does not exist")

        fake_provider.cursor.execute.side_effect = execute
        with pytest.raises(QueryExecutionError):
            executor.explain(validated)
