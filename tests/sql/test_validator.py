"""
Safety validator tests.

Covers the read-only policy, injection detection, LIMIT rewriting and the
schema allow-list. Every SQL text gets its own fresh verdict.
"""

import pytest

from core.models import CompiledStatement, ValidationReason, VerdictOutcome
from core.sql.validator import SQLValidator
from exceptions import ContractViolationError, SQLRejectedError


@pytest.fixture
def validator():
    return SQLValidator(default_limit=100, max_limit=10000)


class TestReadOnly:
    def test_drop_rejected(self, validator):
        verdict = validator.validate("DROP TABLE users")
        assert verdict.outcome is VerdictOutcome.REJECT
        assert verdict.reasons == (ValidationReason.WRITE_OPERATION_BLOCKED,)

    @pytest.mark.parametrize("sql_text", [
        "INSERT INTO t (a) VALUES (1)",
        "UPDATE t SET a = 1",
        "DELETE FROM t",
        "TRUNCATE t",
        "SELECT * INTO backup FROM t",
        "SELECT * FROM t LIMIT 1 FOR UPDATE",
        "WITH gone AS (DELETE FROM t RETURNING *) SELECT * FROM gone",
        "COPY t TO '/tmp/out.csv'",
    ])
    def test_writes_rejected(self, validator, sql_text):
        verdict = validator.validate(sql_text)
        assert verdict.outcome is VerdictOutcome.REJECT
        assert ValidationReason.WRITE_OPERATION_BLOCKED in verdict.reasons

    def test_keywords_inside_literals_ignored(self, validator):
        verdict = validator.validate("SELECT * FROM audit WHERE note = 'DROP TABLE; DELETE' LIMIT 5")
        assert verdict.outcome is VerdictOutcome.ACCEPT

    def test_empty_statement(self, validator):
        assert validator.validate("   ").reasons == (ValidationReason.EMPTY_STATEMENT,)
        assert validator.validate(";").reasons == (ValidationReason.EMPTY_STATEMENT,)

    def test_non_string_is_contract_violation(self, validator):
        with pytest.raises(ContractViolationError):
            validator.validate(None)

    @pytest.mark.parametrize("alias", [
        "cluster", "do", "call", "refresh", "reset", "prepare", "execute",
        "discard", "listen", "notify", "set", "copy",
    ])
    def test_verbs_as_aliases_allowed(self, validator, alias):
        verdict = validator.validate(f"SELECT id, name AS {alias} FROM public.pts LIMIT 5")
        assert verdict.outcome is VerdictOutcome.ACCEPT

    def test_window_function_aliased_cluster(self, validator):
        verdict = validator.validate(
            "SELECT id, ST_ClusterDBSCAN(geom, 10, 2) OVER () AS cluster FROM public.pts LIMIT 50"
        )
        assert verdict.outcome is VerdictOutcome.ACCEPT

    def test_verb_after_semicolon_rejected(self, validator):
        verdict = validator.validate("SELECT * FROM t; DROP TABLE t")
        assert ValidationReason.WRITE_OPERATION_BLOCKED in verdict.reasons

    def test_verb_opening_cte_body_rejected(self, validator):
        verdict = validator.validate("WITH x AS (SET search_path TO secret) SELECT * FROM t LIMIT 1")
        assert ValidationReason.WRITE_OPERATION_BLOCKED in verdict.reasons


class TestInjection:
    def test_stacked_statement(self, validator):
        verdict = validator.validate("SELECT 1; DELETE FROM users")
        assert verdict.outcome is VerdictOutcome.REJECT
        assert verdict.reasons[0] is ValidationReason.INJECTION_PATTERN_DETECTED
        assert ValidationReason.WRITE_OPERATION_BLOCKED in verdict.reasons

    def test_semicolon_inside_dollar_quote(self, validator):
        verdict = validator.validate("SELECT $note$a; DELETE FROM t$note$ AS note LIMIT 1")
        assert verdict.outcome is VerdictOutcome.ACCEPT

    def test_single_trailing_semicolon_allowed(self, validator):
        assert validator.validate("SELECT * FROM t LIMIT 5;").outcome is VerdictOutcome.ACCEPT

    def test_comment_after_statement_start(self, validator):
        verdict = validator.validate("SELECT * FROM users WHERE id = 1 -- AND tenant = 2")
        assert verdict.reasons == (ValidationReason.INJECTION_PATTERN_DETECTED,)

    def test_leading_comment_allowed(self, validator):
        assert validator.validate("-- population report\nSELECT * FROM t LIMIT 5").outcome is VerdictOutcome.ACCEPT

    @pytest.mark.parametrize("sql_text", [
        "SELECT * FROM users WHERE name = 'x' OR 1=1",
        "SELECT * FROM users WHERE name = 'x' OR 'a'='a'",
        "SELECT * FROM users WHERE name = 'x' OR TRUE",
    ])
    def test_tautology(self, validator, sql_text):
        assert ValidationReason.INJECTION_PATTERN_DETECTED in validator.validate(sql_text).reasons

    def test_union_null_probe(self, validator):
        verdict = validator.validate("SELECT id, name FROM parcels UNION SELECT NULL, NULL")
        assert ValidationReason.INJECTION_PATTERN_DETECTED in verdict.reasons

    def test_union_system_catalog(self, validator):
        verdict = validator.validate("SELECT name FROM parcels UNION SELECT usename FROM pg_shadow")
        assert ValidationReason.INJECTION_PATTERN_DETECTED in verdict.reasons

    def test_plain_union_allowed(self, validator):
        verdict = validator.validate("SELECT name FROM parcels UNION SELECT name FROM owners LIMIT 10")
        assert verdict.outcome is VerdictOutcome.ACCEPT

    def test_dangerous_function(self, validator):
        verdict = validator.validate("SELECT pg_sleep(10)")
        assert verdict.reasons == (ValidationReason.DANGEROUS_FUNCTION_BLOCKED,)

    def test_dangerous_functions_can_be_allowed(self):
        permissive = SQLValidator(block_dangerous_functions=False)
        assert permissive.validate("SELECT pg_sleep(1) LIMIT 1").outcome is VerdictOutcome.ACCEPT


class TestLimit:
    def test_missing_limit_appended(self, validator):
        verdict = validator.validate("SELECT * FROM countries;")
        assert verdict.outcome is VerdictOutcome.REWRITE
        assert verdict.reasons == (ValidationReason.LIMIT_APPENDED,)
        assert verdict.rewritten_sql == "SELECT * FROM countries LIMIT 100"

    def test_rewrite_then_revalidate_accepts(self, validator):
        rewritten = validator.validate("SELECT * FROM countries").effective_sql
        assert validator.validate(rewritten).outcome is VerdictOutcome.ACCEPT

    def test_limit_within_max_accepted(self, validator):
        verdict = validator.validate("SELECT * FROM countries LIMIT 500")
        assert verdict.outcome is VerdictOutcome.ACCEPT
        assert verdict.rewritten_sql is None

    def test_limit_above_max_capped(self, validator):
        verdict = validator.validate("SELECT * FROM countries LIMIT 50000")
        assert verdict.reasons == (ValidationReason.LIMIT_CAPPED,)
        assert verdict.rewritten_sql == "SELECT * FROM countries LIMIT 10000"

    def test_limit_all_capped(self, validator):
        verdict = validator.validate("SELECT * FROM countries LIMIT ALL")
        assert verdict.rewritten_sql == "SELECT * FROM countries LIMIT 10000"

    def test_subquery_limit_does_not_count(self, validator):
        verdict = validator.validate("SELECT * FROM (SELECT * FROM countries LIMIT 5) AS c")
        assert verdict.outcome is VerdictOutcome.REWRITE
        assert verdict.rewritten_sql.endswith(") AS c LIMIT 100")

    def test_placeholder_limit_left_alone(self, validator):
        verdict = validator.validate("SELECT * FROM countries LIMIT %s", [20])
        assert verdict.outcome is VerdictOutcome.ACCEPT

    def test_invalid_bounds(self):
        with pytest.raises(ContractViolationError):
            SQLValidator(default_limit=500, max_limit=100)

    def test_trailing_semicolon_dropped(self):
        verdict = SQLValidator(default_limit=10000).validate("SELECT id, geom FROM public.roads LIMIT 50;")
        assert verdict.outcome is VerdictOutcome.ACCEPT
        assert verdict.effective_sql == "SELECT id, geom FROM public.roads LIMIT 50"

    def test_capped_text_drops_semicolon(self, validator):
        verdict = validator.validate("SELECT * FROM countries LIMIT 50000;")
        assert verdict.rewritten_sql == "SELECT * FROM countries LIMIT 10000"

    @pytest.mark.parametrize("sql_text", [
        "SELECT * FROM countries LIMIT (1000000)",
        "SELECT * FROM countries LIMIT 10 + 999999",
        "SELECT * FROM countries LIMIT %s * 1000",
    ])
    def test_limit_expression_wrapped(self, validator, sql_text):
        verdict = validator.validate(sql_text)
        assert verdict.reasons == (ValidationReason.LIMIT_CAPPED,)
        assert verdict.rewritten_sql == f"SELECT * FROM ({sql_text}) AS _limited LIMIT 10000"
        assert validator.validate(verdict.rewritten_sql).outcome is VerdictOutcome.ACCEPT

    def test_fetch_first_above_max_capped(self, validator):
        verdict = validator.validate("SELECT * FROM countries FETCH FIRST 50000 ROWS ONLY")
        assert verdict.reasons == (ValidationReason.LIMIT_CAPPED,)
        assert verdict.rewritten_sql == "SELECT * FROM countries FETCH FIRST 10000 ROWS ONLY"

    def test_fetch_first_within_max_accepted(self, validator):
        verdict = validator.validate("SELECT * FROM countries FETCH FIRST 5 ROWS ONLY")
        assert verdict.outcome is VerdictOutcome.ACCEPT
        assert validator.validate("SELECT * FROM countries FETCH FIRST ROW ONLY").outcome is VerdictOutcome.ACCEPT


class TestAllowList:
    def test_schema_outside_allow_list(self, validator):
        verdict = validator.validate(
            "SELECT * FROM public.parcels JOIN private.owners ON parcels.id = owners.parcel_id LIMIT 5",
            allowed_schemas=["public"],
        )
        assert verdict.reasons == (ValidationReason.SCHEMA_NOT_ALLOWED,)

    def test_unqualified_relation_uses_default_schema(self, validator):
        verdict = validator.validate("SELECT * FROM parcels LIMIT 5", allowed_schemas=["public"])
        assert verdict.outcome is VerdictOutcome.ACCEPT

    def test_cte_name_is_not_a_relation(self, validator):
        verdict = validator.validate(
            "WITH big AS (SELECT * FROM public.countries) SELECT * FROM big LIMIT 10",
            allowed_schemas=["public"],
        )
        assert verdict.outcome is VerdictOutcome.ACCEPT

    def test_table_allow_list(self, validator):
        verdict = validator.validate(
            "SELECT * FROM public.parcels LIMIT 5", allowed_tables=["public.countries"],
        )
        assert verdict.reasons == (ValidationReason.SCHEMA_NOT_ALLOWED,)

    def test_extract_relations(self, validator):
        relations = validator.extract_relations(
            "SELECT * FROM geo.roads AS r, geo.rivers v LEFT JOIN towns ON towns.id = v.town_id"
        )
        assert relations == [("geo", "roads"), ("geo", "rivers"), ("public", "towns")]

    @pytest.mark.parametrize("sql_text", [
        "SELECT * FROM (SELECT 1 AS a) s, secret.passwords LIMIT 5",
        "SELECT * FROM generate_series(1, 2) g, secret.passwords LIMIT 5",
        "SELECT * FROM public.roads UNION TABLE secret.passwords",
        "SELECT * FROM public.roads r JOIN public.towns t ON t.id = r.town_id, secret.passwords p LIMIT 5",
        "SELECT * FROM public.roads r, LATERAL (SELECT 1) x, secret.passwords LIMIT 5",
    ])
    def test_comma_items_after_subquery_function_or_join(self, validator, sql_text):
        verdict = validator.validate(sql_text, allowed_schemas=["public"])
        assert verdict.outcome is VerdictOutcome.REJECT
        assert verdict.reasons == (ValidationReason.SCHEMA_NOT_ALLOWED,)

    def test_extract_relations_across_comma_list(self, validator):
        relations = validator.extract_relations(
            "SELECT * FROM (SELECT * FROM geo.towns) t, unnest(ARRAY[1, 2]) u, geo.roads r WHERE r.id = u"
        )
        assert relations == [("geo", "roads"), ("geo", "towns")]


class TestApprove:
    def test_approve_wraps_rewrite(self, validator):
        validated = validator.approve(CompiledStatement.from_text("SELECT * FROM countries"))
        assert validated.is_consistent()
        assert validated.sql == "SELECT * FROM countries LIMIT 100"

    def test_approve_raises_on_reject(self, validator):
        with pytest.raises(SQLRejectedError) as exc_info:
            validator.approve(CompiledStatement.from_text("DROP TABLE users"))
        assert exc_info.value.verdict.outcome is VerdictOutcome.REJECT

    def test_compiled_output_passes(self, validator):
        text = 'SELECT "name", SUM("population") AS "total_pop" FROM "public"."countries" GROUP BY "name" LIMIT 100'
        verdict = validator.validate(text, allowed_schemas=["public"])
        assert verdict.outcome is VerdictOutcome.ACCEPT
