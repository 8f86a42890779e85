"""
Natural-language query service tests with a scripted provider.
"""

from typing import List

import pytest

from core.models import ValidationReason, VerdictOutcome
from core.models.nl import QueryRequest, SchemaContext, SchemaInfo, SQLCandidate, TableInfo
from core.sql import SQLValidator
from exceptions import ProviderError
from infrastructure.interface_repository import ISQLGenerationProvider
from services.nl_query import NaturalLanguageQueryService


class ScriptedProvider(ISQLGenerationProvider):
    """Returns a fixed candidate and records what it was shown."""

    def __init__(self, sql_text: str, confidence: float = 0.9):
        self.candidate = SQLCandidate(sql=sql_text, confidence=confidence)
        self.seen: List[SchemaContext] = []

    @property
    def name(self) -> str:
        return "scripted"

    def generate_sql(self, request, schema):
        self.seen.append(schema)
        return self.candidate

    def explain_query(self, sql_text, schema):
        return f"explains {sql_text}"

    def suggest_optimizations(self, sql_text, schema):
        return ["add an index"]


class FailingProvider(ScriptedProvider):
    def generate_sql(self, request, schema):
        raise ProviderError("Ollama request failed: connection refused")


class StaticCatalog:
    def __init__(self, context):
        self.context = context
        self.requested = []

    def build_schema_context(self, schemas=None):
        self.requested.append(schemas)
        return self.context


@pytest.fixture
def context():
    return SchemaContext(database="gis", schemas=[SchemaInfo(name="public", tables=[TableInfo(name="countries")])])


def _service(provider, context=None, min_confidence=0.0):
    catalog = StaticCatalog(context) if context is not None else None
    return NaturalLanguageQueryService(provider, SQLValidator(), catalog=catalog, min_confidence=min_confidence)


class TestAsk:
    def test_candidate_validated_and_released(self, context):
        service = _service(ScriptedProvider("SELECT name FROM countries"), context)
        result = service.ask(QueryRequest(question="country names"))

        assert result.accepted
        assert result.verdict.outcome is VerdictOutcome.REWRITE
        assert result.validated.sql == "SELECT name FROM countries LIMIT 100"

    def test_destructive_candidate_rejected(self, context):
        service = _service(ScriptedProvider("DROP TABLE countries"), context)
        result = service.ask(QueryRequest(question="remove countries"))

        assert not result.accepted
        assert result.verdict.reasons == (ValidationReason.WRITE_OPERATION_BLOCKED,)
        assert result.candidate.sql == "DROP TABLE countries"

    def test_schema_outside_context_rejected(self, context):
        service = _service(ScriptedProvider("SELECT * FROM private.salaries LIMIT 5"), context)
        result = service.ask(QueryRequest(question="salaries"))
        assert result.verdict.reasons == (ValidationReason.SCHEMA_NOT_ALLOWED,)

    def test_requested_schemas_narrow_context(self, context):
        catalog = StaticCatalog(context)
        service = NaturalLanguageQueryService(ScriptedProvider("SELECT 1 LIMIT 1"), SQLValidator(), catalog=catalog)
        service.ask(QueryRequest(question="q", schemas=["public"]))
        assert catalog.requested == [["public"]]

    def test_low_confidence_not_released(self, context):
        service = _service(ScriptedProvider("SELECT name FROM countries LIMIT 5", confidence=0.4), context, 0.6)
        result = service.ask(QueryRequest(question="names"))

        assert not result.accepted
        assert result.verdict.outcome is VerdictOutcome.ACCEPT
        assert "below the minimum" in result.candidate.warnings[-1]

    def test_explicit_schema_skips_catalog(self, context):
        provider = ScriptedProvider("SELECT 1 LIMIT 1")
        service = _service(provider)
        service.ask(QueryRequest(question="q"), schema=context)
        assert provider.seen == [context]

    def test_provider_error_propagates(self, context):
        service = _service(FailingProvider("unused"), context)
        with pytest.raises(ProviderError):
            service.ask(QueryRequest(question="q"))


class TestAssist:
    def test_explain_and_suggest_delegate(self):
        service = _service(ScriptedProvider("SELECT 1"))
        assert service.explain("SELECT 1") == "explains SELECT 1"
        assert service.suggest_optimizations("SELECT 1") == ["add an index"]

    def test_default_availability(self):
        assert ScriptedProvider("SELECT 1").is_available() is True
