"""
Ollama provider tests over httpx.MockTransport.
"""

import json

import httpx
import pytest

from config import NLProviderConfig
from core.models.nl import ColumnInfo, QueryRequest, SchemaContext, SchemaInfo, TableInfo
from exceptions import ProviderError
from infrastructure.interface_repository import ISQLGenerationProvider
from infrastructure.ollama_provider import OllamaProvider, build_prompt, clean_sql, score_candidate


@pytest.fixture
def schema():
    return SchemaContext(
        database="gis",
        schemas=[SchemaInfo(name="public", tables=[TableInfo(
            name="countries",
            columns=[
                ColumnInfo(name="id", type="integer", nullable=False, is_primary_key=True),
                ColumnInfo(name="geom", type="geometry"),
            ],
            geometry_column="geom",
            geometry_type="MULTIPOLYGON",
            srid=4326,
        )])],
    )


def _provider(handler):
    config = NLProviderConfig(endpoint="http://ollama.test:11434", model="llama3.2")
    return OllamaProvider(config=config, transport=httpx.MockTransport(handler))


class TestPrompt:
    def test_prompt_lists_schema_and_rules(self, schema):
        prompt = build_prompt("Largest countries?", schema, max_rows=50)
        assert "Schema: public" in prompt
        assert "    - id: integer NOT NULL PRIMARY KEY" in prompt
        assert "[GEOMETRY: geom (MULTIPOLYGON), SRID: 4326]" in prompt
        assert "7. Maximum rows: 50" in prompt
        assert prompt.endswith("QUESTION: Largest countries?\n\nSQL:\n")

    def test_no_max_rows_rule_without_max_rows(self, schema):
        assert "Maximum rows" not in build_prompt("q", schema)

    @pytest.mark.parametrize("raw,expected", [
        ("```sql\nSELECT 1\n```", "SELECT 1"),
        ("```\nSELECT 2\n```", "SELECT 2"),
        ("  SELECT 3  ", "SELECT 3"),
    ])
    def test_clean_sql(self, raw, expected):
        assert clean_sql(raw) == expected


class TestScoring:
    def test_full_select_scores_high(self):
        confidence, warnings = score_candidate("SELECT name FROM countries WHERE id = 1 LIMIT 5")
        assert confidence == pytest.approx(0.95)
        assert warnings == []

    def test_select_without_limit_warns(self):
        confidence, warnings = score_candidate("SELECT name FROM countries")
        assert confidence == pytest.approx(0.9)
        assert warnings == ["SELECT without LIMIT - may return many rows"]

    def test_destructive_text_warns(self):
        confidence, warnings = score_candidate("DROP TABLE countries")
        assert confidence == pytest.approx(0.5)
        assert "Query contains DROP statement - review carefully" in warnings

    def test_word_boundaries(self):
        _, warnings = score_candidate("SELECT updated_at FROM dropzones LIMIT 1")
        assert warnings == []


class TestGeneration:
    def test_generate_sql(self, schema):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"response": "```sql\nSELECT name FROM countries LIMIT 10\n```"})

        candidate = _provider(handler).generate_sql(QueryRequest(question="List countries"), schema)

        assert candidate.sql == "SELECT name FROM countries LIMIT 10"
        assert candidate.explanation == "Generated by llama3.2"
        assert seen["path"] == "/api/generate"
        assert seen["body"]["stream"] is False
        assert seen["body"]["model"] == "llama3.2"
        assert "List countries" in seen["body"]["prompt"]

    def test_empty_response_is_provider_error(self, schema):
        provider = _provider(lambda request: httpx.Response(200, json={"response": "  "}))
        with pytest.raises(ProviderError):
            provider.generate_sql(QueryRequest(question="q"), schema)

    def test_http_error_is_provider_error(self, schema):
        provider = _provider(lambda request: httpx.Response(500, text="model not found"))
        with pytest.raises(ProviderError) as exc_info:
            provider.generate_sql(QueryRequest(question="q"), schema)
        assert "model not found" in exc_info.value.message

    def test_suggestions_parsed_from_bullets(self, schema):
        text = "Here you go:\n- Add an index on iso\n* Use ST_Subdivide\nnot a bullet"
        provider = _provider(lambda request: httpx.Response(200, json={"response": text}))
        assert provider.suggest_optimizations("SELECT 1", schema) == ["Add an index on iso", "Use ST_Subdivide"]

    def test_explain(self, schema):
        provider = _provider(lambda request: httpx.Response(200, json={"response": " Counts rows. "}))
        assert provider.explain_query("SELECT count(*) FROM t", schema) == "Counts rows."


class TestAvailability:
    def test_available(self):
        assert _provider(lambda request: httpx.Response(200, json={"models": []})).is_available() is True

    def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert _provider(handler).is_available() is False

    def test_implements_generation_interface(self):
        provider = _provider(lambda request: httpx.Response(200, json={"models": []}))
        assert isinstance(provider, ISQLGenerationProvider)
        assert provider.name == "ollama"
