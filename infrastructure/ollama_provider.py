"""
Ollama SQL Generation Provider.

Natural-language to SQL through a local Ollama server. The prompt carries
the schema context (tables, columns, primary keys, geometry columns) and
a fixed rule list; the model's text is stripped of markdown fences and
scored with a simple heuristic. Nothing returned here is trusted: the
candidate always goes through the safety validator.

    POST /api/generate   {model, prompt, stream: false, options: {...}}
    GET  /api/tags       availability probe

Exports:
    OllamaProvider: ISQLGenerationProvider over httpx
    build_prompt: Prompt text for a question and schema context
    clean_sql: Strip markdown code fences from model output
    score_candidate: Heuristic confidence and warnings for generated SQL
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import httpx

from config import NLProviderConfig, get_config
from core.models.nl import QueryRequest, SchemaContext, SQLCandidate
from exceptions import ProviderError
from infrastructure.interface_repository import ISQLGenerationProvider

logger = logging.getLogger(__name__)


_STOP_SEQUENCES = ["```", "\n\n\n"]
_EXPLAIN_TEMPERATURE = 0.3
_EXPLAIN_MAX_TOKENS = 500
_AVAILABILITY_TIMEOUT = 5.0

_RULES = [
    "Output ONLY the SQL query, no explanations or markdown",
    "Use PostgreSQL syntax",
    "Use PostGIS functions (ST_*) for spatial operations",
    "Always include a LIMIT clause (default 100) unless counting",
    "Use table aliases for readability",
    "Never use DELETE, DROP, TRUNCATE, or UPDATE without WHERE",
]


def build_prompt(question: str, schema: SchemaContext, max_rows: Optional[int] = None) -> str:
    lines = [
        "You are a PostgreSQL/PostGIS SQL expert. Generate a single SQL query based on the user's question.",
        "",
        "DATABASE SCHEMA:",
        f"Database: {schema.database}",
    ]
    for schema_info in schema.schemas:
        lines.append("")
        lines.append(f"Schema: {schema_info.name}")
        for table in schema_info.tables:
            lines.append(f"  Table: {table.name}")
            for column in table.columns:
                entry = f"    - {column.name}: {column.type}"
                if not column.nullable:
                    entry += " NOT NULL"
                if column.is_primary_key:
                    entry += " PRIMARY KEY"
                lines.append(entry)
            if table.has_geometry:
                lines.append(f"    [GEOMETRY: {table.geometry_column} ({table.geometry_type}), SRID: {table.srid}]")

    lines.append("")
    lines.append("RULES:")
    rules = list(_RULES)
    if max_rows:
        rules.append(f"Maximum rows: {max_rows}")
    for number, rule in enumerate(rules, start=1):
        lines.append(f"{number}. {rule}")

    lines.append("")
    lines.append(f"QUESTION: {question}")
    lines.append("")
    lines.append("SQL:")
    return "\n".join(lines) + "\n"


def clean_sql(text: str) -> str:
    """Remove a surrounding ```sql ... ``` fence, if any."""
    cleaned = text.strip()
    for fence in ("```sql", "```"):
        if cleaned.startswith(fence):
            cleaned = cleaned[len(fence):]
            end = cleaned.find("```")
            if end >= 0:
                cleaned = cleaned[:end]
            break
    return cleaned.strip()


def _has_word(upper_sql: str, word: str) -> bool:
    return re.search(rf"\b{word}\b", upper_sql) is not None


def score_candidate(sql_text: str) -> Tuple[float, List[str]]:
    """
    Heuristic confidence in [0, 0.95] plus review warnings.

    The score only says the text looks like a sensible SELECT; safety is
    decided by the validator.
    """
    upper = sql_text.upper()
    confidence = 0.5
    if upper.lstrip().startswith("SELECT"):
        confidence = 0.8
    if _has_word(upper, "FROM"):
        confidence += 0.1
    if _has_word(upper, "WHERE") or _has_word(upper, "LIMIT"):
        confidence += 0.05
    confidence = min(confidence, 0.95)

    warnings = []
    has_where = _has_word(upper, "WHERE")
    if _has_word(upper, "DROP"):
        warnings.append("Query contains DROP statement - review carefully")
    if _has_word(upper, "DELETE") and not has_where:
        warnings.append("DELETE without WHERE clause detected")
    if _has_word(upper, "TRUNCATE"):
        warnings.append("Query contains TRUNCATE statement - review carefully")
    if _has_word(upper, "UPDATE") and not has_where:
        warnings.append("UPDATE without WHERE clause detected")
    if _has_word(upper, "SELECT") and not _has_word(upper, "LIMIT"):
        warnings.append("SELECT without LIMIT - may return many rows")
    return confidence, warnings


class OllamaProvider(ISQLGenerationProvider):
    """
    Args:
        config: Ollama settings (defaults to get_config().nl_provider)
        transport: Optional httpx transport; tests pass httpx.MockTransport
    """

    def __init__(self, config: Optional[NLProviderConfig] = None,
                 transport: Optional[httpx.BaseTransport] = None):
        self._config = config or get_config().nl_provider
        self._transport = transport

    @property
    def name(self) -> str:
        return "ollama"

    def _client(self, timeout: Optional[float] = None) -> httpx.Client:
        return httpx.Client(
            base_url=self._config.endpoint.rstrip("/"),
            timeout=timeout or self._config.timeout_seconds,
            transport=self._transport,
        )

    def _generate(self, prompt: str, temperature: float, max_tokens: int,
                  stop: Optional[List[str]] = None) -> str:
        options: Dict[str, Any] = {"temperature": temperature, "num_predict": max_tokens}
        if stop:
            options["stop"] = stop
        body = {
            "model": self._config.model,
            "prompt": prompt,
            "stream": False,
            "options": options,
        }
        try:
            with self._client() as client:
                response = client.post("/api/generate", json=body)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"❌ Ollama returned HTTP {e.response.status_code}: {e.response.text}")
            raise ProviderError(
                f"Ollama returned HTTP {e.response.status_code}: {e.response.text}",
                details={"model": self._config.model},
            ) from e
        except httpx.RequestError as e:
            logger.error(f"❌ Ollama request failed: {e}")
            raise ProviderError(f"Ollama request failed: {e}", details={"model": self._config.model}) from e
        except ValueError as e:
            raise ProviderError(f"Ollama returned invalid JSON: {e}") from e

        return payload.get("response", "")

    def generate_sql(self, request: QueryRequest, schema: SchemaContext) -> SQLCandidate:
        prompt = build_prompt(request.question, schema, request.max_rows)
        logger.debug(f"Generating SQL with {self._config.model} ({len(prompt)} prompt chars)")
        raw = self._generate(prompt, self._config.temperature, self._config.max_tokens, _STOP_SEQUENCES)

        sql_text = clean_sql(raw)
        if not sql_text:
            raise ProviderError("Ollama returned an empty response", details={"model": self._config.model})

        confidence, warnings = score_candidate(sql_text)
        return SQLCandidate(
            sql=sql_text,
            confidence=confidence,
            explanation=f"Generated by {self._config.model}",
            warnings=warnings,
        )

    def explain_query(self, sql_text: str, schema: SchemaContext) -> str:
        prompt = (
            "Explain what this SQL query does in plain English. Be concise.\n\n"
            f"SQL Query:\n{sql_text}\n\nExplanation:"
        )
        return self._generate(prompt, _EXPLAIN_TEMPERATURE, _EXPLAIN_MAX_TOKENS).strip()

    def suggest_optimizations(self, sql_text: str, schema: SchemaContext) -> List[str]:
        prompt = (
            "Analyze this PostgreSQL/PostGIS query and suggest optimizations. "
            "List each suggestion on a new line starting with \"- \". Be concise.\n\n"
            f"SQL Query:\n{sql_text}\n\nSuggestions:"
        )
        text = self._generate(prompt, _EXPLAIN_TEMPERATURE, _EXPLAIN_MAX_TOKENS)
        suggestions = []
        for line in text.splitlines():
            line = line.strip()
            if line.startswith("- ") or line.startswith("* "):
                suggestions.append(line[2:].strip())
        return suggestions

    def is_available(self) -> bool:
        try:
            with self._client(timeout=_AVAILABILITY_TIMEOUT) as client:
                response = client.get("/api/tags")
        except httpx.RequestError as e:
            logger.debug(f"Ollama not reachable: {e}")
            return False
        return response.status_code == 200


__all__ = [
    'OllamaProvider',
    'build_prompt',
    'clean_sql',
    'score_candidate',
]
