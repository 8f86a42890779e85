"""
Natural-Language Query Service.

Turns a question into a validated statement through an external SQL
generation provider. The provider's output is treated exactly like
hand-written SQL: it goes through the safety validator and is never
executed unvalidated. The schema allow-list defaults to the schemas the
provider was shown, so a model cannot wander into other schemas.

Exports:
    NaturalLanguageQueryService: Question -> candidate -> verdict
"""

from typing import List, Optional

from core.models import CompiledStatement
from core.models.nl import NLQueryResult, QueryRequest, SchemaContext
from core.sql import SQLValidator
from exceptions import SQLRejectedError
from infrastructure.interface_repository import ISQLGenerationProvider
from util_logger import LoggerFactory, ComponentType, log_exceptions


class NaturalLanguageQueryService:
    """
    Args:
        provider: SQL generation backend
        validator: Safety validator applied to every candidate
        catalog: SchemaCatalog used when no SchemaContext is supplied
        min_confidence: Candidates below this are not released for execution
    """

    def __init__(self, provider: ISQLGenerationProvider, validator: SQLValidator,
                 catalog=None, min_confidence: float = 0.0):
        self.provider = provider
        self.validator = validator
        self.catalog = catalog
        self.min_confidence = min_confidence
        self.logger = LoggerFactory.create_logger(ComponentType.SERVICE, "NaturalLanguageQueryService")

    def schema_context(self, request: QueryRequest) -> SchemaContext:
        if self.catalog is None:
            return SchemaContext()
        return self.catalog.build_schema_context(request.schemas or None)

    @log_exceptions(ComponentType.SERVICE, "NaturalLanguageQueryService")
    def ask(self, request: QueryRequest, schema: Optional[SchemaContext] = None) -> NLQueryResult:
        """
        Generate SQL for a question and validate it.

        The result always carries the verdict; `validated` is set only when
        the verdict allows execution and the candidate meets min_confidence.
        """
        context = schema if schema is not None else self.schema_context(request)
        candidate = self.provider.generate_sql(request, context)
        self.logger.info(
            f"{self.provider.name} produced candidate (confidence={candidate.confidence:.2f})"
        )

        allowed = request.schemas or context.schema_names or None
        statement = CompiledStatement.from_text(candidate.sql)
        try:
            validated = self.validator.approve(statement, allowed_schemas=allowed)
            verdict = validated.verdict
        except SQLRejectedError as e:
            self.logger.warning(f"Candidate rejected: {', '.join(r.value for r in e.verdict.reasons)}")
            return NLQueryResult(candidate=candidate, verdict=e.verdict)

        if candidate.confidence < self.min_confidence:
            warning = (
                f"Confidence {candidate.confidence:.2f} is below the minimum "
                f"{self.min_confidence:.2f}; not released for execution"
            )
            self.logger.warning(warning)
            candidate = candidate.model_copy(update={"warnings": candidate.warnings + [warning]})
            return NLQueryResult(candidate=candidate, verdict=verdict)

        return NLQueryResult(candidate=candidate, verdict=verdict, validated=validated)

    def explain(self, sql_text: str, schema: Optional[SchemaContext] = None) -> str:
        return self.provider.explain_query(sql_text, schema or SchemaContext())

    def suggest_optimizations(self, sql_text: str, schema: Optional[SchemaContext] = None) -> List[str]:
        return self.provider.suggest_optimizations(sql_text, schema or SchemaContext())


__all__ = [
    'NaturalLanguageQueryService',
]
