"""
Compiled Statement and Validation Verdict Models.

Exports:
    OutputColumn: Select-list entry metadata attached by the compiler
    CompiledStatement: SQL text plus ordered bound parameters
    ValidationVerdict: Accept/reject/rewrite decision with reason codes
    ValidatedStatement: Statement paired with the verdict that allows it
"""

from typing import Any, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field

from .enums import AggregateFunction, ValidationReason, VerdictOutcome


class OutputColumn(BaseModel):
    """
    Where a result column comes from. Empty source for `*` and for SQL text
    that did not come from the compiler.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    source_column: Optional[str] = None
    schema_name: Optional[str] = None
    table_name: Optional[str] = None
    aggregate: AggregateFunction = AggregateFunction.NONE


class CompiledStatement(BaseModel):
    """
    SQL text plus bound parameters in placeholder order.

    Only identifiers are interpolated into `sql`; user values travel in
    `parameters`. Statements built from free text have no output_columns.
    """

    model_config = ConfigDict(frozen=True)

    sql: str
    parameters: Tuple[Any, ...] = Field(default=())
    output_columns: Tuple[OutputColumn, ...] = Field(default=())
    relations: Tuple[Tuple[str, str], ...] = Field(
        default=(), description="(schema, table) of FROM and JOIN relations in order"
    )

    @classmethod
    def from_text(cls, sql_text: str, parameters=None) -> "CompiledStatement":
        """Wrap hand-written or NL-generated SQL."""
        return cls(sql=sql_text, parameters=tuple(parameters or ()))


class ValidationVerdict(BaseModel):
    """
    Result of one validator call. Produced fresh for every SQL text.
    """

    model_config = ConfigDict(frozen=True)

    outcome: VerdictOutcome
    reasons: Tuple[ValidationReason, ...] = Field(default=())
    messages: Tuple[str, ...] = Field(default=())
    sql: str
    rewritten_sql: Optional[str] = None

    @property
    def is_allowed(self) -> bool:
        return self.outcome in (VerdictOutcome.ACCEPT, VerdictOutcome.REWRITE)

    @property
    def effective_sql(self) -> str:
        """Text that may run: the rewrite when there is one."""
        return self.rewritten_sql if self.rewritten_sql is not None else self.sql

    @property
    def rejection_reasons(self) -> Tuple[ValidationReason, ...]:
        return tuple(r for r in self.reasons if r.is_rejection)


class ValidatedStatement(BaseModel):
    """
    A statement that passed the safety validator.

    Only the validator builds these; the executor and publisher accept
    nothing else.
    """

    model_config = ConfigDict(frozen=True)

    statement: CompiledStatement
    verdict: ValidationVerdict

    @property
    def sql(self) -> str:
        return self.verdict.effective_sql

    @property
    def parameters(self) -> Tuple[Any, ...]:
        return self.statement.parameters

    def is_consistent(self) -> bool:
        """Verdict allows execution and belongs to this statement's text."""
        return self.verdict.is_allowed and self.verdict.sql == self.statement.sql
