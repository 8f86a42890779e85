"""
Query Definition Models.

Structured, pre-SQL description of a query as produced by the visual
builder or a saved definition. Definitions are frozen: the compiler reads
them and never changes them.

Exports:
    ColumnSpec: Selected column with optional aggregate and alias
    JoinSpec: Join onto the accumulated FROM clause
    ConditionSpec: WHERE predicate with its connective
    OrderSpec: ORDER BY entry
    QueryDefinition: Root aggregate
"""

from typing import Any, Dict, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import (
    AggregateFunction,
    ConditionOperator,
    Connective,
    JoinType,
    NullsPosition,
    SortDirection,
)


class ColumnSpec(BaseModel):
    """
    One entry of the SELECT list.

    `source_column` may be `*` (only meaningful with COUNT or alone).
    `table_alias` qualifies the column with a joined table's alias or name.
    """

    model_config = ConfigDict(frozen=True)

    source_column: str = Field(..., min_length=1, description="Column in the source relation")
    aggregate: AggregateFunction = Field(default=AggregateFunction.NONE)
    alias: Optional[str] = Field(default=None, description="Output name (AS ...)")
    table_alias: Optional[str] = Field(default=None, description="Qualifying table or join alias")

    @property
    def output_name(self) -> str:
        """Name of the column in the result set."""
        if self.alias:
            return self.alias
        if self.aggregate.is_aggregate:
            # PostgreSQL names an unaliased aggregate after the function
            return self.aggregate.value.lower()
        return self.source_column

    @property
    def reference(self) -> str:
        """Dotted reference used to match GROUP BY entries."""
        if self.table_alias:
            return f"{self.table_alias}.{self.source_column}"
        return self.source_column


class JoinSpec(BaseModel):
    """
    Join clause. `left_expr`/`right_expr` are column references, optionally
    dotted (`alias.column`). CROSS joins carry no ON expression.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    join_type: JoinType = Field(default=JoinType.INNER)
    table: str = Field(..., min_length=1)
    schema_name: str = Field(default="public", alias="schema")
    alias: Optional[str] = Field(default=None)
    left_expr: Optional[str] = Field(default=None)
    right_expr: Optional[str] = Field(default=None)
    operator: str = Field(default="=")


class ConditionSpec(BaseModel):
    """
    WHERE predicate.

    Value shapes by operator:
        comparison/text:  scalar
        IS NULL:          ignored
        IN / NOT IN:      non-empty list
        BETWEEN:          [low, high]
        spatial:          WKT/EWKT string
        ST_DWithin:       [WKT/EWKT, distance]

    The first condition's connective is ignored.
    """

    model_config = ConfigDict(frozen=True)

    column: str = Field(..., min_length=1)
    operator: ConditionOperator = Field(default=ConditionOperator.EQ)
    value: Any = Field(default=None)
    connective: Connective = Field(default=Connective.AND)
    negate: bool = Field(default=False, description="Wrap the predicate in NOT (...)")
    value_is_column: bool = Field(default=False, description="Right-hand side is a column reference")
    srid: Optional[int] = Field(default=None, description="SRID for a plain WKT spatial value")

    @field_validator("value", mode="before")
    @classmethod
    def _freeze_sequences(cls, value):
        if isinstance(value, list):
            return tuple(value)
        return value


class OrderSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    column: str = Field(..., min_length=1)
    direction: SortDirection = Field(default=SortDirection.ASC)
    nulls: NullsPosition = Field(default=NullsPosition.DEFAULT)


class QueryDefinition(BaseModel):
    """
    Root aggregate describing a query before it becomes SQL.

    Persisted definitions are keyed by (schema, table, name) within a
    connection. `columns` accepts plain strings as shorthand for
    `{"source_column": ...}`; an empty column list selects `*`.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: Optional[str] = Field(default=None, description="Name for persistence")
    schema_name: str = Field(default="public", alias="schema", min_length=1)
    table: str = Field(..., min_length=1)
    columns: Tuple[ColumnSpec, ...] = Field(default=())
    joins: Tuple[JoinSpec, ...] = Field(default=())
    conditions: Tuple[ConditionSpec, ...] = Field(default=())
    group_by: Tuple[str, ...] = Field(default=())
    order_by: Tuple[OrderSpec, ...] = Field(default=())
    limit: Optional[int] = Field(default=None, ge=0)
    offset: int = Field(default=0, ge=0)
    distinct: bool = Field(default=False)

    @field_validator("columns", mode="before")
    @classmethod
    def _expand_column_shorthand(cls, value):
        if value is None:
            return ()
        return tuple(
            {"source_column": item} if isinstance(item, str) else item
            for item in value
        )

    @field_validator("order_by", mode="before")
    @classmethod
    def _expand_order_shorthand(cls, value):
        if value is None:
            return ()
        return tuple(
            {"column": item} if isinstance(item, str) else item
            for item in value
        )

    @field_validator("group_by", mode="before")
    @classmethod
    def _dedupe_group_by(cls, value):
        if value is None:
            return ()
        seen = []
        for item in value:
            if item not in seen:
                seen.append(item)
        return tuple(seen)

    @property
    def has_aggregates(self) -> bool:
        return any(c.aggregate.is_aggregate for c in self.columns)

    def to_storage(self) -> Dict[str, Any]:
        """JSON-safe dict for the saved_queries.definition column."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> "QueryDefinition":
        return cls.model_validate(data)
