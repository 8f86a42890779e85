"""
Core Data Models Package.

Contains pure data structures without business logic.

Exports:
    Enums: AggregateFunction, JoinType, ConditionOperator, Connective,
           SortDirection, NullsPosition, VerdictOutcome, ValidationReason, GeometryType
    Query Definition: ColumnSpec, JoinSpec, ConditionSpec, OrderSpec, QueryDefinition
    Statements: OutputColumn, CompiledStatement, ValidationVerdict, ValidatedStatement
    Results: ColumnMetadata, QueryResult, ExecutionPlan
    Geometry: GeometryInfo, InferenceSource, CatalogColumn
    SQL Views: ViewParameter, ViewIdentity, ViewMetadata, PublishedView, PublishResult
    Persistence: SavedQuery
"""

from .enums import (
    AggregateFunction,
    JoinType,
    ConditionOperator,
    Connective,
    SortDirection,
    NullsPosition,
    VerdictOutcome,
    ValidationReason,
    GeometryType,
)

from .query_definition import (
    ColumnSpec,
    JoinSpec,
    ConditionSpec,
    OrderSpec,
    QueryDefinition,
)

from .statement import (
    OutputColumn,
    CompiledStatement,
    ValidationVerdict,
    ValidatedStatement,
)

from .results import ColumnMetadata, ExecutionPlan, QueryResult
from .geometry import CatalogColumn, GeometryInfo, InferenceSource

from .sql_view import (
    ViewParameter,
    ViewIdentity,
    ViewMetadata,
    PublishedView,
    PublishResult,
)

from .saved_query import SavedQuery

__all__ = [
    'AggregateFunction', 'JoinType', 'ConditionOperator', 'Connective',
    'SortDirection', 'NullsPosition', 'VerdictOutcome', 'ValidationReason', 'GeometryType',
    'ColumnSpec', 'JoinSpec', 'ConditionSpec', 'OrderSpec', 'QueryDefinition',
    'OutputColumn', 'CompiledStatement', 'ValidationVerdict', 'ValidatedStatement',
    'ColumnMetadata', 'QueryResult', 'ExecutionPlan',
    'GeometryInfo', 'InferenceSource', 'CatalogColumn',
    'ViewParameter', 'ViewIdentity', 'ViewMetadata', 'PublishedView', 'PublishResult',
    'SavedQuery',
]
