"""
Natural-Language Query Models.

Types exchanged with an external NL-to-SQL provider.

Exports:
    QueryRequest, ColumnInfo, TableInfo, SchemaInfo, SchemaContext,
    SQLCandidate, NLQueryResult
"""

from typing import List, Optional
from pydantic import BaseModel, Field

from .statement import ValidatedStatement, ValidationVerdict


class QueryRequest(BaseModel):
    question: str = Field(..., min_length=1)
    connection_id: Optional[str] = Field(default=None)
    max_rows: Optional[int] = Field(default=None, ge=1)
    schemas: List[str] = Field(default_factory=list, description="Restrict context to these schemas")


class ColumnInfo(BaseModel):
    name: str
    type: str
    nullable: bool = True
    is_primary_key: bool = False


class TableInfo(BaseModel):
    name: str
    columns: List[ColumnInfo] = Field(default_factory=list)
    geometry_column: Optional[str] = None
    geometry_type: Optional[str] = None
    srid: Optional[int] = None

    @property
    def has_geometry(self) -> bool:
        return self.geometry_column is not None


class SchemaInfo(BaseModel):
    name: str
    tables: List[TableInfo] = Field(default_factory=list)


class SchemaContext(BaseModel):
    """Database structure handed to the provider as prompt context."""

    database: str = ""
    schemas: List[SchemaInfo] = Field(default_factory=list)

    @property
    def schema_names(self) -> List[str]:
        return [s.name for s in self.schemas]


class SQLCandidate(BaseModel):
    """Provider output. Treated exactly like hand-written SQL."""

    sql: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    explanation: str = ""
    warnings: List[str] = Field(default_factory=list)


class NLQueryResult(BaseModel):
    candidate: SQLCandidate
    verdict: ValidationVerdict
    validated: Optional[ValidatedStatement] = None

    @property
    def accepted(self) -> bool:
        return self.validated is not None
