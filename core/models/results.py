"""
Execution Result Data Models.

Exports:
    ColumnMetadata: Name and declared type of a result column
    QueryResult: Rows plus metadata returned by the execution adaptor
    ExecutionPlan: Planner estimate, scan type and index use of a statement
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class ColumnMetadata(BaseModel):
    name: str = Field(..., description="Result column name")
    type_name: str = Field(default="unknown", description="PostgreSQL type name from pg_type")
    type_oid: Optional[int] = Field(default=None, description="PostgreSQL type OID")
    nullable: Optional[bool] = Field(default=None, description="Unknown for computed columns")


class QueryResult(BaseModel):
    """
    Result of executing one validated statement.

    Rows are dicts keyed by column name, in server order. `truncated` is set
    when the row cap cut the result short.
    """

    columns: List[ColumnMetadata] = Field(default_factory=list)
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    row_count: int = Field(default=0, ge=0)
    truncated: bool = Field(default=False)
    duration_ms: float = Field(default=0.0, ge=0)
    sql: str = Field(..., description="Effective SQL that ran")

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def first_row(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None


# Plan node types that read through an index
INDEX_SCAN_NODES = ("Index Scan", "Index Only Scan", "Bitmap Index Scan")


class ExecutionPlan(BaseModel):
    """
    Planner estimate for a validated statement (EXPLAIN, not ANALYZE).

    `scan_type` is "Index Scan" when any node reads through an index,
    "Sequential Scan" when a table is read sequentially, otherwise the
    root node type.
    """

    estimated_rows: int = Field(default=0, ge=0, description="Plan Rows of the root node")
    estimated_cost: float = Field(default=0.0, ge=0, description="Total Cost of the root node")
    startup_cost: float = Field(default=0.0, ge=0)
    scan_type: str = Field(default="")
    uses_index: bool = Field(default=False)
    index_names: List[str] = Field(default_factory=list)
    relations: List[str] = Field(default_factory=list, description="Relations scanned, as schema.table")
    node_types: List[str] = Field(default_factory=list, description="Node types in depth-first order")
    plan: Dict[str, Any] = Field(default_factory=dict, description="Root plan node as returned by PostgreSQL")
    sql: str = Field(..., description="Effective SQL that was explained")

    @classmethod
    def from_explain(cls, document: Any, sql_text: str) -> "ExecutionPlan":
        """Build from EXPLAIN (FORMAT JSON) output: a one-element list holding {"Plan": ...}."""
        if isinstance(document, list):
            document = document[0] if document else {}
        root = document.get("Plan", {}) if isinstance(document, dict) else {}

        node_types: List[str] = []
        index_names: List[str] = []
        relations: List[str] = []
        pending = [root] if root else []
        while pending:
            node = pending.pop(0)
            node_type = node.get("Node Type", "")
            node_types.append(node_type)
            if node.get("Index Name") and node["Index Name"] not in index_names:
                index_names.append(node["Index Name"])
            if node.get("Relation Name"):
                relation = f"{node.get('Schema', 'public')}.{node['Relation Name']}"
                if relation not in relations:
                    relations.append(relation)
            pending = list(node.get("Plans", [])) + pending

        uses_index = any(t in INDEX_SCAN_NODES for t in node_types)
        if uses_index:
            scan_type = "Index Scan"
        elif "Seq Scan" in node_types:
            scan_type = "Sequential Scan"
        else:
            scan_type = root.get("Node Type", "")

        return cls(
            estimated_rows=int(root.get("Plan Rows", 0)),
            estimated_cost=float(root.get("Total Cost", 0.0)),
            startup_cost=float(root.get("Startup Cost", 0.0)),
            scan_type=scan_type,
            uses_index=uses_index,
            index_names=index_names,
            relations=relations,
            node_types=node_types,
            plan=root,
            sql=sql_text,
        )
