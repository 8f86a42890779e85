"""
Query Pipeline Configuration.

Bounds applied by the safety validator (default and maximum LIMIT) and by
the execution adaptor (row cap, statement timeout).

Exports:
    QueryConfig: Validator and executor settings
"""

import os
from pydantic import BaseModel, Field, model_validator

from .defaults import QueryDefaults


class QueryConfig(BaseModel):
    """
    Validator and execution adaptor configuration.
    """

    default_schema: str = Field(
        default=QueryDefaults.DEFAULT_SCHEMA,
        description="Schema assumed for unqualified tables"
    )

    default_limit: int = Field(
        default=QueryDefaults.DEFAULT_LIMIT,
        ge=1,
        description="LIMIT appended by the validator when a statement has none"
    )

    max_limit: int = Field(
        default=QueryDefaults.MAX_LIMIT,
        ge=1,
        description="Explicit LIMIT values above this are rewritten down to it"
    )

    max_rows: int = Field(
        default=QueryDefaults.MAX_ROWS,
        ge=1,
        description="Rows fetched per execution, independent of the SQL LIMIT"
    )

    timeout_seconds: float = Field(
        default=QueryDefaults.TIMEOUT_SECONDS,
        gt=0,
        description="Statement timeout; the statement is cancelled server-side when exceeded"
    )

    block_dangerous_functions: bool = Field(
        default=QueryDefaults.BLOCK_DANGEROUS_FUNCTIONS,
        description="Reject calls such as pg_sleep, pg_read_file, dblink"
    )

    view_default_limit: int = Field(
        default=QueryDefaults.VIEW_DEFAULT_LIMIT,
        ge=1,
        description="LIMIT appended to SQL published as a GeoServer SQL View"
    )

    probe_timeout_seconds: float = Field(
        default=QueryDefaults.PROBE_TIMEOUT_SECONDS,
        gt=0,
        description="Timeout for the LIMIT 1 geometry inference probe"
    )

    @model_validator(mode="after")
    def _check_limits(self):
        if self.default_limit > self.max_limit:
            raise ValueError(
                f"default_limit ({self.default_limit}) cannot exceed max_limit ({self.max_limit})"
            )
        return self

    @classmethod
    def from_environment(cls):
        """Load from environment variables."""
        return cls(
            default_schema=os.environ.get("QUERY_DEFAULT_SCHEMA", QueryDefaults.DEFAULT_SCHEMA),
            default_limit=int(os.environ.get("QUERY_DEFAULT_LIMIT", str(QueryDefaults.DEFAULT_LIMIT))),
            max_limit=int(os.environ.get("QUERY_MAX_LIMIT", str(QueryDefaults.MAX_LIMIT))),
            max_rows=int(os.environ.get("QUERY_MAX_ROWS", str(QueryDefaults.MAX_ROWS))),
            timeout_seconds=float(os.environ.get("QUERY_TIMEOUT_SECONDS", str(QueryDefaults.TIMEOUT_SECONDS))),
            block_dangerous_functions=os.environ.get(
                "QUERY_BLOCK_DANGEROUS_FUNCTIONS", str(QueryDefaults.BLOCK_DANGEROUS_FUNCTIONS)
            ).lower() == "true",
            view_default_limit=int(os.environ.get("VIEW_DEFAULT_LIMIT", str(QueryDefaults.VIEW_DEFAULT_LIMIT))),
            probe_timeout_seconds=float(os.environ.get(
                "GEOMETRY_PROBE_TIMEOUT_SECONDS", str(QueryDefaults.PROBE_TIMEOUT_SECONDS)
            )),
        )
