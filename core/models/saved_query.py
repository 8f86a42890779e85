"""
Saved Query Model.

Exports:
    SavedQuery: Persisted Query Definition with its storage key
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from .query_definition import QueryDefinition


class SavedQuery(BaseModel):
    """
    A Query Definition stored for reuse. The definition is stored, not the
    compiled SQL, so it recompiles against the current schema.
    """

    connection_id: str = Field(..., min_length=1)
    schema_name: str = Field(..., min_length=1)
    table_name: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    definition: QueryDefinition
    version: int = Field(default=1, ge=1)
    created_at: Optional[datetime] = Field(default=None)
    updated_at: Optional[datetime] = Field(default=None)

    @property
    def key(self):
        return (self.connection_id, self.schema_name, self.table_name, self.name)
