"""
Geometry Metadata Models.

Exports:
    InferenceSource: How geometry metadata was obtained
    GeometryInfo: Geometry column, type and SRID of a result set
    CatalogColumn: Declared column type reported by the schema catalog
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from .enums import GeometryType


class InferenceSource(str, Enum):
    STATIC = "static"      # Declared column types, no execution
    DYNAMIC = "dynamic"    # LIMIT 1 probe through the executor
    EXPLICIT = "explicit"  # Supplied by the caller


class GeometryInfo(BaseModel):
    """Geometry metadata needed to expose a query as a map layer."""

    model_config = ConfigDict(frozen=True)

    column: str = Field(..., min_length=1)
    geometry_type: GeometryType = Field(default=GeometryType.GEOMETRY)
    srid: int = Field(..., ge=0)
    source: InferenceSource = Field(default=InferenceSource.EXPLICIT)


class CatalogColumn(BaseModel):
    """
    Declared column of a relation as reported by the schema catalog.

    `data_type` is format_type() output, e.g. 'geometry(MultiPolygon,4326)'.
    `geometry_type`/`srid` come from geometry_columns or geography_columns
    when the column is registered there.
    """

    model_config = ConfigDict(frozen=True)

    schema_name: str
    table_name: str
    name: str
    data_type: str
    nullable: bool = True
    geometry_type: Optional[str] = None
    srid: Optional[int] = None
