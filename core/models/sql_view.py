"""
SQL View Publication Models.

A SQL View is a GeoServer feature type backed by a SELECT statement
(JDBC_VIRTUAL_TABLE metadata) instead of a table.

Exports:
    ViewParameter: %name% substitution parameter of a SQL View
    ViewIdentity: (connection_id, workspace, layer_name) uniqueness key
    ViewMetadata: Replaceable non-SQL part of a published view
    PublishedView: Full publication request
    PublishResult: WMS/WFS endpoints of a published layer
"""

from typing import Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import GeometryType

_NAME_PATTERN = r"^[A-Za-z_][A-Za-z0-9_\-]*$"

# Validator regexes GeoServer applies to parameter values when none is given
DEFAULT_PARAMETER_VALIDATORS = {
    "integer": r"^-?\d+$",
    "number": r"^-?\d+(\.\d+)?$",
    "string": r"^[\w\d\s\-\.]+$",
    "boolean": r"^(true|false)$",
    "date": r"^\d{4}-\d{2}-\d{2}$",
}


class ViewParameter(BaseModel):
    """
    SQL View parameter, referenced in the SQL as %name%.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    type: str = Field(default="string", description="integer, number, string, boolean, date")
    default_value: Optional[str] = Field(default=None)
    regexp_validator: Optional[str] = Field(default=None)

    @field_validator("type")
    @classmethod
    def _known_type(cls, value: str) -> str:
        value = value.lower()
        if value not in DEFAULT_PARAMETER_VALIDATORS:
            raise ValueError(
                f"Unknown parameter type '{value}'. Expected one of {sorted(DEFAULT_PARAMETER_VALIDATORS)}"
            )
        return value

    @property
    def effective_validator(self) -> str:
        return self.regexp_validator or DEFAULT_PARAMETER_VALIDATORS[self.type]


class ViewIdentity(BaseModel):
    """Uniquely identifies a published view; publish/update/unpublish serialise on it."""

    model_config = ConfigDict(frozen=True)

    connection_id: str = Field(..., min_length=1)
    workspace: str = Field(..., pattern=_NAME_PATTERN)
    layer_name: str = Field(..., pattern=_NAME_PATTERN)

    @property
    def qualified_name(self) -> str:
        return f"{self.workspace}:{self.layer_name}"


class ViewMetadata(BaseModel):
    """Geometry, key and parameter settings of a view; replaced wholesale by update."""

    model_config = ConfigDict(frozen=True)

    geometry_column: str = Field(..., min_length=1)
    geometry_type: GeometryType = Field(default=GeometryType.GEOMETRY)
    srid: int = Field(..., ge=0)
    key_column: Optional[str] = Field(default=None)
    parameters: Tuple[ViewParameter, ...] = Field(default=())
    title: Optional[str] = Field(default=None)
    abstract: Optional[str] = Field(default=None)
    escape_sql: bool = Field(default=False)


class PublishedView(BaseModel):
    """
    Publication request. `sql` is the validated effective SQL text.
    """

    model_config = ConfigDict(frozen=True)

    connection_id: str = Field(..., min_length=1)
    workspace: str = Field(..., pattern=_NAME_PATTERN)
    datastore: str = Field(..., min_length=1)
    layer_name: str = Field(..., pattern=_NAME_PATTERN)
    sql: str = Field(..., min_length=1)
    metadata: ViewMetadata

    @property
    def identity(self) -> ViewIdentity:
        return ViewIdentity(
            connection_id=self.connection_id,
            workspace=self.workspace,
            layer_name=self.layer_name,
        )


class PublishResult(BaseModel):
    workspace: str
    layer_name: str
    wms_endpoint: str
    wfs_endpoint: str
    changed: bool = Field(default=True, description="False when update found nothing to change")
