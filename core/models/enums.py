"""
Pure Enumeration Types for the Query Pipeline.

Closed sets of aggregate functions, join kinds, condition operators and
verdict outcomes. The compiler dispatches over these exhaustively.
No business logic - pure type definitions only.

Exports:
    AggregateFunction, JoinType, ConditionOperator, Connective,
    SortDirection, NullsPosition, VerdictOutcome, ValidationReason,
    GeometryType
"""

from enum import Enum
from typing import Optional

from core.errors import ErrorCode


class AggregateFunction(str, Enum):
    """Aggregate applied to a selected column."""

    NONE = "NONE"
    COUNT = "COUNT"
    SUM = "SUM"
    AVG = "AVG"
    MIN = "MIN"
    MAX = "MAX"
    ST_EXTENT = "ST_EXTENT"
    ST_UNION = "ST_UNION"
    ST_COLLECT = "ST_COLLECT"

    @property
    def is_aggregate(self) -> bool:
        return self is not AggregateFunction.NONE

    @property
    def is_spatial(self) -> bool:
        return self in (AggregateFunction.ST_EXTENT, AggregateFunction.ST_UNION, AggregateFunction.ST_COLLECT)


class JoinType(str, Enum):
    """Join kinds; each chains onto the accumulated FROM clause."""

    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FULL_OUTER = "FULL_OUTER"
    CROSS = "CROSS"


class ConditionOperator(str, Enum):
    """
    WHERE predicate operators.

    Values are the SQL spelling so saved definitions stay readable.
    """

    # Comparison
    EQ = "="
    NE = "!="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="

    # Text match
    LIKE = "LIKE"
    ILIKE = "ILIKE"
    NOT_LIKE = "NOT LIKE"
    NOT_ILIKE = "NOT ILIKE"

    # Null check
    IS_NULL = "IS NULL"
    IS_NOT_NULL = "IS NOT NULL"

    # Set membership
    IN = "IN"
    NOT_IN = "NOT IN"

    # Range
    BETWEEN = "BETWEEN"

    # Spatial (PostGIS)
    ST_INTERSECTS = "ST_Intersects"
    ST_CONTAINS = "ST_Contains"
    ST_WITHIN = "ST_Within"
    ST_DWITHIN = "ST_DWithin"
    ST_EQUALS = "ST_Equals"
    ST_TOUCHES = "ST_Touches"
    ST_OVERLAPS = "ST_Overlaps"
    ST_CROSSES = "ST_Crosses"

    @property
    def is_spatial(self) -> bool:
        return self.value.startswith("ST_")


class Connective(str, Enum):
    """Logic joining a condition to everything before it."""

    AND = "AND"
    OR = "OR"


class SortDirection(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class NullsPosition(str, Enum):
    DEFAULT = "DEFAULT"
    FIRST = "FIRST"
    LAST = "LAST"


class VerdictOutcome(str, Enum):
    """Safety validator decision."""

    ACCEPT = "ACCEPT"
    REJECT = "REJECT"
    REWRITE = "REWRITE"


class ValidationReason(str, Enum):
    """
    Machine-readable reason codes carried by a verdict.

    Rejection reasons share their member name with an ErrorCode so a
    rejected verdict maps directly onto the error taxonomy.
    """

    # Rejections
    EMPTY_STATEMENT = "EmptyStatement"
    WRITE_OPERATION_BLOCKED = "WriteOperationBlocked"
    INJECTION_PATTERN_DETECTED = "InjectionPatternDetected"
    DANGEROUS_FUNCTION_BLOCKED = "DangerousFunctionBlocked"
    SCHEMA_NOT_ALLOWED = "SchemaNotAllowed"

    # Rewrites
    LIMIT_APPENDED = "LimitAppended"
    LIMIT_CAPPED = "LimitCapped"

    @property
    def is_rejection(self) -> bool:
        return self not in (ValidationReason.LIMIT_APPENDED, ValidationReason.LIMIT_CAPPED)

    @property
    def error_code(self) -> ErrorCode:
        return ErrorCode.__members__.get(self.name, ErrorCode.VALIDATION_ERROR)


class GeometryType(str, Enum):
    """
    Geometry types as GeoServer expects them in a virtual table definition.
    """

    POINT = "Point"
    LINESTRING = "LineString"
    POLYGON = "Polygon"
    MULTIPOINT = "MultiPoint"
    MULTILINESTRING = "MultiLineString"
    MULTIPOLYGON = "MultiPolygon"
    GEOMETRYCOLLECTION = "GeometryCollection"
    GEOMETRY = "Geometry"

    @classmethod
    def from_name(cls, name: Optional[str]) -> Optional["GeometryType"]:
        """
        Normalise a PostGIS/shapely type name.

        Accepts 'MULTIPOLYGON', 'MultiPolygon', 'ST_MultiPolygon', 'POINTZ',
        'PointM', 'MultiPolygonZM'. Dimension suffixes are dropped.
        Returns None for unknown names.
        """
        if not name:
            return None
        key = name.strip().upper()
        if key.startswith("ST_"):
            key = key[3:]
        for suffix in ("ZM", "Z", "M"):
            if key.endswith(suffix) and key[:-len(suffix)] in cls.__members__:
                key = key[:-len(suffix)]
                break
        member = cls.__members__.get(key)
        return member
