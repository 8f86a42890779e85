"""
Geometry Inference Service.

Works out which result column of a query holds geometry, its type and its
SRID, which is what GeoServer needs to expose the query as a layer.

Two paths:

    Static  - compiler output columns + declared types from the schema
              catalog. No execution. Preferred.
    Dynamic - run the query wrapped as
              SELECT * FROM (<sql>) AS _probe LIMIT 1
              through the validator and executor, then decode the hex EWKB
              PostGIS returns for geometry values.

Exactly one candidate column is required. Zero or several raise
InferenceFailedError; that blocks publishing only, and callers can supply
the geometry metadata explicitly instead.

Exports:
    GeometryInferenceService: Static/dynamic inference
    parse_declared_type: Parse 'geometry(MultiPolygon,4326)' style type names
    decode_geometry_value: Decode a result value into a shapely geometry
"""

import re
from typing import Any, Dict, List, Optional, Tuple

import shapely
from shapely import wkb
from shapely.errors import ShapelyError
from shapely.geometry.base import BaseGeometry

from core.models import (
    AggregateFunction,
    CatalogColumn,
    CompiledStatement,
    GeometryInfo,
    GeometryType,
    InferenceSource,
    ValidatedStatement,
)
from exceptions import ContractViolationError, InferenceFailedError
from util_logger import LoggerFactory, ComponentType


_DECLARED_TYPE = re.compile(
    r"^\s*(?P<kind>geometry|geography)\s*"
    r"(?:\(\s*(?P<subtype>[A-Za-z]+)\s*(?:,\s*(?P<srid>\d+)\s*)?\))?\s*$",
    re.IGNORECASE,
)
_HEX_EWKB = re.compile(r"^0[01][0-9A-Fa-f]{16,}$")

GEOGRAPHY_DEFAULT_SRID = 4326
GEOMETRY_COLUMN_NAMES = ("geom", "geometry", "the_geom", "wkb_geometry", "shape")


def parse_declared_type(data_type: Optional[str]) -> Optional[Tuple[GeometryType, int]]:
    """
    Geometry type and SRID from a declared column type.

    'geometry(MultiPolygon,4326)' -> (MULTIPOLYGON, 4326)
    'geography(Point)'            -> (POINT, 4326)
    'geometry'                    -> (GEOMETRY, 0)
    anything else                 -> None
    """
    if not data_type:
        return None
    match = _DECLARED_TYPE.match(data_type)
    if not match:
        return None

    geometry_type = GeometryType.from_name(match.group("subtype")) or GeometryType.GEOMETRY
    if match.group("srid") is not None:
        srid = int(match.group("srid"))
    elif match.group("kind").lower() == "geography":
        srid = GEOGRAPHY_DEFAULT_SRID
    else:
        srid = 0
    return geometry_type, srid


def decode_geometry_value(value: Any) -> Optional[BaseGeometry]:
    """
    Shapely geometry for a result value, or None when it is not one.

    PostGIS sends geometry as hex EWKB text unless a binary loader is
    registered, so text, bytes and already-decoded geometries are handled.
    """
    if value is None:
        return None
    if isinstance(value, BaseGeometry):
        return value
    try:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return wkb.loads(bytes(value))
        if isinstance(value, str) and len(value) % 2 == 0 and _HEX_EWKB.match(value):
            return wkb.loads(value, hex=True)
    except (ShapelyError, ValueError, TypeError):
        return None
    return None


def looks_like_geometry_name(name: str) -> bool:
    lowered = name.lower()
    return lowered in GEOMETRY_COLUMN_NAMES or lowered.endswith("_geom")


class GeometryInferenceService:
    """
    Args:
        catalog: SchemaCatalog for declared types (static path)
        validator: SQLValidator for the probe query (dynamic path)
        executor: QueryExecutor for the probe query (dynamic path)
        probe_timeout: Statement timeout for the probe; executor default if None
    """

    def __init__(self, catalog=None, validator=None, executor=None,
                 probe_timeout: Optional[float] = None):
        self.catalog = catalog
        self.validator = validator
        self.executor = executor
        self.probe_timeout = probe_timeout
        self.logger = LoggerFactory.create_logger(ComponentType.SERVICE, "GeometryInferenceService")

    @property
    def can_probe(self) -> bool:
        return self.validator is not None and self.executor is not None

    def infer(self, target, cancel_token=None) -> GeometryInfo:
        """
        Infer from a CompiledStatement, a ValidatedStatement or a sample row.

        Statements try the static path first and fall back to a probe when
        no typed geometry column is declared. A lone column that only looks
        like geometry by name is accepted with type GEOMETRY and SRID 0 when
        probing is not possible or finds nothing.

        Raises:
            InferenceFailedError: No single geometry column
            ContractViolationError: Unsupported target type
        """
        if isinstance(target, dict):
            return self.infer_from_row(target)
        if isinstance(target, ValidatedStatement):
            statement = target.statement
        elif isinstance(target, CompiledStatement):
            statement = target
        else:
            raise ContractViolationError(
                f"infer() takes a statement or a sample row, got {type(target).__name__}"
            )

        typed, named = self._static_candidates(statement)
        if len(typed) == 1:
            self.logger.info(f"✅ Static inference: {typed[0].column} {typed[0].geometry_type.value} SRID {typed[0].srid}")
            return typed[0]
        if len(typed) > 1:
            raise InferenceFailedError(
                f"Several geometry columns in result: {', '.join(c.column for c in typed)}",
                candidates=[c.column for c in typed],
            )

        probe_error = None
        if self.can_probe:
            try:
                return self.infer_dynamic(target, cancel_token=cancel_token)
            except InferenceFailedError as e:
                probe_error = e

        if len(named) == 1:
            self.logger.warning(f"Geometry column '{named[0]}' found by name only; type and SRID unknown")
            return GeometryInfo(
                column=named[0],
                geometry_type=GeometryType.GEOMETRY,
                srid=0,
                source=InferenceSource.STATIC,
            )
        if probe_error is not None:
            raise probe_error
        raise InferenceFailedError(
            "No geometry column could be determined; supply geometry column, type and SRID",
            candidates=named,
        )

    def infer_static(self, statement: CompiledStatement) -> GeometryInfo:
        """Static path only; never executes anything."""
        typed, named = self._static_candidates(statement)
        candidates = typed or [
            GeometryInfo(column=name, geometry_type=GeometryType.GEOMETRY, srid=0, source=InferenceSource.STATIC)
            for name in named
        ]
        if len(candidates) != 1:
            raise InferenceFailedError(
                f"Static inference found {len(candidates)} geometry columns",
                candidates=[c.column for c in candidates],
            )
        return candidates[0]

    def _static_candidates(self, statement: CompiledStatement) -> Tuple[List[GeometryInfo], List[str]]:
        if not statement.output_columns:
            return [], []

        declared = self._declared_columns(statement.relations)
        typed: List[GeometryInfo] = []
        named: List[str] = []

        for output in statement.output_columns:
            if output.source_column is None:
                # SELECT * or COUNT(*): every geometry column of the relation(s)
                if output.aggregate.is_aggregate:
                    continue
                for column in declared.values():
                    if output.table_name and (column.schema_name, column.table_name) != (output.schema_name, output.table_name):
                        continue
                    info = self._typed_info(column.name, column, AggregateFunction.NONE)
                    if info is not None:
                        typed.append(info)
                    elif looks_like_geometry_name(column.name):
                        named.append(column.name)
                continue

            if output.aggregate.is_aggregate and output.aggregate not in (
                AggregateFunction.ST_UNION, AggregateFunction.ST_COLLECT
            ):
                continue

            column = declared.get((output.schema_name, output.table_name, output.source_column))
            info = self._typed_info(output.name, column, output.aggregate) if column else None
            if info is not None:
                typed.append(info)
            elif looks_like_geometry_name(output.name):
                named.append(output.name)

        return typed, named

    def _declared_columns(self, relations) -> Dict[Tuple[str, str, str], CatalogColumn]:
        if self.catalog is None or not relations:
            return {}
        return {
            (column.schema_name, column.table_name, column.name): column
            for column in self.catalog.describe_columns(relations)
        }

    @staticmethod
    def _typed_info(output_name: str, column: CatalogColumn,
                    aggregate: AggregateFunction) -> Optional[GeometryInfo]:
        parsed = parse_declared_type(column.data_type)
        if parsed is None:
            return None
        geometry_type, srid = parsed

        # geometry_columns knows more than a bare 'geometry' declaration
        registered = GeometryType.from_name(column.geometry_type)
        if registered is not None and geometry_type is GeometryType.GEOMETRY:
            geometry_type = registered
        if column.srid and not srid:
            srid = column.srid

        if aggregate is AggregateFunction.ST_UNION:
            geometry_type = GeometryType.GEOMETRY
        elif aggregate is AggregateFunction.ST_COLLECT:
            geometry_type = GeometryType.GEOMETRYCOLLECTION

        return GeometryInfo(
            column=output_name,
            geometry_type=geometry_type,
            srid=srid,
            source=InferenceSource.STATIC,
        )

    def infer_dynamic(self, target, cancel_token=None) -> GeometryInfo:
        """
        Probe one row through the validator and executor.

        Raises:
            InferenceFailedError: Probing unavailable, no rows, or no single
                geometry value
            SQLRejectedError: The probe (or an unvalidated statement) was rejected
        """
        if not self.can_probe:
            raise InferenceFailedError("Dynamic inference needs a validator and an executor")

        if isinstance(target, ValidatedStatement):
            source_sql, parameters = target.sql, target.parameters
        else:
            validated = self.validator.approve(target)
            source_sql, parameters = validated.sql, validated.parameters

        probe_sql = f"SELECT * FROM ({source_sql.strip().rstrip(';').strip()}) AS _probe LIMIT 1"
        probe = self.validator.approve(CompiledStatement.from_text(probe_sql, parameters))
        result = self.executor.execute(probe, max_rows=1, timeout=self.probe_timeout, cancel_token=cancel_token)

        row = result.first_row()
        if row is None:
            raise InferenceFailedError("Probe query returned no rows")
        info = self.infer_from_row(row)
        return GeometryInfo(
            column=info.column,
            geometry_type=info.geometry_type,
            srid=info.srid,
            source=InferenceSource.DYNAMIC,
        )

    def infer_from_row(self, row: Dict[str, Any]) -> GeometryInfo:
        """
        Infer from one result row by decoding its values.

        Raises:
            InferenceFailedError: Zero or several geometry values
        """
        found = []
        for name, value in row.items():
            geom = decode_geometry_value(value)
            if geom is not None:
                found.append((name, geom))

        if len(found) != 1:
            names = [name for name, _ in found]
            raise InferenceFailedError(
                f"Expected one geometry value in row, found {len(found)}",
                candidates=names,
            )

        name, geom = found[0]
        geometry_type = GeometryType.from_name(geom.geom_type) or GeometryType.GEOMETRY
        srid = int(shapely.get_srid(geom))
        self.logger.info(f"✅ Dynamic inference: {name} {geometry_type.value} SRID {srid}")
        return GeometryInfo(
            column=name,
            geometry_type=geometry_type,
            srid=srid,
            source=InferenceSource.DYNAMIC,
        )


__all__ = [
    'GeometryInferenceService',
    'parse_declared_type',
    'decode_geometry_value',
    'looks_like_geometry_name',
]
