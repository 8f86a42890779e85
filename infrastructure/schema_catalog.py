"""
Schema Catalog - declared column types and database structure.

Read-only metadata lookups used by static geometry inference and by the
natural-language path. These are fixed internal queries with bound
parameters, so they run directly on a pooled connection rather than
through the safety validator.

Exports:
    SchemaCatalog: Catalog reader bound to one connection id
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from psycopg import sql

from config import get_config
from core.models import CatalogColumn
from core.models.nl import ColumnInfo, SchemaContext, SchemaInfo, TableInfo
from .base import BaseRepository

logger = logging.getLogger(__name__)


_RELATION_COLUMNS_QUERY = """
    SELECT n.nspname AS schema_name,
           c.relname AS table_name,
           a.attname AS column_name,
           format_type(a.atttypid, a.atttypmod) AS data_type,
           a.attnotnull AS not_null
    FROM pg_attribute a
    JOIN pg_class c ON c.oid = a.attrelid
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE (n.nspname, c.relname) IN (SELECT * FROM unnest(%s::text[], %s::text[]))
      AND a.attnum > 0
      AND NOT a.attisdropped
    ORDER BY n.nspname, c.relname, a.attnum
"""

_SPATIAL_COLUMNS_QUERY = """
    SELECT f_table_schema AS schema_name, f_table_name AS table_name,
           f_geometry_column AS column_name, type AS geometry_type, srid
    FROM geometry_columns
    WHERE (f_table_schema, f_table_name) IN (SELECT * FROM unnest(%s::text[], %s::text[]))
    UNION ALL
    SELECT f_table_schema, f_table_name, f_geography_column, type, srid
    FROM geography_columns
    WHERE (f_table_schema, f_table_name) IN (SELECT * FROM unnest(%s::text[], %s::text[]))
"""

_CONTEXT_COLUMNS_QUERY = """
    SELECT c.table_schema, c.table_name, c.column_name, c.data_type, c.udt_name,
           c.is_nullable = 'YES' AS nullable
    FROM information_schema.columns c
    JOIN information_schema.tables t
      ON t.table_schema = c.table_schema AND t.table_name = c.table_name
    WHERE {schema_filter}
    ORDER BY c.table_schema, c.table_name, c.ordinal_position
"""

_CONTEXT_PRIMARY_KEYS_QUERY = """
    SELECT kcu.table_schema, kcu.table_name, kcu.column_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema
    WHERE tc.constraint_type = 'PRIMARY KEY'
"""

_CONTEXT_GEOMETRY_QUERY = """
    SELECT f_table_schema, f_table_name, f_geometry_column, type, srid
    FROM geometry_columns
"""


class SchemaCatalog(BaseRepository):
    """
    Reads declared column types from the PostgreSQL catalog.

    Args:
        connection_id: Which database to read (default from config)
        connection_provider: Defaults to ConnectionPoolManager
    """

    def __init__(self, connection_id: Optional[str] = None, connection_provider=None):
        super().__init__(connection_id, connection_provider)
        self.excluded_schemas = [get_config().database.saved_query_schema]

    def _fetch_all(self, query, params: Optional[Tuple] = None) -> List[Dict[str, Any]]:
        with self._error_context("catalog lookup", self.connection_id):
            with self._get_cursor() as cursor:
                cursor.execute(query, params)
                return list(cursor.fetchall())

    def describe_columns(self, relations: Iterable[Tuple[str, str]]) -> List[CatalogColumn]:
        """
        Declared columns of each (schema, table), in attribute order.

        Geometry/geography columns registered in geometry_columns or
        geography_columns carry their registered type and SRID.
        """
        relations = list(dict.fromkeys(relations))
        if not relations:
            return []

        schemas = [schema_name for schema_name, _ in relations]
        tables = [table_name for _, table_name in relations]

        rows = self._fetch_all(_RELATION_COLUMNS_QUERY, (schemas, tables))
        spatial = self._fetch_all(_SPATIAL_COLUMNS_QUERY, (schemas, tables, schemas, tables))
        registered = {
            (row["schema_name"], row["table_name"], row["column_name"]): row
            for row in spatial
        }

        columns = []
        for row in rows:
            key = (row["schema_name"], row["table_name"], row["column_name"])
            entry = registered.get(key)
            columns.append(CatalogColumn(
                schema_name=row["schema_name"],
                table_name=row["table_name"],
                name=row["column_name"],
                data_type=row["data_type"],
                nullable=not row["not_null"],
                geometry_type=entry["geometry_type"] if entry else None,
                srid=entry["srid"] if entry else None,
            ))

        logger.debug(f"Catalog: {len(columns)} columns across {len(relations)} relations")
        return columns

    def build_schema_context(self, schemas: Optional[List[str]] = None) -> SchemaContext:
        """
        Tables, columns, primary keys and geometry columns for NL prompts.

        Without `schemas`, every user schema except system schemas and the
        saved-query schema is included.
        """
        if schemas:
            schema_filter = sql.SQL("c.table_schema = ANY(%s)")
            params = (list(schemas),)
        else:
            schema_filter = sql.SQL(
                "c.table_schema NOT IN ('pg_catalog', 'information_schema') "
                "AND c.table_schema NOT LIKE 'pg\\_%%' AND c.table_schema <> ALL(%s)"
            )
            params = (self.excluded_schemas,)

        query = sql.SQL(_CONTEXT_COLUMNS_QUERY).format(schema_filter=schema_filter)
        column_rows = self._fetch_all(query, params)
        primary_keys = {
            (row["table_schema"], row["table_name"], row["column_name"])
            for row in self._fetch_all(_CONTEXT_PRIMARY_KEYS_QUERY)
        }
        geometry = {
            (row["f_table_schema"], row["f_table_name"]): row
            for row in self._fetch_all(_CONTEXT_GEOMETRY_QUERY)
        }

        schema_map: Dict[str, Dict[str, TableInfo]] = {}
        for row in column_rows:
            schema_name, table_name = row["table_schema"], row["table_name"]
            tables = schema_map.setdefault(schema_name, {})
            table = tables.get(table_name)
            if table is None:
                geo = geometry.get((schema_name, table_name))
                table = TableInfo(
                    name=table_name,
                    geometry_column=geo["f_geometry_column"] if geo else None,
                    geometry_type=geo["type"] if geo else None,
                    srid=geo["srid"] if geo else None,
                )
                tables[table_name] = table

            data_type = row["udt_name"] if row["data_type"] == "USER-DEFINED" else row["data_type"]
            table.columns.append(ColumnInfo(
                name=row["column_name"],
                type=data_type,
                nullable=bool(row["nullable"]),
                is_primary_key=(schema_name, table_name, row["column_name"]) in primary_keys,
            ))

        context = SchemaContext(
            database=self.connection_id,
            schemas=[
                SchemaInfo(name=schema_name, tables=list(tables.values()))
                for schema_name, tables in schema_map.items()
            ],
        )
        logger.info(
            f"Schema context for '{self.connection_id}': "
            f"{sum(len(s.tables) for s in context.schemas)} tables in {len(context.schemas)} schemas"
        )
        return context


__all__ = [
    'SchemaCatalog',
]
