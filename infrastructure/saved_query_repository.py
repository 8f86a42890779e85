"""
Saved Query Repository - PostgreSQL persistence of Query Definitions.

Definitions are stored as JSONB, never as compiled SQL, so a saved query
recompiles against whatever the schema looks like when it is loaded.
Entries are keyed by (connection_id, schema_name, table_name, name);
saving an existing key overwrites it (last write wins) and bumps
`version`.

Table (created by ensure_table):

    {saved_query_schema}.saved_queries (
        connection_id TEXT, schema_name TEXT, table_name TEXT, name TEXT,
        definition JSONB, version INTEGER, created_at, updated_at,
        PRIMARY KEY (connection_id, schema_name, table_name, name)
    )

Exports:
    SavedQueryRepository: ISavedQueryRepository over PostgreSQL
"""

from typing import Any, Dict, List, Optional

from psycopg import sql
from psycopg.types.json import Jsonb

from config import get_config
from config.defaults import DatabaseDefaults
from core.models import QueryDefinition, SavedQuery
from exceptions import ValidationError
from .base import BaseRepository
from .interface_repository import ISavedQueryRepository


_SELECT_COLUMNS = sql.SQL(
    "connection_id, schema_name, table_name, name, definition, version, created_at, updated_at"
)


class SavedQueryRepository(BaseRepository, ISavedQueryRepository):
    """
    Saved queries for one connection id.

    Args:
        connection_id: Connection the saved queries belong to
        connection_provider: Where the repository's own table lives
        schema_name: Schema of the saved_queries table
    """

    def __init__(self, connection_id: Optional[str] = None, connection_provider=None,
                 schema_name: Optional[str] = None):
        super().__init__(connection_id, connection_provider)
        self.schema_name = schema_name or get_config().database.saved_query_schema
        self.table = sql.Identifier(self.schema_name, DatabaseDefaults.SAVED_QUERY_TABLE)

    def ensure_table(self) -> None:
        """Create schema and table if missing. Idempotent."""
        with self._error_context("saved query table creation", self.schema_name):
            with self._get_cursor() as cursor:
                cursor.execute(sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(self.schema_name)))
                cursor.execute(sql.SQL("""
                    CREATE TABLE IF NOT EXISTS {} (
                        connection_id TEXT NOT NULL,
                        schema_name TEXT NOT NULL,
                        table_name TEXT NOT NULL,
                        name TEXT NOT NULL,
                        definition JSONB NOT NULL,
                        version INTEGER NOT NULL DEFAULT 1,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                        PRIMARY KEY (connection_id, schema_name, table_name, name)
                    )
                """).format(self.table))
        self.logger.info(f"✅ Saved query table ready: {self.schema_name}.{DatabaseDefaults.SAVED_QUERY_TABLE}")

    def save(self, definition: QueryDefinition) -> SavedQuery:
        """
        Insert or overwrite a definition.

        Raises:
            ValidationError: If the definition has no name
        """
        if not definition.name:
            raise ValidationError("Query definition needs a name to be saved")

        with self._error_context("saved query upsert", definition.name):
            query = sql.SQL("""
                INSERT INTO {table} AS t (connection_id, schema_name, table_name, name, definition)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (connection_id, schema_name, table_name, name) DO UPDATE
                SET definition = EXCLUDED.definition,
                    version = t.version + 1,
                    updated_at = now()
                RETURNING {columns}
            """).format(table=self.table, columns=_SELECT_COLUMNS)
            params = (
                self.connection_id,
                definition.schema_name,
                definition.table,
                definition.name,
                Jsonb(definition.to_storage()),
            )
            with self._get_cursor() as cursor:
                cursor.execute(query, params)
                row = cursor.fetchone()

        saved = self._to_model(row)
        self.logger.info(f"✅ Saved query {saved.schema_name}.{saved.table_name}/{saved.name} v{saved.version}")
        return saved

    def get(self, name: str, schema_name: Optional[str] = None,
            table_name: Optional[str] = None) -> Optional[SavedQuery]:
        """Most recently updated match, or None."""
        conditions, params = self._key_filter(name, schema_name, table_name)
        with self._error_context("saved query lookup", name):
            query = sql.SQL("SELECT {columns} FROM {table} WHERE {conditions} ORDER BY updated_at DESC LIMIT 1").format(
                columns=_SELECT_COLUMNS, table=self.table, conditions=conditions,
            )
            with self._get_cursor() as cursor:
                cursor.execute(query, params)
                row = cursor.fetchone()

        if row is None:
            self.logger.debug(f"Saved query not found: {name}")
            return None
        return self._to_model(row)

    def list(self, schema_filter: Optional[str] = None) -> List[SavedQuery]:
        conditions = [sql.SQL("connection_id = %s")]
        params: List[Any] = [self.connection_id]
        if schema_filter:
            conditions.append(sql.SQL("schema_name = %s"))
            params.append(schema_filter)

        with self._error_context("saved query listing", schema_filter):
            query = sql.SQL("SELECT {columns} FROM {table} WHERE {conditions} ORDER BY schema_name, table_name, name").format(
                columns=_SELECT_COLUMNS, table=self.table, conditions=sql.SQL(" AND ").join(conditions),
            )
            with self._get_cursor() as cursor:
                cursor.execute(query, tuple(params))
                rows = cursor.fetchall()

        return [self._to_model(row) for row in rows]

    def delete(self, name: str, schema_name: Optional[str] = None,
               table_name: Optional[str] = None) -> int:
        conditions, params = self._key_filter(name, schema_name, table_name)
        with self._error_context("saved query deletion", name):
            query = sql.SQL("DELETE FROM {table} WHERE {conditions}").format(
                table=self.table, conditions=conditions,
            )
            with self._get_cursor() as cursor:
                cursor.execute(query, params)
                removed = cursor.rowcount

        self.logger.info(f"Deleted {removed} saved query entries named {name}")
        return removed

    def _key_filter(self, name: str, schema_name: Optional[str], table_name: Optional[str]):
        conditions = [sql.SQL("connection_id = %s"), sql.SQL("name = %s")]
        params: List[Any] = [self.connection_id, name]
        if schema_name:
            conditions.append(sql.SQL("schema_name = %s"))
            params.append(schema_name)
        if table_name:
            conditions.append(sql.SQL("table_name = %s"))
            params.append(table_name)
        return sql.SQL(" AND ").join(conditions), tuple(params)

    @staticmethod
    def _to_model(row: Dict[str, Any]) -> SavedQuery:
        return SavedQuery(
            connection_id=row["connection_id"],
            schema_name=row["schema_name"],
            table_name=row["table_name"],
            name=row["name"],
            definition=QueryDefinition.from_storage(row["definition"]),
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


__all__ = [
    'SavedQueryRepository',
]
