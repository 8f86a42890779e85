"""
Base Repository - shared connection and error handling.

Root class for the PostgreSQL-backed repositories (saved queries, schema
catalog). Provides connection borrowing by connection id, a cursor helper
that commits on success, and a uniform error context that logs and maps
psycopg failures onto the business exception hierarchy.

Architecture:
    BaseRepository (this file)
        ├── SavedQueryRepository
        └── SchemaCatalog

Exports:
    BaseRepository: Base class for PostgreSQL repositories
"""

from contextlib import contextmanager
from typing import Optional

import psycopg

from config import get_config
from exceptions import DatabaseConnectionError, QueryExecutionError
from util_logger import LoggerFactory, ComponentType
from .connection_pool import ConnectionPoolManager


class BaseRepository:
    """
    Base repository bound to one connection id.

    Args:
        connection_id: Which database to use (default from config)
        connection_provider: Object with connection(connection_id) context
            manager; defaults to ConnectionPoolManager

    Usage:
        class MyRepository(BaseRepository):
            def count(self):
                with self._error_context("count"):
                    with self._get_cursor() as cursor:
                        cursor.execute("SELECT count(*) AS n FROM t")
                        return cursor.fetchone()["n"]
    """

    def __init__(self, connection_id: Optional[str] = None, connection_provider=None):
        self.connection_id = connection_id or get_config().database.connection_id
        self.connection_provider = connection_provider or ConnectionPoolManager
        self.logger = LoggerFactory.create_logger(ComponentType.REPOSITORY, self.__class__.__name__)

    @contextmanager
    def _get_cursor(self):
        """
        Cursor inside a transaction; committed on success, rolled back on error.
        """
        with self.connection_provider.connection(self.connection_id) as conn:
            with conn.transaction():
                with conn.cursor() as cursor:
                    yield cursor

    @contextmanager
    def _error_context(self, operation: str, entity_id: Optional[str] = None):
        """
        Consistent error handling for repository operations.

        Business errors raised inside the block pass through untouched;
        psycopg errors are logged with the operation and entity, then
        re-raised as DatabaseConnectionError (connection-level) or
        QueryExecutionError (everything else).
        """
        target = f" for {entity_id}" if entity_id else ""
        try:
            yield
        except psycopg.OperationalError as e:
            self.logger.error(f"❌ {operation} failed{target}: connection error: {e}")
            raise DatabaseConnectionError(
                f"{operation} failed{target}: {e}",
                details={"connection_id": self.connection_id, "operation": operation},
            ) from e
        except psycopg.Error as e:
            self.logger.error(f"❌ {operation} failed{target}: {e}")
            raise QueryExecutionError(
                f"{operation} failed{target}: {e}",
                details={"connection_id": self.connection_id, "operation": operation},
            ) from e


__all__ = [
    'BaseRepository',
]
