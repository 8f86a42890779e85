"""
Connection Pool Manager - one psycopg pool per connection id.

The pipeline talks to one or more PostGIS databases, each identified by a
connection id. The default id comes from DatabaseConfig; further ids are
registered at runtime with their own conninfo. Pools are created lazily on
first use and shared by every executor and repository in the process.

Usage:
    from infrastructure.connection_pool import ConnectionPoolManager

    ConnectionPoolManager.register("analytics", "host=db2 dbname=gis user=ro")

    with ConnectionPoolManager.connection("analytics") as conn:
        conn.execute("SELECT 1")

    stats = ConnectionPoolManager.get_pool_stats("analytics")
    # {'connection_id': 'analytics', 'initialized': True, 'pool_size': 1, ...}

Exports:
    ConnectionPoolManager: Class with class methods for pool management
"""

import threading
import logging
from typing import Optional, Dict, Any
from contextlib import contextmanager

import psycopg
from psycopg_pool import ConnectionPool, PoolTimeout
from psycopg.rows import dict_row

from config.defaults import DatabaseDefaults
from exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)


class ConnectionPoolManager:
    """
    Registry of connection pools keyed by connection id.

    Class-level state is used because:
    1. Pools should be shared across all executor and repository instances
    2. One pool per database per process is enough
    3. Thread-safe via lock
    """

    _pools: Dict[str, ConnectionPool] = {}
    _registrations: Dict[str, Dict[str, Any]] = {}
    _pool_lock = threading.Lock()
    _shutdown_requested = False

    @classmethod
    def register(cls, connection_id: str, conninfo: str,
                 min_size: Optional[int] = None, max_size: Optional[int] = None,
                 timeout: Optional[float] = None) -> None:
        """
        Register (or replace) the conninfo for a connection id.

        Replacing an id closes its existing pool; the next request opens a
        new one with the new settings.
        """
        settings = {
            'conninfo': conninfo,
            'min_size': DatabaseDefaults.POOL_MIN if min_size is None else min_size,
            'max_size': DatabaseDefaults.POOL_MAX if max_size is None else max_size,
            'timeout': float(DatabaseDefaults.CONNECTION_TIMEOUT_SECONDS if timeout is None else timeout),
        }
        with cls._pool_lock:
            cls._registrations[connection_id] = settings
            old_pool = cls._pools.pop(connection_id, None)
        if old_pool is not None:
            cls._close_pool(connection_id, old_pool)
        logger.info(
            f"Registered connection '{connection_id}': "
            f"min={settings['min_size']}, max={settings['max_size']}"
        )

    @classmethod
    def _get_settings(cls, connection_id: str) -> Dict[str, Any]:
        """
        Settings for a connection id. The default id is registered lazily
        from DatabaseConfig.
        """
        settings = cls._registrations.get(connection_id)
        if settings is not None:
            return settings

        from config import get_config
        db_config = get_config().database
        if connection_id != db_config.connection_id:
            raise DatabaseConnectionError(
                f"Unknown connection id '{connection_id}'",
                details={"connection_id": connection_id},
            )
        settings = {
            'conninfo': db_config.connection_string,
            'min_size': db_config.pool_min,
            'max_size': db_config.pool_max,
            'timeout': float(db_config.connection_timeout_seconds),
        }
        cls._registrations[connection_id] = settings
        return settings

    @staticmethod
    def _configure_connection(conn) -> None:
        """Called by the pool for each new connection."""
        conn.row_factory = dict_row

    @classmethod
    def _create_pool(cls, connection_id: str) -> ConnectionPool:
        settings = cls._get_settings(connection_id)
        logger.info(
            f"Creating connection pool '{connection_id}': "
            f"min={settings['min_size']}, max={settings['max_size']}"
        )
        pool = ConnectionPool(
            conninfo=settings['conninfo'],
            min_size=settings['min_size'],
            max_size=settings['max_size'],
            timeout=settings['timeout'],
            max_lifetime=DatabaseDefaults.POOL_MAX_LIFETIME_SECONDS,
            configure=cls._configure_connection,
            name=connection_id,
            open=True,
        )
        logger.info(f"✅ Connection pool '{connection_id}' created")
        return pool

    @classmethod
    def _get_or_create_pool(cls, connection_id: str) -> ConnectionPool:
        """Thread-safe via double-check locking."""
        pool = cls._pools.get(connection_id)
        if pool is None:
            with cls._pool_lock:
                pool = cls._pools.get(connection_id)
                if pool is None:
                    pool = cls._create_pool(connection_id)
                    cls._pools[connection_id] = pool
        return pool

    @classmethod
    @contextmanager
    def connection(cls, connection_id: str):
        """
        Borrow a connection from the pool for `connection_id`.

        The connection is returned to the pool when the context exits;
        psycopg_pool rolls back any open transaction on return.

        Raises:
            DatabaseConnectionError: Unknown id, pool shut down, pool timeout
                or connection failure while opening
        """
        if cls._shutdown_requested:
            raise DatabaseConnectionError("Connection pools are shutting down")

        try:
            pool = cls._get_or_create_pool(connection_id)
        except psycopg.OperationalError as e:
            logger.error(f"❌ Could not open pool '{connection_id}': {e}")
            raise DatabaseConnectionError(
                f"Could not connect to '{connection_id}': {e}",
                details={"connection_id": connection_id},
            ) from e

        try:
            with pool.connection() as conn:
                yield conn
        except PoolTimeout as e:
            logger.error(f"❌ Pool '{connection_id}' timed out waiting for a connection")
            raise DatabaseConnectionError(
                f"No connection available for '{connection_id}' within {pool.timeout}s",
                details={"connection_id": connection_id},
            ) from e

    @staticmethod
    def _close_pool(connection_id: str, pool: ConnectionPool) -> None:
        try:
            pool.close(timeout=DatabaseDefaults.POOL_CLOSE_TIMEOUT_SECONDS)
            logger.info(f"Connection pool '{connection_id}' closed")
        except Exception as e:
            logger.warning(f"Error closing pool '{connection_id}' (non-fatal): {e}")

    @classmethod
    def shutdown(cls) -> None:
        """
        Drain and close every pool. New connection requests are refused.
        """
        cls._shutdown_requested = True
        with cls._pool_lock:
            pools = list(cls._pools.items())
            cls._pools = {}
        for connection_id, pool in pools:
            cls._close_pool(connection_id, pool)

    @classmethod
    def get_pool_stats(cls, connection_id: str) -> Dict[str, Any]:
        """
        Pool statistics for health endpoints and diagnostics.
        """
        pool = cls._pools.get(connection_id)
        settings = cls._registrations.get(connection_id, {})
        stats = {
            'connection_id': connection_id,
            'registered': connection_id in cls._registrations,
            'initialized': pool is not None,
            'shutdown_requested': cls._shutdown_requested,
            'pool_min': settings.get('min_size'),
            'pool_max': settings.get('max_size'),
        }
        if pool is not None:
            pool_stats = pool.get_stats()
            stats.update({
                'pool_size': pool_stats.get('pool_size'),
                'pool_available': pool_stats.get('pool_available'),
                'requests_waiting': pool_stats.get('requests_waiting'),
            })
        return stats

    @classmethod
    def reset_for_testing(cls) -> None:
        """
        Reset registry state for testing.

        WARNING: Only use in tests! This does not properly drain connections.
        """
        with cls._pool_lock:
            for pool in cls._pools.values():
                pool.close(timeout=5)
            cls._pools = {}
            cls._registrations = {}
            cls._shutdown_requested = False


__all__ = [
    'ConnectionPoolManager',
]
