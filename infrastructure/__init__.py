"""
Infrastructure Package - Lazy Loading Implementation.

I/O adaptors of the query pipeline: connection pool, execution adaptor,
schema catalog, saved-query repository, GeoServer REST client and the
Ollama SQL generation provider.

All imports are deferred until a name is first accessed. Importing the
package must not read configuration, open pools or import psycopg/httpx;
tests and the pure core import pieces of it without a database.

Usage:
    from infrastructure import QueryExecutor
    executor = QueryExecutor()  # config is read here, not at import
"""

from typing import TYPE_CHECKING

# For type checking only - doesn't actually import at runtime
if TYPE_CHECKING:
    from .base import BaseRepository as _BaseRepository
    from .connection_pool import ConnectionPoolManager as _ConnectionPoolManager
    from .query_executor import QueryExecutor as _QueryExecutor
    from .query_executor import CancellationToken as _CancellationToken
    from .schema_catalog import SchemaCatalog as _SchemaCatalog
    from .saved_query_repository import SavedQueryRepository as _SavedQueryRepository
    from .geoserver_client import GeoServerClient as _GeoServerClient
    from .ollama_provider import OllamaProvider as _OllamaProvider
    from .interface_repository import (
        IConnectionProvider as _IConnectionProvider,
        ISavedQueryRepository as _ISavedQueryRepository,
        IGeoServerClient as _IGeoServerClient,
        ISQLGenerationProvider as _ISQLGenerationProvider,
        ParamNames as _ParamNames,
    )


def __getattr__(name: str):
    """
    Lazy import mechanism - only imports when actually accessed.
    """
    # Connections and execution
    if name == "ConnectionPoolManager":
        from .connection_pool import ConnectionPoolManager
        return ConnectionPoolManager
    elif name == "QueryExecutor":
        from .query_executor import QueryExecutor
        return QueryExecutor
    elif name == "CancellationToken":
        from .query_executor import CancellationToken
        return CancellationToken

    # Repositories
    elif name == "BaseRepository":
        from .base import BaseRepository
        return BaseRepository
    elif name == "SchemaCatalog":
        from .schema_catalog import SchemaCatalog
        return SchemaCatalog
    elif name == "SavedQueryRepository":
        from .saved_query_repository import SavedQueryRepository
        return SavedQueryRepository

    # External services
    elif name == "GeoServerClient":
        from .geoserver_client import GeoServerClient
        return GeoServerClient
    elif name == "OllamaProvider":
        from .ollama_provider import OllamaProvider
        return OllamaProvider

    # Interfaces
    elif name in ("IConnectionProvider", "ISavedQueryRepository", "IGeoServerClient", "ISQLGenerationProvider", "ParamNames"):
        from . import interface_repository
        return getattr(interface_repository, name)

    else:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "ConnectionPoolManager",
    "QueryExecutor",
    "CancellationToken",
    "BaseRepository",
    "SchemaCatalog",
    "SavedQueryRepository",
    "GeoServerClient",
    "OllamaProvider",
    "IConnectionProvider",
    "ISavedQueryRepository",
    "IGeoServerClient",
    "ISQLGenerationProvider",
    "ParamNames",
]
