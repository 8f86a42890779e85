"""
Repository Abstract Base Classes - Single Point of Truth.

Enforces exact method signatures across all repository and adaptor
implementations, preventing parameter name mismatches between the
PostgreSQL implementations and the in-memory fakes used by tests.

Philosophy: "Define once, enforce everywhere"

Exports:
    IConnectionProvider: Source of database connections keyed by connection id
    ISavedQueryRepository: Saved Query Definition persistence interface
    IGeoServerClient: SQL View REST operations used by the view publisher
    ISQLGenerationProvider: Natural-language to SQL backend
    ParamNames: Canonical parameter name constants
"""

from abc import ABC, abstractmethod
from typing import Any, ContextManager, Dict, Final, List, Optional, Protocol

from core.models import QueryDefinition, SavedQuery
from core.models.nl import QueryRequest, SchemaContext, SQLCandidate


# ============================================================================
# CANONICAL PARAMETER NAMES - Single source of truth
# ============================================================================

class ParamNames:
    """
    Keys of the JDBC_VIRTUAL_TABLE metadata entry GeoServer stores per SQL View.
    """

    VIRTUAL_TABLE_KEY: Final[str] = "JDBC_VIRTUAL_TABLE"
    VIRTUAL_TABLE: Final[str] = "virtualTable"
    NAME: Final[str] = "name"
    SQL: Final[str] = "sql"
    ESCAPE_SQL: Final[str] = "escapeSql"
    KEY_COLUMN: Final[str] = "keyColumn"
    GEOMETRY: Final[str] = "geometry"
    PARAMETER: Final[str] = "parameter"
    DEFAULT_VALUE: Final[str] = "defaultValue"
    REGEXP_VALIDATOR: Final[str] = "regexpValidator"


# ============================================================================
# ABSTRACT BASE CLASSES - Enforce exact signatures
# ============================================================================

class IConnectionProvider(Protocol):
    """
    Anything that lends out psycopg connections by connection id.

    ConnectionPoolManager satisfies this with class methods; tests pass a
    MagicMock-backed fake.
    """

    def connection(self, connection_id: str) -> ContextManager[Any]:
        ...


class ISavedQueryRepository(ABC):
    """
    Saved query repository interface with EXACT method signatures.

    Entries are keyed by (connection_id, schema, table, name). The
    repository is bound to one connection id.
    """

    @abstractmethod
    def save(self, definition: QueryDefinition) -> SavedQuery:
        """Insert or overwrite (last write wins, version bumped)"""
        pass

    @abstractmethod
    def get(self, name: str, schema_name: Optional[str] = None,
            table_name: Optional[str] = None) -> Optional[SavedQuery]:
        """Fetch one saved query by name, optionally narrowed by relation"""
        pass

    @abstractmethod
    def list(self, schema_filter: Optional[str] = None) -> List[SavedQuery]:
        """List saved queries, optionally for a single schema"""
        pass

    @abstractmethod
    def delete(self, name: str, schema_name: Optional[str] = None,
               table_name: Optional[str] = None) -> int:
        """Delete by name; returns number of entries removed"""
        pass


class IGeoServerClient(ABC):
    """
    GeoServer REST operations needed to manage SQL View feature types.
    """

    @abstractmethod
    def create_feature_type(self, workspace: str, datastore: str, body: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def get_feature_type(self, workspace: str, datastore: str, name: str) -> Optional[Dict[str, Any]]:
        """Feature type JSON, or None when it does not exist"""
        pass

    @abstractmethod
    def update_feature_type(self, workspace: str, datastore: str, name: str, body: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def delete_layer(self, workspace: str, name: str) -> bool:
        """False when the layer was already gone"""
        pass

    @abstractmethod
    def delete_feature_type(self, workspace: str, datastore: str, name: str) -> bool:
        """False when the feature type was already gone"""
        pass

    @abstractmethod
    def find_layer_datastore(self, workspace: str, name: str) -> Optional[str]:
        """Datastore backing a published layer, or None when not found"""
        pass

    @abstractmethod
    def service_endpoints(self, workspace: str) -> Dict[str, str]:
        """WMS and WFS GetCapabilities URLs for a workspace"""
        pass


class ISQLGenerationProvider(ABC):
    """
    NL-to-SQL backend. Implementations own their transport and prompt.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def generate_sql(self, request: QueryRequest, schema: SchemaContext) -> SQLCandidate:
        """
        Raises:
            ProviderError: Backend unreachable or returned nothing usable
        """
        pass

    @abstractmethod
    def explain_query(self, sql_text: str, schema: SchemaContext) -> str:
        pass

    @abstractmethod
    def suggest_optimizations(self, sql_text: str, schema: SchemaContext) -> List[str]:
        pass

    def is_available(self) -> bool:
        return True


__all__ = [
    'ParamNames',
    'IConnectionProvider',
    'ISavedQueryRepository',
    'IGeoServerClient',
    'ISQLGenerationProvider',
]
