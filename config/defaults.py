"""
Configuration Defaults - Single source of truth for all default values.

Organization:
    - DatabaseDefaults: PostgreSQL/PostGIS connection and pool sizing
    - QueryDefaults: Validator limits and executor bounds
    - GeoServerDefaults: GeoServer REST client
    - NLProviderDefaults: Ollama SQL generation adaptor
    - AppDefaults: Application-wide settings

Usage:
    from config.defaults import QueryDefaults

    # In Pydantic Field definitions:
    default_limit: int = Field(default=QueryDefaults.DEFAULT_LIMIT, ...)
"""


# =============================================================================
# DATABASE DEFAULTS
# =============================================================================

class DatabaseDefaults:
    """
    Database connection reference values.
    """

    PORT = 5432
    SSLMODE = "prefer"
    CONNECTION_TIMEOUT_SECONDS = 30
    POOL_MIN = 1
    POOL_MAX = 10
    POOL_MAX_LIFETIME_SECONDS = 55 * 60
    POOL_CLOSE_TIMEOUT_SECONDS = 30.0
    SAVED_QUERY_SCHEMA = "app"
    SAVED_QUERY_TABLE = "saved_queries"
    DEFAULT_CONNECTION_ID = "default"


# =============================================================================
# QUERY DEFAULTS
# =============================================================================

class QueryDefaults:
    """
    Safety validator and execution adaptor bounds.

    DEFAULT_LIMIT is appended by the validator when a statement has no LIMIT.
    MAX_LIMIT caps explicit LIMIT values. MAX_ROWS caps fetched rows even when
    the database would return more.
    """

    DEFAULT_SCHEMA = "public"
    DEFAULT_LIMIT = 100
    MAX_LIMIT = 10000
    MAX_ROWS = 100
    TIMEOUT_SECONDS = 30.0
    BLOCK_DANGEROUS_FUNCTIONS = True

    # SQL Views are whole layers, not previews
    VIEW_DEFAULT_LIMIT = 10000

    # Dynamic geometry inference probe
    PROBE_TIMEOUT_SECONDS = 10.0


# =============================================================================
# GEOSERVER DEFAULTS
# =============================================================================

class GeoServerDefaults:
    """
    GeoServer REST client defaults.
    """

    URL = "http://localhost:8080/geoserver"
    USER = "admin"
    TIMEOUT_SECONDS = 30.0
    WMS_VERSION = "1.1.0"
    WFS_VERSION = "2.0.0"


# =============================================================================
# NL PROVIDER DEFAULTS
# =============================================================================

class NLProviderDefaults:
    """
    Ollama adaptor defaults.
    """

    ENDPOINT = "http://localhost:11434"
    MODEL = "llama3.2"
    TEMPERATURE = 0.1
    MAX_TOKENS = 2048
    TIMEOUT_SECONDS = 120.0
    MIN_CONFIDENCE = 0.0


# =============================================================================
# APPLICATION DEFAULTS
# =============================================================================

class AppDefaults:
    """
    Application-wide defaults.
    """

    DEBUG_MODE = False
    ENVIRONMENT = "dev"
    LOG_LEVEL = "INFO"
