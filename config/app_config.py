"""
Main Application Configuration.

Composes domain-specific configuration modules:
    - DatabaseConfig (PostgreSQL/PostGIS)
    - QueryConfig (validator and executor bounds)
    - GeoServerConfig (SQL View publication)
    - NLProviderConfig (Ollama adaptor)

Exports:
    AppConfig: Main configuration class

Pattern:
    Composition over inheritance - domain configs are composed, not inherited.
"""

import os
from pydantic import BaseModel, Field

from .database_config import DatabaseConfig
from .query_config import QueryConfig
from .geoserver_config import GeoServerConfig, NLProviderConfig
from .defaults import AppDefaults


class AppConfig(BaseModel):
    """
    Application configuration - composition of domain configs.
    """

    debug_mode: bool = Field(
        default=AppDefaults.DEBUG_MODE,
        description="Enable verbose diagnostics (SQL text in debug logs)"
    )

    environment: str = Field(
        default=AppDefaults.ENVIRONMENT,
        description="Environment name (dev, qa, prod)",
        examples=["dev", "qa", "prod"]
    )

    log_level: str = Field(
        default=AppDefaults.LOG_LEVEL,
        description="Root log level"
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    geoserver: GeoServerConfig = Field(default_factory=GeoServerConfig)
    nl_provider: NLProviderConfig = Field(default_factory=NLProviderConfig)

    @classmethod
    def from_environment(cls):
        """Load all configs from environment."""
        return cls(
            debug_mode=os.environ.get("DEBUG_MODE", str(AppDefaults.DEBUG_MODE).lower()).lower() == "true",
            environment=os.environ.get("ENVIRONMENT", AppDefaults.ENVIRONMENT),
            log_level=os.environ.get("LOG_LEVEL", AppDefaults.LOG_LEVEL),
            database=DatabaseConfig.from_environment(),
            query=QueryConfig.from_environment(),
            geoserver=GeoServerConfig.from_environment(),
            nl_provider=NLProviderConfig.from_environment(),
        )
