"""
PostgreSQL/PostGIS Database Configuration.

Provides configuration for the default target database and for the
connection pool used by the execution adaptor and saved-query repository.
Additional named connections are supplied to the connection provider at
runtime; this config only describes the default one.

Exports:
    DatabaseConfig: Database connection configuration
"""

import os
from typing import Optional
from pydantic import BaseModel, Field

from exceptions import ConfigurationError
from .defaults import DatabaseDefaults


class DatabaseConfig(BaseModel):
    """
    PostgreSQL/PostGIS configuration with password authentication.

    A libpq service name (POSTGIS_SERVICE) may be used instead of
    host/database; the pool then passes `service=<name>` through untouched.
    """

    host: Optional[str] = Field(
        default=None,
        description="PostgreSQL server hostname",
        examples=["localhost"]
    )

    port: int = Field(
        default=DatabaseDefaults.PORT,
        description="PostgreSQL server port number"
    )

    user: Optional[str] = Field(
        default=None,
        description="PostgreSQL username"
    )

    password: Optional[str] = Field(
        default=None,
        repr=False,
        description="PostgreSQL password from POSTGIS_PASSWORD"
    )

    database: Optional[str] = Field(
        default=None,
        description="PostgreSQL database name",
        examples=["gis"]
    )

    service: Optional[str] = Field(
        default=None,
        description="libpq service name from pg_service.conf (overrides host/database)"
    )

    sslmode: str = Field(
        default=DatabaseDefaults.SSLMODE,
        description="libpq sslmode"
    )

    connection_id: str = Field(
        default=DatabaseDefaults.DEFAULT_CONNECTION_ID,
        description="Identifier the default connection is registered under"
    )

    saved_query_schema: str = Field(
        default=DatabaseDefaults.SAVED_QUERY_SCHEMA,
        description="Schema holding the saved_queries table"
    )

    pool_min: int = Field(
        default=DatabaseDefaults.POOL_MIN,
        ge=0,
        description="Minimum connections kept open per pool"
    )

    pool_max: int = Field(
        default=DatabaseDefaults.POOL_MAX,
        ge=1,
        description="Maximum connections per pool"
    )

    connection_timeout_seconds: int = Field(
        default=DatabaseDefaults.CONNECTION_TIMEOUT_SECONDS,
        description="Seconds to wait for a pooled connection"
    )

    @property
    def connection_string(self) -> str:
        """
        Build libpq conninfo string.

        Raises:
            ConfigurationError: If neither a service nor host/database is set
        """
        if self.service:
            parts = [f"service={self.service}"]
        else:
            if not self.host or not self.database:
                raise ConfigurationError(
                    "POSTGIS_HOST and POSTGIS_DATABASE are required when POSTGIS_SERVICE is not set"
                )
            parts = [f"host={self.host}", f"port={self.port}", f"dbname={self.database}"]
        if self.user:
            parts.append(f"user={self.user}")
        if self.password:
            parts.append(f"password={self.password}")
        parts.append(f"sslmode={self.sslmode}")
        return " ".join(parts)

    def debug_dict(self) -> dict:
        """Debug output with masked password."""
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "database": self.database,
            "service": self.service,
            "password": "***MASKED***" if self.password else None,
            "sslmode": self.sslmode,
            "connection_id": self.connection_id,
            "saved_query_schema": self.saved_query_schema,
            "pool_min": self.pool_min,
            "pool_max": self.pool_max,
        }

    @classmethod
    def from_environment(cls):
        """Load from environment variables."""
        return cls(
            host=os.environ.get("POSTGIS_HOST"),
            port=int(os.environ.get("POSTGIS_PORT", str(DatabaseDefaults.PORT))),
            user=os.environ.get("POSTGIS_USER"),
            password=os.environ.get("POSTGIS_PASSWORD"),
            database=os.environ.get("POSTGIS_DATABASE"),
            service=os.environ.get("POSTGIS_SERVICE"),
            sslmode=os.environ.get("POSTGIS_SSLMODE", DatabaseDefaults.SSLMODE),
            connection_id=os.environ.get("DEFAULT_CONNECTION_ID", DatabaseDefaults.DEFAULT_CONNECTION_ID),
            saved_query_schema=os.environ.get("SAVED_QUERY_SCHEMA", DatabaseDefaults.SAVED_QUERY_SCHEMA),
            pool_min=int(os.environ.get("DB_POOL_MIN", str(DatabaseDefaults.POOL_MIN))),
            pool_max=int(os.environ.get("DB_POOL_MAX", str(DatabaseDefaults.POOL_MAX))),
            connection_timeout_seconds=int(os.environ.get(
                "DB_CONNECTION_TIMEOUT", str(DatabaseDefaults.CONNECTION_TIMEOUT_SECONDS)
            )),
        )
