"""
Configuration Package - Domain-Specific Configuration Modules

Structure:
    config/
    ├── __init__.py              # This file - exports and singleton
    ├── app_config.py            # Main config (composes domain configs)
    ├── database_config.py       # PostgreSQL/PostGIS
    ├── query_config.py          # Validator / executor bounds
    ├── geoserver_config.py      # GeoServer REST and NL provider
    └── defaults.py              # Default value constants

Usage:
    # Singleton pattern (preferred)
    from config import get_config
    config = get_config()
    limit = config.query.default_limit

    # Debug output
    from config import debug_config
    info = debug_config()  # Passwords masked
"""

from typing import Optional

from .database_config import DatabaseConfig
from .query_config import QueryConfig
from .geoserver_config import GeoServerConfig, NLProviderConfig
from .app_config import AppConfig


# ============================================================================
# SINGLETON PATTERN
# ============================================================================

_config_instance: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Get global configuration singleton.

    Returns:
        AppConfig instance loaded from environment
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = AppConfig.from_environment()
    return _config_instance


def reset_config() -> None:
    """Drop the cached singleton so the next get_config() re-reads the environment."""
    global _config_instance
    _config_instance = None


def debug_config() -> dict:
    """
    Get sanitized configuration for debugging (masks sensitive values).

    Returns:
        Dictionary with configuration values, passwords masked
    """
    try:
        config = get_config()
        return {
            'database': config.database.debug_dict(),
            'query': config.query.model_dump(),
            'geoserver': config.geoserver.debug_dict(),
            'nl_provider': config.nl_provider.debug_dict(),
            'debug_mode': config.debug_mode,
            'environment': config.environment,
            'log_level': config.log_level,
        }
    except Exception as e:
        return {'error': f'Configuration validation failed: {e}'}


__all__ = [
    'AppConfig',
    'get_config',
    'reset_config',
    'debug_config',
    'DatabaseConfig',
    'QueryConfig',
    'GeoServerConfig',
    'NLProviderConfig',
]
