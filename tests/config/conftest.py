"""
Config test fixtures - clean environment via monkeypatch.
"""

import pytest


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all env vars that config modules might read, for isolation."""
    env_vars_to_clear = [
        "POSTGIS_HOST", "POSTGIS_DATABASE", "POSTGIS_USER", "POSTGIS_PASSWORD",
        "POSTGIS_SERVICE", "POSTGIS_PORT", "SAVED_QUERY_SCHEMA",
        "QUERY_DEFAULT_LIMIT", "QUERY_MAX_LIMIT", "QUERY_MAX_ROWS",
        "QUERY_TIMEOUT_SECONDS", "QUERY_BLOCK_DANGEROUS_FUNCTIONS",
        "VIEW_DEFAULT_LIMIT", "GEOMETRY_PROBE_TIMEOUT_SECONDS",
        "GEOSERVER_URL", "GEOSERVER_USER", "GEOSERVER_PASSWORD",
        "OLLAMA_ENDPOINT", "OLLAMA_MODEL", "NL_MIN_CONFIDENCE",
        "ENVIRONMENT", "DEBUG_MODE",
    ]
    for var in env_vars_to_clear:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch
