"""
Root conftest.py - sys.path, env vars, shared fixtures.

Sets up the test environment so all production code can be imported
without a database, GeoServer or Ollama.
"""

import os
import sys

import pytest

# Add project root to sys.path so 'core', 'config', 'infrastructure', etc. are importable
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


@pytest.fixture(autouse=True, scope="session")
def set_minimal_env_vars():
    """
    Set minimal environment variables so config loads without real services.
    """
    defaults = {
        "POSTGIS_HOST": "localhost",
        "POSTGIS_DATABASE": "testdb",
        "POSTGIS_USER": "reader",
        "SAVED_QUERY_SCHEMA": "app",
        "GEOSERVER_URL": "http://geoserver.test/geoserver",
        "GEOSERVER_USER": "admin",
        "OLLAMA_ENDPOINT": "http://ollama.test:11434",
        "ENVIRONMENT": "dev",
    }
    for key, value in defaults.items():
        os.environ.setdefault(key, value)


@pytest.fixture(autouse=True)
def fresh_config():
    """Each test sees configuration re-read from its own environment."""
    from config import reset_config
    reset_config()
    yield
    reset_config()


@pytest.fixture
def fake_provider():
    """Connection provider handing out one MagicMock connection."""
    from tests.factories.model_factories import FakeConnectionProvider
    return FakeConnectionProvider()
