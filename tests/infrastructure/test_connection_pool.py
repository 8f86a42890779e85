"""
Connection pool registry tests. No pool is ever opened.
"""

import pytest

from exceptions import DatabaseConnectionError
from infrastructure.connection_pool import ConnectionPoolManager


@pytest.fixture(autouse=True)
def clean_registry():
    ConnectionPoolManager.reset_for_testing()
    yield
    ConnectionPoolManager.reset_for_testing()


class TestRegistry:
    def test_register_records_settings(self):
        ConnectionPoolManager.register("analytics", "host=db2 dbname=gis", min_size=0, max_size=3)
        stats = ConnectionPoolManager.get_pool_stats("analytics")
        assert stats["registered"] is True
        assert stats["initialized"] is False
        assert stats["pool_max"] == 3

    def test_unknown_id_is_connection_error(self):
        with pytest.raises(DatabaseConnectionError) as exc_info:
            with ConnectionPoolManager.connection("nowhere"):
                pass
        assert exc_info.value.details["connection_id"] == "nowhere"

    def test_default_id_registered_from_config(self):
        settings = ConnectionPoolManager._get_settings("default")
        assert "dbname=testdb" in settings["conninfo"]
        assert ConnectionPoolManager.get_pool_stats("default")["registered"] is True

    def test_shutdown_refuses_new_connections(self):
        ConnectionPoolManager.shutdown()
        with pytest.raises(DatabaseConnectionError):
            with ConnectionPoolManager.connection("default"):
                pass
