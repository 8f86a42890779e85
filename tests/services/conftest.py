"""
Service test fixtures - in-memory fakes for I/O collaborators.
"""

import pytest

from tests.factories.service_fakes import FakeCatalog, FakeGeoServer, catalog_column


@pytest.fixture
def countries_catalog():
    return FakeCatalog([
        catalog_column("id", "integer"),
        catalog_column("name", "text"),
        catalog_column("geom", "geometry(MultiPolygon,4326)"),
        catalog_column("capital_geom", "geometry", geometry_type="POINT", srid=4326, table="cities"),
    ])


@pytest.fixture
def geoserver():
    return FakeGeoServer()
