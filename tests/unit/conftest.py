"""
Unit test fixtures - factory-built models.
"""

import pytest

from tests.factories.model_factories import (
    make_query_definition,
    make_view_metadata,
)


@pytest.fixture
def definition_data():
    """Return randomized query definition data dict."""
    return make_query_definition()


@pytest.fixture
def view_metadata_data():
    """Return randomized view metadata data dict."""
    return make_view_metadata()
