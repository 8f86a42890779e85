"""
GeoServer REST client tests over httpx.MockTransport.
"""

import json

import httpx
import pytest

from config import GeoServerConfig
from exceptions import PublishError
from infrastructure.geoserver_client import GeoServerClient


def _client(handler):
    config = GeoServerConfig(url="http://geoserver.test/geoserver", user="admin", password="geoserver")
    return GeoServerClient(config=config, transport=httpx.MockTransport(handler))


class TestFeatureTypes:
    def test_create_posts_body(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(201)

        _client(handler).create_feature_type("analytics", "postgis", {"featureType": {"name": "v"}})

        assert seen["method"] == "POST"
        assert seen["path"] == "/geoserver/rest/workspaces/analytics/datastores/postgis/featuretypes"
        assert seen["body"] == {"featureType": {"name": "v"}}
        assert seen["auth"].startswith("Basic ")

    def test_get_missing_returns_none(self):
        client = _client(lambda request: httpx.Response(404, text="No such feature type"))
        assert client.get_feature_type("analytics", "postgis", "gone") is None

    def test_get_returns_json(self):
        client = _client(lambda request: httpx.Response(200, json={"featureType": {"name": "v"}}))
        assert client.get_feature_type("analytics", "postgis", "v") == {"featureType": {"name": "v"}}

    def test_remote_message_kept_verbatim(self):
        client = _client(lambda request: httpx.Response(500, text="Trying to add duplicate feature type"))
        with pytest.raises(PublishError) as exc_info:
            client.create_feature_type("analytics", "postgis", {})
        assert exc_info.value.remote_message == "Trying to add duplicate feature type"
        assert exc_info.value.status_code == 500
        assert exc_info.value.operation == "create"

    def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(PublishError) as exc_info:
            _client(handler).update_feature_type("analytics", "postgis", "v", {})
        assert exc_info.value.status_code is None

    def test_delete_feature_type_recurses(self):
        seen = {}

        def handler(request):
            seen["query"] = request.url.params.get("recurse")
            return httpx.Response(200)

        assert _client(handler).delete_feature_type("analytics", "postgis", "v") is True
        assert seen["query"] == "true"

    def test_delete_missing_layer_is_false(self):
        client = _client(lambda request: httpx.Response(404))
        assert client.delete_layer("analytics", "v") is False


class TestLayers:
    def test_find_layer_datastore_from_href(self):
        href = "http://geoserver.test/geoserver/rest/workspaces/analytics/datastores/postgis/featuretypes/v.json"
        client = _client(lambda request: httpx.Response(200, json={"layer": {"resource": {"href": href}}}))
        assert client.find_layer_datastore("analytics", "v") == "postgis"

    def test_find_layer_datastore_missing(self):
        client = _client(lambda request: httpx.Response(404))
        assert client.find_layer_datastore("analytics", "v") is None

    def test_service_endpoints(self):
        endpoints = _client(lambda request: httpx.Response(200)).service_endpoints("analytics")
        assert endpoints["wms"].startswith("http://geoserver.test/geoserver/analytics/wms?service=WMS")
        assert "version=2.0.0" in endpoints["wfs"]
