"""
GeoServer REST Client.

Handles HTTP communication with the GeoServer REST API for SQL View
feature types. Authentication is HTTP basic auth with the configured
admin user; callers never handle credentials.

Only the calls the view publisher needs are implemented:

    POST   /rest/workspaces/{ws}/datastores/{ds}/featuretypes
    GET    /rest/workspaces/{ws}/datastores/{ds}/featuretypes/{name}.json
    PUT    /rest/workspaces/{ws}/datastores/{ds}/featuretypes/{name}
    DELETE /rest/layers/{ws}:{name}
    DELETE /rest/workspaces/{ws}/datastores/{ds}/featuretypes/{name}?recurse=true
    GET    /rest/layers/{ws}:{name}.json

Usage:
    from infrastructure.geoserver_client import GeoServerClient

    client = GeoServerClient()
    client.create_feature_type("analytics", "postgis", body)

Exports:
    GeoServerClient: IGeoServerClient implementation over httpx
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from config import GeoServerConfig, get_config
from config.defaults import GeoServerDefaults
from exceptions import PublishError
from .interface_repository import IGeoServerClient

logger = logging.getLogger(__name__)


class GeoServerClient(IGeoServerClient):
    """
    Client for GeoServer REST calls.

    Args:
        config: GeoServer settings (defaults to get_config().geoserver)
        transport: Optional httpx transport; tests pass httpx.MockTransport
    """

    def __init__(self, config: Optional[GeoServerConfig] = None,
                 transport: Optional[httpx.BaseTransport] = None):
        self._config = config or get_config().geoserver
        self._transport = transport

    def _client(self) -> httpx.Client:
        auth = (self._config.user, self._config.password) if self._config.password else None
        return httpx.Client(
            base_url=self._config.rest_url,
            auth=auth,
            timeout=self._config.timeout_seconds,
            headers={"Accept": "application/json"},
            transport=self._transport,
        )

    def _request(self, operation: str, method: str, path: str,
                 body: Optional[Dict[str, Any]] = None,
                 params: Optional[Dict[str, str]] = None,
                 allow_missing: bool = False) -> Optional[httpx.Response]:
        """
        Perform one REST call.

        Returns None for 404 when allow_missing is set.

        Raises:
            PublishError: Non-2xx response or transport failure; the remote
                message is kept verbatim
        """
        logger.debug(f"GeoServer {method} {path}")
        try:
            with self._client() as client:
                response = client.request(method, path, json=body, params=params)
                if allow_missing and response.status_code == 404:
                    return None
                response.raise_for_status()
                return response
        except httpx.HTTPStatusError as e:
            remote = e.response.text
            logger.error(f"❌ GeoServer {operation} failed: HTTP {e.response.status_code}: {remote}")
            raise PublishError(
                f"GeoServer {operation} failed with HTTP {e.response.status_code}: {remote}",
                status_code=e.response.status_code,
                remote_message=remote,
                operation=operation,
            ) from e
        except httpx.RequestError as e:
            logger.error(f"❌ GeoServer {operation} failed: {e}")
            raise PublishError(
                f"GeoServer {operation} failed: {e}",
                remote_message=str(e),
                operation=operation,
            ) from e

    @staticmethod
    def _feature_types_path(workspace: str, datastore: str) -> str:
        return f"/workspaces/{quote(workspace)}/datastores/{quote(datastore)}/featuretypes"

    # ------------------------------------------------------------------
    # Feature types
    # ------------------------------------------------------------------

    def create_feature_type(self, workspace: str, datastore: str, body: Dict[str, Any]) -> None:
        self._request("create", "POST", self._feature_types_path(workspace, datastore), body=body)
        logger.info(f"✅ Created feature type in {workspace}/{datastore}")

    def get_feature_type(self, workspace: str, datastore: str, name: str) -> Optional[Dict[str, Any]]:
        path = f"{self._feature_types_path(workspace, datastore)}/{quote(name)}.json"
        response = self._request("get", "GET", path, allow_missing=True)
        if response is None:
            return None
        return response.json()

    def update_feature_type(self, workspace: str, datastore: str, name: str, body: Dict[str, Any]) -> None:
        path = f"{self._feature_types_path(workspace, datastore)}/{quote(name)}"
        self._request("update", "PUT", path, body=body)
        logger.info(f"✅ Updated feature type {workspace}:{name}")

    def delete_layer(self, workspace: str, name: str) -> bool:
        response = self._request("unpublish", "DELETE", f"/layers/{quote(workspace)}:{quote(name)}", allow_missing=True)
        return response is not None

    def delete_feature_type(self, workspace: str, datastore: str, name: str) -> bool:
        path = f"{self._feature_types_path(workspace, datastore)}/{quote(name)}"
        response = self._request("unpublish", "DELETE", path, params={"recurse": "true"}, allow_missing=True)
        return response is not None

    # ------------------------------------------------------------------
    # Layers
    # ------------------------------------------------------------------

    def find_layer_datastore(self, workspace: str, name: str) -> Optional[str]:
        """
        Datastore behind a published layer.

        The layer's resource href has the form
        .../rest/workspaces/{ws}/datastores/{store}/featuretypes/{name}.json
        """
        response = self._request("lookup", "GET", f"/layers/{quote(workspace)}:{quote(name)}.json", allow_missing=True)
        if response is None:
            return None
        href = response.json().get("layer", {}).get("resource", {}).get("href", "")
        if "/datastores/" not in href:
            return None
        return href.split("/datastores/", 1)[1].split("/", 1)[0]

    def service_endpoints(self, workspace: str) -> Dict[str, str]:
        base = self._config.base_url
        return {
            "wms": (
                f"{base}/{workspace}/wms?service=WMS&version={GeoServerDefaults.WMS_VERSION}"
                f"&request=GetCapabilities"
            ),
            "wfs": (
                f"{base}/{workspace}/wfs?service=WFS&version={GeoServerDefaults.WFS_VERSION}"
                f"&request=GetCapabilities"
            ),
        }


__all__ = [
    'GeoServerClient',
]
