"""
View Publisher - SQL Views on GeoServer.

Registers a validated query as a GeoServer feature type backed by a
JDBC_VIRTUAL_TABLE, so the query becomes a WMS/WFS layer without
materialising a table. The publisher trusts its input: it only accepts a
ValidatedStatement whose text matches the view's SQL and does not
re-validate.

publish, update and unpublish for one (connection_id, workspace,
layer_name) are serialised with a per-identity lock; different identities
proceed concurrently. Nothing is retried and remote failures surface as
PublishError with the remote message attached.

Exports:
    ViewPublisher: Publish/update/unpublish SQL Views
    build_virtual_table: JDBC_VIRTUAL_TABLE entry for a view
    build_feature_type: featureType request body for a view
"""

import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

from core.models import (
    PublishedView,
    PublishResult,
    ValidatedStatement,
    ViewIdentity,
    ViewMetadata,
)
from exceptions import ContractViolationError, ResourceNotFoundError, UnvalidatedStatementError
from infrastructure.interface_repository import IGeoServerClient, ParamNames
from util_logger import LoggerFactory, ComponentType, log_exceptions


def build_virtual_table(view: PublishedView) -> Dict[str, Any]:
    metadata = view.metadata
    table: Dict[str, Any] = {
        ParamNames.NAME: view.layer_name,
        ParamNames.SQL: view.sql,
        ParamNames.ESCAPE_SQL: metadata.escape_sql,
        ParamNames.GEOMETRY: {
            "name": metadata.geometry_column,
            "type": metadata.geometry_type.value,
            "srid": metadata.srid,
        },
    }
    if metadata.key_column:
        table[ParamNames.KEY_COLUMN] = metadata.key_column
    if metadata.parameters:
        parameters = []
        for parameter in metadata.parameters:
            entry = {ParamNames.NAME: parameter.name}
            if parameter.default_value is not None:
                entry[ParamNames.DEFAULT_VALUE] = parameter.default_value
            entry[ParamNames.REGEXP_VALIDATOR] = parameter.effective_validator
            parameters.append(entry)
        table[ParamNames.PARAMETER] = parameters
    return table


def build_feature_type(view: PublishedView) -> Dict[str, Any]:
    metadata = view.metadata
    feature_type = {
        "name": view.layer_name,
        "nativeName": view.layer_name,
        "title": metadata.title or view.layer_name,
        "enabled": True,
        "advertised": True,
        "metadata": {
            "entry": [{
                "@key": ParamNames.VIRTUAL_TABLE_KEY,
                ParamNames.VIRTUAL_TABLE: build_virtual_table(view),
            }],
        },
    }
    if metadata.abstract:
        feature_type["abstract"] = metadata.abstract
    return {"featureType": feature_type}


def _as_list(value) -> List[Any]:
    # GeoServer collapses single-element arrays into objects in its JSON output
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _current_virtual_table(feature_type: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    body = feature_type.get("featureType", feature_type)
    entries = (body.get("metadata") or {}).get("entry")
    for entry in _as_list(entries):
        if isinstance(entry, dict) and entry.get("@key") == ParamNames.VIRTUAL_TABLE_KEY:
            return entry.get(ParamNames.VIRTUAL_TABLE)
    return None


def _comparable(feature_type: Dict[str, Any]) -> Optional[Tuple]:
    """Normalised view of what update would change; None if not a SQL View."""
    body = feature_type.get("featureType", feature_type)
    table = _current_virtual_table(feature_type)
    if table is None:
        return None

    geometry = _as_list(table.get(ParamNames.GEOMETRY))
    geometry = geometry[0] if geometry else {}
    parameters = tuple(sorted(
        (
            str(p.get(ParamNames.NAME)),
            None if p.get(ParamNames.DEFAULT_VALUE) is None else str(p.get(ParamNames.DEFAULT_VALUE)),
            p.get(ParamNames.REGEXP_VALIDATOR),
        )
        for p in _as_list(table.get(ParamNames.PARAMETER))
    ))
    srid = geometry.get("srid")
    return (
        (table.get(ParamNames.SQL) or "").strip(),
        _as_bool(table.get(ParamNames.ESCAPE_SQL, False)),
        table.get(ParamNames.KEY_COLUMN),
        geometry.get("name"),
        geometry.get("type"),
        None if srid is None else int(srid),
        parameters,
        body.get("title"),
        body.get("abstract"),
    )


class _LayerLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class ViewPublisher:
    """
    Args:
        client: GeoServer REST client (IGeoServerClient)
    """

    def __init__(self, client: IGeoServerClient):
        self.client = client
        self._locks: Dict[Tuple[str, str, str], _LayerLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _locked(self, identity: ViewIdentity):
        """Serialise operations on one layer. The entry is dropped once no caller holds or waits on it."""
        key = (identity.connection_id, identity.workspace, identity.layer_name)
        with self._locks_guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _LayerLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[key]

    def _logger_for(self, identity: ViewIdentity):
        return LoggerFactory.create_with_context(
            ComponentType.SERVICE, "ViewPublisher",
            connection_id=identity.connection_id,
            layer_name=identity.qualified_name,
        )

    @staticmethod
    def _check_statement(statement: ValidatedStatement, sql_text: Optional[str] = None) -> None:
        if not isinstance(statement, ValidatedStatement) or not statement.is_consistent():
            raise UnvalidatedStatementError("SQL Views can only be published from a validated statement")
        if sql_text is not None and statement.sql != sql_text:
            raise UnvalidatedStatementError("View SQL differs from the validated statement")
        if statement.parameters:
            raise ContractViolationError(
                "SQL Views cannot carry bound parameters; compile with inline literals"
            )

    def _result(self, identity: ViewIdentity, changed: bool = True) -> PublishResult:
        endpoints = self.client.service_endpoints(identity.workspace)
        return PublishResult(
            workspace=identity.workspace,
            layer_name=identity.layer_name,
            wms_endpoint=endpoints["wms"],
            wfs_endpoint=endpoints["wfs"],
            changed=changed,
        )

    @log_exceptions(ComponentType.SERVICE, "ViewPublisher")
    def publish(self, view: PublishedView, statement: ValidatedStatement) -> PublishResult:
        """
        Create the SQL View, or replace it when the layer already exists.

        Raises:
            UnvalidatedStatementError: statement does not vouch for view.sql
            PublishError: GeoServer rejected the request
        """
        self._check_statement(statement, view.sql)
        identity = view.identity
        body = build_feature_type(view)
        log = self._logger_for(identity)

        with self._locked(identity):
            existing = self.client.get_feature_type(view.workspace, view.datastore, view.layer_name)
            if existing is None:
                self.client.create_feature_type(view.workspace, view.datastore, body)
                log.info(f"✅ Published SQL View {identity.qualified_name}")
            else:
                self.client.update_feature_type(view.workspace, view.datastore, view.layer_name, body)
                log.info(f"✅ Replaced existing SQL View {identity.qualified_name}")

        return self._result(identity)

    @log_exceptions(ComponentType.SERVICE, "ViewPublisher")
    def update(self, identity: ViewIdentity, statement: ValidatedStatement,
               metadata: ViewMetadata, datastore: Optional[str] = None) -> PublishResult:
        """
        Replace the SQL and metadata of a published view in place.

        Idempotent: when GeoServer already holds the same SQL and metadata
        no PUT is sent and the result has changed=False.

        Raises:
            ResourceNotFoundError: No such layer
            PublishError: GeoServer rejected the request
        """
        self._check_statement(statement)
        log = self._logger_for(identity)

        with self._locked(identity):
            datastore = datastore or self.client.find_layer_datastore(identity.workspace, identity.layer_name)
            if datastore is None:
                raise ResourceNotFoundError(f"Layer {identity.qualified_name} is not published")

            view = PublishedView(
                connection_id=identity.connection_id,
                workspace=identity.workspace,
                datastore=datastore,
                layer_name=identity.layer_name,
                sql=statement.sql,
                metadata=metadata,
            )
            current = self.client.get_feature_type(identity.workspace, datastore, identity.layer_name)
            if current is None:
                raise ResourceNotFoundError(f"Feature type {identity.qualified_name} not found in {datastore}")

            body = build_feature_type(view)
            if _comparable(current) == _comparable(body):
                log.info(f"SQL View {identity.qualified_name} unchanged; update skipped")
                return self._result(identity, changed=False)

            self.client.update_feature_type(identity.workspace, datastore, identity.layer_name, body)
            log.info(f"✅ Updated SQL View {identity.qualified_name}")

        return self._result(identity)

    @log_exceptions(ComponentType.SERVICE, "ViewPublisher")
    def unpublish(self, identity: ViewIdentity, datastore: Optional[str] = None) -> None:
        """
        Remove the layer and its feature type.

        Raises:
            ResourceNotFoundError: No such layer
            PublishError: GeoServer rejected the request
        """
        log = self._logger_for(identity)
        with self._locked(identity):
            datastore = datastore or self.client.find_layer_datastore(identity.workspace, identity.layer_name)
            if datastore is None:
                raise ResourceNotFoundError(f"Layer {identity.qualified_name} is not published")

            layer_removed = self.client.delete_layer(identity.workspace, identity.layer_name)
            type_removed = self.client.delete_feature_type(identity.workspace, datastore, identity.layer_name)
            if not (layer_removed or type_removed):
                raise ResourceNotFoundError(f"Layer {identity.qualified_name} is not published")

        log.info(f"✅ Unpublished SQL View {identity.qualified_name}")


__all__ = [
    'ViewPublisher',
    'build_virtual_table',
    'build_feature_type',
]
