"""
Service Layer - orchestration over the pure core and the adaptors.

Explicit exports, no registration magic:

    QueryPipelineService      - caller-facing facade (compile/validate/run/publish/save/ask)
    GeometryInferenceService  - geometry column, type and SRID of a query
    ViewPublisher             - GeoServer SQL View publish/update/unpublish
    NaturalLanguageQueryService - NL to validated SQL

Imports are deferred like the infrastructure package so that importing a
service module does not pull in psycopg, httpx or shapely until used.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .query_service import QueryPipelineService as _QueryPipelineService
    from .geometry_inference import GeometryInferenceService as _GeometryInferenceService
    from .view_publisher import ViewPublisher as _ViewPublisher
    from .nl_query import NaturalLanguageQueryService as _NaturalLanguageQueryService


def __getattr__(name: str):
    if name == "QueryPipelineService":
        from .query_service import QueryPipelineService
        return QueryPipelineService
    elif name == "GeometryInferenceService":
        from .geometry_inference import GeometryInferenceService
        return GeometryInferenceService
    elif name == "ViewPublisher":
        from .view_publisher import ViewPublisher
        return ViewPublisher
    elif name == "NaturalLanguageQueryService":
        from .nl_query import NaturalLanguageQueryService
        return NaturalLanguageQueryService
    else:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "QueryPipelineService",
    "GeometryInferenceService",
    "ViewPublisher",
    "NaturalLanguageQueryService",
]
