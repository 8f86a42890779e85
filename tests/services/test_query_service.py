"""
Query pipeline facade tests with every I/O collaborator faked.
"""

from unittest.mock import MagicMock

import pytest
import shapely
from shapely.geometry import Point

from core.models import (
    CompiledStatement,
    GeometryType,
    QueryDefinition,
    SavedQuery,
    ValidatedStatement,
    ViewMetadata,
)
from core.models.nl import NLQueryResult, QueryRequest
from exceptions import InferenceFailedError, MalformedQueryError, ResourceNotFoundError, SQLRejectedError
from services.geometry_inference import GeometryInferenceService
from services.query_service import QueryPipelineService
from services.view_publisher import ViewPublisher
from tests.factories.model_factories import make_query_definition
from tests.factories.service_fakes import FakeExecutor, InMemorySavedQueryRepository


def _point_hex():
    return shapely.to_wkb(shapely.set_srid(Point(2.35, 48.85), 4326), hex=True, include_srid=True)


@pytest.fixture
def executor():
    return FakeExecutor(rows=[{"id": 1, "name": "Paris", "geom": _point_hex()}])


@pytest.fixture
def saved_queries():
    return MagicMock(name="saved_queries")


@pytest.fixture
def pipeline(executor, countries_catalog, geoserver, saved_queries):
    service = QueryPipelineService(
        connection_id="default",
        executor=executor,
        catalog=countries_catalog,
        publisher=ViewPublisher(geoserver),
        saved_queries=saved_queries,
        nl_service=MagicMock(name="nl_service"),
    )
    return service


class TestRun:
    def test_run_compiles_validates_and_executes(self, pipeline, executor):
        result = pipeline.run(QueryDefinition(table="countries", columns=["id", "name"]))

        statement = executor.calls[0]["statement"]
        assert isinstance(statement, ValidatedStatement)
        assert statement.sql == 'SELECT "id", "name" FROM "public"."countries" LIMIT 100'
        assert result.row_count == 1

    def test_malformed_definition_never_executes(self, pipeline, executor):
        with pytest.raises(MalformedQueryError):
            pipeline.run(QueryDefinition(table="countries", columns=["name", {"source_column": "pop", "aggregate": "SUM"}]))
        assert executor.calls == []

    def test_run_sql_rejects_writes(self, pipeline, executor):
        with pytest.raises(SQLRejectedError):
            pipeline.run_sql("DELETE FROM countries")
        assert executor.calls == []

    def test_run_sql_passes_bounds(self, pipeline, executor):
        pipeline.run_sql("SELECT * FROM countries LIMIT 5", max_rows=3, timeout=1.5)
        assert executor.calls[0]["max_rows"] == 3
        assert executor.calls[0]["timeout"] == 1.5


class TestPublish:
    def test_publish_definition_with_static_inference(self, pipeline, geoserver):
        definition = QueryDefinition(
            table="countries",
            columns=["id", "name", "geom"],
            conditions=[{"column": "name", "operator": "ILIKE", "value": "fr%"}],
        )
        result = pipeline.publish(definition, "analytics", "postgis", "fr_countries", key_column="id")

        assert result.layer_name == "fr_countries"
        body = geoserver.feature_types[("analytics", "postgis", "fr_countries")]["featureType"]
        table = body["metadata"]["entry"][0]["virtualTable"]
        assert table["sql"] == (
            'SELECT "id", "name", "geom" FROM "public"."countries" WHERE "name" ILIKE \'fr%\' LIMIT 10000'
        )
        assert table["geometry"] == {"name": "geom", "type": "MultiPolygon", "srid": 4326}
        assert table["keyColumn"] == "id"

    def test_publish_sql_with_dynamic_inference(self, pipeline, geoserver, executor):
        pipeline.publish("SELECT id, name, geom FROM places", "analytics", "postgis", "places")

        table = geoserver.feature_types[("analytics", "postgis", "places")]["featureType"]["metadata"]["entry"][0]
        assert table["virtualTable"]["geometry"] == {"name": "geom", "type": "Point", "srid": 4326}
        assert executor.calls[0]["statement"].sql.endswith("AS _probe LIMIT 1")

    def test_explicit_metadata_skips_inference(self, pipeline, executor):
        metadata = ViewMetadata(geometry_column="geom", geometry_type=GeometryType.POINT, srid=4326)
        pipeline.publish("SELECT * FROM places", "analytics", "postgis", "places", metadata=metadata)
        assert executor.calls == []

    def test_inference_failure_blocks_publish(self, countries_catalog, geoserver):
        pipeline = QueryPipelineService(
            executor=FakeExecutor(rows=[]),
            catalog=countries_catalog,
            inference=GeometryInferenceService(catalog=countries_catalog),
            publisher=ViewPublisher(geoserver),
            saved_queries=MagicMock(),
        )
        with pytest.raises(InferenceFailedError):
            pipeline.publish(QueryDefinition(table="countries", columns=["id", "name"]), "analytics", "postgis", "x")
        assert geoserver.feature_types == {}

    def test_rejected_sql_never_published(self, pipeline, geoserver):
        with pytest.raises(SQLRejectedError):
            pipeline.publish("SELECT * FROM t; DROP TABLE t", "analytics", "postgis", "x")
        assert geoserver.calls == []

    def test_update_and_unpublish(self, pipeline, geoserver):
        definition = QueryDefinition(table="countries", columns=["id", "geom"])
        pipeline.publish(definition, "analytics", "postgis", "countries_view")

        result = pipeline.update("analytics", "countries_view", definition)
        assert result.changed is False

        pipeline.unpublish("analytics", "countries_view")
        assert geoserver.feature_types == {}


class TestSavedQueries:
    def test_save_checks_definition_compiles(self, pipeline, saved_queries):
        with pytest.raises(MalformedQueryError):
            pipeline.save(QueryDefinition(name="bad", table="countries", columns=["bad column"]))
        saved_queries.save.assert_not_called()

    def test_run_saved_recompiles(self, pipeline, saved_queries, executor):
        definition = QueryDefinition.model_validate(make_query_definition(table="countries"))
        saved_queries.get.return_value = SavedQuery(
            connection_id="default", schema_name="public", table_name="countries",
            name=definition.name, definition=definition,
        )
        pipeline.run_saved(definition.name)
        assert executor.calls[0]["statement"].statement == pipeline.compile(definition)

    def test_missing_saved_query(self, pipeline, saved_queries):
        saved_queries.get.return_value = None
        with pytest.raises(ResourceNotFoundError):
            pipeline.get_saved("nothing")


class TestExplain:
    def test_explain_validates_before_planning(self, pipeline, executor):
        plan = pipeline.explain(QueryDefinition(table="countries", columns=["id", "name"]))

        call = executor.calls[0]
        assert call["explain"] is True
        assert isinstance(call["statement"], ValidatedStatement)
        assert plan.sql == 'SELECT "id", "name" FROM "public"."countries" LIMIT 100'

    def test_explain_rejects_writes(self, pipeline, executor):
        with pytest.raises(SQLRejectedError):
            pipeline.explain("DELETE FROM countries")
        assert executor.calls == []


class TestSavedQueryRoundTrip:
    @pytest.fixture
    def repository(self):
        return InMemorySavedQueryRepository(connection_id="default")

    @pytest.fixture
    def roundtrip_pipeline(self, executor, countries_catalog, geoserver, repository):
        return QueryPipelineService(
            connection_id="default", executor=executor, catalog=countries_catalog,
            publisher=ViewPublisher(geoserver), saved_queries=repository,
        )

    def test_save_list_run_delete(self, roundtrip_pipeline, repository, executor):
        first = QueryDefinition.model_validate(make_query_definition(table="countries"))
        second = QueryDefinition.model_validate(make_query_definition(table="cities"))

        assert roundtrip_pipeline.save(first).version == 1
        roundtrip_pipeline.save(second)
        assert roundtrip_pipeline.save(first).version == 2

        listed = roundtrip_pipeline.list_saved()
        assert [(s.table_name, s.name) for s in listed] == [("cities", second.name), ("countries", first.name)]

        roundtrip_pipeline.run_saved(first.name)
        assert executor.calls[0]["statement"].statement == roundtrip_pipeline.compile(first)

        assert roundtrip_pipeline.delete_saved(first.name) == 1
        assert [s.name for s in roundtrip_pipeline.list_saved()] == [second.name]
        with pytest.raises(ResourceNotFoundError):
            roundtrip_pipeline.get_saved(first.name)

    def test_same_name_on_two_tables(self, roundtrip_pipeline):
        data = make_query_definition(table="countries")
        roundtrip_pipeline.save(QueryDefinition.model_validate(data))
        roundtrip_pipeline.save(QueryDefinition.model_validate({**data, "table": "cities"}))

        narrowed = roundtrip_pipeline.get_saved(data["name"], schema_name="public", table_name="countries")
        assert narrowed.table_name == "countries"
        assert roundtrip_pipeline.get_saved(data["name"]).table_name == "cities"
        assert roundtrip_pipeline.delete_saved(data["name"]) == 2


class TestAsk:
    def test_string_question_wrapped(self, pipeline):
        pipeline.nl_service.ask.return_value = MagicMock(spec=NLQueryResult, accepted=False)
        pipeline.ask("how many countries?")

        request = pipeline.nl_service.ask.call_args.args[0]
        assert isinstance(request, QueryRequest)
        assert request.question == "how many countries?"
        assert request.connection_id == "default"


class TestViewStatement:
    def test_view_statement_is_parameter_free(self, pipeline):
        validated = pipeline.prepare_view_statement(
            QueryDefinition(table="countries", conditions=[{"column": "id", "operator": ">", "value": 10}])
        )
        assert validated.parameters == ()
        assert validated.sql.endswith('WHERE "id" > 10 LIMIT 10000')

    def test_compiled_statement_source(self, pipeline):
        validated = pipeline.prepare_view_statement(CompiledStatement.from_text("SELECT * FROM countries LIMIT 5"))
        assert validated.sql == "SELECT * FROM countries LIMIT 5"

    def test_view_sql_has_no_terminator(self, pipeline):
        validated = pipeline.prepare_view_statement("SELECT id, geom FROM public.roads LIMIT 50;")
        assert validated.sql == "SELECT id, geom FROM public.roads LIMIT 50"
        assert validated.is_consistent()
