"""
Query Pipeline Service - caller-facing facade.

Wires the pipeline together for one connection id:

    QueryDefinition -> SQLCompiler -> SQLValidator -> QueryExecutor
                                                   -> GeometryInferenceService -> ViewPublisher
    free text / NL candidate ------> SQLValidator -> ...

Every path to the database or to GeoServer goes through the validator; the
executor and publisher refuse anything that is not a ValidatedStatement.

Views use a second validator whose default LIMIT is the view limit, since
a SQL View is a layer rather than a result page. View SQL is compiled with
inline literals because GeoServer cannot bind parameters.

Exports:
    QueryPipelineService: Compile, validate, run, explain, infer, publish, save, ask
"""

from typing import Any, List, Optional, Sequence, Union

from config import get_config
from core.models import (
    CompiledStatement,
    ExecutionPlan,
    GeometryInfo,
    PublishResult,
    QueryDefinition,
    QueryResult,
    SavedQuery,
    ValidatedStatement,
    ValidationVerdict,
    ViewIdentity,
    ViewMetadata,
    PublishedView,
)
from core.models.nl import NLQueryResult, QueryRequest
from core.sql import SQLCompiler, SQLValidator
from exceptions import ResourceNotFoundError
from util_logger import LoggerFactory, ComponentType, log_exceptions


ViewSource = Union[QueryDefinition, CompiledStatement, str]


class QueryPipelineService:
    """
    Facade over the query pipeline for one connection.

    All collaborators are optional; defaults are built from get_config().
    Tests inject fakes for the I/O ones (executor, catalog, publisher,
    saved_queries, nl_service).
    """

    def __init__(self, connection_id: Optional[str] = None, connection_provider=None,
                 compiler: Optional[SQLCompiler] = None,
                 validator: Optional[SQLValidator] = None,
                 view_validator: Optional[SQLValidator] = None,
                 executor=None, catalog=None, inference=None, publisher=None,
                 saved_queries=None, nl_service=None):
        config = get_config()
        self.connection_id = connection_id or config.database.connection_id
        self.logger = LoggerFactory.create_logger(ComponentType.SERVICE, "QueryPipelineService")

        self.compiler = compiler or SQLCompiler()
        self.validator = validator or SQLValidator.from_config(config.query)
        self.view_validator = view_validator or SQLValidator.from_config(
            config.query,
            default_limit=config.query.view_default_limit,
            max_limit=max(config.query.max_limit, config.query.view_default_limit),
        )

        if executor is None:
            from infrastructure.query_executor import QueryExecutor
            executor = QueryExecutor(self.connection_id, connection_provider)
        self.executor = executor

        if catalog is None:
            from infrastructure.schema_catalog import SchemaCatalog
            catalog = SchemaCatalog(self.connection_id, connection_provider)
        self.catalog = catalog

        if inference is None:
            from .geometry_inference import GeometryInferenceService
            inference = GeometryInferenceService(
                catalog=self.catalog,
                validator=self.validator,
                executor=self.executor,
                probe_timeout=config.query.probe_timeout_seconds,
            )
        self.inference = inference

        if publisher is None:
            from infrastructure.geoserver_client import GeoServerClient
            from .view_publisher import ViewPublisher
            publisher = ViewPublisher(GeoServerClient(config.geoserver))
        self.publisher = publisher

        if saved_queries is None:
            from infrastructure.saved_query_repository import SavedQueryRepository
            saved_queries = SavedQueryRepository(self.connection_id, connection_provider)
        self.saved_queries = saved_queries

        self._nl_service = nl_service

    # ------------------------------------------------------------------
    # Compile / validate / run
    # ------------------------------------------------------------------

    def compile(self, definition: QueryDefinition) -> CompiledStatement:
        return self.compiler.compile(definition)

    def validate(self, sql_text: str, parameters: Optional[Sequence[Any]] = None,
                 allowed_schemas=None, allowed_tables=None) -> ValidationVerdict:
        return self.validator.validate(
            sql_text, parameters, allowed_schemas=allowed_schemas, allowed_tables=allowed_tables,
        )

    def approve(self, statement: CompiledStatement, **allow_lists) -> ValidatedStatement:
        return self.validator.approve(statement, **allow_lists)

    @log_exceptions(ComponentType.SERVICE, "QueryPipelineService")
    def run(self, definition: QueryDefinition, max_rows: Optional[int] = None,
            timeout: Optional[float] = None, cancel_token=None) -> QueryResult:
        """
        Compile, validate and execute a definition.

        Raises:
            MalformedQueryError, SQLRejectedError, and the executor's errors
        """
        statement = self.compiler.compile(definition)
        validated = self.validator.approve(statement)
        return self.execute(validated, max_rows=max_rows, timeout=timeout, cancel_token=cancel_token)

    @log_exceptions(ComponentType.SERVICE, "QueryPipelineService")
    def run_sql(self, sql_text: str, parameters: Optional[Sequence[Any]] = None,
                max_rows: Optional[int] = None, timeout: Optional[float] = None,
                cancel_token=None, **allow_lists) -> QueryResult:
        """Validate and execute hand-written SQL."""
        validated = self.validator.approve(CompiledStatement.from_text(sql_text, parameters), **allow_lists)
        return self.execute(validated, max_rows=max_rows, timeout=timeout, cancel_token=cancel_token)

    def execute(self, validated: ValidatedStatement, max_rows: Optional[int] = None,
                timeout: Optional[float] = None, cancel_token=None) -> QueryResult:
        return self.executor.execute(validated, max_rows=max_rows, timeout=timeout, cancel_token=cancel_token)

    def explain(self, source: Union[QueryDefinition, CompiledStatement, str],
                parameters: Optional[Sequence[Any]] = None, timeout: Optional[float] = None,
                **allow_lists) -> ExecutionPlan:
        """Validate, then return the planner estimate without running the statement."""
        if isinstance(source, QueryDefinition):
            statement = self.compiler.compile(source)
        elif isinstance(source, CompiledStatement):
            statement = source
        else:
            statement = CompiledStatement.from_text(source, parameters)
        validated = self.validator.approve(statement, **allow_lists)
        return self.executor.explain(validated, timeout=timeout)

    # ------------------------------------------------------------------
    # Geometry inference and SQL Views
    # ------------------------------------------------------------------

    def infer_geometry(self, target, cancel_token=None) -> GeometryInfo:
        """Infer from a definition, a statement or a sample row."""
        if isinstance(target, QueryDefinition):
            target = self.compiler.compile(target)
        return self.inference.infer(target, cancel_token=cancel_token)

    def prepare_view_statement(self, source: ViewSource) -> ValidatedStatement:
        """Validated, parameter-free statement suitable for a SQL View."""
        if isinstance(source, QueryDefinition):
            statement = self.compiler.compile_inline(source)
        elif isinstance(source, CompiledStatement):
            statement = source
        else:
            statement = CompiledStatement.from_text(source)
        return self.view_validator.approve(statement)

    def resolve_view_metadata(self, validated: ValidatedStatement,
                              metadata: Optional[ViewMetadata] = None, **options) -> ViewMetadata:
        """
        Explicit metadata wins; otherwise geometry is inferred.

        Raises:
            InferenceFailedError: No single geometry column and no metadata given
        """
        if metadata is not None:
            return metadata
        info = self.inference.infer(validated)
        return ViewMetadata(
            geometry_column=info.column,
            geometry_type=info.geometry_type,
            srid=info.srid,
            **options,
        )

    @log_exceptions(ComponentType.SERVICE, "QueryPipelineService")
    def publish(self, source: ViewSource, workspace: str, datastore: str, layer_name: str,
                metadata: Optional[ViewMetadata] = None, **options) -> PublishResult:
        """
        Publish a query as a SQL View layer.

        `options` are ViewMetadata fields (key_column, parameters, title,
        abstract, escape_sql) used when metadata is inferred.
        """
        validated = self.prepare_view_statement(source)
        metadata = self.resolve_view_metadata(validated, metadata, **options)
        view = PublishedView(
            connection_id=self.connection_id,
            workspace=workspace,
            datastore=datastore,
            layer_name=layer_name,
            sql=validated.sql,
            metadata=metadata,
        )
        return self.publisher.publish(view, validated)

    @log_exceptions(ComponentType.SERVICE, "QueryPipelineService")
    def update(self, workspace: str, layer_name: str, source: ViewSource,
               metadata: Optional[ViewMetadata] = None, datastore: Optional[str] = None,
               **options) -> PublishResult:
        validated = self.prepare_view_statement(source)
        metadata = self.resolve_view_metadata(validated, metadata, **options)
        return self.publisher.update(self._identity(workspace, layer_name), validated, metadata, datastore)

    @log_exceptions(ComponentType.SERVICE, "QueryPipelineService")
    def unpublish(self, workspace: str, layer_name: str, datastore: Optional[str] = None) -> None:
        self.publisher.unpublish(self._identity(workspace, layer_name), datastore)

    def _identity(self, workspace: str, layer_name: str) -> ViewIdentity:
        return ViewIdentity(connection_id=self.connection_id, workspace=workspace, layer_name=layer_name)

    # ------------------------------------------------------------------
    # Saved queries
    # ------------------------------------------------------------------

    @log_exceptions(ComponentType.SERVICE, "QueryPipelineService")
    def save(self, definition: QueryDefinition) -> SavedQuery:
        """Save a definition after checking that it compiles."""
        self.compiler.compile(definition)
        return self.saved_queries.save(definition)

    def list_saved(self, schema_filter: Optional[str] = None) -> List[SavedQuery]:
        return self.saved_queries.list(schema_filter)

    def get_saved(self, name: str, schema_name: Optional[str] = None,
                  table_name: Optional[str] = None) -> SavedQuery:
        saved = self.saved_queries.get(name, schema_name, table_name)
        if saved is None:
            raise ResourceNotFoundError(f"Saved query '{name}' not found")
        return saved

    def delete_saved(self, name: str, schema_name: Optional[str] = None,
                     table_name: Optional[str] = None) -> int:
        return self.saved_queries.delete(name, schema_name, table_name)

    def run_saved(self, name: str, schema_name: Optional[str] = None,
                  table_name: Optional[str] = None, **run_options) -> QueryResult:
        """Recompile a saved definition against the current schema and run it."""
        saved = self.get_saved(name, schema_name, table_name)
        return self.run(saved.definition, **run_options)

    # ------------------------------------------------------------------
    # Natural language
    # ------------------------------------------------------------------

    @property
    def nl_service(self):
        if self._nl_service is None:
            from infrastructure.ollama_provider import OllamaProvider
            from .nl_query import NaturalLanguageQueryService
            config = get_config().nl_provider
            self._nl_service = NaturalLanguageQueryService(
                OllamaProvider(config),
                self.validator,
                catalog=self.catalog,
                min_confidence=config.min_confidence,
            )
        return self._nl_service

    def ask(self, question: Union[str, QueryRequest]) -> NLQueryResult:
        """Generate and validate SQL for a question. Nothing is executed."""
        request = question if isinstance(question, QueryRequest) else QueryRequest(
            question=question, connection_id=self.connection_id,
        )
        result = self.nl_service.ask(request)
        self.logger.info(f"NL candidate {'accepted' if result.accepted else 'not accepted'}")
        return result


__all__ = [
    'QueryPipelineService',
]
