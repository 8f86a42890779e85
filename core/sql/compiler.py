"""
SQL Compiler - Query Definition to parameterised SQL.

Pure and deterministic: the same definition always yields byte-identical
SQL text and the same parameter order. No I/O, no shared state.

Clause order:
    SELECT [DISTINCT] -> FROM -> JOIN* -> WHERE -> GROUP BY -> ORDER BY -> LIMIT/OFFSET

Composition uses psycopg.sql so identifiers are always quoted and user
values become %s placeholders. `compile_inline` renders values as SQL
literals instead, for GeoServer SQL Views which cannot take bound
parameters. GeoServer expands `%name%` in view SQL as a view parameter,
so an inlined string containing that shape is refused.

Conditions fold strictly left to right. When the connective changes, the
accumulated prefix is parenthesised so SQL precedence cannot reorder it:

    a OR b AND c   ->   (a OR b) AND c

Exports:
    SQLCompiler: Compiler class
    compile_query: Module-level convenience
"""

import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from psycopg import sql

from exceptions import MalformedQueryError
from util_logger import LoggerFactory, ComponentType
from core.models.enums import (
    AggregateFunction,
    ConditionOperator,
    JoinType,
    NullsPosition,
)
from core.models.query_definition import (
    ColumnSpec,
    ConditionSpec,
    JoinSpec,
    QueryDefinition,
)
from core.models.statement import CompiledStatement, OutputColumn
from .identifiers import column_reference, identifier, qualified_name, split_reference


# Exhaustive: a test asserts every AggregateFunction member is present
AGGREGATE_TEMPLATES: Dict[AggregateFunction, str] = {
    AggregateFunction.NONE: "{}",
    AggregateFunction.COUNT: "COUNT({})",
    AggregateFunction.SUM: "SUM({})",
    AggregateFunction.AVG: "AVG({})",
    AggregateFunction.MIN: "MIN({})",
    AggregateFunction.MAX: "MAX({})",
    AggregateFunction.ST_EXTENT: "ST_Extent({})",
    AggregateFunction.ST_UNION: "ST_Union({})",
    AggregateFunction.ST_COLLECT: "ST_Collect({})",
}

JOIN_KEYWORDS: Dict[JoinType, str] = {
    JoinType.INNER: "INNER JOIN",
    JoinType.LEFT: "LEFT JOIN",
    JoinType.RIGHT: "RIGHT JOIN",
    JoinType.FULL_OUTER: "FULL OUTER JOIN",
    JoinType.CROSS: "CROSS JOIN",
}

JOIN_OPERATORS = frozenset({"=", "!=", "<>", "<", "<=", ">", ">="})

_COMPARISON_OPERATORS = frozenset({
    ConditionOperator.EQ, ConditionOperator.NE,
    ConditionOperator.LT, ConditionOperator.LE,
    ConditionOperator.GT, ConditionOperator.GE,
    ConditionOperator.LIKE, ConditionOperator.ILIKE,
    ConditionOperator.NOT_LIKE, ConditionOperator.NOT_ILIKE,
})

_SPATIAL_BINARY_OPERATORS = frozenset({
    ConditionOperator.ST_INTERSECTS, ConditionOperator.ST_CONTAINS,
    ConditionOperator.ST_WITHIN, ConditionOperator.ST_EQUALS,
    ConditionOperator.ST_TOUCHES, ConditionOperator.ST_OVERLAPS,
    ConditionOperator.ST_CROSSES,
})


# GeoServer SQL View parameter reference
_VIEW_PARAMETER = re.compile(r"%\w+%")


class _Render:
    """Per-call rendering state: collected parameters and the value mode."""

    def __init__(self, inline: bool):
        self.inline = inline
        self.parameters: List[Any] = []

    def value(self, value: Any) -> sql.Composable:
        if self.inline:
            if isinstance(value, str) and _VIEW_PARAMETER.search(value):
                raise MalformedQueryError(
                    f"Value {value!r} would be read as a SQL View parameter when inlined",
                    details={"value": value},
                )
            return sql.Literal(value)
        self.parameters.append(value)
        return sql.Placeholder()


class SQLCompiler:
    """
    Translates a QueryDefinition into a CompiledStatement.

    Raises MalformedQueryError for structural violations before any SQL
    is emitted.
    """

    def __init__(self):
        self.logger = LoggerFactory.create_logger(ComponentType.COMPILER, "SQLCompiler")
        self._condition_renderers: Dict[ConditionOperator, Callable] = {}
        for op in _COMPARISON_OPERATORS:
            self._condition_renderers[op] = self._render_comparison
        for op in _SPATIAL_BINARY_OPERATORS:
            self._condition_renderers[op] = self._render_spatial
        self._condition_renderers.update({
            ConditionOperator.IS_NULL: self._render_null_check,
            ConditionOperator.IS_NOT_NULL: self._render_null_check,
            ConditionOperator.IN: self._render_membership,
            ConditionOperator.NOT_IN: self._render_membership,
            ConditionOperator.BETWEEN: self._render_between,
            ConditionOperator.ST_DWITHIN: self._render_dwithin,
        })

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def compile(self, definition: QueryDefinition) -> CompiledStatement:
        """Compile with bound parameters."""
        return self._compile(definition, inline=False)

    def compile_inline(self, definition: QueryDefinition) -> CompiledStatement:
        """Compile with values rendered as SQL literals (no parameters)."""
        return self._compile(definition, inline=True)

    # ------------------------------------------------------------------
    # Clauses
    # ------------------------------------------------------------------

    def _compile(self, definition: QueryDefinition, inline: bool) -> CompiledStatement:
        if not isinstance(definition, QueryDefinition):
            raise MalformedQueryError(
                f"Expected QueryDefinition, got {type(definition).__name__}"
            )

        self._check_aggregates(definition)

        render = _Render(inline)
        clauses: List[sql.Composable] = [
            self._select_clause(definition),
            sql.SQL("FROM {}").format(qualified_name(definition.schema_name, definition.table)),
        ]
        clauses.extend(self._join_clause(join) for join in definition.joins)

        if definition.conditions:
            clauses.append(sql.SQL("WHERE {}").format(self._where_expression(definition.conditions, render)))

        if definition.group_by:
            clauses.append(sql.SQL("GROUP BY {}").format(
                sql.SQL(", ").join(column_reference(ref) for ref in definition.group_by)
            ))

        if definition.order_by:
            clauses.append(sql.SQL("ORDER BY {}").format(
                sql.SQL(", ").join(self._order_item(item) for item in definition.order_by)
            ))

        if definition.limit is not None:
            clauses.append(sql.SQL("LIMIT {}").format(sql.SQL(str(int(definition.limit)))))
        if definition.offset > 0:
            clauses.append(sql.SQL("OFFSET {}").format(sql.SQL(str(int(definition.offset)))))

        text = sql.SQL(" ").join(clauses).as_string(None)

        statement = CompiledStatement(
            sql=text,
            parameters=tuple(render.parameters),
            output_columns=self._output_columns(definition),
            relations=self._relations(definition),
        )
        self.logger.debug(
            f"Compiled {definition.schema_name}.{definition.table}: "
            f"{len(statement.parameters)} parameters, inline={inline}"
        )
        return statement

    def _check_aggregates(self, definition: QueryDefinition) -> None:
        """Aggregated columns may only be mixed with grouped columns."""
        if not definition.has_aggregates:
            return

        grouped = set(definition.group_by)
        ungrouped = []
        for column in definition.columns:
            if column.aggregate.is_aggregate:
                continue
            names = {column.reference, column.source_column}
            if column.alias:
                names.add(column.alias)
            if column.source_column == "*" or not (names & grouped):
                ungrouped.append(column.reference)

        if ungrouped:
            raise MalformedQueryError(
                "Columns must be aggregated or listed in group_by when aggregates are used: "
                + ", ".join(ungrouped),
                details={"ungrouped_columns": ungrouped},
            )

    def _select_clause(self, definition: QueryDefinition) -> sql.Composable:
        keyword = sql.SQL("SELECT DISTINCT") if definition.distinct else sql.SQL("SELECT")
        if not definition.columns:
            return sql.SQL("{} *").format(keyword)
        return sql.SQL("{} {}").format(
            keyword,
            sql.SQL(", ").join(self._select_item(column) for column in definition.columns),
        )

    def _select_item(self, column: ColumnSpec) -> sql.Composable:
        if column.source_column == "*" and column.aggregate not in (AggregateFunction.NONE, AggregateFunction.COUNT):
            raise MalformedQueryError(
                f"{column.aggregate.value} cannot be applied to *",
                details={"aggregate": column.aggregate.value},
            )

        expression = column_reference(column.source_column, qualifier=column.table_alias)
        item = sql.SQL(AGGREGATE_TEMPLATES[column.aggregate]).format(expression)
        if column.alias:
            item = sql.SQL("{} AS {}").format(item, identifier(column.alias, "alias"))
        return item

    def _join_clause(self, join: JoinSpec) -> sql.Composable:
        parts = [sql.SQL(JOIN_KEYWORDS[join.join_type]), qualified_name(join.schema_name, join.table)]
        if join.alias:
            parts.append(sql.SQL("AS {}").format(identifier(join.alias, "alias")))

        if join.join_type is JoinType.CROSS:
            if join.left_expr or join.right_expr:
                raise MalformedQueryError(
                    f"CROSS JOIN {join.table} takes no ON expressions",
                    details={"table": join.table},
                )
        else:
            if not join.left_expr or not join.right_expr:
                raise MalformedQueryError(
                    f"{JOIN_KEYWORDS[join.join_type]} {join.table} needs left_expr and right_expr",
                    details={"table": join.table},
                )
            operator = join.operator or "="
            if operator not in JOIN_OPERATORS:
                raise MalformedQueryError(
                    f"Unsupported join operator '{operator}'",
                    details={"operator": operator},
                )
            parts.append(sql.SQL("ON {} {} {}").format(
                column_reference(join.left_expr),
                sql.SQL(operator),
                column_reference(join.right_expr),
            ))
        return sql.SQL(" ").join(parts)

    def _where_expression(self, conditions, render: _Render) -> sql.Composable:
        expression = None
        previous = None
        for index, condition in enumerate(conditions):
            rendered = self._condition(condition, render)
            if index == 0:
                expression = rendered
                continue
            if previous is not None and condition.connective is not previous:
                expression = sql.SQL("({})").format(expression)
            expression = sql.SQL("{} {} {}").format(expression, sql.SQL(condition.connective.value), rendered)
            previous = condition.connective
        return expression

    def _order_item(self, item) -> sql.Composable:
        rendered = sql.SQL("{} {}").format(column_reference(item.column), sql.SQL(item.direction.value))
        if item.nulls is not NullsPosition.DEFAULT:
            rendered = sql.SQL("{} NULLS {}").format(rendered, sql.SQL(item.nulls.value))
        return rendered

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def _condition(self, condition: ConditionSpec, render: _Render) -> sql.Composable:
        renderer = self._condition_renderers[condition.operator]
        rendered = renderer(condition, column_reference(condition.column), render)
        if condition.negate:
            rendered = sql.SQL("NOT ({})").format(rendered)
        return rendered

    def _rhs(self, condition: ConditionSpec, value: Any, render: _Render) -> sql.Composable:
        if condition.value_is_column:
            if not isinstance(value, str):
                raise MalformedQueryError(
                    f"Column comparison on '{condition.column}' needs a column name",
                    details={"column": condition.column},
                )
            return column_reference(value)
        return render.value(value)

    def _render_comparison(self, condition, column, render):
        if condition.value is None and not condition.value_is_column:
            raise MalformedQueryError(
                f"Condition on '{condition.column}' compares with NULL; use IS NULL / IS NOT NULL",
                details={"column": condition.column, "operator": condition.operator.value},
            )
        return sql.SQL("{} {} {}").format(
            column, sql.SQL(condition.operator.value), self._rhs(condition, condition.value, render)
        )

    def _render_null_check(self, condition, column, render):
        return sql.SQL("{} {}").format(column, sql.SQL(condition.operator.value))

    def _render_membership(self, condition, column, render):
        values = self._sequence(condition)
        if not values:
            raise MalformedQueryError(
                f"{condition.operator.value} on '{condition.column}' needs at least one value",
                details={"column": condition.column},
            )
        return sql.SQL("{} {} ({})").format(
            column,
            sql.SQL(condition.operator.value),
            sql.SQL(", ").join(render.value(v) for v in values),
        )

    def _render_between(self, condition, column, render):
        values = self._sequence(condition)
        if len(values) != 2:
            raise MalformedQueryError(
                f"BETWEEN on '{condition.column}' needs exactly two values",
                details={"column": condition.column, "received": len(values)},
            )
        return sql.SQL("{} BETWEEN {} AND {}").format(column, render.value(values[0]), render.value(values[1]))

    def _render_spatial(self, condition, column, render):
        return sql.SQL("{}({}, {})").format(
            sql.SQL(condition.operator.value), column, self._geometry(condition, condition.value, render)
        )

    def _render_dwithin(self, condition, column, render):
        values = self._sequence(condition)
        if len(values) != 2:
            raise MalformedQueryError(
                f"ST_DWithin on '{condition.column}' needs [geometry, distance]",
                details={"column": condition.column},
            )
        geometry, distance = values
        if isinstance(distance, bool) or not isinstance(distance, (int, float)):
            raise MalformedQueryError(
                f"ST_DWithin distance must be numeric, got {distance!r}",
                details={"column": condition.column},
            )
        return sql.SQL("ST_DWithin({}, {}, {})").format(
            column, self._geometry(condition, geometry, render), render.value(distance)
        )

    def _geometry(self, condition: ConditionSpec, value: Any, render: _Render) -> sql.Composable:
        if condition.value_is_column:
            return self._rhs(condition, value, render)
        if not isinstance(value, str) or not value.strip():
            raise MalformedQueryError(
                f"Spatial condition on '{condition.column}' needs a WKT or EWKT geometry",
                details={"column": condition.column},
            )
        if condition.srid is not None:
            return sql.SQL("ST_GeomFromText({}, {})").format(render.value(value), render.value(condition.srid))
        return sql.SQL("ST_GeomFromEWKT({})").format(render.value(value))

    @staticmethod
    def _sequence(condition: ConditionSpec) -> Tuple[Any, ...]:
        value = condition.value
        if value is None:
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(value)
        raise MalformedQueryError(
            f"{condition.operator.value} on '{condition.column}' needs a list value",
            details={"column": condition.column},
        )

    # ------------------------------------------------------------------
    # Metadata for geometry inference
    # ------------------------------------------------------------------

    @staticmethod
    def _relations(definition: QueryDefinition) -> Tuple[Tuple[str, str], ...]:
        relations = [(definition.schema_name.strip('"'), definition.table.strip('"'))]
        relations.extend((j.schema_name.strip('"'), j.table.strip('"')) for j in definition.joins)
        return tuple(relations)

    @staticmethod
    def _resolve_relation(definition: QueryDefinition, qualifier: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        """Map a column qualifier to (schema, table). Unqualified columns resolve to the base table."""
        base = (definition.schema_name.strip('"'), definition.table.strip('"'))
        if not qualifier or qualifier.strip('"') == base[1]:
            return base
        name = qualifier.strip('"')
        for join in definition.joins:
            if (join.alias and join.alias.strip('"') == name) or join.table.strip('"') == name:
                return join.schema_name.strip('"'), join.table.strip('"')
        return None, None

    def _output_columns(self, definition: QueryDefinition) -> Tuple[OutputColumn, ...]:
        outputs = []
        for column in definition.columns:
            parts = split_reference(column.source_column)
            qualifier = column.table_alias or (parts[-2] if len(parts) >= 2 else None)
            schema_name, table_name = self._resolve_relation(definition, qualifier)
            source = None if parts[-1] == "*" else parts[-1]
            outputs.append(OutputColumn(
                name=column.alias.strip('"') if column.alias else (
                    column.aggregate.value.lower() if column.aggregate.is_aggregate else (source or "*")
                ),
                source_column=source,
                schema_name=schema_name,
                table_name=table_name,
                aggregate=column.aggregate,
            ))
        return tuple(outputs)


_default_compiler: Optional[SQLCompiler] = None


def compile_query(definition: QueryDefinition) -> CompiledStatement:
    """Compile with a shared stateless compiler instance."""
    global _default_compiler
    if _default_compiler is None:
        _default_compiler = SQLCompiler()
    return _default_compiler.compile(definition)
