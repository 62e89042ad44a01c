"""Table-level profiling: row counts, unique counts and invalid counts."""

from __future__ import annotations

from typing import Any, Callable, Sequence

from predator.common import (
    MetadataStore,
    QueryExecutor,
    QueryResultParser,
    Row,
    SpecExpressionPair,
    generate_filter_expression,
    generate_group_expression,
    generate_select_expression,
)
from predator.models import (
    UNIQUE_FIELDS,
    Category,
    FieldSpecNotFoundError,
    FieldType,
    Metric,
    MetricType,
    Profile,
    QueryType,
    Spec,
    TableSpec,
)
from predator.query import FromClause, MetricExpression, MetricTemplate, Query

_RowParser = Callable[[Row, str, Spec], Metric]


def _integer_parser(
    label: str, parse_label: str, extra: Callable[[Spec], dict[str, Any]]
) -> _RowParser:
    """Build a parser that reads an integer count from a row into a basic metric."""

    def parse(row: Row, alias: str, spec: Spec) -> Metric:
        if alias not in row:
            raise ValueError(f"get {label} value failed")
        value = row[alias]
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValueError(f"parse {parse_label} value to int64 failed")
        return Metric(
            type=spec.name,
            category=Category.BASIC,
            owner=spec.owner,
            value=float(value),
            **extra(spec),
        )

    return parse


_PARSERS: dict[MetricType, _RowParser] = {
    MetricType.INVALID_COUNT: _integer_parser(
        "invalid count", "invalid count", lambda spec: {"condition": spec.condition}
    ),
    MetricType.COUNT: _integer_parser("count", "row count", lambda spec: {}),
    MetricType.UNIQUE_COUNT: _integer_parser(
        "unique count", "unique count", lambda spec: {"metadata": spec.metadata}
    ),
}


def table_result_parser() -> QueryResultParser:
    """Parser for rows of table-level profiling queries."""
    return QueryResultParser(parser_map=dict(_PARSERS))


def create_alias(metric_name: Any, index: int) -> str:
    return f"{metric_name!s}_{index}"


def _cast_to_string(table_spec: TableSpec, field_id: str) -> str:
    try:
        field_spec = table_spec.get_field_spec_by_id(field_id)
    except FieldSpecNotFoundError as exc:
        raise LookupError(
            f"field ID: {field_id} is not found on table : {table_spec.table_id()} ,{exc}"
        ) from exc
    if field_spec.field_type == FieldType.BYTES:
        return f"TO_BASE64({field_id})"
    return f"CAST({field_id} AS STRING)"


def _is_string_list(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value)


class TableProfiler:
    """Calculates table metrics with a single query over the whole table."""

    def __init__(self, query_executor: QueryExecutor, metadata_store: MetadataStore) -> None:
        self.query_executor = query_executor
        self.metadata_store = metadata_store
        self.query_result_parser = table_result_parser()

    def profile(self, entry: Any, profile: Profile, metric_specs: Sequence[Spec]) -> list[Metric]:
        table_spec = self.metadata_store.get_metadata(profile.urn)
        pairs = self._prepare_metrics(table_spec, metric_specs)

        query = Query(
            expressions=generate_select_expression(profile.group_name),
            metrics=[pair.metric_expression for pair in pairs],
            from_clause=FromClause(table_id=profile.urn),
            where=generate_filter_expression(profile.filter, table_spec),
            group_by=generate_group_expression(profile.group_name),
        )
        rows = self.query_executor.run(profile, query.render(), QueryType.TABLE_LEVEL)

        metrics: list[Metric] = []
        for row in rows:
            metrics.extend(self.query_result_parser.parse(row, pairs))
        return metrics

    def _prepare_metrics(
        self, table_spec: TableSpec, metric_specs: Sequence[Spec]
    ) -> list[SpecExpressionPair]:
        argument_builders: dict[MetricType, tuple[MetricTemplate, Callable[[Spec], str]]] = {
            MetricType.COUNT: (MetricTemplate.COUNT, lambda spec: "1"),
            MetricType.UNIQUE_COUNT: (
                MetricTemplate.UNIQUE_COUNT,
                lambda spec: self._unique_key(table_spec, spec),
            ),
            MetricType.INVALID_COUNT: (MetricTemplate.INVALID_COUNT, lambda spec: spec.condition),
        }
        pairs = []
        for index, spec in enumerate(metric_specs):
            if spec.name not in argument_builders:
                raise ValueError(f"unsupported metric type {spec.name}")
            template, argument = argument_builders[spec.name]
            expression = MetricExpression(argument(spec), create_alias(spec.name, index), template)
            pairs.append(SpecExpressionPair(metric_spec=spec, metric_expression=expression))
        return pairs

    def _unique_key(self, table_spec: TableSpec, spec: Spec) -> str:
        if UNIQUE_FIELDS in spec.metadata:
            unique_keys = spec.metadata[UNIQUE_FIELDS]
            if not _is_string_list(unique_keys):
                raise ValueError("invalid unique fields format")
            unique_keys = list(unique_keys)
        else:
            unique_keys = list(self.metadata_store.get_unique_constraints(table_spec.table_id()))

        if not unique_keys:
            raise ValueError(
                "expected list unique constraint column, but no column has been set"
            )
        if len(unique_keys) == 1:
            return unique_keys[0]
        expressions = [
            f"IFNULL({_cast_to_string(table_spec, field_id)},'null')" for field_id in unique_keys
        ]
        return "CONCAT({})".format(",'|',".join(expressions))