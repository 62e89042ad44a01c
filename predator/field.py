"""Field-level profiling: per-column counts, null counts, sums and invalid counts."""

from __future__ import annotations

from typing import Any, Optional, Sequence

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
    Category,
    FieldSpec,
    FieldSpecNotFoundError,
    Metric,
    MetricType,
    Mode,
    Owner,
    Profile,
    QueryType,
    Spec,
    TableSpec,
)
from predator.query import FromClause, MetricExpression, Query, Unnest, parse_metric_template


def _lookup(row: Row, alias: str, label: str) -> Any:
    if alias not in row:
        raise ValueError(f"{label} value with alias {alias}, not found")
    return row[alias]


def _integer(row: Row, alias: str, label: str) -> int:
    value = _lookup(row, alias, label)
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"parse {label} value to int64 with alias {alias}, failed")
    return value


def _count_metric(row: Row, alias: str, spec: Spec) -> Metric:
    return Metric(
        field_id=spec.field_id,
        type=MetricType.COUNT,
        category=Category.BASIC,
        owner=Owner.FIELD,
        value=float(_integer(row, alias, "count")),
    )


def _null_count_metric(row: Row, alias: str, spec: Spec) -> Metric:
    return Metric(
        field_id=spec.field_id,
        type=MetricType.NULL_COUNT,
        category=Category.BASIC,
        owner=Owner.FIELD,
        value=float(_integer(row, alias, "nullcount")),
    )


def _invalid_count_metric(row: Row, alias: str, spec: Spec) -> Metric:
    return Metric(
        field_id=spec.field_id,
        type=MetricType.INVALID_COUNT,
        category=Category.BASIC,
        owner=Owner.FIELD,
        value=float(_integer(row, alias, "invalid count")),
        condition=spec.condition,
    )


def _sum_metric(row: Row, alias: str, spec: Spec) -> Metric:
    value = _lookup(row, alias, "sum")
    if not isinstance(value, float):
        raise ValueError(f"parse sum value to float64 with alias {alias}, failed")
    return Metric(
        field_id=spec.field_id,
        type=MetricType.SUM,
        category=Category.QUALITY,
        owner=Owner.FIELD,
        value=value,
    )


_PARSERS = {
    MetricType.INVALID_COUNT: _invalid_count_metric,
    MetricType.COUNT: _count_metric,
    MetricType.NULL_COUNT: _null_count_metric,
    MetricType.SUM: _sum_metric,
}


def field_result_parser() -> QueryResultParser:
    """Parser for rows of field-level profiling queries."""
    return QueryResultParser(parser_map=dict(_PARSERS))


def _field_spec(table_spec: TableSpec, field_id: str) -> FieldSpec:
    try:
        return table_spec.get_field_spec_by_id(field_id)
    except FieldSpecNotFoundError as exc:
        raise LookupError(
            f"field ID: {field_id} is not found on table : {table_spec.table_id()} ,{exc}"
        ) from exc


def _path_to_nearest_branch(parents: Sequence[FieldSpec]) -> list[FieldSpec]:
    """The tail of ``parents`` starting at the closest repeated field."""
    path = []
    for spec in reversed(parents):
        path.append(spec)
        if spec.mode == Mode.REPEATED:
            break
    path.reverse()
    return path


def _nearest_branch(parents: Sequence[FieldSpec]) -> Optional[FieldSpec]:
    path = _path_to_nearest_branch(parents)
    return path[0] if path else None


def _column_name_by_lineage(field_spec: FieldSpec, parents: Sequence[FieldSpec]) -> str:
    namespaces = [
        f"level{fs.level}" if fs.mode == Mode.REPEATED else f"`{fs.name}`"
        for fs in _path_to_nearest_branch(parents)
    ]
    namespaces.append(f"`{field_spec.name}`")
    return ".".join(namespaces)


def group_metric_specs_by_branch(
    table_spec: TableSpec, metric_specs: Sequence[Spec]
) -> dict[Optional[FieldSpec], list[Spec]]:
    """Group specs by the closest repeated ancestor of their field (None for none)."""
    groups: dict[Optional[FieldSpec], list[Spec]] = {}
    for spec in metric_specs:
        field_spec = _field_spec(table_spec, spec.field_id)
        branch = _nearest_branch(field_spec.from_root_path())
        groups.setdefault(branch, []).append(spec)
    return groups


def _unnest_alias(field_spec: FieldSpec) -> str:
    return f"level{field_spec.level}"


def create_unnest(field_spec: FieldSpec, ancestors: Sequence[FieldSpec]) -> Unnest:
    """UNNEST element that reaches into a repeated field."""
    return Unnest(
        column_name=_column_name_by_lineage(field_spec, ancestors),
        alias=_unnest_alias(field_spec),
    )


def generate_unnest(lineage: Sequence[FieldSpec]) -> list[Unnest]:
    """UNNEST elements for every repeated field along a lineage."""
    return [
        create_unnest(spec, lineage[:index])
        for index, spec in enumerate(lineage)
        if spec.mode == Mode.REPEATED
    ]


def get_unnested_column_name(field_spec: FieldSpec) -> str:
    """Column reference for a field inside the unnested query scope."""
    parents = field_spec.from_root_path()
    if field_spec.mode == Mode.REPEATED and not parents:
        return f"`{field_spec.name}`"
    return _column_name_by_lineage(field_spec, parents)


def get_alias(field_name: str, metric_type: MetricType, index: int) -> str:
    return f"{metric_type}_{field_name}_{index}"


def _from_clause(branch: Optional[FieldSpec], table_spec: TableSpec) -> FromClause:
    lineage = [*branch.from_root_path(), branch] if branch is not None else []
    return FromClause(table_id=table_spec.table_id(), unnest_clauses=generate_unnest(lineage))


def _prepare_metrics(
    table_spec: TableSpec, metric_specs: Sequence[Spec]
) -> list[SpecExpressionPair]:
    pairs = []
    for index, spec in enumerate(metric_specs):
        field_spec = _field_spec(table_spec, spec.field_id)
        alias = get_alias(field_spec.name, spec.name, index)
        if spec.name == MetricType.INVALID_COUNT:
            argument = spec.condition
        else:
            argument = get_unnested_column_name(field_spec)
        expression = MetricExpression(
            argument=argument,
            alias=alias,
            template=parse_metric_template(spec.name, field_spec.mode),
        )
        pairs.append(SpecExpressionPair(metric_spec=spec, metric_expression=expression))
    return pairs


class FieldProfiler:
    """Calculates field metrics, one query per nesting branch."""

    def __init__(self, query_executor: QueryExecutor, metadata_store: MetadataStore) -> None:
        self.query_executor = query_executor
        self.metadata_store = metadata_store
        self.query_result_parser = field_result_parser()

    def profile(self, entry: Any, profile: Profile, metric_specs: Sequence[Spec]) -> list[Metric]:
        table_spec = self.metadata_store.get_metadata(profile.urn)
        groups = group_metric_specs_by_branch(table_spec, metric_specs)
        branches = sorted(groups, key=lambda b: (b is not None, b.name if b else ""))

        metrics: list[Metric] = []
        for branch in branches:
            metrics.extend(self._profile_branch(branch, profile, table_spec, groups[branch]))
        return metrics

    def _profile_branch(
        self,
        branch: Optional[FieldSpec],
        profile: Profile,
        table_spec: TableSpec,
        metric_specs: Sequence[Spec],
    ) -> list[Metric]:
        pairs = _prepare_metrics(table_spec, metric_specs)
        query = Query(
            expressions=generate_select_expression(profile.group_name),
            metrics=[pair.metric_expression for pair in pairs],
            from_clause=_from_clause(branch, table_spec),
            where=generate_filter_expression(profile.filter, table_spec),
            group_by=generate_group_expression(profile.group_name),
        )
        rows = self.query_executor.run(profile, query.render(), QueryType.FIELD_LEVEL)

        metrics: list[Metric] = []
        for row in rows:
            metrics.extend(self.query_result_parser.parse(row, pairs))
        return metrics