"""Collaborator interfaces and helpers shared by the profilers."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from fractions import Fraction
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

from predator.models import (
    Metric,
    MetricType,
    Profile,
    QueryType,
    Spec,
    TableSpec,
    ToleranceSpec,
)
from predator.query import (
    AllPartitionFilter,
    CustomFilterExpression,
    FilterExpression,
    GroupByExpression,
    MetricExpression,
    NoFilter,
    SelectExpression,
)

GROUP_ALIAS = "__group_value"

Row = Mapping[str, Any]
RowParser = Callable[[Row, str, Spec], Metric]


class MetadataStore(Protocol):
    def get_metadata(self, urn: str) -> TableSpec:
        """Schema of the table."""

    def get_unique_constraints(self, table_id: str) -> list[str]:
        """Columns that together identify a row."""


class QueryExecutor(Protocol):
    def run(self, profile: Profile, query: str, query_type: QueryType) -> list[Row]:
        """Execute a query and return its rows."""


class ProfileStore(Protocol):
    def update(self, profile: Profile) -> None:
        """Persist the profile's current state."""


class MetricStore(Protocol):
    def store(self, profile: Profile, metrics: list[Metric]) -> None:
        """Persist metrics calculated for a profile."""

    def get_metrics_by_profile_id(self, profile_id: str) -> list[Metric]:
        """Metrics already stored for a profile."""


class ToleranceStore(Protocol):
    def get_by_table_id(self, urn: str) -> ToleranceSpec:
        """Tolerances declared for a table."""


class MetricSpecGenerator(Protocol):
    def generate_metric_spec(self, urn: str) -> list[Spec]:
        """Metric specs to calculate for a table."""


class MetricProfiler(Protocol):
    def profile(self, entry: Any, profile: Profile, metric_specs: list[Spec]) -> list[Metric]:
        """Calculate metrics for the given specs."""


class MetricGenerator(Protocol):
    def generate(self, entry: Any, profile: Profile) -> list[Metric]:
        """Produce metrics for a profile."""


class ProfileStatisticGenerator(Protocol):
    def generate(self, profile: Profile) -> None:
        """Fill in statistics of the profile."""


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _civil_time(value: time) -> str:
    text = f"{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    if value.microsecond:
        text += f".{value.microsecond:06d}"
    return text


def _numeric_string(value: Fraction) -> str:
    scaled = value * 10**9
    quotient, remainder = divmod(abs(scaled.numerator), scaled.denominator)
    if 2 * remainder >= scaled.denominator:
        quotient += 1
    digits = str(quotient).rjust(10, "0")
    sign = "-" if scaled < 0 and quotient else ""
    return f"{sign}{digits[:-9]}.{digits[-9:]}"


def convert_value_to_string(value: Any) -> str:
    """Render a warehouse value as text; raise TypeError for unsupported types."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, datetime):
        if value.utcoffset() is None:
            return f"{value.date().isoformat()} {_civil_time(value.time())}"
        micros = (value - _EPOCH) // timedelta(microseconds=1)
        millis = abs(micros) // 1000
        return str(-millis if micros < 0 else millis)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, time):
        return _civil_time(value)
    if isinstance(value, (Decimal, Fraction)):
        return _numeric_string(Fraction(value))
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return f"{value:.9f}"
    raise TypeError(f"unhandled kind {type(value).__name__}")


@dataclass
class SpecExpressionPair:
    metric_spec: Spec
    metric_expression: MetricExpression


@dataclass
class QueryResultParser:
    """Turns a result row into metrics using one parser per metric type."""

    parser_map: Mapping[MetricType, RowParser] = field(default_factory=dict)

    def parse(self, row: Row, pairs: Sequence[SpecExpressionPair]) -> list[Metric]:
        metrics = []
        for pair in pairs:
            spec = pair.metric_spec
            parser = self.parser_map.get(spec.name)
            if parser is None:
                raise ValueError(f"unsupported metric type: {spec.name}")
            metrics.append(parser(row, pair.metric_expression.alias, spec))

        if GROUP_ALIAS in row and metrics:
            try:
                group_value = convert_value_to_string(row[GROUP_ALIAS])
            except TypeError as exc:
                raise ValueError(f"group value is invalid {exc}") from exc
            for metric in metrics:
                metric.group_value = group_value
        return metrics


def generate_filter_expression(filter_text: str, table_spec: TableSpec) -> FilterExpression:
    if filter_text:
        return CustomFilterExpression(expression=filter_text)
    if table_spec.require_partition_filter:
        return AllPartitionFilter(partition_column=table_spec.partition_field)
    return NoFilter()


def generate_group_expression(group_name: str) -> Optional[GroupByExpression]:
    if group_name:
        return GroupByExpression(expression=group_name)
    return None


def generate_select_expression(group_name: str) -> list[SelectExpression]:
    if group_name:
        return [SelectExpression(expression=group_name, alias=GROUP_ALIAS)]
    return []