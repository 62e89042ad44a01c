"""Building blocks of the SQL sent to the warehouse."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional, Protocol, Union

from predator.models import MetricType, Mode


class MetricTemplate(enum.Enum):
    """SQL aggregation templates; ``{0}`` is the argument."""

    COUNT = "count({0})"
    NULL_COUNT = "countif({0} is null)"
    REPEATED_COUNT = "countif(array_length({0})>0)"
    REPEATED_NULL_COUNT = "countif(array_length({0})=0)"
    UNIQUE_COUNT = "count(distinct {0})"
    INVALID_COUNT = "countif({0})"
    SUM = "sum(cast({0} as float64))"

    def apply(self, argument: str) -> str:
        return self.value.format(argument)


def parse_metric_template(metric_type: MetricType, mode: Mode) -> MetricTemplate:
    """Choose the template for a metric over a column of the given mode."""
    repeated = mode == Mode.REPEATED
    if metric_type == MetricType.COUNT:
        return MetricTemplate.REPEATED_COUNT if repeated else MetricTemplate.COUNT
    if metric_type == MetricType.NULL_COUNT:
        return MetricTemplate.REPEATED_NULL_COUNT if repeated else MetricTemplate.NULL_COUNT
    if metric_type == MetricType.UNIQUE_COUNT:
        return MetricTemplate.UNIQUE_COUNT
    if metric_type == MetricType.INVALID_COUNT:
        return MetricTemplate.INVALID_COUNT
    if metric_type == MetricType.SUM:
        return MetricTemplate.SUM
    raise ValueError(f"unsupported metric type {metric_type}")


@dataclass
class SelectExpression:
    expression: str
    alias: str = ""

    def render(self) -> str:
        if self.alias:
            return f"{self.expression} AS {self.alias}"
        return self.expression


@dataclass
class MetricExpression:
    argument: str = ""
    alias: str = ""
    template: MetricTemplate = MetricTemplate.COUNT

    def render(self) -> str:
        return f"{self.template.apply(self.argument)} as {self.alias}"


@dataclass
class Unnest:
    column_name: str
    alias: str

    def render(self) -> str:
        return f"UNNEST({self.column_name}) as {self.alias}"


@dataclass
class FromClause:
    table_id: str
    unnest_clauses: list[Unnest] = field(default_factory=list)

    def render(self) -> str:
        parts = [f"`{self.table_id}`", *(u.render() for u in self.unnest_clauses)]
        return " , ".join(parts)


@dataclass
class CustomFilterExpression:
    expression: str

    def render(self) -> str:
        return self.expression


@dataclass
class AllPartitionFilter:
    """Filter that satisfies a required partition filter while keeping every row."""

    partition_column: str

    def render(self) -> str:
        column = self.partition_column
        return f"({column} IS NULL OR {column} IS NOT NULL)"


@dataclass
class NoFilter:
    def render(self) -> str:
        return "TRUE"


class FilterClause(Protocol):
    def render(self) -> str:
        """SQL text of the filter."""


FilterExpression = Union[CustomFilterExpression, AllPartitionFilter, NoFilter]


@dataclass
class GroupByExpression:
    expression: str

    def render(self) -> str:
        return f"GROUP BY {self.expression}"


@dataclass
class Query:
    expressions: list[SelectExpression] = field(default_factory=list)
    metrics: list[MetricExpression] = field(default_factory=list)
    from_clause: Optional[FromClause] = None
    where: Optional[FilterClause] = None
    group_by: Optional[GroupByExpression] = None

    def render(self) -> str:
        items = [e.render() for e in self.expressions]
        items.extend(m.render() for m in self.metrics)
        parts = ["SELECT " + " , ".join(items)]
        if self.from_clause is not None:
            parts.append("FROM " + self.from_clause.render())
        if self.where is not None:
            parts.append("WHERE " + self.where.render())
        if self.group_by is not None:
            parts.append(self.group_by.render())
        return " ".join(parts)

    def __str__(self) -> str:
        return self.render()