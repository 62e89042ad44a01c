"""Domain objects shared by the profiling components."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

UNIQUE_FIELDS = "uniquefields"
ROOT_LEVEL = 1


class MetricType(str, enum.Enum):
    """Kinds of metric that can be specified and calculated."""

    COUNT = "count"
    NULL_COUNT = "nullcount"
    UNIQUE_COUNT = "uniquecount"
    INVALID_COUNT = "invalidcount"
    SUM = "sum"
    NULLNESS_PCT = "nullness_pct"
    DUPLICATION_PCT = "duplication_pct"
    TREND_INCONSISTENCY_PCT = "trend_inconsistency_pct"
    ROW_COUNT = "row_count"
    INVALID_PCT = "invalid_pct"

    def __str__(self) -> str:
        return self.value


class Owner(str, enum.Enum):
    """Whether a metric belongs to the whole table or to one field."""

    TABLE = "table"
    FIELD = "field"

    def __str__(self) -> str:
        return self.value


class Category(str, enum.Enum):
    """Basic metrics are measured; quality metrics are derived from them."""

    BASIC = "basic"
    QUALITY = "quality"

    def __str__(self) -> str:
        return self.value


class FieldType(str, enum.Enum):
    """Column types of a warehouse table."""

    STRING = "STRING"
    BYTES = "BYTES"
    INTEGER = "INTEGER"
    FLOAT = "FLOAT"
    NUMERIC = "NUMERIC"
    BIGNUMERIC = "BIGNUMERIC"
    BOOLEAN = "BOOLEAN"
    TIMESTAMP = "TIMESTAMP"
    DATE = "DATE"
    TIME = "TIME"
    DATETIME = "DATETIME"
    GEOGRAPHY = "GEOGRAPHY"
    RECORD = "RECORD"

    def is_numeric(self) -> bool:
        """True for types that can be summed."""
        return self in _NUMERIC_TYPES


_NUMERIC_TYPES = frozenset(
    {FieldType.INTEGER, FieldType.FLOAT, FieldType.NUMERIC, FieldType.BIGNUMERIC}
)


class Mode(str, enum.Enum):
    """Column modes of a warehouse table."""

    NULLABLE = "NULLABLE"
    REQUIRED = "REQUIRED"
    REPEATED = "REPEATED"


class FieldSpecNotFoundError(LookupError):
    """Raised when a field ID does not exist in a table spec."""

    def __init__(self, field_id: str) -> None:
        super().__init__(f"field spec not found: {field_id}")
        self.field_id = field_id


@dataclass(eq=False)
class FieldSpec:
    """A column of a table, possibly nested inside a record column.

    Field specs compare and hash by identity so they can key groupings.
    """

    name: str
    field_type: FieldType = FieldType.STRING
    mode: Mode = Mode.NULLABLE
    parent: Optional["FieldSpec"] = field(default=None, repr=False)
    level: int = ROOT_LEVEL
    fields: list["FieldSpec"] = field(default_factory=list)

    def id(self) -> str:
        """Dotted path of the field from the table root."""
        return ".".join([*(p.name for p in self.from_root_path()), self.name])

    def from_root_path(self) -> list["FieldSpec"]:
        """Ancestors of this field, ordered from the root downwards."""
        ancestors = []
        node = self.parent
        while node is not None:
            ancestors.append(node)
            node = node.parent
        ancestors.reverse()
        return ancestors


@dataclass
class TableSpec:
    """Schema and partitioning facts of a table."""

    project_name: str = ""
    dataset_name: str = ""
    table_name: str = ""
    partition_field: str = ""
    require_partition_filter: bool = False
    labels: dict[str, str] = field(default_factory=dict)
    fields: list[FieldSpec] = field(default_factory=list)

    def table_id(self) -> str:
        return f"{self.project_name}.{self.dataset_name}.{self.table_name}"

    def get_field_spec_by_id(self, field_id: str) -> FieldSpec:
        """Find a field by its dotted path or raise FieldSpecNotFoundError."""
        candidates = self.fields
        found: Optional[FieldSpec] = None
        for part in field_id.split("."):
            found = next((f for f in candidates if f.name == part), None)
            if found is None:
                raise FieldSpecNotFoundError(field_id)
            candidates = found.fields
        if found is None:
            raise FieldSpecNotFoundError(field_id)
        return found


@dataclass
class Spec:
    """What metric to calculate, and for which table or field."""

    name: MetricType
    table_id: str = ""
    field_id: str = ""
    owner: Optional[Owner] = None
    condition: str = ""
    optional: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Metric:
    """A calculated metric value."""

    id: str = ""
    field_id: str = ""
    type: Optional[MetricType] = None
    category: Optional[Category] = None
    owner: Optional[Owner] = None
    value: float = 0.0
    condition: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    group_value: str = ""


class MetricFinder:
    """Chainable filter over a list of metrics."""

    def __init__(
        self,
        metrics: Iterable[Metric],
        _predicates: tuple[Callable[[Metric], bool], ...] = (),
    ) -> None:
        self._metrics = list(metrics)
        self._predicates = _predicates

    def _narrow(self, predicate: Callable[[Metric], bool]) -> "MetricFinder":
        return MetricFinder(self._metrics, self._predicates + (predicate,))

    def with_owner(self, owner: Owner) -> "MetricFinder":
        return self._narrow(lambda m: m.owner == owner)

    def with_type(self, metric_type: MetricType) -> "MetricFinder":
        return self._narrow(lambda m: m.type == metric_type)

    def with_field_id(self, field_id: str) -> "MetricFinder":
        return self._narrow(lambda m: m.field_id == field_id)

    def with_condition(self, condition: str) -> "MetricFinder":
        return self._narrow(lambda m: m.condition == condition)

    def _matches(self):
        return (m for m in self._metrics if all(p(m) for p in self._predicates))

    def find(self) -> list[Metric]:
        return list(self._matches())

    def find_one(self) -> Optional[Metric]:
        return next(self._matches(), None)


@dataclass
class Profile:
    """A profiling job over one table."""

    id: str = ""
    urn: str = ""
    filter: str = ""
    group_name: str = ""
    total_records: int = 0
    message: str = ""


class QueryType(str, enum.Enum):
    """Purpose of a query sent to the executor."""

    STATISTICAL = "statistical"
    TABLE_LEVEL = "table_level"
    FIELD_LEVEL = "field_level"


@dataclass
class Tolerance:
    """A tolerance declared for a metric of a table or field."""

    table_urn: str = ""
    field_id: str = ""
    metric_name: Optional[MetricType] = None
    condition: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    tolerance_rules: list[Any] = field(default_factory=list)


@dataclass
class ToleranceSpec:
    """All tolerances declared for one table."""

    urn: str = ""
    tolerances: list[Tolerance] = field(default_factory=list)


@dataclass(frozen=True)
class Label:
    """The parts of a table URN."""

    project: str
    dataset: str
    table: str


def parse_label(urn: str) -> Label:
    """Split a ``project.dataset.table`` URN, raising ValueError if malformed."""
    parts = urn.split(".")
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"invalid table urn: {urn!r}")
    return Label(*parts)