# predator

A library for profiling warehouse tables and scoring their data quality.

It turns tolerances into metric specifications. From those it builds SQL profiling queries at table level and at field level. Fields nested inside repeated records are reached through `UNNEST`. It reads the query results back as metrics and derives quality scores from them: nullness, duplication, invalidity and row count.

## Installation

```
pip install .
```

To also install the test requirements:

```
pip install ".[test]"
```

## Concepts

The domain objects are in `predator.models`:

- `TableSpec` and `FieldSpec` describe a table and its fields. Look a field up by its dotted path with `TableSpec.get_field_spec_by_id`. An unknown path raises `FieldSpecNotFoundError`.
- `Tolerance` and `ToleranceSpec` name the quality metrics to check for a table or field.
- `Spec` is a metric to compute.
- `Metric` is a computed value. `MetricFinder` filters a list of metrics by owner, type, field ID and condition.
- `Profile` is a profiling job. It holds the table URN (`project.dataset.table`), an optional filter and an optional group-by expression. `parse_label` splits the URN into its three parts.
- `MetricType`, `Owner`, `Category`, `FieldType`, `Mode` and `QueryType` are the enumerations used throughout.

Storage and query execution are supplied by you. Pass objects that satisfy the protocols in `predator.common`:

- `MetadataStore`: `get_metadata(urn)` and `get_unique_constraints(table_id)`.
- `QueryExecutor`: `run(profile, query, query_type)`, which returns rows as mappings.
- `ProfileStore`: `update(profile)`.
- `MetricStore`: `store(profile, metrics)` and `get_metrics_by_profile_id(profile_id)`.
- `ToleranceStore`: `get_by_table_id(urn)`.

The profilers in `predator.profiler` also need a stats client builder. It is an object with `with_urn(label)`, which returns a builder whose `build()` gives a client with `duration_until_now(name, start)`.

## Building a pipeline

```python
from predator.field import FieldProfiler
from predator.table import TableProfiler
from predator.spec_generator import BasicMetricSpecGenerator, QualityMetricSpecGenerator
from predator.profiler import BasicMetricProfiler, QualityMetricProfiler
from predator.generator import (
    DefaultGenerator,
    DefaultProfileStatisticGenerator,
    MultistageGenerator,
)

table_profiler = TableProfiler(query_executor, metadata_store)
field_profiler = FieldProfiler(query_executor, metadata_store)

basic = DefaultGenerator(
    BasicMetricSpecGenerator(tolerance_store, metadata_store),
    BasicMetricProfiler(table_profiler, field_profiler, profile_store, stats_builder),
    metric_store,
)
quality = DefaultGenerator(
    QualityMetricSpecGenerator(metadata_store, tolerance_store),
    QualityMetricProfiler(metric_store, profile_store, stats_builder),
    metric_store,
)

pipeline = MultistageGenerator(
    [basic, quality],
    DefaultProfileStatisticGenerator(metadata_store, query_executor, profile_store),
)
metrics = pipeline.generate(entry, profile)
```

The pipeline runs in this order:

1. `DefaultProfileStatisticGenerator` counts the records the profile covers and stores the count in `profile.total_records`.
2. Each generator runs in turn. A generator creates its specs, profiles them and stores the resulting metrics.

`BasicMetricProfiler` runs the table profiler and the field profiler in parallel. `QualityMetricProfiler` computes quality metrics separately for each group value. It returns an empty list when the profile has no records.

Each stage raises an exception on failure, and a failure stops the pipeline.

## Building queries directly

```python
from predator.query import Query, FromClause, MetricExpression, MetricTemplate, NoFilter

q = Query(
    metrics=[MetricExpression("1", "count_0", MetricTemplate.COUNT)],
    from_clause=FromClause(table_id="project.dataset.table"),
    where=NoFilter(),
)
print(q.render())
# SELECT count(1) as count_0 FROM `project.dataset.table` WHERE TRUE
```

`predator.common` provides helpers for the parts of a query:

- `generate_filter_expression` picks the WHERE clause.
- `generate_group_expression` builds the GROUP BY clause.
- `generate_select_expression` adds the group value column.

`convert_value_to_string` renders a warehouse value as text. It is used for group values.

## What the package does not do

The package has no implementations of the stores or the query executor. It does not connect to a warehouse, run SQL, or persist metrics or profiles. It has no command-line tool and no server. It provides the profiling logic, and you supply the I/O.

## Running the tests

```
pytest
```