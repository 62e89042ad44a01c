"""Generators that orchestrate spec generation, profiling and storage."""

from __future__ import annotations

from typing import Any, Sequence

from predator.common import (
    MetadataStore,
    MetricGenerator,
    MetricProfiler,
    MetricSpecGenerator,
    MetricStore,
    ProfileStatisticGenerator,
    ProfileStore,
    QueryExecutor,
    generate_filter_expression,
)
from predator.models import Metric, Profile, QueryType
from predator.query import FromClause, Query, SelectExpression

_TOTAL_RECORDS_ALIAS = "total_records"


class DefaultGenerator:
    """Generates metric specs, calculates the metrics and stores them."""

    def __init__(
        self,
        spec_generator: MetricSpecGenerator,
        profiler: MetricProfiler,
        metric_store: MetricStore,
    ) -> None:
        self.spec_generator = spec_generator
        self.profiler = profiler
        self.metric_store = metric_store

    def generate(self, entry: Any, profile: Profile) -> list[Metric]:
        metric_specs = self.spec_generator.generate_metric_spec(profile.urn)
        metrics = self.profiler.profile(entry, profile, metric_specs)
        self.metric_store.store(profile, metrics)
        return metrics


class DefaultProfileStatisticGenerator:
    """Counts the records a profile covers and records it on the profile."""

    def __init__(
        self,
        metadata_store: MetadataStore,
        query_executor: QueryExecutor,
        profile_store: ProfileStore,
    ) -> None:
        self.metadata_store = metadata_store
        self.query_executor = query_executor
        self.profile_store = profile_store

    def generate(self, profile: Profile) -> None:
        table_spec = self.metadata_store.get_metadata(profile.urn)
        query = Query(
            expressions=[SelectExpression(expression="count(*)", alias=_TOTAL_RECORDS_ALIAS)],
            from_clause=FromClause(table_id=profile.urn),
            where=generate_filter_expression(profile.filter, table_spec),
        )
        rows = self.query_executor.run(profile, query.render(), QueryType.STATISTICAL)
        if not rows or _TOTAL_RECORDS_ALIAS not in rows[0]:
            raise ValueError("failed to calculate profiling statistics")

        total = rows[0][_TOTAL_RECORDS_ALIAS]
        if not isinstance(total, int) or isinstance(total, bool):
            raise ValueError("failed to calculate profiling statistics")

        profile.total_records = total
        profile.message = f"records to be profiled: {total}"
        self.profile_store.update(profile)


class MultistageGenerator:
    """Computes profile statistics, then runs each generator in turn."""

    def __init__(
        self,
        generators: Sequence[MetricGenerator],
        profile_stat_gen: ProfileStatisticGenerator,
    ) -> None:
        self.generators = list(generators)
        self.profile_stat_gen = profile_stat_gen

    def generate(self, entry: Any, profile: Profile) -> list[Metric]:
        self.profile_stat_gen.generate(profile)
        metrics: list[Metric] = []
        for generator in self.generators:
            metrics.extend(generator.generate(entry, profile))
        return metrics