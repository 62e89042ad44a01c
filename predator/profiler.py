"""Profilers that calculate basic metrics and derive quality metrics from them."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence

from predator.common import MetricProfiler, MetricStore, ProfileStore
from predator.models import (
    Category,
    Metric,
    MetricFinder,
    MetricType,
    Owner,
    Profile,
    Spec,
    parse_label,
    Label,
)

logger = logging.getLogger(__name__)


class _StatsClient(Protocol):
    def duration_until_now(self, name: str, start: datetime) -> None:
        """Report the time elapsed since ``start``."""


class _StatsClientBuilder(Protocol):
    def with_urn(self, label: Label) -> "_StatsClientBuilder":
        """Builder tagged with the table label."""

    def build(self) -> _StatsClient:
        """Create the stats client."""


def _log_message(text: str, profile: Profile) -> str:
    return f"{text} profile_id={profile.id}"


def _announce(profile_store: ProfileStore, profile: Profile, text: str) -> None:
    message = _log_message(text, profile)
    logger.info(message)
    profile.message = message
    try:
        profile_store.update(profile)
    except Exception as exc:
        raise RuntimeError(f"unable to write log message {exc}") from exc


def _specs_of(metric_specs: Sequence[Spec], owner: Owner) -> list[Spec]:
    return [spec for spec in metric_specs if spec.owner == owner]


class BasicMetricProfiler:
    """Runs the table and field profilers concurrently and merges their metrics."""

    def __init__(
        self,
        table_profiler: MetricProfiler,
        field_profiler: MetricProfiler,
        profile_store: ProfileStore,
        stats_client_builder: _StatsClientBuilder,
    ) -> None:
        self.table_profiler = table_profiler
        self.field_profiler = field_profiler
        self.profile_store = profile_store
        self.stats_client_builder = stats_client_builder

    def profile(self, entry: Any, profile: Profile, metric_specs: Sequence[Spec]) -> list[Metric]:
        label = parse_label(profile.urn)
        stats_client = self.stats_client_builder.with_urn(label).build()
        start = datetime.now(timezone.utc)

        _announce(self.profile_store, profile, "calculating basic metrics")

        field_specs = _specs_of(metric_specs, Owner.FIELD)
        table_specs = _specs_of(metric_specs, Owner.TABLE)

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [
                pool.submit(self.table_profiler.profile, entry, profile, table_specs),
                pool.submit(self.field_profiler.profile, entry, profile, field_specs),
            ]
            outcomes = [(f.exception(), f) for f in futures]

        metrics: list[Metric] = []
        for error, _ in outcomes:
            if error is not None:
                raise error
        for _, future in outcomes:
            metrics.extend(future.result() or [])

        _announce(self.profile_store, profile, "basic metrics calculation finished")
        stats_client.duration_until_now("profile.job.basic_metric.time", start)
        return metrics


class QualityMetricProfiler:
    """Derives quality metrics, per group, from stored basic metrics."""

    def __init__(
        self,
        metric_store: MetricStore,
        profile_store: ProfileStore,
        stats_client_builder: _StatsClientBuilder,
    ) -> None:
        self.metric_store = metric_store
        self.profile_store = profile_store
        self.stats_client_builder = stats_client_builder

    def profile(self, entry: Any, profile: Profile, metric_specs: Sequence[Spec]) -> list[Metric]:
        label = parse_label(profile.urn)
        stats_client = self.stats_client_builder.with_urn(label).build()
        start = datetime.now(timezone.utc)

        _announce(self.profile_store, profile, "calculating quality metric")

        if profile.total_records == 0:
            return []

        try:
            basic_metrics = self.metric_store.get_metrics_by_profile_id(profile.id)
        except Exception as exc:
            message = f"profile metric for table {profile.urn} ,{exc}"
            logger.info(message)
            raise RuntimeError(message) from exc

        groups: dict[str, list[Metric]] = {}
        for metric in basic_metrics:
            groups.setdefault(metric.group_value, []).append(metric)

        quality_metrics: list[Metric] = []
        for group_value, metrics in groups.items():
            for metric in calculate_quality_metric(metrics, metric_specs):
                metric.group_value = group_value
                quality_metrics.append(metric)

        _announce(self.profile_store, profile, "quality metrics calculation finished")
        stats_client.duration_until_now("profile.job.quality_metric.time", start)
        return quality_metrics


def calculate_quality_metric(metrics: Sequence[Metric], metric_specs: Sequence[Spec]) -> list[Metric]:
    """Quality metrics of one group computed from its basic metrics."""
    try:
        table_metrics = _table_quality_metrics(metrics, _specs_of(metric_specs, Owner.TABLE))
    except ValueError as exc:
        raise ValueError(f"unable to calculate table quality score ,{exc}") from exc
    try:
        field_metrics = _field_quality_metrics(metrics, _specs_of(metric_specs, Owner.FIELD))
    except ValueError as exc:
        raise ValueError(f"unable to calculate field quality score ,{exc}") from exc
    return [*table_metrics, *field_metrics]


def _table_quality_metrics(metrics: Sequence[Metric], metric_specs: Sequence[Spec]) -> list[Metric]:
    table_metrics = MetricFinder(metrics).with_owner(Owner.TABLE).find()
    if not metric_specs:
        return []

    record_count = MetricFinder(table_metrics).with_type(MetricType.COUNT).find_one()
    if record_count is None:
        raise ValueError(f"unable to get {MetricType.COUNT}")

    results = []
    for spec in metric_specs:
        if spec.name == MetricType.INVALID_PCT:
            if spec.owner == Owner.TABLE:
                results.append(_invalidity_metric(spec, table_metrics))
        elif spec.name == MetricType.DUPLICATION_PCT:
            unique_count = MetricFinder(table_metrics).with_type(MetricType.UNIQUE_COUNT).find_one()
            if unique_count is None:
                raise ValueError(f"unable to get {MetricType.UNIQUE_COUNT}")
            results.append(_duplication_metric(record_count, unique_count))
        elif spec.name == MetricType.ROW_COUNT:
            results.append(
                Metric(
                    type=MetricType.ROW_COUNT,
                    category=Category.QUALITY,
                    owner=Owner.TABLE,
                    value=record_count.value,
                )
            )
    return results


def _field_quality_metrics(metrics: Sequence[Metric], metric_specs: Sequence[Spec]) -> list[Metric]:
    record_count = (
        MetricFinder(metrics).with_owner(Owner.TABLE).with_type(MetricType.COUNT).find_one()
    )
    if record_count is None:
        raise ValueError("unable to find table count")

    results = []
    for spec in metric_specs:
        if spec.name != MetricType.NULLNESS_PCT:
            continue
        null_count = (
            MetricFinder(metrics)
            .with_owner(Owner.FIELD)
            .with_field_id(spec.field_id)
            .with_type(MetricType.NULL_COUNT)
            .find_one()
        )
        if null_count is None:
            raise ValueError("unable to null count metric")
        results.append(_nullness_metric(null_count, record_count))

    for spec in metric_specs:
        if spec.name == MetricType.INVALID_PCT:
            results.append(_invalidity_metric(spec, metrics))
    return results


def _percentage(part: float, whole: float) -> float:
    return part / whole * 100 if whole != 0 else 0.0


def _nullness_metric(null_count: Metric, record_count: Metric) -> Metric:
    return Metric(
        field_id=null_count.field_id,
        type=MetricType.NULLNESS_PCT,
        category=Category.QUALITY,
        owner=Owner.FIELD,
        value=_percentage(null_count.value, record_count.value),
    )


def _duplication_metric(record_count: Metric, unique_count: Metric) -> Metric:
    return Metric(
        type=MetricType.DUPLICATION_PCT,
        category=Category.QUALITY,
        owner=Owner.TABLE,
        metadata=unique_count.metadata,
        value=_percentage(record_count.value - unique_count.value, record_count.value),
    )


def _invalidity_metric(spec: Spec, metrics: Sequence[Metric]) -> Metric:
    invalid_count = (
        MetricFinder(metrics).with_field_id(spec.field_id).with_condition(spec.condition).find_one()
    )
    if invalid_count is None:
        raise ValueError(f"unable to get {MetricType.INVALID_COUNT}")

    table_metrics = MetricFinder(metrics).with_owner(Owner.TABLE).find()
    record_count = MetricFinder(table_metrics).with_type(MetricType.COUNT).find_one()
    if record_count is None:
        raise ValueError(f"unable to get {MetricType.COUNT} ")

    return Metric(
        field_id=spec.field_id,
        type=spec.name,
        category=Category.QUALITY,
        owner=spec.owner,
        condition=invalid_count.condition,
        value=_percentage(invalid_count.value, record_count.value),
    )