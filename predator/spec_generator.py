"""Derivation of metric specs from the tolerances declared for a table."""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from predator.common import MetadataStore, ToleranceStore
from predator.models import (
    UNIQUE_FIELDS,
    MetricType,
    Owner,
    Spec,
    TableSpec,
    Tolerance,
)

logger = logging.getLogger(__name__)


def _owner(tolerance: Tolerance) -> Owner:
    return Owner.TABLE if not tolerance.field_id else Owner.FIELD


def _load(
    tolerance_store: ToleranceStore, metadata_store: MetadataStore, urn: str
) -> tuple[TableSpec, list[Tolerance]]:
    try:
        tolerance_spec = tolerance_store.get_by_table_id(urn)
    except Exception as exc:
        message = f"failed to try to get toleranceSpec for table {urn} ,{exc}"
        logger.info(message)
        raise RuntimeError(message) from exc
    try:
        table_spec = metadata_store.get_metadata(urn)
    except Exception as exc:
        message = f"failed to try to get metadata for table {urn} ,{exc}"
        logger.info(message)
        raise RuntimeError(message) from exc
    return table_spec, list(tolerance_spec.tolerances)


def _count_spec(tolerance: Tolerance) -> Spec:
    return Spec(
        name=MetricType.COUNT,
        table_id=tolerance.table_urn,
        field_id=tolerance.field_id,
        owner=_owner(tolerance),
    )


def _sum_spec(table_spec: TableSpec, tolerance: Tolerance) -> Optional[Spec]:
    numeric = any(
        f.name == tolerance.field_id and f.field_type.is_numeric() for f in table_spec.fields
    )
    if not numeric:
        logger.info("Unable to calculate sum metric for non numeric field %s", tolerance.field_id)
        return None
    return Spec(
        name=MetricType.SUM,
        table_id=tolerance.table_urn,
        field_id=tolerance.field_id,
        owner=_owner(tolerance),
    )


def _null_count_spec(tolerance: Tolerance) -> Spec:
    return Spec(
        name=MetricType.NULL_COUNT,
        table_id=tolerance.table_urn,
        field_id=tolerance.field_id,
        owner=Owner.FIELD,
    )


def _invalid_count_spec(tolerance: Tolerance) -> Spec:
    return Spec(
        name=MetricType.INVALID_COUNT,
        table_id=tolerance.table_urn,
        field_id=tolerance.field_id,
        condition=tolerance.condition,
        owner=_owner(tolerance),
    )


def _unique_count_spec(tolerance: Tolerance) -> Spec:
    spec = Spec(name=MetricType.UNIQUE_COUNT, table_id=tolerance.table_urn, owner=Owner.TABLE)
    if UNIQUE_FIELDS in tolerance.metadata:
        unique_fields = tolerance.metadata[UNIQUE_FIELDS]
        if not isinstance(unique_fields, (list, tuple)) or not all(
            isinstance(f, str) for f in unique_fields
        ):
            raise ValueError(
                f"invalid unique fields type in {tolerance.table_urn} tolerance spec"
            )
        spec.metadata = {UNIQUE_FIELDS: list(unique_fields)}
    return spec


class BasicMetricSpecGenerator:
    """Specs of the basic metrics that quality metrics are computed from."""

    def __init__(
        self,
        tolerance_store: Optional[ToleranceStore] = None,
        metadata_store: Optional[MetadataStore] = None,
    ) -> None:
        self.tolerance_store = tolerance_store
        self.metadata_store = metadata_store

    def generate_metric_spec(self, urn: str) -> list[Spec]:
        table_spec, tolerances = _load(self.tolerance_store, self.metadata_store, urn)
        return self.generate(table_spec, tolerances)

    def generate(self, table_spec: TableSpec, tolerances: Sequence[Tolerance]) -> list[Spec]:
        # A table row count is always needed to derive percentages.
        specs = [Spec(name=MetricType.COUNT, table_id=table_spec.table_id(), owner=Owner.TABLE)]
        specs.extend(self.generate_table_metric_specs(tolerances))
        specs.extend(self.generate_field_metric_specs(table_spec, tolerances))
        return specs

    def generate_table_metric_specs(self, tolerances: Iterable[Tolerance]) -> list[Spec]:
        specs = []
        for tolerance in tolerances:
            if tolerance.field_id:
                continue
            if tolerance.metric_name == MetricType.DUPLICATION_PCT:
                specs.append(_unique_count_spec(tolerance))
            if tolerance.metric_name == MetricType.INVALID_PCT:
                specs.append(_invalid_count_spec(tolerance))
        return specs

    def generate_field_metric_specs(
        self, table_spec: TableSpec, tolerances: Iterable[Tolerance]
    ) -> list[Spec]:
        specs = []
        counted: set[str] = set()
        for tolerance in tolerances:
            if not tolerance.field_id:
                continue
            if tolerance.field_id not in counted:
                specs.append(_count_spec(tolerance))
                counted.add(tolerance.field_id)
            if tolerance.metric_name == MetricType.INVALID_PCT:
                specs.append(_invalid_count_spec(tolerance))
            if tolerance.metric_name == MetricType.NULLNESS_PCT:
                specs.append(_null_count_spec(tolerance))
            if tolerance.metric_name == MetricType.SUM:
                sum_spec = _sum_spec(table_spec, tolerance)
                if sum_spec is not None:
                    specs.append(sum_spec)
        return specs


def _invalid_pct_spec(tolerance: Tolerance) -> Spec:
    return Spec(
        name=MetricType.INVALID_PCT,
        table_id=tolerance.table_urn,
        field_id=tolerance.field_id,
        condition=tolerance.condition,
        owner=_owner(tolerance),
    )


def quality_table_metric_specs(tolerances: Iterable[Tolerance]) -> list[Spec]:
    """Quality metric specs owned by the table."""
    specs = []
    for tolerance in tolerances:
        if tolerance.field_id:
            continue
        if tolerance.metric_name == MetricType.DUPLICATION_PCT:
            specs.append(
                Spec(
                    name=MetricType.DUPLICATION_PCT,
                    table_id=tolerance.table_urn,
                    owner=Owner.TABLE,
                )
            )
        if tolerance.metric_name == MetricType.ROW_COUNT:
            specs.append(
                Spec(name=MetricType.ROW_COUNT, table_id=tolerance.table_urn, owner=Owner.TABLE)
            )
        if tolerance.metric_name == MetricType.INVALID_PCT:
            specs.append(_invalid_pct_spec(tolerance))
    return specs


def quality_field_metric_specs(tolerances: Iterable[Tolerance]) -> list[Spec]:
    """Quality metric specs owned by individual fields."""
    specs = []
    for tolerance in tolerances:
        if not tolerance.field_id:
            continue
        if tolerance.metric_name == MetricType.NULLNESS_PCT:
            specs.append(
                Spec(
                    name=MetricType.NULLNESS_PCT,
                    table_id=tolerance.table_urn,
                    field_id=tolerance.field_id,
                    owner=Owner.FIELD,
                )
            )
        if tolerance.metric_name == MetricType.TREND_INCONSISTENCY_PCT:
            specs.append(
                Spec(
                    name=MetricType.TREND_INCONSISTENCY_PCT,
                    table_id=tolerance.table_urn,
                    field_id=tolerance.field_id,
                    optional=True,
                    owner=Owner.FIELD,
                )
            )
        if tolerance.metric_name == MetricType.INVALID_PCT:
            specs.append(_invalid_pct_spec(tolerance))
    return specs


class QualityMetricSpecGenerator:
    """Specs of the quality metrics named by the tolerances."""

    def __init__(
        self,
        metadata_store: Optional[MetadataStore] = None,
        tolerance_store: Optional[ToleranceStore] = None,
    ) -> None:
        self.metadata_store = metadata_store
        self.tolerance_store = tolerance_store

    def generate(self, table_spec: TableSpec, tolerances: Sequence[Tolerance]) -> list[Spec]:
        return [*quality_table_metric_specs(tolerances), *quality_field_metric_specs(tolerances)]

    def generate_metric_spec(self, urn: str) -> list[Spec]:
        table_spec, tolerances = _load(self.tolerance_store, self.metadata_store, urn)
        return self.generate(table_spec, tolerances)