"""
Shoal - Metric Router

Groups samples by namespace, fans each one out across the configured
dimension sets and slices the result into batches the time-series
service will accept.
"""

from typing import Dict, Iterable, List, Sequence, TypeVar

from .models import Batch, DataPoint, DimensionSet, Metric

# PutMetricData accepts at most this many datums per request.
MAX_METRIC_DATUM = 20

T = TypeVar("T")


def split_batches(items: Sequence[T], limit: int = MAX_METRIC_DATUM) -> List[List[T]]:
    """Slice a sequence into consecutive non-empty windows of at most `limit` items."""
    if limit < 1:
        raise ValueError(f"batch limit must be positive, got {limit}")
    return [list(items[i:i + limit]) for i in range(0, len(items), limit)]


def expand_dimensions(metric: Metric, dimension_sets: Sequence[DimensionSet]) -> List[DataPoint]:
    """One data point per dimension set, plus one with no dimensions."""
    points = [metric.to_data_point(ds) for ds in dimension_sets]
    points.append(metric.to_data_point())
    return points


def group_by_namespace(metrics: Iterable[Metric]) -> Dict[str, List[Metric]]:
    """Group metrics by namespace, keeping first-seen order."""
    groups: Dict[str, List[Metric]] = {}
    for metric in metrics:
        groups.setdefault(metric.namespace, []).append(metric)
    return groups


def build_batches(namespace: str, points: Sequence[DataPoint]) -> List[Batch]:
    """Slice a namespace's data points into request-sized batches."""
    return [Batch(namespace=namespace, data=tuple(chunk)) for chunk in split_batches(points)]


def route_metrics(metrics: Iterable[Metric], dimension_sets: Sequence[DimensionSet]) -> List[Batch]:
    """Turn a tick's metrics into time-series batches, grouped per namespace."""
    batches: List[Batch] = []
    for namespace, grouped in group_by_namespace(metrics).items():
        points: List[DataPoint] = []
        for metric in grouped:
            points.extend(expand_dimensions(metric, dimension_sets))
        batches.extend(build_batches(namespace, points))
    return batches
