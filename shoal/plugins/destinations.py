"""
Shoal - Metric Destinations

The two backends a metric plugin can feed:

- CloudWatch: dotted names carry the namespace, every metric is fanned out
  over the configured dimension sets and batched per namespace.
- Mackerel: flat names, no dimensions, one payload per tick addressed to a
  service (service metrics) or a host (host custom metrics).
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..telemetry.models import (
    Batch,
    DimensionSet,
    Metric,
    MetricValue,
    ServiceMetricPayload,
)
from ..telemetry.router import route_metrics
from .base import DestinationKind, MetricDestination, MetricParseError, split_metric_line

# Mackerel only accepts host custom metrics under this prefix.
HOST_METRIC_PREFIX = "custom."


@dataclass(frozen=True)
class CloudWatchDestination(MetricDestination):
    """Time-series service destination."""
    dimensions: Tuple[DimensionSet, ...] = ()

    @property
    def kind(self) -> DestinationKind:
        return DestinationKind.CLOUDWATCH

    @property
    def id_prefix(self) -> str:
        return "plugin.metrics"

    def parse_line(self, line: str) -> Metric:
        name, value, timestamp = split_metric_line(line)
        parts = name.split(".", 2)
        if len(parts) != 3:
            raise MetricParseError(f"invalid metric name: {name}")
        return Metric(
            namespace=f"{parts[0]}/{parts[1]}",
            name=parts[2],
            value=value,
            timestamp=timestamp,
        )

    def shape(self, metrics: Sequence[Metric]) -> List[Batch]:
        return route_metrics(metrics, self.dimensions)


@dataclass(frozen=True)
class MackerelDestination(MetricDestination):
    """Metrics-ingestion service destination."""
    service: Optional[str] = None
    host_id: Optional[str] = None

    @property
    def kind(self) -> DestinationKind:
        return DestinationKind.MACKEREL

    @property
    def id_prefix(self) -> str:
        return "plugin.servicemetrics" if self.service else "plugin.hostmetrics"

    def metric_name(self, name: str) -> str:
        if self.service or name.startswith(HOST_METRIC_PREFIX):
            return name
        return HOST_METRIC_PREFIX + name

    def parse_line(self, line: str) -> Metric:
        name, value, timestamp = split_metric_line(line)
        if not name:
            raise MetricParseError("invalid metric name: empty")
        return Metric(
            namespace="",
            name=self.metric_name(name),
            value=value,
            timestamp=timestamp,
        )

    def shape(self, metrics: Sequence[Metric]) -> List[ServiceMetricPayload]:
        values = [MetricValue(name=m.name, time=m.unix_time, value=m.value) for m in metrics]
        return [ServiceMetricPayload(values=values, service=self.service, host_id=self.host_id)]
