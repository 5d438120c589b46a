"""
Shoal - Telemetry Models

Data points flowing from plugins to sinks.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

# A dimension is a (name, value) pair; a dimension set is an ordered group of them.
Dimension = Tuple[str, str]
DimensionSet = Tuple[Dimension, ...]


def utc_from_unix(ts: int) -> datetime:
    """Convert a unix timestamp (seconds) to an aware UTC datetime."""
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def utc_now() -> datetime:
    """Current time truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


@dataclass(frozen=True)
class Metric:
    """One parsed metric sample."""
    namespace: str
    name: str
    value: float
    timestamp: datetime

    @property
    def unix_time(self) -> int:
        return int(self.timestamp.timestamp())

    def to_data_point(self, dimensions: DimensionSet = ()) -> "DataPoint":
        return DataPoint(
            name=self.name,
            value=self.value,
            timestamp=self.timestamp,
            dimensions=dimensions,
        )


@dataclass(frozen=True)
class DataPoint:
    """A metric value tagged with one dimension set, ready for the time-series service."""
    name: str
    value: float
    timestamp: datetime
    dimensions: DimensionSet = ()

    def to_metric_datum(self) -> Dict[str, Any]:
        """Convert to a CloudWatch MetricDatum structure."""
        datum: Dict[str, Any] = {
            "MetricName": self.name,
            "Value": self.value,
            "Timestamp": self.timestamp,
        }
        if self.dimensions:
            datum["Dimensions"] = [
                {"Name": name, "Value": value} for name, value in self.dimensions
            ]
        return datum


@dataclass(frozen=True)
class Batch:
    """A namespace-scoped group of at most MAX_METRIC_DATUM data points."""
    namespace: str
    data: Tuple[DataPoint, ...]

    def __len__(self) -> int:
        return len(self.data)

    def to_put_metric_data(self) -> Dict[str, Any]:
        """Build keyword arguments for PutMetricData."""
        return {
            "Namespace": self.namespace,
            "MetricData": [point.to_metric_datum() for point in self.data],
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "namespace": self.namespace,
            "data": [
                {
                    "name": p.name,
                    "value": p.value,
                    "timestamp": p.timestamp.isoformat(),
                    "dimensions": dict(p.dimensions),
                }
                for p in self.data
            ],
        }


@dataclass(frozen=True)
class MetricValue:
    """A single value as posted to the metrics-ingestion service."""
    name: str
    time: int
    value: float


@dataclass
class ServiceMetricPayload:
    """One tick's worth of values for a Mackerel service or host."""
    values: List[MetricValue] = field(default_factory=list)
    service: Optional[str] = None
    host_id: Optional[str] = None

    def __len__(self) -> int:
        return len(self.values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service,
            "host_id": self.host_id,
            "values": [
                {"name": v.name, "time": v.time, "value": v.value} for v in self.values
            ],
        }
