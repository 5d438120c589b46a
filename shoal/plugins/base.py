"""
Shoal - Plugin Base Definitions

Plugin specs are built once from configuration and never change afterwards.
Metric plugins deliver through a destination, which decides how output
lines are parsed and how a tick's metrics are shaped for its backend.
"""

import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Sequence, Tuple

from ..telemetry.channel import DeliveryChannel
from ..telemetry.models import DimensionSet, Metric, utc_from_unix

DEFAULT_INTERVAL = 60.0
DEFAULT_TIMEOUT = 60.0


class DestinationKind(str, Enum):
    """Backends a metric plugin can deliver to."""
    CLOUDWATCH = "cloudwatch"
    MACKEREL = "mackerel"


_METRIC_VALUE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?\Z", re.ASCII)


class MetricParseError(ValueError):
    """A single line of plugin output could not be parsed."""
    pass


def split_metric_line(line: str) -> Tuple[str, float, Any]:
    """Split `name<TAB>value<TAB>unix-timestamp` into typed fields."""
    cols = line.split("\t", 2)
    if len(cols) < 3:
        raise MetricParseError("invalid metric format. insufficient columns")
    name, value, timestamp = cols

    # Plain decimal or exponent form only; no underscores, padding, nan or inf.
    if not _METRIC_VALUE.match(value):
        raise MetricParseError(f"invalid metric value: {value}")
    parsed_value = float(value)
    if not math.isfinite(parsed_value):
        raise MetricParseError(f"invalid metric value: {value}")

    try:
        parsed_ts = utc_from_unix(int(timestamp.strip()))
    except (ValueError, OverflowError, OSError):
        raise MetricParseError(f"invalid metric time: {timestamp}") from None

    return name, parsed_value, parsed_ts


class MetricDestination(ABC):
    """Backend-specific parsing and enqueueing for metric plugins."""

    @property
    @abstractmethod
    def kind(self) -> DestinationKind:
        pass

    @property
    @abstractmethod
    def id_prefix(self) -> str:
        """Prefix for identities of plugins using this destination."""
        pass

    @abstractmethod
    def parse_line(self, line: str) -> Metric:
        """Parse one line of plugin output."""
        pass

    @abstractmethod
    def shape(self, metrics: Sequence[Metric]) -> List[Any]:
        """Turn one tick's metrics into the payloads this backend's sink consumes."""
        pass

    async def enqueue(self, metrics: Sequence[Metric], channel: DeliveryChannel) -> int:
        """Send a tick's payloads on the channel. Returns the number sent."""
        payloads = self.shape(metrics)
        for payload in payloads:
            await channel.send(payload)
        return len(payloads)


@dataclass(frozen=True)
class PluginSpec:
    """Fields shared by every plugin."""
    id: str
    command: Tuple[str, ...]
    timeout: float = DEFAULT_TIMEOUT
    interval: float = DEFAULT_INTERVAL


@dataclass(frozen=True)
class CheckPluginSpec(PluginSpec):
    """A check whose exit status becomes a health data point."""
    namespace: str = ""
    dimensions: Tuple[DimensionSet, ...] = ()


def _default_destination() -> MetricDestination:
    from .destinations import CloudWatchDestination
    return CloudWatchDestination()


@dataclass(frozen=True)
class MetricPluginSpec(PluginSpec):
    """A collector whose stdout lines become metrics."""
    destination: MetricDestination = field(default_factory=_default_destination)
