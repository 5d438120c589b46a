"""
Shoal - Plugins Package

Plugins are external commands run on an interval:
- Check plugins: exit status becomes a health data point
- Metric plugins: stdout lines become metrics for CloudWatch or Mackerel
"""

from .base import (
    CheckPluginSpec,
    DestinationKind,
    MetricDestination,
    MetricParseError,
    MetricPluginSpec,
    PluginSpec,
)
from .check import CheckEvaluator, CheckResult
from .destinations import CloudWatchDestination, MackerelDestination
from .metrics import CollectionError, MetricCollector

__all__ = [
    "CheckEvaluator",
    "CheckPluginSpec",
    "CheckResult",
    "CloudWatchDestination",
    "CollectionError",
    "DestinationKind",
    "MackerelDestination",
    "MetricCollector",
    "MetricDestination",
    "MetricParseError",
    "MetricPluginSpec",
    "PluginSpec",
]
