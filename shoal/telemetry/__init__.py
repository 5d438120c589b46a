"""
Shoal - Telemetry Package

Data model, batching and delivery channels between plugins and sinks.
"""

from .channel import ChannelClosed, DeliveryChannel
from .models import Batch, DataPoint, Metric, MetricValue, ServiceMetricPayload
from .router import MAX_METRIC_DATUM, route_metrics, split_batches

__all__ = [
    "Batch",
    "ChannelClosed",
    "DataPoint",
    "DeliveryChannel",
    "MAX_METRIC_DATUM",
    "Metric",
    "MetricValue",
    "ServiceMetricPayload",
    "route_metrics",
    "split_batches",
]
