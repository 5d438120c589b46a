"""
Shoal - Sinks Package

One dispatcher per backend:
- CloudWatchSink: metric batches via PutMetricData
- MackerelSink: service and host metric values
"""

from .base import BaseSink, DeliveryError, SinkInitError
from .cloudwatch import CloudWatchSink, create_cloudwatch_client
from .mackerel import MackerelClient, MackerelSink

__all__ = [
    "BaseSink",
    "CloudWatchSink",
    "DeliveryError",
    "MackerelClient",
    "MackerelSink",
    "SinkInitError",
    "create_cloudwatch_client",
]
