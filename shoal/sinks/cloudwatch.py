"""
Shoal - CloudWatch Sink

Delivers metric batches with PutMetricData. boto3 is blocking, so each call
runs in a worker thread.
"""

import asyncio
from typing import Any, Optional

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from ..telemetry.models import Batch
from .base import BaseSink, DeliveryError, SinkInitError

logger = structlog.get_logger(__name__)


def create_cloudwatch_client(region: Optional[str] = None) -> Any:
    """Create the CloudWatch client for the given region."""
    try:
        return boto3.client("cloudwatch", region_name=region or None)
    except BotoCoreError as e:
        raise SinkInitError(f"failed to load aws config: {e}") from e


class CloudWatchSink(BaseSink):
    """Sink for the time-series service."""

    def __init__(self, client: Any):
        super().__init__()
        self._client = client

    @property
    def name(self) -> str:
        return "cloudwatch"

    async def deliver(self, payload: Batch) -> None:
        if self._client is None:
            raise DeliveryError("cloudwatch client not configured")
        try:
            await asyncio.to_thread(self._client.put_metric_data, **payload.to_put_metric_data())
        except (BotoCoreError, ClientError) as e:
            raise DeliveryError(f"PutMetricData to CloudWatch failed: {e}") from e
