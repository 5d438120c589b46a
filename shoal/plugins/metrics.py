"""
Shoal - Metric Collector

Runs a metric plugin command and parses its standard output, one metric per
line. Bad lines are logged and skipped. A command that does not exit cleanly
invalidates the whole tick.
"""

from typing import List, Optional

import structlog

from ..runner.command import CommandRunner, CommandSpawnError
from ..telemetry.channel import DeliveryChannel
from ..telemetry.models import Metric
from .base import MetricParseError, MetricPluginSpec

logger = structlog.get_logger(__name__)


class CollectionError(Exception):
    """The plugin command failed; nothing from this tick is usable."""
    pass


class MetricCollector:
    """Collects metrics for one metric plugin."""

    def __init__(self, spec: MetricPluginSpec, runner: Optional[CommandRunner] = None):
        self.spec = spec
        self.runner = runner or CommandRunner()

    @property
    def id(self) -> str:
        return self.spec.id

    def parse(self, lines: List[str]) -> List[Metric]:
        metrics = []
        for line in lines:
            try:
                metrics.append(self.spec.destination.parse_line(line))
            except MetricParseError as e:
                logger.warning("Skipping metric line", plugin=self.id, line=line, error=str(e))
        return metrics

    async def collect(self) -> List[Metric]:
        """Run the command and parse its output.

        Raises:
            CollectionError: on spawn failure, timeout or non-zero exit.
        """
        try:
            result = await self.runner.run(self.spec.command, self.spec.timeout, name=self.id)
        except CommandSpawnError as e:
            raise CollectionError(str(e)) from e

        if not result.exited:
            raise CollectionError(f"command execute timed out ({result.status.value})")
        if result.exit_code != 0:
            raise CollectionError(f"command execute failed with exit code {result.exit_code}")

        return self.parse(result.lines())

    async def run_once(self, channel: DeliveryChannel) -> int:
        """Collect and enqueue one tick. Returns the number of metrics collected."""
        try:
            metrics = await self.collect()
        except CollectionError as e:
            logger.error("Metric collection failed", plugin=self.id, error=str(e))
            return 0

        sent = await self.spec.destination.enqueue(metrics, channel)
        logger.debug("Metrics enqueued", plugin=self.id, metrics=len(metrics), payloads=sent)
        return len(metrics)
