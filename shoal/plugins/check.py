"""
Shoal - Check Evaluator

Runs a check command and maps its exit status to a health state:

    exit 0            -> OK
    exit 1            -> Failed
    exit 2            -> Warning
    anything else     -> Unknown (also timeouts, kills and spawn failures)

Each evaluation produces one data point per dimension set plus an untagged
one, so the same result can be queried globally and per dimension.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

import structlog

from ..runner.command import CommandResult, CommandRunner, CommandSpawnError
from ..telemetry.channel import DeliveryChannel
from ..telemetry.models import Batch, DataPoint, DimensionSet, utc_now
from ..telemetry.router import build_batches
from .base import CheckPluginSpec

logger = structlog.get_logger(__name__)


class CheckResult(str, Enum):
    """Health state of one check evaluation. Values are the metric names."""
    OK = "CheckOK"
    FAILED = "CheckFailed"
    WARNING = "CheckWarning"
    UNKNOWN = "CheckUnknown"

    @classmethod
    def from_exit_code(cls, code: Optional[int]) -> "CheckResult":
        return _EXIT_CODES.get(code, cls.UNKNOWN)

    def data_point(self, timestamp: datetime, dimensions: DimensionSet = ()) -> DataPoint:
        return DataPoint(name=self.value, value=1.0, timestamp=timestamp, dimensions=dimensions)


_EXIT_CODES = {
    0: CheckResult.OK,
    1: CheckResult.FAILED,
    2: CheckResult.WARNING,
}


class CheckError(Exception):
    """A check could not produce a meaningful exit status."""
    pass


def classify(result: CommandResult) -> Tuple[CheckResult, Optional[CheckError]]:
    """Map a finished command to a CheckResult and an optional error."""
    if not result.exited:
        return CheckResult.UNKNOWN, CheckError("command execute timed out")

    check_result = CheckResult.from_exit_code(result.exit_code)
    if check_result == CheckResult.UNKNOWN:
        return check_result, CheckError(f"command execute failed with exit code {result.exit_code}")
    return check_result, None


class CheckEvaluator:
    """Evaluates one check plugin and enqueues its result."""

    def __init__(self, spec: CheckPluginSpec, runner: Optional[CommandRunner] = None):
        self.spec = spec
        self.runner = runner or CommandRunner()

    @property
    def id(self) -> str:
        return self.spec.id

    async def evaluate(self) -> Tuple[CheckResult, Optional[Exception]]:
        """Run the command once and classify the outcome."""
        try:
            result = await self.runner.run(self.spec.command, self.spec.timeout, name=self.id)
        except CommandSpawnError as e:
            return CheckResult.UNKNOWN, e

        if result.stdout.strip():
            logger.info("Check output", plugin=self.id, stdout=result.stdout.strip())

        return classify(result)

    def data_points(self, result: CheckResult, timestamp: datetime) -> List[DataPoint]:
        points = [result.data_point(timestamp, ds) for ds in self.spec.dimensions]
        # no dimension data point
        points.append(result.data_point(timestamp))
        return points

    def batches(self, result: CheckResult, timestamp: datetime) -> List[Batch]:
        return build_batches(self.spec.namespace, self.data_points(result, timestamp))

    async def run_once(self, channel: DeliveryChannel) -> CheckResult:
        """Evaluate, log any error and enqueue the result batches."""
        result, error = await self.evaluate()
        if error is not None:
            logger.error("Check failed", plugin=self.id, result=result.value, error=str(error))
        else:
            logger.debug("Check finished", plugin=self.id, result=result.value)

        for batch in self.batches(result, utc_now()):
            await channel.send(batch)
        return result
