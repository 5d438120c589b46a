"""
Shoal - Scheduler

One independent loop per plugin. A loop runs its plugin immediately, then
on a repeating timer aligned to the plugin's interval. A tick that comes due
while a run is still in flight fires as soon as the run finishes; any further
missed ticks are dropped, so runs of one plugin never overlap or pile up.

Stopping only prevents new ticks. A run already in progress finishes on its
own timeout/kill-after policy.
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import structlog

from .config.plugins import ShoalConfig
from .plugins.base import CheckPluginSpec, DestinationKind, MetricPluginSpec, PluginSpec
from .plugins.check import CheckEvaluator
from .plugins.metrics import MetricCollector
from .runner.command import CommandRunner
from .telemetry.channel import DeliveryChannel

logger = structlog.get_logger(__name__)

# Delay between plugin loop launches, to avoid hitting backend APIs all at once.
LAUNCH_STAGGER = 1.0

Tick = Callable[[], Awaitable[object]]


class Scheduler:
    """Owns the per-plugin execution loops."""

    def __init__(
        self,
        config: ShoalConfig,
        channels: Dict[DestinationKind, DeliveryChannel],
        runner: Optional[CommandRunner] = None,
        stagger: float = LAUNCH_STAGGER,
    ):
        self.config = config
        self.channels = channels
        self.runner = runner or CommandRunner()
        self.stagger = stagger

        self._stop_event = asyncio.Event()
        self._tasks: List[asyncio.Task] = []
        self._ticks: Dict[str, int] = {}

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    @property
    def running_loops(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    def ticks(self, plugin_id: str) -> int:
        """Number of completed ticks for a plugin."""
        return self._ticks.get(plugin_id, 0)

    def _build_tick(self, spec: PluginSpec) -> Tick:
        """Bind a plugin spec to its evaluator/collector and channel."""
        if isinstance(spec, CheckPluginSpec):
            evaluator = CheckEvaluator(spec, self.runner)
            channel = self.channels[DestinationKind.CLOUDWATCH]
            return lambda: evaluator.run_once(channel)
        if isinstance(spec, MetricPluginSpec):
            collector = MetricCollector(spec, self.runner)
            channel = self.channels[spec.destination.kind]
            return lambda: collector.run_once(channel)
        raise TypeError(f"unsupported plugin spec: {type(spec).__name__}")

    def _workers(self) -> List[Tuple[PluginSpec, Tick]]:
        return [(spec, self._build_tick(spec)) for spec in self.config.plugins]

    async def start(self, once: bool = False) -> None:
        """Launch every plugin loop, staggered unless running once."""
        workers = self._workers()
        logger.info("Starting plugin loops", plugins=len(workers), once=once)

        for i, (spec, tick) in enumerate(workers):
            if self.stopping:
                break
            task = asyncio.create_task(self._loop(spec, tick, once), name=spec.id)
            self._tasks.append(task)

            if not once and self.stagger > 0 and i < len(workers) - 1:
                if await self._wait_for_stop(self.stagger):
                    break

    def stop(self) -> None:
        """Stop issuing new ticks."""
        if not self.stopping:
            logger.info("Stopping plugin loops", running=self.running_loops)
        self._stop_event.set()

    async def wait(self) -> None:
        """Wait until every plugin loop has exited."""
        if self._tasks:
            await asyncio.gather(*self._tasks)

    async def run_once(self) -> None:
        """Run every plugin exactly once, concurrently, and wait for them."""
        await self.start(once=True)
        await self.wait()

    async def _wait_for_stop(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds. Returns True if stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=max(timeout, 0))
            return True
        except asyncio.TimeoutError:
            return False

    async def _run_tick(self, spec: PluginSpec, tick: Tick) -> None:
        try:
            await tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Plugin tick error", plugin=spec.id, error=str(e))
        finally:
            self._ticks[spec.id] = self._ticks.get(spec.id, 0) + 1

    async def _loop(self, spec: PluginSpec, tick: Tick, once: bool) -> None:
        logger.info("Plugin loop starting", plugin=spec.id, interval=spec.interval, timeout=spec.timeout)
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + spec.interval

        while True:
            await self._run_tick(spec, tick)
            if once or self.stopping:
                break

            now = loop.time()
            if now >= next_tick:
                # Came due mid-run: fire right away, skip the rest of the backlog.
                missed = int((now - next_tick) // spec.interval) + 1
                next_tick += missed * spec.interval
                if self.stopping:
                    break
                continue

            if await self._wait_for_stop(next_tick - now):
                break
            next_tick += spec.interval

        logger.info("Plugin loop stopped", plugin=spec.id)
