"""
Shoal - Scheduler Tests
"""

import asyncio

import pytest
from structlog.testing import capture_logs

from shoal.config.plugins import ShoalConfig
from shoal.plugins.base import CheckPluginSpec, DestinationKind, MetricPluginSpec
from shoal.plugins.destinations import CloudWatchDestination
from shoal.scheduler import Scheduler
from shoal.telemetry.channel import RUN_ONCE_CAPACITY, DeliveryChannel
from tests.fakes import FakeRunner, exited

TS = 1700000000


def metric_spec(name, interval=0.05, timeout=5.0):
    return MetricPluginSpec(
        id=f"plugin.metrics.{name}",
        command=(name,),
        timeout=timeout,
        interval=interval,
        destination=CloudWatchDestination(),
    )


def check_spec(name, interval=0.05):
    return CheckPluginSpec(
        id=f"plugin.check.{name}",
        command=(name,),
        timeout=5.0,
        interval=interval,
        namespace=f"{name}/check",
    )


def make_channels():
    return {kind: DeliveryChannel(kind.value, RUN_ONCE_CAPACITY) for kind in DestinationKind}


def make_config(*specs):
    return ShoalConfig(
        check_plugins={s.id: s for s in specs if isinstance(s, CheckPluginSpec)},
        metric_plugins={s.id: s for s in specs if isinstance(s, MetricPluginSpec)},
    )


async def run_for(scheduler, seconds):
    await scheduler.start()
    await asyncio.sleep(seconds)
    scheduler.stop()
    await asyncio.wait_for(scheduler.wait(), timeout=5)


class TestRunOnce:
    """Test one-shot execution."""

    @pytest.mark.asyncio
    async def test_every_plugin_runs_once(self):
        """Test each plugin runs exactly once and its output is enqueued."""
        memcached = metric_spec("memcached", interval=60)
        web = check_spec("web", interval=60)
        runner = FakeRunner({memcached.id: exited(0, f"a.b.c\t1\t{TS}\n")})
        channels = make_channels()
        scheduler = Scheduler(make_config(memcached, web), channels, runner=runner, stagger=10)

        await asyncio.wait_for(scheduler.run_once(), timeout=5)

        assert runner.count(memcached.id) == 1
        assert runner.count(web.id) == 1
        assert channels[DestinationKind.CLOUDWATCH].qsize() == 2
        assert scheduler.running_loops == 0


class TestDaemonLoops:
    """Test repeating plugin loops."""

    @pytest.mark.asyncio
    async def test_ticks_repeat_until_stopped(self):
        """Test plugins keep ticking and stop issuing ticks after stop."""
        spec = metric_spec("memcached")
        runner = FakeRunner()
        scheduler = Scheduler(make_config(spec), make_channels(), runner=runner, stagger=0)

        await run_for(scheduler, 0.3)
        calls = runner.count(spec.id)
        await asyncio.sleep(0.15)

        assert calls >= 3
        assert runner.count(spec.id) == calls
        assert scheduler.ticks(spec.id) == calls

    @pytest.mark.asyncio
    async def test_in_flight_tick_completes(self):
        """Test stop lets a running command finish."""
        spec = metric_spec("slow")
        runner = FakeRunner(delay=0.3)
        scheduler = Scheduler(make_config(spec), make_channels(), runner=runner, stagger=0)

        await run_for(scheduler, 0.05)

        assert runner.calls == [spec.id]
        assert runner.finished == [spec.id]

    @pytest.mark.asyncio
    async def test_slow_plugin_does_not_delay_others(self):
        """Test loops are independent."""
        slow = metric_spec("slow")
        fast = metric_spec("fast")
        runner = FakeRunner(delays={slow.id: 0.6})
        scheduler = Scheduler(make_config(slow, fast), make_channels(), runner=runner, stagger=0)

        await run_for(scheduler, 0.3)

        assert runner.count(slow.id) == 1
        assert runner.count(fast.id) >= 3

    @pytest.mark.asyncio
    async def test_overrunning_plugin_does_not_pile_up(self):
        """Test ticks missed during a long run are not queued."""
        spec = metric_spec("slow", interval=0.05)
        runner = FakeRunner(delay=0.2)
        scheduler = Scheduler(make_config(spec), make_channels(), runner=runner, stagger=0)

        await run_for(scheduler, 0.5)

        assert 2 <= runner.count(spec.id) <= 3
        assert runner.finished == runner.calls

    @pytest.mark.asyncio
    async def test_tick_error_does_not_kill_loop(self):
        """Test an unexpected error is logged and the loop continues."""
        spec = metric_spec("broken")
        runner = FakeRunner({spec.id: RuntimeError("boom")})
        scheduler = Scheduler(make_config(spec), make_channels(), runner=runner, stagger=0)

        with capture_logs() as logs:
            await run_for(scheduler, 0.2)

        assert runner.count(spec.id) >= 2
        assert any(e["event"] == "Plugin tick error" for e in logs)

    @pytest.mark.asyncio
    async def test_stop_during_stagger(self):
        """Test stopping while launching skips the remaining plugins."""
        first = metric_spec("first", interval=60)
        second = metric_spec("second", interval=60)
        runner = FakeRunner()
        scheduler = Scheduler(make_config(first, second), make_channels(), runner=runner, stagger=10)

        starting = asyncio.create_task(scheduler.start())
        await asyncio.sleep(0.05)
        scheduler.stop()
        await asyncio.wait_for(starting, timeout=1)
        await asyncio.wait_for(scheduler.wait(), timeout=1)

        assert runner.count(first.id) == 1
        assert runner.count(second.id) == 0

    @pytest.mark.asyncio
    async def test_stop_interrupts_interval_wait(self):
        """Test a long interval does not delay shutdown."""
        spec = metric_spec("hourly", interval=3600)
        runner = FakeRunner()
        scheduler = Scheduler(make_config(spec), make_channels(), runner=runner, stagger=0)

        await run_for(scheduler, 0.05)

        assert runner.count(spec.id) == 1
        assert scheduler.running_loops == 0
