"""
Shoal - Agent

The agent wires configuration, delivery channels, plugin loops and sink
dispatchers together and coordinates shutdown:

1. stop plugin loops from starting new ticks, let in-flight runs finish
2. close every delivery channel once all producers have exited
3. wait for every sink to drain its channel

Usage:
    shoal-agent --config config.yaml [--debug] [--sleep 10s] [--at-once]
"""

import argparse
import asyncio
import logging
import signal
import sys
import time
from typing import Dict, List, Optional, Sequence

import structlog

from . import __version__
from .config.loader import load_config
from .config.plugins import ConfigError, ShoalConfig, parse_duration
from .plugins.base import DestinationKind
from .runner.command import CommandRunner
from .scheduler import LAUNCH_STAGGER, Scheduler
from .settings import AgentSettings
from .sinks.base import BaseSink, SinkInitError
from .sinks.cloudwatch import CloudWatchSink, create_cloudwatch_client
from .sinks.mackerel import MackerelClient, MackerelSink
from .telemetry.channel import DEFAULT_CAPACITY, RUN_ONCE_CAPACITY, DeliveryChannel

logger = structlog.get_logger(__name__)

TRAP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def configure_logging(debug: bool = False) -> None:
    """Configure structured logging."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        stream=sys.stderr,
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(default=str),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def uses_destination(config: ShoalConfig, kind: DestinationKind) -> bool:
    """Whether any plugin delivers to the given backend."""
    if kind == DestinationKind.CLOUDWATCH and config.check_plugins:
        return True
    return any(p.destination.kind == kind for p in config.metric_plugins.values())


def build_sinks(settings: AgentSettings, config: ShoalConfig) -> Dict[DestinationKind, BaseSink]:
    """Create one sink per backend, each with its own client.

    A backend that cannot be initialized is fatal only when some plugin
    actually delivers to it.
    """
    try:
        cloudwatch_client = create_cloudwatch_client(settings.aws_region)
    except SinkInitError as e:
        if uses_destination(config, DestinationKind.CLOUDWATCH):
            raise
        logger.warning("CloudWatch client unavailable, no plugin uses it", error=str(e))
        cloudwatch_client = None

    if not settings.mackerel_apikey and uses_destination(config, DestinationKind.MACKEREL):
        raise SinkInitError("MACKEREL_APIKEY is required for mackerel destinations")

    mackerel_client = MackerelClient(settings.mackerel_apikey, base_url=settings.mackerel_api_base)

    return {
        DestinationKind.CLOUDWATCH: CloudWatchSink(cloudwatch_client),
        DestinationKind.MACKEREL: MackerelSink(mackerel_client),
    }


class ShoalAgent:
    """Main agent application and shutdown coordinator."""

    def __init__(
        self,
        config: ShoalConfig,
        sinks: Dict[DestinationKind, BaseSink],
        at_once: bool = False,
        runner: Optional[CommandRunner] = None,
        stagger: float = LAUNCH_STAGGER,
    ):
        self.config = config
        self.sinks = sinks
        self.at_once = at_once

        capacity = RUN_ONCE_CAPACITY if at_once else DEFAULT_CAPACITY
        self.channels: Dict[DestinationKind, DeliveryChannel] = {
            kind: DeliveryChannel(kind.value, capacity) for kind in DestinationKind
        }
        self.scheduler = Scheduler(config, self.channels, runner=runner, stagger=stagger)

        self._sink_tasks: List[asyncio.Task] = []
        self._shutdown_event = asyncio.Event()
        self._complete = False

    @property
    def is_complete(self) -> bool:
        return self._complete

    def _start_sinks(self) -> None:
        for kind, sink in self.sinks.items():
            task = asyncio.create_task(sink.run(self.channels[kind]), name=f"sink.{sink.name}")
            self._sink_tasks.append(task)

    async def run(self) -> None:
        """Run until stopped (or, in at-once mode, until every plugin ran once)."""
        logger.info("Starting Shoal agent", version=__version__, at_once=self.at_once)
        self._start_sinks()

        if self.at_once:
            await self.scheduler.run_once()
        else:
            await self.scheduler.start()
            await self._shutdown_event.wait()

        await self.shutdown()

    async def shutdown(self) -> None:
        """Stop producers, close channels, drain consumers."""
        logger.info("Shutting down, waiting for complete")
        self.scheduler.stop()
        await self.scheduler.wait()

        for channel in self.channels.values():
            await channel.close()

        if self._sink_tasks:
            await asyncio.gather(*self._sink_tasks)

        for sink in self.sinks.values():
            try:
                await sink.close()
            except Exception as e:
                logger.warning("Error closing sink", sink=sink.name, error=str(e))

        self._complete = True
        logger.info("Shutdown complete")

    def stop(self) -> None:
        """Request shutdown."""
        self.scheduler.stop()
        self._shutdown_event.set()

    def handle_signal(self, signum: int) -> None:
        """Handle shutdown signals."""
        logger.info("Received signal", signal=signal.Signals(signum).name)
        self.stop()


async def run_agent(settings: AgentSettings) -> None:
    """Load configuration, build sinks and run the agent."""
    config = await load_config(settings.config, region=settings.aws_region)
    sinks = build_sinks(settings, config)
    agent = ShoalAgent(config, sinks, at_once=settings.at_once)

    loop = asyncio.get_running_loop()
    for signum in TRAP_SIGNALS:
        loop.add_signal_handler(signum, agent.handle_signal, signum)

    try:
        await agent.run()
    finally:
        for signum in TRAP_SIGNALS:
            loop.remove_signal_handler(signum)


def parse_args(argv: Optional[Sequence[str]] = None, settings: Optional[AgentSettings] = None) -> AgentSettings:
    """Parse command-line flags on top of environment settings."""
    settings = settings or AgentSettings()

    parser = argparse.ArgumentParser(description="Shoal - plugin metrics agent")
    parser.add_argument("--version", action="version", version=f"shoal-agent {__version__}")
    parser.add_argument("--config", "-c", default=settings.config, help="config file path or URL (file, http(s), s3)")
    parser.add_argument("--debug", action="store_true", default=settings.debug, help="enable debug logging")
    parser.add_argument("--sleep", default=settings.sleep, help="sleep duration at wake up (e.g. 10s)")
    parser.add_argument("--at-once", action="store_true", default=settings.at_once, help="run at once and exit")
    args = parser.parse_args(argv)

    return settings.model_copy(
        update={
            "config": args.config,
            "debug": args.debug,
            "sleep": parse_duration(args.sleep),
            "at_once": args.at_once,
        }
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    try:
        settings = parse_args(argv)
    except ValueError as e:
        print(f"invalid settings: {e}", file=sys.stderr)
        return 2

    configure_logging(settings.debug)
    logger.info("Starting shoal agent", config=settings.config)

    if settings.sleep > 0:
        logger.info("Sleeping before start", seconds=settings.sleep)
        time.sleep(settings.sleep)

    try:
        asyncio.run(run_agent(settings))
    except (ConfigError, SinkInitError) as e:
        logger.error("Agent failed to start", error=str(e))
        return 1
    except Exception as e:
        logger.exception("Agent failed", error=str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
