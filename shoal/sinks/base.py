"""
Shoal - Base Sink Interface

A sink owns one backend client and drains one delivery channel. Failed
deliveries are logged and dropped: the next tick brings fresh data, so
nothing is retried.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

import structlog

from ..telemetry.channel import DeliveryChannel

logger = structlog.get_logger(__name__)
_stdlib_logger = logging.getLogger(__name__)


class SinkInitError(Exception):
    """A backend client could not be set up. Fatal at startup."""
    pass


class DeliveryError(Exception):
    """A backend rejected or failed a delivery."""
    pass


class BaseSink(ABC):
    """Base class for backend sink dispatchers."""

    def __init__(self):
        self.delivered = 0
        self.failed = 0

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def deliver(self, payload: Any) -> None:
        """Send one payload to the backend."""
        pass

    def describe(self, payload: Any) -> Any:
        """Loggable form of a payload."""
        return payload.to_dict() if hasattr(payload, "to_dict") else repr(payload)

    async def close(self) -> None:
        """Release the backend client."""
        pass

    async def run(self, channel: DeliveryChannel) -> None:
        """Drain the channel until it is closed and empty."""
        logger.info("Sink started", sink=self.name)

        async for payload in channel:
            if not len(payload):
                continue

            if _stdlib_logger.isEnabledFor(logging.DEBUG):
                logger.debug("Delivering payload", sink=self.name, payload=self.describe(payload))

            try:
                await self.deliver(payload)
                self.delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.error("Delivery failed", sink=self.name, error=str(e))

        logger.info(
            "Sink channel closed",
            sink=self.name,
            delivered=self.delivered,
            failed=self.failed,
        )
