"""
Shoal - Telemetry Tests

Batching, routing and delivery channel behaviour.
"""

import asyncio
import math
from datetime import datetime, timezone

import pytest

from shoal.telemetry.channel import ChannelClosed, DeliveryChannel
from shoal.telemetry.models import Batch, DataPoint, Metric
from shoal.telemetry.router import MAX_METRIC_DATUM, route_metrics, split_batches

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestSplitBatches:
    """Test slicing into request-sized windows."""

    @pytest.mark.parametrize("size", [0, 1, 19, 20, 21, 40, 45])
    def test_windows(self, size):
        """Test ceil(N/20) ordered non-empty windows covering the input."""
        items = list(range(size))

        batches = split_batches(items)

        assert len(batches) == math.ceil(size / MAX_METRIC_DATUM)
        assert all(0 < len(b) <= MAX_METRIC_DATUM for b in batches)
        assert [i for b in batches for i in b] == items

    def test_invalid_limit(self):
        """Test a non-positive limit is rejected."""
        with pytest.raises(ValueError):
            split_batches([1, 2], limit=0)


class TestRouteMetrics:
    """Test grouping and dimension expansion."""

    def test_groups_by_namespace_in_order(self):
        """Test batches follow first-seen namespace order."""
        metrics = [
            Metric("b/x", "m1", 1.0, NOW),
            Metric("a/y", "m2", 2.0, NOW),
            Metric("b/x", "m3", 3.0, NOW),
        ]

        batches = route_metrics(metrics, ())

        assert [b.namespace for b in batches] == ["b/x", "a/y"]
        assert [p.name for p in batches[0].data] == ["m1", "m3"]

    def test_expands_dimensions(self):
        """Test each metric yields one point per dimension set plus one untagged."""
        dims = ((("Host", "a"),), (("Host", "b"),))
        metrics = [Metric("a/b", f"m{i}", float(i), NOW) for i in range(15)]

        batches = route_metrics(metrics, dims)
        points = [p for b in batches for p in b.data]

        assert [len(b) for b in batches] == [20, 20, 5]
        assert len(points) == 45
        assert [p.dimensions for p in points[:3]] == [dims[0], dims[1], ()]

    def test_empty(self):
        """Test no metrics produce no batches."""
        assert route_metrics([], ((("Host", "a"),),)) == []


class TestBatch:
    """Test backend request shaping."""

    def test_put_metric_data(self):
        """Test a batch converts to PutMetricData arguments."""
        batch = Batch("memcached/check", (
            DataPoint("CheckOK", 1.0, NOW, (("Host", "a"),)),
            DataPoint("CheckOK", 1.0, NOW),
        ))

        request = batch.to_put_metric_data()

        assert request["Namespace"] == "memcached/check"
        assert request["MetricData"][0] == {
            "MetricName": "CheckOK",
            "Value": 1.0,
            "Timestamp": NOW,
            "Dimensions": [{"Name": "Host", "Value": "a"}],
        }
        assert "Dimensions" not in request["MetricData"][1]


class TestDeliveryChannel:
    """Test channel close and drain semantics."""

    @pytest.mark.asyncio
    async def test_fifo(self):
        """Test items come out in send order."""
        channel = DeliveryChannel("test")
        for i in range(3):
            await channel.send(i)

        assert [await channel.receive() for _ in range(3)] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_close_drains_backlog(self):
        """Test items sent before close are still delivered."""
        channel = DeliveryChannel("test")
        await channel.send("a")
        await channel.send("b")
        await channel.close()

        assert [item async for item in channel] == ["a", "b"]
        assert channel.drained is True
        with pytest.raises(ChannelClosed):
            await channel.receive()

    @pytest.mark.asyncio
    async def test_send_after_close(self):
        """Test sending on a closed channel raises."""
        channel = DeliveryChannel("test")
        await channel.close()

        with pytest.raises(ChannelClosed):
            await channel.send("late")

    @pytest.mark.asyncio
    async def test_full_channel_blocks_sender(self):
        """Test a full channel applies backpressure without dropping."""
        channel = DeliveryChannel("test", capacity=1)
        await channel.send(1)

        sender = asyncio.create_task(channel.send(2))
        await asyncio.sleep(0.05)
        assert not sender.done()

        assert await channel.receive() == 1
        await asyncio.wait_for(sender, timeout=1)
        assert await channel.receive() == 2

    @pytest.mark.asyncio
    async def test_close_waits_for_room(self):
        """Test closing a full channel waits for the consumer."""
        channel = DeliveryChannel("test", capacity=1)
        await channel.send("x")

        closer = asyncio.create_task(channel.close())
        await asyncio.sleep(0.05)
        assert channel.closed is True

        received = [item async for item in channel]
        await asyncio.wait_for(closer, timeout=1)
        assert received == ["x"]
