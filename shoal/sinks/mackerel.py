"""
Shoal - Mackerel Sink

Posts service metrics (`/api/v0/services/<service>/tsdb`) or host custom
metrics (`/api/v0/tsdb`) to the Mackerel API.
"""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from .. import __version__
from ..telemetry.models import MetricValue, ServiceMetricPayload
from .base import BaseSink, DeliveryError

logger = structlog.get_logger(__name__)


class MackerelClient:
    """Minimal async client for the Mackerel metric posting endpoints."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.mackerelio.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "X-Api-Key": api_key,
                "Content-Type": "application/json",
                "User-Agent": f"shoal-agent/{__version__}",
            },
        )

    async def _post(self, path: str, body: List[Dict[str, Any]]) -> Dict[str, Any]:
        try:
            response = await self._http.post(path, json=body)
        except httpx.HTTPError as e:
            raise DeliveryError(f"request to {path} failed: {e}") from e

        if response.status_code >= 400:
            raise DeliveryError(f"API error {response.status_code}: {response.text}")
        return response.json() if response.content else {}

    async def post_service_metric_values(self, service: str, values: List[MetricValue]) -> Dict[str, Any]:
        body = [{"name": v.name, "time": v.time, "value": v.value} for v in values]
        return await self._post(f"/api/v0/services/{service}/tsdb", body)

    async def post_host_metric_values(self, host_id: str, values: List[MetricValue]) -> Dict[str, Any]:
        body = [
            {"hostId": host_id, "name": v.name, "time": v.time, "value": v.value}
            for v in values
        ]
        return await self._post("/api/v0/tsdb", body)

    async def aclose(self) -> None:
        await self._http.aclose()


class MackerelSink(BaseSink):
    """Sink for the metrics-ingestion service."""

    def __init__(self, client: MackerelClient):
        super().__init__()
        self._client = client

    @property
    def name(self) -> str:
        return "mackerel"

    async def deliver(self, payload: ServiceMetricPayload) -> None:
        if payload.service:
            await self._client.post_service_metric_values(payload.service, payload.values)
        elif payload.host_id:
            await self._client.post_host_metric_values(payload.host_id, payload.values)
        else:
            raise DeliveryError("payload has neither service nor host id")

    async def close(self) -> None:
        await self._client.aclose()
