"""
Shoal - Configuration Loader

Fetches the configuration document from a local path, an HTTP(S) URL or an
S3 object, expands environment templates and parses the YAML.

Templates:
    {{ env "NAME" }}             value of NAME, empty if unset
    {{ env "NAME" "default" }}   value of NAME, or default
    {{ must_env "NAME" }}        value of NAME, error if unset
"""

import asyncio
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Union
from urllib.parse import urlparse

import boto3
import httpx
import structlog
import yaml
from botocore.exceptions import BotoCoreError, ClientError

from .plugins import ConfigError, ShoalConfig, build_config

logger = structlog.get_logger(__name__)

_TEMPLATE = re.compile(
    r"\{\{\s*(must_env|env)\s+\"([^\"]+)\"(?:\s+\"([^\"]*)\")?\s*\}\}"
)


def render_env(text: str, environ: Optional[Dict[str, str]] = None) -> str:
    """Expand env templates in the raw configuration text."""
    env = os.environ if environ is None else environ

    def _replace(match: "re.Match[str]") -> str:
        func, name, default = match.group(1), match.group(2), match.group(3)
        value = env.get(name)
        if value:
            return value
        if func == "must_env":
            raise ConfigError(f"environment variable {name} is not defined")
        return default or ""

    return _TEMPLATE.sub(_replace, text)


def parse_config(raw: Union[str, bytes], environ: Optional[Dict[str, str]] = None) -> ShoalConfig:
    """Parse a configuration document into a ShoalConfig."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        data: Any = yaml.safe_load(render_env(raw, environ))
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse config: {e}") from e
    return build_config(data)


async def fetch_http(url: str, client: Optional[httpx.AsyncClient] = None) -> bytes:
    """Fetch a configuration document over HTTP(S)."""
    logger.info("Fetching config over HTTP", url=url)
    owned = client is None
    client = client or httpx.AsyncClient(timeout=30.0)
    try:
        response = await client.get(url)
        response.raise_for_status()
        return response.content
    except httpx.HTTPError as e:
        raise ConfigError(f"failed to fetch {url}: {e}") from e
    finally:
        if owned:
            await client.aclose()


async def fetch_s3(bucket: str, key: str, region: Optional[str] = None, client: Any = None) -> bytes:
    """Fetch a configuration document from S3."""
    logger.info("Fetching config from S3", bucket=bucket, key=key)

    def _get() -> bytes:
        s3 = client or boto3.client("s3", region_name=region or None)
        out = s3.get_object(Bucket=bucket, Key=key)
        return out["Body"].read()

    try:
        return await asyncio.to_thread(_get)
    except (BotoCoreError, ClientError) as e:
        raise ConfigError(f"failed to get s3 object s3://{bucket}/{key}: {e}") from e


async def fetch_config(
    location: str,
    region: Optional[str] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    s3_client: Any = None,
) -> bytes:
    """Read raw configuration bytes from a path or URL."""
    if not location:
        raise ConfigError("config path required")

    parsed = urlparse(location)
    scheme = parsed.scheme.lower()

    if scheme in ("http", "https"):
        return await fetch_http(location, http_client)
    if scheme == "s3":
        return await fetch_s3(parsed.netloc, parsed.path.lstrip("/"), region, s3_client)
    if scheme in ("file", ""):
        path = Path(parsed.path if scheme == "file" else location)
        try:
            return path.read_bytes()
        except OSError as e:
            raise ConfigError(f"failed to load config: {e}") from e
    raise ConfigError(f"unsupported scheme {parsed.scheme}")


async def load_config(location: str, region: Optional[str] = None, **clients: Any) -> ShoalConfig:
    """Fetch and parse the configuration document."""
    raw = await fetch_config(location, region=region, **clients)
    config = parse_config(raw)
    logger.info(
        "Configuration loaded",
        path=location,
        checks=len(config.check_plugins),
        metrics=len(config.metric_plugins),
    )
    return config
