"""
Shoal - Plugin Configuration

Validates the `plugin` section of the configuration document and turns each
entry into an immutable plugin spec.
"""

import re
import shlex
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from ..plugins.base import (
    DEFAULT_INTERVAL,
    DEFAULT_TIMEOUT,
    CheckPluginSpec,
    DestinationKind,
    MetricPluginSpec,
    PluginSpec,
)
from ..plugins.destinations import CloudWatchDestination, MackerelDestination
from ..telemetry.models import DimensionSet

logger = structlog.get_logger(__name__)


class ConfigError(Exception):
    """Invalid or unreadable configuration. Fatal at startup."""
    pass


_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: Union[str, int, float, None]) -> float:
    """Parse a duration such as `1m30s`, `500ms` or a plain number of seconds."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"invalid duration: {value!r}")
        return float(value)

    text = str(value).strip()
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if seconds < 0:
            raise ValueError(f"invalid duration: {value!r}")
        return seconds

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return total


def parse_dimension_set(text: str) -> DimensionSet:
    """Parse `Key1=Val1,Key2=Val2` into a dimension set."""
    dimensions = []
    for part in text.split(","):
        cols = part.split("=", 1)
        if len(cols) != 2:
            raise ConfigError(f"invalid dimension: {part}")
        dimensions.append((cols[0], cols[1]))
    return tuple(dimensions)


def parse_command(text: str) -> Tuple[str, ...]:
    """Split a command line the way a POSIX shell would."""
    try:
        args = shlex.split(text)
    except ValueError as e:
        raise ConfigError(f"parse command failed: {e}") from e
    if not args:
        raise ConfigError("command required")
    return tuple(args)


class PluginConfig(BaseModel):
    """One `[plugin.<category>.<id>]` entry."""

    model_config = ConfigDict(extra="ignore")

    command: str = ""
    namespace: str = ""
    destination: str = ""
    service: str = ""
    host_id: str = ""
    dimensions: List[str] = []
    timeout: float = 0.0
    interval: float = 0.0

    @field_validator("timeout", "interval", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> float:
        return parse_duration(value)

    @field_validator("dimensions", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value or []

    def _common(self, plugin_id: str) -> Dict[str, Any]:
        if not self.command.strip():
            raise ConfigError(f"{plugin_id}: command required")
        return {
            "id": plugin_id,
            "command": parse_command(self.command),
            "timeout": self.timeout or DEFAULT_TIMEOUT,
            "interval": self.interval or DEFAULT_INTERVAL,
        }

    def dimension_sets(self) -> Tuple[DimensionSet, ...]:
        return tuple(parse_dimension_set(d) for d in self.dimensions)

    def destination_kind(self) -> DestinationKind:
        name = self.destination.strip().lower() or DestinationKind.CLOUDWATCH.value
        try:
            return DestinationKind(name)
        except ValueError:
            raise ConfigError(
                f"destination {self.destination} is not allowed. use cloudwatch or mackerel"
            ) from None

    def to_check_spec(self, name: str) -> CheckPluginSpec:
        plugin_id = f"plugin.check.{name}"
        if not self.namespace:
            raise ConfigError(f"{plugin_id}: namespace required")
        return CheckPluginSpec(
            namespace=self.namespace,
            dimensions=self.dimension_sets(),
            **self._common(plugin_id),
        )

    def to_metric_spec(self, name: str) -> MetricPluginSpec:
        kind = self.destination_kind()
        if kind == DestinationKind.CLOUDWATCH:
            destination = CloudWatchDestination(dimensions=self.dimension_sets())
        else:
            destination = self._mackerel_destination(name)
        plugin_id = f"{destination.id_prefix}.{name}"
        return MetricPluginSpec(destination=destination, **self._common(plugin_id))

    def _mackerel_destination(self, name: str) -> MackerelDestination:
        if self.service and self.host_id:
            raise ConfigError(f"{name}: service and host_id are mutually exclusive")
        if not self.service and not self.host_id:
            raise ConfigError(f"{name}: service required")
        if self.dimensions:
            logger.warning("Dimensions are ignored for mackerel destination", plugin=name)
        return MackerelDestination(service=self.service or None, host_id=self.host_id or None)


@dataclass(frozen=True)
class ShoalConfig:
    """Validated configuration: every plugin the agent will run."""
    check_plugins: Dict[str, CheckPluginSpec] = field(default_factory=dict)
    metric_plugins: Dict[str, MetricPluginSpec] = field(default_factory=dict)

    @property
    def plugins(self) -> List[PluginSpec]:
        return [*self.metric_plugins.values(), *self.check_plugins.values()]


def _validate(section: str, name: str, raw: Any) -> PluginConfig:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"[plugin.{section}.{name}] must be a table")
    try:
        return PluginConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"[plugin.{section}.{name}] {e}") from e


def build_config(data: Optional[Dict[str, Any]]) -> ShoalConfig:
    """Build a ShoalConfig from a parsed configuration document."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("configuration must be a mapping")

    plugin_section = data.get("plugin") or {}
    if not isinstance(plugin_section, dict):
        raise ConfigError("[plugin] must be a table")

    checks: Dict[str, CheckPluginSpec] = {}
    metrics: Dict[str, MetricPluginSpec] = {}

    for section, entries in plugin_section.items():
        if section not in ("metrics", "check"):
            raise ConfigError(f"unknown config section [plugin.{section}]")
        if not isinstance(entries, dict):
            raise ConfigError(f"[plugin.{section}] must be a table")

        for name, raw in entries.items():
            plugin_config = _validate(section, name, raw)
            if section == "metrics":
                metrics[name] = plugin_config.to_metric_spec(name)
            else:
                checks[name] = plugin_config.to_check_spec(name)

    return ShoalConfig(check_plugins=checks, metric_plugins=metrics)
