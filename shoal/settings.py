"""
Shoal - Agent Settings

Process-level settings loaded from environment variables. Command-line flags
take their defaults from here, so every flag can also be set through the
environment (CONFIG, DEBUG, SLEEP, AT_ONCE).
"""

from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .config.plugins import parse_duration

DEFAULT_MACKEREL_API_BASE = "https://api.mackerelio.com"


class AgentSettings(BaseSettings):
    """Agent settings loaded from environment."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    # Process controls
    config: str = Field(default="", alias="CONFIG")
    debug: bool = Field(default=False, alias="DEBUG")
    sleep: float = Field(default=0.0, alias="SLEEP")
    at_once: bool = Field(default=False, alias="AT_ONCE")

    # Backends
    aws_region: Optional[str] = Field(default=None, alias="AWS_REGION")
    mackerel_apikey: str = Field(default="", alias="MACKEREL_APIKEY")
    mackerel_api_base: str = Field(default=DEFAULT_MACKEREL_API_BASE, alias="MACKEREL_API_BASE")

    @field_validator("sleep", mode="before")
    @classmethod
    def _parse_sleep(cls, value: Any) -> float:
        return parse_duration(value)
