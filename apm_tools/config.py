"""
Configuration for the APM telemetry tools.

Values come from (in order of precedence) explicit constructor arguments,
a TOML file, and environment variables.
"""

import os
from pathlib import Path

import toml
from pydantic import BaseModel, Field


class ToolsConfig(BaseModel):
    """Main configuration for the telemetry query tools."""

    # Backend
    site: str = Field(default="datadoghq.com", description="Datadog site (e.g. datadoghq.com, datadoghq.eu)")
    api_key: str | None = Field(default=None, description="API key (used together with app_key instead of OAuth)")
    app_key: str | None = Field(default=None, description="Application key (used together with api_key)")
    token_service_name: str = Field(
        default="datadog", description="Service name passed to the token provider when requesting a bearer token"
    )

    # Transport
    request_timeout: float = Field(default=30.0, gt=0, description="HTTP request timeout in seconds")

    # Retry policy
    max_retries: int = Field(default=3, ge=1, description="Maximum attempts per outbound call")
    base_delay_seconds: float = Field(default=1.0, ge=0, description="First backoff delay, doubled on each retry")

    # Metric discovery
    discovery_concurrency: int = Field(
        default=8, ge=1, description="Maximum number of metric existence probes in flight at once"
    )
    discovery_candidate_limit: int = Field(
        default=50, ge=1, description="Maximum metric names probed by the metric-search discovery stage"
    )

    default_time_range: str = Field(default="1h", description="Time range used when a tool does not receive one")

    @property
    def api_base_url(self) -> str:
        return f"https://api.{self.site}"

    @property
    def app_base_url(self) -> str:
        return f"https://app.{self.site}"

    @property
    def has_api_keys(self) -> bool:
        return bool(self.api_key and self.app_key)

    @classmethod
    def from_toml(cls, path: str | Path) -> "ToolsConfig":
        """Load configuration from a TOML file.

        Environment variables fill in any field the file does not set.
        """
        with open(path, "r") as f:
            config_data = toml.load(f)
        # Allow either a flat file or a [telemetry] table
        config_data = config_data.get("telemetry", config_data)
        return cls(**{**_env_overrides(), **config_data})

    @classmethod
    def from_env(cls) -> "ToolsConfig":
        """Create config from environment variables.

        Environment variables:
        - DD_SITE: Datadog site
        - DD_API_KEY / DD_APP_KEY: API key authentication
        - APM_TOOLS_TIMEOUT: request timeout in seconds
        - APM_TOOLS_MAX_RETRIES: attempts per outbound call
        - APM_TOOLS_BASE_DELAY: first backoff delay in seconds
        """
        return cls(**_env_overrides())


def _env_overrides() -> dict:
    env_map = {
        "site": "DD_SITE",
        "api_key": "DD_API_KEY",
        "app_key": "DD_APP_KEY",
        "request_timeout": "APM_TOOLS_TIMEOUT",
        "max_retries": "APM_TOOLS_MAX_RETRIES",
        "base_delay_seconds": "APM_TOOLS_BASE_DELAY",
    }
    return {field: os.environ[var] for field, var in env_map.items() if os.environ.get(var)}
