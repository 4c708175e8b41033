"""
Composition root for the telemetry tools.

Everything a tool resolver needs is held on one ToolContext, built once by
the server entry point and passed down explicitly.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable

from ..config import ToolsConfig
from .cache import CacheStore
from .client import DatadogClient, TokenProvider
from .metrics.discovery import MetricDiscoveryProbe
from .retry import ResilientCaller
from .shared.time_utils import now_ms

logger = logging.getLogger("apm_tools.context")


@dataclass
class ToolContext:
    config: ToolsConfig
    client: DatadogClient
    cache: CacheStore
    probe: MetricDiscoveryProbe
    clock: Callable[[], int] = field(default=now_ms)

    def trace_url(self, trace_id: str) -> str:
        return f"{self.config.app_base_url}/apm/trace/{trace_id}"

    def monitor_url(self, monitor_id: int | str) -> str:
        return f"{self.config.app_base_url}/monitors/{monitor_id}"


def build_context(
    config: ToolsConfig,
    token_provider: TokenProvider | None = None,
    client: DatadogClient | None = None,
    clock: Callable[[], int] = now_ms,
) -> ToolContext:
    """Wire the client, cache and discovery probe from configuration."""
    if client is None:
        caller = ResilientCaller(max_retries=config.max_retries, base_delay=config.base_delay_seconds)
        client = DatadogClient(config, caller=caller, token_provider=token_provider)

    probe = MetricDiscoveryProbe(
        client,
        concurrency=config.discovery_concurrency,
        candidate_limit=config.discovery_candidate_limit,
    )
    logger.debug(f"Tool context ready for {config.api_base_url}")
    return ToolContext(config=config, client=client, cache=CacheStore(clock=clock), probe=probe, clock=clock)
