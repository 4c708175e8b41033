"""Shared fixtures: an in-memory Datadog backend behind httpx.MockTransport."""

from typing import Any

import httpx
import pytest

from apm_tools.config import ToolsConfig
from apm_tools.telemetry_query.client import DatadogClient, StaticTokenProvider
from apm_tools.telemetry_query.context import build_context
from apm_tools.telemetry_query.retry import ResilientCaller

NOW_MS = 1_700_000_000_000


class FakeClock:
    """Injectable wall clock in epoch ms."""

    def __init__(self, now: int = NOW_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeBackend:
    """Minimal stand-in for the Datadog HTTP API.

    Metric queries are answered from `metrics` (metric name -> values) and
    grouped queries ('... by {tag}') from `grouped_series`. `failures` maps a
    path to a list of status codes returned before normal answers resume;
    `grouped_failures` does the same for grouped metric queries only.
    `raw_bodies` maps a path to a JSON body returned as-is.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.metric_queries: list[str] = []
        self.metrics: dict[str, list[float]] = {}
        self.grouped_series: list[dict[str, Any]] = []
        self.metric_names: list[str] = []
        self.logs: list[dict[str, Any]] = []
        self.monitors: list[dict[str, Any]] = []
        self.spans: list[dict[str, Any]] = []
        self.buckets: list[dict[str, Any]] = []
        self.failures: dict[str, list[int]] = {}
        self.grouped_failures: list[int] = []
        self.raw_bodies: dict[str, Any] = {}

    def add_metric(self, name: str, *values: float) -> None:
        self.metrics[name] = list(values)

    def add_family(self, family: str, latency: float = 120.0, hits: float = 50.0, errors: float = 0.0) -> None:
        self.add_metric(f"{family}.duration", latency)
        self.add_metric(f"{family}.hits", hits)
        self.add_metric(f"{family}.errors", errors)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        pending = self.failures.get(path)
        if pending:
            return httpx.Response(pending.pop(0), text="backend unavailable")

        if path in self.raw_bodies:
            return httpx.Response(200, json=self.raw_bodies[path])

        if path == "/api/v1/query":
            query = request.url.params["query"]
            if " by {" in query and self.grouped_failures:
                self.metric_queries.append(query)
                return httpx.Response(self.grouped_failures.pop(0), text="query failed")
            return httpx.Response(200, json=self._query(query))
        if path == "/api/v1/search":
            return httpx.Response(200, json={"results": {"metrics": self.metric_names}})
        if path == "/api/v2/logs/events/search":
            return httpx.Response(200, json={"data": self.logs})
        if path == "/api/v1/monitor":
            return httpx.Response(200, json=self.monitors)
        if path == "/api/v2/spans/analytics/aggregate":
            return httpx.Response(200, json={"data": {"buckets": self.buckets}})
        if path == "/api/v2/spans/events/search":
            return httpx.Response(200, json={"data": self.spans})
        if path == "/api/v1/validate":
            return httpx.Response(200, json={"valid": True})
        return httpx.Response(404, json={"errors": ["Not found"]})

    def _query(self, query: str) -> dict[str, Any]:
        self.metric_queries.append(query)
        if " by {" in query:
            return {"series": self.grouped_series}
        metric = query.split("{", 1)[0].split(":", 1)[-1]
        values = self.metrics.get(metric)
        if not values:
            return {"series": []}
        pointlist = [[NOW_MS - (len(values) - i) * 60_000, v] for i, v in enumerate(values)]
        return {"series": [{"metric": metric, "scope": query, "pointlist": pointlist}]}


def make_client(backend: FakeBackend, config: ToolsConfig, caller=None, token_provider=None) -> DatadogClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(backend.handler), base_url=config.api_base_url)
    return DatadogClient(config, caller=caller, token_provider=token_provider, http_client=http_client)


def make_tokenless_client(backend: FakeBackend, caller=None) -> DatadogClient:
    """Client with neither API keys nor a bearer token."""
    return make_client(backend, ToolsConfig(api_key=None, app_key=None), caller, StaticTokenProvider(""))


def make_span(trace_id="123", span_id="456", resource="GET /cart", duration_ns=250_000_000, status="ok", **extra):
    inner = {"resource_name": resource, "duration": duration_ns, "status": status, "start": "2024-01-01T00:00:00Z"}
    inner.update(extra)
    tags = []
    if trace_id:
        tags.append(f"trace_id:{trace_id}")
    if span_id:
        tags.append(f"span_id:{span_id}")
    return {"id": f"span-{span_id}", "type": "spans", "attributes": {"tags": tags, "attributes": inner}}


def make_monitor(monitor_id: int, state: str, name: str = None, monitor_type: str = "metric alert", **extra):
    monitor = {
        "id": monitor_id,
        "name": name or f"monitor {monitor_id}",
        "type": monitor_type,
        "overall_state": state,
        "tags": ["service:checkout"],
        "query": "avg(last_5m):avg:trace.servlet.request.errors{service:checkout} > 5",
    }
    monitor.update(extra)
    return monitor


@pytest.fixture
def config():
    """Config with API keys. Backoff sleeps are recorded by the caller fixture, not awaited."""
    return ToolsConfig(api_key="test-api-key", app_key="test-app-key", max_retries=3, base_delay_seconds=1.0)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    """Delays requested by the retry wrapper, in seconds."""
    return []


@pytest.fixture
def caller(config, sleeps):
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return ResilientCaller(max_retries=config.max_retries, base_delay=config.base_delay_seconds, sleep=fake_sleep)


@pytest.fixture
def client(config, backend, caller):
    return make_client(backend, config, caller)


@pytest.fixture
def context(config, client, clock):
    return build_context(config, client=client, clock=clock)
