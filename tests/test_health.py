"""Tests for get_service_health."""

import pytest

from apm_tools.telemetry_query.health.analyzer import compute_status, get_service_health

from conftest import make_monitor, make_span


class TestComputeStatus:
    """Test the status rules in isolation."""

    @pytest.mark.parametrize(
        "error_rate,throughput,alerts,expected",
        [
            (0.0, 50, 0, "healthy"),
            (0.1, 50, 0, "healthy"),
            (0.11, 50, 0, "degraded"),
            (0.0, 50, 1, "degraded"),
            (0.51, 50, 0, "down"),
            (0.0, 50, 5, "degraded"),
            (0.0, 50, 6, "down"),
            (0.9, 0, 9, "unknown"),
            (0.0, 0, 0, "unknown"),
        ],
    )
    def test_rules(self, error_rate, throughput, alerts, expected):
        assert compute_status(error_rate, throughput, alerts) == expected


class TestGetServiceHealth:
    """Test the assembled health summary."""

    @pytest.mark.asyncio
    async def test_healthy(self, context, backend):
        backend.add_family("trace.servlet.request", latency=120.5, hits=50, errors=0.0)

        result = await get_service_health(context, {"service": "checkout"})

        assert result.success
        data = result.data
        assert data.status == "healthy"
        assert data.metrics.p95_latency == 120.5
        assert data.metrics.throughput == 50
        assert data.metrics.error_rate == 0
        assert data.active_alerts == 0
        assert data.recent_errors is None
        assert "/api/v2/spans/events/search" not in backend.paths()
        assert "recentErrors" not in result.to_payload()["data"]

    @pytest.mark.asyncio
    async def test_metric_queries(self, context, backend):
        backend.add_family("trace.servlet.request")

        await get_service_health(context, {"service": "checkout", "environment": "prod"})

        assert "avg:trace.servlet.request.errors{service:checkout,env:prod}.as_rate()" in backend.metric_queries
        assert "p95:trace.servlet.request.duration{service:checkout,env:prod}" in backend.metric_queries
        assert "sum:trace.servlet.request.hits{service:checkout,env:prod}.as_count()" in backend.metric_queries
        monitor_request = next(r for r in backend.requests if r.url.path == "/api/v1/monitor")
        assert monitor_request.url.params["monitor_tags"] == "service:checkout"

    @pytest.mark.asyncio
    async def test_degraded_by_alert_includes_recent_errors(self, context, backend):
        backend.add_family("trace.servlet.request")
        backend.monitors = [make_monitor(1, "Alert"), make_monitor(2, "OK")]
        backend.spans = [
            make_span(
                trace_id="abc",
                span_id="1",
                resource="POST /pay",
                status="error",
                **{"@error.type": "TimeoutError", "@error.message": "upstream timed out"},
            )
        ]

        result = await get_service_health(context, {"service": "checkout"})

        data = result.data
        assert data.status == "degraded"
        assert data.active_alerts == 1
        assert len(data.recent_errors) == 1
        error = data.recent_errors[0]
        assert error.trace_id == "abc"
        assert error.resource == "POST /pay"
        assert error.error_type == "TimeoutError"
        assert error.error_message == "upstream timed out"
        assert error.trace_url == "https://app.datadoghq.com/apm/trace/abc"

    @pytest.mark.asyncio
    async def test_down_by_error_rate(self, context, backend):
        backend.add_family("trace.servlet.request", errors=0.6)

        result = await get_service_health(context, {"service": "checkout"})

        assert result.data.status == "down"
        assert result.data.metrics.error_rate == 60.0
        assert result.data.recent_errors == []

    @pytest.mark.asyncio
    async def test_down_by_alert_count(self, context, backend):
        backend.add_family("trace.servlet.request")
        backend.monitors = [make_monitor(i, "Warn" if i % 2 else "Alert") for i in range(6)]

        result = await get_service_health(context, {"service": "checkout"})

        assert result.data.active_alerts == 6
        assert result.data.status == "down"

    @pytest.mark.asyncio
    async def test_unknown_without_traffic(self, context, backend):
        backend.add_family("trace.servlet.request", hits=0.0, errors=0.9)

        result = await get_service_health(context, {"service": "checkout"})

        assert result.data.status == "unknown"

    @pytest.mark.asyncio
    async def test_recent_errors_best_effort(self, context, backend, sleeps):
        """A failing span search does not fail the health check."""
        backend.add_family("trace.servlet.request", errors=0.2)
        backend.failures["/api/v2/spans/events/search"] = [500, 500, 500]

        result = await get_service_health(context, {"service": "checkout"})

        assert result.success
        assert result.data.status == "degraded"
        assert result.data.recent_errors == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [["unexpected"], {"data": {"spans": []}}, {"data": "none"}])
    async def test_unexpected_span_search_body(self, context, backend, body):
        """Recent errors come back empty when the span search answers in an unknown shape."""
        backend.add_family("trace.servlet.request")
        backend.monitors = [make_monitor(1, "Alert")]
        backend.raw_bodies["/api/v2/spans/events/search"] = body

        result = await get_service_health(context, {"service": "checkout"})

        assert result.success
        assert result.data.status == "degraded"
        assert result.data.recent_errors == []

    @pytest.mark.asyncio
    async def test_malformed_error_span_skipped(self, context, backend):
        backend.add_family("trace.servlet.request")
        backend.monitors = [make_monitor(1, "Alert")]
        backend.spans = [
            make_span(trace_id="bad", span_id="1", status="error", **{"@error.type": {"code": 7}}),
            make_span(trace_id="good", span_id="2", status="error", **{"@error.type": "IOError"}),
        ]

        result = await get_service_health(context, {"service": "checkout"})

        assert [e.trace_id for e in result.data.recent_errors] == ["good"]

    @pytest.mark.asyncio
    async def test_malformed_monitor_entries_ignored(self, context, backend):
        backend.add_family("trace.servlet.request")
        backend.monitors = [None, "junk", make_monitor(1, "Warn")]

        result = await get_service_health(context, {"service": "checkout"})

        assert result.success
        assert result.data.active_alerts == 1

    @pytest.mark.asyncio
    async def test_malformed_metric_series(self, context, backend):
        """Metric responses in an unknown shape count as no data."""
        backend.add_family("trace.servlet.request")
        backend.raw_bodies["/api/v1/query"] = ["not", "an", "object"]

        result = await get_service_health(context, {"service": "checkout"})

        assert not result.success
        assert 'No trace metrics found for service "checkout"' in result.error

    @pytest.mark.asyncio
    async def test_missing_error_metric(self, context, backend):
        backend.add_metric("trace.servlet.request.duration", 80)
        backend.add_metric("trace.servlet.request.hits", 10)

        result = await get_service_health(context, {"service": "checkout"})

        assert result.data.status == "healthy"
        assert result.data.metrics.error_rate == 0

    @pytest.mark.asyncio
    async def test_insufficient_metrics(self, context, backend):
        backend.add_metric("trace.servlet.request.errors", 1.0)

        result = await get_service_health(context, {"service": "checkout"})

        assert not result.success
        assert 'Insufficient metrics found for service "checkout"' in result.error
        assert "trace.servlet.request.errors" in result.error

    @pytest.mark.asyncio
    async def test_no_metrics(self, context, backend):
        result = await get_service_health(context, {"service": "ghost"})

        assert not result.success
        assert 'No trace metrics found for service "ghost"' in result.error

    @pytest.mark.asyncio
    async def test_monitor_failure_fails_check(self, context, backend, sleeps):
        backend.add_family("trace.servlet.request")
        backend.failures["/api/v1/monitor"] = [403]

        result = await get_service_health(context, {"service": "checkout"})

        assert not result.success
        assert "Backend error 403" in result.error

    @pytest.mark.asyncio
    async def test_cached(self, context, backend):
        backend.add_family("trace.servlet.request")
        await get_service_health(context, {"service": "checkout"})
        request_count = len(backend.requests)

        result = await get_service_health(context, {"service": "checkout"})

        assert result.cached
        assert len(backend.requests) == request_count

    @pytest.mark.asyncio
    async def test_invalid_input(self, context, backend):
        result = await get_service_health(context, {"service": "checkout", "window": "1h"})

        assert not result.success
        assert result.error.startswith("Invalid input")
