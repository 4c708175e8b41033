"""Tests for search_logs."""

import json

import pytest

from apm_tools.telemetry_query.logs.analyzer import parse_log, search_logs


def _log(message, status="info", timestamp="2024-01-01T00:00:00Z", **attributes):
    return {
        "id": message,
        "type": "log",
        "attributes": {"timestamp": timestamp, "status": status, "message": message, "attributes": attributes},
    }


class TestParseLog:
    """Test log record normalization."""

    def test_fields(self):
        entry = parse_log(_log("timeout talking to db", status="ERROR", http={"status_code": 504}), "checkout")

        assert entry.level == "error"
        assert entry.message == "timeout talking to db"
        assert entry.service == "checkout"
        assert entry.timestamp == "2024-01-01T00:00:00.000Z"
        assert entry.attributes == {"http": {"status_code": 504}}

    def test_defaults(self):
        entry = parse_log({"attributes": {"message": "hi"}}, "checkout")

        assert entry.level == "info"
        assert entry.attributes is None
        assert entry.timestamp.endswith("Z")

    def test_not_a_log(self):
        assert parse_log({"id": "x"}, "checkout") is None


class TestSearchLogs:
    """Test the log search tool."""

    @pytest.mark.asyncio
    async def test_search(self, context, backend):
        backend.logs = [_log("timeout", status="error"), _log("retrying", status="warn")]

        result = await search_logs(context, {"service": "checkout", "query": "timeout", "timeRange": "1h"})

        assert result.success
        assert result.data.total == 2
        assert [log.level for log in result.data.logs] == ["error", "warn"]
        assert result.data.has_more is False
        assert result.metadata == {"logCount": 2}

        body = json.loads(backend.requests[0].content)
        assert body["filter"]["query"] == "service:checkout timeout"
        assert body["page"] == {"limit": 100}

    @pytest.mark.asyncio
    async def test_query_is_sanitized(self, context, backend):
        result = await search_logs(
            context, {"service": "checkout", "query": '"payment failed" <script>', "timeRange": "15m"}
        )

        assert result.data.query == "payment failed script"
        body = json.loads(backend.requests[0].content)
        assert body["filter"]["query"] == "service:checkout payment failed script"

    @pytest.mark.asyncio
    async def test_has_more_when_limit_reached(self, context, backend):
        backend.logs = [_log(f"line {i}") for i in range(3)]

        result = await search_logs(context, {"service": "checkout", "query": "line", "timeRange": "1h", "limit": 3})

        assert result.data.has_more is True
        assert result.to_payload()["data"]["hasMore"] is True

    @pytest.mark.asyncio
    async def test_time_window(self, context, backend):
        await search_logs(context, {"service": "checkout", "query": "x", "timeRange": "1h"})

        body = json.loads(backend.requests[0].content)
        assert body["filter"]["from"] == "2023-11-14T21:13:20Z"
        assert body["filter"]["to"] == "2023-11-14T22:13:20Z"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, 1001])
    async def test_limit_bounds(self, context, backend, limit):
        result = await search_logs(context, {"service": "checkout", "query": "x", "timeRange": "1h", "limit": limit})

        assert not result.success
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_invalid_service(self, context, backend):
        result = await search_logs(context, {"service": "checkout prod", "query": "x", "timeRange": "1h"})

        assert not result.success
        assert "Invalid service name" in result.error

    @pytest.mark.asyncio
    async def test_backend_error(self, context, backend):
        backend.failures["/api/v2/logs/events/search"] = [400]

        result = await search_logs(context, {"service": "checkout", "query": "x", "timeRange": "1h"})

        assert not result.success
        assert result.error.startswith("Backend error 400")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [["unexpected"], {"data": {"events": []}}])
    async def test_unexpected_response_shape(self, context, backend, body):
        backend.raw_bodies["/api/v2/logs/events/search"] = body

        result = await search_logs(context, {"service": "checkout", "query": "x", "timeRange": "1h"})

        assert not result.success
        assert result.error.startswith("Expected a")

    @pytest.mark.asyncio
    async def test_cached(self, context, backend):
        backend.logs = [_log("timeout")]
        args = {"service": "checkout", "query": "timeout", "timeRange": "1h"}
        await search_logs(context, args)

        result = await search_logs(context, args)

        assert result.cached
        assert result.metadata == {"logCount": 1}
        assert len(backend.requests) == 1
