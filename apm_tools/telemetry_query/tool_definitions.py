"""
MCP Tool definitions for the APM telemetry tools.

This module contains all tool schemas and descriptions.
"""

from mcp.types import Tool

_SERVICE = {
    "type": "string",
    "description": "Service name as reported by the tracer (letters, digits, '-' and '_' only, e.g., 'checkout')",
}
_ENVIRONMENT = {
    "type": "string",
    "description": "Optional: env tag to scope the query (e.g., 'prod', 'staging')",
}


def _time_range(default: str | None = None) -> dict:
    description = "Relative time range: <number><unit> with unit m, h or d (e.g., '15m', '1h', '7d')"
    if default:
        description += f". Default: {default}"
    return {"type": "string", "pattern": r"^\d+[mhd]$", "description": description}


def get_all_tool_definitions() -> list[Tool]:
    """Return all MCP tool definitions."""
    return [
        # =============================================================================
        # Metrics
        # =============================================================================
        Tool(
            name="query_apm_metrics",
            description="Query an APM timeseries for a service: latency (ms), throughput (requests/s) or error_rate. "
            "The underlying trace metric is discovered automatically from the tracer integration the service uses. "
            "Example: query_apm_metrics(service='checkout', metric='latency', timeRange='1h', aggregation='p95').",
            inputSchema={
                "type": "object",
                "properties": {
                    "service": _SERVICE,
                    "metric": {
                        "type": "string",
                        "enum": ["latency", "throughput", "error_rate"],
                        "description": "Which metric to query",
                    },
                    "timeRange": _time_range(),
                    "environment": _ENVIRONMENT,
                    "aggregation": {
                        "type": "string",
                        "enum": ["avg", "p50", "p95", "p99"],
                        "description": "Space aggregation. Default: avg",
                    },
                },
                "required": ["service", "metric", "timeRange"],
                "additionalProperties": False,
            },
        ),
        Tool(
            name="get_service_health",
            description="Overall health of a service over the last hour: status (healthy/degraded/down/unknown), "
            "error rate (%), p95 latency, throughput and the number of monitors in Alert/Warn. "
            "When degraded or down, also returns the most recent error traces with links.",
            inputSchema={
                "type": "object",
                "properties": {
                    "service": _SERVICE,
                    "environment": _ENVIRONMENT,
                },
                "required": ["service"],
                "additionalProperties": False,
            },
        ),
        # =============================================================================
        # Logs
        # =============================================================================
        Tool(
            name="search_logs",
            description="Search a service's logs with free text (e.g., 'timeout', 'status:error'). "
            "Returns timestamp, level, message and attributes per log line. "
            "Quotes and angle brackets are stripped from the query.",
            inputSchema={
                "type": "object",
                "properties": {
                    "service": _SERVICE,
                    "query": {"type": "string", "description": "Free-text search terms"},
                    "timeRange": _time_range(),
                    "limit": {
                        "type": "integer",
                        "minimum": 1,
                        "maximum": 1000,
                        "description": "Maximum log lines to return. Default: 100",
                    },
                },
                "required": ["service", "query", "timeRange"],
                "additionalProperties": False,
            },
        ),
        # =============================================================================
        # Traces
        # =============================================================================
        Tool(
            name="get_service_operations",
            description="List a service's operations (endpoints/resources) with request count, error rate and "
            "p50/p95/p99 latency. Uses pre-aggregated trace metrics when available and falls back to aggregating "
            "entry spans. 'dataSource' tells which was used (trace-metrics only carries p95 latency).",
            inputSchema={
                "type": "object",
                "properties": {
                    "service": _SERVICE,
                    "environment": _ENVIRONMENT,
                    "timeRange": _time_range("1h"),
                },
                "required": ["service"],
                "additionalProperties": False,
            },
        ),
        Tool(
            name="query_apm_traces",
            description="Find individual traces for a service's entry spans, slowest first by default. "
            "Filters combine with AND. Each trace comes with a deep link to the trace view. "
            "Example: query_apm_traces(service='checkout', status='error', httpStatusCode=500, sortBy='timestamp').",
            inputSchema={
                "type": "object",
                "properties": {
                    "service": _SERVICE,
                    "operation": {"type": "string", "description": "Optional: resource name (e.g., 'GET /api/cart')"},
                    "environment": _ENVIRONMENT,
                    "timeRange": _time_range("1h"),
                    "status": {"type": "string", "enum": ["ok", "error"], "description": "Optional: span status"},
                    "minDurationMs": {"type": "number", "minimum": 0, "description": "Optional: minimum duration (ms)"},
                    "maxDurationMs": {"type": "number", "minimum": 0, "description": "Optional: maximum duration (ms)"},
                    "httpStatusCode": {
                        "type": "integer",
                        "minimum": 100,
                        "maximum": 599,
                        "description": "Optional: HTTP status code (e.g., 500)",
                    },
                    "httpMethod": {"type": "string", "description": "Optional: HTTP method (e.g., 'POST')"},
                    "errorType": {
                        "type": "string",
                        "description": "Optional: error type (e.g., 'java.lang.NullPointerException')",
                    },
                    "spanType": {
                        "type": "string",
                        "enum": ["web", "db", "cache", "http", "grpc"],
                        "description": "Optional: span type",
                    },
                    "sortBy": {
                        "type": "string",
                        "enum": ["duration", "timestamp"],
                        "description": "'duration' for slowest first, 'timestamp' for most recent first. Default: duration",
                    },
                    "limit": {
                        "type": "integer",
                        "minimum": 1,
                        "maximum": 100,
                        "description": "Maximum traces to return. Default: 20",
                    },
                },
                "required": ["service"],
                "additionalProperties": False,
            },
        ),
        # =============================================================================
        # Alerts
        # =============================================================================
        Tool(
            name="get_monitors",
            description="List monitors, optionally for one service, with status counts. "
            "Sorted by severity: Alert, Warn, No Data, OK, Unknown. "
            "Example: get_monitors(service='checkout', status='alert').",
            inputSchema={
                "type": "object",
                "properties": {
                    "service": _SERVICE,
                    "status": {
                        "type": "string",
                        "enum": ["alert", "warn", "no data", "ok"],
                        "description": "Optional: only monitors in this state",
                    },
                    "tags": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Optional: monitor tags that must all match (e.g., ['team:payments'])",
                    },
                    "monitorType": {
                        "type": "string",
                        "description": "Optional: monitor type (e.g., 'metric alert', 'query alert', 'apm', 'log alert')",
                    },
                },
                "additionalProperties": False,
            },
        ),
    ]
