"""
query_apm_metrics: latency, throughput or error timeseries for a service.
"""

import logging
from typing import Any

import httpx

from ...utils import format_timestamp
from ..cache import cache_ttl_for, make_cache_key
from ..errors import InsufficientDataError, TelemetryToolError, describe_error
from ..models import ApmMetricsResult, MetricPoint, MetricsMetadata, QueryApmMetricsInput, ToolResult, parse_input
from ..shared.filters import build_metric_query, validate_service_name
from ..shared.formatters import as_number
from ..shared.time_utils import parse_time_range

logger = logging.getLogger("apm_tools.metrics.analyzer")

UNITS = {
    "latency": "ms",
    "throughput": "requests/s",
    "error_rate": "%",
}

# Tool metric name -> discovered metric kind
METRIC_KINDS = {
    "latency": "latency",
    "throughput": "throughput",
    "error_rate": "errors",
}


def series_points(series: list[dict[str, Any]] | None) -> list[MetricPoint]:
    """Points of the first series as MetricPoints. Null values are skipped."""
    if not isinstance(series, list) or not series or not isinstance(series[0], dict):
        return []
    points = []
    for point in series[0].get("pointlist") or []:
        if not isinstance(point, (list, tuple)) or len(point) < 2:
            continue
        timestamp, value = as_number(point[0]), as_number(point[1])
        if timestamp is None or value is None:
            continue
        points.append(MetricPoint(timestamp=format_timestamp(timestamp), value=value))
    return points


async def query_apm_metrics(context, args: Any) -> ToolResult:
    """Query one APM metric for a service over a relative time range."""
    try:
        params = parse_input(QueryApmMetricsInput, args)
        validate_service_name(params.service)
        time_range = parse_time_range(params.time_range, now=context.clock())

        cache_key = make_cache_key("apm-metrics", params.model_dump())
        cached = context.cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Cache hit for {cache_key}")
            return ToolResult.ok(cached, cached=True, metadata={"dataPoints": len(cached.data)})

        discovered = await context.probe.require(params.service, params.environment, time_range)
        kind = METRIC_KINDS[params.metric]
        metric_name = getattr(discovered.metrics, kind)
        if not metric_name:
            raise InsufficientDataError(params.service, discovered.discovered, f"a {kind} metric")

        aggregation = params.aggregation or "avg"
        query = build_metric_query(metric_name, params.service, params.environment, aggregation=aggregation)
        logger.info(f"Querying {params.metric} for {params.service}: {query}")

        response = await context.client.query_metrics(query, time_range.from_ms, time_range.to_ms)
        data = series_points(response.get("series"))

        result = ApmMetricsResult(
            service=params.service,
            metric=params.metric,
            data=data,
            metadata=MetricsMetadata(
                environment=params.environment,
                aggregation=aggregation,
                unit=UNITS[params.metric],
                metric_name=metric_name,
            ),
        )
        context.cache.set(cache_key, result, cache_ttl_for(params.time_range))
        return ToolResult.ok(result, metadata={"dataPoints": len(data)})

    except (TelemetryToolError, httpx.HTTPError) as e:
        logger.error(f"Error querying APM metrics: {e}")
        return ToolResult.fail(describe_error(e))
