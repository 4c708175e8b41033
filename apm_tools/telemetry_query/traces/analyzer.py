"""
query_apm_traces: list individual traces matching a filter, with deep links.
"""

import logging
from typing import Any, Mapping, Optional

import httpx

from ...utils import format_timestamp, safe_get, utc_now_iso
from ..cache import TRACES_TTL_MS, make_cache_key
from ..errors import ParseError, TelemetryToolError, describe_error
from ..models import QueryApmTracesInput, QueryApmTracesResult, ToolResult, TraceFilters, TraceInfo, parse_input
from ..shared.filters import QueryFilter
from ..shared.formatters import as_number, ns_to_ms
from ..shared.time_utils import parse_time_range

logger = logging.getLogger("apm_tools.traces.analyzer")

SORT_FIELDS = {
    "duration": "-duration",
    "timestamp": "-timestamp",
}


def _tag_value(tags: Any, name: str) -> Optional[str]:
    """Value of 'name:value' in a tag list."""
    if not isinstance(tags, list):
        return None
    prefix = f"{name}:"
    for tag in tags:
        if isinstance(tag, str) and tag.startswith(prefix):
            return tag[len(prefix) :] or None
    return None


def parse_span(span: Mapping[str, Any]) -> Optional[dict[str, Any]]:
    """Normalize one span from the span search API.

    Returns:
        Dict with trace_id, span_id, timestamp, resource, duration (ms),
        status, error_type and error_message, or None if the span has no
        trace or span id.
    """
    attrs = span.get("attributes")
    if not isinstance(attrs, Mapping):
        return None
    inner = attrs.get("attributes") if isinstance(attrs.get("attributes"), Mapping) else {}
    tags = attrs.get("tags")

    trace_id = _tag_value(tags, "trace_id") or attrs.get("trace_id")
    span_id = _tag_value(tags, "span_id") or attrs.get("span_id")
    if not trace_id or not span_id:
        return None

    duration_ns = as_number(inner.get("duration"))
    if duration_ns is None:
        duration_ns = as_number(safe_get(attrs, "custom", "duration")) or 0.0

    status = inner.get("status") or attrs.get("status") or "ok"
    start = inner.get("start") or attrs.get("start_timestamp")

    return {
        "trace_id": str(trace_id),
        "span_id": str(span_id),
        "timestamp": format_timestamp(start) if start is not None else utc_now_iso(),
        "resource": inner.get("resource_name") or attrs.get("resource_name") or "unknown",
        "duration": ns_to_ms(duration_ns),
        "status": "error" if status == "error" else "ok",
        "error_type": inner.get("@error.type") or safe_get(attrs, "custom", "error", "type"),
        "error_message": inner.get("@error.message") or safe_get(attrs, "custom", "error", "message"),
    }


def _trace_filter(params: QueryApmTracesInput) -> QueryFilter:
    return QueryFilter(
        service=params.service,
        environment=params.environment,
        operation=params.operation,
        status=params.status,
        min_duration_ms=params.min_duration_ms,
        max_duration_ms=params.max_duration_ms,
        http_status_code=params.http_status_code,
        http_method=params.http_method,
        error_type=params.error_type,
        span_type=params.span_type,
        span_kind="entry",
    )


async def query_apm_traces(context, args: Any) -> ToolResult:
    """Find traces for a service's entry spans, slowest or most recent first."""
    try:
        params = parse_input(QueryApmTracesInput, args)
        time_range_expr = params.time_range or context.config.default_time_range
        time_range = parse_time_range(time_range_expr, now=context.clock())
        query = _trace_filter(params).to_query()

        cache_key = make_cache_key("query-apm-traces", {**params.model_dump(), "time_range": time_range_expr})
        cached = context.cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Cache hit for {cache_key}")
            return ToolResult.ok(cached, cached=True)

        sort = SORT_FIELDS[params.sort_by]
        logger.info(f"Listing traces for {params.service} ({time_range_expr}, sort {sort}, limit {params.limit}): {query}")

        response = await context.client.list_spans(query, time_range.from_ms, time_range.to_ms, sort=sort, limit=params.limit)
        spans = response.get("data") or []
        if not isinstance(spans, list):
            raise ParseError(f"Expected a list of spans, got {type(spans).__name__}")
        if not spans:
            return ToolResult.fail(f'No traces found for service "{params.service}" with the specified filters.')

        traces = []
        for span in spans:
            parsed = parse_span(span) if isinstance(span, Mapping) else None
            if parsed is None:
                continue
            traces.append(TraceInfo(**parsed, trace_url=context.trace_url(parsed["trace_id"])))

        if not traces:
            logger.warning(f"{len(spans)} spans returned for {params.service} but none had trace/span ids")
            return ToolResult.fail("Found spans but could not parse trace IDs. Data format may have changed.")

        result = QueryApmTracesResult(
            service=params.service,
            operation=params.operation,
            environment=params.environment,
            time_range=time_range_expr,
            query=query,
            total_traces=len(traces),
            traces=traces,
            filters=TraceFilters(
                status=params.status,
                min_duration_ms=params.min_duration_ms,
                max_duration_ms=params.max_duration_ms,
                http_status_code=params.http_status_code,
                http_method=params.http_method,
                error_type=params.error_type,
                span_type=params.span_type,
            ),
            last_updated=utc_now_iso(),
        )
        context.cache.set(cache_key, result, TRACES_TTL_MS)
        return ToolResult.ok(result)

    except (TelemetryToolError, httpx.HTTPError) as e:
        logger.error(f"Error querying APM traces: {e}")
        return ToolResult.fail(describe_error(e))
