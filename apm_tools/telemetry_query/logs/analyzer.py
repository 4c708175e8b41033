"""
search_logs: free-text log search scoped to a service.
"""

import logging
from typing import Any

import httpx

from ...utils import format_timestamp, utc_now_iso
from ..cache import cache_ttl_for, make_cache_key
from ..errors import ParseError, TelemetryToolError, describe_error
from ..models import LogEntry, LogsResult, SearchLogsInput, ToolResult, parse_input
from ..shared.filters import QueryBuilder, sanitize_log_query
from ..shared.time_utils import parse_time_range

logger = logging.getLogger("apm_tools.logs.analyzer")


def parse_log(item: dict[str, Any], service: str) -> LogEntry | None:
    attrs = item.get("attributes")
    if not isinstance(attrs, dict):
        return None
    timestamp = attrs.get("timestamp")
    extra = attrs.get("attributes")
    return LogEntry(
        timestamp=format_timestamp(timestamp) if timestamp is not None else utc_now_iso(),
        level=str(attrs.get("status") or "info").lower(),
        message=attrs.get("message") or "",
        service=service,
        attributes=extra if isinstance(extra, dict) and extra else None,
    )


async def search_logs(context, args: Any) -> ToolResult:
    """Search a service's logs over a relative time range."""
    try:
        params = parse_input(SearchLogsInput, args)
        time_range = parse_time_range(params.time_range, now=context.clock())
        sanitized = sanitize_log_query(params.query)
        query = QueryBuilder().service(params.service).text(sanitized).build()

        cache_key = make_cache_key("logs", params.model_dump())
        cached = context.cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Cache hit for {cache_key}")
            return ToolResult.ok(cached, cached=True, metadata={"logCount": cached.total})

        logger.info(f"Searching logs ({params.time_range}, limit {params.limit}): {query}")
        response = await context.client.search_logs(query, time_range.from_ms, time_range.to_ms, limit=params.limit)

        items = response.get("data") or []
        if not isinstance(items, list):
            raise ParseError(f"Expected a list of log events, got {type(items).__name__}")

        logs = []
        for item in items:
            entry = parse_log(item, params.service) if isinstance(item, dict) else None
            if entry is not None:
                logs.append(entry)

        result = LogsResult(
            service=params.service,
            query=sanitized,
            logs=logs,
            total=len(logs),
            has_more=len(logs) == params.limit,
        )
        context.cache.set(cache_key, result, cache_ttl_for(params.time_range))
        return ToolResult.ok(result, metadata={"logCount": len(logs)})

    except (TelemetryToolError, httpx.HTTPError) as e:
        logger.error(f"Error searching logs: {e}")
        return ToolResult.fail(describe_error(e))
