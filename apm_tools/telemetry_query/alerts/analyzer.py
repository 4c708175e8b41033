"""
get_monitors: monitor listing with status/type filters and severity ordering.
"""

import logging
from typing import Any, Optional

import httpx

from ...utils import format_timestamp, safe_get, utc_now_iso
from ..cache import MONITORS_TTL_MS, make_cache_key
from ..errors import TelemetryToolError, describe_error
from ..models import (
    GetMonitorsInput,
    GetMonitorsResult,
    MonitorFilters,
    MonitorInfo,
    MonitorStatusCounts,
    ToolResult,
    parse_input,
)
from ..shared.filters import validate_service_name

logger = logging.getLogger("apm_tools.alerts.analyzer")

SEVERITY_ORDER = {"Alert": 0, "Warn": 1, "No Data": 2, "OK": 3, "Unknown": 4}

_STATUS_COUNT_FIELDS = {
    "Alert": "alert",
    "Warn": "warn",
    "OK": "ok",
    "No Data": "no_data",
    "Unknown": "unknown",
}


def normalize_status(state: Optional[str]) -> str:
    """Map a backend overall_state onto Alert/Warn/No Data/OK/Unknown."""
    if not state:
        return "Unknown"
    normalized = state.lower()
    if normalized == "alert":
        return "Alert"
    if normalized == "warn":
        return "Warn"
    if normalized == "ok":
        return "OK"
    if normalized in ("no data", "nodata"):
        return "No Data"
    return "Unknown"


def _raw_state(monitor: dict[str, Any]) -> str:
    return str(monitor.get("overall_state") or monitor.get("overallState") or "unknown").lower()


def matches_status(monitor: dict[str, Any], status_filter: str) -> bool:
    """Case-insensitive status match; 'no data' also matches 'nodata'."""
    state = _raw_state(monitor)
    wanted = status_filter.lower()
    if wanted == "no data":
        return state in ("no data", "nodata")
    return state == wanted


def parse_monitor(context, monitor: dict[str, Any]) -> MonitorInfo:
    created = monitor.get("created")
    modified = monitor.get("modified")
    return MonitorInfo(
        id=monitor["id"],
        name=monitor.get("name") or "Unnamed Monitor",
        type=monitor.get("type") or "unknown",
        status=normalize_status(monitor.get("overall_state") or monitor.get("overallState")),
        message=monitor.get("message"),
        tags=monitor.get("tags") or [],
        query=monitor.get("query"),
        creator=safe_get(monitor, "creator", "email"),
        created=format_timestamp(created) if created else None,
        modified=format_timestamp(modified) if modified else None,
        monitor_url=context.monitor_url(monitor["id"]),
    )


async def get_monitors(context, args: Any) -> ToolResult:
    """List monitors, optionally scoped to a service, tags, status and type."""
    try:
        params = parse_input(GetMonitorsInput, args)
        if params.service:
            validate_service_name(params.service)

        cache_key = make_cache_key("get-monitors", params.model_dump())
        cached = context.cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Cache hit for {cache_key}")
            return ToolResult.ok(cached, cached=True)

        monitor_tags = []
        if params.service:
            monitor_tags.append(f"service:{params.service}")
        if params.tags:
            monitor_tags.extend(params.tags)

        monitors = await context.client.list_monitors(monitor_tags=monitor_tags or None)
        monitors = [m for m in monitors if isinstance(m, dict) and m.get("id") is not None]
        logger.info(f"Fetched {len(monitors)} monitors (monitor_tags={monitor_tags or 'none'})")

        if params.status:
            monitors = [m for m in monitors if matches_status(m, params.status)]
        if params.monitor_type:
            monitors = [m for m in monitors if m.get("type") == params.monitor_type]

        parsed = []
        counts = MonitorStatusCounts()
        for monitor in monitors:
            info = parse_monitor(context, monitor)
            field = _STATUS_COUNT_FIELDS[info.status]
            setattr(counts, field, getattr(counts, field) + 1)
            parsed.append(info)

        # sorted() is stable, so equal severities keep backend order
        parsed = sorted(parsed, key=lambda m: SEVERITY_ORDER[m.status])

        result = GetMonitorsResult(
            filters=MonitorFilters(
                service=params.service,
                status=params.status,
                tags=params.tags,
                monitor_type=params.monitor_type,
            ),
            total_monitors=len(parsed),
            monitors=parsed,
            by_status=counts,
            last_updated=utc_now_iso(),
        )
        context.cache.set(cache_key, result, MONITORS_TTL_MS)
        return ToolResult.ok(result)

    except (TelemetryToolError, httpx.HTTPError) as e:
        logger.error(f"Error getting monitors: {e}")
        return ToolResult.fail(describe_error(e))
