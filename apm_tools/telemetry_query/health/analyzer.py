"""
get_service_health: one-shot health summary for a service.

Status rules (evaluated in order, later rules win):
- healthy by default
- degraded if error rate > 0.1 or any monitor is in Alert/Warn
- down if error rate > 0.5 or more than 5 monitors are in Alert/Warn
- unknown if throughput is 0
"""

import asyncio
import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from ...utils import utc_now_iso
from ..cache import SERVICE_HEALTH_TTL_MS, make_cache_key
from ..errors import InsufficientDataError, TelemetryToolError, describe_error
from ..models import GetServiceHealthInput, HealthMetrics, RecentError, ServiceHealthResult, ToolResult, parse_input
from ..shared.filters import build_error_query, build_metric_query, validate_service_name
from ..shared.formatters import latest_point_value
from ..shared.time_utils import TimeRange, parse_time_range
from ..traces.analyzer import parse_span

logger = logging.getLogger("apm_tools.health.analyzer")

HEALTH_WINDOW = "1h"
RECENT_ERROR_LIMIT = 5
ACTIVE_MONITOR_STATES = ("alert", "warn")


def compute_status(error_rate: float, throughput: float, active_alerts: int) -> str:
    status = "healthy"
    if error_rate > 0.1 or active_alerts > 0:
        status = "degraded"
    if error_rate > 0.5 or active_alerts > 5:
        status = "down"
    if throughput == 0:
        status = "unknown"
    return status


async def _empty_series() -> dict[str, Any]:
    return {"series": []}


async def _fetch_recent_errors(context, service: str, environment: Optional[str], time_range: TimeRange) -> list[RecentError]:
    """Last few error traces for the service. Best effort: failures give []."""
    try:
        response = await context.client.list_spans(
            build_error_query(service, environment),
            time_range.from_ms,
            time_range.to_ms,
            sort="-timestamp",
            limit=RECENT_ERROR_LIMIT,
        )
    except (TelemetryToolError, httpx.HTTPError) as e:
        logger.warning(f"Could not fetch recent errors for {service}: {e}")
        return []

    spans = response.get("data") or []
    if not isinstance(spans, list):
        logger.warning(f"Ignoring recent errors for {service}: span data is a {type(spans).__name__}, not a list")
        return []

    errors = []
    for span in spans:
        parsed = parse_span(span) if isinstance(span, dict) else None
        if parsed is None:
            continue
        try:
            errors.append(
                RecentError(
                    trace_id=parsed["trace_id"],
                    resource=parsed["resource"],
                    error_type=parsed["error_type"],
                    error_message=parsed["error_message"],
                    timestamp=parsed["timestamp"],
                    trace_url=context.trace_url(parsed["trace_id"]),
                )
            )
        except PydanticValidationError as e:
            logger.debug(f"Skipping malformed error span {parsed['span_id']}: {e}")
    return errors


async def get_service_health(context, args: Any) -> ToolResult:
    """Health status from error rate, p95 latency, throughput and monitor state."""
    try:
        params = parse_input(GetServiceHealthInput, args)
        service = validate_service_name(params.service)
        env = params.environment

        cache_key = make_cache_key("service-health", params.model_dump())
        cached = context.cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Cache hit for {cache_key}")
            return ToolResult.ok(cached, cached=True)

        time_range = parse_time_range(HEALTH_WINDOW, now=context.clock())
        discovered = await context.probe.require(service, env, time_range)
        if not discovered.usable:
            raise InsufficientDataError(service, discovered.discovered, "at least a latency or throughput metric")

        found = discovered.metrics

        def metric_query(metric: Optional[str], aggregation: str, function: Optional[str] = None):
            if not metric:
                return _empty_series()
            query = build_metric_query(metric, service, env, aggregation=aggregation, function=function)
            return context.client.query_metrics(query, time_range.from_ms, time_range.to_ms)

        errors_resp, latency_resp, throughput_resp, monitors = await asyncio.gather(
            metric_query(found.errors, "avg", "as_rate"),
            metric_query(found.latency, "p95"),
            metric_query(found.throughput, "sum", "as_count"),
            context.client.list_monitors(monitor_tags=[f"service:{service}"]),
        )

        error_rate = latest_point_value(errors_resp.get("series")) or 0.0
        p95_latency = latest_point_value(latency_resp.get("series")) or 0.0
        throughput = latest_point_value(throughput_resp.get("series")) or 0.0
        active_alerts = sum(
            1 for m in monitors if str(m.get("overall_state") or m.get("overallState") or "").lower() in ACTIVE_MONITOR_STATES
        )

        status = compute_status(error_rate, throughput, active_alerts)
        logger.info(
            f"{service} health: {status} (error_rate={error_rate:.4f}, p95={p95_latency:.2f}, "
            f"throughput={throughput:.2f}, active_alerts={active_alerts})"
        )

        recent_errors = None
        if status in ("degraded", "down"):
            recent_errors = await _fetch_recent_errors(context, service, env, time_range)

        result = ServiceHealthResult(
            service=service,
            status=status,
            metrics=HealthMetrics(
                error_rate=round(error_rate * 100, 2),
                p95_latency=round(p95_latency, 2),
                throughput=round(throughput, 2),
            ),
            active_alerts=active_alerts,
            recent_errors=recent_errors,
            last_updated=utc_now_iso(),
        )
        context.cache.set(cache_key, result, SERVICE_HEALTH_TTL_MS)
        return ToolResult.ok(result)

    except (TelemetryToolError, httpx.HTTPError) as e:
        logger.error(f"Error getting service health: {e}")
        return ToolResult.fail(describe_error(e))
