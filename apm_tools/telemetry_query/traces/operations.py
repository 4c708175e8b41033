"""
get_service_operations: per-endpoint stats for a service.

Two strategies, tried in order:
1. trace-metrics: discovered latency metric grouped by resource_name.
   Cheap, but only yields a latency per operation.
2. spans-api: aggregate entry spans by resource_name with request count,
   error count and p50/p95/p99. Complete, but heavier on the backend.
"""

import logging
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from ...utils import utc_now_iso
from ..cache import OPERATIONS_TTL_MS, make_cache_key
from ..errors import AuthUnavailableError, ParseError, TelemetryToolError, describe_error
from ..models import (
    GetServiceOperationsInput,
    OperationMetrics,
    ServiceOperation,
    ServiceOperationsResult,
    ToolResult,
    parse_input,
)
from ..shared.filters import NS_PER_MS, build_metric_query, build_service_entry_query, validate_service_name
from ..shared.formatters import format_latency, latest_point_value
from ..shared.time_utils import TimeRange, parse_time_range
from .aggregation import extract_buckets, group_by_resource, parse_bucket, parse_operation_metrics, standard_computes

logger = logging.getLogger("apm_tools.traces.operations")

RESOURCE_TAG = "resource_name"


class ResolverState(str, Enum):
    CACHE_CHECK = "cache_check"
    FAST_PATH = "fast_path"
    FALLBACK_PATH = "fallback_path"
    DONE = "done"
    FAILED = "failed"


def resource_from_series(series: dict[str, Any]) -> Optional[str]:
    """resource_name tag of a grouped series, from tag_set or the scope string."""
    prefix = f"{RESOURCE_TAG}:"
    tags = series.get("tag_set")
    for tag in tags if isinstance(tags, list) else []:
        if isinstance(tag, str) and tag.startswith(prefix):
            return tag[len(prefix) :] or None
    scope = series.get("scope")
    if not isinstance(scope, str):
        return None
    for part in scope.split(","):
        part = part.strip()
        if part.startswith(prefix):
            return part[len(prefix) :] or None
    return None


class OperationsResolver:
    """Resolves one get_service_operations request. Create one per request."""

    def __init__(self, context):
        self.context = context
        self.service = "<invalid>"
        self.state: Optional[ResolverState] = None
        self.transitions: list[ResolverState] = []

    def _enter(self, state: ResolverState) -> None:
        self.state = state
        self.transitions.append(state)
        logger.debug(f"Service operations for {self.service}: {state.value}")

    async def resolve(self, args: Any) -> ToolResult:
        try:
            params = parse_input(GetServiceOperationsInput, args)
            self.service = validate_service_name(params.service)
            time_range_expr = params.time_range or self.context.config.default_time_range
            time_range = parse_time_range(time_range_expr, now=self.context.clock())

            self._enter(ResolverState.CACHE_CHECK)
            cache_key = make_cache_key(
                "service-operations",
                {"service": params.service, "environment": params.environment, "time_range": time_range_expr},
            )
            cached = self.context.cache.get(cache_key)
            if cached is not None:
                logger.debug(f"Cache hit for {cache_key}")
                return ToolResult.ok(cached, cached=True)

            self._enter(ResolverState.FAST_PATH)
            operations = await self._fast_path(params, time_range)
            data_source = "trace-metrics"

            if not operations:
                logger.info(f"Trace metrics gave no operations for {params.service}, falling back to spans API")
                self._enter(ResolverState.FALLBACK_PATH)
                operations = await self._fallback_path(params, time_range)
                data_source = "spans-api"

            if not operations:
                self._enter(ResolverState.FAILED)
                return ToolResult.fail(
                    f'No APM data found for service "{params.service}". The service may not be instrumented, '
                    "or there's no traffic in the selected time range."
                )

            result = ServiceOperationsResult(
                service=params.service,
                environment=params.environment,
                time_range=time_range_expr,
                total_operations=len(operations),
                operations=operations,
                data_source=data_source,
                last_updated=utc_now_iso(),
            )
            self._enter(ResolverState.DONE)
            logger.info(f"Resolved {len(operations)} operations for {params.service} via {data_source}")
            self.context.cache.set(cache_key, result, OPERATIONS_TTL_MS)
            return ToolResult.ok(result)

        except (TelemetryToolError, httpx.HTTPError) as e:
            self._enter(ResolverState.FAILED)
            logger.error(f"Error getting service operations: {e}")
            return ToolResult.fail(describe_error(e))

    async def _fast_path(self, params: GetServiceOperationsInput, time_range: TimeRange) -> list[ServiceOperation]:
        """Latency per resource from the discovered trace metric. Any failure yields []."""
        try:
            discovered = await self.context.probe.discover(params.service, params.environment, time_range)
            if discovered is None or not discovered.metrics.latency:
                logger.debug(f"No latency metric discovered for {params.service}")
                return []

            query = build_metric_query(
                discovered.metrics.latency, params.service, params.environment, group_by=RESOURCE_TAG
            )
            response = await self.context.client.query_metrics(query, time_range.from_ms, time_range.to_ms)

            series_list = response.get("series") or []
            if not isinstance(series_list, list):
                raise ParseError(f"Expected a series list, got {type(series_list).__name__}")

            operations = []
            for series in series_list:
                if not isinstance(series, dict):
                    continue
                resource = resource_from_series(series)
                latency = latest_point_value([series])
                if not resource or latency is None:
                    continue
                # Only latency is available from a single grouped metric query
                metrics = OperationMetrics(p95_latency=round(max(latency, 0.0), 2))
                operations.append(ServiceOperation(name=resource, resource=resource, metrics=metrics))
            return operations
        except AuthUnavailableError:
            raise
        except (TelemetryToolError, httpx.HTTPError, PydanticValidationError) as e:
            logger.warning(f"Trace metrics strategy failed for {params.service}: {e}")
            return []

    async def _fallback_path(self, params: GetServiceOperationsInput, time_range: TimeRange) -> list[ServiceOperation]:
        """Aggregate entry spans by resource. Any failure yields []."""
        query = build_service_entry_query(params.service, params.environment)
        try:
            response = await self.context.client.aggregate_spans(
                query,
                time_range.from_ms,
                time_range.to_ms,
                compute=standard_computes(),
                group_by=[group_by_resource(100)],
            )
        except AuthUnavailableError:
            raise
        except (TelemetryToolError, httpx.HTTPError) as e:
            logger.warning(f"Spans aggregation failed for {params.service}: {e}")
            return []

        operations = []
        for bucket in extract_buckets(response):
            resource, computes = parse_bucket(bucket)
            if not resource:
                continue
            metrics = parse_operation_metrics(computes, latency_divisor=NS_PER_MS)
            operations.append(ServiceOperation(name=resource, resource=resource, metrics=metrics))

        for i, op in enumerate(operations[:5], 1):
            logger.debug(
                f"  {i}. {op.name}: requests={op.metrics.request_count} "
                f"p95={format_latency(op.metrics.p95_latency)} errors={op.metrics.error_rate}%"
            )
        return operations


async def get_service_operations(context, args: Any) -> ToolResult:
    return await OperationsResolver(context).resolve(args)
