"""
Shared utilities for telemetry query tools.
"""

from .filters import (
    NS_PER_MS,
    QueryBuilder,
    QueryFilter,
    build_error_query,
    build_metric_query,
    build_service_entry_query,
    build_service_to_service_query,
    sanitize_log_query,
    validate_service_name,
)
from .formatters import (
    as_number,
    format_latency,
    latest_point_value,
    ns_to_ms,
)
from .time_utils import (
    MS_PER_DAY,
    MS_PER_HOUR,
    TimeRange,
    now_ms,
    parse_duration_ms,
    parse_time_range,
)

__all__ = [
    # Filters
    "NS_PER_MS",
    "QueryBuilder",
    "QueryFilter",
    "build_error_query",
    "build_metric_query",
    "build_service_entry_query",
    "build_service_to_service_query",
    "sanitize_log_query",
    "validate_service_name",
    # Formatters
    "as_number",
    "format_latency",
    "latest_point_value",
    "ns_to_ms",
    # Time Utils
    "MS_PER_DAY",
    "MS_PER_HOUR",
    "TimeRange",
    "now_ms",
    "parse_duration_ms",
    "parse_time_range",
]
