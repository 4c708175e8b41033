"""
Span aggregation request specs and bucket parsing.

The aggregate endpoint returns buckets of the form
{"by": {"resource_name": ...}, "computes": {"c0": ..., "c1": ...}} where the
positional keys follow the order of the compute list in the request.
"""

from typing import Any, Mapping, Optional

from ..models import OperationMetrics
from ..shared.formatters import as_number

# Order matters: the backend answers with c0..c4 in this order.
STANDARD_COMPUTE_NAMES = ("count", "errorCount", "p50", "p95", "p99")


def _compute(aggregation: str, metric: Optional[str] = None) -> dict[str, Any]:
    spec = {"aggregation": aggregation, "type": "total"}
    if metric:
        spec["metric"] = metric
    return spec


def standard_computes() -> list[dict[str, Any]]:
    """Request count, error count and p50/p95/p99 of @duration."""
    return [
        _compute("count"),
        _compute("count", "@error"),
        _compute("pc50", "@duration"),
        _compute("pc95", "@duration"),
        _compute("pc99", "@duration"),
    ]


def group_by(facet: str, limit: int = 100) -> dict[str, Any]:
    """Group-by spec sorted by span count, largest first."""
    return {
        "facet": facet,
        "limit": limit,
        "sort": {"aggregation": "count", "order": "desc", "type": "measure"},
    }


def group_by_resource(limit: int = 100) -> dict[str, Any]:
    return group_by("resource_name", limit)


def _compute_value(computes: Mapping[str, Any], index: int) -> float:
    """Value of one standard compute, by name or by positional cN key. Missing is 0."""
    name = STANDARD_COMPUTE_NAMES[index]
    for key in (name, f"c{index}"):
        if key in computes:
            value = as_number(computes[key])
            if value is not None:
                return value
    return 0.0


def parse_operation_metrics(computes: Optional[Mapping[str, Any]], latency_divisor: float = 1.0) -> OperationMetrics:
    """Normalize one bucket's computes into OperationMetrics.

    Args:
        computes: Named values (count, errorCount, p50, p95, p99) or positional
            c0..c4 values in STANDARD_COMPUTE_NAMES order.
        latency_divisor: Divides raw latencies into ms (NS_PER_MS for span buckets).

    Returns:
        OperationMetrics. Missing computes are 0; error_rate is a percentage
        rounded to 2 decimals, 0 when there are no requests.
    """
    computes = computes or {}
    request_count = _compute_value(computes, 0)
    error_count = _compute_value(computes, 1)

    def latency(index: int) -> float:
        return round(max(_compute_value(computes, index), 0.0) / latency_divisor, 2)

    error_rate = round(error_count / request_count * 100, 2) if request_count > 0 else 0.0

    return OperationMetrics(
        request_count=int(request_count),
        error_count=int(error_count),
        p50_latency=latency(2),
        p95_latency=latency(3),
        p99_latency=latency(4),
        error_rate=error_rate,
    )


def parse_bucket(bucket: Mapping[str, Any], facet: str = "resource_name") -> tuple[Optional[str], Mapping[str, Any]]:
    """Extract (group value, computes) from a flat or JSON:API style bucket."""
    attributes = bucket.get("attributes")
    source = attributes if isinstance(attributes, Mapping) else bucket

    by = source.get("by") or {}
    computes = source.get("computes") or source.get("compute") or {}
    value = by.get(facet) if isinstance(by, Mapping) else None
    if not isinstance(computes, Mapping):
        computes = {}
    return (str(value) if value not in (None, "") else None), computes


def extract_buckets(response: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    """Buckets from an aggregate response: data.buckets or a data list of bucket objects."""
    data = response.get("data")
    if isinstance(data, Mapping):
        buckets = data.get("buckets")
    elif isinstance(data, list):
        buckets = data
    else:
        buckets = []
    if not isinstance(buckets, list):
        return []
    return [b for b in buckets if isinstance(b, Mapping)]
