"""
Pydantic records for tool inputs, tool outputs and the ToolResult envelope.

Field names are snake_case in Python and camelCase on the wire.
"""

from typing import Any, Dict, Generic, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ValidationError

T = TypeVar("T")

MetricKind = Literal["latency", "throughput", "error_rate"]
Aggregation = Literal["avg", "p50", "p95", "p99"]
HealthStatus = Literal["healthy", "degraded", "down", "unknown"]
MonitorStatus = Literal["Alert", "Warn", "No Data", "OK", "Unknown"]
MonitorStatusFilter = Literal["alert", "warn", "no data", "ok"]
DataSource = Literal["trace-metrics", "spans-api"]


class _Input(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Tool inputs
# =============================================================================


class QueryApmMetricsInput(_Input):
    service: str
    metric: MetricKind
    time_range: str = Field(description="Relative range, e.g. 1h, 24h, 7d")
    environment: Optional[str] = None
    aggregation: Optional[Aggregation] = None


class GetServiceHealthInput(_Input):
    service: str
    environment: Optional[str] = None


class SearchLogsInput(_Input):
    service: str
    query: str
    time_range: str
    limit: int = Field(default=100, ge=1, le=1000)


class GetServiceOperationsInput(_Input):
    service: str
    environment: Optional[str] = None
    time_range: Optional[str] = None


class QueryApmTracesInput(_Input):
    service: str
    operation: Optional[str] = None
    environment: Optional[str] = None
    time_range: Optional[str] = None
    status: Optional[Literal["ok", "error"]] = None
    min_duration_ms: Optional[float] = Field(default=None, ge=0)
    max_duration_ms: Optional[float] = Field(default=None, ge=0)
    http_status_code: Optional[int] = Field(default=None, ge=100, le=599)
    http_method: Optional[str] = None
    error_type: Optional[str] = None
    span_type: Optional[Literal["web", "db", "cache", "http", "grpc"]] = None
    sort_by: Literal["duration", "timestamp"] = "duration"
    limit: int = Field(default=20, ge=1, le=100)


class GetMonitorsInput(_Input):
    service: Optional[str] = None
    status: Optional[MonitorStatusFilter] = None
    tags: Optional[List[str]] = None
    monitor_type: Optional[str] = None


# =============================================================================
# Metric discovery
# =============================================================================


class KindMetrics(_Record):
    """Metric names matched per kind. Any kind may be missing."""

    latency: Optional[str] = None
    throughput: Optional[str] = None
    errors: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.latency or self.throughput or self.errors)


class DiscoveredMetrics(_Record):
    service: str
    metrics: KindMetrics
    alternates: Optional[Dict[str, KindMetrics]] = None
    discovered: List[str] = Field(default_factory=list)
    patterns_tried: List[str] = Field(default_factory=list)

    @property
    def usable(self) -> bool:
        """At least one of latency/throughput is needed to answer anything."""
        return bool(self.metrics.latency or self.metrics.throughput)


# =============================================================================
# Tool outputs
# =============================================================================


class MetricPoint(_Record):
    timestamp: str
    value: float


class MetricsMetadata(_Record):
    environment: Optional[str] = None
    aggregation: str
    unit: str
    metric_name: str


class ApmMetricsResult(_Record):
    service: str
    metric: MetricKind
    data: List[MetricPoint]
    metadata: MetricsMetadata


class HealthMetrics(_Record):
    error_rate: float = Field(description="Percent of requests in error")
    p95_latency: float
    throughput: float


class RecentError(_Record):
    trace_id: str
    resource: str
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: str
    trace_url: str


class ServiceHealthResult(_Record):
    service: str
    status: HealthStatus
    metrics: HealthMetrics
    active_alerts: int
    recent_errors: Optional[List[RecentError]] = None
    last_updated: str


class LogEntry(_Record):
    timestamp: str
    level: str
    message: str
    service: str
    attributes: Optional[Dict[str, Any]] = None


class LogsResult(_Record):
    service: str
    query: str
    logs: List[LogEntry]
    total: int
    has_more: bool


class OperationMetrics(_Record):
    """Per-endpoint stats. Latencies in ms, error_rate in percent."""

    request_count: int = 0
    error_count: int = 0
    p50_latency: float = Field(default=0.0, ge=0)
    p95_latency: float = Field(default=0.0, ge=0)
    p99_latency: float = Field(default=0.0, ge=0)
    error_rate: float = 0.0


class ServiceOperation(_Record):
    name: str
    resource: str
    metrics: OperationMetrics


class ServiceOperationsResult(_Record):
    service: str
    environment: Optional[str] = None
    time_range: str
    total_operations: int
    operations: List[ServiceOperation]
    data_source: DataSource
    last_updated: str


class TraceInfo(_Record):
    trace_id: str
    span_id: str
    timestamp: str
    resource: str
    duration: float = Field(description="Milliseconds")
    status: Literal["ok", "error"]
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    trace_url: str


class TraceFilters(_Record):
    status: Optional[str] = None
    min_duration_ms: Optional[float] = None
    max_duration_ms: Optional[float] = None
    http_status_code: Optional[int] = None
    http_method: Optional[str] = None
    error_type: Optional[str] = None
    span_type: Optional[str] = None


class QueryApmTracesResult(_Record):
    service: str
    operation: Optional[str] = None
    environment: Optional[str] = None
    time_range: str
    query: str
    total_traces: int
    traces: List[TraceInfo]
    filters: TraceFilters
    last_updated: str


class MonitorInfo(_Record):
    id: int
    name: str
    type: str
    status: MonitorStatus
    message: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    query: Optional[str] = None
    creator: Optional[str] = None
    created: Optional[str] = None
    modified: Optional[str] = None
    monitor_url: str


class MonitorStatusCounts(_Record):
    alert: int = 0
    warn: int = 0
    ok: int = 0
    no_data: int = 0
    unknown: int = 0


class MonitorFilters(_Record):
    service: Optional[str] = None
    status: Optional[str] = None
    tags: Optional[List[str]] = None
    monitor_type: Optional[str] = None


class GetMonitorsResult(_Record):
    filters: MonitorFilters
    total_monitors: int
    monitors: List[MonitorInfo]
    by_status: MonitorStatusCounts
    last_updated: str


# =============================================================================
# Envelope
# =============================================================================


class ToolResult(BaseModel, Generic[T]):
    """Uniform response envelope: data on success, error on failure, never both."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    cached: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def _check_envelope(self) -> "ToolResult":
        if self.success and (self.data is None or self.error is not None):
            raise ValueError("successful result needs data and no error")
        if not self.success and (self.error is None or self.data is not None):
            raise ValueError("failed result needs an error and no data")
        return self

    @classmethod
    def ok(cls, data: Any, cached: bool = False, metadata: Optional[Dict[str, Any]] = None) -> "ToolResult":
        return cls(success=True, data=data, cached=cached, metadata=metadata)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready dict with camelCase keys and unset fields dropped."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


M = TypeVar("M", bound=BaseModel)


def parse_input(model: Type[M], args: Any) -> M:
    """Validate raw tool arguments into an input record.

    Raises:
        ValidationError: Listing each offending field.
    """
    if isinstance(args, model):
        return args
    try:
        return model.model_validate(args or {})
    except PydanticValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'input'}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"Invalid input: {details}") from e
