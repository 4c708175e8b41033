"""
Query building for the telemetry backend's tag/filter search syntax.

Span and log searches use space-joined `key:value` fragments (implicit AND).
Metric queries use the scope form `agg:metric{tag:value,...}`.
"""

import re
from dataclasses import dataclass
from typing import Literal, Optional

from ..errors import ValidationError

NS_PER_MS = 1_000_000

SERVICE_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_TOKEN_RE = re.compile(r"^[A-Za-z0-9_.:/-]+$")
_HTTP_METHOD_RE = re.compile(r"^[A-Za-z]+$")
# Characters that would open a group, a phrase or an escape in the query grammar
_FREE_TEXT_UNSAFE_RE = re.compile(r"[\"'\\<>`(){}\[\]]")
_LOG_TEXT_UNSAFE_RE = re.compile(r"[<>'\"]")

SpanKind = Literal["entry", "client", "server", "producer", "consumer"]
SpanType = Literal["web", "db", "cache", "http", "grpc"]
SpanStatus = Literal["ok", "error"]

SPAN_KINDS = ("entry", "client", "server", "producer", "consumer")
SPAN_TYPES = ("web", "db", "cache", "http", "grpc")
SPAN_STATUSES = ("ok", "error")

# Render order. Equal predicate sets must produce byte-identical queries.
FRAGMENT_ORDER = (
    "service",
    "environment",
    "span_kind",
    "operation",
    "status",
    "duration",
    "http_status_code",
    "http_method",
    "error_type",
    "span_type",
    "peer_service",
    "text",
)


def validate_service_name(service: str) -> str:
    """Return the service name if it matches [A-Za-z0-9_-]+, else raise."""
    if not isinstance(service, str) or not SERVICE_NAME_RE.match(service):
        raise ValidationError(
            "Invalid service name. Use alphanumeric characters, dashes, and underscores only."
        )
    return service


def _validate_token(value: str, what: str) -> str:
    if not isinstance(value, str) or not _TOKEN_RE.match(value):
        raise ValidationError(f"Invalid {what}: {value!r}")
    return value


def _clean_free_text(value: str, what: str) -> str:
    """Strip grouping/quoting characters and collapse whitespace."""
    cleaned = " ".join(_FREE_TEXT_UNSAFE_RE.sub("", str(value)).split())
    if not cleaned:
        raise ValidationError(f"Invalid {what}: {value!r}")
    return cleaned


def sanitize_log_query(query: str) -> str:
    """Remove characters that could break out of the log search expression."""
    return " ".join(_LOG_TEXT_UNSAFE_RE.sub("", query).split())


def ms_to_ns(ms: float) -> int:
    return int(round(ms * NS_PER_MS))


class QueryBuilder:
    """Fluent builder for span/log search queries.

    Each predicate occupies one slot; setting a slot again replaces it.
    build() renders the slots in FRAGMENT_ORDER, so the order in which the
    setters were called does not affect the output.
    """

    def __init__(self):
        self._slots: dict[str, str] = {}

    def service(self, name: str) -> "QueryBuilder":
        self._slots["service"] = f"service:{validate_service_name(name)}"
        return self

    def environment(self, env: str) -> "QueryBuilder":
        self._slots["environment"] = f"env:{_validate_token(env, 'environment')}"
        return self

    def span_kind(self, kind: SpanKind = "entry") -> "QueryBuilder":
        """Restrict to a span kind. 'entry' counts each request exactly once."""
        if kind not in SPAN_KINDS:
            raise ValidationError(f"Invalid span kind: {kind!r}")
        self._slots["span_kind"] = f"span.kind:{kind}"
        return self

    def operation(self, resource: str) -> "QueryBuilder":
        self._slots["operation"] = f'resource_name:"{_clean_free_text(resource, "operation")}"'
        return self

    def status(self, status: SpanStatus) -> "QueryBuilder":
        if status not in SPAN_STATUSES:
            raise ValidationError(f"Invalid status: {status!r} (expected 'ok' or 'error')")
        self._slots["status"] = f"status:{status}"
        return self

    def duration(self, min_ms: Optional[float] = None, max_ms: Optional[float] = None) -> "QueryBuilder":
        """Filter on span duration. Inputs are ms; the backend wants ns.

        Both bounds give one inclusive range fragment, a single bound gives a
        one-sided comparison.
        """
        for bound in (min_ms, max_ms):
            if bound is not None and bound < 0:
                raise ValidationError(f"Duration bounds must be non-negative, got {bound}")
        if min_ms is not None and max_ms is not None:
            if min_ms > max_ms:
                raise ValidationError(f"minDurationMs ({min_ms}) is greater than maxDurationMs ({max_ms})")
            self._slots["duration"] = f"@duration:[{ms_to_ns(min_ms)} TO {ms_to_ns(max_ms)}]"
        elif min_ms is not None:
            self._slots["duration"] = f"@duration:>={ms_to_ns(min_ms)}"
        elif max_ms is not None:
            self._slots["duration"] = f"@duration:<{ms_to_ns(max_ms)}"
        else:
            self._slots.pop("duration", None)
        return self

    def http_status_code(self, code: int) -> "QueryBuilder":
        if isinstance(code, bool) or not isinstance(code, int) or not 100 <= code <= 599:
            raise ValidationError(f"Invalid HTTP status code: {code!r}")
        self._slots["http_status_code"] = f"@http.status_code:{code}"
        return self

    def http_method(self, method: str) -> "QueryBuilder":
        if not isinstance(method, str) or not _HTTP_METHOD_RE.match(method):
            raise ValidationError(f"Invalid HTTP method: {method!r}")
        self._slots["http_method"] = f"@http.method:{method.upper()}"
        return self

    def error_type(self, error_type: str) -> "QueryBuilder":
        self._slots["error_type"] = f'@error.type:"{_clean_free_text(error_type, "error type")}"'
        return self

    def span_type(self, span_type: SpanType) -> "QueryBuilder":
        if span_type not in SPAN_TYPES:
            raise ValidationError(f"Invalid span type: {span_type!r}")
        self._slots["span_type"] = f"span.type:{span_type}"
        return self

    def peer_service(self, service: str) -> "QueryBuilder":
        """Downstream service called by client spans."""
        self._slots["peer_service"] = f"peer.service:{_validate_token(service, 'peer service')}"
        return self

    def text(self, query: str) -> "QueryBuilder":
        """Free-text search terms (log search)."""
        cleaned = sanitize_log_query(query)
        if cleaned:
            self._slots["text"] = cleaned
        else:
            self._slots.pop("text", None)
        return self

    def fragments(self) -> list[str]:
        return [self._slots[name] for name in FRAGMENT_ORDER if name in self._slots]

    def build(self) -> str:
        return " ".join(self.fragments())

    def reset(self) -> "QueryBuilder":
        self._slots = {}
        return self


@dataclass
class QueryFilter:
    """Structured span search predicate. Fields combine with AND."""

    service: str
    environment: Optional[str] = None
    operation: Optional[str] = None
    status: Optional[SpanStatus] = None
    min_duration_ms: Optional[float] = None
    max_duration_ms: Optional[float] = None
    http_status_code: Optional[int] = None
    http_method: Optional[str] = None
    error_type: Optional[str] = None
    span_type: Optional[SpanType] = None
    span_kind: Optional[SpanKind] = "entry"

    def to_builder(self) -> QueryBuilder:
        builder = QueryBuilder().service(self.service)
        if self.environment:
            builder.environment(self.environment)
        if self.span_kind:
            builder.span_kind(self.span_kind)
        if self.operation:
            builder.operation(self.operation)
        if self.status:
            builder.status(self.status)
        if self.min_duration_ms is not None or self.max_duration_ms is not None:
            builder.duration(self.min_duration_ms, self.max_duration_ms)
        if self.http_status_code is not None:
            builder.http_status_code(self.http_status_code)
        if self.http_method:
            builder.http_method(self.http_method)
        if self.error_type:
            builder.error_type(self.error_type)
        if self.span_type:
            builder.span_type(self.span_type)
        return builder

    def to_query(self) -> str:
        return self.to_builder().build()


def build_service_entry_query(service: str, environment: Optional[str] = None) -> str:
    """Entry spans of a service: one span per logical request."""
    return QueryFilter(service=service, environment=environment).to_query()


def build_error_query(service: str, environment: Optional[str] = None) -> str:
    """Entry spans of a service that ended in error."""
    return QueryFilter(service=service, environment=environment, status="error").to_query()


def build_service_to_service_query(caller: str, callee: str, environment: Optional[str] = None) -> str:
    """Client spans from one service to another."""
    builder = QueryBuilder().service(caller).span_kind("client").peer_service(callee)
    if environment:
        builder.environment(environment)
    return builder.build()


def build_metric_query(
    metric: str,
    service: str,
    environment: Optional[str] = None,
    aggregation: Optional[str] = None,
    function: Optional[str] = None,
    group_by: Optional[str] = None,
) -> str:
    """Render a metrics query, e.g. 'p95:trace.servlet.request.duration{service:web,env:prod}'.

    Args:
        metric: Metric name.
        service: Service tag value.
        environment: Optional env tag value.
        aggregation: Space aggregator prefix (avg, sum, p95...). Omitted when None.
        function: Rollup function appended as .fn() (e.g. as_rate, as_count).
        group_by: Tag to split series by.
    """
    _validate_token(metric, "metric name")
    scope = [f"service:{validate_service_name(service)}"]
    if environment:
        scope.append(f"env:{_validate_token(environment, 'environment')}")
    query = f"{metric}{{{','.join(scope)}}}"
    if aggregation:
        query = f"{aggregation}:{query}"
    if function:
        query = f"{query}.{function}()"
    if group_by:
        query = f"{query} by {{{_validate_token(group_by, 'group-by tag')}}}"
    return query
