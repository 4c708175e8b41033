"""
Metric discovery for APM services.

Different tracer integrations publish request metrics under different names
(trace.servlet.request.*, trace.netty.request.*, ...). The probe asks the
backend which of the known names have data for a service and falls back to
the metric search endpoint when none of them do.
"""

import asyncio
import logging
import re
from typing import Optional

from ..errors import AuthUnavailableError, DiscoveryFailure, TelemetryToolError
from ..models import DiscoveredMetrics, KindMetrics
from ..shared.filters import build_metric_query
from ..shared.time_utils import TimeRange

logger = logging.getLogger("apm_tools.metrics.discovery")

# Ranked: server-side integrations (requests TO the service) first,
# then client-side ones (calls FROM the service).
SERVER_FAMILIES = (
    "trace.servlet.request",
    "trace.netty.request",
    "trace.spring.handler",
    "trace.graphql.request",
    "trace.http.server.request",
    "trace.play.request",
    "trace.vertx.http.server",
    "trace.akka.http.server",
)
CLIENT_FAMILIES = (
    "trace.netty.client.request",
    "trace.play_ws.request",
)

KIND_SUFFIXES = {
    "latency": "duration",
    "throughput": "hits",
    "errors": "errors",
}

# Suffix priority used to categorize names found by metric search
KIND_PATTERNS = {
    "latency": [re.compile(p) for p in (r"\.duration$", r"\.latency$", r"\.response_time$", r"\.time$")],
    "throughput": [re.compile(p) for p in (r"\.hits$", r"\.requests$", r"\.count$", r"\.calls$")],
    "errors": [re.compile(p) for p in (r"\.errors$", r"\.error_count$", r"\.exceptions$", r"\.failures$")],
}

SEARCH_PATTERN = "trace.*"
SEARCH_KEYWORDS = ("duration", "hits", "errors", "latency", "requests", "count")

_CLIENT_MARKERS = (
    ".client",
    ".outbound",
    "trace.http.client",
    "trace.play_ws",
    "trace.okhttp",
    "trace.httpclient",
    "trace.apache.httpclient",
)
_SERVER_MARKERS = (".server",) + SERVER_FAMILIES


def candidate_metrics() -> list[str]:
    """All hard-coded candidate names, in rank order."""
    return [f"{family}.{suffix}" for family in SERVER_FAMILIES + CLIENT_FAMILIES for suffix in KIND_SUFFIXES.values()]


def family_of(metric: str) -> Optional[str]:
    """'trace.servlet.request.duration' -> 'trace.servlet.request'."""
    base, sep, _ = metric.rpartition(".")
    return base if sep else None


def is_server_side(family: str) -> bool:
    """True for integrations that measure incoming requests. Ambiguous names are client-side."""
    if any(marker in family for marker in _CLIENT_MARKERS):
        return False
    return any(marker in family for marker in _SERVER_MARKERS)


def categorize_metrics(metric_names: list[str]) -> KindMetrics:
    """Pick one name per kind, using the first suffix pattern that matches anything."""
    found = {}
    for kind, patterns in KIND_PATTERNS.items():
        for pattern in patterns:
            match = next((m for m in metric_names if pattern.search(m)), None)
            if match:
                found[kind] = match
                break
    return KindMetrics(**found)


class MetricDiscoveryProbe:
    """Finds which request metrics exist for a service."""

    def __init__(self, client, concurrency: int = 8, candidate_limit: int = 50):
        self.client = client
        self.concurrency = concurrency
        self.candidate_limit = candidate_limit

    async def discover(
        self, service: str, environment: Optional[str], time_range: TimeRange
    ) -> Optional[DiscoveredMetrics]:
        """Probe candidate metrics for a service.

        Returns:
            DiscoveredMetrics with one primary metric per kind that has data
            (kinds are independent, so any of them may be missing), or None
            when no candidate has data at all.
        """
        result, _ = await self._run(service, environment, time_range)
        return result

    async def require(self, service: str, environment: Optional[str], time_range: TimeRange) -> DiscoveredMetrics:
        """Like discover(), but raises DiscoveryFailure listing every pattern tried."""
        result, tried = await self._run(service, environment, time_range)
        if result is None:
            raise DiscoveryFailure(service, tried)
        return result

    async def _run(
        self, service: str, environment: Optional[str], time_range: TimeRange
    ) -> tuple[Optional[DiscoveredMetrics], list[str]]:
        candidates = candidate_metrics()
        working = await self._probe_all(candidates, service, environment, time_range)
        tried = list(candidates)

        if not working:
            logger.info(f"No known metric pattern has data for {service}, searching {SEARCH_PATTERN}")
            searched = await self._search_candidates(exclude=set(candidates))
            tried.extend(searched)
            working = await self._probe_all(searched, service, environment, time_range)

        if not working:
            logger.info(f"Metric discovery found nothing for {service} ({len(tried)} patterns tried)")
            return None, tried

        result = self._select(service, working, tried)
        logger.info(
            f"Discovered metrics for {service}: latency={result.metrics.latency} "
            f"throughput={result.metrics.throughput} errors={result.metrics.errors}"
        )
        return result, tried

    async def _probe_all(
        self, metrics: list[str], service: str, environment: Optional[str], time_range: TimeRange
    ) -> list[str]:
        """Return the metrics that have data, in input order."""
        if not metrics:
            return []
        semaphore = asyncio.Semaphore(self.concurrency)

        async def probe(metric: str) -> bool:
            async with semaphore:
                return await self._has_data(metric, service, environment, time_range)

        # Every probe finishes before an auth failure is re-raised
        results = await asyncio.gather(*(probe(m) for m in metrics), return_exceptions=True)
        for outcome in results:
            if isinstance(outcome, BaseException):
                raise outcome
        return [metric for metric, ok in zip(metrics, results) if ok]

    async def _has_data(self, metric: str, service: str, environment: Optional[str], time_range: TimeRange) -> bool:
        query = build_metric_query(metric, service, environment, aggregation="avg")
        try:
            response = await self.client.query_metrics(query, time_range.from_ms, time_range.to_ms)
        except AuthUnavailableError:
            raise
        except TelemetryToolError as e:
            logger.debug(f"Probe {metric} failed: {e}")
            return False

        series = response.get("series")
        first = series[0] if isinstance(series, list) and series else None
        has_data = isinstance(first, dict) and bool(first.get("pointlist"))
        logger.debug(f"Probe {metric}: {'has data' if has_data else 'no data'}")
        return has_data

    async def _search_candidates(self, exclude: set[str]) -> list[str]:
        try:
            names = await self.client.search_metrics(SEARCH_PATTERN)
        except AuthUnavailableError:
            raise
        except TelemetryToolError as e:
            logger.warning(f"Metric search failed: {e}")
            return []

        candidates = [
            name for name in names if name not in exclude and any(keyword in name for keyword in SEARCH_KEYWORDS)
        ]
        logger.debug(f"Metric search returned {len(names)} names, {len(candidates)} candidates")
        return candidates[: self.candidate_limit]

    def _select(self, service: str, working: list[str], tried: list[str]) -> DiscoveredMetrics:
        """Choose primary metrics per kind from server-side families; the rest become alternates."""
        families: dict[str, list[str]] = {}
        for metric in working:
            family = family_of(metric)
            if family:
                families.setdefault(family, []).append(metric)

        primary = {}
        primary_families = set()
        for family, metrics in families.items():
            if not is_server_side(family):
                continue
            for kind, name in categorize_metrics(metrics).model_dump(exclude_none=True).items():
                if kind not in primary:
                    primary[kind] = name
                    primary_families.add(family)

        alternates = {}
        for family, metrics in families.items():
            if family in primary_families:
                continue
            kinds = categorize_metrics(metrics)
            if not kinds.is_empty():
                alternates[family] = kinds

        return DiscoveredMetrics(
            service=service,
            metrics=KindMetrics(**primary),
            alternates=alternates or None,
            discovered=working,
            patterns_tried=tried,
        )
