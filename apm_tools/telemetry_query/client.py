"""
HTTP client for the Datadog APM, logs and monitor APIs.

All endpoints go through the ResilientCaller, so transient failures are
retried before a tool ever sees them.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import httpx

from ..config import ToolsConfig
from ..utils import truncate_string
from .errors import AuthUnavailableError, ParseError, PermanentBackendError, TransientBackendError
from .retry import ResilientCaller

logger = logging.getLogger("apm_tools.client")


class TokenProvider(Protocol):
    """Source of OAuth bearer tokens. Returns None when no token is available."""

    async def get_access_token(self, service_name: str) -> Optional[str]: ...


class StaticTokenProvider:
    """Token provider backed by a fixed token (or DD_ACCESS_TOKEN)."""

    def __init__(self, token: str | None = None):
        self._token = token if token is not None else os.environ.get("DD_ACCESS_TOKEN")

    async def get_access_token(self, service_name: str) -> Optional[str]:
        return self._token or None


def _iso_ms(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _expect_object(data: Any, endpoint: str) -> dict[str, Any]:
    """Response body as a dict, or ParseError when the JSON is some other shape."""
    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object from {endpoint}, got {type(data).__name__}")
    return data


class DatadogClient:
    """Async client with one method per backend endpoint used by the tools."""

    def __init__(
        self,
        config: ToolsConfig,
        caller: ResilientCaller | None = None,
        token_provider: TokenProvider | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the client.

        Args:
            config: Tools configuration (site, keys, timeout, retry policy)
            caller: Retry wrapper (default: built from config)
            token_provider: OAuth token source, used when API keys are not configured
            http_client: Pre-built httpx client (tests pass one with a MockTransport)
        """
        self.config = config
        self.caller = caller or ResilientCaller(
            max_retries=config.max_retries, base_delay=config.base_delay_seconds
        )
        self.token_provider = token_provider
        self._http = http_client or httpx.AsyncClient(
            base_url=config.api_base_url, timeout=config.request_timeout
        )

        if not config.has_api_keys and token_provider is None:
            logger.warning("Neither DD_API_KEY/DD_APP_KEY nor a token provider configured - requests will fail")

    async def aclose(self) -> None:
        await self._http.aclose()

    # =========================================================================
    # Endpoints
    # =========================================================================

    async def query_metrics(self, query: str, from_ms: int, to_ms: int) -> dict[str, Any]:
        """Query timeseries metrics. Returns the raw response with its 'series' list."""
        params = {"query": query, "from": from_ms // 1000, "to": to_ms // 1000}
        data = await self._call("GET", "/api/v1/query", f"query_metrics({query})", params=params)
        return _expect_object(data, "query_metrics")

    async def search_metrics(self, pattern: str) -> list[str]:
        """List metric names matching a pattern such as 'trace.*'."""
        data = await self._call("GET", "/api/v1/search", f"search_metrics({pattern})", params={"q": f"metrics:{pattern}"})
        results = _expect_object(data, "search_metrics").get("results") or {}
        metrics = results.get("metrics") if isinstance(results, dict) else None
        return [m for m in (metrics or []) if isinstance(m, str)]

    async def search_logs(self, query: str, from_ms: int, to_ms: int, limit: int = 100) -> dict[str, Any]:
        body = {
            "filter": {"query": query, "from": _iso_ms(from_ms), "to": _iso_ms(to_ms)},
            "page": {"limit": limit},
            "sort": "timestamp",
        }
        data = await self._call("POST", "/api/v2/logs/events/search", "search_logs", json=body)
        return _expect_object(data, "search_logs")

    async def list_monitors(
        self, monitor_tags: list[str] | None = None, tags: list[str] | None = None
    ) -> list[dict[str, Any]]:
        params = {}
        if monitor_tags:
            params["monitor_tags"] = ",".join(monitor_tags)
        if tags:
            params["tags"] = ",".join(tags)
        data = await self._call("GET", "/api/v1/monitor", "list_monitors", params=params)
        if not isinstance(data, list):
            raise ParseError(f"Expected a list of monitors, got {type(data).__name__}")
        monitors = [m for m in data if isinstance(m, dict)]
        if len(monitors) < len(data):
            logger.warning(f"Dropped {len(data) - len(monitors)} malformed monitor entries")
        return monitors

    async def aggregate_spans(
        self,
        query: str,
        from_ms: int,
        to_ms: int,
        compute: list[dict[str, Any]],
        group_by: list[dict[str, Any]],
    ) -> dict[str, Any]:
        """Aggregate spans grouped by facets. Returns the response with data.buckets."""
        body = {
            "data": {
                "type": "aggregate_request",
                "attributes": {
                    "filter": {"query": query, "from": str(from_ms), "to": str(to_ms)},
                    "compute": compute,
                    "group_by": group_by,
                },
            }
        }
        data = await self._call("POST", "/api/v2/spans/analytics/aggregate", "aggregate_spans", json=body)
        return _expect_object(data, "aggregate_spans")

    async def list_spans(
        self, query: str, from_ms: int, to_ms: int, sort: str = "-timestamp", limit: int = 20
    ) -> dict[str, Any]:
        body = {
            "data": {
                "type": "search_request",
                "attributes": {
                    "filter": {"query": query, "from": str(from_ms), "to": str(to_ms)},
                    "sort": sort,
                    "page": {"limit": limit},
                },
            }
        }
        data = await self._call("POST", "/api/v2/spans/events/search", "list_spans", json=body)
        return _expect_object(data, "list_spans")

    async def get_service_definition(self, name: str) -> dict[str, Any]:
        data = await self._call("GET", f"/api/v2/services/definitions/{name}", f"get_service_definition({name})")
        return _expect_object(data, "get_service_definition")

    async def validate(self) -> bool:
        """Check that the configured credentials are accepted."""
        data = await self._call("GET", "/api/v1/validate", "validate")
        return bool(data.get("valid", False)) if isinstance(data, dict) else False

    # =========================================================================
    # Transport
    # =========================================================================

    async def _call(self, method: str, path: str, description: str, **kwargs) -> Any:
        return await self.caller.call(lambda: self._request(method, path, **kwargs), description=description)

    async def _headers(self) -> dict[str, str]:
        """Build auth headers: API keys when both are set, else an OAuth bearer token."""
        headers = {"Accept": "application/json"}
        if self.config.has_api_keys:
            headers["DD-API-KEY"] = self.config.api_key
            headers["DD-APPLICATION-KEY"] = self.config.app_key
            return headers

        token = None
        if self.token_provider is not None:
            token = await self.token_provider.get_access_token(self.config.token_service_name)
        if not token:
            raise AuthUnavailableError(
                "No Datadog authentication available. Configure either an OAuth token "
                "or API keys (DD_API_KEY + DD_APP_KEY)."
            )
        headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """Execute one HTTP request and map failures onto the error taxonomy."""
        headers = await self._headers()
        logger.debug(f"{method} {path}")

        try:
            response = await self._http.request(method, path, headers=headers, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e)
        except httpx.TimeoutException as e:
            raise TransientBackendError(f"Request to {path} timed out after {self.config.request_timeout}s") from e
        except httpx.TransportError as e:
            raise TransientBackendError(f"Cannot reach {self.config.api_base_url}: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON from {path}: {e}") from e

    def _handle_http_error(self, error: httpx.HTTPStatusError) -> None:
        """Raise the taxonomy error matching an HTTP error status."""
        status_code = error.response.status_code
        detail = truncate_string(error.response.text, 500)

        if status_code == 429:
            raise TransientBackendError(f"Rate limit exceeded: {detail}", status_code=status_code) from error
        elif status_code >= 500:
            raise TransientBackendError(detail, status_code=status_code) from error
        else:
            raise PermanentBackendError(detail, status_code=status_code) from error
