"""
APM telemetry tool implementations.

Provides MCP tools for:
- APM metric timeseries (latency, throughput, error rate)
- Service health summaries
- Log search
- Per-operation stats (trace metrics with span aggregation fallback)
- Trace search with deep links
- Monitor listing

Usage:
- MCP server: python -m apm_tools.telemetry_query
- Python API: await call_tool_by_name(context, "get_monitors", {"service": "checkout"})
"""

import json
import logging
from typing import Any, Awaitable, Callable

from mcp.server import Server
from mcp.types import TextContent, Tool

from .alerts.analyzer import get_monitors
from .context import ToolContext
from .health.analyzer import get_service_health
from .logs.analyzer import search_logs
from .metrics.analyzer import query_apm_metrics
from .models import ToolResult
from .tool_definitions import get_all_tool_definitions
from .traces.analyzer import query_apm_traces
from .traces.operations import get_service_operations

logger = logging.getLogger("apm_tools.tools")

ToolHandler = Callable[[ToolContext, Any], Awaitable[ToolResult]]

TOOL_HANDLERS: dict[str, ToolHandler] = {
    "query_apm_metrics": query_apm_metrics,
    "get_service_health": get_service_health,
    "search_logs": search_logs,
    "get_service_operations": get_service_operations,
    "query_apm_traces": query_apm_traces,
    "get_monitors": get_monitors,
}


async def call_tool_by_name(context: ToolContext, name: str, arguments: dict[str, Any] | None) -> ToolResult:
    """Run a tool and return its ToolResult. Never raises."""
    handler = TOOL_HANDLERS.get(name)
    if handler is None:
        return ToolResult.fail(f"Unknown tool: {name}")

    logger.info(f"Tool call: {name}")
    try:
        return await handler(context, arguments or {})
    except Exception as e:
        logger.exception(f"Unexpected error in {name}")
        return ToolResult.fail(f"Internal error in {name}: {type(e).__name__}: {e}")


def render_result(result: ToolResult) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(result.to_payload(), indent=2))]


def register_tools(server: Server, context: ToolContext) -> None:
    """Register all APM telemetry tools with the MCP server.

    Args:
        server: The MCP Server instance to register tools with.
        context: Shared client, cache and discovery probe used by every tool.
    """

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """Return the list of available tools."""
        return get_all_tool_definitions()

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle tool invocations."""
        result = await call_tool_by_name(context, name, arguments)
        return render_result(result)
