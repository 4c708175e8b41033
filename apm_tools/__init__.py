"""
APM Tools - MCP tools for querying application performance telemetry.

This package provides an MCP (Model Context Protocol) server that lets an AI
agent query APM metrics, service health, logs, traces and monitors from
Datadog during an incident investigation.

Run the server with: python -m apm_tools.telemetry_query
"""

from .config import ToolsConfig

__version__ = "0.1.0"

__all__ = [
    "ToolsConfig",
    "__version__",
]
