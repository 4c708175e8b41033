"""
APM Telemetry Query MCP Server entry point.

Run with: python -m apm_tools.telemetry_query
"""

import argparse
import asyncio
import logging
import sys

from mcp.server import Server
from mcp.server.stdio import stdio_server

from ..config import ToolsConfig
from .client import StaticTokenProvider
from .context import ToolContext, build_context
from .errors import TelemetryToolError
from .tools import register_tools

logger = logging.getLogger("apm_tools.server")


def setup_logging(verbose: bool = False):
    """Configure logging. stdout carries the MCP stream, so logs go to stderr."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def parse_args(argv: list[str] | None = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="apm-telemetry-mcp",
        description="APM telemetry query tools served over MCP (stdio)",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to a TOML config file (flat or with a [telemetry] table). Default: environment variables only",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Validate the configured credentials against the backend and exit",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    return parser.parse_args(argv)


def load_config(path: str | None) -> ToolsConfig:
    return ToolsConfig.from_toml(path) if path else ToolsConfig.from_env()


async def check_connection(context: ToolContext) -> bool:
    try:
        valid = await context.client.validate()
    except TelemetryToolError as e:
        logger.error(f"Connection check failed: {e}")
        return False
    finally:
        await context.client.aclose()
    if valid:
        logger.info(f"Credentials accepted by {context.config.api_base_url}")
    else:
        logger.error(f"Credentials rejected by {context.config.api_base_url}")
    return valid


async def run_server(context: ToolContext):
    """Run the MCP server."""
    app = Server("apm_telemetry_query")
    register_tools(app, context)

    try:
        # stdio_server is an async context manager
        async with stdio_server() as (read_stream, write_stream):
            await app.run(read_stream, write_stream, app.create_initialization_options())
    finally:
        await context.client.aclose()


def main(argv: list[str] | None = None):
    """Main entry point for the APM telemetry MCP server."""
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(2)

    context = build_context(config, token_provider=StaticTokenProvider())
    logger.info(
        f"Using {config.api_base_url} with {'API key' if config.has_api_keys else 'OAuth token'} authentication"
    )

    if args.check:
        sys.exit(0 if asyncio.run(check_connection(context)) else 1)

    try:
        asyncio.run(run_server(context))
    except KeyboardInterrupt:
        pass
    except Exception as e:
        print(f"Error starting MCP server: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
