"""MCP Server for Azure DevOps project replication using stdio transport.

This module implements the Model Context Protocol server that enables
AI agents to compare, update, clone and deploy Azure DevOps projects via
standardized tools.

Transport: stdio (for MCP client integration)
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..core.async_utils import run_sync
from ..core.client import AdoClient
from ..logger import setup_logging
from ..version import check_version_consistency
from .lifespan import server_lifespan
from .progress import request_progress, reset_progress, set_progress
from .tools import (
    ALL_SPECS,
    ToolRegistry,
    build_error_response,
    load_permissions_file,
)
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

SERVER_NAME = "ado-replicator"

# Initialize server instance
server = Server(SERVER_NAME)

# Global client instance (initialized in lifespan)
_ado_client: AdoClient | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available, no scope required)
# ---------------------------------------------------------------------------


async def _handle_ping(
    client: AdoClient, args: dict
) -> types.CallToolResult:
    """Handle ping tool -- test organization connectivity."""
    if await run_sync(client.validate_credential):
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=(
                        f"Connected to {client.config.organization_url} "
                        f"(API version {client.config.api_version})"
                    ),
                )
            ]
        )
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text",
                text=(
                    f"Connection to {client.config.organization_url} failed. "
                    "Check ADO_ORGANIZATION_URL and ADO_ACCESS_TOKEN."
                ),
            )
        ],
        isError=True,
    )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Test Azure DevOps connectivity and return the API version",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    permissions=frozenset(),
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_client() -> AdoClient:
    """Get the global AdoClient instance.

    Raises:
        RuntimeError: If client is not initialized
    """
    if _ado_client is None:
        raise RuntimeError(
            "AdoClient not initialized. Server lifespan not started."
        )
    return _ado_client


def set_client(client: AdoClient | None) -> None:
    """Set the global AdoClient instance, or None to clear."""
    global _ado_client
    _ado_client = client


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    """Set the global ToolRegistry instance, or None to clear."""
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List all registered (and permitted) tools."""
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch.

    Args:
        name: The name of the tool to execute.
        arguments: Tool arguments (optional).

    Returns:
        CallToolResult with tool output content and optional isError flag.
    """
    client = get_client()
    token = set_progress(request_progress(server))
    try:
        return await get_registry().call_tool(name, arguments, client)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )
    finally:
        reset_progress(token)


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


def build_registry(permissions_file: str | None = None) -> ToolRegistry:
    """Build the tool registry, filtered by a permissions file if given."""
    allowed_permissions = None
    if permissions_file:
        allowed_permissions = load_permissions_file(permissions_file)
        logger.info(
            "Loaded %d scopes from %s",
            len(allowed_permissions),
            permissions_file,
        )

    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs, allowed_permissions)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(all_specs),
    )
    if permissions_file:
        print(
            f"Permissions file: {permissions_file} "
            f"({registry.tool_count()} of {len(all_specs)} tools enabled)",
            file=sys.stderr,
        )
    return registry


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Sets up logging for MCP mode (file only, never stdout), validates the
    access token via the lifespan manager, and starts the server with
    stdio transport for JSON-RPC communication.

    Args:
        config_overrides: Optional dict with config values to override (url, token, insecure, log_file, permissions_file)
    """
    overrides = config_overrides or {}

    # Must run before stdio_server so nothing reaches stdout
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file"),
    )

    is_consistent, message = check_version_consistency()
    if not is_consistent:
        logger.warning(message)
        sys.stderr.write(f"Warning: {message}\n")
    else:
        logger.info(message)

    set_registry(build_registry(overrides.get("permissions_file")))

    # set_client() is called here rather than in the lifespan so that
    # running this file as __main__ updates this module's global.
    async with server_lifespan(config_overrides=config_overrides) as ctx:
        set_client(ctx["client"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name=SERVER_NAME,
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_client(None)
            set_registry(None)


def parse_args(argv: list[str] | None = None) -> dict:
    """Parse CLI arguments into a config overrides dict."""
    parser = argparse.ArgumentParser(
        description="ADO Replicator MCP Server - compare, clone and deploy Azure DevOps projects",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .ado_replicator/config.yml)
  ado-replicator-mcp

  # Override the organization
  ado-replicator-mcp --url https://dev.azure.com/contoso

  # Custom log file location
  ado-replicator-mcp --log-file /var/log/ado-replicator.log

  # Restrict tools by token scopes
  ado-replicator-mcp --permissions-file /etc/ado-replicator/read-only.scopes

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr.
        """,
    )
    parser.add_argument(
        "--url",
        help="Override organization URL (takes precedence over ADO_ORGANIZATION_URL and config files)",
    )
    parser.add_argument(
        "--token",
        help="Override access token (visible in process list -- prefer ADO_ACCESS_TOKEN)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file",
        default="/tmp/ado-replicator.log",
        help="Log file path (default: /tmp/ado-replicator.log)",
    )
    parser.add_argument(
        "--permissions-file",
        help="Path to a file of allowed token scopes, one per line (e.g., vso.work). "
        "If not specified, all tools are available.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"ado-replicator version {__version__}",
    )

    args = parser.parse_args(argv)

    config_overrides: dict = {}
    if args.url:
        config_overrides["url"] = args.url
    if args.token:
        config_overrides["token"] = args.token
    if args.insecure:
        config_overrides["insecure"] = True
    if args.debug:
        config_overrides["debug"] = True
    if args.log_file:
        config_overrides["log_file"] = args.log_file
    if args.permissions_file:
        config_overrides["permissions_file"] = args.permissions_file
    return config_overrides


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    config_overrides = parse_args()

    if config_overrides:
        override_keys = [k for k in config_overrides if k != "token"]
        print(
            f"Config overrides from CLI: {', '.join(override_keys)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(main(config_overrides=config_overrides or None))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
