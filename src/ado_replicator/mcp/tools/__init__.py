"""MCP tool handlers for replication operations.

This package contains MCP tool implementations that wrap the replication
engines with async handlers and structured error responses.
"""

from .errors import build_error_response, translate_replicator_error
from .registry import ToolRegistry, ToolSpec, load_permissions_file
from .replication import REPLICATION_SPECS, REPLICATION_TOOLS

ALL_SPECS: list[ToolSpec] = list(REPLICATION_SPECS)

__all__ = [
    "build_error_response",
    "translate_replicator_error",
    # Registry
    "ToolSpec",
    "ToolRegistry",
    "load_permissions_file",
    # Spec lists
    "ALL_SPECS",
    "REPLICATION_SPECS",
    "REPLICATION_TOOLS",
]
