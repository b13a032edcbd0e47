"""ToolSpec and ToolRegistry for scope-based tool filtering.

This module provides a centralized registry for MCP tools that supports
filtering based on access token scopes, enabling operators to restrict
which tools are exposed to AI agents.

Key concepts:
- ToolSpec: Immutable dataclass linking a Tool definition, required scopes,
  and an async handler with standardized signature (client, args) -> CallToolResult.
- ToolRegistry: Filters specs by allowed scopes at construction time,
  then provides list_tools() and call_tool() dispatch with error translation.
- load_permissions_file: Reads a simple text file of scope names.
"""

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

import mcp.types as types

from ...core.client import AdoClient
from ...core.errors import ReplicatorError

logger = logging.getLogger(__name__)

_SCOPE_RE = re.compile(r"^vso\.[a-z]+(_[a-z]+)*$")


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Immutable specification for a single MCP tool.

    Attributes:
        tool: The MCP Tool definition (name, description, inputSchema).
        permissions: Token scopes required to use this tool.
            Empty frozenset means the tool is always available.
        handler: Async handler with signature (client, args) -> CallToolResult.
    """

    tool: types.Tool
    permissions: frozenset[str]
    handler: Callable[[AdoClient, dict], Awaitable[types.CallToolResult]]


class ToolRegistry:
    """Registry of ToolSpecs with optional scope-based filtering.

    If allowed_permissions is None, all specs are included.
    Otherwise, a spec is included only if:
    - its permissions set is empty (always available), or
    - its permissions are a subset of allowed_permissions.
    """

    def __init__(
        self,
        specs: list[ToolSpec],
        allowed_permissions: frozenset[str] | None = None,
    ):
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            if (
                allowed_permissions is None
                or not spec.permissions
                or spec.permissions <= allowed_permissions
            ):
                self._specs[spec.tool.name] = spec

    def list_tools(self) -> list[types.Tool]:
        """Return list of types.Tool for all registered (permitted) specs."""
        return [spec.tool for spec in self._specs.values()]

    def tool_count(self) -> int:
        """Return number of registered tools."""
        return len(self._specs)

    async def call_tool(
        self,
        name: str,
        arguments: dict | None,
        client: AdoClient,
    ) -> types.CallToolResult:
        """Dispatch tool call to registered handler.

        Provides centralized error handling for engine errors, invalid
        arguments and unexpected exceptions, translating them into
        structured CallToolResult responses with corrective actions.

        Args:
            name: Tool name to invoke.
            arguments: Tool arguments (may be None).
            client: AdoClient instance.

        Returns:
            CallToolResult from the handler.

        Raises:
            ValueError: If tool name is not registered (unknown or filtered out).
        """
        from .errors import build_error_response, translate_replicator_error

        spec = self._specs.get(name)
        if spec is None:
            raise ValueError(f"Unknown tool: {name}")
        args = arguments or {}
        try:
            return await spec.handler(client, args)
        except ReplicatorError as e:
            logger.warning("%s failed: %s", name, e)
            return translate_replicator_error(e, _entity_name_from_args(args))
        except ValueError as e:
            return build_error_response(
                "validation_error",
                str(e),
                "Check parameter values and retry.",
            )
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return build_error_response(
                "server_error",
                str(e),
                "Check Azure DevOps availability and retry later.",
            )


def _entity_name_from_args(args: dict) -> str | None:
    """Pick the project the call was about, for contextual error messages."""
    for key in ("source_project_id", "target_project_id", "project_id"):
        if args.get(key):
            return str(args[key])
    return None


def load_permissions_file(path: str | Path) -> frozenset[str]:
    """Load allowed token scopes from a text file.

    Format: one scope per line, ``#`` for comments, blank lines ignored.

    Example file::

        # Read-only scopes
        vso.project
        vso.work

    Args:
        path: Path to the permissions file.

    Returns:
        Frozenset of scope strings.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file contains invalid scopes or is empty.
    """
    path = Path(path)
    permissions: set[str] = set()
    for line_num, line in enumerate(path.read_text().splitlines(), 1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if not _SCOPE_RE.match(stripped):
            raise ValueError(
                f"Invalid scope '{stripped}' at line {line_num} in {path}. "
                "Expected a token scope name (e.g., vso.work_write)."
            )
        permissions.add(stripped)
    if not permissions:
        raise ValueError(
            f"No scopes found in {path}. File must contain at least one scope."
        )
    return frozenset(permissions)
