"""Error response builders for MCP tool handlers.

This module provides structured error responses with corrective actions
to help AI agents recover from errors without human intervention.
"""

import mcp.types as types

from ...core.errors import (
    ConflictError,
    NotFoundError,
    ReplicatorError,
    UpstreamError,
    ValidationError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, permission_denied, already_exists, validation_error, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Project 'X' not found", "Use list_projects to verify the project exists.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


# ---------------------------------------------------------------------------
# Corrective action messages
# ---------------------------------------------------------------------------

_ACTIONS: dict[str, str] = {
    "validation_error": "Check parameter values and retry.",
    "not_found": "Use list_projects to verify the project exists.",
    "permission_denied": (
        "Check that the access token is valid and carries the scopes the "
        "tool needs (e.g., vso.project_manage, vso.work_write)."
    ),
    "already_exists": "Choose a different name or remove the existing item.",
    "server_error": "Check Azure DevOps availability and retry later.",
}


def translate_replicator_error(
    error: ReplicatorError, entity_name: str | None = None
) -> types.CallToolResult:
    """Translate an engine exception to a structured error response.

    Args:
        error: The raised exception.
        entity_name: Optional project name for contextual suggestions.

    Returns:
        CallToolResult with isError=True and corrective action
    """
    match error:
        case ValidationError():
            error_type = "validation_error"
        case NotFoundError():
            error_type = "not_found"
        case ConflictError():
            error_type = "already_exists"
        case UpstreamError(status_code=401 | 403 | 203):
            error_type = "permission_denied"
        case _:
            error_type = "server_error"

    action = _ACTIONS[error_type]
    if error_type == "not_found" and entity_name:
        action = f"Use list_projects to find projects similar to '{entity_name}'."
    return build_error_response(error_type, str(error), action)
