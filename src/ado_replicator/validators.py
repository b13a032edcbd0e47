"""
Input validation functions for the replication engines.

Each validator returns an ``(is_valid, message)`` tuple; the engines turn
a failed check into ``ValidationError``.
"""

import re
from urllib.parse import urlparse

# Characters the service rejects in project and classification node names
_INVALID_NAME_CHARS = re.compile(r'[\\/:*?"<>|;#$%&+,=@\[\]{}~^`]')
_MAX_PROJECT_NAME = 64


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Source project id")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_container_id(
    container_id: str | None, field_name: str = "Project id"
) -> tuple[bool, str]:
    """Validate a project id or name reference."""
    if not container_id or not container_id.strip():
        return (False, format_validation_error(field_name, "cannot be empty"))
    return (True, "")


def validate_project_name(name: str | None) -> tuple[bool, str]:
    """
    Validate a name for a project to be created.

    Validation rules:
        - Cannot be empty or whitespace-only
        - At most 64 characters
        - Cannot start with an underscore or end with a period
        - Cannot contain reserved punctuation
    """
    if not name or not name.strip():
        return (False, format_validation_error("Project name", "cannot be empty"))

    if len(name) > _MAX_PROJECT_NAME:
        return (
            False,
            format_validation_error(
                "Project name",
                f"cannot exceed {_MAX_PROJECT_NAME} characters",
            ),
        )

    if name.startswith("_") or name.endswith("."):
        return (
            False,
            format_validation_error(
                "Project name",
                "cannot start with '_' or end with '.'",
            ),
        )

    if _INVALID_NAME_CHARS.search(name):
        return (
            False,
            format_validation_error(
                "Project name", "contains reserved characters"
            ),
        )

    return (True, "")


def validate_organization_url(url: str | None) -> tuple[bool, str]:
    """Validate an organization URL (``https://dev.azure.com/<org>``)."""
    if not url or not url.strip():
        return (
            False,
            format_validation_error("Organization URL", "cannot be empty"),
        )
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return (
            False,
            format_validation_error(
                "Organization URL",
                "must be an http(s) URL with a hostname",
            ),
        )
    return (True, "")


def validate_work_item_ids(ids: list[int] | None) -> tuple[bool, str]:
    """Validate a selection of work item ids."""
    if not ids:
        return (
            False,
            format_validation_error("Work item ids", "cannot be empty"),
        )
    bad = [i for i in ids if not isinstance(i, int) or i <= 0]
    if bad:
        return (
            False,
            format_validation_error(
                "Work item ids", f"must be positive integers (got {bad})"
            ),
        )
    return (True, "")
