"""Work item copy helpers shared by the applier, clone pipeline and deployer.

Builds the JSON-patch documents sent to the work item endpoints and copies
the parts of a work item that need their own requests (attachments,
comments, links).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from ..core.client import AdoClient
from ..core.models import (
    ATTACHED_FILE,
    CHILD_LINK,
    COPIED_FIELDS,
    PARENT_LINK,
    WorkItem,
)
from .hierarchy import relative_path, retarget_path
from .scope import ErrorScope

logger = logging.getLogger(__name__)

# Tracked attribute -> field reference
TRACKED_FIELDS = {
    "title": "System.Title",
    "state": "System.State",
    "area_path": "System.AreaPath",
    "iteration_path": "System.IterationPath",
    "tags": "System.Tags",
    "assigned_to": "System.AssignedTo",
}

RELATED_LINK = "System.LinkTypes.Related"
# The service creates the reverse end of these links itself
_IMPLIED_LINKS = frozenset({CHILD_LINK, "System.LinkTypes.Dependency-Reverse"})


def field_op(field: str, value: Any, op: str = "add") -> dict[str, Any]:
    return {"op": op, "path": f"/fields/{field}", "value": value}


def link_op(
    rel: str, url: str, attributes: dict[str, Any] | None = None
) -> dict[str, Any]:
    value: dict[str, Any] = {"rel": rel, "url": url}
    if attributes:
        value["attributes"] = attributes
    return {"op": "add", "path": "/relations/-", "value": value}


def tracked_differences(source: WorkItem, target: WorkItem) -> list[str]:
    """Names of the tracked attributes that differ between two items.

    Paths compare without their project segment and tags compare as
    case-insensitive sets.
    """
    changed = []
    if source.title != target.title:
        changed.append("title")
    if source.state != target.state:
        changed.append("state")
    if relative_path(source.area_path) != relative_path(target.area_path):
        changed.append("area_path")
    if relative_path(source.iteration_path) != relative_path(
        target.iteration_path
    ):
        changed.append("iteration_path")
    if source.tag_set != target.tag_set:
        changed.append("tags")
    if (source.assigned_to or "").lower() != (target.assigned_to or "").lower():
        changed.append("assigned_to")
    return changed


def _tracked_value(item: WorkItem, name: str, target_project_name: str) -> Any:
    if name in ("area_path", "iteration_path"):
        return retarget_path(getattr(item, name), target_project_name)
    if name == "assigned_to":
        return item.assigned_to or ""
    return getattr(item, name)


def creation_operations(
    item: WorkItem,
    target_project_name: str,
    *,
    include_state: bool = False,
    include_assignee: bool = False,
) -> list[dict[str, Any]]:
    """Patch document creating a copy of *item* in another project."""
    ops = [
        field_op("System.Title", item.title),
        field_op(
            "System.AreaPath", retarget_path(item.area_path, target_project_name)
        ),
        field_op(
            "System.IterationPath",
            retarget_path(item.iteration_path, target_project_name),
        ),
    ]
    for field in COPIED_FIELDS:
        value = item.fields.get(field)
        if value not in (None, ""):
            ops.append(field_op(field, value))
    if include_state and item.state:
        ops.append(field_op("System.State", item.state))
    if include_assignee and item.assigned_to:
        ops.append(field_op("System.AssignedTo", item.assigned_to))
    return ops


def update_operations(
    source: WorkItem, changed_fields: list[str], target_project_name: str
) -> list[dict[str, Any]]:
    """Patch document bringing the tracked *changed_fields* in line with *source*."""
    return [
        field_op(
            TRACKED_FIELDS[name],
            _tracked_value(source, name, target_project_name),
        )
        for name in changed_fields
        if name in TRACKED_FIELDS
    ]


def deployment_differences(source: WorkItem, target: WorkItem) -> list[str]:
    """Copied fields whose values differ, for deployment updates."""
    fields = ("System.Title", *COPIED_FIELDS)
    return [
        f
        for f in fields
        if source.fields.get(f) not in (None, "")
        and source.fields.get(f) != target.fields.get(f)
    ]


def link_operations(
    item: WorkItem,
    mapping: Mapping[int, int],
    work_item_url: Callable[[int], str],
) -> list[dict[str, Any]]:
    """Links of *item* re-pointed at the mapped target items.

    Only one end of each link pair is emitted; the service adds the other.
    """
    ops = []
    for relation in item.relations:
        linked = relation.linked_work_item_id
        if linked is None or linked not in mapping:
            continue
        if relation.rel in _IMPLIED_LINKS:
            continue
        if relation.rel == RELATED_LINK and linked < item.id:
            continue
        comment = relation.attributes.get("comment")
        ops.append(
            link_op(
                relation.rel,
                work_item_url(mapping[linked]),
                {"comment": comment} if comment else None,
            )
        )
    return ops


def parent_link(target_parent_id: int, work_item_url: Callable[[int], str]) -> dict[str, Any]:
    return link_op(PARENT_LINK, work_item_url(target_parent_id))


def copy_attachments(
    client: AdoClient,
    target_client: AdoClient,
    source_project_id: str,
    target_project_id: str,
    item: WorkItem,
    target_item_id: int,
    scope: ErrorScope,
) -> int:
    """Copy each attached file of *item* onto the target work item.

    Failures are recorded as warnings in *scope*.

    Returns:
        Number of attachments copied.
    """
    copied = 0
    for relation in item.attachments:
        attachment_id = relation.attachment_id
        file_name = relation.attributes.get("name") or attachment_id or "attachment"
        with scope.capture(
            f"attachment '{file_name}' of work item {item.id}", warning=True
        ) as outcome:
            content = client.get_attachment_content(
                source_project_id, attachment_id or ""
            )
            ref = target_client.create_attachment(
                target_project_id, content, file_name
            )
            comment = relation.attributes.get("comment")
            target_client.update_work_item(
                target_project_id,
                target_item_id,
                [
                    link_op(
                        ATTACHED_FILE,
                        ref.url,
                        {"comment": comment} if comment else None,
                    )
                ],
            )
        if not outcome.failed:
            copied += 1
    return copied


def copy_comments(
    client: AdoClient,
    target_client: AdoClient,
    source_project_id: str,
    target_project_id: str,
    source_id: int,
    target_item_id: int,
    scope: ErrorScope,
) -> int:
    """Replay the discussion of a work item as comments on its copy."""
    copied = 0
    with scope.capture(f"history of work item {source_id}", warning=True):
        for text in client.list_comments(source_project_id, source_id):
            if not text:
                continue
            target_client.add_comment(target_project_id, target_item_id, text)
            copied += 1
    return copied
