"""Ordering and path helpers shared by the replication engines."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Hashable, Sequence
from typing import TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Query folders every project is provisioned with; never created by us.
SYSTEM_QUERY_FOLDERS = frozenset({"shared queries", "my queries"})


def is_system_query_folder(name: str) -> bool:
    """Return True for the reserved "Shared Queries" and "My Queries" folders."""
    return name.strip().lower() in SYSTEM_QUERY_FOLDERS


def order_parents_first(
    items: Sequence[T],
    key: Callable[[T], Hashable],
    parent_key: Callable[[T], Hashable | None],
) -> tuple[list[T], bool]:
    """Order *items* so that parents precede their children.

    Kahn's algorithm over the parent links that point at another item of
    the same batch.  Items without such a dependency keep their input
    order.  On a cycle the input order is returned unchanged.

    Returns:
        ``(ordered, had_cycle)``.
    """
    index = {key(item): pos for pos, item in enumerate(items)}
    children: dict[int, list[int]] = {pos: [] for pos in range(len(items))}
    indegree = [0] * len(items)

    for pos, item in enumerate(items):
        parent = parent_key(item)
        if parent is not None and parent in index and index[parent] != pos:
            children[index[parent]].append(pos)
            indegree[pos] += 1

    ready = deque(pos for pos in range(len(items)) if indegree[pos] == 0)
    ordered: list[int] = []
    while ready:
        pos = ready.popleft()
        ordered.append(pos)
        for child in children[pos]:
            indegree[child] -= 1
            if indegree[child] == 0:
                ready.append(child)

    if len(ordered) != len(items):
        logger.warning(
            "Parent links form a cycle; keeping input order for %d items",
            len(items),
        )
        return list(items), True
    return [items[pos] for pos in ordered], False


# ---------------------------------------------------------------------------
# Classification paths
# ---------------------------------------------------------------------------


def relative_path(full_path: str) -> str:
    """Drop the leading project segment: ``"Proj\\\\A\\\\B"`` -> ``"A\\\\B"``."""
    if not full_path:
        return ""
    parts = full_path.split("\\", 1)
    return parts[1] if len(parts) == 2 else ""


def retarget_path(full_path: str, target_project_name: str) -> str:
    """Replace the project segment of an area or iteration path."""
    rel = relative_path(full_path)
    return f"{target_project_name}\\{rel}" if rel else target_project_name


def parent_path(path: str) -> str:
    """Parent of a relative path; ``""`` for top-level nodes."""
    return path.rsplit("\\", 1)[0] if "\\" in path else ""


def path_chain(path: str) -> list[str]:
    """Every ancestor of *path* and the path itself, shallowest first."""
    parts = path.split("\\") if path else []
    return ["\\".join(parts[: i + 1]) for i in range(len(parts))]


def retarget_wiql(
    wiql: str | None, source_project_name: str, target_project_name: str
) -> str | None:
    """Point quoted project and path literals in a WIQL body at the target."""
    if not wiql or source_project_name == target_project_name:
        return wiql
    return wiql.replace(
        f"'{source_project_name}\\", f"'{target_project_name}\\"
    ).replace(f"'{source_project_name}'", f"'{target_project_name}'")
