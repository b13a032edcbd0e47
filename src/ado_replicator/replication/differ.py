"""Differencing engine: compares a source project with a target project.

``DifferencesAnalyzer.analyze`` reads both projects and produces one diff
category per entity kind.  The source is authoritative: entities present
only in the target are never reported.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone

from ..core.client import AdoClient
from ..core.models import (
    ClassificationNode,
    Container,
    NodeKind,
    QueryItem,
    SecurityGroup,
    WorkItem,
)
from .hierarchy import is_system_query_folder, parent_path, retarget_wiql
from .identity import IdentityMap
from .models import (
    ClassificationNodeDifference,
    ClassificationNodeDifferences,
    DifferencesAnalysis,
    MemberChange,
    NodeDifferenceType,
    QueryDifference,
    QueryDifferences,
    QueryDifferenceType,
    QueryItemType,
    SecurityGroupDifference,
    SecurityGroupDifferences,
    SecurityMemberDifference,
    WikiDifferences,
    WikiPageDifference,
    WorkItemDifference,
    WorkItemDifferences,
    WorkItemDifferenceType,
)
from .workitems import tracked_differences

logger = logging.getLogger(__name__)

WIKI_GUIDANCE = (
    "Wiki content is not compared automatically. Review each page and "
    "select the ones whose current content should be copied to the target."
)

_FIELD_LABELS = {
    "title": "title",
    "state": "state",
    "area_path": "area path",
    "iteration_path": "iteration path",
    "tags": "tags",
    "assigned_to": "assignee",
}


class DifferencesAnalyzer:
    """Compare two projects entity by entity.

    Args:
        client: Client for the organization holding both projects.
        identity_map: Recorded source-to-target pairs; consulted before the
            title + type heuristic.
    """

    def __init__(
        self, client: AdoClient, identity_map: IdentityMap | None = None
    ) -> None:
        self.client = client
        self.identity_map = identity_map or IdentityMap()

    def analyze(
        self, source_project_id: str, target_project_id: str
    ) -> DifferencesAnalysis:
        """Compare *source_project_id* against *target_project_id*.

        Raises:
            NotFoundError: If either project cannot be resolved.
            UpstreamError: If the service is unreachable.
        """
        source = self.client.get_container(source_project_id)
        target = self.client.get_container(target_project_id)
        logger.info("Analyzing differences %s -> %s", source.name, target.name)

        analysis = DifferencesAnalysis(
            source_project=source,
            target_project=target,
            work_items=self.compare_work_items(source, target),
            classification_nodes=self.compare_classification_nodes(
                source, target
            ),
            security_groups=self.compare_security_groups(source, target),
            wiki=self.compare_wiki(source),
            queries=self.compare_queries(source, target),
            analyzed_at=datetime.now(timezone.utc),
        )
        logger.info(
            "Analysis %s -> %s done: has_any_differences=%s",
            source.name,
            target.name,
            analysis.has_any_differences,
        )
        return analysis

    # ------------------------------------------------------------------
    # Work items
    # ------------------------------------------------------------------

    def match_work_items(
        self,
        source: Container,
        target: Container,
        source_items: list[WorkItem],
        target_items: list[WorkItem],
    ) -> dict[int, WorkItem]:
        """Pair source item ids with target items.

        Recorded identity pairs are honoured first; remaining items pair
        by exact title and type.  Each target item is used at most once.
        """
        by_id = {wi.id: wi for wi in target_items}
        used: set[int] = set()
        matches: dict[int, WorkItem] = {}

        for item in source_items:
            mapped = self.identity_map.lookup(source.id, target.id, item.id)
            if mapped is not None and mapped in by_id and mapped not in used:
                matches[item.id] = by_id[mapped]
                used.add(mapped)

        candidates: dict[tuple[str, str], list[WorkItem]] = defaultdict(list)
        for wi in target_items:
            candidates[(wi.title, wi.work_item_type)].append(wi)

        for item in source_items:
            if item.id in matches:
                continue
            for candidate in candidates.get((item.title, item.work_item_type), []):
                if candidate.id not in used:
                    matches[item.id] = candidate
                    used.add(candidate.id)
                    break
        return matches

    def compare_work_items(
        self, source: Container, target: Container
    ) -> WorkItemDifferences:
        source_items = self.client.list_work_items(source.id)
        target_items = (
            source_items
            if source.id == target.id
            else self.client.list_work_items(target.id)
        )
        matches = self.match_work_items(source, target, source_items, target_items)

        entries = []
        for item in source_items:
            match = matches.get(item.id)
            if match is None:
                entries.append(
                    WorkItemDifference(
                        source_id=item.id,
                        work_item_type=item.work_item_type,
                        title=item.title,
                        difference_type=WorkItemDifferenceType.NEW,
                        source=item,
                        description=f"{item.work_item_type} '{item.title}' does not exist in target",
                    )
                )
                continue

            changed = tracked_differences(item, match)
            if changed:
                labels = ", ".join(_FIELD_LABELS[f] for f in changed)
                entries.append(
                    WorkItemDifference(
                        source_id=item.id,
                        work_item_type=item.work_item_type,
                        title=item.title,
                        difference_type=WorkItemDifferenceType.UPDATED,
                        source=item,
                        target=match,
                        target_id=match.id,
                        changed_fields=changed,
                        description=f"Differs in {labels}",
                    )
                )
            else:
                entries.append(
                    WorkItemDifference(
                        source_id=item.id,
                        work_item_type=item.work_item_type,
                        title=item.title,
                        difference_type=WorkItemDifferenceType.SYNCHRONIZED,
                        source=item,
                        target=match,
                        target_id=match.id,
                        description="Synchronized",
                    )
                )
        return WorkItemDifferences(entries=entries)

    # ------------------------------------------------------------------
    # Classification nodes
    # ------------------------------------------------------------------

    def compare_classification_nodes(
        self, source: Container, target: Container
    ) -> ClassificationNodeDifferences:
        return ClassificationNodeDifferences(
            area_paths=self._compare_tree(source, target, NodeKind.AREA),
            iteration_paths=self._compare_tree(
                source, target, NodeKind.ITERATION
            ),
        )

    def _compare_tree(
        self, source: Container, target: Container, kind: NodeKind
    ) -> list[ClassificationNodeDifference]:
        source_root = self.client.list_classification_nodes(source.id, kind)
        target_root = self.client.list_classification_nodes(target.id, kind)
        return diff_node_trees(source_root, target_root)

    # ------------------------------------------------------------------
    # Security groups
    # ------------------------------------------------------------------

    def compare_security_groups(
        self, source: Container, target: Container
    ) -> SecurityGroupDifferences:
        source_groups = self.client.list_security_groups(source.id)
        target_groups = (
            source_groups
            if source.id == target.id
            else self.client.list_security_groups(target.id)
        )
        by_name = {g.display_name: g for g in target_groups}

        groups = []
        for group in source_groups:
            groups.append(
                diff_group(group, by_name.get(group.display_name), source, target)
            )
        return SecurityGroupDifferences(groups=groups)

    # ------------------------------------------------------------------
    # Wiki
    # ------------------------------------------------------------------

    def compare_wiki(self, source: Container) -> WikiDifferences:
        pages = self.client.list_wiki_pages(source.id)
        return WikiDifferences(
            pages=[
                WikiPageDifference(
                    path=page.path,
                    order=page.order,
                    description="Review manually; content is not compared",
                )
                for page in pages
            ],
            message=WIKI_GUIDANCE if pages else "",
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def compare_queries(
        self, source: Container, target: Container
    ) -> QueryDifferences:
        source_tree = self.client.list_queries(source.id)
        target_tree = (
            source_tree
            if source.id == target.id
            else self.client.list_queries(target.id)
        )
        target_index = {q.path: q for q in flatten_queries(target_tree)}

        entries = []
        for item in flatten_queries(source_tree):
            existing = target_index.get(item.path)
            if item.is_folder:
                if is_system_query_folder(item.name) and "/" not in item.path:
                    continue
                if existing is None or not existing.is_folder:
                    entries.append(
                        QueryDifference(
                            path=item.path,
                            name=item.name,
                            item_type=QueryItemType.FOLDER,
                            difference_type=QueryDifferenceType.MISSING,
                            source=item,
                            description=f"Folder '{item.path}' does not exist in target",
                        )
                    )
                continue

            if existing is None or existing.is_folder:
                entries.append(
                    QueryDifference(
                        path=item.path,
                        name=item.name,
                        difference_type=QueryDifferenceType.NEW,
                        source=item,
                        description=f"Query '{item.path}' does not exist in target",
                    )
                )
                continue

            changed = diff_query(item, existing, source.name, target.name)
            entries.append(
                QueryDifference(
                    path=item.path,
                    name=item.name,
                    difference_type=(
                        QueryDifferenceType.UPDATED
                        if changed
                        else QueryDifferenceType.SYNCHRONIZED
                    ),
                    source=item,
                    target=existing,
                    changed_fields=changed,
                    description=(
                        f"Differs in {', '.join(changed)}"
                        if changed
                        else "Synchronized"
                    ),
                )
            )
        return QueryDifferences(entries=entries)


# ---------------------------------------------------------------------------
# Pure comparison helpers
# ---------------------------------------------------------------------------


def diff_node_trees(
    source_root: ClassificationNode, target_root: ClassificationNode
) -> list[ClassificationNodeDifference]:
    """Compare two node trees by exact, case-sensitive full path.

    A source path absent from the target is ``NAME_DIFFERENT`` when the
    target holds a node at the same parent and sibling index whose own
    path does not exist in the source; otherwise it is ``MISSING``.
    """
    source_paths = {n.path for n in source_root.walk()}
    target_paths = {n.path for n in target_root.walk()}
    target_children: dict[str, list[ClassificationNode]] = {"": target_root.children}
    for node in target_root.walk():
        target_children[node.path] = node.children

    diffs = []
    for parent, node, position in _walk_with_position(source_root):
        if node.path in target_paths:
            continue
        siblings = target_children.get(parent.path)
        counterpart = None
        if siblings is not None and position < len(siblings):
            candidate = siblings[position]
            if candidate.path not in source_paths:
                counterpart = candidate

        if counterpart is not None:
            diffs.append(
                ClassificationNodeDifference(
                    kind=node.kind,
                    path=node.path,
                    name=node.name,
                    parent_path=parent_path(node.path),
                    difference_type=NodeDifferenceType.NAME_DIFFERENT,
                    target_name=counterpart.name,
                    target_path=counterpart.path,
                    attributes=node.attributes,
                    description=(
                        f"'{node.path}' is named '{counterpart.name}' in target"
                    ),
                )
            )
        else:
            diffs.append(
                ClassificationNodeDifference(
                    kind=node.kind,
                    path=node.path,
                    name=node.name,
                    parent_path=parent_path(node.path),
                    difference_type=NodeDifferenceType.MISSING,
                    attributes=node.attributes,
                    description=f"'{node.path}' does not exist in target",
                )
            )
    return diffs


def _walk_with_position(root: ClassificationNode):
    for position, child in enumerate(root.children):
        yield root, child, position
        yield from _walk_with_position(child)


def _retarget_principal(name: str, source: Container, target: Container) -> str:
    prefix = f"[{source.name}]\\"
    if name.startswith(prefix):
        return f"[{target.name}]\\" + name[len(prefix) :]
    return name


def diff_group(
    group: SecurityGroup,
    counterpart: SecurityGroup | None,
    source: Container,
    target: Container,
) -> SecurityGroupDifference:
    """Membership difference of one group by principal name.

    Project-scoped principals (``[Source]\\\\Team``) compare against the
    target project's equivalent.
    """
    source_members = {
        _retarget_principal(m.principal_name, source, target): m
        for m in group.members
    }
    target_members = (
        {m.principal_name: m for m in counterpart.members} if counterpart else {}
    )

    to_add = [
        SecurityMemberDifference(
            principal_name=name,
            display_name=member.display_name,
            descriptor=member.descriptor,
            change=MemberChange.ADD,
        )
        for name, member in source_members.items()
        if name not in target_members
    ]
    to_remove = [
        SecurityMemberDifference(
            principal_name=name,
            display_name=member.display_name,
            descriptor=member.descriptor,
            change=MemberChange.REMOVE,
        )
        for name, member in target_members.items()
        if name not in source_members
    ]

    if counterpart is None:
        description = f"Group '{group.display_name}' does not exist in target"
    elif to_add or to_remove:
        description = f"{len(to_add)} member(s) to add, {len(to_remove)} to remove"
    else:
        description = "Synchronized"

    return SecurityGroupDifference(
        group_name=group.display_name,
        source_descriptor=group.descriptor,
        target_descriptor=counterpart.descriptor if counterpart else None,
        target_missing=counterpart is None,
        members_to_add=to_add,
        members_to_remove=to_remove,
        description=description,
    )


def flatten_queries(items: list[QueryItem]) -> list[QueryItem]:
    """All queries and folders of a tree, parents before children."""
    flat: list[QueryItem] = []
    for item in items:
        flat.append(item)
        flat.extend(flatten_queries(item.children))
    return flat


def diff_query(
    source: QueryItem,
    target: QueryItem,
    source_project_name: str,
    target_project_name: str,
) -> list[str]:
    """Fields of a saved query that differ; WIQL compares retargeted."""
    changed = []
    if source.name != target.name:
        changed.append("name")
    wiql = retarget_wiql(source.wiql, source_project_name, target_project_name)
    if (wiql or "").strip() != (target.wiql or "").strip():
        changed.append("wiql")
    if (source.query_type or "") != (target.query_type or ""):
        changed.append("query_type")
    if source.is_public != target.is_public:
        changed.append("is_public")
    return changed
