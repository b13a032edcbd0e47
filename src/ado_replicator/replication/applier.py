"""Selective update applier.

Applies the entries of a ``DifferencesAnalysis`` that the caller marked
``selected`` to the target project.  Every write is isolated: a failing
item produces a failed ``OperationLog`` and the applier moves on.

Processing order:

1. Classification nodes (areas, then iterations, shallowest first).
2. Work items (new items parent-first, then updates).
3. Security group memberships.
4. Wiki pages.
5. Queries (missing folders, new queries, updated queries).
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone

from ..core.client import AdoClient
from ..core.errors import ConflictError, ReplicatorError, ValidationError
from ..core.models import Container, NodeKind
from ..validators import validate_container_id
from .hierarchy import (
    order_parents_first,
    path_chain,
    relative_path,
    retarget_wiql,
)
from .identity import IdentityMap
from .models import (
    NodeDifferenceType,
    OperationLog,
    OperationType,
    QueryDifferenceType,
    SelectiveUpdateRequest,
    SelectiveUpdateResult,
    WorkItemDifference,
    WorkItemDifferenceType,
)
from .workitems import creation_operations, parent_link, update_operations

logger = logging.getLogger(__name__)

# Query fields an update can PATCH; visibility follows the parent folder.
WRITABLE_QUERY_FIELDS = frozenset({"name", "wiql", "query_type"})


class _Run:
    """Mutable bookkeeping for one ``apply`` call."""

    def __init__(self) -> None:
        self.logs: list[OperationLog] = []
        self.counts: Counter[str] = Counter()
        self.category_errors: list[str] = []
        self.failed_paths: set[tuple[NodeKind, str]] = set()

    def log(
        self,
        operation_type: OperationType,
        success: bool,
        message: str,
        detail: str | None = None,
        item_id: str | int | None = None,
    ) -> None:
        if success:
            logger.info("%s", message)
        else:
            logger.error("%s: %s", message, detail)
        self.logs.append(
            OperationLog(
                timestamp=datetime.now(timezone.utc),
                success=success,
                message=message,
                detail=detail,
                item_id=str(item_id) if item_id is not None else None,
                operation_type=operation_type,
            )
        )


class SelectiveUpdateApplier:
    """Apply selected diff entries to the target project.

    Args:
        client: Client for the organization holding both projects.
        identity_map: Receives the pairs of newly created work items.
    """

    def __init__(
        self, client: AdoClient, identity_map: IdentityMap | None = None
    ) -> None:
        self.client = client
        self.identity_map = identity_map or IdentityMap()

    def apply(self, request: SelectiveUpdateRequest) -> SelectiveUpdateResult:
        """Apply every selected entry of ``request.analysis``.

        Raises:
            ValidationError: If an id is missing or target equals source.
            NotFoundError: If either project cannot be resolved.
        """
        started_at = datetime.now(timezone.utc)
        for value, label in (
            (request.source_project_id, "Source project id"),
            (request.target_project_id, "Target project id"),
        ):
            ok, message = validate_container_id(value, label)
            if not ok:
                raise ValidationError(message)
        if request.source_project_id == request.target_project_id:
            raise ValidationError("Target project must differ from source project")

        source = self.client.get_container(request.source_project_id)
        target = self.client.get_container(request.target_project_id)
        if source.id == target.id:
            raise ValidationError("Target project must differ from source project")

        run = _Run()
        categories = (
            ("classification nodes", self._apply_nodes),
            ("work items", self._apply_work_items),
            ("security groups", self._apply_security_groups),
            ("wiki", self._apply_wiki),
            ("queries", self._apply_queries),
        )
        for category, step in categories:
            try:
                step(request, source, target, run)
            except ReplicatorError as exc:
                logger.error("Category %s failed: %s", category, exc)
                run.category_errors.append(f"{category}: {exc}")

        self.identity_map.save()

        failed = [log for log in run.logs if not log.success]
        success = not failed and not run.category_errors
        error = None
        if not success:
            error = (
                f"{len(failed)} operation(s) failed, "
                f"{len(run.category_errors)} category error(s)"
            )
        return SelectiveUpdateResult(
            success=success,
            error=error,
            operation_logs=run.logs,
            category_errors=run.category_errors,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            **run.counts,
        )

    # ------------------------------------------------------------------
    # 1. Classification nodes
    # ------------------------------------------------------------------

    def _apply_nodes(
        self,
        request: SelectiveUpdateRequest,
        source: Container,
        target: Container,
        run: _Run,
    ) -> None:
        nodes = request.analysis.classification_nodes
        for entries in (nodes.area_paths, nodes.iteration_paths):
            selected = sorted(
                (e for e in entries if e.selected), key=lambda e: e.depth
            )
            for entry in selected:
                is_area = entry.kind == NodeKind.AREA
                if entry.difference_type == NodeDifferenceType.NAME_DIFFERENT:
                    op_type = OperationType.NODE_RENAME
                    message = f"Renamed '{entry.target_path}' to '{entry.name}'"
                else:
                    op_type = (
                        OperationType.AREA_PATH
                        if is_area
                        else OperationType.ITERATION_PATH
                    )
                    message = f"Created {entry.kind.value[:-1].lower()} path '{entry.path}'"
                try:
                    if entry.difference_type == NodeDifferenceType.NAME_DIFFERENT:
                        self.client.rename_classification_node(
                            target.id, entry.kind, entry.target_path or "", entry.name
                        )
                        counter = "nodes_renamed"
                    else:
                        self.client.create_classification_node(
                            target.id,
                            entry.kind,
                            entry.parent_path,
                            entry.name,
                            entry.attributes or None,
                        )
                        counter = (
                            "area_paths_cloned" if is_area else "iteration_paths_cloned"
                        )
                except ConflictError:
                    run.log(op_type, True, message, detail="Already exists", item_id=entry.path)
                    continue
                except ReplicatorError as exc:
                    run.failed_paths.add((entry.kind, entry.path))
                    run.log(op_type, False, message, detail=str(exc), item_id=entry.path)
                    continue
                run.counts[counter] += 1
                run.log(op_type, True, message, item_id=entry.path)

    # ------------------------------------------------------------------
    # 2. Work items
    # ------------------------------------------------------------------

    def _path_warnings(self, entry: WorkItemDifference, run: _Run) -> list[str]:
        warnings = []
        area = relative_path(entry.source.area_path)
        iteration = relative_path(entry.source.iteration_path)
        for kind, path in ((NodeKind.AREA, area), (NodeKind.ITERATION, iteration)):
            if path and any(
                (kind, failed) in run.failed_paths
                for failed in path_chain(path)
            ):
                warnings.append(
                    f"{kind.value[:-1]} path '{path}' may not exist in target"
                )
        return warnings

    def _apply_work_items(
        self,
        request: SelectiveUpdateRequest,
        source: Container,
        target: Container,
        run: _Run,
    ) -> None:
        entries = request.analysis.work_items.entries
        new = [
            e
            for e in entries
            if e.selected and e.difference_type == WorkItemDifferenceType.NEW
        ]
        updated = [
            e
            for e in entries
            if e.selected and e.difference_type == WorkItemDifferenceType.UPDATED
        ]

        known = {e.source_id: e.target_id for e in entries if e.target_id is not None}
        known.update(self.identity_map.pairs(source.id, target.id))

        ordered, had_cycle = order_parents_first(
            new, key=lambda e: e.source_id, parent_key=lambda e: e.source.parent_id
        )
        if had_cycle:
            logger.warning("Parent links among selected work items form a cycle")

        for entry in ordered:
            message = f"Created {entry.work_item_type} '{entry.title}'"
            warnings = self._path_warnings(entry, run)
            ops = creation_operations(
                entry.source,
                target.name,
                include_state=True,
                include_assignee=True,
            )
            parent_id = entry.source.parent_id
            if parent_id is not None and parent_id in known:
                ops.append(parent_link(known[parent_id], self.client.work_item_url))
            elif parent_id is not None:
                warnings.append(f"parent {parent_id} has no counterpart in target")
            try:
                created = self.client.create_work_item(
                    target.id, entry.work_item_type, ops
                )
            except ReplicatorError as exc:
                detail = "; ".join([str(exc), *warnings])
                run.log(
                    OperationType.WORK_ITEM_CREATE,
                    False,
                    f"Failed to create {entry.work_item_type} '{entry.title}'",
                    detail=detail,
                    item_id=entry.source_id,
                )
                continue
            known[entry.source_id] = created.id
            self.identity_map.record(source.id, target.id, entry.source_id, created.id)
            run.counts["work_items_cloned"] += 1
            run.log(
                OperationType.WORK_ITEM_CREATE,
                True,
                message,
                detail="; ".join(warnings) or f"Target id {created.id}",
                item_id=entry.source_id,
            )

        for entry in updated:
            message = f"Updated {entry.work_item_type} '{entry.title}'"
            ops = update_operations(entry.source, entry.changed_fields, target.name)
            if not ops or entry.target_id is None:
                continue
            try:
                self.client.update_work_item(target.id, entry.target_id, ops)
            except ReplicatorError as exc:
                run.log(
                    OperationType.WORK_ITEM_UPDATE,
                    False,
                    f"Failed to update {entry.work_item_type} '{entry.title}'",
                    detail=str(exc),
                    item_id=entry.source_id,
                )
                continue
            self.identity_map.record(
                source.id, target.id, entry.source_id, entry.target_id
            )
            run.counts["work_items_updated"] += 1
            run.log(
                OperationType.WORK_ITEM_UPDATE,
                True,
                message,
                detail=f"Changed: {', '.join(entry.changed_fields)}",
                item_id=entry.source_id,
            )

    # ------------------------------------------------------------------
    # 3. Security groups
    # ------------------------------------------------------------------

    def _apply_security_groups(
        self,
        request: SelectiveUpdateRequest,
        source: Container,
        target: Container,
        run: _Run,
    ) -> None:
        for group in request.analysis.security_groups.groups:
            additions = [m for m in group.members_to_add if m.selected or group.selected]
            removals = [
                m for m in group.members_to_remove if m.selected or group.selected
            ]
            for member in additions:
                message = f"Added '{member.principal_name}' to '{group.group_name}'"
                if group.target_descriptor is None:
                    run.log(
                        OperationType.MEMBER_ADD,
                        False,
                        message,
                        detail=f"Group '{group.group_name}' does not exist in target",
                        item_id=member.principal_name,
                    )
                    continue
                try:
                    self.client.add_group_member(
                        group.target_descriptor, member.principal_name
                    )
                except ReplicatorError as exc:
                    run.log(
                        OperationType.MEMBER_ADD,
                        False,
                        message,
                        detail=str(exc),
                        item_id=member.principal_name,
                    )
                    continue
                run.counts["members_added"] += 1
                run.log(
                    OperationType.MEMBER_ADD, True, message, item_id=member.principal_name
                )

            for member in removals:
                message = f"Removed '{member.principal_name}' from '{group.group_name}'"
                try:
                    self.client.remove_group_member(
                        group.target_descriptor or "", member.descriptor
                    )
                except ReplicatorError as exc:
                    run.log(
                        OperationType.MEMBER_REMOVE,
                        False,
                        message,
                        detail=str(exc),
                        item_id=member.principal_name,
                    )
                    continue
                run.counts["members_removed"] += 1
                run.log(
                    OperationType.MEMBER_REMOVE,
                    True,
                    message,
                    item_id=member.principal_name,
                )

    # ------------------------------------------------------------------
    # 4. Wiki
    # ------------------------------------------------------------------

    def _apply_wiki(
        self,
        request: SelectiveUpdateRequest,
        source: Container,
        target: Container,
        run: _Run,
    ) -> None:
        pages = sorted(
            (p for p in request.analysis.wiki.pages if p.selected),
            key=lambda p: (p.depth, p.order),
        )
        for page in pages:
            message = f"Copied wiki page '{page.path}'"
            try:
                content = self.client.get_wiki_page_content(source.id, page.path)
                self.client.put_wiki_page(target.id, page.path, content)
            except ReplicatorError as exc:
                run.log(
                    OperationType.WIKI_PAGE, False, message, detail=str(exc), item_id=page.path
                )
                continue
            run.counts["wiki_pages_cloned"] += 1
            run.log(OperationType.WIKI_PAGE, True, message, item_id=page.path)

    # ------------------------------------------------------------------
    # 5. Queries
    # ------------------------------------------------------------------

    def _apply_queries(
        self,
        request: SelectiveUpdateRequest,
        source: Container,
        target: Container,
        run: _Run,
    ) -> None:
        entries = [e for e in request.analysis.queries.entries if e.selected]

        folders = sorted(
            (e for e in entries if e.difference_type == QueryDifferenceType.MISSING),
            key=lambda e: e.depth,
        )
        for entry in folders:
            message = f"Created query folder '{entry.path}'"
            try:
                self.client.create_query_folder(target.id, entry.parent_path, entry.name)
            except ConflictError:
                run.log(
                    OperationType.QUERY_FOLDER,
                    True,
                    message,
                    detail="Already exists",
                    item_id=entry.path,
                )
                continue
            except ReplicatorError as exc:
                run.log(
                    OperationType.QUERY_FOLDER, False, message, detail=str(exc), item_id=entry.path
                )
                continue
            run.log(OperationType.QUERY_FOLDER, True, message, item_id=entry.path)

        for entry in entries:
            if entry.difference_type == QueryDifferenceType.NEW:
                message = f"Created query '{entry.path}'"
                query = entry.source.model_copy(
                    update={
                        "wiql": retarget_wiql(
                            entry.source.wiql, source.name, target.name
                        )
                    }
                )
                try:
                    self.client.create_query(target.id, entry.parent_path, query)
                except ReplicatorError as exc:
                    run.log(
                        OperationType.QUERY_CREATE,
                        False,
                        message,
                        detail=str(exc),
                        item_id=entry.path,
                    )
                    continue
                run.counts["queries_cloned"] += 1
                run.log(OperationType.QUERY_CREATE, True, message, item_id=entry.path)

            elif (
                entry.difference_type == QueryDifferenceType.UPDATED
                and entry.target is not None
            ):
                message = f"Updated query '{entry.path}'"
                changed = set(entry.changed_fields)
                changes: dict[str, str | None] = {}
                if "name" in changed:
                    changes["name"] = entry.source.name
                if "wiql" in changed:
                    changes["wiql"] = retarget_wiql(
                        entry.source.wiql, source.name, target.name
                    )
                if "query_type" in changed:
                    changes["query_type"] = entry.source.query_type
                try:
                    self.client.update_query(target.id, entry.target.id, **changes)
                except ReplicatorError as exc:
                    run.log(
                        OperationType.QUERY_UPDATE,
                        False,
                        message,
                        detail=str(exc),
                        item_id=entry.path,
                    )
                    continue
                unwritable = sorted(changed - WRITABLE_QUERY_FIELDS)
                if unwritable:
                    run.log(
                        OperationType.QUERY_UPDATE,
                        False,
                        message,
                        detail=(
                            f"Cannot change {', '.join(unwritable)} of an existing query"
                        ),
                        item_id=entry.path,
                    )
                    continue
                run.counts["queries_updated"] += 1
                run.log(OperationType.QUERY_UPDATE, True, message, item_id=entry.path)
