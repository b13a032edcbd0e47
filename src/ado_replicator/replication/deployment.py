"""Work item deployment: copy selected work items into several projects.

Each target project is processed independently; a target that cannot be
resolved yields a failed ``ProjectDeploymentResult`` and the next target
is processed.  Within a target every work item yields exactly one
``WorkItemDeploymentDetail``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone

from ..core.async_utils import gather_limited, run_sync_limited
from ..core.client import AdoClient
from ..core.errors import ConflictError, ReplicatorError, ValidationError
from ..core.models import Container, NodeKind, WorkItem
from ..validators import validate_container_id, validate_work_item_ids
from .hierarchy import order_parents_first, parent_path, path_chain, relative_path
from .identity import IdentityMap
from .models import (
    DeploymentAction,
    ProjectDeploymentResult,
    ProgressCallback,
    TemplateWorkItem,
    WorkItemDeploymentDetail,
    WorkItemDeploymentRequest,
    WorkItemDeploymentResult,
)
from .reporter import format_project_line
from .scope import ErrorScope
from .workitems import (
    copy_attachments,
    copy_comments,
    creation_operations,
    deployment_differences,
    field_op,
    parent_link,
)

logger = logging.getLogger(__name__)

# Preferred substitutes when the target process lacks a type
FALLBACK_TYPES: dict[str, tuple[str, ...]] = {
    "user story": ("Story", "Feature", "Product Backlog Item", "Task"),
    "story": ("User Story", "Feature", "Product Backlog Item", "Task"),
    "product backlog item": ("User Story", "Story", "Feature", "Task"),
    "feature": ("Epic", "User Story", "Story", "Product Backlog Item"),
    "epic": ("Feature", "User Story", "Story"),
    "task": ("User Story", "Story", "Product Backlog Item"),
    "bug": ("Issue", "Task", "User Story"),
    "issue": ("Bug", "Task", "User Story"),
}

DEFAULT_TYPE = "Task"


def map_work_item_type(source_type: str, target_types: list[str]) -> str:
    """Pick the target type used for a *source_type* work item.

    A case-insensitive match wins, then the first available fallback, then
    the first type the target offers.
    """
    by_name = {t.lower(): t for t in target_types}
    if source_type.lower() in by_name:
        return by_name[source_type.lower()]
    for candidate in FALLBACK_TYPES.get(source_type.lower(), ()):
        if candidate.lower() in by_name:
            return by_name[candidate.lower()]
    return target_types[0] if target_types else DEFAULT_TYPE


class WorkItemDeployer:
    """Deploy selected work items of one project into other projects."""

    def __init__(
        self, client: AdoClient, identity_map: IdentityMap | None = None
    ) -> None:
        self.client = client
        self.identity_map = identity_map or IdentityMap()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def list_template_work_items(
        self, source_project_id: str
    ) -> list[TemplateWorkItem]:
        """Work items of a template project, ordered by id.

        Raises:
            ValidationError: If the project id is empty.
            NotFoundError: If the project does not exist.
        """
        ok, message = validate_container_id(source_project_id, "Source project id")
        if not ok:
            raise ValidationError(message)
        source = self.client.get_container(source_project_id)
        items = sorted(self.client.list_work_items(source.id), key=lambda wi: wi.id)
        if not items:
            logger.warning("No work items found in template project %s", source.name)
        else:
            logger.info(
                "Retrieved %d work items from template project %s",
                len(items),
                source.name,
            )
        return [TemplateWorkItem.from_work_item(wi) for wi in items]

    def deploy(
        self,
        request: WorkItemDeploymentRequest,
        progress: ProgressCallback | None = None,
    ) -> WorkItemDeploymentResult:
        """Deploy to each target in turn.

        *progress*, when given, receives one line per finished target
        between an opening and a closing line.

        Raises:
            ValidationError: If the request is malformed.
            NotFoundError: If the source project does not exist.
        """
        started_at = datetime.now(timezone.utc)
        source, items = self._prepare(request, progress)
        outcomes = [
            self._deploy_target(request, source, items, target_id, progress)
            for target_id in request.target_project_ids
        ]
        return self._finish(source, outcomes, started_at, progress)

    async def deploy_async(
        self,
        request: WorkItemDeploymentRequest,
        progress: ProgressCallback | None = None,
    ) -> WorkItemDeploymentResult:
        """Deploy to all targets concurrently, bounded by the request semaphore."""
        started_at = datetime.now(timezone.utc)
        source, items = await run_sync_limited(self._prepare, request, progress)
        outcomes = await gather_limited(
            [
                run_sync_limited(
                    self._deploy_target, request, source, items, target_id, progress
                )
                for target_id in request.target_project_ids
            ]
        )
        return self._finish(source, outcomes, started_at, progress)

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    def _prepare(
        self,
        request: WorkItemDeploymentRequest,
        progress: ProgressCallback | None = None,
    ) -> tuple[Container, list[WorkItem]]:
        if not request.target_project_ids:
            raise ValidationError("At least one target project is required")
        ok, message = validate_work_item_ids(request.work_item_ids)
        if not ok:
            raise ValidationError(message)
        ok, message = validate_container_id(
            request.source_project_id, "Source project id"
        )
        if not ok:
            raise ValidationError(message)
        for target_id in request.target_project_ids:
            ok, message = validate_container_id(target_id, "Target project id")
            if not ok:
                raise ValidationError(message)

        source = self.client.get_container(request.source_project_id)
        targets = {t.lower() for t in request.target_project_ids}
        if source.id.lower() in targets or source.name.lower() in targets:
            raise ValidationError(
                "The source project cannot also be a deployment target"
            )

        items = self.client.get_work_items(source.id, request.work_item_ids)
        found = {wi.id for wi in items}
        missing = [i for i in request.work_item_ids if i not in found]
        if missing:
            logger.warning(
                "Work items not found in %s: %s",
                source.name,
                ", ".join(str(i) for i in missing),
            )
        ordered, had_cycle = order_parents_first(
            items, key=lambda wi: wi.id, parent_key=lambda wi: wi.parent_id
        )
        if had_cycle:
            logger.warning("Parent cycle among selected work items; using input order")
        if progress is not None:
            progress(
                f"Deploying {len(ordered)} work items from '{source.name}' "
                f"to {len(request.target_project_ids)} projects"
            )
        return source, ordered

    def _finish(
        self,
        source: Container,
        outcomes: list[tuple[ProjectDeploymentResult, dict[int, int]]],
        started_at: datetime,
        progress: ProgressCallback | None = None,
    ) -> WorkItemDeploymentResult:
        for result, pairs in outcomes:
            for source_id, target_id in pairs.items():
                self.identity_map.record(
                    source.id, result.project_id, source_id, target_id
                )
        self.identity_map.save()
        result = WorkItemDeploymentResult(
            projects=[r for r, _ in outcomes],
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )
        logger.info(
            "Deployment finished: %d/%d projects, %d work items",
            result.successful_projects,
            result.total_projects_processed,
            result.total_work_items_deployed,
        )
        if progress is not None:
            progress(
                f"Deployment completed: {result.successful_projects}/"
                f"{result.total_projects_processed} projects successful"
            )
        return result

    def _deploy_target(
        self,
        request: WorkItemDeploymentRequest,
        source: Container,
        items: list[WorkItem],
        target_id: str,
        progress: ProgressCallback | None = None,
    ) -> tuple[ProjectDeploymentResult, dict[int, int]]:
        outcome = self._deploy_into(request, source, items, target_id)
        if progress is not None:
            progress(format_project_line(outcome[0]))
        return outcome

    def _deploy_into(
        self,
        request: WorkItemDeploymentRequest,
        source: Container,
        items: list[WorkItem],
        target_id: str,
    ) -> tuple[ProjectDeploymentResult, dict[int, int]]:
        """Deploy *items* into one target.

        Returns:
            The project result and the new source-to-target id pairs.
        """
        options = request.options
        try:
            target = self.client.get_container(target_id)
            target_types = (
                self.client.list_work_item_types(target.id)
                if options.map_work_item_types
                else []
            )
            existing = self._match_existing(source, target, items)
        except ReplicatorError as exc:
            logger.error("Deployment to %s aborted: %s", target_id, exc)
            return (
                ProjectDeploymentResult(
                    project_id=target_id, success=False, error=str(exc)
                ),
                {},
            )

        logger.info("Deploying %d work items to %s", len(items), target.name)
        scope = ErrorScope(target.name)
        if options.create_missing_paths:
            self._create_missing_paths(target, items, scope)

        mapping: dict[int, int] = {}
        details: list[WorkItemDeploymentDetail] = []
        for item in items:
            detail = self._deploy_item(
                request, source, target, item, target_types, existing, mapping
            )
            details.append(detail)
            scope.warnings.extend(
                f"work item {item.id}: {w}" for w in detail.warnings
            )

        counts: dict[DeploymentAction, int] = defaultdict(int)
        for detail in details:
            counts[detail.action] += 1
        new_pairs = {
            d.source_id: d.target_id
            for d in details
            if d.action == DeploymentAction.CREATED and d.target_id is not None
        }
        return (
            ProjectDeploymentResult(
                project_id=target.id,
                project_name=target.name,
                success=True,
                created=counts[DeploymentAction.CREATED],
                updated=counts[DeploymentAction.UPDATED],
                skipped=counts[DeploymentAction.SKIPPED],
                failed=counts[DeploymentAction.FAILED],
                details=details,
                warnings=scope.warnings,
            ),
            new_pairs,
        )

    def _match_existing(
        self, source: Container, target: Container, items: list[WorkItem]
    ) -> dict[int, WorkItem]:
        """Find the counterpart of each item already present in *target*."""
        target_items = self.client.list_work_items(target.id)
        by_id = {wi.id: wi for wi in target_items}
        by_title: dict[str, list[WorkItem]] = defaultdict(list)
        for wi in target_items:
            by_title[wi.title].append(wi)

        used: set[int] = set()
        matches: dict[int, WorkItem] = {}
        for item in items:
            mapped = self.identity_map.lookup(source.id, target.id, item.id)
            if mapped in by_id and mapped not in used:
                matches[item.id] = by_id[mapped]
                used.add(mapped)
        for item in items:
            if item.id in matches:
                continue
            for candidate in by_title.get(item.title, []):
                if (
                    candidate.id not in used
                    and candidate.work_item_type.lower()
                    == item.work_item_type.lower()
                ):
                    matches[item.id] = candidate
                    used.add(candidate.id)
                    break
        return matches

    def _create_missing_paths(
        self, target: Container, items: list[WorkItem], scope: ErrorScope
    ) -> None:
        wanted = {
            NodeKind.AREA: {relative_path(wi.area_path) for wi in items},
            NodeKind.ITERATION: {relative_path(wi.iteration_path) for wi in items},
        }
        for kind, paths in wanted.items():
            paths.discard("")
            if not paths:
                continue
            with scope.capture(f"{kind.value} of {target.name}", warning=True) as outcome:
                root = self.client.list_classification_nodes(target.id, kind)
            if outcome.failed:
                continue
            present = {node.path.lower() for node in root.walk()}
            chains = sorted(
                {p for path in paths for p in path_chain(path)},
                key=lambda p: p.count("\\"),
            )
            for path in chains:
                if path.lower() in present:
                    continue
                with scope.capture(f"path '{path}'", warning=True) as outcome:
                    try:
                        self.client.create_classification_node(
                            target.id, kind, parent_path(path), path.split("\\")[-1]
                        )
                    except ConflictError:
                        pass
                if not outcome.failed:
                    present.add(path.lower())

    def _deploy_item(
        self,
        request: WorkItemDeploymentRequest,
        source: Container,
        target: Container,
        item: WorkItem,
        target_types: list[str],
        existing: dict[int, WorkItem],
        mapping: dict[int, int],
    ) -> WorkItemDeploymentDetail:
        options = request.options
        scope = ErrorScope(f"{target.name} #{item.id}")
        target_type = (
            map_work_item_type(item.work_item_type, target_types)
            if options.map_work_item_types
            else item.work_item_type
        )

        def detail(
            action: DeploymentAction,
            message: str,
            target_id: int | None = None,
        ) -> WorkItemDeploymentDetail:
            return WorkItemDeploymentDetail(
                source_id=item.id,
                target_id=target_id,
                title=item.title,
                source_type=item.work_item_type,
                target_type=target_type,
                action=action,
                message=message,
                warnings=scope.warnings,
            )

        counterpart = existing.get(item.id)
        if counterpart is not None:
            mapping[item.id] = counterpart.id
            if not options.update_existing:
                return detail(
                    DeploymentAction.SKIPPED,
                    "Already exists in target",
                    counterpart.id,
                )
            changed = deployment_differences(item, counterpart)
            if not changed:
                return detail(
                    DeploymentAction.SKIPPED, "No changes detected", counterpart.id
                )
            with scope.capture(f"update of work item {item.id}") as outcome:
                self.client.update_work_item(
                    target.id,
                    counterpart.id,
                    [field_op(f, item.fields[f]) for f in changed],
                )
            if outcome.failed:
                return detail(DeploymentAction.FAILED, outcome.error or "", counterpart.id)
            return detail(
                DeploymentAction.UPDATED,
                f"Updated {', '.join(changed)}",
                counterpart.id,
            )

        if target_type.lower() != item.work_item_type.lower():
            scope.warn(f"Type '{item.work_item_type}' mapped to '{target_type}'")

        ops = creation_operations(item, target.name)
        if options.include_links and item.parent_id is not None:
            parent_target = mapping.get(item.parent_id) or self.identity_map.lookup(
                source.id, target.id, item.parent_id
            )
            if parent_target is not None:
                ops.append(parent_link(parent_target, self.client.work_item_url))

        with scope.capture(f"creation of work item {item.id}") as outcome:
            created = self.client.create_work_item(target.id, target_type, ops)
        if outcome.failed:
            return detail(DeploymentAction.FAILED, outcome.error or "")
        mapping[item.id] = created.id

        if options.include_attachments:
            copy_attachments(
                self.client, self.client, source.id, target.id, item, created.id, scope
            )
        if options.include_history:
            copy_comments(
                self.client, self.client, source.id, target.id, item.id, created.id, scope
            )
        return detail(DeploymentAction.CREATED, f"Created #{created.id}", created.id)
