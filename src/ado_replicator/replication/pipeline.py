"""Clone pipeline: duplicates a project step by step.

``ClonePipeline.clone_project`` walks a fixed, ordered list of steps.  The
first two (reading the source and creating the target) always run; the
others are switched by ``ProjectCloneOptions``.  A failing step never
halts the pipeline: every enabled step is attempted and reported.

Each step receives an ``ErrorScope``.  Item failures recorded there fail
the step once all of its items have been attempted; warnings do not.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ..config import normalize_organization_url
from ..core.client import AdoClient
from ..core.errors import (
    ConflictError,
    NotFoundError,
    ReplicatorError,
    ValidationError,
)
from ..core.models import Container, NodeKind, QueryItem
from ..validators import (
    validate_container_id,
    validate_organization_url,
    validate_project_name,
)
from .hierarchy import (
    is_system_query_folder,
    order_parents_first,
    parent_path,
    retarget_wiql,
)
from .identity import IdentityMap
from .models import (
    ProgressCallback,
    ProjectCloneOptions,
    ProjectCloneRequest,
    ProjectCloneResult,
    StepResult,
)
from .scope import ErrorScope
from .workitems import (
    copy_attachments,
    copy_comments,
    creation_operations,
    link_operations,
)

logger = logging.getLogger(__name__)

STEP_SOURCE = "Get Source Project Details"
STEP_CREATE = "Create Target Project"
STEP_SETTINGS = "Clone Project Settings & Service Visibility"
STEP_AREAS = "Clone Area Paths"
STEP_ITERATIONS = "Clone Iteration Paths"
STEP_REPOSITORIES = "Clone Git Repositories"
STEP_WORK_ITEMS = "Clone Work Items"
STEP_BUILDS = "Clone Build Pipelines"
STEP_RELEASES = "Clone Release Pipelines"
STEP_QUERIES = "Clone Work Item Queries"
STEP_DASHBOARDS = "Clone Project Dashboards"
STEP_TEAMS = "Clone Teams"

# Service name -> feature id toggled per project
SERVICE_FEATURES = (
    ("Boards", "ms.vss-work.agile"),
    ("Repos", "ms.vss-code.version-control"),
    ("Pipelines", "ms.vss-build.pipelines"),
    ("Test Plans", "ms.vss-test-web.test"),
    ("Artifacts", "ms.vss-features.artifacts"),
)

TARGET_UNAVAILABLE = "target project unavailable"
NOT_ATTEMPTED = "Not attempted"

# Server-assigned keys dropped before re-posting a definition
_READ_ONLY_KEYS = frozenset(
    {
        "id",
        "url",
        "uri",
        "_links",
        "revision",
        "project",
        "createdDate",
        "createdBy",
        "createdOn",
        "modifiedBy",
        "modifiedOn",
        "authoredBy",
        "queue",
        "eTag",
        "lastExecutedDate",
    }
)


def _strip_read_only(definition: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in definition.items() if k not in _READ_ONLY_KEYS}


def _no_progress(message: str) -> None:
    pass


def _step_line(index: int, total: int, step: StepResult) -> str:
    if step.success:
        status = "OK"
    elif step.message == NOT_ATTEMPTED:
        status = f"skipped ({step.error})"
    else:
        status = f"FAILED - {step.error}"
    return f"[{index}/{total}] {step.name}: {status}"


@dataclass
class _CloneContext:
    request: ProjectCloneRequest
    target_client: AdoClient
    source: Container
    created: Container | None = None
    # source repository name -> target repository payload
    repositories: dict[str, dict[str, Any]] = field(default_factory=dict)
    work_item_map: dict[int, int] = field(default_factory=dict)

    @property
    def options(self) -> ProjectCloneOptions:
        return self.request.options

    @property
    def target(self) -> Container:
        if self.created is None:
            raise RuntimeError(f"Step needs the target project: {TARGET_UNAVAILABLE}")
        return self.created


StepFunc = Callable[[_CloneContext, ErrorScope], str]


class ClonePipeline:
    """Duplicate a project into a new project.

    Args:
        client: Client for the source organization (also the target
            organization unless the request names another one).
        identity_map: Receives the pairs of cloned work items.
        sleep: Delay function used for the feature settle wait.
    """

    def __init__(
        self,
        client: AdoClient,
        identity_map: IdentityMap | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.identity_map = identity_map or IdentityMap()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def clone_many(
        self,
        requests: list[ProjectCloneRequest],
        progress: ProgressCallback | None = None,
    ) -> list[ProjectCloneResult]:
        """Run independent clone requests one after another.

        A request that cannot start (unknown source, invalid name) yields
        a failed result instead of stopping the batch.
        """
        results = []
        for request in requests:
            try:
                results.append(self.clone_project(request, progress))
            except ReplicatorError as exc:
                now = datetime.now(timezone.utc)
                logger.error(
                    "Clone of %s failed before any step: %s",
                    request.source_project_id,
                    exc,
                )
                results.append(
                    ProjectCloneResult(
                        success=False,
                        message="Clone not started",
                        error=str(exc),
                        started_at=now,
                        completed_at=now,
                    )
                )
        return results

    def clone_project(
        self,
        request: ProjectCloneRequest,
        progress: ProgressCallback | None = None,
    ) -> ProjectCloneResult:
        """Clone ``request.source_project_id`` into a new project.

        *progress*, when given, receives a line as each step starts and
        finishes, then the overall outcome.

        Raises:
            ValidationError: If the source id or target name is invalid.
            NotFoundError: If the source project does not exist.
        """
        started_at = datetime.now(timezone.utc)
        ok, message = validate_container_id(
            request.source_project_id, "Source project id"
        )
        if not ok:
            raise ValidationError(message)
        ok, message = validate_project_name(request.target_project_name)
        if not ok:
            raise ValidationError(message)

        plan = self._plan(request.options)
        total_steps = len(plan)
        report = progress or _no_progress

        target_client, preflight_error = self._preflight(request)
        if preflight_error is not None:
            report(f"Target organization validation failed: {preflight_error}")
            return ProjectCloneResult(
                success=False,
                message="Target organization validation failed",
                error=preflight_error,
                total_steps=total_steps,
                started_at=started_at,
                completed_at=datetime.now(timezone.utc),
            )

        steps: list[StepResult] = []

        def record(step: StepResult) -> None:
            steps.append(step)
            report(_step_line(len(steps), total_steps, step))

        step_started = datetime.now(timezone.utc)
        report(f"[1/{total_steps}] {STEP_SOURCE}: started")
        try:
            source = self.client.get_container(request.source_project_id)
        except NotFoundError:
            raise
        except ReplicatorError as exc:
            # Nothing can be cloned without the source
            record(
                StepResult(
                    name=STEP_SOURCE,
                    success=False,
                    message="Could not read source project",
                    error=str(exc),
                    started_at=step_started,
                    completed_at=datetime.now(timezone.utc),
                )
            )
            for name, _ in plan[1:]:
                record(self._skipped(name, "source project unavailable"))
            result = self._finish(steps, total_steps, None, started_at)
            report(result.message)
            return result

        record(
            StepResult(
                name=STEP_SOURCE,
                success=True,
                message=f"Source project '{source.name}'",
                started_at=step_started,
                completed_at=datetime.now(timezone.utc),
            )
        )
        ctx = _CloneContext(request=request, target_client=target_client, source=source)
        logger.info(
            "Cloning '%s' into '%s' (%d steps)",
            source.name,
            request.target_project_name,
            total_steps,
        )

        for name, func in plan[1:]:
            if name != STEP_CREATE and ctx.created is None:
                record(self._skipped(name, TARGET_UNAVAILABLE))
                continue
            report(f"[{len(steps) + 1}/{total_steps}] {name}: started")
            record(self._run_step(name, func, ctx))

        self.identity_map.save()
        result = self._finish(steps, total_steps, ctx.created, started_at)
        report(result.message)
        return result

    # ------------------------------------------------------------------
    # Orchestration helpers
    # ------------------------------------------------------------------

    def _plan(self, options: ProjectCloneOptions) -> list[tuple[str, StepFunc]]:
        switches: list[tuple[str, bool, StepFunc]] = [
            (STEP_SOURCE, True, lambda ctx, scope: ""),
            (STEP_CREATE, True, self._create_target),
            (STEP_SETTINGS, options.clone_project_settings, self._clone_settings),
            (STEP_AREAS, options.clone_area_paths, self._clone_area_paths),
            (STEP_ITERATIONS, options.clone_iteration_paths, self._clone_iteration_paths),
            (STEP_REPOSITORIES, options.clone_repositories, self._clone_repositories),
            (STEP_WORK_ITEMS, options.clone_work_items, self._clone_work_items),
            (STEP_BUILDS, options.clone_build_pipelines, self._clone_build_pipelines),
            (STEP_RELEASES, options.clone_release_pipelines, self._clone_release_pipelines),
            (STEP_QUERIES, options.clone_queries, self._clone_queries),
            (STEP_DASHBOARDS, options.clone_dashboards, self._clone_dashboards),
            (STEP_TEAMS, options.clone_teams, self._clone_teams),
        ]
        return [(name, func) for name, enabled, func in switches if enabled]

    def _preflight(
        self, request: ProjectCloneRequest
    ) -> tuple[AdoClient, str | None]:
        """Return the target client, or an error if it cannot be reached."""
        url = request.target_organization_url
        if not url or normalize_organization_url(url) == normalize_organization_url(
            self.client.config.organization_url
        ):
            return self.client, None

        ok, message = validate_organization_url(url)
        if not ok:
            return self.client, message

        try:
            target_client = AdoClient.for_organization(
                self.client.config, url, request.target_access_token
            )
        except ValueError as exc:
            return self.client, str(exc)

        logger.info("Validating target organization %s", url)
        if not target_client.validate_credential():
            return self.client, (
                f"Cannot connect to target organization {url} with the supplied token"
            )
        return target_client, None

    def _run_step(
        self, name: str, func: StepFunc, ctx: _CloneContext
    ) -> StepResult:
        started = datetime.now(timezone.utc)
        scope = ErrorScope(name)
        logger.info("Step started: %s", name)
        try:
            message = func(ctx, scope)
        except Exception as exc:
            logger.exception("Step %s failed", name)
            return StepResult(
                name=name,
                success=False,
                message=f"{name} failed",
                error=str(exc),
                warnings=scope.warnings,
                started_at=started,
                completed_at=datetime.now(timezone.utc),
            )
        logger.info("Step finished: %s (%s)", name, message)
        return StepResult(
            name=name,
            success=not scope.failed,
            message=message,
            error=scope.summary(),
            warnings=scope.warnings,
            started_at=started,
            completed_at=datetime.now(timezone.utc),
        )

    @staticmethod
    def _skipped(name: str, reason: str) -> StepResult:
        now = datetime.now(timezone.utc)
        return StepResult(
            name=name,
            success=False,
            message=NOT_ATTEMPTED,
            error=reason,
            started_at=now,
            completed_at=now,
        )

    @staticmethod
    def _finish(
        steps: list[StepResult],
        total_steps: int,
        target: Container | None,
        started_at: datetime,
    ) -> ProjectCloneResult:
        completed = sum(1 for s in steps if s.success)
        failed = [s.name for s in steps if not s.success]
        success = not failed
        return ProjectCloneResult(
            success=success,
            message=(
                f"Completed {completed} of {total_steps} steps"
                if success
                else f"Completed {completed} of {total_steps} steps with failures"
            ),
            error=f"Failed steps: {', '.join(failed)}" if failed else None,
            new_project_id=target.id if target else None,
            new_project_url=target.url if target else None,
            steps=steps,
            total_steps=total_steps,
            completed_steps=completed,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _create_target(self, ctx: _CloneContext, scope: ErrorScope) -> str:
        client = ctx.target_client
        source = ctx.source
        template_id = source.process_template_id
        if template_id is not None:
            available = {t["id"] for t in client.list_process_templates()}
            if template_id not in available:
                scope.warn(
                    f"Process template {template_id} not available in target "
                    "organization; using the default"
                )
                template_id = None

        description = ctx.request.target_description
        if not description:
            description = f"Cloned from {source.name}"
            if source.description:
                description += f" - {source.description}"
        operation_id = client.create_container(
            ctx.request.target_project_name,
            description,
            template_id,
            source.visibility,
        )
        client.wait_for_operation(
            operation_id, timeout=client.config.project_creation_timeout
        )
        ctx.created = client.get_container(ctx.request.target_project_name)
        return f"Created project '{ctx.target.name}' ({ctx.target.id})"

    def _clone_settings(self, ctx: _CloneContext, scope: ErrorScope) -> str:
        expected: dict[str, bool] = {}
        for service, feature_id in SERVICE_FEATURES:
            with scope.capture(f"{service} visibility"):
                enabled = self.client.get_feature_state(ctx.source.id, feature_id)
                ctx.target_client.set_feature_state(ctx.target.id, feature_id, enabled)
                expected[feature_id] = enabled

        if expected:
            self._sleep(ctx.target_client.config.feature_settle_seconds)
        for service, feature_id in SERVICE_FEATURES:
            if feature_id not in expected:
                continue
            with scope.capture(f"{service} visibility check", warning=True):
                actual = ctx.target_client.get_feature_state(ctx.target.id, feature_id)
                if actual != expected[feature_id]:
                    scope.warn(
                        f"{service} reports {'enabled' if actual else 'disabled'}, "
                        f"expected {'enabled' if expected[feature_id] else 'disabled'}"
                    )
        return f"Applied {len(expected)} of {len(SERVICE_FEATURES)} service settings"

    def _clone_nodes(
        self, ctx: _CloneContext, scope: ErrorScope, kind: NodeKind
    ) -> int:
        root = self.client.list_classification_nodes(ctx.source.id, kind)
        created = 0
        for node in root.walk():
            with scope.capture(f"{kind.value[:-1].lower()} path '{node.path}'") as outcome:
                try:
                    ctx.target_client.create_classification_node(
                        ctx.target.id,
                        kind,
                        parent_path(node.path),
                        node.name,
                        node.attributes or None,
                    )
                except ConflictError:
                    logger.debug("%s '%s' already exists", kind.value, node.path)
                    continue
            if not outcome.failed:
                created += 1
        return created

    def _clone_area_paths(self, ctx: _CloneContext, scope: ErrorScope) -> str:
        return f"Cloned {self._clone_nodes(ctx, scope, NodeKind.AREA)} area paths"

    def _clone_iteration_paths(self, ctx: _CloneContext, scope: ErrorScope) -> str:
        count = self._clone_nodes(ctx, scope, NodeKind.ITERATION)
        return f"Cloned {count} iteration paths"

    def _clone_repositories(self, ctx: _CloneContext, scope: ErrorScope) -> str:
        excluded = {n.lower() for n in ctx.options.exclude_repositories}
        existing = {
            r["name"].lower(): r
            for r in ctx.target_client.list_repositories(ctx.target.id)
        }
        cloned = 0
        for repo in self.client.list_repositories(ctx.source.id):
            name = repo["name"]
            if name.lower() in excluded:
                logger.info("Skipping excluded repository %s", name)
                continue
            # The default repository is created with the project
            target_name = (
                ctx.target.name if name == ctx.source.name else name
            )
            with scope.capture(f"repository '{name}'") as outcome:
                target_repo = existing.get(target_name.lower())
                if target_repo is None:
                    target_repo = ctx.target_client.create_repository(
                        ctx.target.id, target_name
                    )
                ctx.repositories[name] = target_repo
            if outcome.failed:
                continue
            cloned += 1
            if repo.get("defaultBranch") and repo.get("remoteUrl"):
                with scope.capture(f"import of repository '{name}'", warning=True):
                    ctx.target_client.import_repository(
                        ctx.target.id, target_repo["id"], repo["remoteUrl"]
                    )
        return f"Cloned {cloned} repositories"

    def _clone_work_items(self, ctx: _CloneContext, scope: ErrorScope) -> str:
        options = ctx.options
        target_client = ctx.target_client
        items = self.client.list_work_items(ctx.source.id)
        ordered, _ = order_parents_first(
            items, key=lambda wi: wi.id, parent_key=lambda wi: wi.parent_id
        )

        for item in ordered:
            with scope.capture(f"work item {item.id} '{item.title}'") as outcome:
                created = target_client.create_work_item(
                    ctx.target.id,
                    item.work_item_type,
                    creation_operations(item, ctx.target.name),
                )
            if outcome.failed:
                continue
            ctx.work_item_map[item.id] = created.id
            self.identity_map.record(ctx.source.id, ctx.target.id, item.id, created.id)

            if options.include_attachments:
                copy_attachments(
                    self.client,
                    target_client,
                    ctx.source.id,
                    ctx.target.id,
                    item,
                    created.id,
                    scope,
                )
            if options.include_history:
                copy_comments(
                    self.client,
                    target_client,
                    ctx.source.id,
                    ctx.target.id,
                    item.id,
                    created.id,
                    scope,
                )

        links = 0
        if options.include_links:
            for item in ordered:
                if item.id not in ctx.work_item_map:
                    continue
                ops = link_operations(
                    item, ctx.work_item_map, target_client.work_item_url
                )
                if not ops:
                    continue
                with scope.capture(
                    f"links of work item {item.id}", warning=True
                ) as outcome:
                    target_client.update_work_item(
                        ctx.target.id, ctx.work_item_map[item.id], ops
                    )
                if not outcome.failed:
                    links += len(ops)

        return (
            f"Cloned {len(ctx.work_item_map)} of {len(items)} work items, "
            f"{links} links"
        )

    def _clone_build_pipelines(self, ctx: _CloneContext, scope: ErrorScope) -> str:
        cloned = 0
        for summary in self.client.list_build_definitions(ctx.source.id):
            name = summary.get("name", summary.get("id"))
            with scope.capture(f"build pipeline '{name}'") as outcome:
                definition = self.client.get_build_definition(
                    ctx.source.id, summary["id"]
                )
                body = _strip_read_only(definition)
                repo = body.get("repository") or {}
                mapped = ctx.repositories.get(repo.get("name", ""))
                if mapped is not None:
                    body["repository"] = {
                        **repo,
                        "id": mapped["id"],
                        "url": mapped.get("remoteUrl", repo.get("url")),
                    }
                elif repo:
                    scope.warn(
                        f"Build pipeline '{name}' keeps repository "
                        f"'{repo.get('name')}', which was not cloned"
                    )
                ctx.target_client.create_build_definition(ctx.target.id, body)
            if not outcome.failed:
                cloned += 1
        return f"Cloned {cloned} build pipelines"

    def _clone_release_pipelines(self, ctx: _CloneContext, scope: ErrorScope) -> str:
        cloned = 0
        for summary in self.client.list_release_definitions(ctx.source.id):
            name = summary.get("name", summary.get("id"))
            with scope.capture(f"release pipeline '{name}'") as outcome:
                definition = self.client.get_release_definition(
                    ctx.source.id, summary["id"]
                )
                ctx.target_client.create_release_definition(
                    ctx.target.id, _strip_read_only(definition)
                )
            if not outcome.failed:
                cloned += 1
        return f"Cloned {cloned} release pipelines"

    def _clone_queries(self, ctx: _CloneContext, scope: ErrorScope) -> str:
        counts = {"queries": 0, "folders": 0}
        self._clone_query_items(
            ctx, scope, self.client.list_queries(ctx.source.id), "", counts
        )
        return f"Cloned {counts['queries']} queries in {counts['folders']} folders"

    def _clone_query_items(
        self,
        ctx: _CloneContext,
        scope: ErrorScope,
        items: list[QueryItem],
        parent: str,
        counts: dict[str, int],
    ) -> None:
        for item in items:
            if item.is_folder:
                folder_path = f"{parent}/{item.name}" if parent else item.name
                if not parent and is_system_query_folder(item.name):
                    # Pre-provisioned in every project
                    self._clone_query_items(
                        ctx, scope, item.children, folder_path, counts
                    )
                    continue
                try:
                    ctx.target_client.create_query_folder(
                        ctx.target.id, parent, item.name
                    )
                    counts["folders"] += 1
                except ConflictError:
                    scope.warn(f"Query folder '{folder_path}' already exists")
                except ReplicatorError as exc:
                    scope.fail(f"query folder '{folder_path}': {exc}")
                    continue
                self._clone_query_items(
                    ctx, scope, item.children, folder_path, counts
                )
                continue

            with scope.capture(f"query '{item.path}'") as outcome:
                ctx.target_client.create_query(
                    ctx.target.id,
                    parent,
                    item.model_copy(
                        update={
                            "wiql": retarget_wiql(
                                item.wiql, ctx.source.name, ctx.target.name
                            )
                        }
                    ),
                )
            if not outcome.failed:
                counts["queries"] += 1

    def _clone_dashboards(self, ctx: _CloneContext, scope: ErrorScope) -> str:
        cloned = 0
        for summary in self.client.list_dashboards(ctx.source.id):
            name = summary.get("name", summary.get("id"))
            with scope.capture(f"dashboard '{name}'") as outcome:
                dashboard = self.client.get_dashboard(ctx.source.id, summary["id"])
                body = {
                    "name": dashboard.get("name"),
                    "description": dashboard.get("description", ""),
                    "refreshInterval": dashboard.get("refreshInterval", 0),
                    "widgets": [
                        {
                            k: v
                            for k, v in widget.items()
                            if k not in ("id", "eTag", "url", "_links", "dashboard")
                        }
                        for widget in dashboard.get("widgets", [])
                    ],
                }
                ctx.target_client.create_dashboard(ctx.target.id, body)
            if not outcome.failed:
                cloned += 1
        return f"Cloned {cloned} dashboards"

    def _clone_teams(self, ctx: _CloneContext, scope: ErrorScope) -> str:
        default_team = f"{ctx.source.name} Team".lower()
        existing = {
            t["name"].lower() for t in ctx.target_client.list_teams(ctx.target.id)
        }
        cloned = 0
        for team in self.client.list_teams(ctx.source.id):
            name = team["name"]
            # The default team is created with the project
            if name.lower() == default_team or name.lower() in existing:
                continue
            with scope.capture(f"team '{name}'") as outcome:
                ctx.target_client.create_team(
                    ctx.target.id, name, team.get("description") or ""
                )
            if not outcome.failed:
                cloned += 1
        return f"Cloned {cloned} teams"
