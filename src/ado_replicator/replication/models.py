"""Pydantic models for the replication engines.

Defines the data contracts shared by the differ, the applier, the clone
pipeline and the deployer:

- Difference enums: one closed enumeration per entity category.
- Diff entries: one model per category, mutable so callers can set
  ``selected`` before handing the analysis to the applier.
- ``DifferencesAnalysis``: aggregate of every category.
- Requests and results for the four operations.  Results are frozen.
- ``ProgressCallback``: optional hook the long-running operations call
  with one human-readable line per step or target.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, computed_field

from ..core.models import Container, NodeKind, QueryItem, WorkItem

ProgressCallback = Callable[[str], None]

# ---------------------------------------------------------------------------
# Difference enums
# ---------------------------------------------------------------------------


class WorkItemDifferenceType(str, Enum):
    NEW = "new"
    UPDATED = "updated"
    SYNCHRONIZED = "synchronized"


class NodeDifferenceType(str, Enum):
    MISSING = "missing"
    NAME_DIFFERENT = "name_different"


class MemberChange(str, Enum):
    ADD = "add"
    REMOVE = "remove"


class WikiDifferenceType(str, Enum):
    ADVISORY = "advisory"


class QueryDifferenceType(str, Enum):
    NEW = "new"
    UPDATED = "updated"
    SYNCHRONIZED = "synchronized"
    MISSING = "missing"


class QueryItemType(str, Enum):
    QUERY = "query"
    FOLDER = "folder"


class OperationType(str, Enum):
    """Kind of write recorded in an ``OperationLog``."""

    AREA_PATH = "area_path"
    ITERATION_PATH = "iteration_path"
    NODE_RENAME = "node_rename"
    WORK_ITEM_CREATE = "work_item_create"
    WORK_ITEM_UPDATE = "work_item_update"
    MEMBER_ADD = "member_add"
    MEMBER_REMOVE = "member_remove"
    WIKI_PAGE = "wiki_page"
    QUERY_FOLDER = "query_folder"
    QUERY_CREATE = "query_create"
    QUERY_UPDATE = "query_update"


class DeploymentAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Diff entries
# ---------------------------------------------------------------------------


class WorkItemDifference(BaseModel):
    """Comparison of one source work item against its target counterpart.

    Attributes:
        source_id: Id of the work item in the source project.
        target_id: Id of the matched target work item, if any.
        changed_fields: Tracked fields that differ (``UPDATED`` only).
    """

    source_id: int
    work_item_type: str
    title: str
    difference_type: WorkItemDifferenceType
    source: WorkItem
    target: WorkItem | None = None
    target_id: int | None = None
    changed_fields: list[str] = []
    description: str = ""
    selected: bool = False


class ClassificationNodeDifference(BaseModel):
    """An area or iteration path missing from, or renamed in, the target.

    Attributes:
        path: Project-relative source path (``"Team A\\\\Sub"``).
        parent_path: Project-relative parent path, ``""`` for top level.
        target_name: Name of the node at the same position in the target
            (``NAME_DIFFERENT`` only).
        target_path: Relative path of that target node.
    """

    kind: NodeKind
    path: str
    name: str
    parent_path: str = ""
    difference_type: NodeDifferenceType
    target_name: str | None = None
    target_path: str | None = None
    attributes: dict = {}
    description: str = ""
    selected: bool = False

    @property
    def depth(self) -> int:
        return self.path.count("\\")


class SecurityMemberDifference(BaseModel):
    """One membership change.  ``descriptor`` is the target member's
    descriptor for removals and the source member's for additions."""

    principal_name: str
    display_name: str = ""
    descriptor: str = ""
    change: MemberChange
    selected: bool = False


class SecurityGroupDifference(BaseModel):
    """Membership differences of one group, matched by display name.

    Selecting the group selects all of its member changes.
    """

    group_name: str
    source_descriptor: str
    target_descriptor: str | None = None
    target_missing: bool = False
    members_to_add: list[SecurityMemberDifference] = []
    members_to_remove: list[SecurityMemberDifference] = []
    description: str = ""
    selected: bool = False

    @property
    def has_changes(self) -> bool:
        return bool(self.members_to_add or self.members_to_remove)


class WikiPageDifference(BaseModel):
    path: str
    order: int = 0
    difference_type: WikiDifferenceType = WikiDifferenceType.ADVISORY
    description: str = ""
    selected: bool = False

    @property
    def depth(self) -> int:
        return self.path.strip("/").count("/")


class QueryDifference(BaseModel):
    """Comparison of one saved query or query folder, keyed by full path."""

    path: str
    name: str
    item_type: QueryItemType = QueryItemType.QUERY
    difference_type: QueryDifferenceType
    source: QueryItem
    target: QueryItem | None = None
    changed_fields: list[str] = []
    description: str = ""
    selected: bool = False

    @property
    def parent_path(self) -> str:
        return self.source.parent_path

    @property
    def depth(self) -> int:
        return self.path.count("/")


# ---------------------------------------------------------------------------
# Category aggregates
# ---------------------------------------------------------------------------


class WorkItemDifferences(BaseModel):
    entries: list[WorkItemDifference] = []

    @property
    def new(self) -> list[WorkItemDifference]:
        return [
            e
            for e in self.entries
            if e.difference_type == WorkItemDifferenceType.NEW
        ]

    @property
    def updated(self) -> list[WorkItemDifference]:
        return [
            e
            for e in self.entries
            if e.difference_type == WorkItemDifferenceType.UPDATED
        ]

    @property
    def synchronized(self) -> list[WorkItemDifference]:
        return [
            e
            for e in self.entries
            if e.difference_type == WorkItemDifferenceType.SYNCHRONIZED
        ]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_changes(self) -> bool:
        return bool(self.new or self.updated)


class ClassificationNodeDifferences(BaseModel):
    area_paths: list[ClassificationNodeDifference] = []
    iteration_paths: list[ClassificationNodeDifference] = []

    @property
    def entries(self) -> list[ClassificationNodeDifference]:
        return self.area_paths + self.iteration_paths

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_changes(self) -> bool:
        return bool(self.area_paths or self.iteration_paths)


class SecurityGroupDifferences(BaseModel):
    groups: list[SecurityGroupDifference] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_changes(self) -> bool:
        return any(g.has_changes for g in self.groups)


class WikiDifferences(BaseModel):
    """Advisory entries only; wiki content is never compared."""

    pages: list[WikiPageDifference] = []
    message: str = ""

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_changes(self) -> bool:
        return False


class QueryDifferences(BaseModel):
    entries: list[QueryDifference] = []

    def _of(self, kind: QueryDifferenceType) -> list[QueryDifference]:
        return [e for e in self.entries if e.difference_type == kind]

    @property
    def new(self) -> list[QueryDifference]:
        return self._of(QueryDifferenceType.NEW)

    @property
    def updated(self) -> list[QueryDifference]:
        return self._of(QueryDifferenceType.UPDATED)

    @property
    def synchronized(self) -> list[QueryDifference]:
        return self._of(QueryDifferenceType.SYNCHRONIZED)

    @property
    def missing_folders(self) -> list[QueryDifference]:
        return self._of(QueryDifferenceType.MISSING)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_changes(self) -> bool:
        return bool(self.new or self.updated or self.missing_folders)


class DifferencesAnalysis(BaseModel):
    """Everything that differs between a source and a target project."""

    source_project: Container
    target_project: Container
    work_items: WorkItemDifferences = Field(default_factory=WorkItemDifferences)
    classification_nodes: ClassificationNodeDifferences = Field(
        default_factory=ClassificationNodeDifferences
    )
    security_groups: SecurityGroupDifferences = Field(
        default_factory=SecurityGroupDifferences
    )
    wiki: WikiDifferences = Field(default_factory=WikiDifferences)
    queries: QueryDifferences = Field(default_factory=QueryDifferences)
    analyzed_at: datetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_any_differences(self) -> bool:
        return (
            self.work_items.has_changes
            or self.classification_nodes.has_changes
            or self.security_groups.has_changes
            or self.wiki.has_changes
            or self.queries.has_changes
        )


# ---------------------------------------------------------------------------
# Selective update
# ---------------------------------------------------------------------------


class SelectiveUpdateRequest(BaseModel):
    """An analysis annotated with the caller's selections."""

    source_project_id: str
    target_project_id: str
    analysis: DifferencesAnalysis

    @classmethod
    def from_analysis(cls, analysis: DifferencesAnalysis) -> SelectiveUpdateRequest:
        return cls(
            source_project_id=analysis.source_project.id,
            target_project_id=analysis.target_project.id,
            analysis=analysis,
        )


class OperationLog(BaseModel):
    timestamp: datetime
    success: bool
    message: str
    detail: str | None = None
    item_id: str | None = None
    operation_type: OperationType

    model_config = {"frozen": True}


class SelectiveUpdateResult(BaseModel):
    """Outcome of applying the selected entries of an analysis.

    ``success`` is true only when no operation log failed and no category
    raised an error.
    """

    success: bool
    error: str | None = None
    operation_logs: list[OperationLog] = []
    category_errors: list[str] = []
    work_items_cloned: int = 0
    work_items_updated: int = 0
    area_paths_cloned: int = 0
    iteration_paths_cloned: int = 0
    nodes_renamed: int = 0
    members_added: int = 0
    members_removed: int = 0
    wiki_pages_cloned: int = 0
    queries_cloned: int = 0
    queries_updated: int = 0
    started_at: datetime
    completed_at: datetime

    model_config = {"frozen": True}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def failed_logs(self) -> list[OperationLog]:
        return [log for log in self.operation_logs if not log.success]


# ---------------------------------------------------------------------------
# Clone pipeline
# ---------------------------------------------------------------------------


class ProjectCloneOptions(BaseModel):
    """Step switches for ``ClonePipeline.clone_project``."""

    clone_project_settings: bool = True
    clone_area_paths: bool = True
    clone_iteration_paths: bool = True
    clone_repositories: bool = True
    exclude_repositories: list[str] = []
    clone_work_items: bool = True
    include_attachments: bool = True
    include_links: bool = True
    include_history: bool = False
    clone_build_pipelines: bool = True
    clone_release_pipelines: bool = True
    clone_queries: bool = True
    clone_dashboards: bool = True
    clone_teams: bool = True


class ProjectCloneRequest(BaseModel):
    """Request to duplicate a project.

    Attributes:
        target_organization_url: Organization to create the project in;
            ``None`` means the configured organization.
        target_access_token: Token for a different target organization.
    """

    source_project_id: str
    target_project_name: str
    target_description: str = ""
    target_organization_url: str | None = None
    target_access_token: str | None = None
    options: ProjectCloneOptions = Field(default_factory=ProjectCloneOptions)


class StepResult(BaseModel):
    name: str
    success: bool
    message: str = ""
    error: str | None = None
    warnings: list[str] = []
    started_at: datetime
    completed_at: datetime

    model_config = {"frozen": True}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()


class ProjectCloneResult(BaseModel):
    success: bool
    message: str = ""
    error: str | None = None
    new_project_id: str | None = None
    new_project_url: str | None = None
    steps: list[StepResult] = []
    total_steps: int = 0
    completed_steps: int = 0
    started_at: datetime
    completed_at: datetime

    model_config = {"frozen": True}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()


# ---------------------------------------------------------------------------
# Work item deployment
# ---------------------------------------------------------------------------


class WorkItemDeploymentOptions(BaseModel):
    update_existing: bool = False
    create_missing_paths: bool = True
    map_work_item_types: bool = True
    include_links: bool = True
    include_attachments: bool = True
    include_history: bool = False


class TemplateWorkItem(BaseModel):
    """Summary of a template project's work item, offered for deployment."""

    id: int
    work_item_type: str
    title: str
    state: str = ""
    priority: int | None = None
    assigned_to: str = ""
    area_path: str = ""
    iteration_path: str = ""
    tags: str = ""
    parent_id: int | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_work_item(cls, item: WorkItem) -> TemplateWorkItem:
        return cls(
            id=item.id,
            work_item_type=item.work_item_type,
            title=item.title,
            state=item.state,
            priority=item.priority,
            assigned_to=item.assignee_display_name,
            area_path=item.area_path,
            iteration_path=item.iteration_path,
            tags=item.tags,
            parent_id=item.parent_id,
        )


class WorkItemDeploymentRequest(BaseModel):
    source_project_id: str
    target_project_ids: list[str]
    work_item_ids: list[int]
    options: WorkItemDeploymentOptions = Field(
        default_factory=WorkItemDeploymentOptions
    )


class WorkItemDeploymentDetail(BaseModel):
    source_id: int
    target_id: int | None = None
    title: str
    source_type: str
    target_type: str | None = None
    action: DeploymentAction
    message: str = ""
    warnings: list[str] = []

    model_config = {"frozen": True}


class ProjectDeploymentResult(BaseModel):
    """Outcome for one target project.  ``success`` is false only on a
    project-level failure such as an unresolvable target."""

    project_id: str
    project_name: str = ""
    success: bool
    error: str | None = None
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    details: list[WorkItemDeploymentDetail] = []
    warnings: list[str] = []

    model_config = {"frozen": True}


class WorkItemDeploymentResult(BaseModel):
    projects: list[ProjectDeploymentResult] = []
    started_at: datetime
    completed_at: datetime

    model_config = {"frozen": True}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_projects_processed(self) -> int:
        return len(self.projects)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def successful_projects(self) -> int:
        return sum(1 for p in self.projects if p.success)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failed_projects(self) -> int:
        return sum(1 for p in self.projects if not p.success)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_work_items_deployed(self) -> int:
        return sum(p.created + p.updated for p in self.projects)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def warnings(self) -> list[str]:
        return [
            f"{p.project_name or p.project_id}: {w}"
            for p in self.projects
            for w in p.warnings
        ]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success(self) -> bool:
        return self.successful_projects > 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()
