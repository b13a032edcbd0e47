"""Pydantic models for entities read from the remote service.

Each model has a ``from_api`` constructor that parses the REST payload, so
the rest of the package never touches raw JSON.  All models are frozen.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel

ATTACHED_FILE = "AttachedFile"
PARENT_LINK = "System.LinkTypes.Hierarchy-Reverse"
CHILD_LINK = "System.LinkTypes.Hierarchy-Forward"

# Work item links re-created between cloned items.
WORK_ITEM_LINK_TYPES = frozenset(
    {
        CHILD_LINK,
        PARENT_LINK,
        "System.LinkTypes.Related",
        "System.LinkTypes.Dependency-Forward",
        "System.LinkTypes.Dependency-Reverse",
    }
)

# Fields copied verbatim when a work item is cloned or deployed.
COPIED_FIELDS = (
    "System.Description",
    "Microsoft.VSTS.Common.AcceptanceCriteria",
    "Microsoft.VSTS.Common.Priority",
    "Microsoft.VSTS.Common.BusinessValue",
    "Microsoft.VSTS.Common.ValueArea",
    "Microsoft.VSTS.Common.Activity",
    "Microsoft.VSTS.Scheduling.Effort",
    "Microsoft.VSTS.Scheduling.StoryPoints",
    "Microsoft.VSTS.Scheduling.RemainingWork",
    "Microsoft.VSTS.Scheduling.OriginalEstimate",
    "System.Tags",
)

_DISPLAY_NAME_RE = re.compile(r"^([^<]+)")


class Container(BaseModel):
    """A project in the organization."""

    id: str
    name: str
    description: str = ""
    url: str | None = None
    state: str | None = None
    visibility: str = "private"
    process_template_id: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Container:
        capabilities = data.get("capabilities") or {}
        template = capabilities.get("processTemplate") or {}
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description") or "",
            url=data.get("url"),
            state=data.get("state"),
            visibility=data.get("visibility") or "private",
            process_template_id=template.get("templateTypeId"),
        )


class Relation(BaseModel):
    """A link from a work item to another work item, attachment or artifact."""

    rel: str
    url: str
    attributes: dict[str, Any] = {}

    model_config = {"frozen": True}

    @property
    def is_attachment(self) -> bool:
        return self.rel == ATTACHED_FILE

    @property
    def attachment_id(self) -> str | None:
        """Attachment id parsed from the last segment of the relation URL."""
        if not self.is_attachment:
            return None
        segment = self.url.rstrip("/").rsplit("/", 1)[-1]
        return segment.split("?", 1)[0] or None

    @property
    def linked_work_item_id(self) -> int | None:
        """Work item id at the end of a work item link URL."""
        if self.rel not in WORK_ITEM_LINK_TYPES:
            return None
        segment = self.url.rstrip("/").rsplit("/", 1)[-1]
        return int(segment) if segment.isdigit() else None


class WorkItem(BaseModel):
    """A work item snapshot.

    Attributes:
        id: Id assigned by the remote service; scoped to its project.
        area_path: Full area path including the project segment.
        tags: Free-text tags as stored remotely (``"a; b"``).
        assigned_to: Unique (principal) name of the assignee.
        fields: All raw fields, used for copying extra fields.
    """

    id: int
    work_item_type: str
    title: str
    state: str = ""
    priority: int | None = None
    assigned_to: str | None = None
    area_path: str = ""
    iteration_path: str = ""
    tags: str = ""
    parent_id: int | None = None
    description: str = ""
    fields: dict[str, Any] = {}
    relations: list[Relation] = []

    model_config = {"frozen": True}

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> WorkItem:
        fields = data.get("fields") or {}
        assigned = fields.get("System.AssignedTo")
        if isinstance(assigned, dict):
            assigned = assigned.get("uniqueName") or assigned.get(
                "displayName"
            )
        priority = fields.get("Microsoft.VSTS.Common.Priority")
        parent = fields.get("System.Parent")
        return cls(
            id=int(data["id"]),
            work_item_type=fields.get("System.WorkItemType", ""),
            title=fields.get("System.Title", ""),
            state=fields.get("System.State", ""),
            priority=int(priority) if priority is not None else None,
            assigned_to=assigned or None,
            area_path=fields.get("System.AreaPath", ""),
            iteration_path=fields.get("System.IterationPath", ""),
            tags=fields.get("System.Tags", "") or "",
            parent_id=int(parent) if parent is not None else None,
            description=fields.get("System.Description", "") or "",
            fields=fields,
            relations=[
                Relation(
                    rel=r.get("rel", ""),
                    url=r.get("url", ""),
                    attributes=r.get("attributes") or {},
                )
                for r in data.get("relations") or []
            ],
        )

    @property
    def tag_set(self) -> frozenset[str]:
        """Tags as a case-insensitive set."""
        return frozenset(
            t.strip().lower() for t in self.tags.split(";") if t.strip()
        )

    @property
    def attachments(self) -> list[Relation]:
        return [r for r in self.relations if r.is_attachment]

    @property
    def assignee_display_name(self) -> str:
        """Display part of an ``"Name <email>"`` assignee value."""
        if not self.assigned_to:
            return ""
        match = _DISPLAY_NAME_RE.match(self.assigned_to)
        return match.group(1).strip() if match else self.assigned_to


class NodeKind(str, Enum):
    """Classification node trees; the value is the REST path segment."""

    AREA = "Areas"
    ITERATION = "Iterations"


class ClassificationNode(BaseModel):
    """An area or iteration path node.

    ``path`` is relative to the project root node (``"Team A\\\\Sub"``);
    the root itself has an empty path.
    """

    name: str
    path: str = ""
    kind: NodeKind
    attributes: dict[str, Any] = {}
    children: list[ClassificationNode] = []

    model_config = {"frozen": True}

    @classmethod
    def from_api(
        cls,
        data: dict[str, Any],
        kind: NodeKind,
        parent_path: str | None = None,
    ) -> ClassificationNode:
        name = data.get("name", "")
        if parent_path is None:
            path = ""
        elif parent_path == "":
            path = name
        else:
            path = f"{parent_path}\\{name}"
        return cls(
            name=name,
            path=path,
            kind=kind,
            attributes=data.get("attributes") or {},
            children=[
                cls.from_api(child, kind, path)
                for child in data.get("children") or []
            ],
        )

    def walk(self) -> list[ClassificationNode]:
        """Return all descendants depth-first, excluding this node."""
        nodes: list[ClassificationNode] = []
        for child in self.children:
            nodes.append(child)
            nodes.extend(child.walk())
        return nodes


class GroupMember(BaseModel):
    descriptor: str = ""
    principal_name: str
    display_name: str = ""
    mail_address: str = ""

    model_config = {"frozen": True}


class SecurityGroup(BaseModel):
    """A project-scoped security group with its direct members."""

    descriptor: str
    display_name: str
    principal_name: str = ""
    description: str = ""
    members: list[GroupMember] = []

    model_config = {"frozen": True}

    @property
    def member_names(self) -> frozenset[str]:
        return frozenset(m.principal_name for m in self.members)


class QueryItem(BaseModel):
    """A saved query or query folder."""

    id: str = ""
    name: str
    path: str
    is_folder: bool = False
    is_public: bool = True
    wiql: str | None = None
    query_type: str | None = None
    children: list[QueryItem] = []

    model_config = {"frozen": True}

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> QueryItem:
        return cls(
            id=data.get("id", ""),
            name=data["name"],
            path=data.get("path", data["name"]),
            is_folder=bool(data.get("isFolder", False)),
            is_public=bool(data.get("isPublic", True)),
            wiql=data.get("wiql"),
            query_type=data.get("queryType"),
            children=[cls.from_api(c) for c in data.get("children") or []],
        )

    @property
    def parent_path(self) -> str:
        return self.path.rsplit("/", 1)[0] if "/" in self.path else ""


class WikiPage(BaseModel):
    path: str
    order: int = 0

    model_config = {"frozen": True}


class AttachmentReference(BaseModel):
    id: str
    url: str

    model_config = {"frozen": True}
