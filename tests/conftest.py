"""Shared pytest fixtures for ado-replicator tests."""

from __future__ import annotations

import itertools
from typing import Any
from unittest.mock import MagicMock

import pytest
from dotenv import load_dotenv

from ado_replicator.config import Config
from ado_replicator.core.errors import ConflictError, NotFoundError
from ado_replicator.core.models import (
    CHILD_LINK,
    PARENT_LINK,
    AttachmentReference,
    ClassificationNode,
    Container,
    GroupMember,
    NodeKind,
    QueryItem,
    SecurityGroup,
    WikiPage,
    WorkItem,
)

load_dotenv()

ORG_URL = "https://dev.azure.com/contoso"


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live Azure DevOps organization",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live Azure DevOps organization"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# In-memory organization
# ---------------------------------------------------------------------------


class FakeClient:
    """In-memory stand-in for ``AdoClient``.

    Projects, work items, node trees, groups, queries, wiki pages and the
    pipeline artifacts live in dicts keyed by project id.  Every mutating
    call is appended to ``writes``.  ``failures`` maps a method name to an
    exception, or to a callable receiving the call arguments and returning
    an exception (or None) to raise.
    """

    PROCESS_TEMPLATES = [
        {"id": "agile-id", "name": "Agile", "isDefault": True},
        {"id": "scrum-id", "name": "Scrum", "isDefault": False},
    ]

    def __init__(self, config: Config | None = None):
        self.config = config or Config(
            organization_url=ORG_URL,
            access_token="pat",
            feature_settle_seconds=0,
        )
        self.projects: dict[str, Container] = {}
        self.work_items: dict[str, dict[int, WorkItem]] = {}
        self.work_item_types: dict[str, list[str]] = {}
        self.comments: dict[int, list[str]] = {}
        self.attachment_blobs: dict[str, bytes] = {}
        self.nodes: dict[tuple[str, NodeKind], list[tuple[str, dict]]] = {}
        self.groups: dict[str, list[dict[str, Any]]] = {}
        self.queries: dict[str, dict[str, dict[str, Any]]] = {}
        self.features: dict[tuple[str, str], bool] = {}
        self.wiki: dict[str, dict[str, tuple[int, str]]] = {}
        self.repositories: dict[str, list[dict[str, Any]]] = {}
        self.teams: dict[str, list[dict[str, Any]]] = {}
        self.build_definitions: dict[str, list[dict[str, Any]]] = {}
        self.release_definitions: dict[str, list[dict[str, Any]]] = {}
        self.dashboards: dict[str, list[dict[str, Any]]] = {}
        self.credential_ok = True
        self.failures: dict[str, Any] = {}
        self.writes: list[tuple] = []
        self._ids = itertools.count(1000)

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def _maybe_fail(self, method: str, *args: Any) -> None:
        failure = self.failures.get(method)
        if failure is None:
            return
        if isinstance(failure, BaseException):
            raise failure
        exc = failure(*args)
        if exc is not None:
            raise exc

    def _write(self, method: str, *args: Any) -> None:
        self._maybe_fail(method, *args)
        self.writes.append((method, *args))

    def writes_of(self, method: str) -> list[tuple]:
        return [w for w in self.writes if w[0] == method]

    def add_project(
        self,
        name: str,
        project_id: str | None = None,
        description: str = "",
        process_template_id: str | None = "agile-id",
        visibility: str = "private",
    ) -> Container:
        project_id = project_id or f"{name.lower()}-id"
        project = Container(
            id=project_id,
            name=name,
            description=description,
            url=f"{ORG_URL}/_apis/projects/{project_id}",
            state="wellFormed",
            visibility=visibility,
            process_template_id=process_template_id,
        )
        self.projects[project_id] = project
        self.work_items[project_id] = {}
        self.work_item_types[project_id] = [
            "Epic",
            "Feature",
            "User Story",
            "Task",
            "Bug",
        ]
        self.nodes[(project_id, NodeKind.AREA)] = []
        self.nodes[(project_id, NodeKind.ITERATION)] = []
        self.groups[project_id] = []
        self.queries[project_id] = {
            "Shared Queries": {"id": f"{project_id}-sq", "is_folder": True},
            "My Queries": {"id": f"{project_id}-mq", "is_folder": True},
        }
        self.wiki[project_id] = {}
        self.repositories[project_id] = [
            {"id": f"{project_id}-repo", "name": name, "remoteUrl": f"{ORG_URL}/_git/{name}"}
        ]
        self.teams[project_id] = [{"id": f"{project_id}-team", "name": f"{name} Team"}]
        self.build_definitions[project_id] = []
        self.release_definitions[project_id] = []
        self.dashboards[project_id] = []
        return project

    def add_work_item(
        self,
        project_id: str,
        work_item_type: str,
        title: str,
        *,
        work_item_id: int | None = None,
        state: str = "New",
        area_path: str | None = None,
        iteration_path: str | None = None,
        tags: str = "",
        assigned_to: str | None = None,
        parent_id: int | None = None,
        extra_fields: dict[str, Any] | None = None,
        relations: list[dict[str, Any]] | None = None,
    ) -> WorkItem:
        project = self.projects[project_id]
        work_item_id = work_item_id or next(self._ids)
        fields: dict[str, Any] = {
            "System.WorkItemType": work_item_type,
            "System.Title": title,
            "System.State": state,
            "System.AreaPath": area_path or project.name,
            "System.IterationPath": iteration_path or project.name,
            "System.Tags": tags,
        }
        if assigned_to:
            fields["System.AssignedTo"] = assigned_to
        if parent_id is not None:
            fields["System.Parent"] = parent_id
        fields.update(extra_fields or {})
        rels = list(relations or [])
        if parent_id is not None:
            rels.append({"rel": PARENT_LINK, "url": self.work_item_url(parent_id)})
        item = WorkItem.from_api({"id": work_item_id, "fields": fields, "relations": rels})
        self.work_items[project_id][work_item_id] = item
        return item

    def add_node(
        self, project_id: str, kind: NodeKind, path: str, attributes: dict | None = None
    ) -> None:
        self.nodes[(project_id, kind)].append((path, attributes or {}))

    def add_group(
        self, project_id: str, name: str, members: list[str] | None = None
    ) -> str:
        descriptor = f"vssgp.{project_id}.{name}"
        self.groups[project_id].append(
            {
                "descriptor": descriptor,
                "display_name": name,
                "members": [
                    GroupMember(descriptor=f"aad.{m}", principal_name=m, display_name=m)
                    for m in members or []
                ],
            }
        )
        return descriptor

    def add_query(
        self,
        project_id: str,
        path: str,
        wiql: str | None = None,
        folder: bool = False,
        query_type: str | None = None,
        is_public: bool = True,
    ) -> None:
        self.queries[project_id][path] = {
            "id": f"q-{next(self._ids)}",
            "is_folder": folder,
            "wiql": wiql,
            "query_type": query_type,
            "is_public": is_public,
        }

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def list_containers(self) -> list[Container]:
        return list(self.projects.values())

    def get_container(self, container_id: str) -> Container:
        self._maybe_fail("get_container", container_id)
        if container_id in self.projects:
            return self.projects[container_id]
        for project in self.projects.values():
            if project.name.lower() == container_id.lower():
                return project
        raise NotFoundError(f"Project '{container_id}' not found")

    def validate_credential(self) -> bool:
        return self.credential_ok

    def list_process_templates(self) -> list[dict[str, Any]]:
        return list(self.PROCESS_TEMPLATES)

    def create_container(
        self,
        name: str,
        description: str = "",
        process_template_id: str | None = None,
        visibility: str = "private",
    ) -> str:
        self._write("create_container", name, description, process_template_id, visibility)
        if any(p.name.lower() == name.lower() for p in self.projects.values()):
            raise ConflictError(f"Project '{name}' already exists", 409)
        self.add_project(
            name,
            description=description,
            process_template_id=process_template_id or "agile-id",
            visibility=visibility,
        )
        return f"op-{name}"

    def wait_for_operation(
        self, operation_id: str, timeout: int = 300, poll_interval: float = 2.0
    ) -> None:
        self._maybe_fail("wait_for_operation", operation_id)

    # ------------------------------------------------------------------
    # Work items
    # ------------------------------------------------------------------

    def work_item_url(self, work_item_id: int) -> str:
        return f"{ORG_URL}/_apis/wit/workItems/{work_item_id}"

    def list_work_items(self, container_id: str) -> list[WorkItem]:
        self._maybe_fail("list_work_items", container_id)
        return list(self.work_items[container_id].values())

    def get_work_items(self, container_id: str, ids: list[int]) -> list[WorkItem]:
        items = self.work_items[container_id]
        return [items[i] for i in ids if i in items]

    def _apply_ops(
        self, container_id: str, work_item_id: int, base: dict[str, Any], ops: list[dict]
    ) -> WorkItem:
        fields = dict(base.get("fields", {}))
        relations = list(base.get("relations", []))
        for op in ops:
            path = op["path"]
            if path.startswith("/fields/"):
                fields[path[len("/fields/") :]] = op["value"]
            elif path == "/relations/-":
                rel = op["value"]
                relations.append(rel)
                if rel["rel"] == PARENT_LINK:
                    parent_id = int(rel["url"].rsplit("/", 1)[-1])
                    fields["System.Parent"] = parent_id
                    parent = self.work_items[container_id].get(parent_id)
                    if parent is not None:
                        self._store(
                            container_id,
                            parent,
                            extra_relations=[
                                {"rel": CHILD_LINK, "url": self.work_item_url(work_item_id)}
                            ],
                        )
        item = WorkItem.from_api(
            {"id": work_item_id, "fields": fields, "relations": relations}
        )
        self.work_items[container_id][work_item_id] = item
        return item

    def _store(
        self, container_id: str, item: WorkItem, extra_relations: list[dict]
    ) -> None:
        relations = [r.model_dump() for r in item.relations] + extra_relations
        self.work_items[container_id][item.id] = WorkItem.from_api(
            {"id": item.id, "fields": item.fields, "relations": relations}
        )

    def create_work_item(
        self, container_id: str, work_item_type: str, operations: list[dict]
    ) -> WorkItem:
        self._write("create_work_item", container_id, work_item_type, operations)
        work_item_id = next(self._ids)
        return self._apply_ops(
            container_id,
            work_item_id,
            {"fields": {"System.WorkItemType": work_item_type, "System.State": "New"}},
            operations,
        )

    def update_work_item(
        self, container_id: str, work_item_id: int, operations: list[dict]
    ) -> WorkItem:
        self._write("update_work_item", container_id, work_item_id, operations)
        current = self.work_items[container_id].get(work_item_id)
        if current is None:
            raise NotFoundError(f"Work item {work_item_id} not found")
        return self._apply_ops(
            container_id,
            work_item_id,
            {
                "fields": current.fields,
                "relations": [r.model_dump() for r in current.relations],
            },
            operations,
        )

    def list_work_item_types(self, container_id: str) -> list[str]:
        return list(self.work_item_types[container_id])

    def list_comments(self, container_id: str, work_item_id: int) -> list[str]:
        self._maybe_fail("list_comments", container_id, work_item_id)
        return list(self.comments.get(work_item_id, []))

    def add_comment(self, container_id: str, work_item_id: int, text: str) -> None:
        self._write("add_comment", container_id, work_item_id, text)
        self.comments.setdefault(work_item_id, []).append(text)

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    def get_attachment_content(self, container_id: str, attachment_id: str) -> bytes:
        self._maybe_fail("get_attachment_content", container_id, attachment_id)
        if attachment_id not in self.attachment_blobs:
            raise NotFoundError(f"Attachment {attachment_id} not found")
        return self.attachment_blobs[attachment_id]

    def create_attachment(
        self, container_id: str, content: bytes, file_name: str
    ) -> AttachmentReference:
        self._write("create_attachment", container_id, file_name)
        attachment_id = f"att-{next(self._ids)}"
        self.attachment_blobs[attachment_id] = content
        return AttachmentReference(
            id=attachment_id,
            url=f"{ORG_URL}/_apis/wit/attachments/{attachment_id}",
        )

    # ------------------------------------------------------------------
    # Classification nodes
    # ------------------------------------------------------------------

    def list_classification_nodes(
        self, container_id: str, kind: NodeKind
    ) -> ClassificationNode:
        self._maybe_fail("list_classification_nodes", container_id, kind)
        root: dict[str, Any] = {"name": self.projects[container_id].name, "children": []}
        index = {"": root}
        for path, attributes in self.nodes[(container_id, kind)]:
            parent = path.rsplit("\\", 1)[0] if "\\" in path else ""
            node = {"name": path.rsplit("\\", 1)[-1], "attributes": attributes, "children": []}
            index[parent]["children"].append(node)
            index[path] = node
        return ClassificationNode.from_api(root, kind)

    def create_classification_node(
        self,
        container_id: str,
        kind: NodeKind,
        parent_path: str,
        name: str,
        attributes: dict | None = None,
    ) -> ClassificationNode:
        self._write("create_classification_node", container_id, kind, parent_path, name)
        paths = [p for p, _ in self.nodes[(container_id, kind)]]
        if parent_path and parent_path not in paths:
            raise NotFoundError(f"Parent '{parent_path}' not found")
        path = f"{parent_path}\\{name}" if parent_path else name
        if path in paths:
            raise ConflictError(f"'{path}' already exists", 409)
        self.nodes[(container_id, kind)].append((path, attributes or {}))
        return ClassificationNode(name=name, path=path, kind=kind, attributes=attributes or {})

    def rename_classification_node(
        self, container_id: str, kind: NodeKind, path: str, name: str
    ) -> None:
        self._write("rename_classification_node", container_id, kind, path, name)
        parent = path.rsplit("\\", 1)[0] if "\\" in path else ""
        new_path = f"{parent}\\{name}" if parent else name
        renamed = []
        for p, attrs in self.nodes[(container_id, kind)]:
            if p == path:
                p = new_path
            elif p.startswith(path + "\\"):
                p = new_path + p[len(path) :]
            renamed.append((p, attrs))
        self.nodes[(container_id, kind)] = renamed

    # ------------------------------------------------------------------
    # Security groups
    # ------------------------------------------------------------------

    def list_security_groups(self, container_id: str) -> list[SecurityGroup]:
        self._maybe_fail("list_security_groups", container_id)
        return [
            SecurityGroup(
                descriptor=g["descriptor"],
                display_name=g["display_name"],
                members=list(g["members"]),
            )
            for g in self.groups[container_id]
        ]

    def _group(self, descriptor: str) -> dict[str, Any]:
        for groups in self.groups.values():
            for g in groups:
                if g["descriptor"] == descriptor:
                    return g
        raise NotFoundError(f"Group {descriptor} not found")

    def add_group_member(self, group_descriptor: str, principal_name: str) -> None:
        self._write("add_group_member", group_descriptor, principal_name)
        self._group(group_descriptor)["members"].append(
            GroupMember(
                descriptor=f"aad.{principal_name}",
                principal_name=principal_name,
                display_name=principal_name,
            )
        )

    def remove_group_member(self, group_descriptor: str, member_descriptor: str) -> None:
        self._write("remove_group_member", group_descriptor, member_descriptor)
        group = self._group(group_descriptor)
        group["members"] = [
            m for m in group["members"] if m.descriptor != member_descriptor
        ]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_queries(self, container_id: str) -> list[QueryItem]:
        self._maybe_fail("list_queries", container_id)
        entries = self.queries[container_id]

        def build(path: str) -> dict[str, Any]:
            data = entries[path]
            prefix = path + "/"
            children = [
                build(p)
                for p in entries
                if p.startswith(prefix) and "/" not in p[len(prefix) :]
            ]
            return {
                "id": data["id"],
                "name": path.rsplit("/", 1)[-1],
                "path": path,
                "isFolder": data["is_folder"],
                "wiql": data.get("wiql"),
                "queryType": data.get("query_type"),
                "isPublic": data.get("is_public", True),
                "children": children,
            }

        return [QueryItem.from_api(build(p)) for p in entries if "/" not in p]

    def _check_query_parent(self, container_id: str, parent_path: str) -> None:
        parent = self.queries[container_id].get(parent_path)
        if parent is None or not parent["is_folder"]:
            raise NotFoundError(f"Query folder '{parent_path}' not found")

    def create_query_folder(
        self, container_id: str, parent_path: str, name: str
    ) -> QueryItem:
        self._write("create_query_folder", container_id, parent_path, name)
        self._check_query_parent(container_id, parent_path)
        path = f"{parent_path}/{name}"
        if path in self.queries[container_id]:
            raise ConflictError(f"Folder '{path}' already exists", 409)
        self.add_query(container_id, path, folder=True)
        return QueryItem(name=name, path=path, is_folder=True)

    def create_query(
        self, container_id: str, parent_path: str, query: QueryItem
    ) -> QueryItem:
        self._write("create_query", container_id, parent_path, query.name, query.wiql)
        self._check_query_parent(container_id, parent_path)
        path = f"{parent_path}/{query.name}"
        if path in self.queries[container_id]:
            raise ConflictError(f"Query '{path}' already exists", 409)
        self.add_query(
            container_id, path, wiql=query.wiql, query_type=query.query_type
        )
        return QueryItem(
            name=query.name, path=path, wiql=query.wiql, query_type=query.query_type
        )

    def update_query(
        self,
        container_id: str,
        query_id: str,
        *,
        name: str | None = None,
        wiql: str | None = None,
        query_type: str | None = None,
    ) -> None:
        changes = {
            key: value
            for key, value in (
                ("name", name),
                ("wiql", wiql),
                ("query_type", query_type),
            )
            if value is not None
        }
        self._write("update_query", container_id, query_id, changes)
        for data in self.queries[container_id].values():
            if data["id"] == query_id:
                changes.pop("name", None)
                data.update(changes)
                return
        raise NotFoundError(f"Query {query_id} not found")

    # ------------------------------------------------------------------
    # Feature states
    # ------------------------------------------------------------------

    def get_feature_state(self, container_id: str, feature_id: str) -> bool:
        self._maybe_fail("get_feature_state", container_id, feature_id)
        return self.features.get((container_id, feature_id), True)

    def set_feature_state(self, container_id: str, feature_id: str, enabled: bool) -> None:
        self._write("set_feature_state", container_id, feature_id, enabled)
        self.features[(container_id, feature_id)] = enabled

    # ------------------------------------------------------------------
    # Wiki
    # ------------------------------------------------------------------

    def list_wiki_pages(self, container_id: str) -> list[WikiPage]:
        return [
            WikiPage(path=path, order=order)
            for path, (order, _) in self.wiki[container_id].items()
        ]

    def get_wiki_page_content(self, container_id: str, path: str) -> str:
        if path not in self.wiki[container_id]:
            raise NotFoundError(f"Wiki page '{path}' not found")
        return self.wiki[container_id][path][1]

    def put_wiki_page(self, container_id: str, path: str, content: str) -> None:
        self._write("put_wiki_page", container_id, path, content)
        order = len(self.wiki[container_id])
        self.wiki[container_id][path] = (order, content)

    # ------------------------------------------------------------------
    # Repositories, teams, pipelines, dashboards
    # ------------------------------------------------------------------

    def list_repositories(self, container_id: str) -> list[dict[str, Any]]:
        return list(self.repositories[container_id])

    def create_repository(self, container_id: str, name: str) -> dict[str, Any]:
        self._write("create_repository", container_id, name)
        repo = {"id": f"repo-{next(self._ids)}", "name": name, "remoteUrl": f"{ORG_URL}/_git/{name}"}
        self.repositories[container_id].append(repo)
        return repo

    def import_repository(
        self, container_id: str, repository_id: str, source_url: str
    ) -> dict[str, Any]:
        self._write("import_repository", container_id, repository_id, source_url)
        return {"status": "queued"}

    def list_teams(self, container_id: str) -> list[dict[str, Any]]:
        return list(self.teams[container_id])

    def create_team(
        self, container_id: str, name: str, description: str = ""
    ) -> dict[str, Any]:
        self._write("create_team", container_id, name, description)
        team = {"id": f"team-{next(self._ids)}", "name": name, "description": description}
        self.teams[container_id].append(team)
        return team

    def list_build_definitions(self, container_id: str) -> list[dict[str, Any]]:
        return [{"id": d["id"], "name": d["name"]} for d in self.build_definitions[container_id]]

    def get_build_definition(self, container_id: str, definition_id: int) -> dict[str, Any]:
        for d in self.build_definitions[container_id]:
            if d["id"] == definition_id:
                return dict(d)
        raise NotFoundError(f"Build definition {definition_id} not found")

    def create_build_definition(
        self, container_id: str, definition: dict[str, Any]
    ) -> dict[str, Any]:
        self._write("create_build_definition", container_id, definition)
        created = {**definition, "id": next(self._ids)}
        self.build_definitions[container_id].append(created)
        return created

    def list_release_definitions(self, container_id: str) -> list[dict[str, Any]]:
        return [{"id": d["id"], "name": d["name"]} for d in self.release_definitions[container_id]]

    def get_release_definition(self, container_id: str, definition_id: int) -> dict[str, Any]:
        for d in self.release_definitions[container_id]:
            if d["id"] == definition_id:
                return dict(d)
        raise NotFoundError(f"Release definition {definition_id} not found")

    def create_release_definition(
        self, container_id: str, definition: dict[str, Any]
    ) -> dict[str, Any]:
        self._write("create_release_definition", container_id, definition)
        created = {**definition, "id": next(self._ids)}
        self.release_definitions[container_id].append(created)
        return created

    def list_dashboards(self, container_id: str) -> list[dict[str, Any]]:
        return [{"id": d["id"], "name": d["name"]} for d in self.dashboards[container_id]]

    def get_dashboard(self, container_id: str, dashboard_id: str) -> dict[str, Any]:
        for d in self.dashboards[container_id]:
            if d["id"] == dashboard_id:
                return dict(d)
        raise NotFoundError(f"Dashboard {dashboard_id} not found")

    def create_dashboard(
        self, container_id: str, dashboard: dict[str, Any]
    ) -> dict[str, Any]:
        self._write("create_dashboard", container_id, dashboard)
        created = {**dashboard, "id": f"dash-{next(self._ids)}"}
        self.dashboards[container_id].append(created)
        return created


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        organization_url=ORG_URL,
        access_token="test-pat",
        insecure=False,
    )


@pytest.fixture
def mock_ado_client(mock_config):
    """Create a mock AdoClient instance for testing."""
    from ado_replicator.core.client import AdoClient

    client = MagicMock(spec=AdoClient)
    client.config = mock_config
    return client


@pytest.fixture
def fake_client():
    """An empty in-memory organization."""
    return FakeClient()


@pytest.fixture
def org(fake_client):
    """In-memory organization with a Source and a Target project."""
    fake_client.add_project("Source", "src-id", description="Main project")
    fake_client.add_project("Target", "tgt-id")
    return fake_client
