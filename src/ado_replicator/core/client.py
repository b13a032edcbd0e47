import json
import logging
import threading
import time
from typing import Any
from urllib.parse import quote, urlparse

import requests

from ..config import Config, with_organization
from .errors import ConflictError, NotFoundError, ReplicatorError, UpstreamError
from .models import (
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

logger = logging.getLogger(__name__)

GRAPH_API_VERSION = "7.1-preview.1"
COMMENTS_API_VERSION = "7.1-preview.4"
DASHBOARD_API_VERSION = "7.1-preview.3"
FEATURE_API_VERSION = "7.1-preview.1"

# Work items per batch GET; the service rejects larger batches.
WORK_ITEM_BATCH_SIZE = 200


class AdoClient:
    """REST client for one organization.

    Each thread gets its own ``requests.Session`` authenticated with the
    access token.  HTTP failures are translated to ``NotFoundError``,
    ``ConflictError`` and ``UpstreamError``.
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.base_url = config.organization_url.rstrip("/")

    @classmethod
    def for_organization(
        cls, config: Config, organization_url: str, access_token: str | None
    ) -> "AdoClient":
        """Build a client for another organization sharing *config*'s settings."""
        return cls(with_organization(config, organization_url, access_token))

    @property
    def session(self) -> requests.Session:
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.auth = ("", self.config.access_token)
        session.verify = not self.config.insecure
        session.headers.update({"Accept": "application/json"})
        return session

    # ------------------------------------------------------------------
    # URL helpers
    # ------------------------------------------------------------------

    def _service_url(self, service: str) -> str:
        """Return the base URL of a sibling service host (vssps, vsrm).

        ``https://dev.azure.com/org`` becomes ``https://vssps.dev.azure.com/org``
        and ``https://org.visualstudio.com`` becomes
        ``https://org.vssps.visualstudio.com``.  On-premises servers host
        everything under the collection URL.
        """
        parsed = urlparse(self.base_url)
        host = parsed.hostname or ""
        if host == "dev.azure.com":
            return f"{parsed.scheme}://{service}.dev.azure.com{parsed.path}"
        if host.endswith(".visualstudio.com"):
            account = host.split(".", 1)[0]
            return f"{parsed.scheme}://{account}.{service}.visualstudio.com{parsed.path}"
        return self.base_url

    def _project_url(self, container_id: str, path: str) -> str:
        return f"{self.base_url}/{quote(container_id)}/_apis/{path}"

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
        api_version: str | None = None,
    ) -> requests.Response:
        """Send one request and map failures into the error taxonomy."""
        query = dict(params or {})
        query["api-version"] = api_version or self.config.api_version
        send_headers = dict(headers or {})
        body = data
        if json_body is not None:
            body = json.dumps(json_body).encode("utf-8")
            send_headers.setdefault("Content-Type", "application/json")

        session = self._get_session()
        try:
            response = session.request(
                method,
                url,
                params=query,
                data=body,
                headers=send_headers,
                timeout=(10, self.config.request_timeout),
            )
        except requests.RequestException as exc:
            raise UpstreamError(
                f"{method} {url} failed: {exc}"
            ) from exc

        logger.debug("%s %s -> %d", method, url, response.status_code)
        self._raise_for_status(method, url, response)
        return response

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text[:200] or response.reason or ""
        if isinstance(payload, dict):
            return str(payload.get("message") or payload)
        return str(payload)

    def _raise_for_status(
        self, method: str, url: str, response: requests.Response
    ) -> None:
        status = response.status_code
        # A sign-in page comes back as 203 when the token is rejected
        if status == 203:
            raise UpstreamError(
                "Authentication failed: access token rejected", status
            )
        if status < 400:
            return
        message = f"{method} {url} returned {status}: {self._error_message(response)}"
        if status == 404:
            raise NotFoundError(message)
        if status == 409:
            raise ConflictError(message, status)
        if status in (401, 403):
            raise UpstreamError(
                f"Permission denied ({status}): {self._error_message(response)}",
                status,
            )
        raise UpstreamError(message, status)

    def _get_json(self, url: str, **kwargs: Any) -> Any:
        return self._request("GET", url, **kwargs).json()

    def _get_value_list(self, url: str, **kwargs: Any) -> list[dict]:
        """GET a ``{"value": [...]}`` collection, following continuation tokens."""
        params = dict(kwargs.pop("params", None) or {})
        items: list[dict] = []
        while True:
            response = self._request("GET", url, params=params, **kwargs)
            items.extend(response.json().get("value", []))
            token = response.headers.get("x-ms-continuationtoken")
            if not token:
                return items
            params["continuationToken"] = token

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def list_containers(self) -> list[Container]:
        """List the projects of the organization."""
        data = self._get_value_list(f"{self.base_url}/_apis/projects")
        return [Container.from_api(p) for p in data]

    def get_container(self, container_id: str) -> Container:
        """Get a project by id or name, including its process template.

        Raises:
            NotFoundError: If the project does not exist.
        """
        data = self._get_json(
            f"{self.base_url}/_apis/projects/{quote(container_id)}",
            params={"includeCapabilities": "true"},
        )
        return Container.from_api(data)

    def validate_credential(self) -> bool:
        """Return True if the organization answers with the configured token."""
        try:
            self._request(
                "GET",
                f"{self.base_url}/_apis/projects",
                params={"$top": 1},
            )
        except ReplicatorError as exc:
            logger.warning(
                "Credential check failed for %s: %s", self.base_url, exc
            )
            return False
        return True

    def list_process_templates(self) -> list[dict[str, Any]]:
        return self._get_value_list(f"{self.base_url}/_apis/process/processes")

    def create_container(
        self,
        name: str,
        description: str = "",
        process_template_id: str | None = None,
        visibility: str = "private",
    ) -> str:
        """Queue creation of a Git project.

        Returns:
            The id of the asynchronous operation; pass it to
            ``wait_for_operation``.
        """
        if process_template_id is None:
            templates = self.list_process_templates()
            default = next(
                (t for t in templates if t.get("isDefault")),
                templates[0] if templates else None,
            )
            if default is None:
                raise UpstreamError("No process template available")
            process_template_id = default["id"]

        body = {
            "name": name,
            "description": description,
            "visibility": visibility,
            "capabilities": {
                "versioncontrol": {"sourceControlType": "Git"},
                "processTemplate": {"templateTypeId": process_template_id},
            },
        }
        data = self._request(
            "POST", f"{self.base_url}/_apis/projects", json_body=body
        ).json()
        return data["id"]

    def wait_for_operation(
        self, operation_id: str, timeout: int = 300, poll_interval: float = 2.0
    ) -> None:
        """Poll an operation until it succeeds.

        Raises:
            UpstreamError: If the operation fails or does not finish in time.
        """
        deadline = time.monotonic() + timeout
        while True:
            data = self._get_json(
                f"{self.base_url}/_apis/operations/{quote(operation_id)}"
            )
            status = (data.get("status") or "").lower()
            if status == "succeeded":
                return
            if status in ("failed", "cancelled"):
                raise UpstreamError(
                    f"Operation {operation_id} {status}: {data.get('resultMessage', '')}"
                )
            if time.monotonic() >= deadline:
                raise UpstreamError(
                    f"Operation {operation_id} did not finish within {timeout}s"
                )
            time.sleep(poll_interval)

    # ------------------------------------------------------------------
    # Work items
    # ------------------------------------------------------------------

    def list_work_items(self, container_id: str) -> list[WorkItem]:
        """Return every work item of the project, relations included."""
        data = self._request(
            "POST",
            self._project_url(container_id, "wit/wiql"),
            json_body={
                "query": (
                    "SELECT [System.Id] FROM WorkItems "
                    "WHERE [System.TeamProject] = @project "
                    "ORDER BY [System.Id]"
                )
            },
        ).json()
        ids = [ref["id"] for ref in data.get("workItems", [])]
        return self.get_work_items(container_id, ids)

    def get_work_items(
        self, container_id: str, ids: list[int]
    ) -> list[WorkItem]:
        """Fetch work items by id; unknown ids are omitted."""
        items: list[WorkItem] = []
        for start in range(0, len(ids), WORK_ITEM_BATCH_SIZE):
            batch = ids[start : start + WORK_ITEM_BATCH_SIZE]
            data = self._get_value_list(
                self._project_url(container_id, "wit/workitems"),
                params={
                    "ids": ",".join(str(i) for i in batch),
                    "$expand": "relations",
                    "errorPolicy": "omit",
                },
            )
            items.extend(WorkItem.from_api(wi) for wi in data if wi)
        return items

    def create_work_item(
        self,
        container_id: str,
        work_item_type: str,
        operations: list[dict[str, Any]],
    ) -> WorkItem:
        """Create a work item from JSON-patch *operations*."""
        data = self._request(
            "POST",
            self._project_url(
                container_id, f"wit/workitems/${quote(work_item_type)}"
            ),
            data=json.dumps(operations).encode("utf-8"),
            headers={"Content-Type": "application/json-patch+json"},
        ).json()
        return WorkItem.from_api(data)

    def update_work_item(
        self,
        container_id: str,
        work_item_id: int,
        operations: list[dict[str, Any]],
    ) -> WorkItem:
        """Apply JSON-patch *operations* to an existing work item."""
        data = self._request(
            "PATCH",
            self._project_url(container_id, f"wit/workitems/{work_item_id}"),
            data=json.dumps(operations).encode("utf-8"),
            headers={"Content-Type": "application/json-patch+json"},
        ).json()
        return WorkItem.from_api(data)

    def work_item_url(self, work_item_id: int) -> str:
        """URL used as the target of work item link relations."""
        return f"{self.base_url}/_apis/wit/workItems/{work_item_id}"

    def list_work_item_types(self, container_id: str) -> list[str]:
        data = self._get_value_list(
            self._project_url(container_id, "wit/workitemtypes")
        )
        return [t["name"] for t in data]

    def list_comments(self, container_id: str, work_item_id: int) -> list[str]:
        data = self._get_json(
            self._project_url(
                container_id, f"wit/workItems/{work_item_id}/comments"
            ),
            api_version=COMMENTS_API_VERSION,
        )
        return [c.get("text", "") for c in data.get("comments", [])]

    def add_comment(
        self, container_id: str, work_item_id: int, text: str
    ) -> None:
        self._request(
            "POST",
            self._project_url(
                container_id, f"wit/workItems/{work_item_id}/comments"
            ),
            json_body={"text": text},
            api_version=COMMENTS_API_VERSION,
        )

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    def get_attachment_content(
        self, container_id: str, attachment_id: str
    ) -> bytes:
        response = self._request(
            "GET",
            self._project_url(
                container_id, f"wit/attachments/{quote(attachment_id)}"
            ),
            params={"download": "true"},
            headers={"Accept": "application/octet-stream"},
        )
        return response.content

    def create_attachment(
        self, container_id: str, content: bytes, file_name: str
    ) -> AttachmentReference:
        data = self._request(
            "POST",
            self._project_url(container_id, "wit/attachments"),
            params={"fileName": file_name},
            data=content,
            headers={"Content-Type": "application/octet-stream"},
        ).json()
        return AttachmentReference(id=data["id"], url=data["url"])

    # ------------------------------------------------------------------
    # Classification nodes
    # ------------------------------------------------------------------

    def list_classification_nodes(
        self, container_id: str, kind: NodeKind
    ) -> ClassificationNode:
        """Return the root node of the area or iteration tree."""
        data = self._get_json(
            self._project_url(
                container_id, f"wit/classificationnodes/{kind.value}"
            ),
            params={"$depth": 20},
        )
        return ClassificationNode.from_api(data, kind)

    def create_classification_node(
        self,
        container_id: str,
        kind: NodeKind,
        parent_path: str,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> ClassificationNode:
        """Create *name* under the relative *parent_path* (``""`` for root)."""
        route = f"wit/classificationnodes/{kind.value}"
        if parent_path:
            route += "/" + quote(parent_path.replace("\\", "/"))
        body: dict[str, Any] = {"name": name}
        if attributes:
            body["attributes"] = attributes
        data = self._request(
            "POST", self._project_url(container_id, route), json_body=body
        ).json()
        return ClassificationNode.from_api(data, kind, parent_path)

    def rename_classification_node(
        self, container_id: str, kind: NodeKind, path: str, name: str
    ) -> None:
        route = f"wit/classificationnodes/{kind.value}/" + quote(
            path.replace("\\", "/")
        )
        self._request(
            "PATCH",
            self._project_url(container_id, route),
            json_body={"name": name},
        )

    # ------------------------------------------------------------------
    # Security groups
    # ------------------------------------------------------------------

    def list_security_groups(self, container_id: str) -> list[SecurityGroup]:
        """Return the project's groups with their direct members."""
        graph = self._service_url("vssps")
        scope = self._get_json(
            f"{graph}/_apis/graph/descriptors/{quote(container_id)}",
            api_version=GRAPH_API_VERSION,
        )["value"]
        groups = self._get_value_list(
            f"{graph}/_apis/graph/groups",
            params={"scopeDescriptor": scope},
            api_version=GRAPH_API_VERSION,
        )
        result: list[SecurityGroup] = []
        for group in groups:
            result.append(
                SecurityGroup(
                    descriptor=group["descriptor"],
                    display_name=group.get("displayName", ""),
                    principal_name=group.get("principalName", ""),
                    description=group.get("description") or "",
                    members=self._list_group_members(group["descriptor"]),
                )
            )
        return result

    def _list_group_members(self, group_descriptor: str) -> list[GroupMember]:
        graph = self._service_url("vssps")
        memberships = self._get_value_list(
            f"{graph}/_apis/graph/Memberships/{quote(group_descriptor)}",
            params={"direction": "down"},
            api_version=GRAPH_API_VERSION,
        )
        descriptors = [m["memberDescriptor"] for m in memberships]
        if not descriptors:
            return []
        lookup = self._request(
            "POST",
            f"{graph}/_apis/graph/subjectlookup",
            json_body={"lookupKeys": [{"descriptor": d} for d in descriptors]},
            api_version=GRAPH_API_VERSION,
        ).json()["value"]
        members = []
        for descriptor in descriptors:
            subject = lookup.get(descriptor, {})
            members.append(
                GroupMember(
                    descriptor=descriptor,
                    principal_name=subject.get("principalName", descriptor),
                    display_name=subject.get("displayName", ""),
                    mail_address=subject.get("mailAddress", "") or "",
                )
            )
        return members

    def add_group_member(self, group_descriptor: str, principal_name: str) -> None:
        """Add a user to a group by principal name, materializing the user."""
        graph = self._service_url("vssps")
        self._request(
            "POST",
            f"{graph}/_apis/graph/users",
            params={"groupDescriptors": group_descriptor},
            json_body={"principalName": principal_name},
            api_version=GRAPH_API_VERSION,
        )

    def remove_group_member(
        self, group_descriptor: str, member_descriptor: str
    ) -> None:
        graph = self._service_url("vssps")
        self._request(
            "DELETE",
            f"{graph}/_apis/graph/memberships/"
            f"{quote(member_descriptor)}/{quote(group_descriptor)}",
            api_version=GRAPH_API_VERSION,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_queries(self, container_id: str) -> list[QueryItem]:
        """Return the full query tree (top-level folders with descendants)."""
        data = self._get_value_list(
            self._project_url(container_id, "wit/queries"),
            params={"$depth": 2, "$expand": "all"},
        )
        return [
            QueryItem.from_api(self._expand_query(container_id, item))
            for item in data
        ]

    def _expand_query(self, container_id: str, item: dict) -> dict:
        # $depth is capped at 2; fetch deeper folders on demand
        if item.get("isFolder") and item.get("hasChildren") and "children" not in item:
            item = self._get_json(
                self._project_url(container_id, f"wit/queries/{item['id']}"),
                params={"$depth": 2, "$expand": "all"},
            )
        item = dict(item)
        item["children"] = [
            self._expand_query(container_id, child)
            for child in item.get("children", [])
        ]
        return item

    def create_query_folder(
        self, container_id: str, parent_path: str, name: str
    ) -> QueryItem:
        """Create a folder under *parent_path*.

        Raises:
            ConflictError: If the folder already exists.
        """
        data = self._request(
            "POST",
            self._project_url(container_id, f"wit/queries/{quote(parent_path)}"),
            json_body={"name": name, "isFolder": True},
        ).json()
        return QueryItem.from_api(data)

    def create_query(
        self, container_id: str, parent_path: str, query: QueryItem
    ) -> QueryItem:
        body: dict[str, Any] = {"name": query.name, "wiql": query.wiql}
        if query.query_type:
            body["queryType"] = query.query_type
        data = self._request(
            "POST",
            self._project_url(container_id, f"wit/queries/{quote(parent_path)}"),
            json_body=body,
        ).json()
        return QueryItem.from_api(data)

    def update_query(
        self,
        container_id: str,
        query_id: str,
        *,
        name: str | None = None,
        wiql: str | None = None,
        query_type: str | None = None,
    ) -> None:
        """PATCH the given fields of a saved query; ``None`` leaves a field as is.

        Visibility is not writable: it follows the folder the query lives in.
        """
        body: dict[str, Any] = {}
        if name is not None:
            body["name"] = name
        if wiql is not None:
            body["wiql"] = wiql
        if query_type is not None:
            body["queryType"] = query_type
        if not body:
            return
        self._request(
            "PATCH",
            self._project_url(container_id, f"wit/queries/{quote(query_id)}"),
            json_body=body,
        )

    # ------------------------------------------------------------------
    # Feature states (service visibility)
    # ------------------------------------------------------------------

    def _feature_url(self, container_id: str, feature_id: str) -> str:
        return (
            f"{self.base_url}/_apis/FeatureManagement/FeatureStates/host/project/"
            f"{quote(container_id)}/{quote(feature_id)}"
        )

    def get_feature_state(self, container_id: str, feature_id: str) -> bool:
        data = self._get_json(
            self._feature_url(container_id, feature_id),
            api_version=FEATURE_API_VERSION,
        )
        return data.get("state") in ("enabled", 1, "1")

    def set_feature_state(
        self, container_id: str, feature_id: str, enabled: bool
    ) -> None:
        self._request(
            "PATCH",
            self._feature_url(container_id, feature_id),
            json_body={
                "featureId": feature_id,
                "scope": {"settingScope": "project", "userScoped": False},
                "state": 1 if enabled else 0,
            },
            api_version=FEATURE_API_VERSION,
        )

    # ------------------------------------------------------------------
    # Wiki
    # ------------------------------------------------------------------

    def _project_wiki_id(self, container_id: str, create: bool = False) -> str | None:
        wikis = self._get_value_list(self._project_url(container_id, "wiki/wikis"))
        for wiki in wikis:
            if wiki.get("type") == "projectWiki":
                return wiki["id"]
        if not create:
            return None
        project = self.get_container(container_id)
        data = self._request(
            "POST",
            self._project_url(container_id, "wiki/wikis"),
            json_body={
                "name": f"{project.name}.wiki",
                "projectId": project.id,
                "type": "projectWiki",
            },
        ).json()
        return data["id"]

    def list_wiki_pages(self, container_id: str) -> list[WikiPage]:
        """Return all project wiki pages, parents before children."""
        wiki_id = self._project_wiki_id(container_id)
        if wiki_id is None:
            return []
        root = self._get_json(
            self._project_url(container_id, f"wiki/wikis/{wiki_id}/pages"),
            params={"path": "/", "recursionLevel": "full"},
        )
        pages: list[WikiPage] = []
        stack = list(reversed(root.get("subPages", [])))
        while stack:
            page = stack.pop()
            pages.append(WikiPage(path=page["path"], order=page.get("order", 0)))
            stack.extend(reversed(page.get("subPages", [])))
        return pages

    def get_wiki_page_content(self, container_id: str, path: str) -> str:
        wiki_id = self._project_wiki_id(container_id)
        if wiki_id is None:
            raise NotFoundError(f"Project {container_id} has no wiki")
        data = self._get_json(
            self._project_url(container_id, f"wiki/wikis/{wiki_id}/pages"),
            params={"path": path, "includeContent": "true"},
        )
        return data.get("content", "")

    def put_wiki_page(self, container_id: str, path: str, content: str) -> None:
        """Create or overwrite a wiki page, creating the project wiki if needed."""
        wiki_id = self._project_wiki_id(container_id, create=True)
        url = self._project_url(container_id, f"wiki/wikis/{wiki_id}/pages")
        headers: dict[str, str] = {}
        try:
            existing = self._request("GET", url, params={"path": path})
            etag = existing.headers.get("ETag")
            if etag:
                headers["If-Match"] = etag
        except NotFoundError:
            pass
        self._request(
            "PUT",
            url,
            params={"path": path},
            json_body={"content": content},
            headers=headers,
        )

    # ------------------------------------------------------------------
    # Repositories, teams, pipelines, dashboards
    # ------------------------------------------------------------------

    def list_repositories(self, container_id: str) -> list[dict[str, Any]]:
        return self._get_value_list(
            self._project_url(container_id, "git/repositories")
        )

    def create_repository(self, container_id: str, name: str) -> dict[str, Any]:
        return self._request(
            "POST",
            self._project_url(container_id, "git/repositories"),
            json_body={"name": name, "project": {"id": container_id}},
        ).json()

    def import_repository(
        self, container_id: str, repository_id: str, source_url: str
    ) -> dict[str, Any]:
        """Queue an import of *source_url* into an empty repository."""
        return self._request(
            "POST",
            self._project_url(
                container_id, f"git/repositories/{quote(repository_id)}/importRequests"
            ),
            json_body={"parameters": {"gitSource": {"url": source_url}}},
        ).json()

    def list_teams(self, container_id: str) -> list[dict[str, Any]]:
        return self._get_value_list(
            f"{self.base_url}/_apis/projects/{quote(container_id)}/teams"
        )

    def create_team(
        self, container_id: str, name: str, description: str = ""
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            f"{self.base_url}/_apis/projects/{quote(container_id)}/teams",
            json_body={"name": name, "description": description},
        ).json()

    def list_build_definitions(self, container_id: str) -> list[dict[str, Any]]:
        return self._get_value_list(
            self._project_url(container_id, "build/definitions")
        )

    def get_build_definition(
        self, container_id: str, definition_id: int
    ) -> dict[str, Any]:
        return self._get_json(
            self._project_url(container_id, f"build/definitions/{definition_id}")
        )

    def create_build_definition(
        self, container_id: str, definition: dict[str, Any]
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            self._project_url(container_id, "build/definitions"),
            json_body=definition,
        ).json()

    def _release_url(self, container_id: str, path: str) -> str:
        return f"{self._service_url('vsrm')}/{quote(container_id)}/_apis/{path}"

    def list_release_definitions(self, container_id: str) -> list[dict[str, Any]]:
        return self._get_value_list(
            self._release_url(container_id, "release/definitions")
        )

    def get_release_definition(
        self, container_id: str, definition_id: int
    ) -> dict[str, Any]:
        return self._get_json(
            self._release_url(container_id, f"release/definitions/{definition_id}")
        )

    def create_release_definition(
        self, container_id: str, definition: dict[str, Any]
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            self._release_url(container_id, "release/definitions"),
            json_body=definition,
        ).json()

    def list_dashboards(self, container_id: str) -> list[dict[str, Any]]:
        return self._get_value_list(
            self._project_url(container_id, "dashboard/dashboards"),
            api_version=DASHBOARD_API_VERSION,
        )

    def get_dashboard(self, container_id: str, dashboard_id: str) -> dict[str, Any]:
        return self._get_json(
            self._project_url(
                container_id, f"dashboard/dashboards/{quote(dashboard_id)}"
            ),
            api_version=DASHBOARD_API_VERSION,
        )

    def create_dashboard(
        self, container_id: str, dashboard: dict[str, Any]
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            self._project_url(container_id, "dashboard/dashboards"),
            json_body=dashboard,
            api_version=DASHBOARD_API_VERSION,
        ).json()
