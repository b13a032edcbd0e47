import json
from unittest.mock import Mock, patch

import pytest
import requests

from ado_replicator.config import Config
from ado_replicator.core.client import WORK_ITEM_BATCH_SIZE, AdoClient
from ado_replicator.core.errors import ConflictError, NotFoundError, UpstreamError
from ado_replicator.core.models import NodeKind, QueryItem


def _response(status=200, payload=None, headers=None, content=b""):
    """Build a mock requests.Response."""
    response = Mock()
    response.status_code = status
    response.headers = headers or {}
    response.content = content
    response.reason = "Reason"
    if payload is None:
        response.json.side_effect = ValueError("no json")
        response.text = ""
    else:
        response.json.return_value = payload
        response.text = json.dumps(payload)
    return response


@pytest.fixture
def client(mock_config):
    return AdoClient(mock_config)


@pytest.fixture
def mock_request():
    with patch("ado_replicator.core.client.requests.Session.request") as mock:
        yield mock


def _call(mock_request, index=0):
    """Return (method, url, kwargs) of the index-th request."""
    args, kwargs = mock_request.call_args_list[index]
    return args[0], args[1], kwargs


# ---------------------------------------------------------------------------
# Session and URLs
# ---------------------------------------------------------------------------


def test_session_uses_token_as_basic_password(client):
    """The access token travels as the password of basic auth."""
    assert client.session.auth == ("", "test-pat")
    assert client.session.verify
    assert client.session.headers["Accept"] == "application/json"


def test_session_insecure():
    config = Config(
        organization_url="https://tfs.local/tfs/Default",
        access_token="pat",
        insecure=True,
    )
    assert not AdoClient(config).session.verify


def test_session_is_reused_per_thread(client):
    assert client.session is client.session


@pytest.mark.parametrize(
    "org_url, expected",
    [
        ("https://dev.azure.com/contoso", "https://vssps.dev.azure.com/contoso"),
        ("https://contoso.visualstudio.com", "https://contoso.vssps.visualstudio.com"),
        ("https://tfs.local/tfs/Default", "https://tfs.local/tfs/Default"),
    ],
)
def test_service_url(org_url, expected):
    client = AdoClient(Config(organization_url=org_url, access_token="pat"))
    assert client._service_url("vssps") == expected


def test_for_organization_shares_settings(mock_config):
    other = AdoClient.for_organization(
        mock_config, "https://dev.azure.com/fabrikam", None
    )
    assert other.base_url == "https://dev.azure.com/fabrikam"
    assert other.config.access_token == "test-pat"


# ---------------------------------------------------------------------------
# Transport and error mapping
# ---------------------------------------------------------------------------


def test_request_adds_api_version_and_timeout(client, mock_request):
    mock_request.return_value = _response(payload={"value": []})

    client.list_containers()

    method, url, kwargs = _call(mock_request)
    assert method == "GET"
    assert url == "https://dev.azure.com/contoso/_apis/projects"
    assert kwargs["params"]["api-version"] == "7.1"
    assert kwargs["timeout"] == (10, 60)


def test_json_body_is_encoded(client, mock_request):
    mock_request.return_value = _response(payload={"id": "t1", "name": "Ops"})

    client.create_team("p1", "Ops", "Operations")

    _, url, kwargs = _call(mock_request)
    assert url.endswith("/_apis/projects/p1/teams")
    assert kwargs["headers"]["Content-Type"] == "application/json"
    assert json.loads(kwargs["data"]) == {"name": "Ops", "description": "Operations"}


def test_sign_in_page_is_auth_failure(client, mock_request):
    mock_request.return_value = _response(status=203)

    with pytest.raises(UpstreamError, match="Authentication failed") as exc_info:
        client.list_containers()
    assert exc_info.value.status_code == 203


def test_404_raises_not_found(client, mock_request):
    mock_request.return_value = _response(status=404, payload={"message": "gone"})

    with pytest.raises(NotFoundError, match="gone"):
        client.get_container("missing")


def test_409_raises_conflict(client, mock_request):
    mock_request.return_value = _response(
        status=409, payload={"message": "already exists"}
    )

    with pytest.raises(ConflictError) as exc_info:
        client.create_query_folder("p1", "Shared Queries", "Team")
    assert isinstance(exc_info.value, UpstreamError)
    assert exc_info.value.status_code == 409


@pytest.mark.parametrize("status", [401, 403])
def test_auth_statuses_raise_permission_denied(client, mock_request, status):
    mock_request.return_value = _response(status=status, payload={"message": "no"})

    with pytest.raises(UpstreamError, match=f"Permission denied \\({status}\\)"):
        client.list_containers()


def test_server_error_uses_plain_text_body(client, mock_request):
    response = _response(status=500)
    response.text = "Internal failure"
    mock_request.return_value = response

    with pytest.raises(UpstreamError, match="returned 500: Internal failure") as exc_info:
        client.list_containers()
    assert exc_info.value.status_code == 500


def test_transport_error_wrapped(client, mock_request):
    mock_request.side_effect = requests.ConnectionError("refused")

    with pytest.raises(UpstreamError, match="refused") as exc_info:
        client.list_containers()
    assert exc_info.value.status_code is None


def test_continuation_tokens_followed(client, mock_request):
    mock_request.side_effect = [
        _response(
            payload={"value": [{"id": "a", "name": "A"}]},
            headers={"x-ms-continuationtoken": "next"},
        ),
        _response(payload={"value": [{"id": "b", "name": "B"}]}),
    ]

    projects = client.list_containers()

    assert [p.name for p in projects] == ["A", "B"]
    assert mock_request.call_count == 2
    assert _call(mock_request, 1)[2]["params"]["continuationToken"] == "next"


def test_validate_credential(client, mock_request):
    mock_request.return_value = _response(payload={"value": []})
    assert client.validate_credential() is True

    mock_request.return_value = _response(status=401, payload={"message": "bad"})
    assert client.validate_credential() is False


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def test_get_container_reads_process_template(client, mock_request):
    mock_request.return_value = _response(
        payload={
            "id": "p1",
            "name": "Source",
            "description": "Main",
            "capabilities": {"processTemplate": {"templateTypeId": "agile"}},
        }
    )

    project = client.get_container("Source")

    assert project.id == "p1"
    assert project.process_template_id == "agile"
    assert _call(mock_request)[2]["params"]["includeCapabilities"] == "true"


def test_create_container_uses_default_template(client, mock_request):
    mock_request.side_effect = [
        _response(
            payload={
                "value": [
                    {"id": "basic", "isDefault": False},
                    {"id": "agile", "isDefault": True},
                ]
            }
        ),
        _response(payload={"id": "op-1", "status": "queued"}),
    ]

    operation_id = client.create_container("Copy", "desc")

    assert operation_id == "op-1"
    body = json.loads(_call(mock_request, 1)[2]["data"])
    assert body["capabilities"]["processTemplate"]["templateTypeId"] == "agile"
    assert body["capabilities"]["versioncontrol"]["sourceControlType"] == "Git"
    assert body["visibility"] == "private"


def test_create_container_without_templates(client, mock_request):
    mock_request.return_value = _response(payload={"value": []})
    with pytest.raises(UpstreamError, match="No process template"):
        client.create_container("Copy")


@patch("ado_replicator.core.client.time.sleep")
def test_wait_for_operation_polls_until_done(mock_sleep, client, mock_request):
    mock_request.side_effect = [
        _response(payload={"status": "inProgress"}),
        _response(payload={"status": "succeeded"}),
    ]

    client.wait_for_operation("op-1", poll_interval=0.5)

    assert mock_request.call_count == 2
    mock_sleep.assert_called_once_with(0.5)


def test_wait_for_operation_failure(client, mock_request):
    mock_request.return_value = _response(
        payload={"status": "failed", "resultMessage": "name taken"}
    )
    with pytest.raises(UpstreamError, match="failed: name taken"):
        client.wait_for_operation("op-1")


@patch("ado_replicator.core.client.time.sleep")
def test_wait_for_operation_timeout(mock_sleep, client, mock_request):
    mock_request.return_value = _response(payload={"status": "inProgress"})
    with pytest.raises(UpstreamError, match="did not finish within 0s"):
        client.wait_for_operation("op-1", timeout=0)


# ---------------------------------------------------------------------------
# Work items
# ---------------------------------------------------------------------------


def _work_item(wid, title="Item", wtype="Task", **fields):
    return {
        "id": wid,
        "fields": {"System.Title": title, "System.WorkItemType": wtype, **fields},
        "relations": [],
    }


def test_list_work_items_runs_wiql_then_fetches(client, mock_request):
    mock_request.side_effect = [
        _response(payload={"workItems": [{"id": 1}, {"id": 2}]}),
        _response(
            payload={
                "value": [
                    _work_item(1, "Epic", "Epic"),
                    _work_item(
                        2,
                        "Story",
                        "User Story",
                        **{
                            "System.Parent": 1,
                            "System.AssignedTo": {"uniqueName": "ann@contoso.com"},
                        },
                    ),
                ]
            }
        ),
    ]

    items = client.list_work_items("p1")

    assert [wi.id for wi in items] == [1, 2]
    assert items[1].parent_id == 1
    assert items[1].assigned_to == "ann@contoso.com"
    method, url, kwargs = _call(mock_request)
    assert method == "POST"
    assert url.endswith("/p1/_apis/wit/wiql")
    assert "@project" in json.loads(kwargs["data"])["query"]
    params = _call(mock_request, 1)[2]["params"]
    assert params["ids"] == "1,2"
    assert params["$expand"] == "relations"


def test_get_work_items_batches(client, mock_request):
    mock_request.return_value = _response(payload={"value": []})
    client.get_work_items("p1", list(range(1, WORK_ITEM_BATCH_SIZE + 51)))
    assert mock_request.call_count == 2


def test_get_work_items_skips_omitted(client, mock_request):
    mock_request.return_value = _response(payload={"value": [_work_item(1), None]})
    assert [wi.id for wi in client.get_work_items("p1", [1, 999])] == [1]


def test_create_work_item_sends_json_patch(client, mock_request):
    mock_request.return_value = _response(payload=_work_item(7, "Bug A", "Bug"))
    ops = [{"op": "add", "path": "/fields/System.Title", "value": "Bug A"}]

    item = client.create_work_item("p1", "User Story", ops)

    assert item.id == 7
    method, url, kwargs = _call(mock_request)
    assert method == "POST"
    assert url.endswith("/p1/_apis/wit/workitems/$User%20Story")
    assert kwargs["headers"]["Content-Type"] == "application/json-patch+json"
    assert json.loads(kwargs["data"]) == ops


def test_update_work_item_patches(client, mock_request):
    mock_request.return_value = _response(payload=_work_item(7))
    client.update_work_item("p1", 7, [])
    method, url, _ = _call(mock_request)
    assert method == "PATCH"
    assert url.endswith("/p1/_apis/wit/workitems/7")


def test_work_item_url(client):
    assert client.work_item_url(5) == (
        "https://dev.azure.com/contoso/_apis/wit/workItems/5"
    )


def test_comments_use_preview_version(client, mock_request):
    mock_request.return_value = _response(
        payload={"comments": [{"text": "first"}, {"text": "second"}]}
    )
    assert client.list_comments("p1", 3) == ["first", "second"]
    assert _call(mock_request)[2]["params"]["api-version"] == "7.1-preview.4"


def test_attachment_round_trip_requests(client, mock_request):
    mock_request.side_effect = [
        _response(content=b"bytes"),
        _response(payload={"id": "att-2", "url": "https://x/att-2"}),
    ]

    content = client.get_attachment_content("p1", "att-1")
    ref = client.create_attachment("p2", content, "log.txt")

    assert content == b"bytes"
    assert ref.id == "att-2"
    _, url, kwargs = _call(mock_request, 1)
    assert url.endswith("/p2/_apis/wit/attachments")
    assert kwargs["params"]["fileName"] == "log.txt"
    assert kwargs["data"] == b"bytes"


# ---------------------------------------------------------------------------
# Classification nodes
# ---------------------------------------------------------------------------


def test_list_classification_nodes_builds_paths(client, mock_request):
    mock_request.return_value = _response(
        payload={
            "name": "Source",
            "children": [
                {"name": "Team A", "children": [{"name": "Backend"}]},
                {"name": "Team B"},
            ],
        }
    )

    root = client.list_classification_nodes("p1", NodeKind.AREA)

    assert [n.path for n in root.walk()] == [
        "Team A",
        "Team A\\Backend",
        "Team B",
    ]
    assert _call(mock_request)[1].endswith("/wit/classificationnodes/Areas")


def test_create_classification_node_under_parent(client, mock_request):
    mock_request.return_value = _response(payload={"name": "Sprint 2"})

    node = client.create_classification_node(
        "p1", NodeKind.ITERATION, "Release 1", "Sprint 2",
        {"startDate": "2024-01-01"},
    )

    assert node.path == "Release 1\\Sprint 2"
    _, url, kwargs = _call(mock_request)
    assert url.endswith("/wit/classificationnodes/Iterations/Release%201")
    assert json.loads(kwargs["data"]) == {
        "name": "Sprint 2",
        "attributes": {"startDate": "2024-01-01"},
    }


# ---------------------------------------------------------------------------
# Security groups
# ---------------------------------------------------------------------------


def test_list_security_groups_with_members(client, mock_request):
    mock_request.side_effect = [
        _response(payload={"value": "scp.p1"}),
        _response(
            payload={
                "value": [
                    {
                        "descriptor": "vssgp.contrib",
                        "displayName": "Contributors",
                        "principalName": "[Source]\\Contributors",
                    }
                ]
            }
        ),
        _response(payload={"value": [{"memberDescriptor": "aad.ann"}]}),
        _response(
            payload={
                "value": {
                    "aad.ann": {
                        "principalName": "ann@contoso.com",
                        "displayName": "Ann",
                    }
                }
            }
        ),
    ]

    [group] = client.list_security_groups("p1")

    assert group.display_name == "Contributors"
    assert [m.principal_name for m in group.members] == ["ann@contoso.com"]
    assert _call(mock_request)[1].startswith("https://vssps.dev.azure.com/contoso/")
    assert _call(mock_request, 1)[2]["params"]["scopeDescriptor"] == "scp.p1"


def test_add_group_member_by_principal(client, mock_request):
    mock_request.return_value = _response(payload={})
    client.add_group_member("vssgp.contrib", "bob@contoso.com")
    _, url, kwargs = _call(mock_request)
    assert url.endswith("/_apis/graph/users")
    assert kwargs["params"]["groupDescriptors"] == "vssgp.contrib"
    assert json.loads(kwargs["data"]) == {"principalName": "bob@contoso.com"}


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def test_list_queries_expands_deep_folders(client, mock_request):
    mock_request.side_effect = [
        _response(
            payload={
                "value": [
                    {
                        "id": "shared",
                        "name": "Shared Queries",
                        "path": "Shared Queries",
                        "isFolder": True,
                        "children": [
                            {
                                "id": "deep",
                                "name": "Team",
                                "path": "Shared Queries/Team",
                                "isFolder": True,
                                "hasChildren": True,
                            }
                        ],
                    }
                ]
            }
        ),
        _response(
            payload={
                "id": "deep",
                "name": "Team",
                "path": "Shared Queries/Team",
                "isFolder": True,
                "children": [
                    {
                        "id": "q1",
                        "name": "Open bugs",
                        "path": "Shared Queries/Team/Open bugs",
                        "wiql": "SELECT [System.Id] FROM WorkItems",
                    }
                ],
            }
        ),
    ]

    [shared] = client.list_queries("p1")

    [team] = shared.children
    assert team.children[0].name == "Open bugs"
    assert _call(mock_request, 1)[1].endswith("/wit/queries/deep")


def test_create_query_posts_wiql(client, mock_request):
    mock_request.return_value = _response(
        payload={"id": "q2", "name": "Mine", "path": "Shared Queries/Mine"}
    )
    query = QueryItem(
        id="q1", name="Mine", path="Shared Queries/Mine", wiql="SELECT 1",
        query_type="flat",
    )

    client.create_query("p1", "Shared Queries", query)

    _, url, kwargs = _call(mock_request)
    assert url.endswith("/wit/queries/Shared%20Queries")
    assert json.loads(kwargs["data"]) == {
        "name": "Mine",
        "wiql": "SELECT 1",
        "queryType": "flat",
    }


def test_update_query_patches_only_given_fields(client, mock_request):
    mock_request.return_value = _response(payload={})

    client.update_query("p1", "q1", query_type="tree")

    method, url, kwargs = _call(mock_request)
    assert method == "PATCH"
    assert url.endswith("/wit/queries/q1")
    assert json.loads(kwargs["data"]) == {"queryType": "tree"}


def test_update_query_without_changes_sends_nothing(client, mock_request):
    client.update_query("p1", "q1")
    mock_request.assert_not_called()


# ---------------------------------------------------------------------------
# Feature states and wiki
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("state, expected", [("enabled", True), ("disabled", False)])
def test_get_feature_state(client, mock_request, state, expected):
    mock_request.return_value = _response(payload={"state": state})
    assert client.get_feature_state("p1", "ms.vss-work.agile") is expected


def test_set_feature_state_body(client, mock_request):
    mock_request.return_value = _response(payload={})
    client.set_feature_state("p1", "ms.vss-build.pipelines", False)
    body = json.loads(_call(mock_request)[2]["data"])
    assert body["state"] == 0
    assert body["scope"]["settingScope"] == "project"


def test_list_wiki_pages_depth_first(client, mock_request):
    mock_request.side_effect = [
        _response(payload={"value": [{"id": "w1", "type": "projectWiki"}]}),
        _response(
            payload={
                "path": "/",
                "subPages": [
                    {"path": "/Home", "subPages": [{"path": "/Home/Setup"}]},
                    {"path": "/FAQ", "order": 1},
                ],
            }
        ),
    ]

    pages = client.list_wiki_pages("p1")

    assert [p.path for p in pages] == ["/Home", "/Home/Setup", "/FAQ"]


def test_list_wiki_pages_without_wiki(client, mock_request):
    mock_request.return_value = _response(payload={"value": []})
    assert client.list_wiki_pages("p1") == []


def test_put_wiki_page_sends_etag_for_existing_page(client, mock_request):
    mock_request.side_effect = [
        _response(payload={"value": [{"id": "w1", "type": "projectWiki"}]}),
        _response(payload={"content": "old"}, headers={"ETag": '"abc"'}),
        _response(payload={}),
    ]

    client.put_wiki_page("p1", "/Home", "new")

    method, _, kwargs = _call(mock_request, 2)
    assert method == "PUT"
    assert kwargs["headers"]["If-Match"] == '"abc"'
    assert json.loads(kwargs["data"]) == {"content": "new"}


def test_put_wiki_page_new_page(client, mock_request):
    mock_request.side_effect = [
        _response(payload={"value": [{"id": "w1", "type": "projectWiki"}]}),
        _response(status=404, payload={"message": "no page"}),
        _response(payload={}),
    ]

    client.put_wiki_page("p1", "/New", "text")

    _, _, kwargs = _call(mock_request, 2)
    assert "If-Match" not in kwargs["headers"]


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------


def test_release_definitions_use_vsrm_host(client, mock_request):
    mock_request.return_value = _response(payload={"value": []})
    client.list_release_definitions("p1")
    assert _call(mock_request)[1] == (
        "https://vsrm.dev.azure.com/contoso/p1/_apis/release/definitions"
    )


def test_dashboards_use_preview_version(client, mock_request):
    mock_request.return_value = _response(payload={"value": []})
    client.list_dashboards("p1")
    assert _call(mock_request)[2]["params"]["api-version"] == "7.1-preview.3"


@pytest.mark.live
def test_live_list_containers():
    """Smoke test against a real organization (needs --run-live)."""
    import os

    config = Config(
        organization_url=os.environ["ADO_ORGANIZATION_URL"],
        access_token=os.environ["ADO_ACCESS_TOKEN"],
    )
    assert isinstance(AdoClient(config).list_containers(), list)
