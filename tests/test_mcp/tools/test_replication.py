"""Tests for the replication MCP tools.

Handlers run against the in-memory organization from conftest, with the
identity map stored under tmp_path.
"""

from unittest.mock import patch

import mcp.types as types
import pytest

from ado_replicator.config import Config
from ado_replicator.core.errors import ValidationError
from ado_replicator.core.models import NodeKind
from ado_replicator.mcp.progress import reset_progress, set_progress
from ado_replicator.mcp.tools.registry import ToolRegistry
from ado_replicator.mcp.tools.replication import (
    REPLICATION_SPECS,
    REPLICATION_TOOLS,
    _handle_analyze,
    _handle_apply,
    _handle_clone,
    _handle_clone_many,
    _handle_deploy,
    _handle_list_process_templates,
    _handle_list_projects,
    _handle_list_template_work_items,
    apply_selection,
)
from ado_replicator.replication.differ import DifferencesAnalyzer

from conftest import ORG_URL, FakeClient

PAIR = {"source_project_id": "src-id", "target_project_id": "tgt-id"}


def _text(result: types.CallToolResult) -> str:
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


@pytest.fixture
def client(tmp_path):
    fake = FakeClient(
        Config(
            organization_url=ORG_URL,
            access_token="pat",
            feature_settle_seconds=0,
            state_dir=str(tmp_path),
        )
    )
    fake.add_project("Source", "src-id", description="Main project")
    fake.add_project("Target", "tgt-id")
    return fake


@pytest.fixture
def populated(client):
    """Source with one difference in every category."""
    client.add_work_item("src-id", "Bug", "Login fails", work_item_id=1)
    client.add_work_item("src-id", "Task", "Write docs", work_item_id=2)
    client.add_node("src-id", NodeKind.AREA, "Web")
    client.add_node("src-id", NodeKind.ITERATION, "Sprint 1")
    client.add_group("src-id", "Contributors", ["ann@contoso.com"])
    client.add_group("tgt-id", "Contributors")
    client.wiki["src-id"]["/Home"] = (0, "# Home")
    client.add_query(
        "src-id",
        "Shared Queries/Open bugs",
        "SELECT [System.Id] FROM WorkItems WHERE [System.State] = 'Active'",
    )
    return client


def _analysis(client):
    return DifferencesAnalyzer(client).analyze("src-id", "tgt-id")


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


def test_every_tool_has_a_spec():
    assert [s.tool.name for s in REPLICATION_SPECS] == [t.name for t in REPLICATION_TOOLS]
    assert [t.name for t in REPLICATION_TOOLS] == [
        "list_projects",
        "analyze_differences",
        "apply_selective_updates",
        "clone_project",
        "clone_projects",
        "deploy_work_items",
        "list_template_work_items",
        "list_process_templates",
    ]


def test_read_only_scopes_expose_read_only_tools():
    registry = ToolRegistry(
        REPLICATION_SPECS,
        frozenset({"vso.project", "vso.work", "vso.graph", "vso.wiki"}),
    )
    tools = registry.list_tools()
    assert [t.name for t in tools] == [
        "list_projects",
        "analyze_differences",
        "list_template_work_items",
        "list_process_templates",
    ]
    assert all(t.annotations.readOnlyHint for t in tools)


# ---------------------------------------------------------------------------
# apply_selection
# ---------------------------------------------------------------------------


class TestApplySelection:
    def test_select_all_skips_wiki(self, populated):
        analysis = _analysis(populated)

        count = apply_selection(analysis, {"all": True})

        assert count == 6
        assert all(e.selected for e in analysis.work_items.new)
        assert all(e.selected for e in analysis.classification_nodes.entries)
        assert analysis.security_groups.groups[0].selected
        assert not analysis.wiki.pages[0].selected

    def test_select_by_identifier(self, populated):
        analysis = _analysis(populated)

        count = apply_selection(
            analysis,
            {
                "work_items": [2],
                "area_paths": ["Web"],
                "security_groups": ["contributors"],
                "wiki_pages": ["/Home"],
                "queries": ["Shared Queries/Open bugs"],
            },
        )

        assert count == 5
        assert [e.source_id for e in analysis.work_items.new if e.selected] == [2]
        assert [e.selected for e in analysis.classification_nodes.iteration_paths] == [False]
        assert analysis.wiki.pages[0].selected

    def test_empty_select(self, populated):
        analysis = _analysis(populated)
        assert apply_selection(analysis, {}) == 0


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def test_list_projects(client):
    result = await _handle_list_projects(client, {})

    assert _text(result).splitlines() == [
        "2 projects:",
        "  Source (src-id)",
        "  Target (tgt-id)",
    ]
    assert [p["id"] for p in result.structuredContent["projects"]] == ["src-id", "tgt-id"]


async def test_list_projects_empty():
    result = await _handle_list_projects(FakeClient(), {})
    assert _text(result) == "No projects found."


async def test_analyze(populated):
    result = await _handle_analyze(populated, dict(PAIR))

    text = _text(result)
    assert text.startswith("Differences from 'Source' to 'Target'")
    assert "[NEW] #1 Bug: Login fails" in text
    assert "+ ann@contoso.com" in text
    assert len(result.structuredContent["work_items"]["entries"]) == 2


async def test_analyze_requires_both_projects(client):
    with pytest.raises(ValidationError, match="target_project_id"):
        await _handle_analyze(client, {"source_project_id": "src-id"})


async def test_apply_with_select_reanalyzes(populated):
    result = await _handle_apply(populated, {**PAIR, "select": {"work_items": [1]}})

    assert result.structuredContent["work_items_cloned"] == 1
    assert "Selective update OK" in _text(result)
    titles = [wi.title for wi in populated.work_items["tgt-id"].values()]
    assert titles == ["Login fails"]


async def test_apply_with_returned_analysis(populated):
    analyzed = await _handle_analyze(populated, dict(PAIR))
    analysis = analyzed.structuredContent
    analysis["classification_nodes"]["area_paths"][0]["selected"] = True

    result = await _handle_apply(populated, {"analysis": analysis})

    assert result.structuredContent["area_paths_cloned"] == 1
    assert populated.writes_of("create_work_item") == []
    assert len(populated.writes_of("create_classification_node")) == 1


async def test_apply_without_selection_writes_nothing(populated):
    result = await _handle_apply(populated, dict(PAIR))

    assert result.structuredContent["success"] is True
    assert populated.writes == []


async def test_apply_requires_projects_or_analysis(client):
    with pytest.raises(ValidationError, match="Provide either 'analysis'"):
        await _handle_apply(client, {})


async def test_apply_rejects_malformed_analysis(client):
    with pytest.raises(ValidationError, match="Invalid DifferencesAnalysis"):
        await _handle_apply(client, {"analysis": {"work_items": []}})


async def test_clone(client):
    client.add_work_item("src-id", "Epic", "Platform", work_item_id=1)

    result = await _handle_clone(
        client, {"source_project_id": "src-id", "target_project_name": "Copy"}
    )

    assert _text(result).startswith("Project clone OK")
    assert result.structuredContent["success"] is True
    created = client.get_container("Copy")
    assert [wi.title for wi in client.work_items[created.id].values()] == ["Platform"]


async def test_clone_validates_arguments(client):
    with pytest.raises(ValidationError, match="target_project_name"):
        await _handle_clone(client, {"source_project_id": "src-id"})


async def test_clone_many(client):
    result = await _handle_clone_many(
        client,
        {
            "requests": [
                {"source_project_id": "src-id", "target_project_name": "Copy A"},
                {"source_project_id": "src-id", "target_project_name": "Copy B"},
            ]
        },
    )

    assert [r["success"] for r in result.structuredContent["results"]] == [True, True]
    assert _text(result).count("Project clone OK") == 2


async def test_clone_many_requires_requests(client):
    with pytest.raises(ValidationError, match="at least one"):
        await _handle_clone_many(client, {"requests": []})


async def test_deploy(client):
    client.add_work_item("src-id", "Bug", "Crash on save", work_item_id=5)

    result = await _handle_deploy(
        client,
        {
            "source_project_id": "src-id",
            "target_project_ids": ["tgt-id"],
            "work_item_ids": [5],
        },
    )

    assert _text(result).startswith("Deployed 1 work items to 1 of 1 projects")
    assert result.structuredContent["successful_projects"] == 1
    assert [wi.title for wi in client.work_items["tgt-id"].values()] == ["Crash on save"]


async def test_registry_translates_validation_errors(client):
    registry = ToolRegistry(REPLICATION_SPECS)

    result = await registry.call_tool("analyze_differences", {}, client)

    assert result.isError is True
    assert _text(result).startswith("Error (validation_error)")


async def test_clone_forwards_progress(client):
    lines = []
    token = set_progress(lines.append)
    try:
        await _handle_clone(
            client, {"source_project_id": "src-id", "target_project_name": "Copy"}
        )
    finally:
        reset_progress(token)

    assert lines[0] == "[1/12] Get Source Project Details: started"
    assert lines[-1] == "Completed 12 of 12 steps"


async def test_deploy_forwards_progress(client):
    client.add_work_item("src-id", "Bug", "Crash on save", work_item_id=5)
    lines = []
    token = set_progress(lines.append)
    try:
        await _handle_deploy(
            client,
            {
                "source_project_id": "src-id",
                "target_project_ids": ["tgt-id"],
                "work_item_ids": [5],
            },
        )
    finally:
        reset_progress(token)

    assert lines == [
        "Deploying 1 work items from 'Source' to 1 projects",
        "Target: 1 created, 0 updated, 0 skipped, 0 failed",
        "Deployment completed: 1/1 projects successful",
    ]


# ---------------------------------------------------------------------------
# Template work items and process templates
# ---------------------------------------------------------------------------


async def test_list_template_work_items(client):
    client.add_work_item("src-id", "Task", "Write docs", work_item_id=2, parent_id=1)
    client.add_work_item("src-id", "Epic", "Platform", work_item_id=1)

    result = await _handle_list_template_work_items(
        client, {"source_project_id": "Source"}
    )

    assert _text(result).splitlines()[:2] == [
        "2 work items:",
        "  #1 Epic: Platform [New]",
    ]
    items = result.structuredContent["work_items"]
    assert [wi["id"] for wi in items] == [1, 2]
    assert items[1]["parent_id"] == 1


async def test_list_template_work_items_filters_by_type(client):
    client.add_work_item("src-id", "Bug", "Crash", work_item_id=1)
    client.add_work_item("src-id", "Task", "Write docs", work_item_id=2)

    result = await _handle_list_template_work_items(
        client, {"source_project_id": "src-id", "work_item_type": "bug"}
    )

    assert [wi["title"] for wi in result.structuredContent["work_items"]] == ["Crash"]


async def test_list_template_work_items_requires_source(client):
    with pytest.raises(ValidationError, match="source_project_id"):
        await _handle_list_template_work_items(client, {})


async def test_list_process_templates(client):
    result = await _handle_list_process_templates(client, {})

    assert _text(result) == (
        "2 process templates:\n  Agile (agile-id) [default]\n  Scrum (scrum-id)"
    )
    assert result.structuredContent["process_templates"][0] == {
        "id": "agile-id",
        "name": "Agile",
        "is_default": True,
    }


async def test_list_process_templates_of_other_organization(client):
    other = FakeClient()
    other.PROCESS_TEMPLATES = [{"id": "basic-id", "name": "Basic", "isDefault": True}]

    with patch(
        "ado_replicator.mcp.tools.replication.AdoClient.for_organization",
        return_value=other,
    ) as for_org:
        result = await _handle_list_process_templates(
            client,
            {
                "target_organization_url": "https://dev.azure.com/fabrikam",
                "target_access_token": "other-pat",
            },
        )

    for_org.assert_called_once_with(
        client.config, "https://dev.azure.com/fabrikam", "other-pat"
    )
    assert _text(result) == "1 process templates:\n  Basic (basic-id) [default]"


async def test_list_process_templates_rejects_bad_url(client):
    with pytest.raises(ValidationError, match="Organization URL"):
        await _handle_list_process_templates(
            client, {"target_organization_url": "fabrikam"}
        )


async def test_list_process_templates_empty(client):
    client.PROCESS_TEMPLATES = []

    result = await _handle_list_process_templates(client, {})

    assert _text(result) == "No process templates found."
