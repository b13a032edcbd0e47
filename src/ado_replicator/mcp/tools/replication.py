"""MCP tool handlers for project replication.

Defines the tools wrapping the replication engines:

- ``list_projects`` -- projects of the configured organization.
- ``analyze_differences`` -- compare two projects category by category.
- ``apply_selective_updates`` -- apply selected differences to the target.
- ``clone_project`` / ``clone_projects`` -- duplicate projects.
- ``deploy_work_items`` -- copy work items into several projects.
- ``list_template_work_items`` -- work items a deployment can pick from.
- ``list_process_templates`` -- processes a new project can be based on.

Every engine call runs in a worker thread via ``run_sync``.  Results are
returned as readable text plus the full model as ``structuredContent``.
Clone and deployment tools forward engine progress to the client when the
request carries a progress token.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types
from pydantic import ValidationError as SchemaError

from ...core.async_utils import run_sync
from ...core.client import AdoClient
from ...core.errors import ValidationError
from ...replication.applier import SelectiveUpdateApplier
from ...replication.deployment import WorkItemDeployer
from ...replication.differ import DifferencesAnalyzer
from ...replication.identity import IdentityMap
from ...replication.models import (
    DifferencesAnalysis,
    ProjectCloneRequest,
    SelectiveUpdateRequest,
    WorkItemDeploymentRequest,
)
from ...replication.pipeline import ClonePipeline
from ...replication.reporter import (
    format_analysis_report,
    format_clone_report,
    format_deployment_report,
    format_template_work_items,
    format_update_report,
    result_to_json,
)
from ...validators import validate_organization_url
from ..progress import current_progress
from .registry import ToolSpec

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

_PROJECT_PAIR = {
    "source_project_id": {
        "type": "string",
        "description": "Source project id or name (required)",
    },
    "target_project_id": {
        "type": "string",
        "description": "Target project id or name (required)",
    },
}

_CLONE_OPTIONS = {
    "type": "object",
    "description": "Which parts to clone; every switch defaults to true except include_history",
    "properties": {
        "clone_project_settings": {"type": "boolean"},
        "clone_area_paths": {"type": "boolean"},
        "clone_iteration_paths": {"type": "boolean"},
        "clone_repositories": {"type": "boolean"},
        "exclude_repositories": {"type": "array", "items": {"type": "string"}},
        "clone_work_items": {"type": "boolean"},
        "include_attachments": {"type": "boolean"},
        "include_links": {"type": "boolean"},
        "include_history": {"type": "boolean"},
        "clone_build_pipelines": {"type": "boolean"},
        "clone_release_pipelines": {"type": "boolean"},
        "clone_queries": {"type": "boolean"},
        "clone_dashboards": {"type": "boolean"},
        "clone_teams": {"type": "boolean"},
    },
}

_CLONE_REQUEST = {
    "type": "object",
    "properties": {
        "source_project_id": {
            "type": "string",
            "description": "Project to clone (required)",
        },
        "target_project_name": {
            "type": "string",
            "description": "Name of the new project (required)",
        },
        "target_description": {
            "type": "string",
            "description": "Description of the new project (default: 'Cloned from <source>')",
        },
        "target_organization_url": {
            "type": "string",
            "description": "Create the project in another organization (optional)",
        },
        "target_access_token": {
            "type": "string",
            "description": "Access token for target_organization_url",
        },
        "options": _CLONE_OPTIONS,
    },
    "required": ["source_project_id", "target_project_name"],
}

REPLICATION_TOOLS: list[types.Tool] = [
    types.Tool(
        name="list_projects",
        description="List the projects of the configured organization with their ids.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={"type": "object", "properties": {}, "required": []},
    ),
    types.Tool(
        name="analyze_differences",
        description=(
            "Compare a source project against a target project: work items, "
            "area and iteration paths, security group memberships, wiki pages "
            "and queries. Read-only. Returns the analysis used by "
            "apply_selective_updates."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": dict(_PROJECT_PAIR),
            "required": ["source_project_id", "target_project_id"],
        },
    ),
    types.Tool(
        name="apply_selective_updates",
        description=(
            "Apply selected differences to the target project. Either pass "
            "the 'analysis' returned by analyze_differences with 'selected' "
            "set on the entries to apply, or pass a 'select' object and the "
            "projects are re-analyzed first. Nothing is written for "
            "unselected entries."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=False,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                **_PROJECT_PAIR,
                "analysis": {
                    "type": "object",
                    "description": "Analysis from analyze_differences with selections applied",
                },
                "select": {
                    "type": "object",
                    "description": "Entries to select after re-analyzing",
                    "properties": {
                        "all": {
                            "type": "boolean",
                            "description": "Select every entry with a change",
                        },
                        "work_items": {
                            "type": "array",
                            "items": {"type": "integer"},
                            "description": "Source work item ids",
                        },
                        "area_paths": {"type": "array", "items": {"type": "string"}},
                        "iteration_paths": {
                            "type": "array",
                            "items": {"type": "string"},
                        },
                        "security_groups": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "Group names; all member changes of each group",
                        },
                        "wiki_pages": {"type": "array", "items": {"type": "string"}},
                        "queries": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "Query or folder paths",
                        },
                    },
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="clone_project",
        description=(
            "Create a new project as a copy of an existing one: settings, "
            "paths, repositories, work items, pipelines, queries, dashboards "
            "and teams. Each step is reported separately."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=False,
            openWorldHint=True,
        ),
        inputSchema=_CLONE_REQUEST,
    ),
    types.Tool(
        name="clone_projects",
        description="Run several independent project clones one after another.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=False,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "requests": {"type": "array", "items": _CLONE_REQUEST},
            },
            "required": ["requests"],
        },
    ),
    types.Tool(
        name="deploy_work_items",
        description=(
            "Copy selected work items of one project into one or more target "
            "projects. Existing counterparts are skipped unless "
            "update_existing is set."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=False,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "source_project_id": {
                    "type": "string",
                    "description": "Project the work items come from (required)",
                },
                "target_project_ids": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Projects to deploy into (required)",
                },
                "work_item_ids": {
                    "type": "array",
                    "items": {"type": "integer"},
                    "description": "Source work item ids (required)",
                },
                "options": {
                    "type": "object",
                    "properties": {
                        "update_existing": {"type": "boolean", "default": False},
                        "create_missing_paths": {"type": "boolean", "default": True},
                        "map_work_item_types": {"type": "boolean", "default": True},
                        "include_links": {"type": "boolean", "default": True},
                        "include_attachments": {"type": "boolean", "default": True},
                        "include_history": {"type": "boolean", "default": False},
                    },
                },
            },
            "required": ["source_project_id", "target_project_ids", "work_item_ids"],
        },
    ),
    types.Tool(
        name="list_template_work_items",
        description=(
            "List the work items of a template project (id, type, title, "
            "state, paths, tags, parent) to choose the work_item_ids for "
            "deploy_work_items."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "source_project_id": {
                    "type": "string",
                    "description": "Template project id or name (required)",
                },
                "work_item_type": {
                    "type": "string",
                    "description": "Only list work items of this type (optional)",
                },
            },
            "required": ["source_project_id"],
        },
    ),
    types.Tool(
        name="list_process_templates",
        description=(
            "List the process templates available for new projects, in the "
            "configured organization or in target_organization_url."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "target_organization_url": {
                    "type": "string",
                    "description": "Another organization to query (optional)",
                },
                "target_access_token": {
                    "type": "string",
                    "description": "Access token for target_organization_url",
                },
            },
            "required": [],
        },
    ),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _identity_map(client: AdoClient) -> IdentityMap:
    return IdentityMap(client.config.state_dir)


def _parse(model: type, data: dict[str, Any]) -> Any:
    """Validate tool arguments into a request model."""
    try:
        return model.model_validate(data)
    except SchemaError as exc:
        raise ValidationError(
            f"Invalid {model.__name__}: {exc.error_count()} error(s): "
            + "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            )
        ) from exc


def _result(text: str, structured: dict[str, Any]) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=structured,
    )


def apply_selection(
    analysis: DifferencesAnalysis, select: dict[str, Any]
) -> int:
    """Mark the entries named in *select* as selected.

    Returns:
        Number of entries selected.
    """
    everything = bool(select.get("all"))
    work_items = set(select.get("work_items") or [])
    areas = set(select.get("area_paths") or [])
    iterations = set(select.get("iteration_paths") or [])
    groups = {g.lower() for g in select.get("security_groups") or []}
    pages = set(select.get("wiki_pages") or [])
    queries = set(select.get("queries") or [])

    count = 0
    for e in analysis.work_items.new + analysis.work_items.updated:
        if everything or e.source_id in work_items:
            e.selected = True
            count += 1
    for e in analysis.classification_nodes.area_paths:
        if everything or e.path in areas:
            e.selected = True
            count += 1
    for e in analysis.classification_nodes.iteration_paths:
        if everything or e.path in iterations:
            e.selected = True
            count += 1
    for g in analysis.security_groups.groups:
        if g.has_changes and (everything or g.group_name.lower() in groups):
            g.selected = True
            count += 1
    # Wiki pages are advisory and never selected by "all"
    for p in analysis.wiki.pages:
        if p.path in pages:
            p.selected = True
            count += 1
    for q in (
        analysis.queries.missing_folders
        + analysis.queries.new
        + analysis.queries.updated
    ):
        if everything or q.path in queries:
            q.selected = True
            count += 1
    return count


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


async def _handle_list_projects(
    client: AdoClient, args: dict[str, Any]
) -> types.CallToolResult:
    projects = await run_sync(client.list_containers)
    if not projects:
        text = "No projects found."
    else:
        lines = [f"{len(projects)} projects:"]
        for p in sorted(projects, key=lambda p: p.name.lower()):
            lines.append(f"  {p.name} ({p.id})")
        text = "\n".join(lines)
    return _result(
        text, {"projects": [p.model_dump(mode="json") for p in projects]}
    )


async def _handle_analyze(
    client: AdoClient, args: dict[str, Any]
) -> types.CallToolResult:
    source = args.get("source_project_id")
    target = args.get("target_project_id")
    if not source or not target:
        raise ValidationError(
            "source_project_id and target_project_id are required"
        )
    analyzer = DifferencesAnalyzer(client, _identity_map(client))
    analysis = await run_sync(analyzer.analyze, source, target)
    return _result(format_analysis_report(analysis), result_to_json(analysis))


async def _handle_apply(
    client: AdoClient, args: dict[str, Any]
) -> types.CallToolResult:
    identity_map = _identity_map(client)
    if args.get("analysis"):
        analysis = _parse(DifferencesAnalysis, args["analysis"])
    else:
        source = args.get("source_project_id")
        target = args.get("target_project_id")
        if not source or not target:
            raise ValidationError(
                "Provide either 'analysis' or source_project_id and target_project_id"
            )
        analyzer = DifferencesAnalyzer(client, identity_map)
        analysis = await run_sync(analyzer.analyze, source, target)
        selected = apply_selection(analysis, args.get("select") or {})
        logger.info("Selected %d entries for update", selected)

    applier = SelectiveUpdateApplier(client, identity_map)
    result = await run_sync(
        applier.apply, SelectiveUpdateRequest.from_analysis(analysis)
    )
    return _result(format_update_report(result), result_to_json(result))


async def _handle_clone(
    client: AdoClient, args: dict[str, Any]
) -> types.CallToolResult:
    request = _parse(ProjectCloneRequest, args)
    pipeline = ClonePipeline(client, _identity_map(client))
    result = await run_sync(pipeline.clone_project, request, current_progress())
    return _result(format_clone_report(result), result_to_json(result))


async def _handle_clone_many(
    client: AdoClient, args: dict[str, Any]
) -> types.CallToolResult:
    raw = args.get("requests")
    if not raw:
        raise ValidationError("requests must contain at least one clone request")
    requests = [_parse(ProjectCloneRequest, r) for r in raw]
    pipeline = ClonePipeline(client, _identity_map(client))
    results = await run_sync(pipeline.clone_many, requests, current_progress())
    text = "\n\n".join(format_clone_report(r) for r in results)
    return _result(text, {"results": [result_to_json(r) for r in results]})


async def _handle_deploy(
    client: AdoClient, args: dict[str, Any]
) -> types.CallToolResult:
    request = _parse(WorkItemDeploymentRequest, args)
    deployer = WorkItemDeployer(client, _identity_map(client))
    result = await deployer.deploy_async(request, current_progress())
    return _result(format_deployment_report(result), result_to_json(result))


async def _handle_list_template_work_items(
    client: AdoClient, args: dict[str, Any]
) -> types.CallToolResult:
    source = args.get("source_project_id")
    if not source:
        raise ValidationError("source_project_id is required")
    deployer = WorkItemDeployer(client, _identity_map(client))
    items = await run_sync(deployer.list_template_work_items, source)
    wanted_type = (args.get("work_item_type") or "").lower()
    if wanted_type:
        items = [wi for wi in items if wi.work_item_type.lower() == wanted_type]
    return _result(
        format_template_work_items(items),
        {"work_items": [wi.model_dump(mode="json") for wi in items]},
    )


async def _handle_list_process_templates(
    client: AdoClient, args: dict[str, Any]
) -> types.CallToolResult:
    url = args.get("target_organization_url")
    if url:
        ok, message = validate_organization_url(url)
        if not ok:
            raise ValidationError(message)
        client = AdoClient.for_organization(
            client.config, url, args.get("target_access_token")
        )
    templates = await run_sync(client.list_process_templates)
    if not templates:
        text = "No process templates found."
    else:
        lines = [f"{len(templates)} process templates:"]
        for t in templates:
            default = " [default]" if t.get("isDefault") else ""
            lines.append(f"  {t.get('name', '')} ({t.get('id', '')}){default}")
        text = "\n".join(lines)
    return _result(
        text,
        {
            "process_templates": [
                {
                    "id": t.get("id", ""),
                    "name": t.get("name", ""),
                    "is_default": bool(t.get("isDefault")),
                }
                for t in templates
            ]
        },
    )


# ToolSpec list for registry-based dispatch
REPLICATION_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=REPLICATION_TOOLS[0],
        permissions=frozenset({"vso.project"}),
        handler=_handle_list_projects,
    ),
    ToolSpec(
        tool=REPLICATION_TOOLS[1],
        permissions=frozenset(
            {"vso.project", "vso.work", "vso.graph", "vso.wiki"}
        ),
        handler=_handle_analyze,
    ),
    ToolSpec(
        tool=REPLICATION_TOOLS[2],
        permissions=frozenset(
            {"vso.project", "vso.work_write", "vso.graph_manage", "vso.wiki_write"}
        ),
        handler=_handle_apply,
    ),
    ToolSpec(
        tool=REPLICATION_TOOLS[3],
        permissions=frozenset(
            {"vso.project_manage", "vso.work_write", "vso.code_manage", "vso.build_execute"}
        ),
        handler=_handle_clone,
    ),
    ToolSpec(
        tool=REPLICATION_TOOLS[4],
        permissions=frozenset(
            {"vso.project_manage", "vso.work_write", "vso.code_manage", "vso.build_execute"}
        ),
        handler=_handle_clone_many,
    ),
    ToolSpec(
        tool=REPLICATION_TOOLS[5],
        permissions=frozenset({"vso.project", "vso.work_write"}),
        handler=_handle_deploy,
    ),
    ToolSpec(
        tool=REPLICATION_TOOLS[6],
        permissions=frozenset({"vso.project", "vso.work"}),
        handler=_handle_list_template_work_items,
    ),
    ToolSpec(
        tool=REPLICATION_TOOLS[7],
        permissions=frozenset({"vso.work"}),
        handler=_handle_list_process_templates,
    ),
]
