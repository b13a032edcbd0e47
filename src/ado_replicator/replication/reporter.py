"""Report formatting functions.

Provides human-readable and machine-readable output for the replication
operations:

- ``format_analysis_report`` -- differences grouped by category.
- ``format_update_report`` -- selective update summary.
- ``format_clone_report`` -- per-step clone summary.
- ``format_deployment_report`` -- per-project deployment summary.
- ``format_template_work_items`` -- work items offered for deployment.
- ``result_to_json`` -- structured dict for MCP tool output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel

if TYPE_CHECKING:
    from .models import (
        DifferencesAnalysis,
        ProjectCloneResult,
        ProjectDeploymentResult,
        SelectiveUpdateResult,
        TemplateWorkItem,
        WorkItemDeploymentResult,
    )

from .models import DeploymentAction, MemberChange, NodeDifferenceType


def _mark(success: bool) -> str:
    return "OK" if success else "FAILED"


# ------------------------------------------------------------------
# Differences analysis
# ------------------------------------------------------------------


def format_analysis_report(analysis: DifferencesAnalysis) -> str:
    """Format a differences analysis as human-readable text.

    Synchronized work items and queries are summarised by count only.
    """
    lines: list[str] = []
    lines.append(
        f"Differences from '{analysis.source_project.name}' "
        f"to '{analysis.target_project.name}'"
    )
    lines.append(f"Analyzed: {analysis.analyzed_at}")
    lines.append("")

    work_items = analysis.work_items
    lines.append(
        f"Work items: {len(work_items.new)} new, "
        f"{len(work_items.updated)} updated, "
        f"{len(work_items.synchronized)} synchronized"
    )
    for e in work_items.new:
        lines.append(f"  [NEW] #{e.source_id} {e.work_item_type}: {e.title}")
    for e in work_items.updated:
        lines.append(
            f"  [UPDATED] #{e.source_id} -> #{e.target_id} {e.title}: "
            f"{e.description}"
        )
    lines.append("")

    nodes = analysis.classification_nodes
    if nodes.has_changes:
        lines.append(
            f"Classification nodes: {len(nodes.area_paths)} area, "
            f"{len(nodes.iteration_paths)} iteration"
        )
        for n in nodes.entries:
            if n.difference_type == NodeDifferenceType.NAME_DIFFERENT:
                lines.append(
                    f"  [RENAME] {n.kind.value}: {n.target_path} -> {n.path}"
                )
            else:
                lines.append(f"  [MISSING] {n.kind.value}: {n.path}")
        lines.append("")

    changed_groups = [g for g in analysis.security_groups.groups if g.has_changes]
    if changed_groups:
        lines.append(f"Security groups: {len(changed_groups)} with changes")
        for g in changed_groups:
            lines.append(f"  {g.group_name}: {g.description}")
            for m in g.members_to_add + g.members_to_remove:
                sign = "+" if m.change == MemberChange.ADD else "-"
                lines.append(f"    {sign} {m.principal_name}")
        lines.append("")

    if analysis.wiki.pages:
        lines.append(f"Wiki: {len(analysis.wiki.pages)} pages to review")
        lines.append(f"  {analysis.wiki.message}")
        lines.append("")

    queries = analysis.queries
    if queries.has_changes:
        lines.append(
            f"Queries: {len(queries.new)} new, {len(queries.updated)} updated, "
            f"{len(queries.missing_folders)} missing folders"
        )
        for q in queries.missing_folders + queries.new + queries.updated:
            lines.append(f"  [{q.difference_type.value.upper()}] {q.path}")
        lines.append("")

    if not analysis.has_any_differences:
        lines.append("No differences found.")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Selective update
# ------------------------------------------------------------------


def format_update_report(result: SelectiveUpdateResult) -> str:
    lines: list[str] = []
    lines.append(f"Selective update {_mark(result.success)}")
    lines.append(f"Duration: {result.duration:.1f}s")
    lines.append("")
    lines.append(
        f"Work items: {result.work_items_cloned} cloned, "
        f"{result.work_items_updated} updated"
    )
    lines.append(
        f"Paths: {result.area_paths_cloned} area, "
        f"{result.iteration_paths_cloned} iteration, "
        f"{result.nodes_renamed} renamed"
    )
    lines.append(
        f"Members: {result.members_added} added, {result.members_removed} removed"
    )
    lines.append(f"Wiki pages: {result.wiki_pages_cloned}")
    lines.append(
        f"Queries: {result.queries_cloned} cloned, {result.queries_updated} updated"
    )

    if result.failed_logs:
        lines.append("")
        lines.append("Failures:")
        for log in result.failed_logs:
            lines.append(f"  {log.message}: {log.detail}")

    if result.category_errors:
        lines.append("")
        lines.append("Category errors:")
        for err in result.category_errors:
            lines.append(f"  {err}")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Clone
# ------------------------------------------------------------------


def format_clone_report(result: ProjectCloneResult) -> str:
    lines: list[str] = []
    lines.append(f"Project clone {_mark(result.success)}: {result.message}")
    if result.new_project_url:
        lines.append(f"New project: {result.new_project_url}")
    elif result.new_project_id:
        lines.append(f"New project: {result.new_project_id}")
    if result.error:
        lines.append(f"Error: {result.error}")
    lines.append("")

    for step in result.steps:
        lines.append(
            f"[{_mark(step.success)}] {step.name} ({step.duration:.1f}s)"
        )
        if step.message:
            lines.append(f"  {step.message}")
        if step.error:
            lines.append(f"  Error: {step.error}")
        for warning in step.warnings:
            lines.append(f"  Warning: {warning}")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Deployment
# ------------------------------------------------------------------


def format_project_line(project: ProjectDeploymentResult) -> str:
    """One-line outcome of a single deployment target."""
    label = project.project_name or project.project_id
    if not project.success:
        return f"{label}: FAILED - {project.error}"
    return (
        f"{label}: {project.created} created, {project.updated} updated, "
        f"{project.skipped} skipped, {project.failed} failed"
    )


def format_deployment_report(result: WorkItemDeploymentResult) -> str:
    lines: list[str] = []
    lines.append(
        f"Deployed {result.total_work_items_deployed} work items to "
        f"{result.successful_projects} of {result.total_projects_processed} projects"
    )
    lines.append("")

    for project in result.projects:
        lines.append(format_project_line(project))
        if not project.success:
            lines.append("")
            continue
        for d in project.details:
            if d.action == DeploymentAction.SKIPPED:
                continue
            target = f" -> #{d.target_id}" if d.target_id is not None else ""
            lines.append(
                f"  [{d.action.value.upper()}] #{d.source_id}{target} "
                f"{d.title}: {d.message}"
            )
        lines.append("")

    if result.warnings:
        lines.append("Warnings:")
        for warning in result.warnings:
            lines.append(f"  {warning}")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Template work items
# ------------------------------------------------------------------


def format_template_work_items(items: list[TemplateWorkItem]) -> str:
    if not items:
        return "No work items found."
    lines = [f"{len(items)} work items:"]
    for wi in items:
        state = f" [{wi.state}]" if wi.state else ""
        parent = f" (parent #{wi.parent_id})" if wi.parent_id is not None else ""
        lines.append(f"  #{wi.id} {wi.work_item_type}: {wi.title}{state}{parent}")
        if wi.area_path or wi.iteration_path:
            lines.append(f"    {wi.area_path} | {wi.iteration_path}")
        if wi.tags:
            lines.append(f"    Tags: {wi.tags}")
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def result_to_json(result: BaseModel) -> dict:
    """Convert any analysis or result model to a JSON-safe dict.

    Suitable for MCP ``structuredContent`` output.
    """
    return result.model_dump(mode="json")
