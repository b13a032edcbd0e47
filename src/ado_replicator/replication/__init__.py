"""Project replication engines.

Public API for comparing two projects and copying configuration and work
items between them.

Architecture
------------
Every engine talks to the remote service only through ``AdoClient`` and
returns plain pydantic results.  Item-level failures never escape an
engine: they are collected with ``ErrorScope`` and reported in the result
(failed operation logs, failed steps or failed deployment details).

Modules:

- ``differ``     -- ``DifferencesAnalyzer``: per-category comparison.
- ``applier``    -- ``SelectiveUpdateApplier``: applies selected entries.
- ``pipeline``   -- ``ClonePipeline``: step-by-step project duplication.
- ``deployment`` -- ``WorkItemDeployer``: work items into many projects.
- ``identity``   -- ``IdentityMap``: persisted source-to-target id pairs.
- ``hierarchy``  -- parent-first ordering and path rewriting helpers.
- ``workitems``  -- JSON-patch builders and attachment/comment copying.
- ``scope``      -- ``ErrorScope``: collect-and-continue error handling.
- ``reporter``   -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from ado_replicator.config import load_config
    from ado_replicator.core.client import AdoClient
    from ado_replicator.replication import (
        DifferencesAnalyzer,
        SelectiveUpdateApplier,
        SelectiveUpdateRequest,
        format_update_report,
    )

    client = AdoClient(load_config())
    analysis = DifferencesAnalyzer(client).analyze("Source", "Target")

    for entry in analysis.work_items.new:
        entry.selected = True

    result = SelectiveUpdateApplier(client).apply(
        SelectiveUpdateRequest.from_analysis(analysis)
    )
    print(format_update_report(result))
"""

from .applier import SelectiveUpdateApplier
from .deployment import WorkItemDeployer, map_work_item_type
from .differ import DifferencesAnalyzer
from .identity import IdentityMap
from .models import (
    DifferencesAnalysis,
    ProgressCallback,
    ProjectCloneOptions,
    ProjectCloneRequest,
    ProjectCloneResult,
    SelectiveUpdateRequest,
    SelectiveUpdateResult,
    TemplateWorkItem,
    WorkItemDeploymentOptions,
    WorkItemDeploymentRequest,
    WorkItemDeploymentResult,
)
from .pipeline import ClonePipeline
from .reporter import (
    format_analysis_report,
    format_clone_report,
    format_deployment_report,
    format_template_work_items,
    format_update_report,
    result_to_json,
)
from .scope import ErrorScope

__all__ = [
    "ClonePipeline",
    "DifferencesAnalysis",
    "DifferencesAnalyzer",
    "ErrorScope",
    "IdentityMap",
    "ProgressCallback",
    "ProjectCloneOptions",
    "ProjectCloneRequest",
    "ProjectCloneResult",
    "SelectiveUpdateApplier",
    "SelectiveUpdateRequest",
    "SelectiveUpdateResult",
    "TemplateWorkItem",
    "WorkItemDeployer",
    "WorkItemDeploymentOptions",
    "WorkItemDeploymentRequest",
    "WorkItemDeploymentResult",
    "format_analysis_report",
    "format_clone_report",
    "format_deployment_report",
    "format_template_work_items",
    "format_update_report",
    "result_to_json",
    "map_work_item_type",
]
