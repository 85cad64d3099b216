"""Data models for stackdeploy."""

from stackdeploy.models.documents import (
    DocumentRole,
    NestedStackDeclaration,
    TemplateDocument,
    TemplateModel,
    TemplateOutput,
    TemplateParameter,
    TemplateResource,
)
from stackdeploy.models.findings import (
    FindingCategory,
    Severity,
    ValidationFinding,
    ValidationReport,
)
from stackdeploy.models.graph import (
    CrossReferenceGraph,
    OutputRef,
    ParameterFlowEdge,
    SourceKind,
)
from stackdeploy.models.publish import PublishRecord, PublishReport
from stackdeploy.models.results import DeploymentResult, PipelineStage, StageTiming

__all__ = [
    # Document models
    "DocumentRole",
    "TemplateDocument",
    "TemplateModel",
    "TemplateParameter",
    "TemplateOutput",
    "TemplateResource",
    "NestedStackDeclaration",
    # Validation models
    "Severity",
    "FindingCategory",
    "ValidationFinding",
    "ValidationReport",
    "SourceKind",
    "OutputRef",
    "ParameterFlowEdge",
    "CrossReferenceGraph",
    # Publish models
    "PublishRecord",
    "PublishReport",
    # Run models
    "PipelineStage",
    "StageTiming",
    "DeploymentResult",
]
