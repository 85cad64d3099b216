"""Pipeline module for stackdeploy."""

from stackdeploy.pipeline.guards import PipelineGuards, run_guards
from stackdeploy.pipeline.loader import load_documents
from stackdeploy.pipeline.orchestrator import Orchestrator
from stackdeploy.pipeline.parameters import ParameterResolver, resolve_artifact_location
from stackdeploy.pipeline.report import render_text

__all__ = [
    "Orchestrator",
    "ParameterResolver",
    "PipelineGuards",
    "load_documents",
    "render_text",
    "resolve_artifact_location",
    "run_guards",
]
