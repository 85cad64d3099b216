"""Structural and cross-reference validation."""

from stackdeploy.validation.crossref import CrossReferenceValidator, build_graph
from stackdeploy.validation.offline import LocalSyntaxChecker
from stackdeploy.validation.structural import (
    StructuralValidator,
    check_main_structure,
    is_runtime_substitution,
)

__all__ = [
    "CrossReferenceValidator",
    "LocalSyntaxChecker",
    "StructuralValidator",
    "build_graph",
    "check_main_structure",
    "is_runtime_substitution",
]
