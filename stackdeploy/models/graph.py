"""Parameter flow between the Main document and its Nested documents."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SourceKind(Enum):
    """Where a nested stack parameter value comes from."""

    STATIC_VALUE = "static_value"  # literal, Ref to a Main parameter, pseudo parameter
    OUTPUT_REFERENCE = "output_reference"  # GetAtt <Stack>.Outputs.<Name>


@dataclass(frozen=True)
class OutputRef:
    """A read of another nested stack's output."""

    stack_logical_id: str
    output_name: str

    def __str__(self) -> str:
        return f"{self.stack_logical_id}.Outputs.{self.output_name}"


@dataclass(frozen=True)
class ParameterFlowEdge:
    """
    One parameter assignment from Main into a nested stack.

    Attributes:
        from_document: The Main document
        to_document: Nested document receiving the value (None if unresolved)
        stack_logical_id: Nested stack resource carrying the assignment
        parameter_name: Parameter being assigned
        source_kind: Static value or output reference
        output_refs: Outputs read by an OUTPUT_REFERENCE value
    """

    from_document: str
    to_document: Optional[str]
    stack_logical_id: str
    parameter_name: str
    source_kind: SourceKind
    output_refs: tuple[OutputRef, ...] = ()

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "from": self.from_document,
            "to": self.to_document,
            "stack": self.stack_logical_id,
            "parameter": self.parameter_name,
            "source_kind": self.source_kind.value,
            "output_refs": [str(ref) for ref in self.output_refs],
        }


@dataclass(frozen=True)
class CrossReferenceGraph:
    """
    All parameter flow edges for a document set.

    ``stack_documents`` maps nested stack logical ids to the document their
    TemplateURL points at.
    """

    edges: tuple[ParameterFlowEdge, ...] = ()
    stack_documents: tuple[tuple[str, Optional[str]], ...] = ()

    def stacks_for_document(self, document_name: str) -> list[str]:
        return [stack for stack, doc in self.stack_documents if doc == document_name]

    def inbound(self, document_name: str) -> list[ParameterFlowEdge]:
        """Edges assigning parameters into ``document_name``."""
        return [e for e in self.edges if e.to_document == document_name]

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "edges": [e.to_dict() for e in self.edges],
            "stacks": {stack: doc for stack, doc in self.stack_documents},
        }
