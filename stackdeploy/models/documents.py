"""Template documents and their parsed model."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional


class DocumentRole(Enum):
    """Role of a document in the nested-stack layout."""

    MAIN = "main"  # Declares the nested stacks
    NESTED = "nested"  # Implements a subset of the resources


@dataclass(frozen=True)
class TemplateDocument:
    """
    One infrastructure template, read once at pipeline start.

    Attributes:
        name: Unique identifier (the file name, e.g. "networking-stack.yaml")
        role: Main or Nested
        raw_content: Template text
        byte_size: Size of the file in bytes
        path: Where the document was read from
        exists: False when the file was missing
        read_error: Why the file could not be read, if it could not
    """

    name: str
    role: DocumentRole
    raw_content: str = ""
    byte_size: int = 0
    path: Optional[Path] = None
    exists: bool = True
    read_error: Optional[str] = None

    @property
    def is_main(self) -> bool:
        return self.role is DocumentRole.MAIN

    @property
    def content_bytes(self) -> bytes:
        return self.raw_content.encode("utf-8")

    @classmethod
    def from_text(cls, name: str, text: str, role: DocumentRole = DocumentRole.NESTED) -> "TemplateDocument":
        """Create a document from in-memory text."""
        return cls(
            name=name,
            role=role,
            raw_content=text,
            byte_size=len(text.encode("utf-8")),
        )

    @classmethod
    def from_path(cls, path: Path, role: DocumentRole) -> "TemplateDocument":
        """
        Read a document from disk.

        Missing or unreadable files still produce a document, flagged so the
        structural validator reports them alongside every other finding.
        """
        path = Path(path)

        if not path.is_file():
            return cls(name=path.name, role=role, path=path, exists=False)

        try:
            data = path.read_bytes()
        except OSError as e:
            return cls(name=path.name, role=role, path=path, read_error=str(e))

        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            return cls(
                name=path.name,
                role=role,
                path=path,
                byte_size=len(data),
                read_error=f"not valid UTF-8: {e}",
            )

        return cls(
            name=path.name,
            role=role,
            raw_content=text,
            byte_size=len(data),
            path=path,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "role": self.role.value,
            "byte_size": self.byte_size,
            "path": str(self.path) if self.path else None,
            "exists": self.exists,
            "read_error": self.read_error,
        }


@dataclass(frozen=True)
class TemplateParameter:
    """A declared template parameter."""

    name: str
    type: str = "String"
    has_default: bool = False

    @property
    def required(self) -> bool:
        return not self.has_default


@dataclass(frozen=True)
class TemplateOutput:
    """A declared template output."""

    name: str
    exported: bool = False
    value: Any = field(default=None, compare=False, hash=False)


@dataclass(frozen=True)
class TemplateResource:
    """A declared resource."""

    logical_id: str
    type: str
    depends_on: tuple[str, ...] = ()
    properties: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class NestedStackDeclaration:
    """
    An ``AWS::CloudFormation::Stack`` resource in the Main document.

    Attributes:
        logical_id: Resource logical id (e.g. "NetworkingStack")
        template_url: Raw TemplateURL value (string or intrinsic node)
        template_name: File name at the end of the URL, when determinable
        parameters: Parameter name -> raw value
        depends_on: Logical ids from DependsOn
    """

    logical_id: str
    template_url: Any
    template_name: Optional[str]
    parameters: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    depends_on: tuple[str, ...] = ()


@dataclass(frozen=True)
class TemplateModel:
    """Structured facts extracted from one document."""

    document_name: str
    description: Optional[str] = None
    parameters: dict[str, TemplateParameter] = field(default_factory=dict, compare=False, hash=False)
    outputs: dict[str, TemplateOutput] = field(default_factory=dict, compare=False, hash=False)
    has_outputs_section: bool = False
    resources: dict[str, TemplateResource] = field(default_factory=dict, compare=False, hash=False)
    nested_stacks: tuple[NestedStackDeclaration, ...] = ()

    @property
    def required_parameters(self) -> list[str]:
        return [p.name for p in self.parameters.values() if p.required]

    def nested_stack(self, logical_id: str) -> Optional[NestedStackDeclaration]:
        for declaration in self.nested_stacks:
            if declaration.logical_id == logical_id:
                return declaration
        return None
