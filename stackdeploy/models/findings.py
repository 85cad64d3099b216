"""Validation findings and reports."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional


class Severity(Enum):
    """Severity of a finding. Only ERROR blocks the pipeline."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class FindingCategory(Enum):
    """What kind of check produced a finding."""

    SIZE = "size"
    SYNTAX = "syntax"
    STRUCTURE = "structure"
    CROSS_REFERENCE = "cross_reference"


@dataclass(frozen=True)
class ValidationFinding:
    """A single diagnostic about one document."""

    document_name: str
    severity: Severity
    category: FindingCategory
    message: str
    remediation: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "document": self.document_name,
            "severity": self.severity.value,
            "category": self.category.value,
            "message": self.message,
            "remediation": self.remediation,
        }

    def __str__(self) -> str:
        text = f"[{self.severity.value}/{self.category.value}] {self.document_name}: {self.message}"
        if self.remediation:
            text += f" (hint: {self.remediation})"
        return text


@dataclass(frozen=True)
class ValidationReport:
    """Findings from one or more validation stages."""

    findings: tuple[ValidationFinding, ...] = ()

    @classmethod
    def of(cls, findings: Iterable[ValidationFinding]) -> "ValidationReport":
        return cls(findings=tuple(findings))

    @property
    def passed(self) -> bool:
        """True when no finding has Error severity."""
        return not any(f.is_error for f in self.findings)

    @property
    def errors(self) -> list[ValidationFinding]:
        return [f for f in self.findings if f.severity is Severity.ERROR]

    @property
    def warnings(self) -> list[ValidationFinding]:
        return [f for f in self.findings if f.severity is Severity.WARNING]

    def for_document(self, name: str) -> list[ValidationFinding]:
        return [f for f in self.findings if f.document_name == name]

    def merge(self, other: "ValidationReport") -> "ValidationReport":
        return ValidationReport(findings=self.findings + other.findings)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "passed": self.passed,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "findings": [f.to_dict() for f in self.findings],
        }
