"""Cross-document validation of parameter flow and output references."""

from __future__ import annotations

from typing import Optional

import structlog

from stackdeploy.models.documents import TemplateDocument, TemplateModel
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
from stackdeploy.parser import find_output_refs, parse_template
from stackdeploy.utils.logging import get_logger

logger = get_logger("validation.crossref")


def build_graph(main: TemplateModel, nested_names: set[str]) -> CrossReferenceGraph:
    """
    Build parameter flow edges from Main's nested stack declarations.

    Args:
        main: Parsed Main document
        nested_names: Names of the Nested documents in the set

    Returns:
        CrossReferenceGraph
    """
    edges = []
    stack_documents = []

    for declaration in main.nested_stacks:
        target = declaration.template_name if declaration.template_name in nested_names else None
        stack_documents.append((declaration.logical_id, target))

        for parameter_name, value in declaration.parameters.items():
            refs = find_output_refs(value)
            edges.append(ParameterFlowEdge(
                from_document=main.document_name,
                to_document=target,
                stack_logical_id=declaration.logical_id,
                parameter_name=str(parameter_name),
                source_kind=SourceKind.OUTPUT_REFERENCE if refs else SourceKind.STATIC_VALUE,
                output_refs=tuple(dict.fromkeys(refs)),
            ))

    return CrossReferenceGraph(edges=tuple(edges), stack_documents=tuple(stack_documents))


class CrossReferenceValidator:
    """
    Validates the document set as a whole.

    Every parameter a Nested document requires must be passed by Main, and
    every output Main reads from a nested stack must be declared by the
    document behind that stack.
    """

    def __init__(self, log: Optional[structlog.stdlib.BoundLogger] = None) -> None:
        self.log = log or logger
        self.graph: Optional[CrossReferenceGraph] = None

    def validate(self, documents: list[TemplateDocument]) -> ValidationReport:
        """
        Validate the document set.

        Args:
            documents: One Main document and its Nested documents

        Returns:
            ValidationReport with cross-reference findings
        """
        mains = [d for d in documents if d.is_main]
        if len(mains) != 1:
            return ValidationReport.of([ValidationFinding(
                document_name=mains[1].name if mains else "<document set>",
                severity=Severity.ERROR,
                category=FindingCategory.STRUCTURE,
                message=f"Expected exactly one Main document, found {len(mains)}",
            )])
        main_document = mains[0]

        models: dict[str, TemplateModel] = {}
        findings: list[ValidationFinding] = []
        for document in documents:
            parsed = parse_template(document)
            if parsed.is_err():
                findings.append(ValidationFinding(
                    document_name=document.name,
                    severity=Severity.ERROR,
                    category=FindingCategory.SYNTAX,
                    message=f"Cannot parse document: {parsed.unwrap_err()}",
                ))
                continue
            models[document.name] = parsed.unwrap()

        main = models.get(main_document.name)
        if main is None:
            return ValidationReport.of(findings)

        nested = {d.name: models[d.name] for d in documents if not d.is_main and d.name in models}
        self.graph = build_graph(main, set(nested))

        findings.extend(self._check_declarations(main, nested))
        for name, model in nested.items():
            findings.extend(self._check_nested(main, name, model))
        findings.extend(self._check_dependencies(main))

        report = ValidationReport.of(findings)
        self.log.info(
            "cross_reference_completed",
            edges=len(self.graph.edges),
            errors=len(report.errors),
            warnings=len(report.warnings),
        )
        return report

    def _check_declarations(
        self,
        main: TemplateModel,
        nested: dict[str, TemplateModel],
    ) -> list[ValidationFinding]:
        findings = []
        declared_stacks = {d.logical_id for d in main.nested_stacks}

        for declaration in main.nested_stacks:
            if declaration.template_name is None:
                findings.append(ValidationFinding(
                    document_name=main.document_name,
                    severity=Severity.ERROR,
                    category=FindingCategory.CROSS_REFERENCE,
                    message=f"Cannot determine which document nested stack {declaration.logical_id} uses",
                    remediation="End the TemplateURL with the nested document's file name",
                ))
            elif declaration.template_name not in nested:
                findings.append(ValidationFinding(
                    document_name=main.document_name,
                    severity=Severity.ERROR,
                    category=FindingCategory.CROSS_REFERENCE,
                    message=(
                        f"Nested stack {declaration.logical_id} references "
                        f"{declaration.template_name}, which is not in the document set"
                    ),
                    remediation="Add the document or fix the TemplateURL file name",
                ))

        unknown = sorted({
            str(ref)
            for ref in self._main_output_refs(main)
            if ref.stack_logical_id not in declared_stacks
        })
        for ref in unknown:
            findings.append(ValidationFinding(
                document_name=main.document_name,
                severity=Severity.ERROR,
                category=FindingCategory.CROSS_REFERENCE,
                message=f"Output reference {ref} names a stack Main does not declare",
            ))

        return findings

    def _main_output_refs(self, main: TemplateModel) -> list[OutputRef]:
        """Every nested stack output Main reads, from resources and Outputs."""
        refs = []
        for resource in main.resources.values():
            refs.extend(find_output_refs(resource.properties))
        for output in main.outputs.values():
            refs.extend(find_output_refs(output.value))
        return refs

    def _check_nested(
        self,
        main: TemplateModel,
        name: str,
        model: TemplateModel,
    ) -> list[ValidationFinding]:
        findings = []
        graph = self.graph
        stacks = graph.stacks_for_document(name)

        if not stacks:
            return [ValidationFinding(
                document_name=name,
                severity=Severity.WARNING,
                category=FindingCategory.CROSS_REFERENCE,
                message=f"{name} is not referenced by {main.document_name}; it is published but never deployed",
                remediation=f"Declare a nested stack for {name} in {main.document_name} or remove the document",
            )]

        for stack in stacks:
            passed = {e.parameter_name for e in graph.inbound(name) if e.stack_logical_id == stack}

            for parameter in model.required_parameters:
                if parameter not in passed:
                    findings.append(ValidationFinding(
                        document_name=name,
                        severity=Severity.ERROR,
                        category=FindingCategory.CROSS_REFERENCE,
                        message=f"Required parameter {parameter} is not passed by {main.document_name} (stack {stack})",
                        remediation=f"Add {parameter} to the Parameters of {stack}, or give it a Default",
                    ))

            for parameter in sorted(passed - set(model.parameters)):
                findings.append(ValidationFinding(
                    document_name=name,
                    severity=Severity.WARNING,
                    category=FindingCategory.CROSS_REFERENCE,
                    message=f"Stack {stack} passes parameter {parameter}, which {name} does not declare",
                    remediation="Remove the parameter from Main or declare it in the nested document",
                ))

        consumed = list(dict.fromkeys(
            ref for ref in self._main_output_refs(main) if ref.stack_logical_id in stacks
        ))

        if consumed and not model.has_outputs_section:
            findings.append(ValidationFinding(
                document_name=name,
                severity=Severity.ERROR,
                category=FindingCategory.STRUCTURE,
                message=(
                    f"{name} has no Outputs section but {len(consumed)} output reference(s) "
                    "read from it"
                ),
                remediation="Add an Outputs section declaring the referenced outputs",
            ))
        else:
            for ref in consumed:
                if ref.output_name not in model.outputs:
                    findings.append(ValidationFinding(
                        document_name=name,
                        severity=Severity.ERROR,
                        category=FindingCategory.CROSS_REFERENCE,
                        message=f"Output {ref.output_name} referenced as {ref} is not declared",
                        remediation=f"Declare {ref.output_name} in the Outputs section of {name}",
                    ))

        if not graph.inbound(name) and not consumed:
            findings.append(ValidationFinding(
                document_name=name,
                severity=Severity.INFO,
                category=FindingCategory.CROSS_REFERENCE,
                message="Document receives no parameters and no outputs are read from it",
            ))

        return findings

    def _check_dependencies(self, main: TemplateModel) -> list[ValidationFinding]:
        findings = []
        seen: set[tuple[str, str]] = set()

        for edge in self.graph.edges:
            declaration = main.nested_stack(edge.stack_logical_id)
            for ref in edge.output_refs:
                pair = (edge.stack_logical_id, ref.stack_logical_id)
                if pair in seen or ref.stack_logical_id == edge.stack_logical_id:
                    continue
                seen.add(pair)
                if declaration and ref.stack_logical_id not in declaration.depends_on:
                    findings.append(ValidationFinding(
                        document_name=main.document_name,
                        severity=Severity.WARNING,
                        category=FindingCategory.CROSS_REFERENCE,
                        message=(
                            f"Stack {edge.stack_logical_id} reads outputs of "
                            f"{ref.stack_logical_id} but does not declare DependsOn: {ref.stack_logical_id}"
                        ),
                        remediation=f"Add DependsOn: {ref.stack_logical_id} to {edge.stack_logical_id}",
                    ))

        return findings
