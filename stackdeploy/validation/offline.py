"""Offline syntax checking backed by the local parser."""

from __future__ import annotations

import yaml

from stackdeploy.aws.base import SyntaxChecker, TemplateRejection, TemplateSummary
from stackdeploy.errors import SyntaxErrorKind
from stackdeploy.parser import build_model, load_template, referenced_names
from stackdeploy.utils.result import Err, Ok, Result

PSEUDO_PREFIX = "AWS::"


class LocalSyntaxChecker(SyntaxChecker):
    """
    Approximates ValidateTemplate without a network call.

    Catches malformed YAML, a missing Resources section, resources without a
    Type, and Ref/GetAtt/DependsOn targets that are not declared. Property
    names are not checked against resource schemas.
    """

    def validate_document(self, body: str) -> Result[TemplateSummary, TemplateRejection]:
        try:
            data = load_template(body)
        except yaml.YAMLError as e:
            return Err(TemplateRejection(
                kind=SyntaxErrorKind.FORMAT_ERROR,
                message=f"Template format error: {e}",
            ))

        model_result = build_model("<body>", data)
        if model_result.is_err():
            return Err(TemplateRejection(
                kind=SyntaxErrorKind.FORMAT_ERROR,
                message=f"Template format error: {model_result.unwrap_err()}",
            ))
        model = model_result.unwrap()

        if not model.resources:
            return Err(TemplateRejection(
                kind=SyntaxErrorKind.FORMAT_ERROR,
                message="Template format error: At least one Resources member must be defined.",
            ))

        untyped = sorted(r.logical_id for r in model.resources.values() if not r.type)
        if untyped:
            return Err(TemplateRejection(
                kind=SyntaxErrorKind.INVALID_PROPERTY,
                message=f"Invalid template resource property: missing Type for {', '.join(untyped)}",
            ))

        declared = set(model.parameters) | set(model.resources)
        conditions = data.get("Conditions") if isinstance(data.get("Conditions"), dict) else {}
        mappings = data.get("Mappings") if isinstance(data.get("Mappings"), dict) else {}

        unresolved: set[str] = set()
        for resource in model.resources.values():
            unresolved.update(d for d in resource.depends_on if d not in model.resources)
        for section in ("Resources", "Outputs"):
            for name in referenced_names(data.get(section)):
                if name.startswith(PSEUDO_PREFIX) or name in declared:
                    continue
                if name in conditions or name in mappings:
                    continue
                unresolved.add(name)

        if unresolved:
            return Err(TemplateRejection(
                kind=SyntaxErrorKind.UNRESOLVED_DEPENDENCY,
                message=(
                    "Template format error: Unresolved resource dependencies "
                    f"[{', '.join(sorted(unresolved))}] in the Resources block of the template"
                ),
            ))

        return Ok(TemplateSummary(
            description=model.description,
            parameters=tuple(model.parameters),
        ))
