"""Build a TemplateModel from a template document."""

from __future__ import annotations

from typing import Any, Optional

import yaml

from stackdeploy.models.documents import (
    NestedStackDeclaration,
    TemplateDocument,
    TemplateModel,
    TemplateOutput,
    TemplateParameter,
    TemplateResource,
)
from stackdeploy.parser.intrinsics import Intrinsic, load_template
from stackdeploy.utils.result import Err, Ok, Result

NESTED_STACK_TYPE = "AWS::CloudFormation::Stack"


def _as_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list):
        return tuple(str(v) for v in value)
    return ()


def _last_segment(url: str) -> Optional[str]:
    path = url.split("?", 1)[0].rstrip("/")
    name = path.rsplit("/", 1)[-1]
    if not name or name.startswith("${"):
        return None
    return name


def template_name_from_url(template_url: Any) -> Optional[str]:
    """
    File name at the end of a TemplateURL value.

    Handles plain strings, ``Sub`` strings and ``Join`` lists whose last
    literal part ends in the file name.
    """
    if isinstance(template_url, str):
        return _last_segment(template_url)

    if not isinstance(template_url, Intrinsic):
        return None

    if template_url.name == "Fn::Sub":
        value = template_url.value
        if isinstance(value, list) and value:
            value = value[0]
        return _last_segment(value) if isinstance(value, str) else None

    if template_url.name == "Fn::Join":
        value = template_url.value
        if isinstance(value, list) and len(value) == 2 and isinstance(value[1], list):
            delimiter, parts = value
            if parts and isinstance(parts[-1], str):
                return _last_segment(str(delimiter).join(p for p in parts if isinstance(p, str)))

    return None


def _parse_parameters(section: Any) -> dict[str, TemplateParameter]:
    parameters = {}
    for name, spec in (section or {}).items():
        spec = spec if isinstance(spec, dict) else {}
        parameters[str(name)] = TemplateParameter(
            name=str(name),
            type=str(spec.get("Type", "String")),
            has_default="Default" in spec,
        )
    return parameters


def _parse_outputs(section: Any) -> dict[str, TemplateOutput]:
    outputs = {}
    for name, spec in (section or {}).items():
        spec = spec if isinstance(spec, dict) else {}
        outputs[str(name)] = TemplateOutput(
            name=str(name),
            exported="Export" in spec,
            value=spec.get("Value"),
        )
    return outputs


def _parse_resources(section: Any) -> dict[str, TemplateResource]:
    resources = {}
    for logical_id, spec in (section or {}).items():
        spec = spec if isinstance(spec, dict) else {}
        properties = spec.get("Properties")
        resources[str(logical_id)] = TemplateResource(
            logical_id=str(logical_id),
            type=str(spec.get("Type", "")),
            depends_on=_as_tuple(spec.get("DependsOn")),
            properties=properties if isinstance(properties, dict) else {},
        )
    return resources


def _nested_stacks(resources: dict[str, TemplateResource]) -> tuple[NestedStackDeclaration, ...]:
    declarations = []
    for resource in resources.values():
        if resource.type != NESTED_STACK_TYPE:
            continue
        template_url = resource.properties.get("TemplateURL")
        parameters = resource.properties.get("Parameters")
        declarations.append(NestedStackDeclaration(
            logical_id=resource.logical_id,
            template_url=template_url,
            template_name=template_name_from_url(template_url),
            parameters=dict(parameters) if isinstance(parameters, dict) else {},
            depends_on=resource.depends_on,
        ))
    return tuple(declarations)


def build_model(document_name: str, data: Any) -> Result[TemplateModel, str]:
    """Extract a TemplateModel from already-loaded template data."""
    if not isinstance(data, dict):
        return Err("Template root must be a mapping")

    for section in ("Parameters", "Outputs", "Resources"):
        if section in data and data[section] is not None and not isinstance(data[section], dict):
            return Err(f"{section} section must be a mapping")

    resources = _parse_resources(data.get("Resources"))
    description = data.get("Description")

    return Ok(TemplateModel(
        document_name=document_name,
        description=str(description) if description is not None else None,
        parameters=_parse_parameters(data.get("Parameters")),
        outputs=_parse_outputs(data.get("Outputs")),
        has_outputs_section="Outputs" in data,
        resources=resources,
        nested_stacks=_nested_stacks(resources),
    ))


def parse_template(document: TemplateDocument) -> Result[TemplateModel, str]:
    """
    Parse a document into a TemplateModel.

    Args:
        document: The document to parse

    Returns:
        Ok(TemplateModel) or Err(reason the text could not be parsed)
    """
    try:
        data = load_template(document.raw_content)
    except yaml.YAMLError as e:
        return Err(f"YAML parse error: {e}")

    return build_model(document.name, data)
