"""YAML loading with CloudFormation intrinsic functions kept as opaque nodes.

Short-form tags (``!Ref``, ``!GetAtt``, ``!Sub`` ...) and long-form
single-key mappings (``{"Fn::GetAtt": [...]}``, ``{"Ref": ...}``) both load
into the same ``Intrinsic`` node, so callers never care which form a template
author used. Nothing is evaluated.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Iterator

import yaml

from stackdeploy.models.graph import OutputRef

# ${Stack.Outputs.Name} inside a Sub string
SUB_OUTPUT_PATTERN = re.compile(r"\$\{([A-Za-z0-9]+)\.Outputs\.([A-Za-z0-9_]+)\}")

# ${Name} inside a Sub string; ${!Literal} is an escape, ${AWS::X} a pseudo parameter
SUB_VARIABLE_PATTERN = re.compile(r"\$\{([^!}][^}]*)\}")

OUTPUTS_ATTRIBUTE = "Outputs."


@dataclass(frozen=True)
class Intrinsic:
    """
    An unevaluated intrinsic function.

    Attributes:
        name: Long-form name ("Ref", "Fn::GetAtt", "Fn::Sub", "Condition", ...)
        value: The function argument as loaded (scalar, list or mapping)
    """

    name: str
    value: Any

    def __repr__(self) -> str:
        return f"Intrinsic({self.name}, {self.value!r})"


def _long_name(tag_suffix: str) -> str:
    if tag_suffix in ("Ref", "Condition"):
        return tag_suffix
    return f"Fn::{tag_suffix}"


def _construct_intrinsic(loader: yaml.SafeLoader, tag_suffix: str, node: yaml.Node) -> Intrinsic:
    if isinstance(node, yaml.ScalarNode):
        value: Any = loader.construct_scalar(node)
        if tag_suffix == "GetAtt" and isinstance(value, str):
            resource, _, attribute = value.partition(".")
            value = [resource, attribute]
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)
    return Intrinsic(_long_name(tag_suffix), value)


class TemplateLoader(yaml.SafeLoader):
    """SafeLoader that understands ``!`` intrinsic tags."""


TemplateLoader.add_multi_constructor("!", _construct_intrinsic)


def _is_long_form(node: dict) -> bool:
    if len(node) != 1:
        return False
    (key,) = node
    return isinstance(key, str) and (key == "Ref" or key.startswith("Fn::"))


def normalize(node: Any) -> Any:
    """Recursively turn long-form intrinsic mappings into Intrinsic nodes."""
    if isinstance(node, Intrinsic):
        return Intrinsic(node.name, normalize(node.value))
    if isinstance(node, dict):
        if _is_long_form(node):
            ((name, value),) = node.items()
            value = normalize(value)
            if name == "Fn::GetAtt" and isinstance(value, str):
                resource, _, attribute = value.partition(".")
                value = [resource, attribute]
            return Intrinsic(name, value)
        return {key: normalize(value) for key, value in node.items()}
    if isinstance(node, list):
        return [normalize(item) for item in node]
    return node


def load_template(text: str) -> Any:
    """
    Load a YAML or JSON template body.

    Raises:
        yaml.YAMLError: If the text is not well-formed YAML, including scalars
            SafeLoader cannot construct (e.g. an unquoted ``2024-13-45``)
    """
    data = None
    if text.lstrip().startswith("{"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            # Could still be a YAML flow mapping
            data = None
    if data is None:
        try:
            data = yaml.load(text, Loader=TemplateLoader)
        except ValueError as e:
            raise yaml.YAMLError(f"invalid scalar value: {e}") from e
    return normalize(data)


def walk(node: Any) -> Iterator[Any]:
    """Yield ``node`` and every value nested inside it."""
    yield node
    if isinstance(node, Intrinsic):
        yield from walk(node.value)
    elif isinstance(node, dict):
        for value in node.values():
            yield from walk(value)
    elif isinstance(node, list):
        for item in node:
            yield from walk(item)


def sub_template(value: Any) -> tuple[str, dict]:
    """Split a Sub argument into its template string and variable map."""
    if isinstance(value, str):
        return value, {}
    if isinstance(value, list) and value and isinstance(value[0], str):
        variables = value[1] if len(value) > 1 and isinstance(value[1], dict) else {}
        return value[0], variables
    return "", {}


def find_output_refs(value: Any) -> list[OutputRef]:
    """
    Every nested stack output read anywhere inside ``value``.

    Recognizes ``GetAtt Stack.Outputs.Name`` in short, long and list form,
    and ``${Stack.Outputs.Name}`` inside a Sub string.
    """
    refs: list[OutputRef] = []
    for node in walk(value):
        if not isinstance(node, Intrinsic):
            continue

        if node.name == "Fn::GetAtt" and isinstance(node.value, list) and len(node.value) == 2:
            resource, attribute = node.value
            if isinstance(resource, str) and isinstance(attribute, str) and attribute.startswith(OUTPUTS_ATTRIBUTE):
                refs.append(OutputRef(resource, attribute[len(OUTPUTS_ATTRIBUTE):]))

        elif node.name == "Fn::Sub":
            template, _ = sub_template(node.value)
            for stack, output in SUB_OUTPUT_PATTERN.findall(template):
                refs.append(OutputRef(stack, output))

    return refs


def referenced_names(value: Any) -> set[str]:
    """
    Names a value refers to through Ref, GetAtt or Sub variables.

    Sub variables defined in the Sub's own variable map are excluded.
    """
    names: set[str] = set()
    for node in walk(value):
        if not isinstance(node, Intrinsic):
            continue

        if node.name == "Ref" and isinstance(node.value, str):
            names.add(node.value)
        elif node.name == "Fn::GetAtt" and isinstance(node.value, list) and node.value:
            if isinstance(node.value[0], str):
                names.add(node.value[0])
        elif node.name == "Fn::Sub":
            template, variables = sub_template(node.value)
            for name in SUB_VARIABLE_PATTERN.findall(template):
                name = name.split(".", 1)[0]
                if name not in variables:
                    names.add(name)

    return names
