"""Structured template parsing."""

from stackdeploy.parser.intrinsics import (
    Intrinsic,
    find_output_refs,
    load_template,
    referenced_names,
)
from stackdeploy.parser.template import (
    NESTED_STACK_TYPE,
    build_model,
    parse_template,
    template_name_from_url,
)

__all__ = [
    "Intrinsic",
    "NESTED_STACK_TYPE",
    "build_model",
    "find_output_refs",
    "load_template",
    "parse_template",
    "referenced_names",
    "template_name_from_url",
]
