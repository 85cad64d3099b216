"""Read the document set from the local filesystem."""

from __future__ import annotations

from pathlib import Path

from stackdeploy.config.settings import StackConfig
from stackdeploy.models.documents import DocumentRole, TemplateDocument
from stackdeploy.utils.logging import get_logger

logger = get_logger("pipeline.loader")

TEMPLATE_SUFFIXES = (".yaml", ".yml", ".json", ".template")


def nested_paths(stack: StackConfig) -> list[Path]:
    """
    Paths of the Nested documents.

    The configured list is used as given, so a missing file still shows up
    as a document; without a list every template file in the directory is
    used, in name order.
    """
    if stack.nested_templates:
        return [stack.nested_dir / name for name in stack.nested_templates]

    if not stack.nested_dir.is_dir():
        return []

    main = stack.main_template.resolve() if stack.main_template.exists() else None
    return sorted(
        path
        for path in stack.nested_dir.iterdir()
        if path.is_file() and path.suffix in TEMPLATE_SUFFIXES and path.resolve() != main
    )


def load_documents(stack: StackConfig) -> list[TemplateDocument]:
    """
    Read Main and every Nested document, once.

    Returns:
        Main first, then the Nested documents
    """
    documents = [TemplateDocument.from_path(stack.main_template, DocumentRole.MAIN)]
    documents.extend(
        TemplateDocument.from_path(path, DocumentRole.NESTED)
        for path in nested_paths(stack)
    )

    logger.info(
        "documents_loaded",
        count=len(documents),
        missing=[d.name for d in documents if not d.exists],
        total_bytes=sum(d.byte_size for d in documents),
    )
    return documents
