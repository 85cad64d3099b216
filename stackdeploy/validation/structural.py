"""Per-document structural validation: existence, size, syntax, Main shape."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import structlog

from stackdeploy.aws.base import SyntaxChecker
from stackdeploy.config.settings import LimitsConfig
from stackdeploy.errors import SYNTAX_REMEDIATIONS, InfraError, SyntaxErrorKind, is_transient
from stackdeploy.models.documents import TemplateDocument, TemplateModel
from stackdeploy.models.findings import (
    FindingCategory,
    Severity,
    ValidationFinding,
    ValidationReport,
)
from stackdeploy.parser import Intrinsic, parse_template, referenced_names
from stackdeploy.parser.intrinsics import SUB_VARIABLE_PATTERN, sub_template
from stackdeploy.utils.logging import get_logger
from stackdeploy.utils.retry import RetryPolicy, SleepFn, run_with_retry

logger = get_logger("validation.structural")

SUBSTITUTION_FUNCTIONS = ("Fn::Sub", "Fn::Join", "Ref")

SPLIT_REMEDIATION = "split document into smaller nested stacks"
HARD_CODED_URL_MESSAGE = "insecure hard-coded reference: must use runtime substitution"


def _url_host(template: str) -> str:
    """Text between the scheme and the first path separator."""
    rest = template.split("://", 1)[1] if "://" in template else template
    return rest.split("/", 1)[0]


def _join_as_sub(value: Any, parameters: set[str]) -> str:
    """
    Render a Join argument as a Sub-style string.

    Refs to declared parameters become ``${Name}``; any other intrinsic
    becomes an opaque placeholder that never counts as a parameter.
    """
    if not (isinstance(value, list) and len(value) == 2 and isinstance(value[1], list)):
        return ""
    delimiter, parts = value
    rendered = []
    for part in parts:
        if isinstance(part, str):
            rendered.append(part)
        elif isinstance(part, Intrinsic) and part.name == "Ref" and part.value in parameters:
            rendered.append("${" + part.value + "}")
        else:
            rendered.append("<expr>")
    return str(delimiter).join(rendered)


def is_runtime_substitution(template_url: Any, model: TemplateModel) -> bool:
    """
    True when the bucket part of a TemplateURL comes from a declared parameter.

    A parameterized path under a literal bucket does not count.
    """
    if not isinstance(template_url, Intrinsic) or template_url.name not in SUBSTITUTION_FUNCTIONS:
        return False

    parameters = set(model.parameters)
    if template_url.name == "Ref":
        return template_url.value in parameters

    if template_url.name == "Fn::Join":
        template, variables = _join_as_sub(template_url.value, parameters), {}
    else:
        template, variables = sub_template(template_url.value)

    for name in SUB_VARIABLE_PATTERN.findall(_url_host(template)):
        name = name.split(".", 1)[0]
        if name in variables:
            if referenced_names(variables[name]) & parameters:
                return True
        elif name in parameters:
            return True
    return False


def check_main_structure(document: TemplateDocument) -> list[ValidationFinding]:
    """
    Shape checks for the Main document.

    Main must declare at least one nested stack, and every nested stack
    TemplateURL must be a runtime substitution of a template parameter.
    """
    parsed = parse_template(document)
    if parsed.is_err():
        return [ValidationFinding(
            document_name=document.name,
            severity=Severity.ERROR,
            category=FindingCategory.SYNTAX,
            message=f"Cannot parse Main document: {parsed.unwrap_err()}",
            remediation=SYNTAX_REMEDIATIONS[SyntaxErrorKind.FORMAT_ERROR],
        )]
    model = parsed.unwrap()

    if not model.nested_stacks:
        return [ValidationFinding(
            document_name=document.name,
            severity=Severity.ERROR,
            category=FindingCategory.STRUCTURE,
            message="Main document declares no nested stacks (AWS::CloudFormation::Stack)",
            remediation="Declare each nested document as an AWS::CloudFormation::Stack resource",
        )]

    findings = []
    for declaration in model.nested_stacks:
        if declaration.template_url is None:
            findings.append(ValidationFinding(
                document_name=document.name,
                severity=Severity.ERROR,
                category=FindingCategory.STRUCTURE,
                message=f"Nested stack {declaration.logical_id} has no TemplateURL",
            ))
        elif not is_runtime_substitution(declaration.template_url, model):
            findings.append(ValidationFinding(
                document_name=document.name,
                severity=Severity.ERROR,
                category=FindingCategory.STRUCTURE,
                message=f"Nested stack {declaration.logical_id} TemplateURL: {HARD_CODED_URL_MESSAGE}",
                remediation=(
                    "Build the URL with !Sub or !Join from a template parameter, "
                    "e.g. https://${S3BucketName}.s3.amazonaws.com/templates/<file>"
                ),
            ))
    return findings


class StructuralValidator:
    """
    Checks each document on its own.

    Findings per document, in order: existence, size, syntax (through the
    syntax checker), and for Main the nested stack shape. A missing document
    stops its own checks but never the checks of other documents.
    """

    def __init__(
        self,
        checker: SyntaxChecker,
        limits: Optional[LimitsConfig] = None,
        parallelism: int = 4,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: SleepFn = asyncio.sleep,
        log: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        """
        Initialize the validator.

        Args:
            checker: Remote or offline syntax checker
            limits: Size limits
            parallelism: Documents checked concurrently
            retry_policy: Retry policy for transient checker failures
            sleep: Sleep used between retries
            log: Logger bound to the run context
        """
        self.checker = checker
        self.limits = limits or LimitsConfig()
        self.parallelism = parallelism
        self.retry_policy = retry_policy or RetryPolicy()
        self.sleep = sleep
        self.log = log or logger

    async def validate(self, documents: list[TemplateDocument]) -> ValidationReport:
        """
        Validate every document, bounded by ``parallelism``.

        Findings keep the order of ``documents``.
        """
        semaphore = asyncio.Semaphore(self.parallelism)

        async def _bounded(document: TemplateDocument) -> list[ValidationFinding]:
            async with semaphore:
                return await self.check(document)

        per_document = await asyncio.gather(*(_bounded(d) for d in documents))
        report = ValidationReport.of(f for findings in per_document for f in findings)

        self.log.info(
            "structural_validation_completed",
            documents=len(documents),
            errors=len(report.errors),
            warnings=len(report.warnings),
        )
        return report

    async def check(self, document: TemplateDocument) -> list[ValidationFinding]:
        """Findings for one document."""
        if not document.exists or document.read_error or not document.raw_content.strip():
            detail = f": {document.read_error}" if document.read_error else ""
            return [ValidationFinding(
                document_name=document.name,
                severity=Severity.ERROR,
                category=FindingCategory.STRUCTURE,
                message=f"document missing or empty{detail}",
                remediation=f"Check that {document.path or document.name} exists and is readable",
            )]

        findings: list[ValidationFinding] = []
        oversized = document.byte_size > self.limits.max_template_bytes

        if oversized:
            findings.append(ValidationFinding(
                document_name=document.name,
                severity=Severity.ERROR,
                category=FindingCategory.SIZE,
                message=(
                    f"{document.byte_size} bytes exceeds the "
                    f"{self.limits.max_template_bytes}-byte template limit"
                ),
                remediation=SPLIT_REMEDIATION,
            ))
        elif not document.is_main and document.byte_size > self.limits.recommended_nested_bytes:
            findings.append(ValidationFinding(
                document_name=document.name,
                severity=Severity.WARNING,
                category=FindingCategory.SIZE,
                message=(
                    f"{document.byte_size} bytes exceeds the recommended "
                    f"{self.limits.recommended_nested_bytes} bytes for a nested document"
                ),
                remediation=SPLIT_REMEDIATION,
            ))

        # The service refuses bodies over the hard limit, so there is nothing to check
        syntax_findings = [] if oversized else await self._check_syntax(document)
        findings.extend(syntax_findings)

        if document.is_main and not syntax_findings:
            findings.extend(check_main_structure(document))

        return findings

    async def _check_syntax(self, document: TemplateDocument) -> list[ValidationFinding]:
        outcome = await run_with_retry(
            lambda: asyncio.to_thread(self.checker.validate_document, document.raw_content),
            self.retry_policy,
            is_transient,
            sleep=self.sleep,
            logger=self.log.bind(document=document.name),
        )

        if not outcome.succeeded:
            error = outcome.error
            if not isinstance(error, InfraError):
                raise error
            self.log.warning("syntax_check_unavailable", document=document.name, error=str(error))
            return [ValidationFinding(
                document_name=document.name,
                severity=Severity.ERROR,
                category=FindingCategory.SYNTAX,
                message=f"Template validation call failed after {outcome.attempts} attempt(s): {error}",
                remediation=error.remediation,
            )]

        result = outcome.value
        if result.is_ok():
            return []

        rejection = result.unwrap_err()
        self.log.info("syntax_rejected", document=document.name, kind=rejection.kind.value)
        return [ValidationFinding(
            document_name=document.name,
            severity=Severity.ERROR,
            category=FindingCategory.SYNTAX,
            message=f"Template validation failed: {rejection.message}",
            remediation=SYNTAX_REMEDIATIONS[rejection.kind],
        )]
