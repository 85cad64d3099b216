"""Error taxonomy shared by every stage.

Remote failures are classified once, at the call boundary, into an
``ErrorClass``. Everything downstream (retry predicates, remediation hints,
exit codes) switches on that enum instead of matching error text.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorClass(Enum):
    """Failure classes for remote calls."""

    TRANSIENT = "transient"  # timeouts, throttling, 5xx, connection resets
    ACCESS_DENIED = "access_denied"
    MALFORMED_REQUEST = "malformed_request"
    MISSING_BUCKET = "missing_bucket"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"  # the service rejected the request content
    UNKNOWN = "unknown"

    @property
    def is_transient(self) -> bool:
        return self is ErrorClass.TRANSIENT


class SyntaxErrorKind(Enum):
    """Classification of a template validation error from the service."""

    FORMAT_ERROR = "format_error"
    INVALID_PROPERTY = "invalid_property"
    UNRESOLVED_DEPENDENCY = "unresolved_dependency"
    OTHER = "other"


REMEDIATIONS: dict[ErrorClass, str] = {
    ErrorClass.TRANSIENT: "Network or service timeout; re-run the deployment",
    ErrorClass.ACCESS_DENIED: (
        "Check the AWS profile credentials and that they grant s3:PutObject, "
        "s3:GetObject and cloudformation:* on the target resources"
    ),
    ErrorClass.MALFORMED_REQUEST: "Verify the template file format and content",
    ErrorClass.MISSING_BUCKET: (
        "Create the artifact bucket (or fix the bucket-name parameter) before deploying"
    ),
    ErrorClass.NOT_FOUND: "The referenced remote object does not exist",
    ErrorClass.VALIDATION: "The service rejected the request; fix the reported problem",
    ErrorClass.UNKNOWN: "Inspect the error details and the AWS console",
}

SYNTAX_REMEDIATIONS: dict[SyntaxErrorKind, str] = {
    SyntaxErrorKind.FORMAT_ERROR: "Check YAML syntax and CloudFormation template structure",
    SyntaxErrorKind.INVALID_PROPERTY: "Verify all resource properties are valid for their resource type",
    SyntaxErrorKind.UNRESOLVED_DEPENDENCY: "Check resource references, Ref/GetAtt targets and DependsOn entries",
    SyntaxErrorKind.OTHER: "Run the template through cfn-lint for a detailed diagnosis",
}


def remediation_for(error_class: ErrorClass) -> str:
    """Remediation hint for a failure class."""
    return REMEDIATIONS[error_class]


class InfraError(Exception):
    """A classified failure from a remote call."""

    def __init__(
        self,
        error_class: ErrorClass,
        message: str,
        code: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        self.error_class = error_class
        self.code = code
        self.operation = operation
        super().__init__(message)

    @property
    def remediation(self) -> str:
        return remediation_for(self.error_class)

    @property
    def is_transient(self) -> bool:
        return self.error_class.is_transient


class TransientInfraError(InfraError):
    """Network/timeout class failure; retried with bounded backoff."""

    def __init__(self, message: str, code: Optional[str] = None, operation: Optional[str] = None) -> None:
        super().__init__(ErrorClass.TRANSIENT, message, code=code, operation=operation)


class PermanentInfraError(InfraError):
    """Auth, permission or malformed-request failure; never retried."""


class StateConflictError(Exception):
    """The remote stack is busy or blocked and needs an operator decision."""

    def __init__(self, stack_name: str, status: str, message: str) -> None:
        self.stack_name = stack_name
        self.status = status
        super().__init__(message)


class OperationTimeoutError(Exception):
    """Polling exceeded its bound; the remote outcome is unknown."""

    def __init__(self, stack_name: str, waited_seconds: float, last_status: Optional[str]) -> None:
        self.stack_name = stack_name
        self.waited_seconds = waited_seconds
        self.last_status = last_status
        super().__init__(
            f"Timed out after {waited_seconds:.0f}s waiting for stack {stack_name} "
            f"(last status: {last_status or 'unknown'}); re-query the stack for its real state"
        )


def is_transient(exc: BaseException) -> bool:
    """Retry predicate: only classified transient failures are retried."""
    return isinstance(exc, InfraError) and exc.is_transient
