"""Classification of botocore failures into the pipeline's error taxonomy."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ParamValidationError,
    PartialCredentialsError,
    ProfileNotFound,
    ReadTimeoutError,
)

from stackdeploy.errors import (
    ErrorClass,
    InfraError,
    PermanentInfraError,
    SyntaxErrorKind,
    TransientInfraError,
)

TRANSIENT_CODES = frozenset({
    "RequestTimeout",
    "RequestTimeoutException",
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "SlowDown",
    "ServiceUnavailable",
    "InternalError",
    "InternalFailure",
    "PriorRequestNotComplete",
})

ACCESS_DENIED_CODES = frozenset({
    "AccessDenied",
    "AccessDeniedException",
    "AllAccessDisabled",
    "UnauthorizedOperation",
    "InvalidAccessKeyId",
    "InvalidClientTokenId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "ExpiredTokenException",
    "UnrecognizedClientException",
    "403",
})

MALFORMED_CODES = frozenset({
    "InvalidRequest",
    "InvalidArgument",
    "MalformedXML",
    "InvalidBucketName",
    "BadDigest",
    "EntityTooLarge",
    "InvalidParameterValue",
    "InvalidParameterCombination",
    "400",
})

NOT_FOUND_CODES = frozenset({
    "NoSuchKey",
    "NotFound",
    "ParameterNotFound",
    "ResourceNotFoundException",
    "404",
})

CONNECTION_ERRORS = (
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
)

CREDENTIAL_ERRORS = (NoCredentialsError, PartialCredentialsError, ProfileNotFound)

# Markers in ValidateTemplate errors, most specific first: most messages
# start with "Template format error:" whatever the underlying problem
SYNTAX_MARKERS: tuple[tuple[str, SyntaxErrorKind], ...] = (
    ("Unresolved resource dependencies", SyntaxErrorKind.UNRESOLVED_DEPENDENCY),
    ("Invalid template property", SyntaxErrorKind.INVALID_PROPERTY),
    ("Invalid template resource property", SyntaxErrorKind.INVALID_PROPERTY),
    ("Unrecognized resource types", SyntaxErrorKind.INVALID_PROPERTY),
    ("Template format error", SyntaxErrorKind.FORMAT_ERROR),
)


def error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def error_message(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Message", "")) or str(exc)


def classify_client_error(exc: ClientError) -> ErrorClass:
    """Map a ClientError to an ErrorClass by code, then by HTTP status."""
    code = error_code(exc)
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")

    if code in TRANSIENT_CODES:
        return ErrorClass.TRANSIENT
    if code == "NoSuchBucket":
        return ErrorClass.MISSING_BUCKET
    if code in ACCESS_DENIED_CODES:
        return ErrorClass.ACCESS_DENIED
    if code in MALFORMED_CODES:
        return ErrorClass.MALFORMED_REQUEST
    if code in NOT_FOUND_CODES:
        return ErrorClass.NOT_FOUND
    if code == "ValidationError":
        return ErrorClass.VALIDATION
    if isinstance(status, int) and status >= 500:
        return ErrorClass.TRANSIENT
    return ErrorClass.UNKNOWN


def to_infra_error(exc: Exception, operation: Optional[str] = None) -> InfraError:
    """Wrap a botocore exception in the matching InfraError subclass."""
    if isinstance(exc, ClientError):
        error_class = classify_client_error(exc)
        code = error_code(exc)
        message = error_message(exc)
        if error_class.is_transient:
            return TransientInfraError(message, code=code, operation=operation)
        return PermanentInfraError(error_class, message, code=code, operation=operation)

    if isinstance(exc, CONNECTION_ERRORS):
        return TransientInfraError(str(exc), code=type(exc).__name__, operation=operation)

    if isinstance(exc, CREDENTIAL_ERRORS):
        return PermanentInfraError(
            ErrorClass.ACCESS_DENIED, str(exc), code=type(exc).__name__, operation=operation
        )

    if isinstance(exc, ParamValidationError):
        return PermanentInfraError(
            ErrorClass.MALFORMED_REQUEST, str(exc), code=type(exc).__name__, operation=operation
        )

    return PermanentInfraError(
        ErrorClass.UNKNOWN, str(exc), code=type(exc).__name__, operation=operation
    )


@contextmanager
def translate_errors(operation: str) -> Iterator[None]:
    """Re-raise botocore exceptions raised inside the block as InfraError."""
    try:
        yield
    except (ClientError, BotoCoreError) as e:
        raise to_infra_error(e, operation) from e


def classify_template_error(message: str) -> SyntaxErrorKind:
    """Classify the text of a ValidateTemplate rejection."""
    for marker, kind in SYNTAX_MARKERS:
        if marker.lower() in message.lower():
            return kind
    return SyntaxErrorKind.OTHER
