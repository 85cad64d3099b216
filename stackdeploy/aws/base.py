"""Abstract interfaces for the remote collaborators.

The pipeline only talks to these interfaces. The boto3 adapters in this
package implement them for AWS; tests implement them in memory. Methods are
blocking, and callers run them through ``asyncio.to_thread``.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from stackdeploy.errors import ErrorClass, PermanentInfraError, SyntaxErrorKind
from stackdeploy.utils.result import Result

SSM_PREFIX = "ssm:"
SECRET_PREFIX = "secret:"


@dataclass(frozen=True)
class TemplateSummary:
    """What the syntax check learned about an accepted template."""

    description: Optional[str] = None
    parameters: tuple[str, ...] = ()
    capabilities: tuple[str, ...] = ()


@dataclass(frozen=True)
class TemplateRejection:
    """A template the syntax check refused, with the raw reason."""

    kind: SyntaxErrorKind
    message: str


@dataclass(frozen=True)
class ObjectInfo:
    """Metadata of a stored object."""

    size: int
    last_modified: Optional[datetime] = None


class NoUpdatesError(Exception):
    """The update request contained no changes to the stack."""


class SyntaxChecker(ABC):
    """Anything that can check a template body for syntax errors."""

    @abstractmethod
    def validate_document(self, body: str) -> Result[TemplateSummary, TemplateRejection]:
        """
        Check a template body.

        Returns:
            Ok(TemplateSummary) if accepted, Err(TemplateRejection) if the
            template itself is invalid

        Raises:
            InfraError: If the check could not be performed
        """
        ...


class ProvisioningService(SyntaxChecker):
    """Client-side driver of the stack provisioning service."""

    @abstractmethod
    def get_stack_status(self, stack_name: str) -> Optional[str]:
        """Current raw stack status, or None when the stack does not exist."""
        ...

    @abstractmethod
    def create_stack(
        self,
        stack_name: str,
        template_url: str,
        parameters: dict[str, str],
        capabilities: Sequence[str] = (),
        tags: Optional[dict[str, str]] = None,
    ) -> Optional[str]:
        """Start a stack creation. Returns the stack id."""
        ...

    @abstractmethod
    def update_stack(
        self,
        stack_name: str,
        template_url: str,
        parameters: dict[str, str],
        capabilities: Sequence[str] = (),
        tags: Optional[dict[str, str]] = None,
    ) -> Optional[str]:
        """
        Start a stack update. Returns the stack id.

        Raises:
            NoUpdatesError: If the update would change nothing
        """
        ...

    @abstractmethod
    def delete_stack(self, stack_name: str) -> None:
        """Start a stack deletion."""
        ...

    @abstractmethod
    def describe_outputs(self, stack_name: str) -> dict[str, str]:
        """Stack outputs as OutputKey -> OutputValue."""
        ...

    @abstractmethod
    def last_failure_reason(self, stack_name: str) -> Optional[str]:
        """Reason of the most recent ``*_FAILED`` stack event, if any."""
        ...


class ObjectStore(ABC):
    """Bucket-scoped artifact storage."""

    @property
    @abstractmethod
    def bucket(self) -> str:
        ...

    @abstractmethod
    def put(
        self,
        key: str,
        body: bytes,
        content_type: str = "text/yaml",
        metadata: Optional[dict[str, str]] = None,
    ) -> None:
        ...

    @abstractmethod
    def head(self, key: str) -> Optional[ObjectInfo]:
        """Object metadata, or None when the key does not exist."""
        ...

    @abstractmethod
    def head_bucket(self) -> None:
        """
        Check the bucket exists and is accessible.

        Raises:
            InfraError: Classified as MISSING_BUCKET or ACCESS_DENIED
        """
        ...

    @abstractmethod
    def url_for(self, key: str) -> str:
        """HTTPS URL the provisioning service fetches the object from."""
        ...


class ParameterStore(ABC):
    """
    Resolves parameter references.

    ``ssm:<name>`` reads a Parameter Store value, ``secret:<id>#<key>`` reads
    one JSON key of a secret (the whole secret string without ``#<key>``).
    Anything else is returned unchanged.
    """

    @abstractmethod
    def get_parameter(self, name: str) -> str:
        ...

    @abstractmethod
    def get_secret(self, secret_id: str) -> str:
        ...

    def lookup(self, reference: str) -> str:
        """
        Resolve one reference.

        Raises:
            InfraError: If the value cannot be read or the secret key is missing
        """
        if reference.startswith(SSM_PREFIX):
            return self.get_parameter(reference[len(SSM_PREFIX):])

        if reference.startswith(SECRET_PREFIX):
            secret_id, _, key = reference[len(SECRET_PREFIX):].partition("#")
            secret = self.get_secret(secret_id)
            if not key:
                return secret
            try:
                values = json.loads(secret)
            except json.JSONDecodeError as e:
                raise PermanentInfraError(
                    ErrorClass.VALIDATION,
                    f"Secret {secret_id} is not a JSON object: {e}",
                    operation="GetSecretValue",
                ) from e
            if not isinstance(values, dict) or key not in values:
                raise PermanentInfraError(
                    ErrorClass.NOT_FOUND,
                    f"Secret {secret_id} has no key '{key}'",
                    operation="GetSecretValue",
                )
            return str(values[key])

        return reference
