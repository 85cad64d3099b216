"""AWS adapters for the remote collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from stackdeploy.aws.base import (
    NoUpdatesError,
    ObjectInfo,
    ObjectStore,
    ParameterStore,
    ProvisioningService,
    SyntaxChecker,
    TemplateRejection,
    TemplateSummary,
)
from stackdeploy.aws.cloudformation import CloudFormationService
from stackdeploy.aws.parameters import AwsParameterStore
from stackdeploy.aws.s3 import ArtifactLocation, S3ObjectStore, parse_artifact_uri
from stackdeploy.aws.session import create_client, create_session
from stackdeploy.config.settings import DeployConfig


@dataclass
class AwsServices:
    """boto3-backed collaborators sharing one session."""

    session: Any
    config: DeployConfig
    provisioning: CloudFormationService
    parameters: AwsParameterStore

    @classmethod
    def connect(cls, config: DeployConfig, profile: Optional[str]) -> "AwsServices":
        """
        Build every client for ``profile`` in ``config.region``.

        Raises:
            InfraError: If the session or a client cannot be created
        """
        session = create_session(profile, config.region)
        timeouts = config.timeouts
        return cls(
            session=session,
            config=config,
            provisioning=CloudFormationService(create_client(session, "cloudformation", timeouts)),
            parameters=AwsParameterStore(
                create_client(session, "ssm", timeouts),
                create_client(session, "secretsmanager", timeouts),
            ),
        )

    def object_store(self, bucket: str) -> S3ObjectStore:
        # Uploads are retried by the publisher, which counts attempts itself
        client = create_client(self.session, "s3", self.config.timeouts, max_attempts=1)
        return S3ObjectStore(client, bucket, self.config.region)


__all__ = [
    "ArtifactLocation",
    "AwsParameterStore",
    "AwsServices",
    "CloudFormationService",
    "NoUpdatesError",
    "ObjectInfo",
    "ObjectStore",
    "ParameterStore",
    "ProvisioningService",
    "S3ObjectStore",
    "SyntaxChecker",
    "TemplateRejection",
    "TemplateSummary",
    "parse_artifact_uri",
]
