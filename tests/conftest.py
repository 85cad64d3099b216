"""Shared test fixtures: in-memory collaborators and a sample document set."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

import pytest

from stackdeploy.aws.base import (
    NoUpdatesError,
    ObjectInfo,
    ObjectStore,
    ParameterStore,
    ProvisioningService,
    TemplateRejection,
    TemplateSummary,
)
from stackdeploy.config.settings import DeployConfig, StackConfig
from stackdeploy.errors import ErrorClass, InfraError, PermanentInfraError
from stackdeploy.models.documents import DocumentRole, TemplateDocument
from stackdeploy.utils.logging import RunContext
from stackdeploy.utils.result import Err, Result
from stackdeploy.validation import LocalSyntaxChecker

MAIN_TEMPLATE = """\
AWSTemplateFormatVersion: "2010-09-09"
Description: Scheduled file writer
Parameters:
  S3BucketName:
    Type: String
  ApplicationName:
    Type: String
    Default: scheduled-file-writer
  VpcCidr:
    Type: String
    Default: 10.0.0.0/16
Resources:
  NetworkingStack:
    Type: AWS::CloudFormation::Stack
    Properties:
      TemplateURL: !Sub https://${S3BucketName}.s3.amazonaws.com/templates/networking-stack.yaml
      Parameters:
        ApplicationName: !Ref ApplicationName
        VpcCidr: !Ref VpcCidr
  ComputeStack:
    Type: AWS::CloudFormation::Stack
    DependsOn: NetworkingStack
    Properties:
      TemplateURL: !Sub https://${S3BucketName}.s3.amazonaws.com/templates/compute-stack.yaml
      Parameters:
        ApplicationName: !Ref ApplicationName
        VpcId: !GetAtt NetworkingStack.Outputs.VpcId
        SubnetId: !GetAtt NetworkingStack.Outputs.PrivateSubnetId
Outputs:
  ClusterName:
    Value: !GetAtt ComputeStack.Outputs.ClusterName
"""

NETWORKING_TEMPLATE = """\
AWSTemplateFormatVersion: "2010-09-09"
Description: Networking
Parameters:
  ApplicationName:
    Type: String
  VpcCidr:
    Type: String
Resources:
  Vpc:
    Type: AWS::EC2::VPC
    Properties:
      CidrBlock: !Ref VpcCidr
      Tags:
        - Key: Name
          Value: !Sub ${ApplicationName}-vpc
  PrivateSubnet:
    Type: AWS::EC2::Subnet
    Properties:
      VpcId: !Ref Vpc
      CidrBlock: 10.0.1.0/24
Outputs:
  VpcId:
    Value: !Ref Vpc
  PrivateSubnetId:
    Value: !Ref PrivateSubnet
"""

COMPUTE_TEMPLATE = """\
AWSTemplateFormatVersion: "2010-09-09"
Description: Compute
Parameters:
  ApplicationName:
    Type: String
  VpcId:
    Type: AWS::EC2::VPC::Id
  SubnetId:
    Type: AWS::EC2::Subnet::Id
Resources:
  Cluster:
    Type: AWS::ECS::Cluster
    Properties:
      ClusterName: !Sub ${ApplicationName}-cluster
Outputs:
  ClusterName:
    Value: !Ref Cluster
"""

BUCKET = "artifacts-bucket"
ARTIFACT_URI = f"s3://{BUCKET}/releases"


def make_documents(
    main: str = MAIN_TEMPLATE,
    networking: str = NETWORKING_TEMPLATE,
    compute: str = COMPUTE_TEMPLATE,
) -> list[TemplateDocument]:
    return [
        TemplateDocument.from_text("main-template.yaml", main, DocumentRole.MAIN),
        TemplateDocument.from_text("networking-stack.yaml", networking),
        TemplateDocument.from_text("compute-stack.yaml", compute),
    ]


# -- In-memory collaborators --

class FakeProvisioning(ProvisioningService):
    """
    Scripted provisioning service.

    ``statuses`` is consumed one per status read; the last entry repeats.
    """

    def __init__(
        self,
        statuses: Sequence[Optional[str]] = (None,),
        outputs: Optional[dict[str, str]] = None,
        no_updates: bool = False,
        failure_reason: Optional[str] = None,
        rejections: Optional[dict[str, TemplateRejection]] = None,
        status_errors: Sequence[InfraError] = (),
    ) -> None:
        self.statuses = list(statuses)
        self.outputs = outputs or {}
        self.no_updates = no_updates
        self.failure_reason = failure_reason
        self.rejections = rejections or {}
        self.status_errors = list(status_errors)
        self.calls: list[tuple] = []
        self.checker = LocalSyntaxChecker()

    @property
    def mutations(self) -> list[str]:
        return [c[0] for c in self.calls if c[0] in ("create_stack", "update_stack", "delete_stack")]

    def validate_document(self, body: str) -> Result[TemplateSummary, TemplateRejection]:
        self.calls.append(("validate_document",))
        for marker, rejection in self.rejections.items():
            if marker in body:
                return Err(rejection)
        return self.checker.validate_document(body)

    def get_stack_status(self, stack_name: str) -> Optional[str]:
        self.calls.append(("get_stack_status", stack_name))
        if self.status_errors:
            raise self.status_errors.pop(0)
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    def create_stack(self, stack_name, template_url, parameters, capabilities=(), tags=None):
        self.calls.append(("create_stack", stack_name, template_url, dict(parameters), tuple(capabilities)))
        return f"arn:aws:cloudformation:us-east-1:123456789012:stack/{stack_name}/1"

    def update_stack(self, stack_name, template_url, parameters, capabilities=(), tags=None):
        self.calls.append(("update_stack", stack_name, template_url, dict(parameters), tuple(capabilities)))
        if self.no_updates:
            raise NoUpdatesError("No updates are to be performed.")
        return f"arn:aws:cloudformation:us-east-1:123456789012:stack/{stack_name}/1"

    def delete_stack(self, stack_name: str) -> None:
        self.calls.append(("delete_stack", stack_name))

    def describe_outputs(self, stack_name: str) -> dict[str, str]:
        return dict(self.outputs)

    def last_failure_reason(self, stack_name: str) -> Optional[str]:
        return self.failure_reason


class FakeObjectStore(ObjectStore):
    """
    Dict-backed object store.

    ``put_errors`` maps a key suffix to the errors raised by successive puts
    of that key; ``size_override`` maps a key suffix to a reported size;
    ``bucket_errors`` are raised by successive bucket checks.
    """

    def __init__(
        self,
        bucket: str = BUCKET,
        put_errors: Optional[dict[str, list[Exception]]] = None,
        size_override: Optional[dict[str, int]] = None,
        vanish: Sequence[str] = (),
        bucket_errors: Sequence[InfraError] = (),
    ) -> None:
        self._bucket = bucket
        self.objects: dict[str, bytes] = {}
        self.metadata: dict[str, dict[str, str]] = {}
        self.put_errors = put_errors or {}
        self.size_override = size_override or {}
        self.vanish = set(vanish)
        self.bucket_errors = list(bucket_errors)
        self.bucket_checks = 0
        self.put_calls: list[str] = []

    @property
    def bucket(self) -> str:
        return self._bucket

    def _match(self, table, key):
        for suffix in table:
            if key.endswith(suffix):
                return suffix
        return None

    def put(self, key, body, content_type="text/yaml", metadata=None):
        self.put_calls.append(key)
        suffix = self._match(self.put_errors, key)
        if suffix is not None and self.put_errors[suffix]:
            raise self.put_errors[suffix].pop(0)
        self.objects[key] = body
        self.metadata[key] = dict(metadata or {})

    def head(self, key):
        if key not in self.objects or self._match(self.vanish, key):
            return None
        suffix = self._match(self.size_override, key)
        size = self.size_override[suffix] if suffix is not None else len(self.objects[key])
        return ObjectInfo(size=size, last_modified=datetime(2024, 1, 1, tzinfo=timezone.utc))

    def head_bucket(self):
        self.bucket_checks += 1
        if self.bucket_errors:
            raise self.bucket_errors.pop(0)

    def url_for(self, key):
        return f"https://{self._bucket}.s3.amazonaws.com/{key}"


class FakeParameterStore(ParameterStore):
    def __init__(
        self,
        parameters: Optional[dict[str, str]] = None,
        secrets: Optional[dict[str, str]] = None,
    ) -> None:
        self.parameters = parameters or {}
        self.secrets = secrets or {}

    def get_parameter(self, name: str) -> str:
        if name not in self.parameters:
            raise PermanentInfraError(ErrorClass.NOT_FOUND, f"Parameter {name} not found", code="ParameterNotFound")
        return self.parameters[name]

    def get_secret(self, secret_id: str) -> str:
        if secret_id not in self.secrets:
            raise PermanentInfraError(
                ErrorClass.NOT_FOUND, f"Secret {secret_id} not found", code="ResourceNotFoundException"
            )
        return self.secrets[secret_id]


async def no_sleep(seconds: float) -> None:
    return None


# -- Fixtures --

@pytest.fixture
def documents() -> list[TemplateDocument]:
    return make_documents()


@pytest.fixture
def provisioning() -> FakeProvisioning:
    return FakeProvisioning()


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def parameter_store() -> FakeParameterStore:
    return FakeParameterStore(
        parameters={
            "/scheduled-file-writer/s3/bucket-name": BUCKET,
            "/scheduled-file-writer/network/vpc-cidr": "10.0.0.0/16",
        },
        secrets={"scheduled-file-writer/smb-credentials": '{"username": "writer", "password": "s3cret"}'},
    )


@pytest.fixture
def config() -> DeployConfig:
    return DeployConfig(
        region="us-east-1",
        parallelism=2,
        probe_reachability=False,
        stack=StackConfig(
            application_name="scheduled-file-writer",
            parameters={
                "ApplicationName": "{application}",
                "VpcCidr": "ssm:/{application}/network/vpc-cidr",
            },
        ),
    )


@pytest.fixture
def run_context() -> RunContext:
    return RunContext(stack_name="scheduled-file-writer-stack", region="us-east-1", profile="test")


@pytest.fixture
def template_dir(tmp_path: Path) -> Path:
    """Sample documents written to disk in the default layout."""
    infrastructure = tmp_path / "infrastructure"
    nested = infrastructure / "templates"
    nested.mkdir(parents=True)
    (infrastructure / "main-template.yaml").write_text(MAIN_TEMPLATE)
    (nested / "networking-stack.yaml").write_text(NETWORKING_TEMPLATE)
    (nested / "compute-stack.yaml").write_text(COMPUTE_TEMPLATE)
    return infrastructure
