"""Tests for the boto3 adapters and error classification."""

from __future__ import annotations

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError

from stackdeploy.aws.base import NoUpdatesError
from stackdeploy.aws.cloudformation import CloudFormationService
from stackdeploy.aws.errors import classify_client_error, classify_template_error, to_infra_error
from stackdeploy.aws.parameters import AwsParameterStore
from stackdeploy.aws.s3 import S3ObjectStore
from stackdeploy.errors import ErrorClass, InfraError, PermanentInfraError, SyntaxErrorKind, TransientInfraError


def client_error(code: str, message: str = "", status: int = 400, operation: str = "Operation") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": message}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


class FakeClient:
    """Returns canned responses or raises canned errors per method name."""

    def __init__(self, **responses) -> None:
        self.responses = responses
        self.requests: list[tuple[str, dict]] = []

    def __getattr__(self, name):
        if name not in self.responses:
            raise AttributeError(name)

        def method(**kwargs):
            self.requests.append((name, kwargs))
            response = self.responses[name]
            if isinstance(response, Exception):
                raise response
            return response

        return method


# -- Classification --

@pytest.mark.parametrize(
    "code, status, error_class",
    [
        ("Throttling", 400, ErrorClass.TRANSIENT),
        ("SlowDown", 503, ErrorClass.TRANSIENT),
        ("AccessDenied", 403, ErrorClass.ACCESS_DENIED),
        ("ExpiredToken", 400, ErrorClass.ACCESS_DENIED),
        ("NoSuchBucket", 404, ErrorClass.MISSING_BUCKET),
        ("InvalidArgument", 400, ErrorClass.MALFORMED_REQUEST),
        ("ParameterNotFound", 400, ErrorClass.NOT_FOUND),
        ("ValidationError", 400, ErrorClass.VALIDATION),
        ("SomethingOdd", 502, ErrorClass.TRANSIENT),
        ("SomethingOdd", 400, ErrorClass.UNKNOWN),
    ],
)
def test_classify_client_error(code, status, error_class) -> None:
    assert classify_client_error(client_error(code, status=status)) is error_class


def test_connection_errors_are_transient() -> None:
    error = to_infra_error(EndpointConnectionError(endpoint_url="https://s3.amazonaws.com"), "PutObject")

    assert isinstance(error, TransientInfraError)
    assert error.operation == "PutObject"


def test_missing_credentials_are_access_denied() -> None:
    error = to_infra_error(NoCredentialsError())

    assert isinstance(error, PermanentInfraError)
    assert error.error_class is ErrorClass.ACCESS_DENIED
    assert "credentials" in error.remediation


@pytest.mark.parametrize(
    "message, kind",
    [
        ("Template format error: Unresolved resource dependencies [Vpc] in the Resources block", SyntaxErrorKind.UNRESOLVED_DEPENDENCY),
        ("Invalid template property or properties [Foo]", SyntaxErrorKind.INVALID_PROPERTY),
        ("Template format error: YAML not well-formed.", SyntaxErrorKind.FORMAT_ERROR),
        ("Something else entirely", SyntaxErrorKind.OTHER),
    ],
)
def test_classify_template_error(message, kind) -> None:
    assert classify_template_error(message) is kind


# -- CloudFormation --

def test_missing_stack_has_no_status() -> None:
    client = FakeClient(describe_stacks=client_error("ValidationError", "Stack with id app-stack does not exist"))

    assert CloudFormationService(client).get_stack_status("app-stack") is None


def test_stack_status_is_read() -> None:
    client = FakeClient(describe_stacks={"Stacks": [{"StackName": "app-stack", "StackStatus": "UPDATE_COMPLETE"}]})

    assert CloudFormationService(client).get_stack_status("app-stack") == "UPDATE_COMPLETE"


def test_status_read_failure_is_classified() -> None:
    client = FakeClient(describe_stacks=client_error("Throttling", "Rate exceeded"))

    with pytest.raises(TransientInfraError):
        CloudFormationService(client).get_stack_status("app-stack")


def test_template_rejection_is_a_result() -> None:
    client = FakeClient(validate_template=client_error(
        "ValidationError", "Template format error: Unresolved resource dependencies [Vpc] in the Resources block",
    ))

    result = CloudFormationService(client).validate_document("Resources: {}")

    assert result.unwrap_err().kind is SyntaxErrorKind.UNRESOLVED_DEPENDENCY


def test_validation_call_failure_raises() -> None:
    client = FakeClient(validate_template=client_error("AccessDenied", status=403))

    with pytest.raises(InfraError) as excinfo:
        CloudFormationService(client).validate_document("Resources: {}")
    assert excinfo.value.error_class is ErrorClass.ACCESS_DENIED


def test_accepted_template_summary() -> None:
    client = FakeClient(validate_template={
        "Description": "Compute",
        "Parameters": [{"ParameterKey": "VpcId"}, {"ParameterKey": "SubnetId"}],
        "Capabilities": ["CAPABILITY_IAM"],
    })

    summary = CloudFormationService(client).validate_document("...").unwrap()

    assert summary.parameters == ("VpcId", "SubnetId")
    assert summary.capabilities == ("CAPABILITY_IAM",)


def test_create_sends_parameters_and_tags() -> None:
    client = FakeClient(create_stack={"StackId": "arn:stack/app-stack/1"})

    stack_id = CloudFormationService(client).create_stack(
        "app-stack", "https://b.s3.amazonaws.com/main.yaml", {"Env": "prod"},
        capabilities=["CAPABILITY_NAMED_IAM"], tags={"Team": "ops"},
    )

    assert stack_id == "arn:stack/app-stack/1"
    _, request = client.requests[0]
    assert request["Parameters"] == [{"ParameterKey": "Env", "ParameterValue": "prod"}]
    assert request["Tags"] == [{"Key": "Team", "Value": "ops"}]
    assert request["Capabilities"] == ["CAPABILITY_NAMED_IAM"]


def test_update_without_changes() -> None:
    client = FakeClient(update_stack=client_error("ValidationError", "No updates are to be performed."))

    with pytest.raises(NoUpdatesError):
        CloudFormationService(client).update_stack("app-stack", "https://x", {})


def test_last_failure_reason_is_newest_failed_event() -> None:
    client = FakeClient(describe_stack_events={"StackEvents": [
        {"LogicalResourceId": "app-stack", "ResourceStatus": "ROLLBACK_COMPLETE"},
        {"LogicalResourceId": "ComputeStack", "ResourceStatus": "CREATE_FAILED", "ResourceStatusReason": "Embedded stack failed"},
        {"LogicalResourceId": "Vpc", "ResourceStatus": "CREATE_FAILED", "ResourceStatusReason": "CIDR overlaps"},
    ]})

    assert CloudFormationService(client).last_failure_reason("app-stack") == "ComputeStack: Embedded stack failed"


def test_outputs_are_flattened() -> None:
    client = FakeClient(describe_stacks={"Stacks": [{
        "StackStatus": "CREATE_COMPLETE",
        "Outputs": [{"OutputKey": "ClusterName", "OutputValue": "app-cluster"}],
    }]})

    assert CloudFormationService(client).describe_outputs("app-stack") == {"ClusterName": "app-cluster"}


# -- S3 --

def test_head_of_missing_object_is_none() -> None:
    client = FakeClient(head_object=client_error("404", status=404))

    assert S3ObjectStore(client, "bucket", "us-east-1").head("main.yaml") is None


def test_head_reports_size() -> None:
    client = FakeClient(head_object={"ContentLength": 1234})

    assert S3ObjectStore(client, "bucket", "us-east-1").head("main.yaml").size == 1234


def test_missing_bucket() -> None:
    client = FakeClient(head_bucket=client_error("404", status=404))

    with pytest.raises(PermanentInfraError) as excinfo:
        S3ObjectStore(client, "bucket", "us-east-1").head_bucket()
    assert excinfo.value.error_class is ErrorClass.MISSING_BUCKET


def test_put_failure_is_classified() -> None:
    client = FakeClient(put_object=client_error("AccessDenied", "Access Denied", status=403))

    with pytest.raises(PermanentInfraError) as excinfo:
        S3ObjectStore(client, "bucket", "us-east-1").put("main.yaml", b"body")
    assert excinfo.value.error_class is ErrorClass.ACCESS_DENIED
    assert excinfo.value.operation == "PutObject"


@pytest.mark.parametrize(
    "region, url",
    [
        ("us-east-1", "https://bucket.s3.amazonaws.com/templates/a.yaml"),
        ("eu-west-1", "https://bucket.s3.eu-west-1.amazonaws.com/templates/a.yaml"),
    ],
)
def test_url_for(region, url) -> None:
    assert S3ObjectStore(FakeClient(), "bucket", region).url_for("templates/a.yaml") == url


# -- Parameters --

def test_ssm_parameter_is_decrypted() -> None:
    ssm = FakeClient(get_parameter={"Parameter": {"Value": "10.0.0.0/16"}})
    store = AwsParameterStore(ssm, FakeClient())

    assert store.lookup("ssm:/app/network/vpc-cidr") == "10.0.0.0/16"
    assert ssm.requests == [("get_parameter", {"Name": "/app/network/vpc-cidr", "WithDecryption": True})]


def test_missing_parameter_is_not_found() -> None:
    store = AwsParameterStore(FakeClient(get_parameter=client_error("ParameterNotFound")), FakeClient())

    with pytest.raises(PermanentInfraError) as excinfo:
        store.lookup("ssm:/app/missing")
    assert excinfo.value.error_class is ErrorClass.NOT_FOUND


def test_secret_key_lookup() -> None:
    secrets = FakeClient(get_secret_value={"SecretString": '{"username": "writer"}'})
    store = AwsParameterStore(FakeClient(), secrets)

    assert store.lookup("secret:app/smb#username") == "writer"


def test_binary_secret_is_rejected() -> None:
    store = AwsParameterStore(FakeClient(), FakeClient(get_secret_value={"SecretBinary": b"\x00"}))

    with pytest.raises(PermanentInfraError):
        store.lookup("secret:app/blob")


def test_literal_is_passed_through() -> None:
    assert AwsParameterStore(FakeClient(), FakeClient()).lookup("plain-value") == "plain-value"
