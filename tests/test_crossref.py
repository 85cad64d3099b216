"""Tests for cross-reference validation."""

from __future__ import annotations

import pytest

from stackdeploy.models.documents import DocumentRole, TemplateDocument
from stackdeploy.models.findings import FindingCategory, Severity
from stackdeploy.models.graph import SourceKind
from stackdeploy.validation import CrossReferenceValidator
from tests.conftest import COMPUTE_TEMPLATE, MAIN_TEMPLATE, NETWORKING_TEMPLATE, make_documents


def errors_of(report):
    return [(f.document_name, f.category, f.message) for f in report.errors]


def test_consistent_document_set_has_no_errors(documents) -> None:
    validator = CrossReferenceValidator()
    report = validator.validate(documents)

    assert report.passed
    assert report.findings == ()


def test_graph_edges_classify_sources(documents) -> None:
    validator = CrossReferenceValidator()
    validator.validate(documents)

    kinds = {(e.stack_logical_id, e.parameter_name): e.source_kind for e in validator.graph.edges}
    assert kinds[("NetworkingStack", "VpcCidr")] is SourceKind.STATIC_VALUE
    assert kinds[("ComputeStack", "VpcId")] is SourceKind.OUTPUT_REFERENCE
    assert validator.graph.stacks_for_document("compute-stack.yaml") == ["ComputeStack"]


@pytest.mark.parametrize("missing", [["SubnetId"], ["SubnetId", "VpcId"], ["ApplicationName", "SubnetId", "VpcId"]])
def test_one_error_per_missing_required_parameter(missing) -> None:
    head, compute_block = MAIN_TEMPLATE.split("  ComputeStack:", 1)
    trimmed = "\n".join(
        line for line in compute_block.splitlines()
        if not any(line.strip().startswith(f"{name}:") for name in missing)
    )
    main = head + "  ComputeStack:" + trimmed + "\n"

    report = CrossReferenceValidator().validate(make_documents(main=main))

    parameter_errors = [
        f for f in report.errors
        if f.category is FindingCategory.CROSS_REFERENCE and f.message.startswith("Required parameter")
    ]
    assert len(parameter_errors) == len(missing)
    assert sorted(f.message.split()[2] for f in parameter_errors) == sorted(missing)
    assert all(f.document_name == "compute-stack.yaml" for f in parameter_errors)


def test_parameter_with_default_is_not_required() -> None:
    compute = COMPUTE_TEMPLATE.replace("  SubnetId:\n    Type: AWS::EC2::Subnet::Id\n", "  SubnetId:\n    Type: String\n    Default: subnet-123\n")
    main = MAIN_TEMPLATE.replace("        SubnetId: !GetAtt NetworkingStack.Outputs.PrivateSubnetId\n", "")

    report = CrossReferenceValidator().validate(make_documents(main=main, compute=compute))

    assert report.passed


def test_missing_output_is_one_error() -> None:
    networking = NETWORKING_TEMPLATE.replace("  PrivateSubnetId:\n    Value: !Ref PrivateSubnet\n", "")

    report = CrossReferenceValidator().validate(make_documents(networking=networking))

    assert errors_of(report) == [(
        "networking-stack.yaml",
        FindingCategory.CROSS_REFERENCE,
        "Output PrivateSubnetId referenced as NetworkingStack.Outputs.PrivateSubnetId is not declared",
    )]


def test_output_read_only_by_main_outputs_is_checked() -> None:
    compute = COMPUTE_TEMPLATE.replace("  ClusterName:\n    Value: !Ref Cluster\n", "  ClusterArn:\n    Value: !GetAtt Cluster.Arn\n")

    report = CrossReferenceValidator().validate(make_documents(compute=compute))

    assert len(report.errors) == 1
    assert "ComputeStack.Outputs.ClusterName" in report.errors[0].message


def test_missing_outputs_section_is_one_structure_error() -> None:
    networking = NETWORKING_TEMPLATE.split("Outputs:", 1)[0]

    report = CrossReferenceValidator().validate(make_documents(networking=networking))

    assert len(report.errors) == 1
    assert report.errors[0].category is FindingCategory.STRUCTURE
    assert "no Outputs section" in report.errors[0].message


def test_sub_output_reference_is_checked() -> None:
    main = MAIN_TEMPLATE.replace(
        "Value: !GetAtt ComputeStack.Outputs.ClusterName",
        "Value: !Sub arn:aws:ecs:${AWS::Region}:${AWS::AccountId}:cluster/${ComputeStack.Outputs.ClusterId}",
    )

    report = CrossReferenceValidator().validate(make_documents(main=main))

    assert [f.message for f in report.errors] == [
        "Output ClusterId referenced as ComputeStack.Outputs.ClusterId is not declared",
    ]


def test_undeclared_passed_parameter_is_a_warning() -> None:
    main = MAIN_TEMPLATE.replace("        VpcCidr: !Ref VpcCidr\n", "        VpcCidr: !Ref VpcCidr\n        Extra: value\n")

    report = CrossReferenceValidator().validate(make_documents(main=main))

    assert report.passed
    assert [f.message for f in report.warnings] == [
        "Stack NetworkingStack passes parameter Extra, which networking-stack.yaml does not declare",
    ]


def test_missing_depends_on_is_a_warning() -> None:
    main = MAIN_TEMPLATE.replace("    DependsOn: NetworkingStack\n", "")

    report = CrossReferenceValidator().validate(make_documents(main=main))

    assert report.passed
    assert len(report.warnings) == 1
    assert report.warnings[0].document_name == "main-template.yaml"
    assert "DependsOn: NetworkingStack" in report.warnings[0].message


def test_nested_document_unknown_to_main_is_a_warning() -> None:
    orphan = TemplateDocument.from_text(
        "logging-stack.yaml",
        "Parameters:\n  RetentionDays:\n    Type: Number\n"
        "Resources:\n  LogGroup:\n    Type: AWS::Logs::LogGroup\n",
    )

    report = CrossReferenceValidator().validate(make_documents() + [orphan])

    assert report.passed
    assert [(f.document_name, f.category) for f in report.warnings] == [
        ("logging-stack.yaml", FindingCategory.CROSS_REFERENCE),
    ]
    assert "not referenced by main-template.yaml" in report.warnings[0].message


def test_declared_stack_without_inputs_or_outputs_is_info() -> None:
    main = MAIN_TEMPLATE.replace(
        "Outputs:\n  ClusterName:",
        "  LoggingStack:\n"
        "    Type: AWS::CloudFormation::Stack\n"
        "    Properties:\n"
        "      TemplateURL: !Sub https://${S3BucketName}.s3.amazonaws.com/templates/logging-stack.yaml\n"
        "Outputs:\n  ClusterName:",
    )
    logging_stack = TemplateDocument.from_text(
        "logging-stack.yaml",
        "Resources:\n  LogGroup:\n    Type: AWS::Logs::LogGroup\n",
    )

    report = CrossReferenceValidator().validate(make_documents(main=main) + [logging_stack])

    assert report.passed
    info = [f for f in report.findings if f.severity is Severity.INFO]
    assert [f.document_name for f in info] == ["logging-stack.yaml"]


def test_template_outside_document_set_is_an_error() -> None:
    main = MAIN_TEMPLATE.replace("templates/compute-stack.yaml", "templates/compute-v2.yaml")

    report = CrossReferenceValidator().validate(make_documents(main=main))

    assert any("compute-v2.yaml, which is not in the document set" in f.message for f in report.errors)


def test_output_reference_to_undeclared_stack_is_an_error() -> None:
    main = MAIN_TEMPLATE.replace("!GetAtt ComputeStack.Outputs.ClusterName", "!GetAtt StorageStack.Outputs.BucketName")

    report = CrossReferenceValidator().validate(make_documents(main=main))

    assert [f.message for f in report.errors] == [
        "Output reference StorageStack.Outputs.BucketName names a stack Main does not declare",
    ]


def test_requires_exactly_one_main(documents) -> None:
    nested_only = [d for d in documents if d.role is DocumentRole.NESTED]

    report = CrossReferenceValidator().validate(nested_only)

    assert len(report.errors) == 1
    assert "exactly one Main" in report.errors[0].message


def test_unparseable_nested_document_is_a_syntax_error() -> None:
    networking = NETWORKING_TEMPLATE + "Metadata:\n  Released: 2024-13-45\n"

    report = CrossReferenceValidator().validate(make_documents(networking=networking))

    syntax = [f for f in report.errors if f.category is FindingCategory.SYNTAX]
    assert [f.document_name for f in syntax] == ["networking-stack.yaml"]
