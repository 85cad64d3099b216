"""Tests for the command-line interface."""

from __future__ import annotations

import json
import sys

import pytest
from click.testing import CliRunner

from stackdeploy.cli import cli
from stackdeploy.utils.logging import configure_logging
from stackdeploy.utils.result import ExitCode
from tests.conftest import ARTIFACT_URI, NETWORKING_TEMPLATE, FakeObjectStore, FakeProvisioning


class FakeServices:
    """Stands in for the boto3-backed service bundle."""

    def __init__(self, provisioning, parameters, store=None) -> None:
        self.provisioning = provisioning
        self.parameters = parameters
        self.store = store or FakeObjectStore()

    def object_store(self, bucket):
        return self.store


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    # The CLI points logging at the runner's stream, which is gone afterwards
    configure_logging(stream=sys.stderr)


@pytest.fixture
def config_dir(tmp_path, template_dir):
    directory = tmp_path / "config"
    directory.mkdir()
    (directory / "defaults.yaml").write_text(
        "stack:\n"
        "  application_name: scheduled-file-writer\n"
        f"  main_template: {template_dir / 'main-template.yaml'}\n"
        f"  nested_dir: {template_dir / 'templates'}\n"
        "  parameters:\n"
        "    ApplicationName: \"{application}\"\n"
    )
    return directory


@pytest.fixture
def aws_profile(tmp_path, monkeypatch):
    aws_config = tmp_path / "aws-config"
    aws_config.write_text("[profile test]\nregion = us-east-1\n")
    monkeypatch.setenv("AWS_CONFIG_FILE", str(aws_config))
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(tmp_path / "no-credentials"))
    monkeypatch.delenv("AWS_PROFILE", raising=False)
    return "test"


def use_services(monkeypatch, services: FakeServices) -> None:
    monkeypatch.setattr("stackdeploy.cli.AwsServices.connect", lambda config, profile: services)


def json_output(output: str) -> dict:
    """Decode the JSON document in output that may also hold log lines."""
    data, _ = json.JSONDecoder().raw_decode(output[output.index("{\n"):])
    return data


# -- validate --

def test_validate_offline_passes(config_dir) -> None:
    result = CliRunner().invoke(cli, ["--config", str(config_dir), "validate", "--offline"])

    assert result.exit_code == ExitCode.SUCCESS
    assert "Validation: passed" in result.output


def test_validate_offline_json(config_dir) -> None:
    result = CliRunner().invoke(cli, ["--config", str(config_dir), "validate", "--offline", "--output", "json"])

    data = json_output(result.output)
    assert data["exit_code"] == 0
    assert data["validation"]["passed"] is True
    assert data["stage"] == "complete"


def test_validate_reports_cross_reference_errors(config_dir, template_dir) -> None:
    (template_dir / "templates" / "networking-stack.yaml").write_text(
        NETWORKING_TEMPLATE.replace("  PrivateSubnetId:\n    Value: !Ref PrivateSubnet\n", "")
    )

    result = CliRunner().invoke(cli, ["--config", str(config_dir), "validate", "--offline"])

    assert result.exit_code == ExitCode.VALIDATION_FAILED
    assert "PrivateSubnetId" in result.output


def test_logging_settings_come_from_config(config_dir, monkeypatch) -> None:
    with (config_dir / "defaults.yaml").open("a") as f:
        f.write("logging:\n  level: error\n  format: text\n")
    calls = []
    monkeypatch.setattr("stackdeploy.cli.configure_logging", lambda **kwargs: calls.append(kwargs))

    result = CliRunner().invoke(cli, ["--config", str(config_dir), "validate", "--offline"])

    assert result.exit_code == ExitCode.SUCCESS
    assert calls[-1] == {"level": "error", "format_type": "text"}


def test_logging_flags_override_config(config_dir, monkeypatch) -> None:
    with (config_dir / "defaults.yaml").open("a") as f:
        f.write("logging:\n  level: error\n")
    calls = []
    monkeypatch.setattr("stackdeploy.cli.configure_logging", lambda **kwargs: calls.append(kwargs))

    CliRunner().invoke(cli, ["--config", str(config_dir), "--log-level", "debug", "validate", "--offline"])

    assert calls[-1] == {"level": "debug", "format_type": "json"}


def test_invalid_config_exits_with_config_code(tmp_path) -> None:
    (tmp_path / "defaults.yaml").write_text("parallelism: 40\n")

    result = CliRunner().invoke(cli, ["--config", str(tmp_path), "validate", "--offline"])

    assert result.exit_code == ExitCode.CONFIG_INVALID


def test_missing_templates_fail_the_guard(tmp_path) -> None:
    result = CliRunner().invoke(cli, ["--config", str(tmp_path), "validate", "--offline"])

    assert result.exit_code == ExitCode.GUARD_FAILED
    assert "Main template not found" in result.output


# -- deploy --

def test_parameter_option_must_be_key_value(config_dir) -> None:
    result = CliRunner().invoke(cli, ["--config", str(config_dir), "deploy", "--parameter", "novalue"])

    assert result.exit_code == 2
    assert "expected KEY=VALUE" in result.output


def test_deploy_without_profile_fails_the_guard(config_dir, monkeypatch) -> None:
    monkeypatch.delenv("AWS_PROFILE", raising=False)

    result = CliRunner().invoke(cli, ["--config", str(config_dir), "deploy"])

    assert result.exit_code == ExitCode.GUARD_FAILED
    assert "No AWS profile given" in result.output


def test_deploy_creates_stack(config_dir, aws_profile, parameter_store, monkeypatch) -> None:
    provisioning = FakeProvisioning(statuses=[None, "CREATE_COMPLETE"], outputs={"ClusterName": "c"})
    use_services(monkeypatch, FakeServices(provisioning, parameter_store))

    result = CliRunner().invoke(cli, [
        "--config", str(config_dir), "deploy",
        "--profile", aws_profile,
        "--artifact-uri", ARTIFACT_URI,
        "--parameter", "Environment=staging",
        "--no-probe",
        "--output", "json",
    ])

    assert result.exit_code == ExitCode.SUCCESS
    data = json_output(result.output)
    assert data["operation"]["outcome"] == "succeeded"
    assert len(data["publish"]["records"]) == 3
    create = next(c for c in provisioning.calls if c[0] == "create_stack")
    assert create[3]["Environment"] == "staging"


def test_deploy_declined_recovery_aborts(config_dir, aws_profile, parameter_store, monkeypatch) -> None:
    provisioning = FakeProvisioning(statuses=["ROLLBACK_COMPLETE"])
    use_services(monkeypatch, FakeServices(provisioning, parameter_store))

    result = CliRunner().invoke(
        cli,
        ["--config", str(config_dir), "deploy", "--profile", aws_profile, "--artifact-uri", ARTIFACT_URI, "--no-probe"],
        input="n\n",
    )

    assert result.exit_code == ExitCode.STATE_ABORT
    assert provisioning.mutations == []


# -- status and destroy --

def test_status_shows_next_operation(config_dir, aws_profile, parameter_store, monkeypatch) -> None:
    use_services(monkeypatch, FakeServices(FakeProvisioning(statuses=["CREATE_COMPLETE"]), parameter_store))

    result = CliRunner().invoke(cli, ["--config", str(config_dir), "status", "--profile", aws_profile])

    assert result.exit_code == ExitCode.SUCCESS
    assert "next operation: update" in result.output


def test_destroy_with_yes(config_dir, aws_profile, parameter_store, monkeypatch) -> None:
    provisioning = FakeProvisioning(statuses=["UPDATE_COMPLETE", None])
    use_services(monkeypatch, FakeServices(provisioning, parameter_store))

    result = CliRunner().invoke(cli, ["--config", str(config_dir), "destroy", "--profile", aws_profile, "--yes"])

    assert result.exit_code == ExitCode.SUCCESS
    assert provisioning.mutations == ["delete_stack"]
