"""Tests for pipeline guards."""

from __future__ import annotations

from stackdeploy.config.settings import DeployConfig, StackConfig
from stackdeploy.pipeline.guards import run_guards
from stackdeploy.utils.result import ExitCode


def config_for(template_dir, region: str = "us-east-1") -> DeployConfig:
    return DeployConfig(
        region=region,
        stack=StackConfig(
            main_template=template_dir / "main-template.yaml",
            nested_dir=template_dir / "templates",
        ),
    )


def test_all_guards_pass(template_dir) -> None:
    result = run_guards(config_for(template_dir), profile="test", available_profiles=["default", "test"])

    assert result.is_ok()


def test_invalid_region(template_dir) -> None:
    result = run_guards(config_for(template_dir, region="Virginia"), profile="test", available_profiles=["test"])

    error = result.unwrap_err()
    assert error.code == ExitCode.GUARD_FAILED
    assert "region" in error.message


def test_gov_cloud_region_is_valid(template_dir) -> None:
    result = run_guards(config_for(template_dir, region="us-gov-west-1"), require_profile=False)

    assert result.is_ok()


def test_missing_profile(template_dir) -> None:
    result = run_guards(config_for(template_dir), profile=None, available_profiles=["test"])

    assert result.unwrap_err().message == "No AWS profile given"


def test_unknown_profile(template_dir) -> None:
    result = run_guards(config_for(template_dir), profile="prod", available_profiles=["default"])

    error = result.unwrap_err()
    assert error.message == "AWS profile not found: prod"
    assert "aws configure" in error.details


def test_profile_not_needed_offline(template_dir) -> None:
    result = run_guards(config_for(template_dir), profile=None, require_profile=False)

    assert result.is_ok()


def test_missing_main_template(tmp_path) -> None:
    (tmp_path / "templates").mkdir()

    result = run_guards(config_for(tmp_path), require_profile=False)

    assert "Main template not found" in result.unwrap_err().message


def test_missing_nested_dir(template_dir, tmp_path) -> None:
    config = config_for(template_dir)
    config.stack.nested_dir = tmp_path / "nowhere"

    result = run_guards(config, require_profile=False)

    assert "Nested templates directory not found" in result.unwrap_err().message


def test_templates_not_needed_for_status(tmp_path) -> None:
    result = run_guards(config_for(tmp_path), profile="test", require_templates=False, available_profiles=["test"])

    assert result.is_ok()
