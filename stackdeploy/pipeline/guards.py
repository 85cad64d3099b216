"""Pipeline guards - precondition checks that fail fast on critical issues.

These guards run before any pipeline work begins, ensuring that the AWS
profile and the template files are in place. If a guard fails, the pipeline
exits immediately with a clear error message and exit code.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import boto3

from stackdeploy.config.settings import DeployConfig
from stackdeploy.utils.logging import get_logger
from stackdeploy.utils.result import Err, ExitCode, GuardError, Ok, Result

logger = get_logger("pipeline.guards")

REGION_PATTERN = re.compile(r"^[a-z]{2}(-gov)?-[a-z]+-\d$")


@dataclass
class GuardContext:
    """
    Context for guard checks.

    ``available_profiles`` defaults to the profiles in the local AWS
    configuration files.
    """

    config: DeployConfig
    profile: Optional[str] = None
    require_profile: bool = True
    require_templates: bool = True
    available_profiles: Optional[Sequence[str]] = None


class PipelineGuards:
    """
    Precondition checks that fail the pipeline immediately on critical issues.

    Each guard returns a Result type - Ok(None) if the check passes,
    Err(GuardError) if it fails. This forces explicit error handling
    and prevents silent failures.
    """

    def __init__(self, context: GuardContext) -> None:
        """
        Initialize guards with context.

        Args:
            context: Guard context with config and requirements
        """
        self.context = context

    def check_all(self) -> Result[None, GuardError]:
        """
        Run all precondition checks.

        Returns:
            Result indicating success or first failure
        """
        logger.info("running_guards")

        result = self.check_region(self.context.config.region)
        if result.is_err():
            return result

        if self.context.require_profile:
            result = self.check_profile(self.context.profile)
            if result.is_err():
                return result

        if self.context.require_templates:
            result = self.check_main_template(self.context.config.stack.main_template)
            if result.is_err():
                return result

            result = self.check_nested_dir(self.context.config.stack.nested_dir)
            if result.is_err():
                return result

        logger.info("guards_passed")
        return Ok(None)

    def _fail(self, guard: str, message: str, details: str = "", **fields) -> Err[GuardError]:
        error = GuardError(code=ExitCode.GUARD_FAILED, message=message, details=details)
        logger.error("guard_failed", guard=guard, code=error.code, message=message, **fields)
        return Err(error)

    def check_region(self, region: str) -> Result[None, GuardError]:
        """
        Check that the region looks like an AWS region name.

        Returns:
            Ok(None) if valid, Err(GuardError) otherwise
        """
        if not region or not REGION_PATTERN.match(region):
            return self._fail(
                "region",
                f"Invalid AWS region: {region!r}",
                "Pass --region with a region name such as us-east-1.",
            )

        logger.debug("guard_passed", guard="region", region=region)
        return Ok(None)

    def check_profile(self, profile: Optional[str]) -> Result[None, GuardError]:
        """
        Check that an AWS profile was given and is configured locally.

        Returns:
            Ok(None) if the profile exists, Err(GuardError) otherwise
        """
        if not profile:
            return self._fail(
                "profile",
                "No AWS profile given",
                "Pass --profile with a named profile from your AWS configuration.",
            )

        available = self.context.available_profiles
        if available is None:
            available = boto3.session.Session().available_profiles

        if profile not in available:
            return self._fail(
                "profile",
                f"AWS profile not found: {profile}",
                "Configure it with 'aws configure --profile <name>' or check AWS_CONFIG_FILE.",
                profile=profile,
            )

        logger.debug("guard_passed", guard="profile", profile=profile)
        return Ok(None)

    def check_main_template(self, path: Path) -> Result[Path, GuardError]:
        """
        Check that the Main document exists.

        Returns:
            Ok(Path) with resolved path if valid, Err(GuardError) otherwise
        """
        path = Path(path)

        if not path.is_file():
            return self._fail(
                "main_template",
                f"Main template not found: {path}",
                "Run from the project root or set stack.main_template in the configuration.",
                path=str(path),
            )

        logger.debug("guard_passed", guard="main_template", path=str(path))
        return Ok(path.resolve())

    def check_nested_dir(self, path: Path) -> Result[Path, GuardError]:
        """
        Check that the nested templates directory exists.

        Individual nested documents are not checked here; a missing one is
        reported by structural validation together with every other finding.

        Returns:
            Ok(Path) with resolved path if valid, Err(GuardError) otherwise
        """
        path = Path(path)

        if not path.is_dir():
            return self._fail(
                "nested_dir",
                f"Nested templates directory not found: {path}",
                "Set stack.nested_dir in the configuration.",
                path=str(path),
            )

        logger.debug("guard_passed", guard="nested_dir", path=str(path))
        return Ok(path.resolve())


def run_guards(
    config: DeployConfig,
    profile: Optional[str] = None,
    require_profile: bool = True,
    require_templates: bool = True,
    available_profiles: Optional[Sequence[str]] = None,
) -> Result[None, GuardError]:
    """
    Convenience function to run all guards.

    Args:
        config: Deployment configuration
        profile: AWS named profile
        require_profile: Whether AWS access is needed
        require_templates: Whether the template files are needed
        available_profiles: Profiles to check against (default: local AWS config)

    Returns:
        Result indicating success or first guard failure
    """
    context = GuardContext(
        config=config,
        profile=profile,
        require_profile=require_profile,
        require_templates=require_templates,
        available_profiles=available_profiles,
    )

    guards = PipelineGuards(context)
    return guards.check_all()
