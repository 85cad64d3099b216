"""Centralized configuration for the deployment pipeline.

Configuration is loaded from ``config/defaults.yaml`` (optionally overlaid by
``config/timeouts.yaml``) and validated at startup. Command-line flags
override individual values afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from stackdeploy.utils.result import ConfigError, Err, Ok, Result
from stackdeploy.utils.retry import RetryPolicy

DEFAULT_REGION = "us-east-1"
DEFAULT_APPLICATION = "scheduled-file-writer"

# CloudFormation rejects template bodies above this size
MAX_TEMPLATE_BYTES = 51200
RECOMMENDED_NESTED_BYTES = 30000


@dataclass
class TimeoutConfig:
    """Timeout settings, in seconds."""

    # Per remote call (botocore connect/read, httpx probe)
    connect: int = 10
    read: int = 60
    probe: int = 10

    # Wall-clock bound for polling a stack operation to its terminal state
    stack_create: int = 3600
    stack_update: int = 3600
    stack_delete: int = 1800
    poll_interval: int = 15


@dataclass
class RetryConfig:
    """Retry and backoff settings for transient remote failures."""

    max_attempts: int = 3
    initial_delay: float = 2.0
    backoff_factor: float = 2.0
    max_backoff: float = 30.0

    def to_policy(self) -> RetryPolicy:
        """Build the retry policy these settings describe."""
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_delay=self.initial_delay,
            backoff_factor=self.backoff_factor,
            max_backoff=self.max_backoff,
        )


@dataclass
class LimitsConfig:
    """Template size limits in bytes."""

    max_template_bytes: int = MAX_TEMPLATE_BYTES
    recommended_nested_bytes: int = RECOMMENDED_NESTED_BYTES


@dataclass
class StackConfig:
    """
    What to deploy and where the templates live.

    Attributes:
        application_name: Application the stack belongs to
        stack_name: CloudFormation stack name (defaults to "<application>-stack")
        main_template: Path of the Main document
        nested_dir: Directory holding the Nested documents
        nested_templates: Nested file names (empty means every template in nested_dir)
        bucket_parameter: SSM parameter holding the artifact bucket name
        bucket_template_parameter: Main template parameter that receives the bucket name
        artifact_prefix: Key prefix for every uploaded artifact
        nested_prefix: Sub-prefix for Nested documents
        capabilities: CloudFormation capabilities acknowledged on create/update
        tags: Stack tags
        parameters: Stack parameter sources (literal, "ssm:<name>" or "secret:<id>#<key>")
    """

    application_name: str = DEFAULT_APPLICATION
    stack_name: str = ""
    main_template: Path = Path("infrastructure/main-template.yaml")
    nested_dir: Path = Path("infrastructure/templates")
    nested_templates: list[str] = field(default_factory=list)
    bucket_parameter: str = "/{application}/s3/bucket-name"
    bucket_template_parameter: str = "S3BucketName"
    artifact_prefix: str = ""
    nested_prefix: str = "templates"
    capabilities: list[str] = field(default_factory=lambda: ["CAPABILITY_NAMED_IAM"])
    tags: dict[str, str] = field(default_factory=dict)
    parameters: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.stack_name:
            self.stack_name = f"{self.application_name}-stack"
        self.main_template = Path(self.main_template)
        self.nested_dir = Path(self.nested_dir)

    def expand(self, value: str) -> str:
        """Substitute the ``{application}`` placeholder."""
        return value.replace("{application}", self.application_name)


LOG_LEVELS = ("debug", "info", "warn", "error")
LOG_FORMATS = ("json", "text")


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    format: str = "json"


@dataclass
class DeployConfig:
    """
    Complete pipeline configuration.

    This is the single source of truth for all configuration values.
    """

    region: str = DEFAULT_REGION
    parallelism: int = 4
    probe_reachability: bool = True

    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    stack: StackConfig = field(default_factory=StackConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Set at runtime
    config_dir: Optional[Path] = None

    @classmethod
    def from_yaml(cls, path: Path) -> Result["DeployConfig", ConfigError]:
        """
        Load configuration from a YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            Result with loaded config or error
        """
        path = Path(path)

        if not path.exists():
            return Err(ConfigError(
                field="path",
                message=f"Configuration file not found: {path}",
            ))

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            return Err(ConfigError(
                field="yaml",
                message=f"Failed to parse YAML: {e}",
            ))
        except OSError as e:
            return Err(ConfigError(
                field="file",
                message=f"Failed to read config file: {e}",
            ))

        if not isinstance(data, dict):
            return Err(ConfigError(
                field="yaml",
                message="Top level of the configuration must be a mapping",
            ))

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Result["DeployConfig", ConfigError]:
        """
        Create configuration from a dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            Result with loaded config or error
        """
        try:
            timeouts_data = data.get("timeouts", {})
            timeouts = TimeoutConfig(
                connect=int(timeouts_data.get("connect", 10)),
                read=int(timeouts_data.get("read", 60)),
                probe=int(timeouts_data.get("probe", 10)),
                stack_create=int(timeouts_data.get("stack_create", 3600)),
                stack_update=int(timeouts_data.get("stack_update", 3600)),
                stack_delete=int(timeouts_data.get("stack_delete", 1800)),
                poll_interval=int(timeouts_data.get("poll_interval", 15)),
            )

            retry_data = data.get("retries", data.get("retry", {}))
            retry = RetryConfig(
                max_attempts=int(retry_data.get("max_attempts", 3)),
                initial_delay=float(retry_data.get("initial_delay", 2.0)),
                backoff_factor=float(retry_data.get("backoff_factor", 2.0)),
                max_backoff=float(retry_data.get("max_backoff", 30.0)),
            )

            limits_data = data.get("limits", {})
            limits = LimitsConfig(
                max_template_bytes=int(limits_data.get("max_template_bytes", MAX_TEMPLATE_BYTES)),
                recommended_nested_bytes=int(
                    limits_data.get("recommended_nested_bytes", RECOMMENDED_NESTED_BYTES)
                ),
            )

            stack_data = data.get("stack", {})
            stack = StackConfig(
                application_name=stack_data.get("application_name", DEFAULT_APPLICATION),
                stack_name=stack_data.get("stack_name", ""),
                main_template=Path(stack_data.get("main_template", "infrastructure/main-template.yaml")),
                nested_dir=Path(stack_data.get("nested_dir", "infrastructure/templates")),
                nested_templates=list(stack_data.get("nested_templates", [])),
                bucket_parameter=stack_data.get("bucket_parameter", "/{application}/s3/bucket-name"),
                bucket_template_parameter=stack_data.get("bucket_template_parameter", "S3BucketName"),
                artifact_prefix=stack_data.get("artifact_prefix", ""),
                nested_prefix=stack_data.get("nested_prefix", "templates"),
                capabilities=list(stack_data.get("capabilities", ["CAPABILITY_NAMED_IAM"])),
                tags={str(k): str(v) for k, v in (stack_data.get("tags") or {}).items()},
                parameters={str(k): str(v) for k, v in (stack_data.get("parameters") or {}).items()},
            )

            logging_data = data.get("logging", {})
            logging_config = LoggingConfig(
                level=logging_data.get("level", "info"),
                format=logging_data.get("format", "json"),
            )

            config = cls(
                region=data.get("region", DEFAULT_REGION),
                parallelism=int(data.get("parallelism", 4)),
                probe_reachability=bool(data.get("probe_reachability", True)),
                timeouts=timeouts,
                retry=retry,
                limits=limits,
                stack=stack,
                logging=logging_config,
            )

            return Ok(config)

        except (TypeError, ValueError, AttributeError) as e:
            return Err(ConfigError(
                field="unknown",
                message=f"Failed to parse configuration: {e}",
            ))

    def validate(self) -> Result[None, ConfigError]:
        """
        Validate configuration values.

        Returns:
            Result indicating success or validation error
        """
        if self.parallelism < 1:
            return Err(ConfigError(
                field="parallelism",
                message=f"Must be at least 1, got {self.parallelism}",
            ))
        if self.parallelism > 16:
            return Err(ConfigError(
                field="parallelism",
                message=f"Must be at most 16, got {self.parallelism}",
            ))

        for name, value in [
            ("connect", self.timeouts.connect),
            ("read", self.timeouts.read),
            ("probe", self.timeouts.probe),
            ("stack_create", self.timeouts.stack_create),
            ("stack_update", self.timeouts.stack_update),
            ("stack_delete", self.timeouts.stack_delete),
            ("poll_interval", self.timeouts.poll_interval),
        ]:
            if value < 1:
                return Err(ConfigError(
                    field=f"timeouts.{name}",
                    message=f"Must be positive, got {value}",
                ))

        if self.retry.max_attempts < 1:
            return Err(ConfigError(
                field="retry.max_attempts",
                message=f"Must be at least 1, got {self.retry.max_attempts}",
            ))
        if self.retry.backoff_factor < 1.0:
            return Err(ConfigError(
                field="retry.backoff_factor",
                message=f"Must be at least 1.0, got {self.retry.backoff_factor}",
            ))
        if self.retry.max_backoff < self.retry.initial_delay:
            return Err(ConfigError(
                field="retry.max_backoff",
                message=(
                    f"Must be at least initial_delay ({self.retry.initial_delay}), "
                    f"got {self.retry.max_backoff}"
                ),
            ))

        if str(self.logging.level).lower() not in LOG_LEVELS:
            return Err(ConfigError(
                field="logging.level",
                message=f"Must be one of {', '.join(LOG_LEVELS)}, got {self.logging.level!r}",
            ))
        if str(self.logging.format).lower() not in LOG_FORMATS:
            return Err(ConfigError(
                field="logging.format",
                message=f"Must be one of {', '.join(LOG_FORMATS)}, got {self.logging.format!r}",
            ))

        if self.limits.recommended_nested_bytes > self.limits.max_template_bytes:
            return Err(ConfigError(
                field="limits.recommended_nested_bytes",
                message="Must not exceed limits.max_template_bytes",
            ))

        if not self.stack.stack_name:
            return Err(ConfigError(
                field="stack.stack_name",
                message="Stack name must not be empty",
            ))

        return Ok(None)

    def with_overrides(
        self,
        region: Optional[str] = None,
        parallelism: Optional[int] = None,
        probe_reachability: Optional[bool] = None,
        parameters: Optional[dict[str, str]] = None,
    ) -> "DeployConfig":
        """
        Return a new config with command-line overrides applied.

        Args:
            region: AWS region
            parallelism: Worker pool size
            probe_reachability: Whether to probe HTTPS reachability after upload
            parameters: Stack parameter values that replace configured sources

        Returns:
            New DeployConfig
        """
        stack = self.stack
        if parameters:
            stack = replace(stack, parameters={**stack.parameters, **parameters})

        return replace(
            self,
            region=region or self.region,
            parallelism=parallelism if parallelism is not None else self.parallelism,
            probe_reachability=(
                probe_reachability if probe_reachability is not None else self.probe_reachability
            ),
            stack=stack,
        )

    def operation_timeout(self, operation: str) -> int:
        """Polling bound for 'create', 'update' or 'delete'."""
        return {
            "create": self.timeouts.stack_create,
            "update": self.timeouts.stack_update,
            "delete": self.timeouts.stack_delete,
        }[operation]


def load_config(config_dir: Path = None) -> Result[DeployConfig, ConfigError]:
    """
    Load configuration from the standard location.

    Loads from config/defaults.yaml, then overlays config/timeouts.yaml if present.

    Args:
        config_dir: Configuration directory (defaults to ./config)

    Returns:
        Result with loaded config or error
    """
    if config_dir is None:
        config_dir = Path("./config")

    config_dir = Path(config_dir)

    defaults_path = config_dir / "defaults.yaml"
    if defaults_path.exists():
        result = DeployConfig.from_yaml(defaults_path)
        if result.is_err():
            return result
        config = result.unwrap()
    else:
        config = DeployConfig()

    timeouts_path = config_dir / "timeouts.yaml"
    if timeouts_path.exists():
        try:
            with open(timeouts_path) as f:
                overlay = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            return Err(ConfigError(
                field="timeouts_overlay",
                message=f"Failed to load timeouts overlay: {e}",
            ))

        if "timeouts" in overlay:
            td = overlay["timeouts"] or {}
            config.timeouts = TimeoutConfig(
                connect=int(td.get("connect", config.timeouts.connect)),
                read=int(td.get("read", config.timeouts.read)),
                probe=int(td.get("probe", config.timeouts.probe)),
                stack_create=int(td.get("stack_create", config.timeouts.stack_create)),
                stack_update=int(td.get("stack_update", config.timeouts.stack_update)),
                stack_delete=int(td.get("stack_delete", config.timeouts.stack_delete)),
                poll_interval=int(td.get("poll_interval", config.timeouts.poll_interval)),
            )

        if "retries" in overlay:
            rd = overlay["retries"] or {}
            config.retry = RetryConfig(
                max_attempts=int(rd.get("max_attempts", config.retry.max_attempts)),
                initial_delay=float(rd.get("initial_delay", config.retry.initial_delay)),
                backoff_factor=float(rd.get("backoff_factor", config.retry.backoff_factor)),
                max_backoff=float(rd.get("max_backoff", config.retry.max_backoff)),
            )

    config.config_dir = config_dir

    validation_result = config.validate()
    if validation_result.is_err():
        return Err(validation_result.unwrap_err())

    return Ok(config)
