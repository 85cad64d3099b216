"""CLI entry point for stackdeploy."""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional

import click

from stackdeploy import __version__
from stackdeploy.aws import AwsServices
from stackdeploy.config.settings import LOG_FORMATS, LOG_LEVELS, DeployConfig, load_config
from stackdeploy.deployment.states import StackObservation
from stackdeploy.errors import InfraError
from stackdeploy.models.results import DeploymentResult
from stackdeploy.pipeline import Orchestrator, load_documents, render_text, run_guards
from stackdeploy.utils.logging import RunContext, configure_logging, get_logger
from stackdeploy.utils.result import ExitCode
from stackdeploy.validation import LocalSyntaxChecker

# Default paths
DEFAULT_CONFIG = "./config"


class Context:
    """CLI context for sharing state between commands."""

    def __init__(
        self,
        config_dir: Path,
        log_level: Optional[str],
        log_format: Optional[str],
    ) -> None:
        self.config_dir = config_dir
        self.log_level = log_level
        self.log_format = log_format
        self.logger = get_logger("cli")

    def load_config(self, **overrides) -> DeployConfig:
        """Load and validate configuration, exiting with CONFIG_INVALID on error."""
        result = load_config(self.config_dir)
        if result.is_err():
            click.echo(f"Error: {result.unwrap_err()}", err=True)
            sys.exit(ExitCode.CONFIG_INVALID)

        config = result.unwrap().with_overrides(**overrides)
        validation = config.validate()
        if validation.is_err():
            click.echo(f"Error: {validation.unwrap_err()}", err=True)
            sys.exit(ExitCode.CONFIG_INVALID)

        # Command-line flags win over the logging section of the config
        configure_logging(
            level=self.log_level or str(config.logging.level).lower(),
            format_type=self.log_format or str(config.logging.format).lower(),
        )
        return config


pass_context = click.make_pass_decorator(Context)


def output_json(data: dict) -> None:
    """Output JSON to stdout."""
    click.echo(json.dumps(data, indent=2, default=str))


def emit(result: DeploymentResult, output_format: str) -> None:
    """Print the result and exit with its exit code."""
    if output_format == "json":
        output_json(result.to_dict())
    else:
        click.echo(render_text(result))
    sys.exit(result.exit_code)


def parse_parameters(ctx: click.Context, param: click.Parameter, values: tuple[str, ...]) -> dict[str, str]:
    """Parse repeated KEY=VALUE options."""
    parsed = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}")
        parsed[key] = value
    return parsed


def confirmer(assume_yes: bool, action: str) -> Callable[[StackObservation], bool]:
    """Build the destructive-action confirmation callback."""

    def _confirm(observation: StackObservation) -> bool:
        if assume_yes:
            return True
        try:
            return click.confirm(
                f"Stack {observation.stack_name} is {observation.raw_status}. "
                f"{action} This cannot be undone. Continue?",
                default=False,
                err=True,
            )
        except click.Abort:
            return False

    return _confirm


def run_pipeline(factory: Callable[[asyncio.Event], Awaitable[DeploymentResult]]) -> DeploymentResult:
    """
    Run a pipeline coroutine with SIGINT wired to its cancel event.

    The first interrupt sets the event so the pipeline can stop at a stage
    boundary or stop polling; it never kills a remote operation.
    """

    async def _main() -> DeploymentResult:
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, cancel.set)
            installed = True
        except (NotImplementedError, RuntimeError, ValueError):
            installed = False
        try:
            return await factory(cancel)
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)

    return asyncio.run(_main())


def connect(ctx: Context, config: DeployConfig, profile: Optional[str]) -> AwsServices:
    """Create AWS clients, exiting with GUARD_FAILED when that is impossible."""
    try:
        return AwsServices.connect(config, profile)
    except InfraError as e:
        ctx.logger.error("aws_connect_failed", error=str(e))
        click.echo(f"Error: cannot create AWS clients: {e} ({e.remediation})", err=True)
        sys.exit(ExitCode.GUARD_FAILED)


def check_guards(config: DeployConfig, profile: Optional[str], require_profile: bool = True, require_templates: bool = True) -> None:
    result = run_guards(
        config,
        profile=profile,
        require_profile=require_profile,
        require_templates=require_templates,
    )
    if result.is_err():
        click.echo(f"Error: {result.unwrap_err()}", err=True)
        sys.exit(result.unwrap_err().code)


profile_option = click.option("--profile", envvar="AWS_PROFILE", help="AWS named profile")
region_option = click.option("--region", default=None, help="AWS region (overrides configuration)")
output_option = click.option(
    "--output",
    "output_format",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default="text",
    help="Output format",
)


@click.group()
@click.option(
    "--config",
    type=click.Path(exists=False, path_type=Path),
    default=DEFAULT_CONFIG,
    help="Path to config directory",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Logging level (default: logging.level from config)",
)
@click.option(
    "--log-format",
    type=click.Choice(LOG_FORMATS, case_sensitive=False),
    default=None,
    help="Log format (default: logging.format from config)",
)
@click.version_option(version=__version__)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path,
    log_level: Optional[str],
    log_format: Optional[str],
) -> None:
    """
    stackdeploy - CloudFormation nested-stack deployment pipeline.

    Validates a Main template and its nested templates, publishes them to S3
    with integrity checks, and creates or updates the stack according to its
    current state.
    """
    # Reconfigured from the config file once it is loaded
    configure_logging(level=log_level or "info", format_type=log_format or "json")

    ctx.obj = Context(
        config_dir=config,
        log_level=log_level,
        log_format=log_format,
    )


@cli.command()
@profile_option
@region_option
@click.option("--artifact-uri", default=None, help="s3://bucket[/prefix] to publish templates to")
@click.option(
    "--parameter",
    "parameters",
    multiple=True,
    callback=parse_parameters,
    help="Stack parameter KEY=VALUE (can be repeated)",
)
@click.option("--parallelism", type=int, default=None, help="Concurrent validations and uploads")
@click.option("--yes", "assume_yes", is_flag=True, default=False, help="Confirm stack deletion for ROLLBACK_COMPLETE recovery")
@click.option("--no-probe", is_flag=True, default=False, help="Skip the HTTPS reachability probe")
@output_option
@pass_context
def deploy(
    ctx: Context,
    profile: Optional[str],
    region: Optional[str],
    artifact_uri: Optional[str],
    parameters: dict[str, str],
    parallelism: Optional[int],
    assume_yes: bool,
    no_probe: bool,
    output_format: str,
) -> None:
    """Validate, publish and deploy the stack."""
    config = ctx.load_config(
        region=region,
        parallelism=parallelism,
        probe_reachability=False if no_probe else None,
        parameters=parameters,
    )
    check_guards(config, profile)

    run_context = RunContext(stack_name=config.stack.stack_name, region=config.region, profile=profile or "")
    ctx.logger.info("deploy_started", **run_context.log_fields())

    documents = load_documents(config.stack)
    services = connect(ctx, config, profile)

    def _run(cancel: asyncio.Event) -> Awaitable[DeploymentResult]:
        orchestrator = Orchestrator(
            config,
            run_context,
            checker=services.provisioning,
            provisioning=services.provisioning,
            store_factory=lambda location: services.object_store(location.bucket),
            parameter_store=services.parameters,
            artifact_uri=artifact_uri,
            confirm=confirmer(assume_yes, "Delete it and create it again?"),
            cancel=cancel,
        )
        return orchestrator.deploy(documents)

    emit(run_pipeline(_run), output_format)


@cli.command()
@profile_option
@region_option
@click.option("--offline", is_flag=True, default=False, help="Check syntax with the local parser instead of CloudFormation")
@output_option
@pass_context
def validate(
    ctx: Context,
    profile: Optional[str],
    region: Optional[str],
    offline: bool,
    output_format: str,
) -> None:
    """Run structural and cross-reference validation only."""
    config = ctx.load_config(region=region)
    check_guards(config, profile, require_profile=not offline)

    run_context = RunContext(stack_name=config.stack.stack_name, region=config.region, profile=profile or "")
    documents = load_documents(config.stack)
    checker = LocalSyntaxChecker() if offline else connect(ctx, config, profile).provisioning

    def _run(cancel: asyncio.Event) -> Awaitable[DeploymentResult]:
        return Orchestrator(config, run_context, checker=checker, cancel=cancel).validate(documents)

    emit(run_pipeline(_run), output_format)


@cli.command()
@profile_option
@region_option
@output_option
@pass_context
def status(
    ctx: Context,
    profile: Optional[str],
    region: Optional[str],
    output_format: str,
) -> None:
    """Show the stack status and the operation a deploy would select."""
    config = ctx.load_config(region=region)
    check_guards(config, profile, require_templates=False)

    run_context = RunContext(stack_name=config.stack.stack_name, region=config.region, profile=profile or "")
    services = connect(ctx, config, profile)

    def _run(cancel: asyncio.Event) -> Awaitable[DeploymentResult]:
        return Orchestrator(
            config,
            run_context,
            checker=services.provisioning,
            provisioning=services.provisioning,
            cancel=cancel,
        ).status()

    emit(run_pipeline(_run), output_format)


@cli.command()
@profile_option
@region_option
@click.option("--yes", "assume_yes", is_flag=True, default=False, help="Do not ask for confirmation")
@output_option
@pass_context
def destroy(
    ctx: Context,
    profile: Optional[str],
    region: Optional[str],
    assume_yes: bool,
    output_format: str,
) -> None:
    """Delete the stack."""
    config = ctx.load_config(region=region)
    check_guards(config, profile, require_templates=False)

    run_context = RunContext(stack_name=config.stack.stack_name, region=config.region, profile=profile or "")
    services = connect(ctx, config, profile)
    ctx.logger.warning("destroy_requested", **run_context.log_fields())

    def _run(cancel: asyncio.Event) -> Awaitable[DeploymentResult]:
        return Orchestrator(
            config,
            run_context,
            checker=services.provisioning,
            provisioning=services.provisioning,
            confirm=confirmer(assume_yes, "Delete it?"),
            cancel=cancel,
        ).destroy()

    emit(run_pipeline(_run), output_format)


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except Exception as e:
        logger = get_logger("cli")
        logger.error("cli_error", error=str(e))
        sys.exit(ExitCode.GENERAL_ERROR)


if __name__ == "__main__":
    main()
