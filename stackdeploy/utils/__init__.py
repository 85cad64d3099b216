"""Utility modules for stackdeploy."""

from stackdeploy.utils.logging import (
    RunContext,
    configure_logging,
    get_logger,
    log_stage_timing,
    new_run_id,
)
from stackdeploy.utils.result import (
    ConfigError,
    Err,
    ExitCode,
    GuardError,
    Ok,
    Result,
)
from stackdeploy.utils.retry import RetryOutcome, RetryPolicy, run_with_retry

__all__ = [
    # Logging
    "RunContext",
    "configure_logging",
    "get_logger",
    "log_stage_timing",
    "new_run_id",
    # Results
    "Ok",
    "Err",
    "Result",
    "ExitCode",
    "GuardError",
    "ConfigError",
    # Retry
    "RetryPolicy",
    "RetryOutcome",
    "run_with_retry",
]
