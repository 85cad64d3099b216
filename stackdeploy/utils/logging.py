"""Structured JSON logging with an explicit run context."""

from __future__ import annotations

import logging
import sys
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import structlog


def new_run_id() -> str:
    """Generate a run identifier in the form ``deploy-YYYYMMDD-HHMMSS-xxxxxxxx``."""
    now = datetime.now(timezone.utc)
    return f"deploy-{now:%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class RunContext:
    """
    Correlation data for one deployment run.

    Passed explicitly through the call chain and bound into loggers, so
    there is no process-wide mutable logging state.

    Attributes:
        stack_name: CloudFormation stack the run targets
        region: AWS region
        profile: AWS named profile
        run_id: Correlation identifier stamped on every log line
    """

    stack_name: str
    region: str = ""
    profile: str = ""
    run_id: str = field(default_factory=new_run_id)

    def log_fields(self) -> dict[str, str]:
        """Fields bound into every log event of the run."""
        fields = {"run_id": self.run_id, "stack_name": self.stack_name}
        if self.region:
            fields["region"] = self.region
        if self.profile:
            fields["profile"] = self.profile
        return fields

    def bind(
        self,
        logger: structlog.stdlib.BoundLogger,
        stage: Optional[str] = None,
    ) -> structlog.stdlib.BoundLogger:
        """Return ``logger`` bound to this run (and optionally a stage)."""
        bound = logger.bind(**self.log_fields())
        if stage:
            bound = bound.bind(stage=stage)
        return bound


def add_timestamp(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add ISO format timestamp to log events."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def configure_logging(
    level: str = "info",
    format_type: str = "json",
    stream: Any = None,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (debug, info, warn, error)
        format_type: Output format ('json' or 'text')
        stream: Output stream (default: sys.stderr)
    """
    if stream is None:
        stream = sys.stderr

    level_map = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warn": logging.WARNING,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }
    log_level = level_map.get(level.lower(), logging.INFO)

    # boto3 and httpx log through the standard library
    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=max(log_level, logging.WARNING),
    )

    processors: list[structlog.types.Processor] = [
        structlog.stdlib.add_log_level,
        add_timestamp,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if format_type == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(stream),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Optional logger name for context

    Returns:
        Configured structlog logger
    """
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger_name=name)
    return logger


def log_stage_timing(
    logger: structlog.stdlib.BoundLogger,
    stage: str,
    duration_seconds: float,
) -> None:
    """Log timing information for a pipeline stage."""
    logger.info(
        "stage_completed",
        stage=stage,
        duration_seconds=round(duration_seconds, 3),
    )


# Initialize with defaults on import
configure_logging()
