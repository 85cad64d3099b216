"""Data models for deployment runs and their results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from stackdeploy.deployment.states import (
    DeploymentDecision,
    OperationOutcome,
    OperationResult,
)
from stackdeploy.models.findings import ValidationReport
from stackdeploy.models.publish import PublishReport


class PipelineStage(Enum):
    """Stages of a deployment run, in execution order."""

    PREFLIGHT = "preflight"
    STRUCTURAL_VALIDATION = "structural_validation"
    CROSS_REFERENCE = "cross_reference"
    PUBLISH = "publish"
    PARAMETERS = "parameters"
    DECISION = "decision"
    OPERATION = "operation"
    COMPLETE = "complete"


@dataclass
class StageTiming:
    """
    Timing information for pipeline stages.

    Attributes:
        validation_seconds: Structural and cross-reference validation
        publish_seconds: Upload and verification
        operation_seconds: Decision, operation and polling
        total_seconds: Total run duration
    """

    validation_seconds: float = 0.0
    publish_seconds: float = 0.0
    operation_seconds: float = 0.0
    total_seconds: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "validation_seconds": round(self.validation_seconds, 3),
            "publish_seconds": round(self.publish_seconds, 3),
            "operation_seconds": round(self.operation_seconds, 3),
            "total_seconds": round(self.total_seconds, 3),
        }


@dataclass
class DeploymentResult:
    """
    Everything one deployment run produced.

    Filled in stage by stage; ``stage`` is the last stage reached and
    ``exit_code`` the process exit code the run maps to.

    Attributes:
        run_id: Correlation id of the run
        stack_name: Target stack
        started_at: When the run started
        completed_at: When the run ended
        stage: Last stage reached
        exit_code: Process exit code
        message: Summary of why the run ended
        validation: Structural plus cross-reference findings
        publish: Publish records
        decision: Selected lifecycle operation
        operation: Outcome of the executed operation
        timing: Stage timing
    """

    run_id: str
    stack_name: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    stage: PipelineStage = PipelineStage.PREFLIGHT
    exit_code: int = 0
    message: str = ""
    validation: Optional[ValidationReport] = None
    publish: Optional[PublishReport] = None
    decision: Optional[DeploymentDecision] = None
    operation: Optional[OperationResult] = None
    timing: StageTiming = field(default_factory=StageTiming)

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    @property
    def outcome(self) -> Optional[OperationOutcome]:
        return self.operation.outcome if self.operation else None

    def finish(self, stage: PipelineStage, exit_code: int, message: str) -> "DeploymentResult":
        """Mark the run as ended at ``stage``."""
        self.completed_at = datetime.now(timezone.utc)
        self.stage = stage
        self.exit_code = exit_code
        self.message = message
        self.timing.total_seconds = (self.completed_at - self.started_at).total_seconds()
        return self

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "run_id": self.run_id,
            "stack_name": self.stack_name,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "stage": self.stage.value,
            "exit_code": self.exit_code,
            "message": self.message,
            "validation": self.validation.to_dict() if self.validation else None,
            "publish": self.publish.to_dict() if self.publish else None,
            "decision": self.decision.to_dict() if self.decision else None,
            "operation": self.operation.to_dict() if self.operation else None,
            "timing": self.timing.to_dict(),
        }
