"""Stack state definitions and the decision table."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Optional


class StackState(Enum):
    """Stack-level state as observed from CloudFormation."""

    ABSENT = auto()  # No stack with that name
    READY = auto()  # Create/update complete, can be updated
    BUSY = auto()  # Some operation is in flight
    BLOCKED = auto()  # Failed terminal state, needs destructive recovery
    UNKNOWN = auto()  # Status we do not recognize


READY_STATUSES = frozenset({
    "CREATE_COMPLETE",
    "UPDATE_COMPLETE",
    "UPDATE_ROLLBACK_COMPLETE",
    "IMPORT_COMPLETE",
    "IMPORT_ROLLBACK_COMPLETE",
})

# ROLLBACK_COMPLETE is the only blocked status recoverable by delete + create
RECOVERABLE_STATUS = "ROLLBACK_COMPLETE"

BLOCKED_STATUSES = frozenset({
    RECOVERABLE_STATUS,
    "CREATE_FAILED",
    "DELETE_FAILED",
    "ROLLBACK_FAILED",
    "UPDATE_FAILED",
    "UPDATE_ROLLBACK_FAILED",
    "IMPORT_ROLLBACK_FAILED",
})

IN_PROGRESS_SUFFIX = "_IN_PROGRESS"


def classify_status(raw_status: Optional[str]) -> StackState:
    """
    Map a raw CloudFormation stack status to a StackState.

    Args:
        raw_status: StackStatus string, or None when the stack does not exist

    Returns:
        The corresponding StackState
    """
    if raw_status is None or raw_status == "DELETE_COMPLETE":
        return StackState.ABSENT
    if raw_status.endswith(IN_PROGRESS_SUFFIX):
        return StackState.BUSY
    if raw_status in READY_STATUSES:
        return StackState.READY
    if raw_status in BLOCKED_STATUSES:
        return StackState.BLOCKED
    return StackState.UNKNOWN


@dataclass(frozen=True)
class StackObservation:
    """One fresh read of a stack's status. Never cached."""

    stack_name: str
    raw_status: Optional[str]
    observed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def state(self) -> StackState:
        return classify_status(self.raw_status)

    @property
    def is_rollback_complete(self) -> bool:
        return self.raw_status == RECOVERABLE_STATUS

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "stack_name": self.stack_name,
            "status": self.raw_status or "NOT_FOUND",
            "state": self.state.name,
            "observed_at": self.observed_at.isoformat(),
        }


class DeploymentOperation(Enum):
    """Lifecycle operation selected for a stack."""

    CREATE = "create"
    UPDATE = "update"
    DELETE_THEN_CREATE = "delete_then_create"
    ABORT = "abort"


class WaitCondition(Enum):
    """Terminal status an operation is polled for."""

    CREATE_COMPLETE = "CREATE_COMPLETE"
    UPDATE_COMPLETE = "UPDATE_COMPLETE"
    DELETE_COMPLETE = "DELETE_COMPLETE"

    def is_terminal(self, raw_status: Optional[str]) -> bool:
        """True once polling can stop."""
        return raw_status is None or not raw_status.endswith(IN_PROGRESS_SUFFIX)

    def is_satisfied(self, raw_status: Optional[str]) -> bool:
        """True when the terminal status is the one we waited for."""
        if self is WaitCondition.DELETE_COMPLETE:
            return raw_status is None or raw_status == "DELETE_COMPLETE"
        return raw_status == self.value


@dataclass(frozen=True)
class DeploymentDecision:
    """What to do next, derived deterministically from an observation."""

    operation: DeploymentOperation
    wait_condition: Optional[WaitCondition]
    reason: str
    observation: Optional[StackObservation] = None

    @property
    def is_abort(self) -> bool:
        return self.operation is DeploymentOperation.ABORT

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "operation": self.operation.value,
            "wait_condition": self.wait_condition.value if self.wait_condition else None,
            "reason": self.reason,
            "observation": self.observation.to_dict() if self.observation else None,
        }


@dataclass(frozen=True)
class OperationHandle:
    """A remote operation that has been started and cannot be recalled."""

    stack_name: str
    operation: DeploymentOperation
    wait_condition: WaitCondition
    stack_id: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class OperationOutcome(Enum):
    """Terminal outcome of polling an operation."""

    SUCCEEDED = "succeeded"
    NO_CHANGES = "no_changes"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    def is_success(self) -> bool:
        return self in (OperationOutcome.SUCCEEDED, OperationOutcome.NO_CHANGES)


@dataclass(frozen=True)
class OperationResult:
    """
    Result of driving one operation to a terminal state.

    Attributes:
        outcome: Terminal outcome
        final_status: Last stack status observed
        waited_seconds: Wall-clock time spent polling
        error_detail: Last known remote failure reason
        remote_operation_continues: True when polling stopped but the
            remote operation may still be running (timeout, cancellation)
        outputs: Stack outputs on success
    """

    outcome: OperationOutcome
    final_status: Optional[str] = None
    waited_seconds: float = 0.0
    error_detail: Optional[str] = None
    remote_operation_continues: bool = False
    outputs: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "outcome": self.outcome.value,
            "final_status": self.final_status,
            "waited_seconds": round(self.waited_seconds, 1),
            "error_detail": self.error_detail,
            "remote_operation_continues": self.remote_operation_continues,
            "outputs": self.outputs,
        }
