"""Stack lifecycle decisions and execution."""

from stackdeploy.deployment.machine import ConfirmDeletion, DeploymentStateMachine, decide
from stackdeploy.deployment.states import (
    DeploymentDecision,
    DeploymentOperation,
    OperationHandle,
    OperationOutcome,
    OperationResult,
    StackObservation,
    StackState,
    WaitCondition,
    classify_status,
)

__all__ = [
    "ConfirmDeletion",
    "DeploymentDecision",
    "DeploymentOperation",
    "DeploymentStateMachine",
    "OperationHandle",
    "OperationOutcome",
    "OperationResult",
    "StackObservation",
    "StackState",
    "WaitCondition",
    "classify_status",
    "decide",
]
