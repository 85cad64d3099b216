"""Deployment state machine: observe, decide, execute, poll."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional, Sequence

import structlog

from stackdeploy.aws.base import NoUpdatesError, ProvisioningService
from stackdeploy.deployment.states import (
    DeploymentDecision,
    DeploymentOperation,
    OperationHandle,
    OperationOutcome,
    OperationResult,
    StackObservation,
    StackState,
    WaitCondition,
)
from stackdeploy.errors import InfraError, OperationTimeoutError, StateConflictError
from stackdeploy.utils.logging import get_logger

logger = get_logger("deployment.machine")

# Called with the ROLLBACK_COMPLETE observation; True allows the delete
ConfirmDeletion = Callable[[StackObservation], bool]


def decide(observation: StackObservation) -> DeploymentDecision:
    """
    Select the lifecycle operation for an observed stack.

    Pure and deterministic. ``DELETE_THEN_CREATE`` is proposed for
    ROLLBACK_COMPLETE but only executed after confirmation.

    Args:
        observation: Fresh stack observation

    Returns:
        DeploymentDecision
    """
    state = observation.state
    status = observation.raw_status

    if state is StackState.ABSENT:
        return DeploymentDecision(
            operation=DeploymentOperation.CREATE,
            wait_condition=WaitCondition.CREATE_COMPLETE,
            reason="Stack does not exist",
            observation=observation,
        )

    if state is StackState.READY:
        return DeploymentDecision(
            operation=DeploymentOperation.UPDATE,
            wait_condition=WaitCondition.UPDATE_COMPLETE,
            reason=f"Stack is {status}",
            observation=observation,
        )

    if observation.is_rollback_complete:
        return DeploymentDecision(
            operation=DeploymentOperation.DELETE_THEN_CREATE,
            wait_condition=WaitCondition.DELETE_COMPLETE,
            reason="Stack is ROLLBACK_COMPLETE and must be deleted before it can be recreated",
            observation=observation,
        )

    if state is StackState.BLOCKED:
        reason = f"Stack is {status}; manual intervention required"
    elif state is StackState.BUSY:
        reason = f"Stack is {status}; another operation is in progress"
    else:
        reason = f"Stack status {status} is not recognized; refusing to act"

    return DeploymentDecision(
        operation=DeploymentOperation.ABORT,
        wait_condition=None,
        reason=reason,
        observation=observation,
    )


class DeploymentStateMachine:
    """
    Drives one stack through create, update or delete-then-create.

    The stack status is read fresh for every decision. Operations are
    started once and then polled until their wait condition, a failure, the
    wall-clock bound, or cancellation.
    """

    def __init__(
        self,
        service: ProvisioningService,
        stack_name: str,
        timeouts: Optional[dict[str, float]] = None,
        poll_interval: float = 15.0,
        cancel: Optional[asyncio.Event] = None,
        log: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        """
        Initialize the machine.

        Args:
            service: Provisioning service driver
            stack_name: Target stack
            timeouts: Polling bound per operation ("create", "update", "delete")
            poll_interval: Seconds between status reads
            cancel: Event that stops polling when set
            log: Logger bound to the run context
        """
        self.service = service
        self.stack_name = stack_name
        self.timeouts = {"create": 3600.0, "update": 3600.0, "delete": 1800.0, **(timeouts or {})}
        self.poll_interval = poll_interval
        self.cancel = cancel or asyncio.Event()
        self.log = log or logger

    async def observe(self) -> StackObservation:
        """
        Read the current stack status.

        Raises:
            InfraError: If the status cannot be read
        """
        raw_status = await asyncio.to_thread(self.service.get_stack_status, self.stack_name)
        observation = StackObservation(stack_name=self.stack_name, raw_status=raw_status)
        self.log.info(
            "stack_status_observed",
            status=observation.raw_status or "NOT_FOUND",
            state=observation.state.name,
        )
        return observation

    async def resolve(
        self,
        observation: StackObservation,
        confirm: Optional[ConfirmDeletion] = None,
    ) -> DeploymentDecision:
        """
        Decide, asking for confirmation before any destructive recovery.

        Without a confirmation callback, or when it declines, a
        ROLLBACK_COMPLETE stack yields ABORT.
        """
        decision = decide(observation)
        if decision.operation is not DeploymentOperation.DELETE_THEN_CREATE:
            return decision

        confirmed = bool(confirm(observation)) if confirm else False
        self.log.info("deletion_confirmation", confirmed=confirmed, status=observation.raw_status)
        if confirmed:
            return decision

        return DeploymentDecision(
            operation=DeploymentOperation.ABORT,
            wait_condition=None,
            reason=(
                "Stack is ROLLBACK_COMPLETE and deletion was not confirmed; "
                "re-run with --yes or delete it with the destroy command"
            ),
            observation=observation,
        )

    async def execute(
        self,
        decision: DeploymentDecision,
        template_url: str,
        parameters: dict[str, str],
        capabilities: Sequence[str] = (),
        tags: Optional[dict[str, str]] = None,
    ) -> OperationResult:
        """
        Carry out a non-abort decision and poll it to completion.

        Args:
            decision: Decision from ``resolve``
            template_url: Location of the published Main document
            parameters: Resolved stack parameters
            capabilities: Capabilities to acknowledge
            tags: Stack tags

        Returns:
            OperationResult

        Raises:
            StateConflictError: If the decision is ABORT
        """
        if decision.is_abort:
            status = decision.observation.raw_status if decision.observation else None
            raise StateConflictError(self.stack_name, status or "UNKNOWN", decision.reason)

        if decision.operation is DeploymentOperation.DELETE_THEN_CREATE:
            deleted = await self.delete()
            if not deleted.outcome.is_success():
                return deleted

            try:
                observation = await self.observe()
            except InfraError as e:
                return OperationResult(
                    outcome=OperationOutcome.FAILED,
                    waited_seconds=deleted.waited_seconds,
                    error_detail=f"Cannot read stack status after deletion: {e}",
                )
            if observation.state is not StackState.ABSENT:
                return OperationResult(
                    outcome=OperationOutcome.FAILED,
                    final_status=observation.raw_status,
                    waited_seconds=deleted.waited_seconds,
                    error_detail=f"Stack still present after deletion ({observation.raw_status})",
                )
            decision = decide(observation)

        if self.cancel.is_set():
            self.log.warning("operation_cancelled_before_start", operation=decision.operation.value)
            return OperationResult(outcome=OperationOutcome.CANCELLED)

        if decision.operation is DeploymentOperation.CREATE:
            start = self.service.create_stack
            timeout_key = "create"
        else:
            start = self.service.update_stack
            timeout_key = "update"

        self.log.info("operation_started", operation=decision.operation.value, template_url=template_url)

        try:
            stack_id = await asyncio.to_thread(
                start, self.stack_name, template_url, parameters, capabilities, tags
            )
        except NoUpdatesError:
            self.log.info("no_changes", operation=decision.operation.value)
            outputs = await self._outputs()
            return OperationResult(
                outcome=OperationOutcome.NO_CHANGES,
                final_status=decision.observation.raw_status if decision.observation else None,
                outputs=outputs,
            )
        except InfraError as e:
            self.log.error("operation_start_failed", error=str(e), error_class=e.error_class.value)
            return OperationResult(
                outcome=OperationOutcome.FAILED,
                final_status=decision.observation.raw_status if decision.observation else None,
                error_detail=str(e),
            )

        handle = OperationHandle(
            stack_name=self.stack_name,
            operation=decision.operation,
            wait_condition=decision.wait_condition,
            stack_id=stack_id,
        )
        return await self.wait(handle, self.timeouts[timeout_key])

    async def delete(self) -> OperationResult:
        """Start a deletion and poll for DELETE_COMPLETE."""
        if self.cancel.is_set():
            return OperationResult(outcome=OperationOutcome.CANCELLED)

        self.log.warning("stack_delete_started")
        try:
            await asyncio.to_thread(self.service.delete_stack, self.stack_name)
        except InfraError as e:
            self.log.error("stack_delete_failed", error=str(e))
            return OperationResult(outcome=OperationOutcome.FAILED, error_detail=str(e))

        handle = OperationHandle(
            stack_name=self.stack_name,
            operation=DeploymentOperation.DELETE_THEN_CREATE,
            wait_condition=WaitCondition.DELETE_COMPLETE,
        )
        return await self.wait(handle, self.timeouts["delete"])

    async def wait(self, handle: OperationHandle, timeout: float) -> OperationResult:
        """
        Poll until the handle's wait condition, a failure, timeout or cancel.

        Transient status read failures are logged and polling continues
        inside the same wall-clock bound.
        """
        started = time.monotonic()
        last_status: Optional[str] = None
        condition = handle.wait_condition

        while True:
            waited = time.monotonic() - started

            try:
                last_status = await asyncio.to_thread(self.service.get_stack_status, self.stack_name)
            except InfraError as e:
                if not e.is_transient:
                    self.log.error("poll_failed", error=str(e))
                    return OperationResult(
                        outcome=OperationOutcome.FAILED,
                        final_status=last_status,
                        waited_seconds=waited,
                        error_detail=str(e),
                        remote_operation_continues=True,
                    )
                self.log.warning("poll_transient_error", error=str(e))
            else:
                self.log.debug("poll_status", status=last_status, waited_seconds=round(waited, 1))
                if condition.is_terminal(last_status):
                    return await self._finish(handle, last_status, waited)

            if waited >= timeout:
                error = OperationTimeoutError(self.stack_name, waited, last_status)
                self.log.error("operation_timeout", waited_seconds=round(waited, 1), status=last_status)
                return OperationResult(
                    outcome=OperationOutcome.TIMED_OUT,
                    final_status=last_status,
                    waited_seconds=waited,
                    error_detail=str(error),
                    remote_operation_continues=True,
                )

            if await self._cancelled_within(min(self.poll_interval, max(timeout - waited, 0.0))):
                self.log.warning("polling_cancelled", status=last_status)
                return OperationResult(
                    outcome=OperationOutcome.CANCELLED,
                    final_status=last_status,
                    waited_seconds=time.monotonic() - started,
                    error_detail="Polling cancelled; the remote operation continues",
                    remote_operation_continues=True,
                )

    async def _cancelled_within(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if the cancel event fired meanwhile."""
        if self.cancel.is_set():
            return True
        try:
            await asyncio.wait_for(self.cancel.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _finish(
        self,
        handle: OperationHandle,
        status: Optional[str],
        waited: float,
    ) -> OperationResult:
        if handle.wait_condition.is_satisfied(status):
            self.log.info("operation_completed", status=status or "DELETE_COMPLETE", waited_seconds=round(waited, 1))
            outputs = {}
            if handle.wait_condition is not WaitCondition.DELETE_COMPLETE:
                outputs = await self._outputs()
            return OperationResult(
                outcome=OperationOutcome.SUCCEEDED,
                final_status=status,
                waited_seconds=waited,
                outputs=outputs,
            )

        reason = await self._failure_reason()
        self.log.error("operation_failed", status=status, reason=reason)
        return OperationResult(
            outcome=OperationOutcome.FAILED,
            final_status=status,
            waited_seconds=waited,
            error_detail=reason or f"Stack ended in {status or 'NOT_FOUND'}",
        )

    async def _outputs(self) -> dict[str, str]:
        try:
            return await asyncio.to_thread(self.service.describe_outputs, self.stack_name)
        except InfraError as e:
            self.log.warning("outputs_unavailable", error=str(e))
            return {}

    async def _failure_reason(self) -> Optional[str]:
        try:
            return await asyncio.to_thread(self.service.last_failure_reason, self.stack_name)
        except InfraError as e:
            self.log.warning("failure_reason_unavailable", error=str(e))
            return None
