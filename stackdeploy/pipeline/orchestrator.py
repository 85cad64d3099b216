"""Deployment orchestrator: validate, publish, decide, execute."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

from stackdeploy.aws.base import ObjectStore, ParameterStore, ProvisioningService, SyntaxChecker
from stackdeploy.aws.s3 import ArtifactLocation
from stackdeploy.config.settings import DeployConfig
from stackdeploy.deployment.machine import ConfirmDeletion, DeploymentStateMachine, decide
from stackdeploy.deployment.states import (
    DeploymentDecision,
    DeploymentOperation,
    OperationOutcome,
    OperationResult,
    StackState,
)
from stackdeploy.errors import InfraError
from stackdeploy.models.documents import TemplateDocument
from stackdeploy.models.publish import PublishReport
from stackdeploy.models.results import DeploymentResult, PipelineStage
from stackdeploy.pipeline.parameters import ParameterResolver, resolve_artifact_location
from stackdeploy.publisher import ArtifactPublisher, ReachabilityProbe
from stackdeploy.utils.logging import RunContext, get_logger, log_stage_timing
from stackdeploy.utils.result import ExitCode
from stackdeploy.utils.retry import SleepFn
from stackdeploy.validation import CrossReferenceValidator, StructuralValidator

logger = get_logger("pipeline.orchestrator")

OUTCOME_EXIT_CODES = {
    OperationOutcome.SUCCEEDED: ExitCode.SUCCESS,
    OperationOutcome.NO_CHANGES: ExitCode.SUCCESS,
    OperationOutcome.FAILED: ExitCode.OPERATION_FAILED,
    OperationOutcome.TIMED_OUT: ExitCode.OPERATION_TIMEOUT,
    OperationOutcome.CANCELLED: ExitCode.CANCELLED,
}


class Orchestrator:
    """
    Runs the deployment pipeline for one stack.

    Stages run strictly in order and each returns a value; this class alone
    decides whether to continue. Every finding and record gathered before an
    abort is kept on the DeploymentResult.
    """

    def __init__(
        self,
        config: DeployConfig,
        context: RunContext,
        checker: SyntaxChecker,
        provisioning: Optional[ProvisioningService] = None,
        store_factory: Optional[Callable[[ArtifactLocation], ObjectStore]] = None,
        parameter_store: Optional[ParameterStore] = None,
        artifact_uri: Optional[str] = None,
        confirm: Optional[ConfirmDeletion] = None,
        cancel: Optional[asyncio.Event] = None,
        probe: Optional[ReachabilityProbe] = None,
        sleep: SleepFn = asyncio.sleep,
        poll_interval: Optional[float] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            config: Deployment configuration
            context: Run correlation context
            checker: Syntax checker for structural validation
            provisioning: Provisioning service (needed past validation)
            store_factory: Builds the object store once the artifact
                location is known
            parameter_store: Parameter store for parameter and bucket lookups
            artifact_uri: Explicit ``s3://bucket[/prefix]``
            confirm: Callback allowing destructive ROLLBACK_COMPLETE recovery
            cancel: Event set on interrupt
            probe: Reachability probe (default built from config)
            sleep: Sleep used between retries
            poll_interval: Override of the configured poll interval
        """
        self.config = config
        self.context = context
        self.checker = checker
        self.provisioning = provisioning
        self.store_factory = store_factory
        self.parameter_store = parameter_store
        self.artifact_uri = artifact_uri
        self.confirm = confirm
        self.cancel = cancel or asyncio.Event()
        self.sleep = sleep
        self.poll_interval = poll_interval if poll_interval is not None else float(config.timeouts.poll_interval)
        self.log = context.bind(logger)

        if probe is None and config.probe_reachability:
            probe = ReachabilityProbe(timeout=config.timeouts.probe, log=self.log)
        self.probe = probe

    def _machine(self) -> DeploymentStateMachine:
        return DeploymentStateMachine(
            self.provisioning,
            self.context.stack_name,
            timeouts={
                operation: float(self.config.operation_timeout(operation))
                for operation in ("create", "update", "delete")
            },
            poll_interval=self.poll_interval,
            cancel=self.cancel,
            log=self.context.bind(logger, stage="operation"),
        )

    def _new_result(self) -> DeploymentResult:
        return DeploymentResult(run_id=self.context.run_id, stack_name=self.context.stack_name)

    def _cancelled(self, result: DeploymentResult, stage: PipelineStage) -> Optional[DeploymentResult]:
        if not self.cancel.is_set():
            return None
        self.log.warning("run_cancelled", stage=stage.value)
        return result.finish(stage, ExitCode.CANCELLED, f"Cancelled before {stage.value}")

    async def _validate(self, documents: list[TemplateDocument], result: DeploymentResult) -> bool:
        """Stages 1 and 2. Returns True when the run may continue."""
        started = time.monotonic()

        structural = StructuralValidator(
            self.checker,
            limits=self.config.limits,
            parallelism=self.config.parallelism,
            retry_policy=self.config.retry.to_policy(),
            sleep=self.sleep,
            log=self.context.bind(logger, stage="structural_validation"),
        )
        report = await structural.validate(documents)
        result.validation = report

        if not report.passed:
            result.timing.validation_seconds = time.monotonic() - started
            result.finish(
                PipelineStage.STRUCTURAL_VALIDATION,
                ExitCode.VALIDATION_FAILED,
                f"Structural validation failed with {len(report.errors)} error(s)",
            )
            return False

        if self._cancelled(result, PipelineStage.CROSS_REFERENCE):
            return False

        crossref = CrossReferenceValidator(log=self.context.bind(logger, stage="cross_reference"))
        report = report.merge(crossref.validate(documents))
        result.validation = report
        result.timing.validation_seconds = time.monotonic() - started
        log_stage_timing(self.log, "validation", result.timing.validation_seconds)

        if not report.passed:
            result.finish(
                PipelineStage.CROSS_REFERENCE,
                ExitCode.VALIDATION_FAILED,
                f"Cross-reference validation failed with {len(report.errors)} error(s)",
            )
            return False

        return True

    async def validate(self, documents: list[TemplateDocument]) -> DeploymentResult:
        """Run structural and cross-reference validation only."""
        result = self._new_result()
        self.log.info("validation_run_started", documents=len(documents))

        if self._cancelled(result, PipelineStage.STRUCTURAL_VALIDATION):
            return result
        if not await self._validate(documents, result):
            return result

        return result.finish(PipelineStage.COMPLETE, ExitCode.SUCCESS, "Validation passed")

    async def _publish(
        self,
        documents: list[TemplateDocument],
        result: DeploymentResult,
    ) -> Optional[ArtifactLocation]:
        """Stage 3. Returns the artifact location when every record verified."""
        started = time.monotonic()
        log = self.context.bind(logger, stage="publish")

        location_result = await resolve_artifact_location(
            self.config.stack, self.parameter_store, self.artifact_uri
        )
        if location_result.is_err():
            result.publish = PublishReport()
            result.finish(PipelineStage.PUBLISH, ExitCode.PUBLISH_FAILED, location_result.unwrap_err())
            return None
        location = location_result.unwrap()

        if self.store_factory is None:
            result.finish(PipelineStage.PUBLISH, ExitCode.PUBLISH_FAILED, "No object store configured")
            return None
        store = self.store_factory(location)

        publisher = ArtifactPublisher(
            store,
            location,
            application_name=self.config.stack.application_name,
            nested_prefix=self.config.stack.nested_prefix,
            retry_policy=self.config.retry.to_policy(),
            probe=self.probe,
            parallelism=self.config.parallelism,
            sleep=self.sleep,
            log=log,
        )
        report = await publisher.publish(documents)
        result.publish = report
        result.timing.publish_seconds = time.monotonic() - started
        log_stage_timing(self.log, "publish", result.timing.publish_seconds)

        if not report.passed:
            result.finish(
                PipelineStage.PUBLISH,
                ExitCode.PUBLISH_FAILED,
                f"Publishing failed for {len(report.failed_records)} document(s)",
            )
            return None

        return location

    async def deploy(self, documents: list[TemplateDocument]) -> DeploymentResult:
        """
        Run the whole pipeline.

        Args:
            documents: Main and Nested documents, read once

        Returns:
            DeploymentResult with every report gathered
        """
        result = self._new_result()
        self.log.info("deployment_started", documents=len(documents))

        if self._cancelled(result, PipelineStage.STRUCTURAL_VALIDATION):
            return result
        if not await self._validate(documents, result):
            return result

        if self._cancelled(result, PipelineStage.PUBLISH):
            return result
        location = await self._publish(documents, result)
        if location is None:
            return result

        if self._cancelled(result, PipelineStage.PARAMETERS):
            return result

        if self.provisioning is None or self.parameter_store is None:
            return result.finish(
                PipelineStage.PARAMETERS, ExitCode.GENERAL_ERROR, "No provisioning service configured"
            )

        resolver = ParameterResolver(
            self.parameter_store,
            self.config.stack,
            log=self.context.bind(logger, stage="parameters"),
        )
        parameters = await resolver.resolve(bucket=location.bucket)
        if parameters.is_err():
            return result.finish(
                PipelineStage.PARAMETERS,
                ExitCode.CONFIG_INVALID,
                "Cannot resolve stack parameters: " + "; ".join(parameters.unwrap_err()),
            )

        started = time.monotonic()
        machine = self._machine()

        try:
            observation = await machine.observe()
        except InfraError as e:
            return result.finish(
                PipelineStage.DECISION,
                ExitCode.GENERAL_ERROR,
                f"Cannot read stack status: {e} ({e.remediation})",
            )

        decision = await machine.resolve(observation, self.confirm)
        result.decision = decision
        self.log.info("decision_made", operation=decision.operation.value, reason=decision.reason)

        if decision.is_abort:
            return result.finish(PipelineStage.DECISION, ExitCode.STATE_ABORT, decision.reason)

        if self._cancelled(result, PipelineStage.OPERATION):
            return result

        operation = await machine.execute(
            decision,
            template_url=result.publish.main_location,
            parameters=parameters.unwrap(),
            capabilities=self.config.stack.capabilities,
            tags=self.config.stack.tags,
        )
        result.operation = operation
        result.timing.operation_seconds = time.monotonic() - started
        log_stage_timing(self.log, "operation", result.timing.operation_seconds)

        return result.finish(
            PipelineStage.OPERATION if not operation.outcome.is_success() else PipelineStage.COMPLETE,
            OUTCOME_EXIT_CODES[operation.outcome],
            _outcome_message(decision, operation),
        )

    async def status(self) -> DeploymentResult:
        """Observe the stack and report the decision a deploy would make."""
        result = self._new_result()
        machine = self._machine()

        try:
            observation = await machine.observe()
        except InfraError as e:
            return result.finish(
                PipelineStage.DECISION, ExitCode.GENERAL_ERROR, f"Cannot read stack status: {e}"
            )

        result.decision = decide(observation)
        return result.finish(
            PipelineStage.COMPLETE,
            ExitCode.SUCCESS,
            f"Stack is {observation.raw_status or 'NOT_FOUND'}; next operation: "
            f"{result.decision.operation.value}",
        )

    async def destroy(self) -> DeploymentResult:
        """
        Delete the stack after confirmation.

        Refuses while another operation is in progress.
        """
        result = self._new_result()
        machine = self._machine()

        try:
            observation = await machine.observe()
        except InfraError as e:
            return result.finish(
                PipelineStage.DECISION, ExitCode.GENERAL_ERROR, f"Cannot read stack status: {e}"
            )

        if observation.state is StackState.ABSENT:
            return result.finish(PipelineStage.COMPLETE, ExitCode.SUCCESS, "Stack does not exist")

        if observation.state is StackState.BUSY:
            result.decision = DeploymentDecision(
                operation=DeploymentOperation.ABORT,
                wait_condition=None,
                reason=f"Stack is {observation.raw_status}; another operation is in progress",
                observation=observation,
            )
            return result.finish(PipelineStage.DECISION, ExitCode.STATE_ABORT, result.decision.reason)

        if not (self.confirm and self.confirm(observation)):
            result.decision = DeploymentDecision(
                operation=DeploymentOperation.ABORT,
                wait_condition=None,
                reason="Deletion was not confirmed",
                observation=observation,
            )
            return result.finish(PipelineStage.DECISION, ExitCode.STATE_ABORT, result.decision.reason)

        operation = await machine.delete()
        result.operation = operation
        return result.finish(
            PipelineStage.OPERATION if not operation.outcome.is_success() else PipelineStage.COMPLETE,
            OUTCOME_EXIT_CODES[operation.outcome],
            f"Delete {operation.outcome.value}"
            + (f": {operation.error_detail}" if operation.error_detail else ""),
        )


def _outcome_message(decision: DeploymentDecision, operation: OperationResult) -> str:
    name = decision.operation.value
    if operation.outcome is OperationOutcome.SUCCEEDED:
        return f"Stack {name} completed ({operation.final_status})"
    if operation.outcome is OperationOutcome.NO_CHANGES:
        return "No updates are to be performed; stack is up to date"
    if operation.outcome is OperationOutcome.TIMED_OUT:
        return f"Stack {name} timed out; outcome unknown. {operation.error_detail or ''}".strip()
    if operation.outcome is OperationOutcome.CANCELLED:
        suffix = " (the remote operation continues)" if operation.remote_operation_continues else ""
        return f"Stack {name} cancelled{suffix}"
    return f"Stack {name} failed: {operation.error_detail or operation.final_status}"
