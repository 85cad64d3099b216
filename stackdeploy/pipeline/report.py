"""Human-readable rendering of a DeploymentResult."""

from __future__ import annotations

from stackdeploy.models.findings import Severity
from stackdeploy.models.results import DeploymentResult

SEVERITY_ORDER = {Severity.ERROR: 0, Severity.WARNING: 1, Severity.INFO: 2}


def render_text(result: DeploymentResult) -> str:
    """
    Render every finding, record and outcome gathered by a run.

    Args:
        result: Result of a pipeline run

    Returns:
        Multi-line report
    """
    lines = [
        f"Stack: {result.stack_name}",
        f"Run:   {result.run_id}",
        "=" * 40,
    ]

    if result.validation is not None:
        findings = sorted(result.validation.findings, key=lambda f: SEVERITY_ORDER[f.severity])
        lines.append(
            f"Validation: {'passed' if result.validation.passed else 'FAILED'} "
            f"({len(result.validation.errors)} error(s), {len(result.validation.warnings)} warning(s))"
        )
        lines.extend(f"  {finding}" for finding in findings)

    if result.publish is not None:
        lines.append(f"Publish: {'passed' if result.publish.passed else 'FAILED'}")
        lines.extend(f"  {record}" for record in result.publish.records)
        lines.extend(f"  {warning}" for warning in result.publish.warnings)

    if result.decision is not None:
        observation = result.decision.observation
        status = observation.raw_status if observation and observation.raw_status else "NOT_FOUND"
        lines.append(f"Stack status: {status}")
        lines.append(f"Decision: {result.decision.operation.value} ({result.decision.reason})")

    if result.operation is not None:
        operation = result.operation
        lines.append(
            f"Operation: {operation.outcome.value} after {operation.waited_seconds:.0f}s"
            f" (final status: {operation.final_status or 'unknown'})"
        )
        if operation.error_detail:
            lines.append(f"  Error: {operation.error_detail}")
        if operation.remote_operation_continues:
            lines.append("  The remote operation may still be running; re-check with the status command")
        if operation.outputs:
            lines.append("Stack outputs:")
            width = max(len(key) for key in operation.outputs)
            lines.extend(
                f"  {key.ljust(width)}  {value}"
                for key, value in sorted(operation.outputs.items())
            )

    lines.append("-" * 40)
    lines.append(f"Result: {result.message} (exit code {result.exit_code})")
    return "\n".join(lines)
