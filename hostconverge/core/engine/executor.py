"""
Step executor — the sequential apply loop.

Takes an ordered plan, applies every step through the adapter registry
and collects ExecutionResults into a RunReport. A failed step blocks
only the steps that depend on it; independent branches keep going.
Nothing is rolled back: the next run re-probes and re-applies what is
still divergent.

Flow:
    steps → dependency check → adapter → result → report
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime

from hostconverge.adapters.registry import AdapterRegistry
from hostconverge.adapters.shell.filesystem import cleanup_pending
from hostconverge.adapters.shell.runner import CommandRunner
from hostconverge.core.errors import ErrorKind
from hostconverge.core.models.config import HostConfig
from hostconverge.core.models.resource import TargetState
from hostconverge.core.models.step import ExecutionResult, RunReport, Step
from hostconverge.core.persistence.audit import AuditEntry, AuditWriter

logger = logging.getLogger(__name__)


def execute_steps(
    steps: Sequence[Step],
    registry: AdapterRegistry,
    config: HostConfig,
    runner: CommandRunner,
    *,
    dry_run: bool = False,
    operation_id: str = "",
    target: TargetState = TargetState.INSTALLED,
) -> RunReport:
    """Apply ``steps`` in order and report every outcome.

    Args:
        steps: Ordered plan from the planner.
        registry: Adapter registry for dispatch.
        config: Host configuration handed to adapters.
        runner: Command runner handed to adapters.
        dry_run: If True, adapters log instead of mutating.
        operation_id: Identifier recorded in the report.
        target: Target state the plan converges to.

    Returns:
        RunReport with one result per step.

    Raises:
        KeyboardInterrupt: Re-raised after pending temp files are
            cleaned up and the interrupted step is recorded.
    """
    report = RunReport(operation_id=operation_id, target=target, dry_run=dry_run)
    blocked: dict[str, str] = {}  # key → reason

    for step in steps:
        blockers = [key for key in step.depends_on if key in blocked]
        if blockers:
            reason = f"dependency {blockers[0]} failed"
            result = ExecutionResult.skip(step, reason=reason, metadata={"blocked_by": blockers})
            blocked[step.key] = reason
            report.results.append(result)
            logger.info("⊘ %s → skipped (%s)", step.id, reason)
            continue

        logger.info("→ %s %s", step.action.value, step.key)
        try:
            result = registry.apply(step, config, runner, dry_run=dry_run)
        except KeyboardInterrupt:
            removed = cleanup_pending()
            logger.warning(
                "Interrupted during %s (removed %d temp file(s))", step.id, removed
            )
            report.results.append(
                ExecutionResult.failure(
                    step,
                    error="interrupted",
                    error_kind=ErrorKind.INTERRUPTED.value,
                )
            )
            raise

        report.results.append(result)
        if result.failed:
            blocked[step.key] = result.error or "failed"
            logger.error("✗ %s → failed: %s", step.id, result.error)
        elif result.skipped:
            logger.info("⊘ %s → %s", step.id, result.output or "skipped")
        else:
            logger.info("✓ %s → %s", step.id, result.output or "ok")

    return report


def write_audit_entry(
    report: RunReport,
    audit_writer: AuditWriter,
    errors: Sequence[str] = (),
) -> None:
    """Append the outcome of a run to the audit ledger."""
    failures = [f"{r.step_id}: {r.error}" for r in report.results if r.failed and r.error]
    entry = AuditEntry(
        operation_id=report.operation_id,
        target=report.target.value,
        status=report.status,
        dry_run=report.dry_run,
        steps_total=report.total,
        steps_succeeded=report.succeeded,
        steps_failed=report.failed,
        steps_skipped=report.skipped,
        duration_ms=sum(r.duration_ms for r in report.results),
        divergent=list(report.divergent),
        errors=[*errors, *failures],
    )
    audit_writer.write(entry)


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"
