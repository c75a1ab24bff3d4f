"""
Systemd adapter — unit file, run state and boot enablement.

Unit writes are transactional: if ``daemon-reload`` rejects the new
unit the previous file is restored. Stopping or disabling a unit that
systemd does not know about counts as already done.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from hostconverge.adapters.base import Adapter, ExecutionContext
from hostconverge.adapters.shell.filesystem import FileTransaction
from hostconverge.adapters.shell.runner import CommandResult
from hostconverge.core.errors import ErrorKind, ProvisionError
from hostconverge.core.models.resource import ResourceKind
from hostconverge.core.models.step import ExecutionResult, StepAction

logger = logging.getLogger(__name__)

# systemctl exit code for "unit not loaded / not found"
_UNIT_NOT_FOUND = 5
_NOT_FOUND_MARKERS = ("not loaded", "does not exist", "not found")


def _unit_missing(result: CommandResult) -> bool:
    if result.exit_code == _UNIT_NOT_FOUND:
        return True
    lowered = result.stderr.lower()
    return any(marker in lowered for marker in _NOT_FOUND_MARKERS)


class SystemdAdapter(Adapter):
    """Manage the application's systemd unit."""

    @property
    def name(self) -> str:
        return "systemd"

    @property
    def kinds(self) -> tuple[ResourceKind, ...]:
        return (ResourceKind.SERVICE_UNIT, ResourceKind.SERVICE_RUN, ResourceKind.SERVICE_ENABLE)

    def is_available(self) -> bool:
        return shutil.which("systemctl") is not None

    def execute(self, context: ExecutionContext) -> ExecutionResult:
        kind = context.step.resource.kind
        try:
            if kind == ResourceKind.SERVICE_UNIT:
                return self._unit(context)
            if kind == ResourceKind.SERVICE_RUN:
                return self._run_state(context)
            return self._enablement(context)
        except ProvisionError as e:
            return self._failed(context, e)

    def _unit(self, context: ExecutionContext) -> ExecutionResult:
        step = context.step
        path = Path(step.resource.target)
        with FileTransaction(dry_run=context.dry_run) as txn:
            if step.action == StepAction.DELETE:
                existed = txn.remove(path)
                output = f"removed {path}" if existed else f"{path} already absent"
            else:
                txn.write(path, step.resource.content or "", step.resource.mode or 0o644)
                output = f"wrote {path}"
            context.run_checked(["systemctl", "daemon-reload"], timeout=60)
        return ExecutionResult.success(step, output=output)

    def _run_state(self, context: ExecutionContext) -> ExecutionResult:
        step = context.step
        unit = step.resource.target
        verb = {
            StepAction.START: "start",
            StepAction.STOP: "stop",
            StepAction.RESTART: "restart",
        }.get(step.action)
        if verb is None:
            return ExecutionResult.failure(
                step,
                error=f"Unsupported action {step.action.value} for a service",
                error_kind=ErrorKind.TRANSITION.value,
            )

        result = context.run(["systemctl", verb, unit], timeout=context.config.service.timeout_sec)
        if verb == "stop" and not result.ok and _unit_missing(result):
            return ExecutionResult.success(step, output=f"{unit} not loaded; nothing to stop")
        result.raise_for_status(step.key)
        return ExecutionResult.success(step, output=f"{verb} {unit}")

    def _enablement(self, context: ExecutionContext) -> ExecutionResult:
        step = context.step
        unit = step.resource.target
        verb = "disable" if step.action == StepAction.DELETE else "enable"
        result = context.run(["systemctl", verb, unit], timeout=60)
        if verb == "disable" and not result.ok and _unit_missing(result):
            return ExecutionResult.success(step, output=f"{unit} not loaded; nothing to disable")
        result.raise_for_status(step.key)
        return ExecutionResult.success(step, output=f"{verb}d {unit}")
