"""
APT adapter — install the OS package set non-interactively.

Both ``apt-get update`` and ``apt-get install`` are retried with
bounded backoff while another process holds the dpkg lock; a lock that
is still held once the retries run out fails the step as a command failure.
"""

from __future__ import annotations

import logging
import shutil
import time
from collections.abc import Callable

from hostconverge.adapters.base import Adapter, ExecutionContext
from hostconverge.adapters.shell.runner import NONINTERACTIVE_ENV, CommandResult
from hostconverge.core.errors import CommandFailure, DependencyError, ProvisionError
from hostconverge.core.models.resource import ResourceKind
from hostconverge.core.models.step import ExecutionResult, StepAction
from hostconverge.core.reliability.backoff import retry_on_lock

logger = logging.getLogger(__name__)


class AptAdapter(Adapter):
    """Install packages with apt-get.

    Resource params:
        packages (list[str]): Package names to install.
    """

    def __init__(self, sleep: Callable[[float], None] = time.sleep):
        self._sleep = sleep

    @property
    def name(self) -> str:
        return "apt"

    @property
    def kinds(self) -> tuple[ResourceKind, ...]:
        return (ResourceKind.PACKAGES,)

    def is_available(self) -> bool:
        return shutil.which("apt-get") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, msg = super().validate(context)
        if not ok:
            return ok, msg
        if not context.params.get("packages"):
            return False, "Missing required param: 'packages'"
        return True, ""

    def execute(self, context: ExecutionContext) -> ExecutionResult:
        step = context.step
        if step.action == StepAction.DELETE:
            return ExecutionResult.skip(step, reason="OS packages are never removed")

        packages = list(context.params["packages"])
        try:
            self._locked_run(context, ["apt-get", "update"], "apt-get update")
            result, attempts = self._locked_run(
                context,
                ["apt-get", "install", "-y", *packages],
                "apt-get install",
            )
        except ProvisionError as e:
            return self._failed(context, e)

        return ExecutionResult.success(
            step,
            output=f"installed: {' '.join(packages)}",
            attempts=attempts,
            metadata={"packages": packages, "stdout": result.stdout[-500:]},
        )

    def _locked_run(
        self,
        context: ExecutionContext,
        argv: list[str],
        describe: str,
    ) -> tuple[CommandResult, int]:
        policy = context.lock_policy
        result, attempts = retry_on_lock(
            lambda: context.run(argv, env=NONINTERACTIVE_ENV),
            policy,
            sleep=self._sleep,
            describe=describe,
        )
        if result.lock_contention:
            raise CommandFailure(
                f"{describe}: package lock still held after {attempts} attempts",
                resource=context.step.key,
                output=result.output,
            )
        if not result.ok:
            if result.timed_out:
                result.raise_for_status(context.step.key)
            raise DependencyError(
                f"{describe} failed (exit {result.exit_code})",
                resource=context.step.key,
                output=result.output,
            )
        return result, attempts
