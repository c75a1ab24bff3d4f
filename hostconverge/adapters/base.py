"""
Adapter base — the protocol contract between engine and host tools.

The executor only talks to adapters through this protocol, never
directly to apt, git, systemctl or firewalld. Each adapter handles
one or more resource kinds.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, InstanceOf

from hostconverge.adapters.shell.runner import CommandResult, CommandRunner
from hostconverge.core.errors import ProvisionError
from hostconverge.core.models.config import HostConfig
from hostconverge.core.models.resource import ResourceKind
from hostconverge.core.models.step import ExecutionResult, Step
from hostconverge.core.reliability.backoff import RetryPolicy


class ExecutionContext(BaseModel):
    """Everything an adapter needs to apply one step."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    step: Step
    config: HostConfig
    runner: InstanceOf[CommandRunner]
    dry_run: bool = False

    @property
    def params(self) -> dict[str, Any]:
        return self.step.resource.params

    @property
    def lock_policy(self) -> RetryPolicy:
        runner = self.config.runner
        return RetryPolicy(
            attempts=runner.lock_attempts,
            base_delay=runner.lock_backoff,
            max_delay=runner.lock_backoff_max,
        )

    def run(self, argv: list[str], **kwargs: Any) -> CommandResult:
        """Run a mutating command (honours dry-run)."""
        return self.runner.run(argv, dry_run=self.dry_run, **kwargs)

    def run_checked(self, argv: list[str], **kwargs: Any) -> CommandResult:
        """Run a mutating command and raise on failure."""
        result = self.run(argv, **kwargs)
        result.raise_for_status(self.step.key)
        return result


class Adapter(ABC):
    """Abstract base class for all adapters.

    Adapters perform host side effects and return ExecutionResults.
    They NEVER raise — failures are captured in the result with the
    matching error kind.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'apt', 'git', 'systemd')."""

    @property
    @abstractmethod
    def kinds(self) -> tuple[ResourceKind, ...]:
        """Resource kinds this adapter applies."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the underlying tool exists. Fast, never raises."""

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Validate that the step can be applied.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """
        if context.step.resource.kind not in self.kinds:
            return False, f"{self.name} does not handle {context.step.resource.kind.value}"
        return True, ""

    @abstractmethod
    def execute(self, context: ExecutionContext) -> ExecutionResult:
        """Apply the step and return a result. MUST never raise."""

    def _failed(self, context: ExecutionContext, exc: ProvisionError) -> ExecutionResult:
        error = exc.describe()
        if exc.output:
            error = f"{error}\n{exc.output}"
        return ExecutionResult.failure(context.step, error=error, error_kind=exc.kind.value)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
