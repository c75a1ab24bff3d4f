"""
Step, ExecutionResult and RunReport — the execution contract.

Steps are requested operations on one resource. ExecutionResults are
their outcomes. Adapters return results, never exceptions; the
executor aggregates them into a RunReport.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from hostconverge.core.models.resource import ResourceDescriptor, TargetState


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StepAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    START = "start"
    STOP = "stop"
    RESTART = "restart"


class Step(BaseModel):
    """A single idempotent operation on one resource.

    ``depends_on`` holds the identity keys of every resource (with a
    step in the same plan) that must succeed before this one runs.
    """

    model_config = ConfigDict(frozen=True)

    action: StepAction
    resource: ResourceDescriptor
    depends_on: tuple[str, ...] = ()
    idempotent: bool = True

    @property
    def id(self) -> str:
        return f"{self.resource.key}:{self.action.value}"

    @property
    def key(self) -> str:
        return self.resource.key


class ExecutionResult(BaseModel):
    """Outcome of executing one step."""

    step_id: str
    resource: str
    action: str = ""
    status: Literal["success", "skipped", "failed"] = "success"

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0
    attempts: int = 1

    output: str = ""
    error: str | None = None
    error_kind: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    @classmethod
    def success(cls, step: Step, output: str = "", **kwargs: Any) -> ExecutionResult:
        """Create a success result."""
        return cls(
            step_id=step.id,
            resource=step.key,
            action=step.action.value,
            status="success",
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        step: Step,
        error: str,
        error_kind: str | None = None,
        **kwargs: Any,
    ) -> ExecutionResult:
        """Create a failure result."""
        return cls(
            step_id=step.id,
            resource=step.key,
            action=step.action.value,
            status="failed",
            error=error,
            error_kind=error_kind,
            **kwargs,
        )

    @classmethod
    def skip(cls, step: Step, reason: str = "", **kwargs: Any) -> ExecutionResult:
        """Create a skip result."""
        return cls(
            step_id=step.id,
            resource=step.key,
            action=step.action.value,
            status="skipped",
            output=reason,
            **kwargs,
        )


class RunReport(BaseModel):
    """Aggregated outcome of one convergence run."""

    operation_id: str = ""
    target: TargetState = TargetState.INSTALLED
    dry_run: bool = False
    results: list[ExecutionResult] = Field(default_factory=list)
    divergent: list[str] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @property
    def all_ok(self) -> bool:
        return self.failed == 0

    @property
    def status(self) -> str:
        if self.total == 0:
            return "noop"
        if self.failed == 0:
            return "ok"
        if self.succeeded > 0:
            return "partial"
        return "failed"

    def result_for(self, step_id: str) -> ExecutionResult | None:
        for result in self.results:
            if result.step_id == step_id:
                return result
        return None

    def to_dict(self) -> dict:
        return {
            "operation_id": self.operation_id,
            "target": self.target.value,
            "dry_run": self.dry_run,
            "status": self.status,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "divergent": list(self.divergent),
            "results": [r.model_dump(mode="json") for r in self.results],
        }
