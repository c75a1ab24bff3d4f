"""
Adapter registry — central dispatch from resource kind to adapter.

The executor never talks to adapters directly. The registry resolves
the adapter for a step's kind, validates, applies, and always returns
an ExecutionResult.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from hostconverge.adapters.base import Adapter, ExecutionContext
from hostconverge.adapters.shell.runner import CommandRunner
from hostconverge.core.errors import ErrorKind
from hostconverge.core.models.config import HostConfig
from hostconverge.core.models.resource import ResourceKind
from hostconverge.core.models.step import ExecutionResult, Step

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Registry and dispatcher for adapters, keyed by resource kind."""

    def __init__(self) -> None:
        self._adapters: dict[ResourceKind, Adapter] = {}

    def register(self, adapter: Adapter) -> None:
        """Register an adapter for every kind it declares."""
        for kind in adapter.kinds:
            if kind in self._adapters:
                logger.warning("Overwriting adapter for %s", kind.value)
            self._adapters[kind] = adapter
        logger.debug("Registered adapter: %s", adapter.name)

    def get(self, kind: ResourceKind) -> Adapter | None:
        return self._adapters.get(kind)

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Whether the host tool behind each registered adapter is installed."""
        status: dict[str, dict[str, Any]] = {}
        for adapter in self._adapters.values():
            try:
                available = adapter.is_available()
            except Exception:
                available = False
            status[adapter.name] = {
                "name": adapter.name,
                "available": available,
                "kinds": [k.value for k in adapter.kinds],
            }
        return status

    def apply(
        self,
        step: Step,
        config: HostConfig,
        runner: CommandRunner,
        dry_run: bool = False,
    ) -> ExecutionResult:
        """Apply one step through its adapter. Never raises (except on interrupt)."""
        start = time.monotonic()
        kind = step.resource.kind

        adapter = self._adapters.get(kind)
        if adapter is None:
            return ExecutionResult.failure(
                step,
                error=f"No adapter registered for '{kind.value}'",
                error_kind=ErrorKind.COMMAND_FAILURE.value,
            )

        context = ExecutionContext(step=step, config=config, runner=runner, dry_run=dry_run)

        try:
            is_valid, error_msg = adapter.validate(context)
        except Exception as e:
            is_valid, error_msg = False, f"validation error: {e}"
        if not is_valid:
            return ExecutionResult.failure(
                step,
                error=f"Validation failed: {error_msg}",
                error_kind=ErrorKind.COMMAND_FAILURE.value,
            )

        try:
            result = adapter.execute(context)
        except KeyboardInterrupt:
            raise
        except Exception as e:
            # Adapters should never raise
            logger.error("Adapter %s raised while applying %s: %s", adapter.name, step.id, e)
            result = ExecutionResult.failure(
                step,
                error=f"Unexpected error: {e}",
                error_kind=ErrorKind.COMMAND_FAILURE.value,
            )

        if dry_run and result.ok:
            result = ExecutionResult.skip(
                step,
                reason=f"[dry-run] would {step.action.value} {step.key}",
                metadata={"dry_run": True},
            )

        result.duration_ms = int((time.monotonic() - start) * 1000)
        return result
