"""
Convergence engine — Probe → Plan → Execute for one target state.

Transitions requested by the CLI:

    absent → installed → running ⇄ stopped → absent

``installed`` and ``absent`` are reachable from anywhere. ``running``
and ``stopped`` only touch the service and need the unit installed.
``status`` probes and reports divergence without planning or
executing anything.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from hostconverge.adapters.registry import AdapterRegistry
from hostconverge.adapters.shell.runner import CommandRunner
from hostconverge.core.engine.executor import execute_steps, generate_operation_id
from hostconverge.core.engine.planner import build_plan, divergent_keys
from hostconverge.core.errors import TemplateMissingError, TransitionError
from hostconverge.core.models.config import HostConfig
from hostconverge.core.models.resource import (
    ObservedState,
    ResourceDescriptor,
    ResourceKind,
    TargetState,
)
from hostconverge.core.models.step import RunReport, Step
from hostconverge.core.services.probe import StateProbe

logger = logging.getLogger(__name__)


@dataclass
class Convergence:
    """Everything one converge call produced."""

    target: TargetState
    current: TargetState | None = None
    plan: list[Step] = field(default_factory=list)
    report: RunReport | None = None


@dataclass
class HostStatus:
    """Read-only view of the host against the ``installed`` target."""

    observed: ObservedState
    current: TargetState | None = None
    divergent: list[str] = field(default_factory=list)


def _first_of(
    kind: ResourceKind, descriptors: Sequence[ResourceDescriptor]
) -> ResourceDescriptor | None:
    return next((d for d in descriptors if d.kind == kind), None)


class ConvergenceEngine:
    """Drive the host towards a target state.

    Args:
        config: Host configuration handed to adapters.
        runner: Command runner shared by the probe and the adapters.
        registry: Adapter registry for dispatch.
        probe: Optional pre-built probe (defaults to one on ``runner``).
    """

    def __init__(
        self,
        config: HostConfig,
        runner: CommandRunner,
        registry: AdapterRegistry,
        probe: StateProbe | None = None,
    ):
        self._config = config
        self._runner = runner
        self._registry = registry
        self._probe = probe or StateProbe(runner)

    def observe(self, descriptors: Sequence[ResourceDescriptor]) -> ObservedState:
        return self._probe.observe(descriptors)

    def infer_state(
        self,
        descriptors: Sequence[ResourceDescriptor],
        observed: ObservedState,
    ) -> TargetState | None:
        """Best guess at the host's current state; None means partial."""
        unit = _first_of(ResourceKind.SERVICE_UNIT, descriptors)
        repo = _first_of(ResourceKind.REPOSITORY, descriptors)
        service = _first_of(ResourceKind.SERVICE_RUN, descriptors)

        unit_obs = observed.get(unit.key) if unit else None
        repo_obs = observed.get(repo.key) if repo else None
        service_obs = observed.get(service.key) if service else None

        if unit_obs and repo_obs and unit_obs.is_absent and repo_obs.is_absent:
            return TargetState.ABSENT
        if service_obs and service_obs.is_present:
            return TargetState.RUNNING
        if unit_obs and unit_obs.is_present:
            return TargetState.STOPPED
        return None

    def check_transition(
        self,
        target: TargetState,
        descriptors: Sequence[ResourceDescriptor],
        observed: ObservedState,
    ) -> None:
        """Raise TransitionError if ``target`` is unreachable from here."""
        if target in (TargetState.INSTALLED, TargetState.ABSENT):
            return
        unit = _first_of(ResourceKind.SERVICE_UNIT, descriptors)
        if unit is None or not observed.get(unit.key).is_present:
            verb = "start" if target == TargetState.RUNNING else "stop"
            raise TransitionError(
                f"Cannot {verb}: the service is not installed. Run 'install' first.",
                resource=unit.key if unit else None,
            )

    def _check_templates(self, plan: Sequence[Step]) -> None:
        # A config render whose repository is not being (re)cloned needs
        # the template to exist now.
        planned = {step.key for step in plan}
        for step in plan:
            resource = step.resource
            if resource.kind != ResourceKind.CONFIG_FILE:
                continue
            if planned & set(resource.depends_on):
                continue
            template = resource.params.get("template")
            if template and not Path(template).is_file():
                raise TemplateMissingError(
                    f"Template not found: {template}", resource=resource.key
                )

    def converge(
        self,
        target: TargetState,
        descriptors: Sequence[ResourceDescriptor],
        *,
        dry_run: bool = False,
        operation_id: str | None = None,
    ) -> Convergence:
        """Probe, plan and execute.

        Raises:
            TransitionError: ``target`` is unreachable from the current state.
            TemplateMissingError: The config template is missing and
                nothing in the plan would bring it back.
        """
        descriptors = list(descriptors)
        operation_id = operation_id or generate_operation_id()

        observed = self.observe(descriptors)
        current = self.infer_state(descriptors, observed)
        logger.info(
            "Converging to %s (current: %s)",
            target.value,
            current.value if current else "partial",
        )
        self.check_transition(target, descriptors, observed)

        plan = build_plan(target, observed, descriptors)
        if target == TargetState.INSTALLED:
            self._check_templates(plan)
        result = Convergence(target=target, current=current, plan=plan)

        if not plan:
            logger.info("Nothing to do: host already %s", target.value)
            result.report = RunReport(
                operation_id=operation_id,
                target=target,
                dry_run=dry_run,
                divergent=divergent_keys(target, observed, descriptors),
            )
            return result

        logger.info("Plan: %d step(s)", len(plan))
        report = execute_steps(
            plan,
            self._registry,
            self._config,
            self._runner,
            dry_run=dry_run,
            operation_id=operation_id,
            target=target,
        )

        if dry_run:
            report.divergent = list(dict.fromkeys(step.key for step in plan))
        else:
            after = self.observe(descriptors)
            still = divergent_keys(target, after, descriptors)
            unfinished = [r.resource for r in report.results if not r.ok]
            report.divergent = list(dict.fromkeys([*still, *unfinished]))

        result.report = report
        return result

    def status(self, descriptors: Sequence[ResourceDescriptor]) -> HostStatus:
        """Probe only; never plans or executes."""
        descriptors = list(descriptors)
        observed = self.observe(descriptors)
        return HostStatus(
            observed=observed,
            current=self.infer_state(descriptors, observed),
            divergent=divergent_keys(TargetState.INSTALLED, observed, descriptors),
        )
