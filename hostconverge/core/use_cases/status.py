"""
Status use case — read-only view of the host.

Probes every resource and reports divergence from ``installed``.
Never plans or executes, never needs root.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from hostconverge.adapters.shell.runner import CommandRunner
from hostconverge.core.engine.convergence import ConvergenceEngine
from hostconverge.core.errors import ProvisionError
from hostconverge.core.models.config import HostConfig
from hostconverge.core.models.resource import Observation, TargetState
from hostconverge.core.persistence.audit import AuditEntry, AuditWriter
from hostconverge.core.services.declarations import gather_facts
from hostconverge.core.services.probe import StateProbe
from hostconverge.core.services.wireguard_keys import public_key_for
from hostconverge.core.use_cases.converge import (
    build_registry,
    declare_managed_resources,
    default_runner,
)


@dataclass
class StatusResult:
    """Observed host state."""

    observations: dict[str, Observation] = field(default_factory=dict)
    divergent: list[str] = field(default_factory=list)
    current: TargetState | None = None
    last_run: AuditEntry | None = None
    tools: dict[str, bool] = field(default_factory=dict)
    public_key: str | None = None
    error: str | None = None

    @property
    def converged(self) -> bool:
        return self.error is None and not self.divergent

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["current"] = self.current.value if self.current else "partial"
        result["converged"] = self.converged
        result["divergent"] = list(self.divergent)
        result["resources"] = {
            key: {
                "presence": obs.presence.value,
                "detail": obs.detail,
                "divergent": key in self.divergent,
            }
            for key, obs in self.observations.items()
        }
        result["tools"] = dict(self.tools)
        if self.public_key:
            result["public_key"] = self.public_key
        if self.last_run:
            result["last_run"] = self.last_run.model_dump(mode="json")
        return result


def get_status(
    config: HostConfig,
    runner: CommandRunner | None = None,
    probe: StateProbe | None = None,
    audit_writer: AuditWriter | None = None,
) -> StatusResult:
    """Probe the host and report divergence from ``installed``."""
    result = StatusResult()
    runner = runner or default_runner(config)

    try:
        facts = gather_facts(config, runner, require_network=False)
        descriptors = declare_managed_resources(config, facts)
    except ProvisionError as e:
        result.error = e.describe()
        return result

    registry = build_registry()
    engine = ConvergenceEngine(config, runner, registry, probe=probe)
    status = engine.status(descriptors)

    result.observations = dict(status.observed.observations)
    result.divergent = status.divergent
    result.current = status.current
    if facts.key_reused:
        result.public_key = public_key_for(facts.private_key)
    result.last_run = (audit_writer or AuditWriter(state_dir=config.state_dir)).last()
    result.tools = {
        name: info["available"] for name, info in registry.adapter_status().items()
    }
    return result
