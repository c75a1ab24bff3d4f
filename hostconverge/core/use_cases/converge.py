"""
Converge use case — install, uninstall, start or stop the application.

The full vertical slice from user intent to audited execution:
validate the host, gather runtime facts, declare resources, let the
engine probe/plan/execute, and record the outcome in the ledger.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field

from hostconverge.adapters.registry import AdapterRegistry
from hostconverge.adapters.shell.runner import NONINTERACTIVE_ENV, CommandRunner
from hostconverge.core.engine.convergence import ConvergenceEngine
from hostconverge.core.engine.executor import generate_operation_id, write_audit_entry
from hostconverge.core.errors import ConfigError, ProvisionError
from hostconverge.core.models.config import HostConfig
from hostconverge.core.models.resource import ResourceDescriptor, TargetState
from hostconverge.core.models.step import RunReport, Step
from hostconverge.core.observability.logging_config import operation_context
from hostconverge.core.persistence.audit import AuditWriter
from hostconverge.core.services.declarations import RuntimeFacts, declare_resources, gather_facts
from hostconverge.core.services.platform import check_platform, primary_address, require_privileged
from hostconverge.core.services.probe import StateProbe
from hostconverge.core.services.templates import TemplateError

logger = logging.getLogger(__name__)


@dataclass
class ConvergeResult:
    """Result of one converge request."""

    target: TargetState
    operation_id: str = ""
    current: TargetState | None = None
    plan: list[Step] = field(default_factory=list)
    report: RunReport | None = None
    error: str | None = None
    error_kind: str | None = None
    key_reused: bool = False
    access_url: str | None = None

    @property
    def ok(self) -> bool:
        if self.error or self.report is None:
            return False
        if not self.report.all_ok:
            return False
        return self.report.dry_run or not self.report.divergent

    def to_dict(self) -> dict:
        result: dict = {
            "target": self.target.value,
            "operation_id": self.operation_id,
            "ok": self.ok,
        }
        if self.error:
            result["error"] = self.error
            result["error_kind"] = self.error_kind
            return result

        result["current"] = self.current.value if self.current else "partial"
        result["plan"] = [
            {"id": s.id, "resource": s.key, "action": s.action.value, "depends_on": list(s.depends_on)}
            for s in self.plan
        ]
        if self.report:
            result["report"] = self.report.to_dict()
        if self.access_url:
            result["access_url"] = self.access_url
        return result


def build_registry() -> AdapterRegistry:
    """Registry with every production adapter registered."""
    from hostconverge.adapters.app.installer import AppSetupAdapter
    from hostconverge.adapters.network.firewall import FirewalldAdapter
    from hostconverge.adapters.packages.apt import AptAdapter
    from hostconverge.adapters.services.systemd import SystemdAdapter
    from hostconverge.adapters.shell.config_files import FilesystemAdapter
    from hostconverge.adapters.vcs.git import GitAdapter

    registry = AdapterRegistry()
    registry.register(AptAdapter())
    registry.register(GitAdapter())
    registry.register(FilesystemAdapter())
    registry.register(AppSetupAdapter())
    registry.register(SystemdAdapter())
    registry.register(FirewalldAdapter())
    return registry


def declare_managed_resources(config: HostConfig, facts: RuntimeFacts) -> list[ResourceDescriptor]:
    """``declare_resources`` with render failures reported as ConfigError."""
    try:
        return declare_resources(config, facts)
    except TemplateError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def dashboard_url(config: HostConfig, runner: CommandRunner) -> str:
    """Where the dashboard answers once installed."""
    host = config.app.bind_address
    if ipaddress.ip_address(host).is_unspecified:
        host = primary_address(runner) or "localhost"
    if ":" in host:
        host = f"[{host}]"
    return f"http://{host}:{config.app.port}"


def default_runner(config: HostConfig, dry_run: bool = False) -> CommandRunner:
    return CommandRunner(
        timeout=config.runner.timeout,
        env_overrides=dict(NONINTERACTIVE_ENV),
        dry_run=dry_run,
    )


def converge(
    target: TargetState,
    config: HostConfig,
    *,
    dry_run: bool = False,
    runner: CommandRunner | None = None,
    registry: AdapterRegistry | None = None,
    probe: StateProbe | None = None,
    require_root: bool = True,
    audit_writer: AuditWriter | None = None,
) -> ConvergeResult:
    """Drive the host to ``target``.

    Args:
        target: Desired state.
        config: Validated host configuration.
        dry_run: Plan and log, but mutate nothing.
        runner: Optional command runner (tests inject a fake host).
        registry: Optional pre-configured adapter registry.
        probe: Optional state probe.
        require_root: Check for root before mutating (skipped in dry-run).
        audit_writer: Optional ledger writer (default: <state_dir>/audit.ndjson).

    Returns:
        ConvergeResult. Validation failures are reported in ``error``;
        nothing on the host has been changed when that is set.
    """
    operation_id = generate_operation_id()
    result = ConvergeResult(target=target, operation_id=operation_id)

    runner = runner or default_runner(config, dry_run=dry_run)
    registry = registry or build_registry()

    with operation_context(operation_id):
        _drive(
            result,
            config,
            runner,
            registry,
            probe=probe,
            dry_run=dry_run,
            require_root=require_root,
            audit_writer=audit_writer,
        )
    return result


def _drive(
    result: ConvergeResult,
    config: HostConfig,
    runner: CommandRunner,
    registry: AdapterRegistry,
    *,
    probe: StateProbe | None,
    dry_run: bool,
    require_root: bool,
    audit_writer: AuditWriter | None,
) -> None:
    target = result.target

    # ── Validate and gather facts (read-only) ───────────────────
    try:
        check_platform(config.platform.os_release, config.platform.os_family)
        if require_root and not dry_run:
            require_privileged()
        facts = gather_facts(
            config, runner, require_network=target == TargetState.INSTALLED
        )
        result.key_reused = facts.key_reused
        descriptors = declare_managed_resources(config, facts)

        engine = ConvergenceEngine(config, runner, registry, probe=probe)
        convergence = engine.converge(
            target, descriptors, dry_run=dry_run, operation_id=result.operation_id
        )
    except ProvisionError as e:
        logger.error("%s", e.describe())
        result.error = e.describe()
        result.error_kind = e.kind.value
        return

    result.current = convergence.current
    result.plan = convergence.plan
    result.report = convergence.report

    report = convergence.report
    if report is not None:
        if report.divergent:
            logger.warning("Divergent from %s: %s", target.value, ", ".join(report.divergent))
        logger.info(
            "Run %s: %s (%d succeeded, %d failed, %d skipped)",
            result.operation_id,
            report.status,
            report.succeeded,
            report.failed,
            report.skipped,
        )

    # ── Write audit log ──────────────────────────────────────────
    if report is not None and not dry_run:
        writer = audit_writer or AuditWriter(state_dir=config.state_dir)
        write_audit_entry(report, writer)

    if target == TargetState.INSTALLED and not dry_run and result.ok:
        result.access_url = dashboard_url(config, runner)
