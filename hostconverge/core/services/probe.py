"""
State probe — read-only inspection of the host.

One detection method per resource kind. The probe never mutates the
host and fails soft: a resource it cannot read is reported as
``unknown`` (with the reason) instead of aborting the whole probe.
Results are produced fresh on every call and never cached.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from pathlib import Path

from hostconverge.adapters.shell.filesystem import file_digest, file_mode
from hostconverge.adapters.shell.runner import CommandRunner
from hostconverge.core.models.resource import (
    Observation,
    ObservedState,
    Presence,
    ResourceDescriptor,
    ResourceKind,
)
from hostconverge.core.services.platform import interface_present
from hostconverge.core.services.templates import read_ini_settings

logger = logging.getLogger(__name__)

_ACTIVE_STATES = frozenset({"active", "activating", "reloading"})
_MISSING_BINARY = 127


class StateProbe:
    """Observe the current state of a set of resources."""

    def __init__(self, runner: CommandRunner):
        self._runner = runner
        self._detectors: dict[ResourceKind, Callable[[ResourceDescriptor], Observation]] = {
            ResourceKind.PACKAGES: self._packages,
            ResourceKind.REPOSITORY: self._repository,
            ResourceKind.CONFIG_FILE: self._config_file,
            ResourceKind.KERNEL_PARAM: self._file,
            ResourceKind.WG_INTERFACE: self._wg_interface,
            ResourceKind.APP_SETUP: self._app_setup,
            ResourceKind.SERVICE_UNIT: self._file,
            ResourceKind.SERVICE_RUN: self._service_run,
            ResourceKind.SERVICE_ENABLE: self._service_enable,
            ResourceKind.FIREWALL: self._firewall,
        }

    def observe(self, descriptors: Iterable[ResourceDescriptor]) -> ObservedState:
        """Probe every descriptor and return a fresh ObservedState."""
        observed = ObservedState()
        for descriptor in descriptors:
            observed.set(descriptor.key, self.observe_one(descriptor))
        return observed

    def observe_one(self, descriptor: ResourceDescriptor) -> Observation:
        detector = self._detectors.get(descriptor.kind)
        if detector is None:
            return Observation.unknown(f"no detector for kind {descriptor.kind.value}")
        try:
            observation = detector(descriptor)
        except Exception as e:
            logger.warning("Probe of %s failed: %s", descriptor.key, e)
            return Observation.unknown(f"probe failed: {e}")
        logger.debug("Observed %s: %s %s", descriptor.key, observation.presence.value, observation.detail)
        return observation

    # ── Detectors ───────────────────────────────────────────────

    def _packages(self, descriptor: ResourceDescriptor) -> Observation:
        missing: list[str] = []
        for pkg in descriptor.params.get("packages", []):
            result = self._runner.run(
                ["dpkg-query", "-W", "-f=${Status}", pkg], timeout=30, dry_run=False
            )
            if result.exit_code == _MISSING_BINARY:
                return Observation.unknown("dpkg-query not available")
            if "install ok installed" not in result.stdout:
                missing.append(pkg)
        return Observation(
            presence=Presence.ABSENT if missing else Presence.PRESENT,
            values={"missing": missing},
            detail=f"missing: {' '.join(missing)}" if missing else "all installed",
        )

    def _repository(self, descriptor: ResourceDescriptor) -> Observation:
        path = Path(descriptor.target)
        if not (path / ".git").is_dir():
            detail = "not a git checkout" if path.exists() else "not cloned"
            return Observation(presence=Presence.ABSENT, detail=detail)
        result = self._runner.run(
            ["git", "-C", str(path), "config", "--get", "remote.origin.url"],
            timeout=30,
            dry_run=False,
        )
        if not result.ok:
            return Observation.unknown(f"cannot read origin: {result.output or result.exit_code}")
        url = result.stdout.strip()
        return Observation(presence=Presence.PRESENT, values={"url": url}, detail=url)

    def _config_file(self, descriptor: ResourceDescriptor) -> Observation:
        path = Path(descriptor.target)
        if not path.is_file():
            return Observation(presence=Presence.ABSENT, detail="missing")
        text = path.read_text(encoding="utf-8")
        section = descriptor.params.get("section", "")
        return Observation(
            presence=Presence.PRESENT,
            digest=file_digest(path),
            mode=file_mode(path),
            values=read_ini_settings(text, section),
        )

    def _file(self, descriptor: ResourceDescriptor) -> Observation:
        path = Path(descriptor.target)
        if not path.is_file():
            return Observation(presence=Presence.ABSENT, detail="missing")
        return Observation(
            presence=Presence.PRESENT,
            digest=file_digest(path),
            mode=file_mode(path),
        )

    def _wg_interface(self, descriptor: ResourceDescriptor) -> Observation:
        observation = self._file(descriptor)
        name = descriptor.params.get("interface")
        if name:
            link_up = interface_present(self._runner, name)
            observation.values["link_up"] = link_up
            observation.detail = f"link {name} {'up' if link_up else 'down'}"
        return observation

    def _app_setup(self, descriptor: ResourceDescriptor) -> Observation:
        if Path(descriptor.target).exists():
            return Observation(presence=Presence.PRESENT, detail="set up")
        return Observation(presence=Presence.ABSENT, detail="not set up")

    def _service_run(self, descriptor: ResourceDescriptor) -> Observation:
        result = self._runner.run(
            ["systemctl", "is-active", descriptor.target], timeout=30, dry_run=False
        )
        if result.exit_code == _MISSING_BINARY or result.timed_out:
            return Observation.unknown("systemctl not available")
        state = result.stdout.strip() or "unknown"
        presence = Presence.PRESENT if state in _ACTIVE_STATES else Presence.ABSENT
        return Observation(presence=presence, values={"active_state": state}, detail=state)

    def _service_enable(self, descriptor: ResourceDescriptor) -> Observation:
        result = self._runner.run(
            ["systemctl", "is-enabled", descriptor.target], timeout=30, dry_run=False
        )
        if result.exit_code == _MISSING_BINARY or result.timed_out:
            return Observation.unknown("systemctl not available")
        state = result.stdout.strip() or "not-found"
        presence = Presence.PRESENT if state == "enabled" else Presence.ABSENT
        return Observation(presence=presence, values={"enabled_state": state}, detail=state)

    def _firewall(self, descriptor: ResourceDescriptor) -> Observation:
        if not descriptor.params.get("enabled", False):
            return Observation.unknown("firewall management disabled")
        result = self._runner.run(
            ["firewall-cmd", f"--query-port={descriptor.target}"], timeout=30, dry_run=False
        )
        answer = result.stdout.strip()
        if answer == "yes":
            return Observation(presence=Presence.PRESENT, detail="open")
        if answer == "no":
            return Observation(presence=Presence.ABSENT, detail="closed")
        return Observation.unknown(f"firewall-cmd: {result.output or result.exit_code}")
