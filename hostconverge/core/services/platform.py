"""
Host facts and pre-flight validation.

Read-only: privilege check, OS family check, default egress interface
detection and interface presence. Validation failures raise before
any mutation happens.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
from dataclasses import dataclass
from pathlib import Path

from hostconverge.adapters.shell.runner import CommandRunner
from hostconverge.core.errors import NetworkDetectionError, PlatformError, PrivilegeError

logger = logging.getLogger(__name__)

_DEFAULT_DEV_RE = re.compile(r"\bdev\s+(\S+)")


@dataclass(frozen=True)
class PlatformInfo:
    id: str = ""
    id_like: tuple[str, ...] = ()
    version_id: str = ""
    pretty_name: str = ""


def require_privileged() -> None:
    """Raise PrivilegeError unless running as root."""
    if os.geteuid() != 0:
        raise PrivilegeError("Run this command as root.")


def read_os_release(path: Path) -> PlatformInfo:
    """Parse an os-release file."""
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise PlatformError(f"Cannot read {path}: {e}") from e

    fields: dict[str, str] = {}
    for line in raw.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        try:
            parts = shlex.split(value)
        except ValueError:
            parts = [value.strip("\"'")]
        fields[key.strip()] = parts[0] if parts else ""

    return PlatformInfo(
        id=fields.get("ID", "").lower(),
        id_like=tuple(fields.get("ID_LIKE", "").lower().split()),
        version_id=fields.get("VERSION_ID", ""),
        pretty_name=fields.get("PRETTY_NAME", ""),
    )


def check_platform(os_release: Path, family: str) -> PlatformInfo:
    """Raise PlatformError unless the host belongs to ``family``."""
    info = read_os_release(os_release)
    family = family.lower()
    if info.id != family and family not in info.id_like:
        name = info.pretty_name or info.id or "unknown"
        raise PlatformError(f"Unsupported operating system '{name}': only {family} is supported.")
    logger.debug("Platform OK: %s", info.pretty_name or info.id)
    return info


def detect_egress_interface(runner: CommandRunner) -> str:
    """Name of the interface carrying the default route."""
    result = runner.run(["ip", "route", "show", "default"], timeout=10, dry_run=False)
    if result.ok:
        for line in result.stdout.splitlines():
            match = _DEFAULT_DEV_RE.search(line)
            if line.startswith("default") and match:
                logger.debug("Default egress interface: %s", match.group(1))
                return match.group(1)
    raise NetworkDetectionError(
        "Could not detect the default network interface.",
        output=result.output,
    )


def interface_present(runner: CommandRunner, name: str) -> bool:
    """Whether a network link called ``name`` exists."""
    result = runner.run(["ip", "link", "show", name], timeout=10, dry_run=False)
    return result.ok


def primary_address(runner: CommandRunner) -> str | None:
    """First address reported by ``hostname -I``, if any."""
    result = runner.run(["hostname", "-I"], timeout=10, dry_run=False)
    if not result.ok:
        return None
    addresses = result.stdout.split()
    return addresses[0] if addresses else None
