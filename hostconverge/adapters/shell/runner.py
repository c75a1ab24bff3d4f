"""
Command runner — the single place where external processes are started.

Every probe and adapter goes through ``CommandRunner.run``. Timeouts,
environment overrides, dry-run and lock-contention detection are
centralised here. A non-zero exit is data, not an exception: callers
decide what an exit code means for their step.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass, field

from hostconverge.core.errors import CommandFailure, CommandTimeout, LockContention

logger = logging.getLogger(__name__)

# stderr fragments emitted by apt/dpkg when another process holds the lock
_LOCK_MARKERS = (
    "could not get lock",
    "unable to acquire the dpkg frontend lock",
    "unable to lock the administration directory",
    "is another process using it",
    "waiting for cache lock",
)

# Environment forcing package managers to never prompt
NONINTERACTIVE_ENV: dict[str, str] = {
    "DEBIAN_FRONTEND": "noninteractive",
    "NEEDRESTART_MODE": "a",
}

_OUTPUT_TAIL = 2000


def is_lock_contention(stderr: str) -> bool:
    """Whether ``stderr`` reports a held package-manager lock."""
    lowered = stderr.lower()
    return any(marker in lowered for marker in _LOCK_MARKERS)


@dataclass
class CommandResult:
    """Captured outcome of one external process."""

    argv: list[str]
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    dry_run: bool = False
    timed_out: bool = False
    lock_contention: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def command(self) -> str:
        return shlex.join(self.argv)

    @property
    def output(self) -> str:
        """stderr and stdout tails, for error reports."""
        parts = [p.strip() for p in (self.stderr, self.stdout) if p and p.strip()]
        return "\n".join(parts)[-_OUTPUT_TAIL:]

    def raise_for_status(self, resource: str | None = None) -> None:
        """Raise the matching ProvisionError if the command did not succeed."""
        if self.ok:
            return
        if self.timed_out:
            raise CommandTimeout(
                f"{self.command} timed out", resource=resource, output=self.output
            )
        if self.lock_contention:
            raise LockContention(
                f"{self.command} could not acquire the package lock",
                resource=resource,
                output=self.output,
            )
        raise CommandFailure(
            f"{self.command} exited with code {self.exit_code}",
            resource=resource,
            output=self.output,
        )


@dataclass
class CommandRunner:
    """Run external commands with a default timeout and environment.

    Args:
        timeout: Default timeout in seconds for each command.
        env_overrides: Variables merged over the inherited environment.
        dry_run: When True, commands are logged instead of executed
            unless a call passes ``dry_run=False`` explicitly.
    """

    timeout: int = 600
    env_overrides: dict[str, str] = field(default_factory=dict)
    dry_run: bool = False

    def run(
        self,
        argv: list[str],
        *,
        timeout: int | None = None,
        cwd: str | os.PathLike[str] | None = None,
        env: dict[str, str] | None = None,
        input_text: str | None = None,
        dry_run: bool | None = None,
    ) -> CommandResult:
        """Execute ``argv`` and capture its outcome.

        Returns:
            CommandResult. Never raises for process failures; a missing
            executable is reported as exit code 127.
        """
        argv = [str(a) for a in argv]
        effective_dry_run = self.dry_run if dry_run is None else dry_run
        if effective_dry_run:
            logger.info("[dry-run] would run: %s", shlex.join(argv))
            return CommandResult(argv=argv, dry_run=True)

        merged_env = os.environ.copy()
        merged_env.update(self.env_overrides)
        if env:
            merged_env.update(env)

        limit = timeout or self.timeout
        logger.debug("Executing: %s (cwd=%s)", shlex.join(argv), cwd)
        start = time.monotonic()

        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=limit,
                input=input_text,
                env=merged_env,
                cwd=cwd,
            )
        except subprocess.TimeoutExpired as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.warning("Command timed out after %ss: %s", limit, shlex.join(argv))
            return CommandResult(
                argv=argv,
                exit_code=-1,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr) or f"timed out after {limit}s",
                duration_ms=elapsed_ms,
                timed_out=True,
            )
        except OSError as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.debug("Cannot execute %s: %s", argv[0], e)
            return CommandResult(
                argv=argv,
                exit_code=127,
                stderr=str(e),
                duration_ms=elapsed_ms,
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        stderr = proc.stderr[-_OUTPUT_TAIL:] if proc.stderr else ""
        return CommandResult(
            argv=argv,
            exit_code=proc.returncode,
            stdout=proc.stdout[-_OUTPUT_TAIL:] if proc.stdout else "",
            stderr=stderr,
            duration_ms=elapsed_ms,
            lock_contention=proc.returncode != 0 and is_lock_contention(stderr),
        )


def _decode(raw: str | bytes | None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw
