"""
Application setup adapter — runs the upstream installer entrypoint.

The entrypoint asks which package mirror to use; the configured answer
is fed on stdin so the run never waits on a TTY. Optionally starts and
stops the app once so it initialises its own state before systemd
takes over.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path

from hostconverge.adapters.base import Adapter, ExecutionContext
from hostconverge.adapters.shell.filesystem import remove_path
from hostconverge.core.errors import CommandFailure, ErrorKind, ProvisionError
from hostconverge.core.models.resource import ResourceKind
from hostconverge.core.models.step import ExecutionResult, StepAction

logger = logging.getLogger(__name__)


class AppSetupAdapter(Adapter):
    """Run ``<entrypoint> install`` in the application source dir.

    Resource params:
        source_dir (str): Working directory.
        entrypoint (str): Path of the installer script.
        answer (str): Line written to the installer's stdin.
        prime (bool): Run ``start`` then ``stop`` after installing.
    """

    @property
    def name(self) -> str:
        return "app-setup"

    @property
    def kinds(self) -> tuple[ResourceKind, ...]:
        return (ResourceKind.APP_SETUP,)

    def is_available(self) -> bool:
        return True

    def execute(self, context: ExecutionContext) -> ExecutionResult:
        step = context.step
        params = context.params
        try:
            if step.action == StepAction.DELETE:
                remove_path(Path(step.resource.target), dry_run=context.dry_run)
                return ExecutionResult.success(step, output="setup marker removed")

            entrypoint = Path(params["entrypoint"])
            source_dir = params["source_dir"]
            if not context.dry_run:
                if not entrypoint.is_file():
                    raise CommandFailure(f"Entrypoint not found: {entrypoint}", resource=step.key)
                mode = entrypoint.stat().st_mode
                os.chmod(entrypoint, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

            logger.info("Running %s install (answer %r)", entrypoint.name, params.get("answer", ""))
            context.run_checked(
                [str(entrypoint), "install"],
                cwd=source_dir,
                input_text=f"{params.get('answer', '')}\n",
            )
            if params.get("prime", False):
                context.run_checked([str(entrypoint), "start"], cwd=source_dir)
                context.run_checked([str(entrypoint), "stop"], cwd=source_dir)
        except ProvisionError as e:
            return self._failed(context, e)
        except OSError as e:
            return ExecutionResult.failure(
                step, error=f"Setup error: {e}", error_kind=ErrorKind.COMMAND_FAILURE.value
            )

        return ExecutionResult.success(step, output=f"{entrypoint.name} install completed")
