"""
Git adapter — keep the upstream checkout in place.

Create and update both replace whatever is at the install directory
with a fresh clone; delete removes the tree. Uses the git CLI.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from hostconverge.adapters.base import Adapter, ExecutionContext
from hostconverge.adapters.shell.filesystem import remove_path
from hostconverge.core.errors import ProvisionError
from hostconverge.core.models.resource import ResourceKind
from hostconverge.core.models.step import ExecutionResult, StepAction

logger = logging.getLogger(__name__)


class GitAdapter(Adapter):
    """Clone / remove the application repository.

    Resource params:
        url (str): Upstream repository URL.
    """

    @property
    def name(self) -> str:
        return "git"

    @property
    def kinds(self) -> tuple[ResourceKind, ...]:
        return (ResourceKind.REPOSITORY,)

    def is_available(self) -> bool:
        return shutil.which("git") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, msg = super().validate(context)
        if not ok:
            return ok, msg
        if context.step.action != StepAction.DELETE and not context.params.get("url"):
            return False, "Missing required param: 'url'"
        target = Path(context.step.resource.target)
        if not target.is_absolute() or target == Path("/"):
            return False, f"Refusing to manage repository at {target}"
        return True, ""

    def execute(self, context: ExecutionContext) -> ExecutionResult:
        step = context.step
        target = Path(step.resource.target)
        try:
            if step.action == StepAction.DELETE:
                existed = remove_path(target, dry_run=context.dry_run)
                output = f"removed {target}" if existed else f"{target} already absent"
                return ExecutionResult.success(step, output=output)

            url = context.params["url"]
            if remove_path(target, dry_run=context.dry_run):
                logger.info("Removed previous contents of %s", target)
            if not context.dry_run:
                target.parent.mkdir(parents=True, exist_ok=True)
            context.run_checked(["git", "clone", url, str(target)])
            return ExecutionResult.success(step, output=f"cloned {url} into {target}")
        except ProvisionError as e:
            return self._failed(context, e)
