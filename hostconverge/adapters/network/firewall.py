"""
Firewalld adapter — open the dashboard port permanently.
"""

from __future__ import annotations

import logging
import shutil

from hostconverge.adapters.base import Adapter, ExecutionContext
from hostconverge.core.errors import ProvisionError
from hostconverge.core.models.resource import ResourceKind
from hostconverge.core.models.step import ExecutionResult, StepAction

logger = logging.getLogger(__name__)

_ALREADY = ("already_enabled", "not_enabled")


class FirewalldAdapter(Adapter):
    """Add (or remove) a permanent port rule, then reload.

    Resource params:
        port (int), protocol (str): The rule, also encoded in the target.
    """

    @property
    def name(self) -> str:
        return "firewalld"

    @property
    def kinds(self) -> tuple[ResourceKind, ...]:
        return (ResourceKind.FIREWALL,)

    def is_available(self) -> bool:
        return shutil.which("firewall-cmd") is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, msg = super().validate(context)
        if not ok:
            return ok, msg
        if not context.params.get("enabled", False):
            return False, "firewall management is disabled"
        return True, ""

    def execute(self, context: ExecutionContext) -> ExecutionResult:
        step = context.step
        rule = step.resource.target
        flag = "--remove-port" if step.action == StepAction.DELETE else "--add-port"
        try:
            result = context.run(["firewall-cmd", "--permanent", f"{flag}={rule}"], timeout=60)
            combined = f"{result.stdout}\n{result.stderr}".lower()
            if not result.ok and not any(marker in combined for marker in _ALREADY):
                result.raise_for_status(step.key)
            context.run_checked(["firewall-cmd", "--reload"], timeout=60)
        except ProvisionError as e:
            return self._failed(context, e)
        verb = "closed" if step.action == StepAction.DELETE else "opened"
        return ExecutionResult.success(step, output=f"{verb} {rule}")
