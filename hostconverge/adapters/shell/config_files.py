"""
Config file adapter — the dashboard INI, the sysctl drop-in and the
WireGuard interface file.

All writes go through the atomic writer. The sysctl drop-in is
applied with ``sysctl -p`` inside a FileTransaction so a rejected
value restores the previous file.
"""

from __future__ import annotations

import logging
from pathlib import Path

from hostconverge.adapters.base import Adapter, ExecutionContext
from hostconverge.adapters.shell.filesystem import FileTransaction, atomic_write, remove_path
from hostconverge.core.errors import FileWriteError, ProvisionError, TemplateMissingError
from hostconverge.core.models.resource import ResourceKind
from hostconverge.core.models.step import ExecutionResult, StepAction
from hostconverge.core.services.templates import TemplateError, render_dashboard_config

logger = logging.getLogger(__name__)


class FilesystemAdapter(Adapter):
    """Render and atomically write managed configuration files."""

    @property
    def name(self) -> str:
        return "filesystem"

    @property
    def kinds(self) -> tuple[ResourceKind, ...]:
        return (ResourceKind.CONFIG_FILE, ResourceKind.KERNEL_PARAM, ResourceKind.WG_INTERFACE)

    def is_available(self) -> bool:
        return True

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        ok, msg = super().validate(context)
        if not ok:
            return ok, msg
        resource = context.step.resource
        if context.step.action == StepAction.DELETE:
            return True, ""
        if resource.kind == ResourceKind.CONFIG_FILE:
            if not resource.params.get("template"):
                return False, "Missing required param: 'template'"
        elif resource.content is None:
            return False, f"No desired content for {resource.key}"
        return True, ""

    def execute(self, context: ExecutionContext) -> ExecutionResult:
        step = context.step
        resource = step.resource
        path = Path(resource.target)
        mode = resource.mode if resource.mode is not None else 0o644

        try:
            if step.action == StepAction.DELETE:
                existed = remove_path(path, dry_run=context.dry_run)
                return ExecutionResult.success(
                    step, output=f"removed {path}" if existed else f"{path} already absent"
                )

            if resource.kind == ResourceKind.CONFIG_FILE:
                template = Path(resource.params["template"])
                if context.dry_run and not template.is_file():
                    return ExecutionResult.skip(
                        step, reason=f"[dry-run] would render {path} from {template} after clone"
                    )
                content = self._render_config(context)
            else:
                content = resource.content or ""

            if resource.kind == ResourceKind.KERNEL_PARAM:
                with FileTransaction(dry_run=context.dry_run) as txn:
                    written = txn.write(path, content, mode)
                    context.run_checked(["sysctl", "-p", str(path)], timeout=30)
            else:
                written = atomic_write(path, content, mode, dry_run=context.dry_run)
        except ProvisionError as e:
            return self._failed(context, e)

        output = f"wrote {written.bytes_written} bytes to {path}" if written.changed else f"{path} unchanged"
        return ExecutionResult.success(step, output=output, metadata={"path": str(path), "mode": oct(mode)})

    def _render_config(self, context: ExecutionContext) -> str:
        resource = context.step.resource
        template = Path(resource.params["template"])
        if not template.is_file():
            raise TemplateMissingError(f"Template not found: {template}", resource=resource.key)
        try:
            return render_dashboard_config(
                template.read_text(encoding="utf-8"),
                resource.params.get("section", "Server"),
                resource.settings,
            )
        except (TemplateError, OSError) as e:
            raise FileWriteError(f"Cannot render {resource.target}: {e}", resource=resource.key) from e
