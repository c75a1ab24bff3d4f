"""
Error taxonomy — every failure the engine can classify.

The core only defines exceptions; the CLI decides how they are shown.
Adapters never let these escape to the engine: they are captured into
an ExecutionResult with the matching ``error_kind``.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Stable identifiers used in run reports and the audit ledger."""

    PRIVILEGE = "privilege"
    PLATFORM = "platform"
    DEPENDENCY = "dependency"
    NETWORK_DETECTION = "network_detection"
    TEMPLATE_MISSING = "template_missing"
    COMMAND_FAILURE = "command_failure"
    LOCK_CONTENTION = "lock_contention"
    TIMEOUT = "timeout"
    FILE_WRITE = "file_write"
    CONFIG = "config"
    TRANSITION = "transition"
    INTERRUPTED = "interrupted"


class ProvisionError(Exception):
    """Base class for all provisioning errors.

    Attributes:
        kind: Classification of the failure.
        resource: Identity key of the resource involved, if any.
        output: Captured command output, if any.
    """

    kind: ErrorKind = ErrorKind.COMMAND_FAILURE

    def __init__(self, message: str, *, resource: str | None = None, output: str = ""):
        super().__init__(message)
        self.resource = resource
        self.output = output

    def describe(self) -> str:
        """Message with the resource identity prefixed, when known."""
        text = str(self)
        if self.resource:
            text = f"{self.resource}: {text}"
        return text


class PrivilegeError(ProvisionError):
    """Not running as the required (root) user."""

    kind = ErrorKind.PRIVILEGE


class PlatformError(ProvisionError):
    """Unsupported operating system."""

    kind = ErrorKind.PLATFORM


class DependencyError(ProvisionError):
    """OS package installation failed."""

    kind = ErrorKind.DEPENDENCY


class NetworkDetectionError(ProvisionError):
    """No default route / egress interface could be found."""

    kind = ErrorKind.NETWORK_DETECTION


class TemplateMissingError(ProvisionError):
    """An expected configuration template is absent."""

    kind = ErrorKind.TEMPLATE_MISSING


class CommandFailure(ProvisionError):
    """External process exited non-zero with a code not recognized as benign."""

    kind = ErrorKind.COMMAND_FAILURE


class LockContention(ProvisionError):
    """An exclusive resource (package database lock) is held elsewhere."""

    kind = ErrorKind.LOCK_CONTENTION


class CommandTimeout(ProvisionError):
    """External process did not finish before its timeout."""

    kind = ErrorKind.TIMEOUT


class FileWriteError(ProvisionError):
    """A managed file could not be written or rendered."""

    kind = ErrorKind.FILE_WRITE


class ConfigError(ProvisionError):
    """Tool configuration is missing or invalid."""

    kind = ErrorKind.CONFIG


class TransitionError(ProvisionError):
    """The requested target state cannot be reached from the current one."""

    kind = ErrorKind.TRANSITION


_VALIDATION_KINDS = frozenset({
    ErrorKind.PRIVILEGE,
    ErrorKind.PLATFORM,
    ErrorKind.CONFIG,
    ErrorKind.NETWORK_DETECTION,
    ErrorKind.TEMPLATE_MISSING,
    ErrorKind.TRANSITION,
})


def is_validation_error(exc: BaseException) -> bool:
    """Whether ``exc`` must abort a run before any mutation."""
    return isinstance(exc, ProvisionError) and exc.kind in _VALIDATION_KINDS
