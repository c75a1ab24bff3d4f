"""
Logging configuration — central setup for the CLI.

Called once at startup by main.py.  Every module that does
``logger = logging.getLogger(__name__)`` inherits this config.

Levels are resolved in precedence order:
    CLI flag  >  HCV_LOG_LEVEL env var  >  INFO (default)

Optional file output via HCV_LOG_FILE / HCV_LOG_FILE_LEVEL env vars.
File records carry the operation id of the run that emitted them, so
a log file can be read side by side with the audit ledger.
"""

from __future__ import annotations

import contextlib
import logging
import sys
from collections.abc import Iterator
from contextvars import ContextVar
from pathlib import Path

DEFAULT_LEVEL = "INFO"

_NO_OPERATION = "-"
_current_operation: ContextVar[str] = ContextVar("hcv_operation", default=_NO_OPERATION)

# ── Format strings ──────────────────────────────────────────────

# WARNING and above: the message only
_FMT_MINIMAL = "%(message)s"

# INFO: step narration with module context
_FMT_STEPS = "%(asctime)s [%(name)s] %(message)s"
_DATEFMT_STEPS = "%H:%M:%S"

# DEBUG: every command the runner executes, with file:line
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_DEBUG = "%H:%M:%S"

# File: full detail keyed by operation id
_FMT_FILE = "%(asctime)s %(levelname)-5s [%(operation_id)s] %(name)s:%(lineno)d — %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"


class _OperationFilter(logging.Filter):
    """Stamp ``operation_id`` on every record passing through a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.operation_id = _current_operation.get()
        return True


@contextlib.contextmanager
def operation_context(operation_id: str) -> Iterator[None]:
    """Tag every record logged inside the block with ``operation_id``."""
    token = _current_operation.set(operation_id)
    try:
        yield
    finally:
        _current_operation.reset(token)


def _console_format(numeric_level: int) -> tuple[str, str | None]:
    if numeric_level <= logging.DEBUG:
        return _FMT_DEBUG, _DATEFMT_DEBUG
    if numeric_level <= logging.INFO:
        return _FMT_STEPS, _DATEFMT_STEPS
    return _FMT_MINIMAL, None


def setup_logging(
    level: str = DEFAULT_LEVEL,
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Configure Python logging for the entire process.

    Console output goes to stderr so ``--json`` output on stdout stays
    parseable.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to a log file. Its directory is created
            when missing.
        log_file_level: Optional separate level for the log file.
            Defaults to the same as ``level``.
    """
    numeric_level = parse_level(level)

    fmt, datefmt = _console_format(numeric_level)
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    effective_level = numeric_level

    if log_file:
        file_level = parse_level(log_file_level) if log_file_level else numeric_level
        effective_level = min(effective_level, file_level)

        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setLevel(file_level)
        fh.addFilter(_OperationFilter())
        fh.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
        root.addHandler(fh)

    root.setLevel(effective_level)
    logging.raiseExceptions = False


def parse_level(level: str | None) -> int:
    """Convert a level name string to its numeric constant."""
    if not level:
        return logging.INFO
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.INFO
    return numeric
